# src/polycrud/retry.py
"""
Opt-in retry with exponential backoff around any provider
"""

import logging
from typing import Any, Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from .errors import BackendRequestError
from .models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from .types import CrudProvider

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Only transport failures, throttling and server errors are retried"""
    return isinstance(error, BackendRequestError) and error.retryable


class RetryingProvider:
    """
    Retries failed calls of another provider.

    Reads are always retried; writes only when ``retry_writes`` is set,
    since a create that timed out may already have been applied.
    """

    def __init__(
        self,
        provider: CrudProvider,
        *,
        attempts: int = 3,
        multiplier: float = 0.5,
        min_wait: float = 0.5,
        max_wait: float = 6,
        retry_writes: bool = False,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.provider = provider
        self.attempts = attempts
        self.multiplier = multiplier
        self.min_wait = min_wait
        self.max_wait = max_wait
        self.retry_writes = retry_writes

    @property
    def provider_type(self) -> str:
        return getattr(self.provider, "provider_type", self.provider.__class__.__name__)

    @staticmethod
    def _log_retry(state: RetryCallState) -> None:
        error = state.outcome.exception() if state.outcome else None
        logger.warning(
            f"Attempt {state.attempt_number} of {state.fn.__name__ if state.fn else 'call'} "
            f"failed: {error}. Retrying..."
        )

    async def _call(self, fn: Callable[..., Awaitable[T]], params: Any, write: bool = False) -> T:
        if write and not self.retry_writes:
            return await fn(params)

        retrying = AsyncRetrying(
            wait=wait_exponential(multiplier=self.multiplier, min=self.min_wait, max=self.max_wait),
            stop=stop_after_attempt(self.attempts),
            retry=retry_if_exception(is_retryable),
            before_sleep=self._log_retry,
            reraise=True,
        )
        return await retrying(fn, params)

    async def get_list(self, params: GetListParams) -> ListResult:
        return await self._call(self.provider.get_list, params)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        return await self._call(self.provider.get_one, params)

    async def create(self, params: CreateParams) -> RecordResult:
        return await self._call(self.provider.create, params, write=True)

    async def update(self, params: UpdateParams) -> RecordResult:
        return await self._call(self.provider.update, params, write=True)

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        return await self._call(self.provider.delete_one, params, write=True)

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()
