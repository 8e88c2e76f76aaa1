# src/polycrud/base/BaseProvider.py
from __future__ import annotations

import asyncio
from typing import Any, Callable, Dict, List, Optional

from ..errors import BackendRequestError, NotFoundError, UnsupportedResourceError
from ..models import ListResult, Record, RecordId, RecordResult
from ..utils import setup_logger


def estimate_total(offset: int, count: int, has_more: bool, per_page: int) -> int:
    """
    Best-effort total for backends that only say whether more rows exist.

    Rows before this page, plus this page, plus one more page when the backend
    reports a continuation. Never smaller than the rows actually seen.
    """
    return offset + count + (per_page if has_more else 0)


class BaseProvider:
    """Shared resource mapping, result normalization and thread offloading"""

    provider_type = "base"

    def __init__(
        self,
        *,
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
        id_field: str = "id",
    ):
        self.logger = setup_logger(self.__class__.__name__)
        self.resources = dict(resources or {})
        self.strict_resources = strict_resources
        self.id_field = id_field

    def _resolve(self, resource: str, operation: Optional[str] = None) -> str:
        """Map a logical resource name to the backend's name"""
        if resource in self.resources:
            return self.resources[resource]
        if self.strict_resources:
            raise UnsupportedResourceError(
                f"Resource '{resource}' is not configured for provider '{self.provider_type}'",
                resource=resource,
                operation=operation,
            )
        return resource

    def _normalize(self, record: Record) -> Record:
        """Ensure the record exposes its identifier as ``id``"""
        if self.id_field != "id" and self.id_field in record and "id" not in record:
            record = dict(record)
            record["id"] = record[self.id_field]
        return record

    def _list_result(
        self,
        records: List[Record],
        total: Optional[int] = None,
        *,
        offset: int = 0,
        per_page: Optional[int] = None,
        has_more: bool = False,
        meta: Optional[Dict[str, Any]] = None,
    ) -> ListResult:
        data = [self._normalize(r) for r in records]
        if total is not None:
            return ListResult(data=data, total=max(int(total), len(data)), meta=meta)
        estimated = estimate_total(offset, len(data), has_more, per_page or len(data))
        return ListResult(data=data, total=estimated, estimated=True, meta=meta)

    def _record_result(
        self,
        record: Optional[Record],
        *,
        resource: str,
        record_id: Optional[RecordId] = None,
        operation: Optional[str] = None,
        meta: Optional[Dict[str, Any]] = None,
    ) -> RecordResult:
        if record is None:
            raise self._not_found(resource, record_id, operation)
        record = self._normalize(record)
        if record.get("id") is None:
            raise BackendRequestError(
                f"{self.provider_type} returned a '{resource}' record without an id",
                retryable=False,
                backend_message=str(record)[:200],
                resource=resource,
                record_id=record_id,
                operation=operation,
            )
        return RecordResult(data=record, meta=meta)

    @staticmethod
    def _not_found(
        resource: str, record_id: Optional[RecordId], operation: Optional[str] = None
    ) -> NotFoundError:
        return NotFoundError(
            f"Record '{record_id}' not found in '{resource}'",
            resource=resource,
            record_id=record_id,
            operation=operation,
        )

    async def _to_thread(self, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run a blocking driver call off the event loop"""
        return await asyncio.to_thread(fn, *args, **kwargs)

    async def aclose(self) -> None:
        """Release connections held by the provider"""
        return None

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} type={self.provider_type}>"
