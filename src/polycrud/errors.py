# src/polycrud/errors.py
"""
Structured exceptions for CRUD provider operations
"""
from __future__ import annotations

from typing import Any, Iterable, Optional


class CrudError(Exception):
    """Base exception for all polycrud errors"""

    def __init__(
        self,
        message: str,
        *,
        resource: Optional[str] = None,
        record_id: Optional[Any] = None,
        operation: Optional[str] = None,
    ):
        super().__init__(message)
        self.message = message
        self.resource = resource
        self.record_id = record_id
        self.operation = operation


class UnsupportedProviderTypeError(CrudError):
    """Raised when a provider type is not in the supported set"""

    def __init__(self, provider_type: Any, valid_types: Iterable[str]):
        self.provider_type = provider_type
        self.valid_types = sorted(valid_types)
        super().__init__(
            f"Unsupported provider type: '{provider_type}'. "
            f"Valid types: {', '.join(self.valid_types)}"
        )


class AdapterConfigurationError(CrudError):
    """Raised when an adapter is missing required settings or gets unknown ones"""

    pass


class UnsupportedResourceError(CrudError):
    """Raised when a resource has no mapping in the adapter"""

    pass


class NotFoundError(CrudError):
    """Raised when an id-addressed operation targets a missing record"""

    pass


class TranslationError(CrudError):
    """Raised when a filter, sort or pagination cannot be expressed by the backend"""

    pass


class BackendRequestError(CrudError):
    """Backend returned an error status or could not be reached"""

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        backend_message: Optional[str] = None,
        retryable: Optional[bool] = None,
        **kwargs: Any,
    ):
        super().__init__(message, **kwargs)
        self.status = status
        self.backend_message = backend_message
        self._retryable = retryable

    @property
    def retryable(self) -> bool:
        """Transport failures, throttling and server errors may succeed on retry"""
        if self._retryable is not None:
            return self._retryable
        if self.status is None:
            return True
        return self.status == 429 or self.status >= 500


class OperationTimeoutError(CrudError):
    """Raised when an engine call exceeds its deadline"""

    pass


class PermissionDeniedError(CrudError):
    """Raised when access control rejects an operation"""

    pass


class HookError(CrudError):
    """Raised when a plugin hook misbehaves"""

    pass


class AuditError(CrudError):
    """Audit trail could not be written or verified"""

    pass
