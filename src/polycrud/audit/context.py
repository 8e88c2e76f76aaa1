# src/polycrud/audit/context.py
from contextlib import contextmanager
from contextvars import ContextVar, Token
from typing import Any, Dict, Iterator, Optional, Tuple


class AuditContext:
    """
    Who is acting, for audit records and access control.

    Values live in context variables, so concurrent tasks each see their own
    actor and tenant.
    """

    actor_id: ContextVar[Optional[str]] = ContextVar("actor_id", default=None)
    roles: ContextVar[Tuple[str, ...]] = ContextVar("roles", default=())
    tenant_id: ContextVar[Optional[str]] = ContextVar("tenant_id", default=None)
    trace_id: ContextVar[Optional[str]] = ContextVar("trace_id", default=None)
    request_id: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
    ip_address: ContextVar[Optional[str]] = ContextVar("ip_address", default=None)
    user_agent: ContextVar[Optional[str]] = ContextVar("user_agent", default=None)

    _FIELDS = ("actor_id", "roles", "tenant_id", "trace_id", "request_id",
               "ip_address", "user_agent")

    @classmethod
    def _var(cls, name: str) -> ContextVar:
        if name not in cls._FIELDS:
            raise TypeError(f"Unknown audit context field: {name}")
        return getattr(cls, name)

    @classmethod
    def _assign(cls, name: str, value: Any) -> Tuple[ContextVar, Token]:
        if name == "roles":
            value = tuple(value or ())
        var = cls._var(name)
        return var, var.set(value)

    @classmethod
    def set(cls, **values: Any):
        """Set context for the current request; ``None`` values are left untouched"""
        for name, value in values.items():
            if value is not None:
                cls._assign(name, value)

    @classmethod
    def clear(cls):
        for name in cls._FIELDS:
            cls._assign(name, None)

    @classmethod
    def snapshot(cls) -> Dict[str, Any]:
        data = {name: getattr(cls, name).get() for name in cls._FIELDS}
        data["roles"] = list(data["roles"] or [])
        return data

    @classmethod
    @contextmanager
    def scope(cls, **values: Any) -> Iterator[None]:
        """Set values for the duration of a block, then restore the previous ones"""
        tokens = [cls._assign(name, value) for name, value in values.items()]
        try:
            yield
        finally:
            for var, token in reversed(tokens):
                var.reset(token)
