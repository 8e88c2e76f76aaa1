# src/polycrud/plugins/audit.py
from __future__ import annotations

from contextvars import ContextVar
from typing import TYPE_CHECKING, Any, Optional, Tuple

from ..audit.manager import AuditManager
from ..models import (
    CreateParams,
    DeleteParams,
    GetOneParams,
    RecordResult,
    UpdateParams,
)
from .base import CrudPlugin, PluginHooks

if TYPE_CHECKING:
    from ..engine import CrudEngine

# (resource, id, row) loaded before an update, read back by the after hook
_prior_row: ContextVar[Optional[Tuple[str, str, Any]]] = ContextVar("polycrud_prior_row", default=None)


class AuditPlugin(CrudPlugin):
    """Writes a hash-chained audit record for every successful mutation"""

    name = "audit"

    def __init__(self, manager: Optional[AuditManager] = None, *, audit_reads: bool = False,
                 capture_before: bool = True):
        self.manager = manager or AuditManager()
        self.audit_reads = audit_reads
        self.capture_before = capture_before
        super().__init__()

    def build_hooks(self) -> PluginHooks:
        return PluginHooks(
            after_get_one=self.after_get_one,
            after_create=self.after_create,
            before_update=self.before_update,
            after_update=self.after_update,
            after_delete=self.after_delete,
        )

    def _provider_name(self) -> str:
        return self.engine.provider_name if self.engine else "unknown"

    async def after_get_one(self, result: RecordResult, params: GetOneParams) -> RecordResult:
        if self.audit_reads:
            await self.manager.record(
                action="read", resource=params.resource, entity_id=params.id,
                provider=self._provider_name(), after=result.data,
            )
        return result

    async def after_create(self, result: RecordResult, params: CreateParams) -> RecordResult:
        await self.manager.record(
            action="create", resource=params.resource, entity_id=result.data.get("id"),
            provider=self._provider_name(), after=result.data,
        )
        return result

    async def before_update(self, params: UpdateParams) -> UpdateParams:
        if self.capture_before and self.engine is not None:
            current = await self.engine.get_data_provider().get_one(
                GetOneParams(params.resource, params.id, params.meta)
            )
            _prior_row.set((params.resource, str(params.id), current.data))
        return params

    async def after_update(self, result: RecordResult, params: UpdateParams) -> RecordResult:
        before = None
        prior = _prior_row.get()
        if prior and prior[0] == params.resource and prior[1] == str(params.id):
            before = prior[2]
            _prior_row.set(None)

        await self.manager.record(
            action="update", resource=params.resource, entity_id=params.id,
            provider=self._provider_name(), before=before, after=result.data,
        )
        return result

    async def after_delete(self, result: RecordResult, params: DeleteParams) -> RecordResult:
        await self.manager.record(
            action="delete", resource=params.resource, entity_id=params.id,
            provider=self._provider_name(), before=result.data,
        )
        return result
