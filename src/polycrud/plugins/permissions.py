# src/polycrud/plugins/permissions.py
from __future__ import annotations

from dataclasses import replace
from typing import Any, Dict

from ..audit.context import AuditContext
from ..errors import PermissionDeniedError
from ..models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from ..security import CREATE, DELETE, READ, UPDATE, AccessControl
from .base import CrudPlugin, PluginHooks


class PermissionsPlugin(CrudPlugin):
    """
    Enforces AccessControl grants and row policies.

    The acting identity comes from AuditContext. Updates and deletes load
    the current row first so write policies see what is being changed.
    """

    name = "permissions"

    def __init__(self, access: AccessControl):
        if access is None:
            raise ValueError("PermissionsPlugin requires an AccessControl")
        self.access = access
        super().__init__()

    def build_hooks(self) -> PluginHooks:
        return PluginHooks(
            before_get_list=self.before_get_list,
            after_get_list=self.after_get_list,
            before_get_one=self.before_get_one,
            after_get_one=self.after_get_one,
            before_create=self.before_create,
            before_update=self.before_update,
            before_delete=self.before_delete,
        )

    @staticmethod
    def _context() -> Dict[str, Any]:
        return AuditContext.snapshot()

    def _deny(self, resource: str, operation: str, record_id: Any = None) -> PermissionDeniedError:
        return PermissionDeniedError(
            f"Access to '{resource}' record '{record_id}' denied by policy",
            resource=resource, record_id=record_id, operation=operation,
        )

    async def _current(self, resource: str, record_id: Any, meta) -> Dict[str, Any]:
        provider = self.engine.get_data_provider()  # type: ignore[union-attr]
        return (await provider.get_one(GetOneParams(resource, record_id, meta))).data

    def before_get_list(self, params: GetListParams) -> GetListParams:
        ctx = self._context()
        self.access.require(params.resource, READ, ctx)
        return replace(params, filter=self.access.enforce_read(params.resource, params.filter, ctx))

    def after_get_list(self, result: ListResult, params: GetListParams) -> ListResult:
        rows = self.access.filter_results(params.resource, result.data, self._context())
        if len(rows) == len(result.data):
            return result
        # rows hidden by policy make the backend total an upper bound
        dropped = len(result.data) - len(rows)
        return replace(result, data=rows, total=max(result.total - dropped, len(rows)),
                       estimated=True)

    def before_get_one(self, params: GetOneParams) -> GetOneParams:
        self.access.require(params.resource, READ, self._context())
        return params

    def after_get_one(self, result: RecordResult, params: GetOneParams) -> RecordResult:
        if not self.access.check_access(params.resource, result.data, self._context(), "read"):
            raise self._deny(params.resource, "get_one", params.id)
        return result

    def before_create(self, params: CreateParams) -> CreateParams:
        ctx = self._context()
        self.access.require(params.resource, CREATE, ctx)
        return replace(params, variables=self.access.enforce_write(params.resource, params.variables, ctx))

    async def before_update(self, params: UpdateParams) -> UpdateParams:
        ctx = self._context()
        self.access.require(params.resource, UPDATE, ctx)
        current = await self._current(params.resource, params.id, params.meta)
        if not self.access.check_access(params.resource, current, ctx, "write"):
            raise self._deny(params.resource, "update", params.id)
        if not self.access.check_access(params.resource, {**current, **params.variables}, ctx, "write"):
            raise self._deny(params.resource, "update", params.id)
        return params

    async def before_delete(self, params: DeleteParams) -> DeleteParams:
        ctx = self._context()
        self.access.require(params.resource, DELETE, ctx)
        current = await self._current(params.resource, params.id, params.meta)
        if not self.access.check_access(params.resource, current, ctx, "write"):
            raise self._deny(params.resource, "delete", params.id)
        return params
