from __future__ import annotations

from typing import Any, Dict, Protocol, runtime_checkable

from .models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)

JsonDict = Dict[str, Any]


@runtime_checkable
class CrudProvider(Protocol):
    """Provider contract implemented by every adapter"""

    async def get_list(self, params: GetListParams) -> ListResult: ...

    async def get_one(self, params: GetOneParams) -> RecordResult: ...

    async def create(self, params: CreateParams) -> RecordResult: ...

    async def update(self, params: UpdateParams) -> RecordResult: ...

    async def delete_one(self, params: DeleteParams) -> RecordResult: ...
