# src/polycrud/adapters/MemoryAdapter.py
from __future__ import annotations

import asyncio
import copy
from typing import Any, Dict, Iterable, List, Optional

from ..base.BaseProvider import BaseProvider
from ..errors import BackendRequestError
from ..models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    Record,
    RecordId,
    RecordResult,
    UpdateParams,
)
from ..query import matches, paginate, parse_filter, sort_records, validate_pagination


def _same_id(left: Any, right: Any) -> bool:
    return left == right or str(left) == str(right)


class MemoryAdapter(BaseProvider):
    """
    In-memory provider with the same filter, sort and pagination semantics
    as the real adapters. Records are deep-copied on the way in and out so
    callers never share state with the store.
    """

    provider_type = "mock"

    def __init__(
        self,
        data: Optional[Dict[str, Iterable[Record]]] = None,
        *,
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
        latency: float = 0.0,
    ):
        super().__init__(resources=resources, strict_resources=strict_resources)
        self.latency = latency
        self._store: Dict[str, List[Record]] = {}
        self._counters: Dict[str, int] = {}
        self._lock = asyncio.Lock()
        self._load(data or {})

    def _load(self, data: Dict[str, Iterable[Record]]) -> None:
        self._store = {name: [copy.deepcopy(r) for r in rows] for name, rows in data.items()}
        self._counters = {name: self._max_numeric_id(rows) for name, rows in self._store.items()}

    @staticmethod
    def _max_numeric_id(rows: List[Record]) -> int:
        highest = 0
        for row in rows:
            value = row.get("id")
            if isinstance(value, bool):
                continue
            if isinstance(value, int):
                highest = max(highest, value)
            elif isinstance(value, str) and value.isdigit():
                highest = max(highest, int(value))
        return highest

    def _rows(self, resource: str) -> List[Record]:
        return self._store.setdefault(resource, [])

    def _index(self, rows: List[Record], record_id: RecordId) -> int:
        for i, row in enumerate(rows):
            if _same_id(row.get("id"), record_id):
                return i
        return -1

    def _next_id(self, resource: str) -> int:
        self._counters[resource] = self._counters.get(resource, 0) + 1
        return self._counters[resource]

    async def _simulate_latency(self) -> None:
        if self.latency:
            await asyncio.sleep(self.latency)

    def snapshot(self, resource: Optional[str] = None) -> Any:
        """Deep copy of the store, or of one resource"""
        if resource is not None:
            return copy.deepcopy(self._store.get(self._resolve(resource), []))
        return copy.deepcopy(self._store)

    async def get_list(self, params: GetListParams) -> ListResult:
        await self._simulate_latency()
        name = self._resolve(params.resource, "get_list")
        conditions = parse_filter(params.filter)
        validate_pagination(params.pagination)

        rows = [r for r in self._store.get(name, []) if matches(r, conditions)]
        rows = sort_records(rows, params.sort)
        page = paginate(rows, params.pagination)

        return self._list_result(copy.deepcopy(page), total=len(rows))

    async def get_one(self, params: GetOneParams) -> RecordResult:
        await self._simulate_latency()
        name = self._resolve(params.resource, "get_one")
        rows = self._store.get(name, [])
        i = self._index(rows, params.id)
        record = copy.deepcopy(rows[i]) if i >= 0 else None
        return self._record_result(record, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        await self._simulate_latency()
        name = self._resolve(params.resource, "create")
        async with self._lock:
            rows = self._rows(name)
            record = copy.deepcopy(dict(params.variables))

            if record.get("id") is None:
                record["id"] = self._next_id(name)
            elif self._index(rows, record["id"]) >= 0:
                raise BackendRequestError(
                    f"Duplicate id '{record['id']}' in '{params.resource}'",
                    status=409,
                    backend_message="duplicate id",
                    resource=params.resource,
                    record_id=record["id"],
                    operation="create",
                )
            else:
                self._counters[name] = max(self._counters.get(name, 0),
                                           self._max_numeric_id([record]))

            rows.append(record)
            self.logger.debug(f"Created {params.resource}:{record['id']}")
            return RecordResult(data=copy.deepcopy(record))

    async def update(self, params: UpdateParams) -> RecordResult:
        await self._simulate_latency()
        name = self._resolve(params.resource, "update")
        async with self._lock:
            rows = self._rows(name)
            i = self._index(rows, params.id)
            if i < 0:
                raise self._not_found(params.resource, params.id, "update")

            updated = dict(rows[i])
            updated.update(copy.deepcopy(dict(params.variables)))
            updated["id"] = rows[i]["id"]
            rows[i] = updated
            return RecordResult(data=copy.deepcopy(updated))

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        await self._simulate_latency()
        name = self._resolve(params.resource, "delete_one")
        async with self._lock:
            rows = self._rows(name)
            i = self._index(rows, params.id)
            if i < 0:
                raise self._not_found(params.resource, params.id, "delete_one")
            removed = rows.pop(i)
            return RecordResult(data=removed)
