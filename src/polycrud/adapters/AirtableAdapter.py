# src/polycrud/adapters/AirtableAdapter.py
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ..base.CursorCache import CursorCache
from ..base.HttpProvider import HttpProvider, QueryParams
from ..errors import AdapterConfigurationError, BackendRequestError, TranslationError
from ..models import (
    AuthConfig,
    AuthType,
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    Record,
    RecordResult,
    UpdateParams,
)
from ..query import FilterCondition, Operator, parse_filter, validate_pagination

MAX_PAGE_SIZE = 100


def _formula_value(value: Any) -> str:
    if isinstance(value, bool):
        return "TRUE()" if value else "FALSE()"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("\\", "\\\\").replace("'", "\\'")
    return f"'{text}'"


def _field_ref(name: str) -> str:
    if name == "id":
        return "RECORD_ID()"
    if "}" in name:
        raise TranslationError(f"Airtable field names cannot contain '}}': {name}")
    return "{" + name + "}"


def condition_formula(f: FilterCondition) -> str:
    ref = _field_ref(f.field)
    op = f.operator
    if op == Operator.EQ:
        return f"{ref} = {_formula_value(f.value)}"
    if op == Operator.NE:
        return f"{ref} != {_formula_value(f.value)}"
    if op == Operator.LT:
        return f"{ref} < {_formula_value(f.value)}"
    if op == Operator.LTE:
        return f"{ref} <= {_formula_value(f.value)}"
    if op == Operator.GT:
        return f"{ref} > {_formula_value(f.value)}"
    if op == Operator.GTE:
        return f"{ref} >= {_formula_value(f.value)}"
    if op == Operator.CONTAINS:
        return f"FIND(LOWER({_formula_value(str(f.value))}), LOWER({ref} & '')) > 0"
    if op == Operator.STARTS_WITH:
        text = str(f.value)
        return f"LEFT({ref} & '', {len(text)}) = {_formula_value(text)}"
    if op == Operator.ENDS_WITH:
        text = str(f.value)
        return f"RIGHT({ref} & '', {len(text)}) = {_formula_value(text)}"
    if op in (Operator.IN, Operator.NOT_IN):
        if not f.value:
            return "FALSE()" if op == Operator.IN else "TRUE()"
        options = ", ".join(f"{ref} = {_formula_value(v)}" for v in f.value)
        formula = f"OR({options})"
        return formula if op == Operator.IN else f"NOT({formula})"
    if op == Operator.NULL:
        return f"{ref} = BLANK()"
    if op == Operator.NOT_NULL:
        return f"NOT({ref} = BLANK())"
    low, high = f.value
    return f"AND({ref} >= {_formula_value(low)}, {ref} <= {_formula_value(high)})"


def filter_formula(filter: Optional[Dict[str, Any]]) -> Optional[str]:
    parts = [condition_formula(f) for f in parse_filter(filter)]
    if not parts:
        return None
    if len(parts) == 1:
        return parts[0]
    return "AND(" + ", ".join(parts) + ")"


class AirtableAdapter(HttpProvider):
    """
    Airtable REST API.

    Airtable only paginates with opaque ``offset`` tokens, so page N is
    reached by following tokens from page 1. Tokens seen for a query are
    cached per (table, filter, sort, page size) so later pages resume from
    the nearest known cursor. Totals are estimates until the last page is seen.
    """

    provider_type = "airtable"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        base_id: Optional[str] = None,
        api_url: str = "https://api.airtable.com/v0",
        typecast: bool = False,
        cursor_cache_size: int = 128,
        **kwargs: Any,
    ):
        api_key = api_key or os.getenv("AIRTABLE_API_KEY")
        base_id = base_id or os.getenv("AIRTABLE_BASE_ID")
        if not api_key or not base_id:
            raise AdapterConfigurationError("airtable provider requires api_key and base_id")
        kwargs.setdefault("auth", AuthConfig(type=AuthType.BEARER, token=api_key))
        super().__init__(base_url=f"{api_url.rstrip('/')}/{base_id}", **kwargs)
        self.typecast = typecast
        self.cursors = CursorCache(cursor_cache_size)

    def _path(self, table: str, record_id: Any = None) -> str:
        path = f"/{quote(table, safe='')}"
        if record_id is not None:
            path += f"/{quote(str(record_id), safe='')}"
        return path

    @staticmethod
    def _flatten(record: Dict[str, Any]) -> Record:
        flat: Record = {"id": record.get("id")}
        flat.update(record.get("fields") or {})
        return flat

    def _base_query(self, params: GetListParams, per_page: int) -> QueryParams:
        query: QueryParams = [("pageSize", per_page)]
        formula = filter_formula(params.filter)
        if formula:
            query.append(("filterByFormula", formula))
        if params.sort:
            if params.sort.field == "id":
                raise TranslationError("Airtable cannot sort by record id",
                                       resource=params.resource, operation="get_list")
            query.append(("sort[0][field]", params.sort.field))
            query.append(("sort[0][direction]", params.sort.order.value))
        return query

    async def _fetch_page(self, table: str, resource: str, query: QueryParams,
                          token: Optional[str]) -> Tuple[List[Record], Optional[str]]:
        page_query = list(query)
        if token:
            page_query.append(("offset", token))
        response = await self._request("GET", self._path(table), params=page_query,
                                       resource=resource, operation="get_list")
        body = self._json(response, resource=resource, operation="get_list") or {}
        records = [self._flatten(r) for r in body.get("records") or []]
        return records, body.get("offset")

    async def get_list(self, params: GetListParams) -> ListResult:
        table = self._resolve(params.resource, "get_list")
        pagination = validate_pagination(params.pagination)

        if pagination is None:
            query = self._base_query(params, MAX_PAGE_SIZE)
            rows: List[Record] = []
            token: Optional[str] = None
            while True:
                batch, token = await self._fetch_page(table, params.resource, query, token)
                rows.extend(batch)
                if not token:
                    return self._list_result(rows, total=len(rows))

        if pagination.per_page > MAX_PAGE_SIZE:
            raise TranslationError(
                f"Airtable page size is limited to {MAX_PAGE_SIZE}, got {pagination.per_page}",
                resource=params.resource, operation="get_list",
            )

        query = self._base_query(params, pagination.per_page)
        key = CursorCache.key(table, query)

        async def fetch(token: Optional[str]) -> Tuple[List[Record], Optional[str]]:
            return await self._fetch_page(table, params.resource, query, token)

        try:
            rows, has_more, reached = await self.cursors.walk(key, pagination.page, fetch)
        except BackendRequestError as e:
            # cached offsets expire; retry once from the first page
            if e.status != 422 or len(self.cursors.pages(key)) <= 1:
                raise
            self.logger.warning(f"Airtable cursor expired for {table}, restarting from page 1")
            self.cursors.reset(key)
            rows, has_more, reached = await self.cursors.walk(key, pagination.page, fetch)

        if not reached:
            known = self.cursors.last_known_page(key)
            return self._list_result([], offset=(known - 1) * pagination.per_page,
                                     per_page=pagination.per_page)
        if not has_more:
            return self._list_result(rows, total=pagination.offset + len(rows))
        return self._list_result(rows, offset=pagination.offset, per_page=pagination.per_page,
                                 has_more=True)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        table = self._resolve(params.resource, "get_one")
        response = await self._request("GET", self._path(table, params.id),
                                       resource=params.resource, record_id=params.id,
                                       operation="get_one")
        body = self._json(response, resource=params.resource, operation="get_one")
        return self._record_result(self._flatten(body) if body else None,
                                   resource=params.resource, record_id=params.id,
                                   operation="get_one")

    def _invalidate(self, table: str) -> None:
        self.cursors.invalidate(CursorCache.key(table)[:-1])

    async def create(self, params: CreateParams) -> RecordResult:
        table = self._resolve(params.resource, "create")
        fields = {k: v for k, v in params.variables.items() if k != "id"}
        response = await self._request("POST", self._path(table),
                                       json={"fields": fields, "typecast": self.typecast},
                                       resource=params.resource, operation="create")
        self._invalidate(table)
        body = self._json(response, resource=params.resource, operation="create")
        return self._record_result(self._flatten(body) if body else None,
                                   resource=params.resource, operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        table = self._resolve(params.resource, "update")
        fields = {k: v for k, v in params.variables.items() if k != "id"}
        response = await self._request("PATCH", self._path(table, params.id),
                                       json={"fields": fields, "typecast": self.typecast},
                                       resource=params.resource, record_id=params.id,
                                       operation="update")
        self._invalidate(table)
        body = self._json(response, resource=params.resource, operation="update")
        return self._record_result(self._flatten(body) if body else None,
                                   resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        previous = await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        table = self._resolve(params.resource, "delete_one")
        await self._request("DELETE", self._path(table, params.id),
                            resource=params.resource, record_id=params.id,
                            operation="delete_one")
        self._invalidate(table)
        return previous
