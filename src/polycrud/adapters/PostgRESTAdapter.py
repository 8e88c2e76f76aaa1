# src/polycrud/adapters/PostgRESTAdapter.py
from __future__ import annotations

import os
import re
from typing import Any, Dict, List, Optional

from ..base.HttpProvider import HttpProvider, QueryParams
from ..errors import AdapterConfigurationError, TranslationError
from ..models import (
    AuthConfig,
    AuthType,
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from ..query import FilterCondition, Operator, parse_filter, validate_pagination
from ..utils import validate_column_name

_CONTENT_RANGE = re.compile(r"^\s*(?:\d+-\d+|\*)/(\d+|\*)\s*$")
_RESERVED = set(',.:()"\\ ')


def _literal(value: Any) -> str:
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _list_item(value: Any) -> str:
    text = _literal(value)
    if any(ch in _RESERVED for ch in text):
        escaped = text.replace("\\", "\\\\").replace('"', '\\"')
        return f'"{escaped}"'
    return text


def parse_content_range(header: Optional[str]) -> Optional[int]:
    """Total from a PostgREST ``Content-Range`` header such as ``0-9/42``"""
    if not header:
        return None
    match = _CONTENT_RANGE.match(header)
    if not match or match.group(1) == "*":
        return None
    return int(match.group(1))


class PostgRESTAdapter(HttpProvider):
    """PostgREST backend: operator-prefixed filters, Content-Range totals"""

    provider_type = "postgrest"

    def __init__(self, *, schema: Optional[str] = None, count: str = "exact", **kwargs: Any):
        super().__init__(**kwargs)
        if count not in ("exact", "planned", "estimated"):
            raise AdapterConfigurationError(f"Invalid PostgREST count mode: {count}")
        self.schema = schema
        self.count = count

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        if self.schema:
            headers["Accept-Profile"] = self.schema
            headers["Content-Profile"] = self.schema
        return headers

    def _condition(self, f: FilterCondition, resource: str) -> QueryParams:
        col = validate_column_name(f.field)
        op = f.operator
        if op == Operator.EQ:
            return [(col, f"eq.{_literal(f.value)}")]
        if op == Operator.NE:
            return [(col, f"neq.{_literal(f.value)}")]
        if op in (Operator.LT, Operator.LTE, Operator.GT, Operator.GTE):
            return [(col, f"{op.value}.{_literal(f.value)}")]
        if op == Operator.CONTAINS:
            return [(col, f"ilike.*{_literal(f.value)}*")]
        if op == Operator.STARTS_WITH:
            return [(col, f"like.{_literal(f.value)}*")]
        if op == Operator.ENDS_WITH:
            return [(col, f"like.*{_literal(f.value)}")]
        if op == Operator.IN:
            return [(col, "in.(" + ",".join(_list_item(v) for v in f.value) + ")")]
        if op == Operator.NOT_IN:
            return [(col, "not.in.(" + ",".join(_list_item(v) for v in f.value) + ")")]
        if op == Operator.NULL:
            return [(col, "is.null")]
        if op == Operator.NOT_NULL:
            return [(col, "not.is.null")]
        if op == Operator.BETWEEN:
            low, high = f.value
            return [(col, f"gte.{_literal(low)}"), (col, f"lte.{_literal(high)}")]
        raise TranslationError(f"PostgREST cannot express operator '{op.value}'",
                               resource=resource, operation="get_list")

    def _id_filter(self, record_id: Any) -> QueryParams:
        return [(self.id_field, f"eq.{_literal(record_id)}")]

    def _list_query(self, params: GetListParams) -> QueryParams:
        query: QueryParams = [("select", "*")]
        for f in parse_filter(params.filter):
            query.extend(self._condition(f, params.resource))
        if params.sort:
            col = validate_column_name(params.sort.field)
            direction = "desc.nullslast" if params.sort.descending else "asc.nullsfirst"
            query.append(("order", f"{col}.{direction}"))
        pagination = validate_pagination(params.pagination)
        if pagination:
            query.append(("limit", pagination.per_page))
            query.append(("offset", pagination.offset))
        return query

    @staticmethod
    def _rows(body: Any) -> List[Dict[str, Any]]:
        if isinstance(body, list):
            return body
        if isinstance(body, dict):
            return [body]
        return []

    async def get_list(self, params: GetListParams) -> ListResult:
        name = self._resolve(params.resource, "get_list")
        response = await self._request(
            "GET", f"/{name}", params=self._list_query(params),
            headers={"Prefer": f"count={self.count}"},
            resource=params.resource, operation="get_list",
        )
        rows = self._rows(self._json(response, resource=params.resource, operation="get_list"))
        total = parse_content_range(response.headers.get("Content-Range"))

        if total is not None and self.count == "exact":
            return self._list_result(rows, total=total)
        if params.pagination is None:
            return self._list_result(rows, total=len(rows))

        p = params.pagination
        if total is not None:
            # planned/estimated counts come from the query planner
            return self._list_result(rows, offset=p.offset, per_page=p.per_page,
                                     has_more=total > p.offset + len(rows))
        return self._list_result(rows, offset=p.offset, per_page=p.per_page,
                                 has_more=len(rows) >= p.per_page)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        name = self._resolve(params.resource, "get_one")
        query = [("select", "*")] + self._id_filter(params.id) + [("limit", 1)]
        response = await self._request("GET", f"/{name}", params=query,
                                       resource=params.resource, operation="get_one")
        rows = self._rows(self._json(response, resource=params.resource, operation="get_one"))
        return self._record_result(rows[0] if rows else None, resource=params.resource,
                                   record_id=params.id, operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        name = self._resolve(params.resource, "create")
        response = await self._request(
            "POST", f"/{name}", json=dict(params.variables),
            headers={"Prefer": "return=representation"},
            resource=params.resource, operation="create",
        )
        rows = self._rows(self._json(response, resource=params.resource, operation="create"))
        return self._record_result(rows[0] if rows else None, resource=params.resource,
                                   operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        name = self._resolve(params.resource, "update")
        response = await self._request(
            "PATCH", f"/{name}", params=self._id_filter(params.id), json=dict(params.variables),
            headers={"Prefer": "return=representation"},
            resource=params.resource, operation="update",
        )
        rows = self._rows(self._json(response, resource=params.resource, operation="update"))
        return self._record_result(rows[0] if rows else None, resource=params.resource,
                                   record_id=params.id, operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        name = self._resolve(params.resource, "delete_one")
        response = await self._request(
            "DELETE", f"/{name}", params=self._id_filter(params.id),
            headers={"Prefer": "return=representation"},
            resource=params.resource, operation="delete_one",
        )
        rows = self._rows(self._json(response, resource=params.resource, operation="delete_one"))
        return self._record_result(rows[0] if rows else None, resource=params.resource,
                                   record_id=params.id, operation="delete_one")


class SupabaseAdapter(PostgRESTAdapter):
    """Supabase REST API (PostgREST under ``/rest/v1`` with an ``apikey`` header)"""

    provider_type = "supabase"

    def __init__(self, *, url: Optional[str] = None, key: Optional[str] = None, **kwargs: Any):
        url = url or os.getenv("SUPABASE_URL")
        key = key or os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY")
        if not url or not key:
            raise AdapterConfigurationError("supabase provider requires url and key")
        headers = dict(kwargs.pop("headers", None) or {})
        headers.setdefault("apikey", key)
        kwargs.setdefault("auth", AuthConfig(type=AuthType.BEARER, token=key))
        super().__init__(base_url=f"{url.rstrip('/')}/rest/v1", headers=headers, **kwargs)
