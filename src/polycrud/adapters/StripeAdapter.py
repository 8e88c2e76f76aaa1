# src/polycrud/adapters/StripeAdapter.py
from __future__ import annotations

import os
from typing import Any, Dict, List, Optional, Tuple
from urllib.parse import quote

from ..base.CursorCache import CursorCache
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
    Record,
    RecordResult,
    UpdateParams,
)
from ..query import Operator, parse_filter, validate_pagination

MAX_PAGE_SIZE = 100

STRIPE_RESOURCES = {
    "customers": "customers",
    "products": "products",
    "prices": "prices",
    "subscriptions": "subscriptions",
    "invoices": "invoices",
    "payment_methods": "payment_methods",
    "payment_intents": "payment_intents",
    "charges": "charges",
    "refunds": "refunds",
    "coupons": "coupons",
    "plans": "plans",
}

# operators Stripe list endpoints accept as ``field[op]=value``
_RANGE_OPERATORS = (Operator.GT, Operator.GTE, Operator.LT, Operator.LTE)


def _form_value(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def form_encode(data: Dict[str, Any], prefix: str = "") -> Dict[str, str]:
    """Flatten nested dicts and lists into Stripe's ``a[b][0][c]`` form keys"""
    out: Dict[str, str] = {}
    for key, value in data.items():
        name = f"{prefix}[{key}]" if prefix else str(key)
        if isinstance(value, dict):
            out.update(form_encode(value, name))
        elif isinstance(value, (list, tuple)):
            for i, item in enumerate(value):
                item_name = f"{name}[{i}]"
                if isinstance(item, dict):
                    out.update(form_encode(item, item_name))
                else:
                    out[item_name] = _form_value(item)
        else:
            out[name] = _form_value(value)
    return out


class StripeAdapter(HttpProvider):
    """
    Stripe REST API.

    Only the mapped Stripe resources are available. Lists are cursor-paginated
    with ``starting_after``: page N is reached by threading the last object id
    of each page, and the ids are cached per query. Stripe does not report
    totals, so list totals are estimates unless the last page was reached.
    """

    provider_type = "stripe"

    def __init__(
        self,
        *,
        api_key: Optional[str] = None,
        api_version: Optional[str] = None,
        api_url: str = "https://api.stripe.com/v1",
        resources: Optional[Dict[str, str]] = None,
        cursor_cache_size: int = 128,
        **kwargs: Any,
    ):
        api_key = api_key or os.getenv("STRIPE_API_KEY")
        if not api_key:
            raise AdapterConfigurationError("stripe provider requires api_key")
        kwargs.setdefault("auth", AuthConfig(type=AuthType.BEARER, token=api_key))
        headers = dict(kwargs.pop("headers", None) or {})
        api_version = api_version or os.getenv("STRIPE_API_VERSION")
        if api_version:
            headers["Stripe-Version"] = api_version
        kwargs.pop("strict_resources", None)
        mapping = dict(STRIPE_RESOURCES)
        mapping.update(resources or {})
        super().__init__(base_url=api_url, headers=headers, resources=mapping,
                         strict_resources=True, **kwargs)
        self.cursors = CursorCache(cursor_cache_size)

    def _path(self, name: str, record_id: Any = None) -> str:
        if record_id is None:
            return f"/{name}"
        return f"/{name}/{quote(str(record_id), safe='')}"

    def _base_query(self, params: GetListParams, per_page: int) -> QueryParams:
        if params.sort:
            raise TranslationError("Stripe lists cannot be sorted",
                                   resource=params.resource, operation="get_list")
        query: QueryParams = [("limit", per_page)]
        for f in parse_filter(params.filter):
            if f.operator == Operator.EQ:
                query.append((f.field, _form_value(f.value)))
            elif f.operator in _RANGE_OPERATORS:
                query.append((f"{f.field}[{f.operator.value}]", _form_value(f.value)))
            elif f.operator == Operator.BETWEEN:
                low, high = f.value
                query.append((f"{f.field}[gte]", _form_value(low)))
                query.append((f"{f.field}[lte]", _form_value(high)))
            else:
                raise TranslationError(
                    f"Stripe cannot filter '{f.field}' with operator '{f.operator.value}'",
                    resource=params.resource, operation="get_list",
                )
        return query

    async def _fetch_page(self, name: str, resource: str, query: QueryParams,
                          token: Optional[str]) -> Tuple[List[Record], Optional[str]]:
        page_query = list(query)
        if token:
            page_query.append(("starting_after", token))
        response = await self._request("GET", self._path(name), params=page_query,
                                       resource=resource, operation="get_list")
        body = self._json(response, resource=resource, operation="get_list") or {}
        rows = list(body.get("data") or [])
        next_token = rows[-1].get("id") if body.get("has_more") and rows else None
        return rows, next_token

    async def get_list(self, params: GetListParams) -> ListResult:
        name = self._resolve(params.resource, "get_list")
        pagination = validate_pagination(params.pagination)

        if pagination is None:
            query = self._base_query(params, MAX_PAGE_SIZE)
            rows: List[Record] = []
            token: Optional[str] = None
            while True:
                batch, token = await self._fetch_page(name, params.resource, query, token)
                rows.extend(batch)
                if not token:
                    return self._list_result(rows, total=len(rows))

        if pagination.per_page > MAX_PAGE_SIZE:
            raise TranslationError(
                f"Stripe page size is limited to {MAX_PAGE_SIZE}, got {pagination.per_page}",
                resource=params.resource, operation="get_list",
            )

        query = self._base_query(params, pagination.per_page)
        key = CursorCache.key(name, query)

        async def fetch(token: Optional[str]) -> Tuple[List[Record], Optional[str]]:
            return await self._fetch_page(name, params.resource, query, token)

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
        name = self._resolve(params.resource, "get_one")
        response = await self._request("GET", self._path(name, params.id),
                                       resource=params.resource, record_id=params.id,
                                       operation="get_one")
        body = self._json(response, resource=params.resource, operation="get_one")
        if isinstance(body, dict) and body.get("deleted") is True:
            # deleted customers stay readable as tombstones
            raise self._not_found(params.resource, params.id, "get_one")
        return self._record_result(body, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    def _invalidate(self, name: str) -> None:
        self.cursors.invalidate(CursorCache.key(name)[:-1])

    async def create(self, params: CreateParams) -> RecordResult:
        name = self._resolve(params.resource, "create")
        fields = {k: v for k, v in params.variables.items() if k != "id"}
        response = await self._request("POST", self._path(name), data=form_encode(fields),
                                       resource=params.resource, operation="create")
        self._invalidate(name)
        body = self._json(response, resource=params.resource, operation="create")
        return self._record_result(body, resource=params.resource, operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        # Stripe updates are POSTs to the object URL
        name = self._resolve(params.resource, "update")
        fields = {k: v for k, v in params.variables.items() if k != "id"}
        response = await self._request("POST", self._path(name, params.id),
                                       data=form_encode(fields),
                                       resource=params.resource, record_id=params.id,
                                       operation="update")
        self._invalidate(name)
        body = self._json(response, resource=params.resource, operation="update")
        return self._record_result(body, resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        previous = await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        name = self._resolve(params.resource, "delete_one")
        await self._request("DELETE", self._path(name, params.id),
                            resource=params.resource, record_id=params.id,
                            operation="delete_one")
        self._invalidate(name)
        return previous
