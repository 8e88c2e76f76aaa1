# src/polycrud/adapters/RestAdapter.py
from __future__ import annotations

import re
from typing import Any, Optional, Tuple
from urllib.parse import quote, unquote

from ..base.HttpProvider import HttpProvider, QueryParams
from ..errors import AdapterConfigurationError, BackendRequestError, TranslationError
from ..models import (
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


def _scalar(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


class RestAdapter(HttpProvider):
    """
    Plain REST backend following the json-server conventions:
    ``_page``/``_limit`` pagination, ``_sort``/``_order`` sorting, field
    suffixes for operators and an ``X-Total-Count`` header for totals.
    """

    provider_type = "rest"

    def __init__(self, *, update_method: str = "PUT", total_header: str = "X-Total-Count",
                 **kwargs: Any):
        super().__init__(**kwargs)
        update_method = update_method.upper()
        if update_method not in ("PUT", "PATCH"):
            raise AdapterConfigurationError(f"update_method must be PUT or PATCH, got {update_method}")
        self.update_method = update_method
        self.total_header = total_header

    def _path(self, name: str, record_id: Any = None) -> str:
        if record_id is None:
            return f"/{name}"
        return f"/{name}/{quote(str(record_id), safe='')}"

    def _filter_params(self, params: GetListParams) -> QueryParams:
        query: QueryParams = []
        for f in parse_filter(params.filter):
            if f.operator == Operator.EQ:
                query.append((f.field, _scalar(f.value)))
            elif f.operator == Operator.NE:
                query.append((f"{f.field}_ne", _scalar(f.value)))
            elif f.operator == Operator.GTE:
                query.append((f"{f.field}_gte", _scalar(f.value)))
            elif f.operator == Operator.LTE:
                query.append((f"{f.field}_lte", _scalar(f.value)))
            elif f.operator == Operator.BETWEEN:
                low, high = f.value
                query.append((f"{f.field}_gte", _scalar(low)))
                query.append((f"{f.field}_lte", _scalar(high)))
            elif f.operator == Operator.IN:
                query.extend((f.field, _scalar(v)) for v in f.value)
            elif f.operator == Operator.CONTAINS:
                query.append((f"{f.field}_like", re.escape(str(f.value))))
            elif f.operator == Operator.STARTS_WITH:
                query.append((f"{f.field}_like", "^" + re.escape(str(f.value))))
            elif f.operator == Operator.ENDS_WITH:
                query.append((f"{f.field}_like", re.escape(str(f.value)) + "$"))
            else:
                raise TranslationError(
                    f"REST provider cannot express operator '{f.operator.value}' on '{f.field}'",
                    resource=params.resource,
                    operation="get_list",
                )
        return query

    def _list_query(self, params: GetListParams) -> QueryParams:
        query: QueryParams = []
        pagination = validate_pagination(params.pagination)
        if pagination:
            query.append(("_page", pagination.page))
            query.append(("_limit", pagination.per_page))
        if params.sort:
            query.append(("_sort", params.sort.field))
            query.append(("_order", params.sort.order.value))
        query.extend(self._filter_params(params))
        return query

    # envelope keys holding the rows of a list response, in lookup order
    list_keys = ("data", "items", "results", "nodes")

    @staticmethod
    def _unwrap(body: Any, keys: Tuple[str, ...] = ("data",)) -> Any:
        if isinstance(body, dict) and "id" not in body:
            for key in keys:
                if key in body:
                    return body[key]
        return body

    def _body_total(self, body: Any) -> Optional[int]:
        if isinstance(body, dict):
            for key in ("total", "count", "totalCount"):
                if isinstance(body.get(key), int):
                    return body[key]
        return None

    async def get_list(self, params: GetListParams) -> ListResult:
        name = self._resolve(params.resource, "get_list")
        query = self._list_query(params)
        response = await self._request("GET", self._path(name), params=query,
                                       resource=params.resource, operation="get_list")
        body = self._json(response, resource=params.resource, operation="get_list")
        rows = [] if body is None else self._unwrap(body, self.list_keys)
        if not isinstance(rows, list):
            raise BackendRequestError(
                f"Unrecognized list payload for '{params.resource}'",
                status=response.status_code,
                backend_message=str(body)[:200],
                resource=params.resource,
                operation="get_list",
            )

        header = response.headers.get(self.total_header)
        if header and header.isdigit():
            return self._list_result(rows, total=int(header))

        total = self._body_total(body)
        if total is not None or params.pagination is None:
            return self._list_result(rows, total=total if total is not None else len(rows))

        p = params.pagination
        return self._list_result(rows, offset=p.offset, per_page=p.per_page,
                                 has_more=len(rows) >= p.per_page)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        name = self._resolve(params.resource, "get_one")
        response = await self._request("GET", self._path(name, params.id),
                                       resource=params.resource, record_id=params.id,
                                       operation="get_one")
        body = self._unwrap(self._json(response, resource=params.resource, operation="get_one"))
        return self._record_result(body or None, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        name = self._resolve(params.resource, "create")
        response = await self._request("POST", self._path(name), json=dict(params.variables),
                                       resource=params.resource, operation="create")
        body = self._unwrap(self._json(response, resource=params.resource, operation="create"))
        if not body:
            body = self._echo_created(response, params)
        return self._record_result(body, resource=params.resource, operation="create")

    @staticmethod
    def _echo_created(response: Any, params: CreateParams) -> Record:
        """Record for a bodiless create: the sent fields plus an id from Location"""
        record = dict(params.variables)
        location = response.headers.get("Location")
        if location:
            record["id"] = unquote(location.rstrip("/").rsplit("/", 1)[-1])
        if record.get("id") is None:
            raise BackendRequestError(
                f"Create on '{params.resource}' returned {response.status_code} "
                f"without a body or Location header",
                status=response.status_code,
                retryable=False,
                resource=params.resource,
                operation="create",
            )
        return record

    async def update(self, params: UpdateParams) -> RecordResult:
        name = self._resolve(params.resource, "update")
        response = await self._request(self.update_method, self._path(name, params.id),
                                       json=dict(params.variables),
                                       resource=params.resource, record_id=params.id,
                                       operation="update")
        body = self._unwrap(self._json(response, resource=params.resource, operation="update"))
        if not body:
            body = dict(params.variables, id=params.id)
        return self._record_result(body, resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        previous = await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        name = self._resolve(params.resource, "delete_one")
        await self._request("DELETE", self._path(name, params.id),
                            resource=params.resource, record_id=params.id,
                            operation="delete_one")
        return previous
