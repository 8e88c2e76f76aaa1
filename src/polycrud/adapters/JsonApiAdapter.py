# src/polycrud/adapters/JsonApiAdapter.py
from __future__ import annotations

from typing import Any, Dict, Optional
from urllib.parse import quote

from ..base.HttpProvider import HttpProvider, QueryParams
from ..errors import TranslationError
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

MEDIA_TYPE = "application/vnd.api+json"


class JsonApiAdapter(HttpProvider):
    """JSON:API backend (``page[number]``, ``sort=-field``, ``filter[field]``)"""

    provider_type = "jsonapi"

    def __init__(self, *, type_names: Optional[Dict[str, str]] = None, **kwargs: Any):
        super().__init__(**kwargs)
        # resource -> JSON:API "type" member, defaults to the endpoint name
        self.type_names = dict(type_names or {})

    def _build_headers(self) -> Dict[str, str]:
        headers = super()._build_headers()
        headers["Accept"] = MEDIA_TYPE
        return headers

    def _type_name(self, resource: str, name: str) -> str:
        return self.type_names.get(resource, name)

    def _path(self, name: str, record_id: Any = None) -> str:
        if record_id is None:
            return f"/{name}"
        return f"/{name}/{quote(str(record_id), safe='')}"

    @staticmethod
    def _flatten(resource_object: Dict[str, Any]) -> Record:
        record: Record = {"id": resource_object.get("id")}
        record.update(resource_object.get("attributes") or {})
        relationships = resource_object.get("relationships") or {}
        for key, rel in relationships.items():
            data = rel.get("data") if isinstance(rel, dict) else None
            if isinstance(data, dict):
                record.setdefault(key, data.get("id"))
            elif isinstance(data, list):
                record.setdefault(key, [item.get("id") for item in data])
        return record

    def _document(self, resource: str, name: str, variables: Record,
                  record_id: Any = None) -> Dict[str, Any]:
        attributes = {k: v for k, v in variables.items() if k != "id"}
        data: Dict[str, Any] = {"type": self._type_name(resource, name), "attributes": attributes}
        if record_id is not None:
            data["id"] = str(record_id)
        elif variables.get("id") is not None:
            data["id"] = str(variables["id"])
        return {"data": data}

    def _list_query(self, params: GetListParams) -> QueryParams:
        query: QueryParams = []
        pagination = validate_pagination(params.pagination)
        if pagination:
            query.append(("page[number]", pagination.page))
            query.append(("page[size]", pagination.per_page))
        if params.sort:
            prefix = "-" if params.sort.descending else ""
            query.append(("sort", f"{prefix}{params.sort.field}"))
        for f in parse_filter(params.filter):
            if f.operator == Operator.EQ:
                query.append((f"filter[{f.field}]", str(f.value)))
            elif f.operator == Operator.IN:
                query.append((f"filter[{f.field}]", ",".join(str(v) for v in f.value)))
            else:
                raise TranslationError(
                    f"JSON:API provider only supports equality and membership filters, "
                    f"got '{f.operator.value}' on '{f.field}'",
                    resource=params.resource,
                    operation="get_list",
                )
        return query

    @staticmethod
    def _meta_total(body: Dict[str, Any]) -> Optional[int]:
        meta = body.get("meta") or {}
        for candidate in (meta.get("total"), meta.get("count"), (meta.get("page") or {}).get("total")):
            if isinstance(candidate, int):
                return candidate
        return None

    async def get_list(self, params: GetListParams) -> ListResult:
        name = self._resolve(params.resource, "get_list")
        response = await self._request("GET", self._path(name), params=self._list_query(params),
                                       resource=params.resource, operation="get_list")
        body = self._json(response, resource=params.resource, operation="get_list") or {}
        rows = [self._flatten(item) for item in body.get("data") or []]

        total = self._meta_total(body)
        if total is not None or params.pagination is None:
            return self._list_result(rows, total=total if total is not None else len(rows))

        has_more = bool((body.get("links") or {}).get("next"))
        p = params.pagination
        return self._list_result(rows, offset=p.offset, per_page=p.per_page, has_more=has_more)

    async def _single(self, response, resource: str, record_id: Any, operation: str) -> RecordResult:
        body = self._json(response, resource=resource, operation=operation) or {}
        data = body.get("data")
        record = self._flatten(data) if isinstance(data, dict) else None
        return self._record_result(record, resource=resource, record_id=record_id,
                                   operation=operation)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        name = self._resolve(params.resource, "get_one")
        response = await self._request("GET", self._path(name, params.id),
                                       resource=params.resource, record_id=params.id,
                                       operation="get_one")
        return await self._single(response, params.resource, params.id, "get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        name = self._resolve(params.resource, "create")
        response = await self._request(
            "POST", self._path(name),
            json=self._document(params.resource, name, dict(params.variables)),
            headers={"Content-Type": MEDIA_TYPE},
            resource=params.resource, operation="create",
        )
        return await self._single(response, params.resource, None, "create")

    async def update(self, params: UpdateParams) -> RecordResult:
        name = self._resolve(params.resource, "update")
        response = await self._request(
            "PATCH", self._path(name, params.id),
            json=self._document(params.resource, name, dict(params.variables), params.id),
            headers={"Content-Type": MEDIA_TYPE},
            resource=params.resource, record_id=params.id, operation="update",
        )
        if response.status_code == 204:
            return await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        return await self._single(response, params.resource, params.id, "update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        previous = await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        name = self._resolve(params.resource, "delete_one")
        await self._request("DELETE", self._path(name, params.id),
                            resource=params.resource, record_id=params.id,
                            operation="delete_one")
        return previous
