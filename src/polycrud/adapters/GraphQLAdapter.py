# src/polycrud/adapters/GraphQLAdapter.py
from __future__ import annotations

from typing import Any, Dict, List, Optional

from ..base.HttpProvider import HttpProvider
from ..errors import AdapterConfigurationError, BackendRequestError
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

OPERATIONS = ("get_list", "get_one", "create", "update", "delete")


def _capitalize(name: str) -> str:
    return name[:1].upper() + name[1:]


class GraphQLAdapter(HttpProvider):
    """
    GraphQL backend.

    Each resource maps to a GraphQL type name (``resources``). Documents are
    generated from that name unless a per-resource override is supplied in
    ``queries`` (keys: get_list, get_one, create, update, delete). Generated
    documents select the fields listed in ``fields`` for that resource.
    """

    provider_type = "graphql"

    def __init__(
        self,
        *,
        path: str = "",
        queries: Optional[Dict[str, Dict[str, str]]] = None,
        fields: Optional[Dict[str, List[str]]] = None,
        **kwargs: Any,
    ):
        super().__init__(**kwargs)
        self.path = path
        self.queries = {k: dict(v) for k, v in (queries or {}).items()}
        self.fields = {k: list(v) for k, v in (fields or {}).items()}
        for resource, docs in self.queries.items():
            unknown = set(docs) - set(OPERATIONS)
            if unknown:
                raise AdapterConfigurationError(
                    f"Unknown GraphQL operation(s) for '{resource}': {', '.join(sorted(unknown))}"
                )

    def _selection(self, resource: str) -> str:
        names = self.fields.get(resource) or []
        if "id" not in names:
            names = ["id"] + names
        return " ".join(names)

    def _document(self, resource: str, type_name: str, operation: str) -> str:
        custom = self.queries.get(resource, {}).get(operation)
        if custom:
            return custom

        cap = _capitalize(type_name)
        selection = self._selection(resource)
        if operation == "get_list":
            return (
                f"query GetList($page: Int, $perPage: Int, $sortField: String, "
                f"$sortOrder: String, $filter: {cap}Filter) {{ "
                f"{type_name}s(page: $page, perPage: $perPage, sortField: $sortField, "
                f"sortOrder: $sortOrder, filter: $filter) {{ data {{ {selection} }} total }} }}"
            )
        if operation == "get_one":
            return f"query GetOne($id: ID!) {{ {type_name}(id: $id) {{ {selection} }} }}"
        if operation == "create":
            return (f"mutation Create($input: {cap}Input!) {{ "
                    f"create{cap}(input: $input) {{ {selection} }} }}")
        if operation == "update":
            return (f"mutation Update($id: ID!, $input: {cap}Input!) {{ "
                    f"update{cap}(id: $id, input: $input) {{ {selection} }} }}")
        return f"mutation Delete($id: ID!) {{ delete{cap}(id: $id) {{ id }} }}"

    async def _execute(self, document: str, variables: Dict[str, Any], *, resource: str,
                       operation: str, record_id: Any = None) -> Dict[str, Any]:
        response = await self._request(
            "POST", self.path or "/",
            json={"query": document, "variables": variables},
            resource=resource, operation=operation,
        )
        body = self._json(response, resource=resource, operation=operation) or {}
        errors = body.get("errors")
        if errors:
            message = ", ".join(
                str(e.get("message")) if isinstance(e, dict) else str(e) for e in errors
            )
            raise BackendRequestError(
                f"GraphQL {operation} on '{resource}' failed: {message}",
                status=response.status_code,
                backend_message=message,
                resource=resource,
                record_id=record_id,
                operation=operation,
            )
        return body.get("data") or {}

    @staticmethod
    def _root(data: Dict[str, Any], *candidates: str) -> Any:
        for key in candidates:
            if key in data:
                return data[key]
        if len(data) == 1:
            return next(iter(data.values()))
        return None

    @staticmethod
    def _filter_variable(params: GetListParams) -> Optional[Dict[str, Any]]:
        conditions = parse_filter(params.filter)
        if not conditions:
            return None
        result: Dict[str, Any] = {}
        for f in conditions:
            if f.operator == Operator.EQ:
                result[f.field] = f.value
            elif f.operator in (Operator.NULL, Operator.NOT_NULL):
                result[f.field] = {f.operator.value: True}
            else:
                result[f.field] = {f.operator.value: f.value}
        return result

    async def get_list(self, params: GetListParams) -> ListResult:
        type_name = self._resolve(params.resource, "get_list")
        pagination = validate_pagination(params.pagination)
        variables = {
            "page": pagination.page if pagination else None,
            "perPage": pagination.per_page if pagination else None,
            "sortField": params.sort.field if params.sort else None,
            "sortOrder": params.sort.order.value if params.sort else None,
            "filter": self._filter_variable(params),
        }
        data = await self._execute(self._document(params.resource, type_name, "get_list"),
                                   variables, resource=params.resource, operation="get_list")
        payload = self._root(data, f"{type_name}s", params.resource, "result")

        rows: Any = None
        total: Optional[int] = None
        if isinstance(payload, list):
            rows = payload
        elif isinstance(payload, dict):
            rows = next((payload[k] for k in ("data", "items", "nodes") if k in payload), None)
            total = next((payload[k] for k in ("total", "count", "totalCount")
                          if isinstance(payload.get(k), int)), None)
        if not isinstance(rows, list):
            raise BackendRequestError(
                f"Unrecognized list payload for '{params.resource}'",
                backend_message=str(payload)[:200],
                retryable=False,
                resource=params.resource,
                operation="get_list",
            )

        if total is not None or pagination is None:
            return self._list_result(rows, total=total if total is not None else len(rows))
        return self._list_result(rows, offset=pagination.offset, per_page=pagination.per_page,
                                 has_more=len(rows) >= pagination.per_page)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        type_name = self._resolve(params.resource, "get_one")
        data = await self._execute(self._document(params.resource, type_name, "get_one"),
                                   {"id": params.id}, resource=params.resource,
                                   operation="get_one", record_id=params.id)
        record = self._root(data, type_name, params.resource)
        return self._record_result(record, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        type_name = self._resolve(params.resource, "create")
        data = await self._execute(self._document(params.resource, type_name, "create"),
                                   {"input": dict(params.variables)},
                                   resource=params.resource, operation="create")
        record: Optional[Record] = self._root(data, f"create{_capitalize(type_name)}")
        return self._record_result(record, resource=params.resource, operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        type_name = self._resolve(params.resource, "update")
        data = await self._execute(self._document(params.resource, type_name, "update"),
                                   {"id": params.id, "input": dict(params.variables)},
                                   resource=params.resource, operation="update",
                                   record_id=params.id)
        record = self._root(data, f"update{_capitalize(type_name)}")
        return self._record_result(record, resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        previous = await self.get_one(GetOneParams(params.resource, params.id, params.meta))
        type_name = self._resolve(params.resource, "delete_one")
        data = await self._execute(self._document(params.resource, type_name, "delete"),
                                   {"id": params.id}, resource=params.resource,
                                   operation="delete_one", record_id=params.id)
        if self._root(data, f"delete{_capitalize(type_name)}") is None:
            raise self._not_found(params.resource, params.id, "delete_one")
        return previous
