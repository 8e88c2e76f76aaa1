# src/polycrud/adapters/MongoDBAdapter.py
from __future__ import annotations

import os
import re
import threading
from typing import Any, Dict, List, Optional, Tuple

from ..base.BaseProvider import BaseProvider
from ..errors import BackendRequestError, CrudError
from ..models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from ..query import FilterCondition, Operator, parse_filter, validate_pagination
from ..types import JsonDict


class MongoDBAdapter(BaseProvider):
    """MongoDB through pymongo; documents expose ``_id`` as ``id``"""

    provider_type = "mongodb"

    def __init__(
        self,
        *,
        uri: Optional[str] = None,
        database: Optional[str] = None,
        client: Any = None,
        server_selection_timeout_ms: int = 5000,
        resources: Optional[Dict[str, str]] = None,
        strict_resources: bool = False,
    ):
        super().__init__(resources=resources, strict_resources=strict_resources)
        self.mongo_uri = uri or os.getenv("MONGODB_URI", "mongodb://localhost:27017")
        self.db_name = database or os.getenv("MONGODB_DATABASE", "default")
        self.server_selection_timeout_ms = server_selection_timeout_ms
        self._client = client
        self._owns_client = client is None
        self._client_lock = threading.Lock()

    def _initialize_client(self) -> None:
        from pymongo import MongoClient

        with self._client_lock:
            if not self._client:
                self._client = MongoClient(
                    self.mongo_uri,
                    maxPoolSize=int(os.getenv("MONGODB_MAX_POOL_SIZE", "10")),
                    minPoolSize=int(os.getenv("MONGODB_MIN_POOL_SIZE", "0")),
                    serverSelectionTimeoutMS=self.server_selection_timeout_ms,
                )
                self.logger.info("MongoDB client initialized")

    def _get_collection(self, resource: str, operation: str):
        if not self._client:
            self._initialize_client()
        return self._client[self.db_name][self._resolve(resource, operation)]  # type: ignore

    @staticmethod
    def _object_id(value: Any) -> Any:
        from bson import ObjectId

        if isinstance(value, str) and ObjectId.is_valid(value):
            return ObjectId(value)
        return value

    @staticmethod
    def _field(name: str) -> str:
        return "_id" if name == "id" else name

    @classmethod
    def _value(cls, name: str, value: Any) -> Any:
        if name != "id":
            return value
        if isinstance(value, list):
            return [cls._object_id(v) for v in value]
        return cls._object_id(value)

    @classmethod
    def _condition(cls, f: FilterCondition) -> JsonDict:
        key = cls._field(f.field)
        value = cls._value(f.field, f.value)
        op = f.operator
        if op == Operator.EQ:
            return {key: value}
        if op in (Operator.NE, Operator.LT, Operator.LTE, Operator.GT, Operator.GTE):
            return {key: {f"${op.value}": value}}
        if op == Operator.IN:
            return {key: {"$in": value}}
        if op == Operator.NOT_IN:
            return {key: {"$nin": value}}
        if op == Operator.CONTAINS:
            return {key: {"$regex": re.escape(str(f.value)), "$options": "i"}}
        if op == Operator.STARTS_WITH:
            return {key: {"$regex": "^" + re.escape(str(f.value))}}
        if op == Operator.ENDS_WITH:
            return {key: {"$regex": re.escape(str(f.value)) + "$"}}
        if op == Operator.NULL:
            return {key: None}
        if op == Operator.NOT_NULL:
            return {key: {"$ne": None}}
        low, high = value
        return {key: {"$gte": low, "$lte": high}}

    @classmethod
    def to_mongo_filter(cls, filter: Optional[Dict[str, Any]]) -> JsonDict:
        """Translate a filter map into a MongoDB query document"""
        clauses = [cls._condition(f) for f in parse_filter(filter)]
        if not clauses:
            return {}
        if len(clauses) == 1:
            return clauses[0]
        return {"$and": clauses}

    @staticmethod
    def _normalize_doc(doc: Optional[JsonDict]) -> Optional[JsonDict]:
        if doc is None:
            return None
        doc = dict(doc)
        raw_id = doc.pop("_id", None)
        if raw_id is not None:
            doc["id"] = raw_id if isinstance(raw_id, (int, str)) else str(raw_id)
        return doc

    def _wrap(self, e: Exception, resource: str, operation: str, record_id: Any = None):
        transient = type(e).__name__ in (
            "AutoReconnect", "NetworkTimeout", "ServerSelectionTimeoutError", "ConnectionFailure",
        )
        return BackendRequestError(
            f"MongoDB {operation} on '{resource}' failed: {e}",
            backend_message=str(e),
            retryable=transient,
            resource=resource,
            record_id=record_id,
            operation=operation,
        )

    def _call(self, fn, resource: str, operation: str, record_id: Any = None):
        try:
            return fn()
        except CrudError:
            raise
        except Exception as e:
            raise self._wrap(e, resource, operation, record_id) from e

    def _list_sync(self, params: GetListParams) -> Tuple[List[JsonDict], int]:
        query = self.to_mongo_filter(params.filter)
        pagination = validate_pagination(params.pagination)

        def run():
            collection = self._get_collection(params.resource, "get_list")
            total = collection.count_documents(query)
            cursor = collection.find(query)
            if params.sort:
                cursor = cursor.sort(self._field(params.sort.field),
                                     -1 if params.sort.descending else 1)
            if pagination:
                cursor = cursor.skip(pagination.offset).limit(pagination.per_page)
            return [self._normalize_doc(doc) for doc in cursor], total

        return self._call(run, params.resource, "get_list")

    async def get_list(self, params: GetListParams) -> ListResult:
        rows, total = await self._to_thread(self._list_sync, params)
        return self._list_result(rows, total=total)

    async def get_one(self, params: GetOneParams) -> RecordResult:
        def run():
            collection = self._get_collection(params.resource, "get_one")
            return self._normalize_doc(collection.find_one({"_id": self._object_id(params.id)}))

        doc = await self._to_thread(self._call, run, params.resource, "get_one", params.id)
        return self._record_result(doc, resource=params.resource, record_id=params.id,
                                   operation="get_one")

    async def create(self, params: CreateParams) -> RecordResult:
        document = dict(params.variables)
        if document.get("id") is not None:
            # stored as the type lookups convert to, so hex ids become ObjectIds
            document["_id"] = self._object_id(document.pop("id"))
        else:
            document.pop("id", None)

        def run():
            collection = self._get_collection(params.resource, "create")
            result = collection.insert_one(document)
            stored = dict(document)
            stored["_id"] = result.inserted_id
            return self._normalize_doc(stored)

        doc = await self._to_thread(self._call, run, params.resource, "create")
        return self._record_result(doc, resource=params.resource, operation="create")

    async def update(self, params: UpdateParams) -> RecordResult:
        changes = {k: v for k, v in params.variables.items() if k not in ("id", "_id")}

        def run():
            from pymongo import ReturnDocument

            collection = self._get_collection(params.resource, "update")
            selector = {"_id": self._object_id(params.id)}
            if not changes:
                return self._normalize_doc(collection.find_one(selector))
            return self._normalize_doc(collection.find_one_and_update(
                selector, {"$set": changes}, return_document=ReturnDocument.AFTER,
            ))

        doc = await self._to_thread(self._call, run, params.resource, "update", params.id)
        return self._record_result(doc, resource=params.resource, record_id=params.id,
                                   operation="update")

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        def run():
            collection = self._get_collection(params.resource, "delete_one")
            return self._normalize_doc(
                collection.find_one_and_delete({"_id": self._object_id(params.id)})
            )

        doc = await self._to_thread(self._call, run, params.resource, "delete_one", params.id)
        return self._record_result(doc, resource=params.resource, record_id=params.id,
                                   operation="delete_one")

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None
