# src/polycrud/cache.py
"""
Redis read-through cache for providers
"""
from typing import Any, Dict, Optional
import asyncio
import hashlib
import json
import logging
import os
import threading

import redis

from .json_safe import dumps
from .models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    RecordResult,
    UpdateParams,
)
from .types import CrudProvider

logger = logging.getLogger(__name__)


class RedisCacheEngine:
    """Redis-based distributed cache"""

    def __init__(
        self,
        redis_url: Optional[str] = None,
        prefix: str = "polycrud:",
        default_ttl: int = 3600,
        client: Optional[Any] = None,
    ):
        self.prefix = prefix
        self.default_ttl = default_ttl
        self.redis_url = redis_url or os.getenv("REDIS_CACHE_URL")
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self):
        if self._client is None:
            with self._lock:
                if self._client is None:
                    if self.redis_url:
                        self._client = redis.from_url(self.redis_url)
                    else:
                        self._client = redis.Redis(
                            host=os.getenv('REDIS_HOST', 'localhost'),
                            port=int(os.getenv('REDIS_PORT', '6379')),
                            db=int(os.getenv('REDIS_DB', '0')),
                        )
                    logger.info("Redis cache client initialized")
        return self._client

    def _make_key(self, resource: str, query: Dict[str, Any]) -> str:
        """Generate cache key"""
        query_str = dumps(query, sort_keys=True)
        query_hash = hashlib.md5(query_str.encode()).hexdigest()
        return f"{self.prefix}{resource}:{query_hash}"

    def get(self, resource: str, query: Dict[str, Any]) -> Optional[Any]:
        key = self._make_key(resource, query)
        try:
            data = self._get_client().get(key)
        except redis.RedisError as e:
            logger.warning(f"Cache read failed for {key}: {e}")
            return None
        return json.loads(data) if data else None

    def set(self, resource: str, query: Dict[str, Any], value: Any, ttl: Optional[int] = None):
        """Set cache with TTL"""
        key = self._make_key(resource, query)
        try:
            self._get_client().setex(key, ttl or self.default_ttl, dumps(value))
        except redis.RedisError as e:
            logger.warning(f"Cache write failed for {key}: {e}")

    def invalidate(self, resource: str, query: Optional[Dict[str, Any]] = None):
        """Invalidate one query, or every cached query of a resource"""
        try:
            client = self._get_client()
            if query is not None:
                client.delete(self._make_key(resource, query))
                return
            keys = client.keys(f"{self.prefix}{resource}:*")
            if keys:
                client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache invalidation failed for {resource}: {e}")

    def clear(self):
        """Clear entire cache"""
        try:
            client = self._get_client()
            keys = client.keys(f"{self.prefix}*")
            if keys:
                client.delete(*keys)
        except redis.RedisError as e:
            logger.warning(f"Cache clear failed for {self.prefix}*: {e}")


class CachedProvider:
    """
    Caches get_list and get_one results of another provider.

    Any create, update or delete on a resource drops every cached entry
    for that resource. The redis client is blocking, so every cache call
    runs in a worker thread. Results served from the cache carry
    ``meta["cache_hit"] = True``.
    """

    def __init__(self, provider: CrudProvider, cache: RedisCacheEngine, ttl: Optional[int] = None):
        self.provider = provider
        self.cache = cache
        self.ttl = ttl

    @property
    def provider_type(self) -> str:
        return getattr(self.provider, "provider_type", self.provider.__class__.__name__)

    @staticmethod
    def _list_query(params: GetListParams) -> Dict[str, Any]:
        return {
            "op": "get_list",
            "pagination": [params.pagination.page, params.pagination.per_page]
            if params.pagination else None,
            "sort": [params.sort.field, params.sort.order.value] if params.sort else None,
            "filter": params.filter,
        }

    async def get_list(self, params: GetListParams) -> ListResult:
        query = self._list_query(params)
        cached = await asyncio.to_thread(self.cache.get, params.resource, query)
        if cached is not None:
            logger.debug(f"Cache hit: get_list {params.resource}")
            return ListResult(data=cached["data"], total=cached["total"],
                              estimated=cached.get("estimated", False),
                              meta={"cache_hit": True})

        result = await self.provider.get_list(params)
        await asyncio.to_thread(
            self.cache.set, params.resource, query,
            {"data": result.data, "total": result.total, "estimated": result.estimated},
            self.ttl,
        )
        return result

    async def get_one(self, params: GetOneParams) -> RecordResult:
        query = {"op": "get_one", "id": params.id}
        cached = await asyncio.to_thread(self.cache.get, params.resource, query)
        if cached is not None:
            logger.debug(f"Cache hit: get_one {params.resource}/{params.id}")
            return RecordResult(data=cached, meta={"cache_hit": True})

        result = await self.provider.get_one(params)
        await asyncio.to_thread(self.cache.set, params.resource, query, result.data, self.ttl)
        return result

    async def _invalidate(self, resource: str) -> None:
        await asyncio.to_thread(self.cache.invalidate, resource)

    async def create(self, params: CreateParams) -> RecordResult:
        result = await self.provider.create(params)
        await self._invalidate(params.resource)
        return result

    async def update(self, params: UpdateParams) -> RecordResult:
        result = await self.provider.update(params)
        await self._invalidate(params.resource)
        return result

    async def delete_one(self, params: DeleteParams) -> RecordResult:
        result = await self.provider.delete_one(params)
        await self._invalidate(params.resource)
        return result

    async def aclose(self) -> None:
        close = getattr(self.provider, "aclose", None)
        if close is not None:
            await close()
