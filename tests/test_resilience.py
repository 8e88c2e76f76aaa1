import fnmatch
from datetime import timedelta

import pytest
import redis

from conftest import SEED
from polycrud import create_crud_engine
from polycrud.adapters import MemoryAdapter
from polycrud.cache import CachedProvider, RedisCacheEngine
from polycrud.errors import BackendRequestError, NotFoundError
from polycrud.models import (
    CreateParams,
    DeleteParams,
    GetListParams,
    GetOneParams,
    ListResult,
    Pagination,
    UpdateParams,
)
from polycrud.monitoring import CallMetrics, HealthCheck, MetricsCollector, PerformanceMonitor
from polycrud.retry import RetryingProvider, is_retryable


class FlakyProvider(MemoryAdapter):
    """Fails the first ``failures`` calls of every operation"""

    def __init__(self, failures, status=503):
        super().__init__(SEED)
        self.failures = failures
        self.status = status
        self.calls = 0

    def _maybe_fail(self):
        self.calls += 1
        if self.calls <= self.failures:
            raise BackendRequestError("unavailable", status=self.status)

    async def get_list(self, params):
        self._maybe_fail()
        return await super().get_list(params)

    async def create(self, params):
        self._maybe_fail()
        return await super().create(params)


def no_wait(provider, **kwargs):
    return RetryingProvider(provider, multiplier=0, min_wait=0, max_wait=0, **kwargs)


# ==========================================================
# Retry
# ==========================================================

class TestRetryingProvider:

    @pytest.mark.asyncio
    async def test_read_recovers(self):
        flaky = FlakyProvider(failures=2)
        result = await no_wait(flaky).get_list(GetListParams("items"))
        assert result.total == 3
        assert flaky.calls == 3

    @pytest.mark.asyncio
    async def test_gives_up_after_attempts(self):
        flaky = FlakyProvider(failures=5)
        with pytest.raises(BackendRequestError):
            await no_wait(flaky, attempts=2).get_list(GetListParams("items"))
        assert flaky.calls == 2

    @pytest.mark.asyncio
    async def test_client_errors_not_retried(self):
        flaky = FlakyProvider(failures=1, status=400)
        with pytest.raises(BackendRequestError):
            await no_wait(flaky).get_list(GetListParams("items"))
        assert flaky.calls == 1

    @pytest.mark.asyncio
    async def test_not_found_not_retried(self):
        provider = no_wait(MemoryAdapter(SEED))
        with pytest.raises(NotFoundError):
            await provider.get_one(GetOneParams("items", 99))

    @pytest.mark.asyncio
    async def test_writes_not_retried_by_default(self):
        flaky = FlakyProvider(failures=1)
        with pytest.raises(BackendRequestError):
            await no_wait(flaky).create(CreateParams("items", {"name": "x"}))
        assert flaky.calls == 1

        flaky = FlakyProvider(failures=1)
        created = await no_wait(flaky, retry_writes=True).create(CreateParams("items", {"name": "x"}))
        assert created.data["id"] == 4

    @pytest.mark.asyncio
    async def test_usable_as_engine_provider(self):
        engine = create_crud_engine(no_wait(FlakyProvider(failures=1)))
        assert engine.provider_name == "mock"
        assert (await engine.get_list(GetListParams("items"))).total == 3

    def test_is_retryable(self):
        assert is_retryable(BackendRequestError("x", status=None))
        assert is_retryable(BackendRequestError("x", status=429))
        assert not is_retryable(BackendRequestError("x", status=409))
        assert not is_retryable(BackendRequestError("x", status=500, retryable=False))
        assert not is_retryable(ValueError("x"))

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryingProvider(MemoryAdapter(), attempts=0)


# ==========================================================
# Redis cache
# ==========================================================

class FakeRedis:
    def __init__(self):
        self.store = {}
        self.ttls = {}
        self.fail = False

    def _check(self):
        if self.fail:
            raise redis.ConnectionError("down")

    def get(self, key):
        self._check()
        return self.store.get(key)

    def setex(self, key, ttl, value):
        self._check()
        self.store[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    def keys(self, pattern):
        self._check()
        return [k for k in self.store if fnmatch.fnmatch(k, pattern)]

    def delete(self, *keys):
        self._check()
        for key in keys:
            self.store.pop(key, None)


class CountingProvider(MemoryAdapter):
    def __init__(self):
        super().__init__(SEED)
        self.reads = 0

    async def get_list(self, params):
        self.reads += 1
        return await super().get_list(params)

    async def get_one(self, params):
        self.reads += 1
        return await super().get_one(params)


class TestCachedProvider:

    @pytest.fixture
    def fake_redis(self):
        return FakeRedis()

    @pytest.fixture
    def backend(self):
        return CountingProvider()

    @pytest.fixture
    def cached(self, backend, fake_redis):
        return CachedProvider(backend, RedisCacheEngine(client=fake_redis), ttl=60)

    @pytest.mark.asyncio
    async def test_list_is_cached(self, cached, backend, fake_redis):
        params = GetListParams("items", Pagination(1, 2))

        first = await cached.get_list(params)
        second = await cached.get_list(params)

        assert backend.reads == 1
        assert isinstance(second, ListResult)
        assert second.data == first.data
        assert second.total == 3
        assert list(fake_redis.ttls.values()) == [60]

    @pytest.mark.asyncio
    async def test_different_queries_are_separate(self, cached, backend):
        await cached.get_list(GetListParams("items", Pagination(1, 2)))
        await cached.get_list(GetListParams("items", Pagination(2, 2)))
        assert backend.reads == 2

    @pytest.mark.asyncio
    async def test_get_one_is_cached(self, cached, backend):
        await cached.get_one(GetOneParams("items", 1))
        result = await cached.get_one(GetOneParams("items", 1))
        assert backend.reads == 1
        assert result.data == {"id": 1, "name": "a", "qty": 5}

    @pytest.mark.asyncio
    async def test_writes_invalidate_resource(self, cached, backend, fake_redis):
        await cached.get_list(GetListParams("items"))
        await cached.get_one(GetOneParams("items", 1))

        await cached.update(UpdateParams("items", 1, {"qty": 50}))
        assert fake_redis.store == {}

        result = await cached.get_one(GetOneParams("items", 1))
        assert result.data["qty"] == 50
        assert backend.reads == 3

        await cached.get_list(GetListParams("items"))
        await cached.delete_one(DeleteParams("items", 1))
        assert (await cached.get_list(GetListParams("items"))).total == 2

    @pytest.mark.asyncio
    async def test_cache_outage_falls_through(self, cached, backend, fake_redis):
        fake_redis.fail = True
        result = await cached.get_list(GetListParams("items"))
        assert result.total == 3
        assert backend.reads == 1

    def test_key_is_stable(self):
        cache = RedisCacheEngine(client=FakeRedis(), prefix="t:")
        first = cache._make_key("items", {"b": 1, "a": 2})
        second = cache._make_key("items", {"a": 2, "b": 1})
        assert first == second
        assert first.startswith("t:items:")

    def test_clear(self, fake_redis):
        cache = RedisCacheEngine(client=fake_redis)
        cache.set("items", {"op": "x"}, [1])
        fake_redis.store["other:key"] = b"1"

        cache.clear()

        assert list(fake_redis.store) == ["other:key"]

    def test_clear_during_outage_is_logged(self, fake_redis, caplog):
        cache = RedisCacheEngine(client=fake_redis)
        fake_redis.fail = True

        cache.clear()

        assert "Cache clear failed" in caplog.text

    @pytest.mark.asyncio
    async def test_invalidate_during_outage_keeps_write(self, cached, backend, fake_redis):
        fake_redis.fail = True
        result = await cached.update(UpdateParams("items", 1, {"qty": 7}))
        assert result.data["qty"] == 7

    @pytest.mark.asyncio
    async def test_hits_are_marked(self, cached):
        miss = await cached.get_one(GetOneParams("items", 1))
        hit = await cached.get_one(GetOneParams("items", 1))
        assert miss.meta is None
        assert hit.meta == {"cache_hit": True}

        await cached.get_list(GetListParams("items"))
        assert (await cached.get_list(GetListParams("items"))).meta == {"cache_hit": True}

    @pytest.mark.asyncio
    async def test_engine_metrics_count_hits(self, cached):
        metrics = MetricsCollector()
        engine = create_crud_engine(cached, metrics=metrics)

        await engine.get_list(GetListParams("items"))
        await engine.get_list(GetListParams("items"))

        assert [m.cache_hit for m in metrics.get_metrics()] == [False, True]
        assert metrics.aggregate().cache_hit_rate == 0.5


# ==========================================================
# Health check
# ==========================================================

class TestHealthCheck:

    @pytest.mark.asyncio
    async def test_healthy(self, memory_provider):
        report = await HealthCheck(memory_provider, "items").check()
        assert report["status"] == "healthy"
        assert report["provider"] == "mock"

    @pytest.mark.asyncio
    async def test_unhealthy(self):
        report = await HealthCheck(FlakyProvider(failures=1), "items").check()
        assert report["status"] == "unhealthy"
        assert "unavailable" in report["error"]


# ==========================================================
# Metrics
# ==========================================================

class TestMetricsCollector:

    def test_aggregate_by_provider_and_errors(self):
        metrics = MetricsCollector(slow_call_threshold_ms=50)
        metrics.record(CallMetrics("get_list", "items", 10.0, True, provider="rest", rows=5))
        metrics.record(CallMetrics("get_one", "items", 80.0, False, provider="rest",
                                   error_type="NotFoundError"))
        metrics.record(CallMetrics("create", "users", 20.0, True, provider="mock", rows=1))

        agg = metrics.aggregate()
        assert agg.total_calls == 3
        assert agg.rows_returned == 6
        assert agg.calls_by_provider == {"rest": 2, "mock": 1}
        assert agg.errors_by_type == {"NotFoundError": 1}
        assert agg.max_duration_ms == 80.0
        assert [m.operation for m in agg.slow_calls] == ["get_one"]
        assert agg.error_rate == pytest.approx(1 / 3)

        assert metrics.aggregate(provider="mock").total_calls == 1

    def test_empty_aggregate(self):
        agg = MetricsCollector().aggregate()
        assert agg.total_calls == 0
        assert agg.error_rate == 0.0

    def test_retention_is_bounded(self):
        metrics = MetricsCollector(max_records=2)
        for i in range(3):
            metrics.record(CallMetrics("get_one", f"r{i}", 1.0, True))
        assert [m.resource for m in metrics.get_metrics()] == ["r1", "r2"]

    def test_prune(self):
        metrics = MetricsCollector()
        metrics.record(CallMetrics("get_one", "items", 1.0, True))
        assert metrics.prune(timedelta(hours=1)) == 0
        assert metrics.prune(timedelta(seconds=-1)) == 1
        assert metrics.get_metrics() == []

    def test_failing_hook_does_not_break_recording(self):
        metrics = MetricsCollector()
        seen = []

        def broken(metric):
            raise RuntimeError("observer down")

        metrics.register_hook(broken)
        metrics.register_hook(seen.append)
        metrics.record(CallMetrics("get_one", "items", 1.0, True))
        assert len(seen) == 1
        assert len(metrics.get_metrics()) == 1

    def test_performance_monitor_records_error_type(self):
        metrics = MetricsCollector()
        with pytest.raises(NotFoundError):
            with PerformanceMonitor(metrics, "get_one", "items", provider="mock"):
                raise NotFoundError("gone")
        (metric,) = metrics.get_metrics()
        assert metric.success is False
        assert metric.error_type == "NotFoundError"

    def test_prometheus_export(self):
        metrics = MetricsCollector()
        metrics.record(CallMetrics("get_list", "items", 3.0, True))
        metrics.record(CallMetrics("get_list", "items", 5.0, False))
        text = metrics.export_prometheus()
        assert "polycrud_calls_total 2" in text
        assert "polycrud_calls_failed_total 1" in text
        assert 'polycrud_calls_by_operation_total{operation="get_list"} 2' in text
