# src/polycrud/monitoring.py
"""
Provider call metrics, aggregation and health checks
"""
from typing import Dict, Any, Optional, List, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from collections import Counter, deque
import threading
import time
import logging

from .models import GetListParams, Pagination


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _percentile(sorted_values: List[float], pct: float) -> float:
    if not sorted_values:
        return 0.0
    index = min(len(sorted_values) - 1, int(round(pct / 100 * (len(sorted_values) - 1))))
    return sorted_values[index]


@dataclass
class CallMetrics:
    """One provider call as seen by the engine"""
    operation: str
    resource: str
    duration_ms: float
    success: bool
    provider: Optional[str] = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    timestamp: datetime = field(default_factory=_utcnow)
    tenant_id: Optional[str] = None
    actor_id: Optional[str] = None
    rows: Optional[int] = None
    cache_hit: bool = False


@dataclass
class AggregatedMetrics:
    total_calls: int = 0
    successful_calls: int = 0
    failed_calls: int = 0
    total_duration_ms: float = 0.0
    avg_duration_ms: float = 0.0
    p95_duration_ms: float = 0.0
    max_duration_ms: float = 0.0
    rows_returned: int = 0
    cache_hit_rate: float = 0.0
    calls_by_operation: Dict[str, int] = field(default_factory=dict)
    calls_by_provider: Dict[str, int] = field(default_factory=dict)
    errors_by_type: Dict[str, int] = field(default_factory=dict)
    slow_calls: List[CallMetrics] = field(default_factory=list)

    @property
    def error_rate(self) -> float:
        return self.failed_calls / self.total_calls if self.total_calls else 0.0


class MetricsCollector:
    """
    Thread-safe store of recent call metrics.

    Only the newest ``max_records`` calls are kept. Observers registered
    with ``register_hook`` see every call; an observer that raises is logged
    and skipped.
    """

    def __init__(self, slow_call_threshold_ms: float = 1000.0, max_records: int = 10000):
        self.slow_call_threshold = slow_call_threshold_ms
        self._metrics: "deque[CallMetrics]" = deque(maxlen=max_records)
        self._lock = threading.Lock()
        self._hooks: List[Callable[[CallMetrics], None]] = []
        self.logger = logging.getLogger(__name__)

    def record(self, metric: CallMetrics):
        with self._lock:
            self._metrics.append(metric)
            hooks = list(self._hooks)

        if metric.duration_ms > self.slow_call_threshold:
            self.logger.warning(
                f"Slow call: {metric.provider or '?'} {metric.operation} "
                f"'{metric.resource}' took {metric.duration_ms:.2f}ms"
            )

        for hook in hooks:
            try:
                hook(metric)
            except Exception:
                self.logger.exception("Metrics hook failed")

    def register_hook(self, hook: Callable[[CallMetrics], None]):
        with self._lock:
            self._hooks.append(hook)

    def get_metrics(
        self,
        since: Optional[datetime] = None,
        resource: Optional[str] = None,
        operation: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> List[CallMetrics]:
        with self._lock:
            metrics: Iterable[CallMetrics] = list(self._metrics)

        return [
            m for m in metrics
            if (since is None or m.timestamp >= since)
            and (resource is None or m.resource == resource)
            and (operation is None or m.operation == operation)
            and (provider is None or m.provider == provider)
        ]

    def aggregate(
        self,
        since: Optional[datetime] = None,
        resource: Optional[str] = None,
        provider: Optional[str] = None,
    ) -> AggregatedMetrics:
        metrics = self.get_metrics(since=since, resource=resource, provider=provider)
        agg = AggregatedMetrics()
        if not metrics:
            return agg

        durations = sorted(m.duration_ms for m in metrics)
        agg.total_calls = len(metrics)
        agg.successful_calls = sum(1 for m in metrics if m.success)
        agg.failed_calls = agg.total_calls - agg.successful_calls
        agg.total_duration_ms = sum(durations)
        agg.avg_duration_ms = agg.total_duration_ms / agg.total_calls
        agg.p95_duration_ms = _percentile(durations, 95)
        agg.max_duration_ms = durations[-1]
        agg.rows_returned = sum(m.rows or 0 for m in metrics if m.success)
        agg.cache_hit_rate = sum(1 for m in metrics if m.cache_hit) / agg.total_calls
        agg.calls_by_operation = dict(Counter(m.operation for m in metrics))
        agg.calls_by_provider = dict(Counter(m.provider or "unknown" for m in metrics))
        agg.errors_by_type = dict(Counter(m.error_type for m in metrics if m.error_type))
        agg.slow_calls = [m for m in metrics if m.duration_ms > self.slow_call_threshold]
        return agg

    def prune(self, older_than: timedelta) -> int:
        """Drop metrics older than ``older_than``; returns how many were dropped"""
        cutoff = _utcnow() - older_than
        with self._lock:
            kept = [m for m in self._metrics if m.timestamp >= cutoff]
            dropped = len(self._metrics) - len(kept)
            self._metrics.clear()
            self._metrics.extend(kept)
        return dropped

    def export_prometheus(self) -> str:
        """Prometheus text exposition of the aggregate plus per-operation counters"""
        agg = self.aggregate()

        lines = [
            "# HELP polycrud_calls_total Provider calls made through the engine",
            "# TYPE polycrud_calls_total counter",
            f"polycrud_calls_total {agg.total_calls}",
            "# HELP polycrud_calls_failed_total Provider calls that raised",
            "# TYPE polycrud_calls_failed_total counter",
            f"polycrud_calls_failed_total {agg.failed_calls}",
            "# HELP polycrud_call_duration_ms Provider call duration",
            "# TYPE polycrud_call_duration_ms summary",
            f'polycrud_call_duration_ms{{quantile="0.95"}} {agg.p95_duration_ms}',
            f"polycrud_call_duration_ms_sum {agg.total_duration_ms}",
            f"polycrud_call_duration_ms_count {agg.total_calls}",
            "# HELP polycrud_calls_by_operation_total Provider calls per operation",
            "# TYPE polycrud_calls_by_operation_total counter",
        ]
        for operation, count in sorted(agg.calls_by_operation.items()):
            lines.append(f'polycrud_calls_by_operation_total{{operation="{operation}"}} {count}')

        return "\n".join(lines) + "\n"


class PerformanceMonitor:
    """Context manager for automatic call timing"""

    def __init__(
        self,
        collector: MetricsCollector,
        operation: str,
        resource: str,
        provider: Optional[str] = None,
        tenant_id: Optional[str] = None,
        actor_id: Optional[str] = None
    ):
        self.collector = collector
        self.operation = operation
        self.resource = resource
        self.provider = provider
        self.tenant_id = tenant_id
        self.actor_id = actor_id
        self.start_time = None
        self.success = False
        self.error = None
        self.error_type = None
        self.rows = None
        self.cache_hit = False

    def __enter__(self):
        self.start_time = time.perf_counter()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration_ms = (time.perf_counter() - self.start_time) * 1000  # type: ignore

        if exc_type is None:
            self.success = True
        else:
            self.error = str(exc_val) or exc_type.__name__
            self.error_type = exc_type.__name__

        self.collector.record(CallMetrics(
            operation=self.operation,
            resource=self.resource,
            duration_ms=duration_ms,
            success=self.success,
            provider=self.provider,
            error=self.error,
            error_type=self.error_type,
            tenant_id=self.tenant_id,
            actor_id=self.actor_id,
            rows=self.rows,
            cache_hit=self.cache_hit,
        ))

        return False


class HealthCheck:
    """Provider reachability check"""

    def __init__(self, provider, resource: str):
        self.provider = provider
        self.resource = resource
        self.logger = logging.getLogger(__name__)

    async def check(self) -> Dict[str, Any]:
        """Fetch a single row and report latency, or the failure"""
        provider_name = getattr(self.provider, "provider_type", self.provider.__class__.__name__)
        start = time.perf_counter()
        try:
            await self.provider.get_list(
                GetListParams(resource=self.resource, pagination=Pagination(1, 1))
            )
        except Exception as e:
            self.logger.warning(f"Health check failed for {provider_name}: {e}")
            return {
                'status': 'unhealthy',
                'error': str(e),
                'provider': provider_name,
                'timestamp': _utcnow().isoformat(),
            }

        return {
            'status': 'healthy',
            'latency_ms': (time.perf_counter() - start) * 1000,
            'provider': provider_name,
            'timestamp': _utcnow().isoformat(),
        }
