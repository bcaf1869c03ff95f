# monitoring/metrics.py

import logging
import time
from functools import lru_cache, wraps
from types import SimpleNamespace
from typing import Any, Dict, Optional, Tuple, Type, Union

from prometheus_client import REGISTRY, Counter, Gauge, Histogram

logger = logging.getLogger(__name__)

CollectorType = Union[Counter, Gauge, Histogram]

_COLLECTOR_DEFINITIONS: Dict[str, Tuple[Type[CollectorType], Tuple[Any, ...], Dict[str, Any]]] = {
    # Cache metrics
    "CACHE_HIT_COUNT": (
        Counter,
        ("atlas_cache_hits_total", "Total number of cache hits", ["cache_name"]),
        {},
    ),
    "CACHE_MISS_COUNT": (
        Counter,
        ("atlas_cache_misses_total", "Total number of cache misses", ["cache_name"]),
        {},
    ),
    "CACHE_EVICTION_COUNT": (
        Counter,
        ("atlas_cache_evictions_total", "Total number of cache evictions", ["cache_name", "reason"]),
        {},
    ),
    "CACHE_SIZE": (
        Gauge,
        ("atlas_cache_entries", "Current number of cache entries", ["cache_name"]),
        {},
    ),
    # Generator metrics
    "GENERATOR_ATTEMPTS": (
        Counter,
        ("atlas_generator_attempts_total", "Generator call attempts by outcome", ["outcome"]),
        {},
    ),
    "GENERATOR_RESULTS": (
        Counter,
        ("atlas_generator_results_total", "Scenario results by source", ["source"]),
        {},
    ),
    "GENERATOR_LATENCY": (
        Histogram,
        ("atlas_generator_latency_seconds", "Latency of a single generator attempt in seconds"),
        {},
    ),
    # Profile metrics
    "PROFILE_MERGES": (
        Counter,
        ("atlas_profile_merges_total", "Total number of profile merges", ["outcome"]),
        {},
    ),
}


def _get_registry_collectors() -> Dict[str, CollectorType]:
    """Return the registry collectors mapping for reuse."""

    return getattr(REGISTRY, "_names_to_collectors", {})


def _get_or_create_collector(
    collector_cls: Type[CollectorType],
    *args: Any,
    **kwargs: Any,
) -> CollectorType:
    """Fetch an existing collector or create a new one."""

    collectors = _get_registry_collectors()
    name = args[0] if args else kwargs.get("name")
    if name:
        existing = collectors.get(name)
        if existing is not None:
            if not isinstance(existing, collector_cls):
                raise TypeError(
                    f"Collector '{name}' already registered with type {type(existing).__name__}, "
                    f"expected {collector_cls.__name__}."
                )
            return existing

    return collector_cls(*args, **kwargs)


@lru_cache(maxsize=1)
def metrics() -> SimpleNamespace:
    """Return a singleton namespace containing all Prometheus collectors."""

    namespace: Dict[str, CollectorType] = {}
    for attr_name, (collector_cls, collector_args, collector_kwargs) in _COLLECTOR_DEFINITIONS.items():
        namespace[attr_name] = _get_or_create_collector(
            collector_cls, *collector_args, **collector_kwargs
        )

    return SimpleNamespace(**namespace)


def _resolve_metric(metric_ref: Union[str, CollectorType]) -> CollectorType:
    """Resolve a metric reference to an actual Prometheus collector."""

    if isinstance(metric_ref, str):
        collector = getattr(metrics(), metric_ref, None)
        if collector is None:
            raise AttributeError(f"Metric '{metric_ref}' is not defined in monitoring.metrics")
        return collector
    return metric_ref


def track_latency(metric: Union[str, Histogram], labels: Optional[Dict[str, str]] = None):
    """Decorator to track coroutine latency, including failed calls."""

    def decorator(func):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            collector = _resolve_metric(metric)
            start_time = time.time()
            try:
                return await func(*args, **kwargs)
            finally:
                duration = time.time() - start_time
                if labels:
                    collector.labels(**labels).observe(duration)
                else:
                    collector.observe(duration)

        return wrapper

    return decorator


def record_cache_operation(cache_name: str, hit: bool, size: Optional[int] = None) -> None:
    """Record a cache lookup. Called while the cache holds its lock, so it must not block."""

    namespace = metrics()
    if hit:
        namespace.CACHE_HIT_COUNT.labels(cache_name=cache_name).inc()
    else:
        namespace.CACHE_MISS_COUNT.labels(cache_name=cache_name).inc()

    if size is not None:
        namespace.CACHE_SIZE.labels(cache_name=cache_name).set(size)


def record_cache_eviction(cache_name: str, reason: str) -> None:
    metrics().CACHE_EVICTION_COUNT.labels(cache_name=cache_name, reason=reason).inc()


def record_generator_attempt(outcome: str) -> None:
    metrics().GENERATOR_ATTEMPTS.labels(outcome=outcome).inc()


def record_generator_result(source: str) -> None:
    metrics().GENERATOR_RESULTS.labels(source=source).inc()


def record_profile_merge(outcome: str) -> None:
    metrics().PROFILE_MERGES.labels(outcome=outcome).inc()
