"""
Front-end cache metrics.

prometheus-client collectors for the cache engine: lookup outcomes, commit
results, statistics replays, invalidations, engine failures and serve latency.

Each ``CacheMetrics`` instance registers its collectors in its own
``CollectorRegistry`` unless one is passed in, so several engines (or test
cases) can coexist in one process. The application factory exposes the
registry through the admin blueprint.
"""

import time
from contextlib import contextmanager
from typing import Iterator, Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest


class CacheMetrics:
    """Prometheus collectors for one front-end cache engine."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        self.registry = registry if registry is not None else CollectorRegistry()

        self.lookups_total = Counter(
            'frontend_cache_lookups_total',
            'Cache lookups by outcome',
            ['outcome'],  # pass, hit, not_modified, miss
            registry=self.registry
        )

        self.commits_total = Counter(
            'frontend_cache_commits_total',
            'Cache commits by result',
            ['result'],  # written, revalidated, contended, failed
            registry=self.registry
        )

        self.storage_errors_total = Counter(
            'frontend_cache_storage_errors_total',
            'Storage failures degraded to cache misses',
            ['operation'],
            registry=self.registry
        )

        self.corrupt_entries_total = Counter(
            'frontend_cache_corrupt_entries_total',
            'Cache files ignored because they could not be decoded',
            registry=self.registry
        )

        self.statistics_replays_total = Counter(
            'frontend_cache_statistics_replays_total',
            'Usage statistics replayed while serving from cache',
            registry=self.registry
        )

        self.invalidated_entries_total = Counter(
            'frontend_cache_invalidated_entries_total',
            'Cache files deleted by administrative invalidation',
            registry=self.registry
        )

        self.engine_failures_total = Counter(
            'frontend_cache_engine_failures_total',
            'Unexpected failures caught at the dispatcher boundary',
            ['stage'],
            registry=self.registry
        )

        self.serve_duration_seconds = Histogram(
            'frontend_cache_serve_duration_seconds',
            'Time spent answering a request from cache',
            buckets=[0.0005, 0.001, 0.002, 0.005, 0.01, 0.025, 0.05, 0.1],
            registry=self.registry
        )

    def record_lookup(self, outcome: str) -> None:
        self.lookups_total.labels(outcome=outcome).inc()

    def record_commit(self, result: str) -> None:
        self.commits_total.labels(result=result).inc()

    def record_storage_error(self, operation: str) -> None:
        self.storage_errors_total.labels(operation=operation).inc()

    def record_corrupt_entry(self) -> None:
        self.corrupt_entries_total.inc()

    def record_statistics_replay(self) -> None:
        self.statistics_replays_total.inc()

    def record_invalidation(self, count: int) -> None:
        if count:
            self.invalidated_entries_total.inc(count)

    def record_engine_failure(self, stage: str) -> None:
        self.engine_failures_total.labels(stage=stage).inc()

    @contextmanager
    def time_serve(self) -> Iterator[None]:
        start = time.perf_counter()
        try:
            yield
        finally:
            self.serve_duration_seconds.observe(time.perf_counter() - start)

    def sample(self, name: str, labels: Optional[dict] = None) -> float:
        """Current value of a sample, 0.0 when it was never recorded."""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def export(self) -> bytes:
        """Prometheus text exposition of this registry."""
        return generate_latest(self.registry)
