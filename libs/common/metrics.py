"""Metrics collection for the search service.

Provides a thin convenience wrapper around ``prometheus_client`` so the
service consistently records HTTP, search, and per-strategy metrics.

Design notes
- Metrics and labels are predeclared to avoid cardinality explosions
- A single registry is kept per collector (can be injected for testing)
"""

from typing import Optional
from prometheus_client import Counter, Histogram, CollectorRegistry, generate_latest


class MetricsCollector:
    """Centralized metrics collection for the search service.

    Parameters
    - service_name: Logical name used for scoping/labels if desired
    - registry: Optional custom ``CollectorRegistry`` (e.g. for testing)

    Exposes typed helpers for common events to keep label sets consistent.
    """

    def __init__(self, service_name: str, registry: Optional[CollectorRegistry] = None):
        self.service_name = service_name
        self.registry = registry or CollectorRegistry()

        self.request_count = Counter(
            'http_requests_total',
            'Total HTTP requests',
            ['method', 'endpoint', 'status'],
            registry=self.registry
        )

        self.request_duration = Histogram(
            'http_request_duration_seconds',
            'HTTP request duration',
            ['method', 'endpoint'],
            registry=self.registry
        )

        self.search_requests = Counter(
            'search_requests_total',
            'Total search requests',
            ['query_type'],
            registry=self.registry
        )

        self.search_duration = Histogram(
            'search_duration_seconds',
            'Search duration',
            ['query_type'],
            registry=self.registry
        )

        self.strategy_calls = Counter(
            'search_strategy_calls_total',
            'Candidate source strategy calls partitioned by outcome.',
            ['strategy', 'status'],
            registry=self.registry
        )

        self.degraded_responses = Counter(
            'search_degraded_responses_total',
            'Search responses served with at least one degraded strategy.',
            registry=self.registry
        )

        self.fused_candidates = Histogram(
            'search_fused_candidates',
            'Distinct candidates entering fusion per query.',
            buckets=(0, 1, 5, 10, 20, 50, 100, 200, 500),
            registry=self.registry
        )

    def record_http_request(
        self,
        method: str,
        endpoint: str,
        status: int,
        duration: float
    ) -> None:
        """Record HTTP request metrics.

        duration is expected in seconds to match Prometheus histogram units.
        """
        self.request_count.labels(method=method, endpoint=endpoint, status=status).inc()
        self.request_duration.labels(method=method, endpoint=endpoint).observe(duration)

    def record_search(
        self,
        query_type: str,
        duration: float
    ) -> None:
        """Record search metrics."""
        self.search_requests.labels(query_type=query_type).inc()
        self.search_duration.labels(query_type=query_type).observe(duration)

    def record_strategy_call(self, strategy: str, status: str) -> None:
        """Record the outcome (``ok``, ``timeout``, ``unavailable``...) of one strategy call."""
        self.strategy_calls.labels(strategy=strategy, status=status).inc()

    def record_degraded_response(self) -> None:
        """Record a response served with fewer strategies than dispatched."""
        self.degraded_responses.inc()

    def record_fused_candidates(self, count: int) -> None:
        self.fused_candidates.observe(count)

    def get_metrics(self) -> str:
        """Get metrics in Prometheus exposition format for scraping."""
        return generate_latest(self.registry).decode('utf-8')


# Global metrics collector instance
_metrics_collector: Optional[MetricsCollector] = None


def get_metrics_collector(service_name: str) -> MetricsCollector:
    """Get or create metrics collector for a service.

    Returns a process-wide singleton to avoid duplicate collectors/labels.
    """
    global _metrics_collector
    if _metrics_collector is None:
        _metrics_collector = MetricsCollector(service_name)
    return _metrics_collector
