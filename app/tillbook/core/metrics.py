from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.tillbook.core.config import settings

LATENCY_BUCKETS_MS = (5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000)
HTTP_LABELS = ("route", "method", "status")


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    """Process-wide Prometheus collectors for the till API.

    Every recorder is a no-op when METRICS_ENABLED is off, so call sites never
    need to check.
    """

    def __init__(self, enabled: bool | None = None) -> None:
        self.enabled = settings.METRICS_ENABLED if enabled is None else enabled
        self._registry: CollectorRegistry | None = None
        self._collectors: dict = {}
        if self.enabled:
            self.reset()

    def reset(self) -> None:
        if not self.enabled:
            return
        registry = CollectorRegistry()
        self._collectors = {
            "http_requests": Counter(
                "http_requests_total", "HTTP requests by route, method and status.", HTTP_LABELS, registry=registry
            ),
            "http_latency": Histogram(
                "http_request_duration_ms",
                "HTTP request latency in milliseconds.",
                HTTP_LABELS,
                buckets=LATENCY_BUCKETS_MS,
                registry=registry,
            ),
            "idempotency_replays": Counter(
                "idempotency_replay_total", "Responses served from a stored idempotency record.", registry=registry
            ),
            "lock_timeouts": Counter(
                "lock_wait_timeout_total", "Requests that failed on database lock contention.", registry=registry
            ),
            "settlements": Counter(
                "settlements_total", "Checkout settlements by result.", ["result"], registry=registry
            ),
            "manager_overrides": Counter(
                "manager_overrides_total", "Manager authorization decisions by result.", ["result"], registry=registry
            ),
            "tax_fallbacks": Counter(
                "tax_oracle_fallback_total", "Tax calculations served from fallback figures.", registry=registry
            ),
        }
        self._registry = registry

    def _collector(self, name: str, **labels):
        collector = self._collectors[name]
        return collector.labels(**labels) if labels else collector

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._collector("http_requests", **labels).inc()
        self._collector("http_latency", **labels).observe(latency_ms)

    def increment_idempotency_replay(self) -> None:
        if self.enabled:
            self._collector("idempotency_replays").inc()

    def increment_lock_wait_timeout(self) -> None:
        if self.enabled:
            self._collector("lock_timeouts").inc()

    def record_settlement(self, result: str) -> None:
        if self.enabled:
            self._collector("settlements", result=result).inc()

    def record_manager_override(self, result: str) -> None:
        if self.enabled:
            self._collector("manager_overrides", result=result).inc()

    def increment_tax_oracle_fallback(self) -> None:
        if self.enabled:
            self._collector("tax_fallbacks").inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
