from __future__ import annotations

from dataclasses import dataclass

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest
from prometheus_client.exposition import CONTENT_TYPE_LATEST

from app.retailcore.core.config import settings


@dataclass
class MetricsSnapshot:
    content: bytes
    content_type: str


class Metrics:
    def __init__(self) -> None:
        self.enabled = bool(settings.METRICS_ENABLED)
        self._registry = None
        if self.enabled:
            self._initialize_registry()

    def _initialize_registry(self) -> None:
        self._registry = CollectorRegistry()
        self._http_requests_total = Counter(
            "http_requests_total",
            "HTTP requests by route/method/status.",
            ["route", "method", "status"],
            registry=self._registry,
        )
        self._http_request_duration_ms = Histogram(
            "http_request_duration_ms",
            "HTTP request latency in milliseconds.",
            ["route", "method", "status"],
            buckets=(5, 10, 25, 50, 100, 250, 500, 1000, 2500, 5000, 10000),
            registry=self._registry,
        )
        self._payment_intents_total = Counter(
            "payment_intents_total",
            "Mobile-money payment intents by terminal state.",
            ["state"],
            registry=self._registry,
        )
        self._settlements_total = Counter(
            "settlements_total",
            "Committed settlements by source kind and payment method.",
            ["kind", "method"],
            registry=self._registry,
        )
        self._fulfillment_failures_total = Counter(
            "fulfillment_failures_total",
            "Payments that succeeded but could not be fulfilled.",
            registry=self._registry,
        )
        self._late_confirmations_total = Counter(
            "late_confirmations_total",
            "Provider confirmations received after the intent ended.",
            registry=self._registry,
        )
        self._idempotency_replay_total = Counter(
            "idempotency_replay_total",
            "Idempotent replay responses.",
            registry=self._registry,
        )
        self._lock_wait_timeout_total = Counter(
            "lock_wait_timeout_total",
            "Lock wait timeout occurrences.",
            registry=self._registry,
        )

    def reset(self) -> None:
        if not self.enabled:
            return
        self._initialize_registry()

    def record_http_request(self, *, route: str, method: str, status_code: int, latency_ms: float) -> None:
        if not self.enabled:
            return
        labels = {"route": route, "method": method, "status": str(status_code)}
        self._http_requests_total.labels(**labels).inc()
        self._http_request_duration_ms.labels(**labels).observe(latency_ms)

    def record_intent_outcome(self, state: str) -> None:
        if not self.enabled:
            return
        self._payment_intents_total.labels(state=state).inc()

    def record_settlement(self, *, kind: str, method: str) -> None:
        if not self.enabled:
            return
        self._settlements_total.labels(kind=kind, method=method).inc()

    def increment_fulfillment_failure(self) -> None:
        if not self.enabled:
            return
        self._fulfillment_failures_total.inc()

    def increment_late_confirmation(self) -> None:
        if not self.enabled:
            return
        self._late_confirmations_total.inc()

    def increment_idempotency_replay(self) -> None:
        if not self.enabled:
            return
        self._idempotency_replay_total.inc()

    def increment_lock_wait_timeout(self) -> None:
        if not self.enabled:
            return
        self._lock_wait_timeout_total.inc()

    def render(self) -> MetricsSnapshot:
        if not self.enabled:
            return MetricsSnapshot(content=b"metrics_disabled\n", content_type="text/plain")
        return MetricsSnapshot(content=generate_latest(self._registry), content_type=CONTENT_TYPE_LATEST)


metrics = Metrics()
