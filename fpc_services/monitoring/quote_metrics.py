"""
Prometheus metrics for the quote service.
"""

from typing import Optional

from prometheus_client import CollectorRegistry, Counter, Histogram, generate_latest

QUOTE_OUTCOMES = ("success", "bad_request", "unauthorized", "rate_limited", "internal_error")
QUOTE_ERROR_TYPES = ("bad_request", "unauthorized", "rate_limited", "internal_error")
LATENCY_BUCKETS = [0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5]


class QuoteMetrics:
    """Request, error and latency metrics for GET /quote."""

    def __init__(self, registry: Optional[CollectorRegistry] = None):
        reg = registry or CollectorRegistry()

        self.requests = Counter(
            'attestation_quote_requests_total',
            'Quote requests by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self.errors = Counter(
            'attestation_quote_errors_total',
            'Quote errors by type',
            labelnames=['error_type'],
            registry=reg
        )
        self.latency = Histogram(
            'attestation_quote_latency_seconds',
            'Quote request latency (seconds)',
            labelnames=['outcome'],
            buckets=LATENCY_BUCKETS,
            registry=reg
        )

        # export zero-valued series before the first request
        for outcome in QUOTE_OUTCOMES:
            self.requests.labels(outcome=outcome)
            self.latency.labels(outcome=outcome)
        for error_type in QUOTE_ERROR_TYPES:
            self.errors.labels(error_type=error_type)

        self.registry = reg

    def observe(self, outcome: str, latency_sec: float) -> None:
        self.requests.labels(outcome=outcome).inc()
        if outcome != "success":
            self.errors.labels(error_type=outcome).inc()
        self.latency.labels(outcome=outcome).observe(max(latency_sec, 0.0))

    def render(self) -> bytes:
        return generate_latest(self.registry)
