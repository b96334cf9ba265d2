"""
Operational surface of the top-up service: readiness state and the ops HTTP
handler (/health, /ready, /metrics).

Architecture:
    ReadinessState is an owned object passed to the balance monitor and the
    checker, which are its only writers. The ops handler only reads it. Its
    Prometheus collectors live in a per-instance registry so tests can build
    as many as they like.

Readiness:
    not ready while any reason is present:
    - shutdown_in_progress
    - no_successful_balance_checks
    - last_balance_check_failed
    - stale_balance_checks (last check older than max(3 x interval, 30s))
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, Counter, Gauge, generate_latest

from fpc_services.infra.http_server import HttpRequest, HttpResponse, error_body

BRIDGE_EVENTS = ("submitted", "confirmed", "timeout", "aborted", "failed")
MIN_STALE_AFTER_SEC = 30.0


@dataclass(frozen=True)
class ReadinessReason:
    code: str
    message: str


class ReadinessState:
    def __init__(
        self,
        check_interval_sec: float,
        registry: Optional[CollectorRegistry] = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._clock = clock
        self.started_at = clock()
        self.stale_after_sec = max(check_interval_sec * 3, MIN_STALE_AFTER_SEC)
        self.successful_balance_checks = 0
        self.failed_balance_checks = 0
        self.last_balance_check_at: Optional[float] = None
        self.last_balance_check_ok = False
        self.last_balance_check_error: Optional[str] = None
        self.bridge_in_flight = False
        self.shutdown_requested = False
        self.bridge_events: Dict[str, int] = {event: 0 for event in BRIDGE_EVENTS}

        reg = registry or CollectorRegistry()
        self._bridge_events = Counter(
            'topup_bridge_events',
            'Top-up bridge lifecycle events by outcome',
            labelnames=['event'],
            registry=reg
        )
        self._balance_checks = Counter(
            'topup_balance_checks',
            'Fee Juice balance checks by outcome',
            labelnames=['outcome'],
            registry=reg
        )
        self._readiness = Gauge(
            'topup_readiness_status',
            '1 when the service is ready, 0 otherwise',
            registry=reg
        )
        self._uptime = Gauge(
            'topup_uptime_seconds',
            'Service uptime in seconds',
            registry=reg
        )
        self._in_flight = Gauge(
            'topup_bridge_in_flight',
            '1 while a bridge submission or confirmation is in progress',
            registry=reg
        )
        for event in BRIDGE_EVENTS:
            self._bridge_events.labels(event=event)
        for outcome in ("success", "error"):
            self._balance_checks.labels(outcome=outcome)
        self._readiness.set_function(lambda: 1.0 if self.snapshot()["ready"] else 0.0)
        self._uptime.set_function(lambda: float(max(0, int(self._clock() - self.started_at))))
        self._in_flight.set_function(lambda: 1.0 if self.bridge_in_flight else 0.0)

        self.registry = reg

    # ========== Writers ==========

    def record_balance_check_success(self) -> None:
        self.successful_balance_checks += 1
        self.last_balance_check_at = self._clock()
        self.last_balance_check_ok = True
        self.last_balance_check_error = None
        self._balance_checks.labels(outcome="success").inc()

    def record_balance_check_failure(self, error: BaseException | str) -> None:
        self.failed_balance_checks += 1
        self.last_balance_check_at = self._clock()
        self.last_balance_check_ok = False
        self.last_balance_check_error = str(error) or type(error).__name__
        self._balance_checks.labels(outcome="error").inc()

    def record_bridge_event(self, event: str) -> None:
        if event not in self.bridge_events:
            raise ValueError(f"unknown bridge event {event!r}")
        self.bridge_events[event] += 1
        self._bridge_events.labels(event=event).inc()

    def set_bridge_in_flight(self, value: bool) -> None:
        self.bridge_in_flight = value

    def mark_shutdown_requested(self) -> None:
        self.shutdown_requested = True

    # ========== Readers ==========

    def reasons(self, now: Optional[float] = None) -> List[ReadinessReason]:
        now = self._clock() if now is None else now
        reasons: List[ReadinessReason] = []
        if self.shutdown_requested:
            reasons.append(ReadinessReason("shutdown_in_progress", "Graceful shutdown has been requested"))
        if self.successful_balance_checks == 0:
            reasons.append(
                ReadinessReason("no_successful_balance_checks", "No successful Fee Juice balance checks yet")
            )
        if not self.last_balance_check_ok and self.failed_balance_checks > 0:
            message = "Last Fee Juice balance check failed"
            if self.last_balance_check_error:
                message = f"{message}: {self.last_balance_check_error}"
            reasons.append(ReadinessReason("last_balance_check_failed", message))
        if self.last_balance_check_at is not None and now - self.last_balance_check_at > self.stale_after_sec:
            reasons.append(
                ReadinessReason(
                    "stale_balance_checks",
                    f"Last Fee Juice balance check is stale (> {self.stale_after_sec:g}s)",
                )
            )
        return reasons

    def snapshot(self, now: Optional[float] = None) -> Dict[str, Any]:
        now = self._clock() if now is None else now
        reasons = self.reasons(now)
        ready = not reasons
        age = None
        if self.last_balance_check_at is not None:
            age = max(0, int(now - self.last_balance_check_at))
        return {
            "ready": ready,
            "status": "ready" if ready else "not_ready",
            "reasons": [{"code": r.code, "message": r.message} for r in reasons],
            "checks": {
                "successful_balance_checks": self.successful_balance_checks,
                "failed_balance_checks": self.failed_balance_checks,
                "last_balance_check_ok": self.last_balance_check_ok,
                "last_balance_check_age_seconds": age,
            },
            "bridge_in_flight": self.bridge_in_flight,
        }

    def render_metrics(self) -> bytes:
        return generate_latest(self.registry)


class OpsHandler:
    """HTTP handler for the ops endpoints; pass `handle` to start_http_server."""

    def __init__(self, state: ReadinessState) -> None:
        self.state = state

    async def handle(self, request: HttpRequest) -> HttpResponse:
        if request.method != "GET":
            return HttpResponse.json(405, error_body("METHOD_NOT_ALLOWED", "Only GET is supported"))
        if request.path == "/health":
            return HttpResponse.json(200, {"status": "ok"})
        if request.path == "/ready":
            snapshot = self.state.snapshot()
            return HttpResponse.json(200 if snapshot["ready"] else 503, snapshot)
        if request.path == "/metrics":
            return HttpResponse.text(200, self.state.render_metrics(), CONTENT_TYPE_LATEST)
        return HttpResponse.json(404, error_body("NOT_FOUND", "Not found"))
