"""
QuoteService: HTTP handler for the attestation endpoints.

Routes:
    GET /health   liveness
    GET /asset    accepted asset name and address
    GET /quote    signed, user-bound quote for ?user=<address>&fj_amount=<uint>
    GET /metrics  Prometheus exposition

Quote pipeline:
    auth -> rate limit -> parameter validation -> pricing -> bind/sign

Every /quote request ends in exactly one outcome (success, bad_request,
unauthorized, rate_limited, internal_error) which is counted and timed.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

from prometheus_client import CONTENT_TYPE_LATEST

from fpc_services.attestation.access import AccessGate
from fpc_services.attestation.binder import QuoteBinder
from fpc_services.attestation.rates import RateQuoter
from fpc_services.core.fields import FieldError, ensure_field, field_to_hex, parse_address, parse_uint
from fpc_services.infra.http_server import HttpRequest, HttpResponse, error_body
from fpc_services.infra.logging_cfg import log_event
from fpc_services.infra.rollup_node import RollupNodeClient
from fpc_services.monitoring.quote_metrics import QuoteMetrics

log = logging.getLogger("fpc.attestation")


class QuoteClock:
    """
    Issue-time source for quotes.

    Uses the rollup's latest block timestamp when a node is attached, since
    the fee contract checks expiry against block time. Falls back to wall
    clock seconds when the node has no block yet or the call fails.
    """

    def __init__(self, node: Optional[RollupNodeClient] = None, wall_clock: Callable[[], float] = time.time) -> None:
        self.node = node
        self._wall_clock = wall_clock

    async def now(self) -> int:
        if self.node is not None:
            try:
                ts = await self.node.latest_block_timestamp()
                if ts is not None:
                    return ts
            except Exception as exc:
                log_event(log, "quote_clock_fallback", logging.WARNING, err=str(exc))
        return int(self._wall_clock())


class QuoteService:
    def __init__(
        self,
        binder: QuoteBinder,
        quoter: RateQuoter,
        gate: AccessGate,
        metrics: QuoteMetrics,
        asset_name: str,
        clock: Optional[QuoteClock] = None,
    ) -> None:
        self.binder = binder
        self.quoter = quoter
        self.gate = gate
        self.metrics = metrics
        self.asset_name = asset_name
        self.clock = clock or QuoteClock()

    async def handle(self, request: HttpRequest) -> HttpResponse:
        if request.method != "GET":
            return HttpResponse.json(405, error_body("METHOD_NOT_ALLOWED", "Method not allowed"))
        if request.path == "/health":
            return HttpResponse.json(200, {"status": "ok"})
        if request.path == "/asset":
            return HttpResponse.json(200, {
                "name": self.asset_name,
                "address": field_to_hex(self.binder.accepted_asset),
            })
        if request.path == "/quote":
            return await self.quote(request)
        if request.path == "/metrics":
            return HttpResponse.text(200, self.metrics.render(), CONTENT_TYPE_LATEST)
        return HttpResponse.json(404, error_body("NOT_FOUND", "Not found"))

    async def quote(self, request: HttpRequest) -> HttpResponse:
        started = time.perf_counter()
        outcome, response = await self._quote(request)
        self.metrics.observe(outcome, time.perf_counter() - started)
        return response

    async def _quote(self, request: HttpRequest) -> tuple[str, HttpResponse]:
        decision = self.gate.check(request.headers, request.remote_addr)
        if decision.outcome == "unauthorized":
            log_event(log, "quote_auth_rejected", logging.WARNING, mode=self.gate.auth.mode.value)
            return "unauthorized", HttpResponse.json(401, error_body("UNAUTHORIZED", "Unauthorized"))
        if decision.outcome == "rate_limited":
            log_event(
                log, "quote_rate_limited", logging.WARNING,
                identity=decision.identity, retry_after=decision.retry_after_seconds,
            )
            return "rate_limited", HttpResponse.json(
                429,
                error_body("RATE_LIMITED", "Too many quote requests"),
                headers={"Retry-After": str(decision.retry_after_seconds)},
            )

        user_raw = (request.query_param("user") or "").strip()
        if not user_raw:
            return "bad_request", _bad_request("Missing required query param: user")
        try:
            user = parse_address(user_raw, "user")
        except FieldError:
            return "bad_request", _bad_request("Invalid user address")

        fj_raw = (request.query_param("fj_amount") or "").strip()
        if not fj_raw:
            return "bad_request", _bad_request("Missing required query param: fj_amount")
        try:
            fj_amount = parse_uint(fj_raw, "fj_amount")
            if fj_amount == 0:
                raise FieldError("fj_amount must be positive")
            ensure_field(fj_amount, "fj_amount")
        except FieldError as exc:
            return "bad_request", _bad_request(f"Invalid fj_amount: {exc}")

        try:
            aa_payment_amount = self.quoter.payment_for(fj_amount)
            ensure_field(aa_payment_amount, "aa_payment_amount")
        except (FieldError, ValueError) as exc:
            return "bad_request", _bad_request(f"Quote amount out of range: {exc}")

        try:
            issued_at = await self.clock.now()
            quote = self.binder.bind(user, fj_amount, aa_payment_amount, issued_at=issued_at)
        except Exception:
            log.exception("quote_issue_failed user=%s", field_to_hex(user))
            return "internal_error", HttpResponse.json(500, error_body("INTERNAL_ERROR", "Internal server error"))

        log_event(
            log, "quote_issued",
            user=field_to_hex(user),
            fj_amount=str(fj_amount),
            aa_payment_amount=str(aa_payment_amount),
            valid_until=str(quote.valid_until),
        )
        return "success", HttpResponse.json(200, quote.to_wire())


def _bad_request(message: str) -> HttpResponse:
    return HttpResponse.json(400, error_body("BAD_REQUEST", message))
