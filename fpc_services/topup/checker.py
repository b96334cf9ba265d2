"""
TopupChecker: single-flight Fee Juice top-up controller.

Each tick:
    1. skip when stopping, when another tick is running, or during cooldown
    2. resume confirmation of a persisted bridge if one exists
    3. otherwise read the balance; below threshold -> submit a bridge
    4. persist the claim material BEFORE waiting for confirmation
    5. wait; confirmed -> clear record and start cooldown,
       timeout/aborted -> keep record for the next tick or restart

Architecture:
    run_topup_loop() fires ticks on a fixed interval without waiting for the
    previous tick, so a long confirmation wait makes later ticks skip rather
    than queue. The checker never submits on top of a persisted record.

Thread Safety:
    The single-flight flag is set synchronously at the start of a tick,
    before its first await, so two ticks scheduled back to back on the event
    loop cannot both reach the submission path.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Set

from fpc_services.core.fields import field_to_hex
from fpc_services.infra.logging_cfg import log_event
from fpc_services.topup.bridge import BridgeResult, BridgeSubmitter
from fpc_services.topup.confirm import ConfirmationResult, ConfirmationStatus, ConfirmationWaiter
from fpc_services.topup.ops import ReadinessState
from fpc_services.topup.reconcile import remaining_budget_sec
from fpc_services.topup.state import BridgeRecord, BridgeStateStore

log = logging.getLogger("fpc.topup")


@dataclass
class TopupCheckerConfig:
    """Configuration for TopupChecker."""
    threshold: int
    top_up_amount: int
    confirmation_timeout_sec: float = 900.0
    cooldown_sec: float = 60.0
    log_claim_secret: bool = False


@dataclass
class TickResult:
    """Outcome of one check_and_top_up() call."""
    action: str
    balance: Optional[int] = None
    bridge: Optional[BridgeResult] = None
    confirmation: Optional[ConfirmationResult] = None
    error: Optional[str] = None


class TopupChecker:
    def __init__(
        self,
        config: TopupCheckerConfig,
        read_balance: Callable[[], Awaitable[int]],
        submitter: BridgeSubmitter,
        store: BridgeStateStore,
        waiter: ConfirmationWaiter,
        readiness: Optional[ReadinessState] = None,
        abort: Optional[asyncio.Event] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if config.top_up_amount <= 0:
            raise ValueError("top_up_amount must be positive")
        self.config = config
        self.read_balance = read_balance
        self.submitter = submitter
        self.store = store
        self.waiter = waiter
        self.readiness = readiness
        self.abort = abort or asyncio.Event()
        self._clock = clock
        self._tick_running = False
        self._bridge_in_flight = False
        self._stopping = False
        self._cooldown_until: Optional[float] = None

    # ========== State ==========

    def is_bridge_in_flight(self) -> bool:
        return self._bridge_in_flight

    def is_stopping(self) -> bool:
        return self._stopping

    def request_stop(self) -> None:
        self._stopping = True

    def in_cooldown(self) -> bool:
        return self._cooldown_until is not None and self._clock() < self._cooldown_until

    def _set_bridge_in_flight(self, value: bool) -> None:
        self._bridge_in_flight = value
        if self.readiness is not None:
            self.readiness.set_bridge_in_flight(value)

    def _record_event(self, event: str) -> None:
        if self.readiness is not None:
            self.readiness.record_bridge_event(event)

    # ========== Tick ==========

    async def check_and_top_up(self) -> TickResult:
        if self._stopping:
            return TickResult(action="skipped_stopping")
        if self._tick_running:
            log.debug("top-up tick already running, skipping")
            return TickResult(action="skipped_in_flight")
        if self.in_cooldown():
            return TickResult(action="skipped_cooldown")

        self._tick_running = True
        try:
            pending = await self.store.read()
            if pending is not None:
                return await self._resume(pending)

            try:
                balance = await self.read_balance()
            except Exception as exc:
                log_event(log, "balance_check_failed", logging.ERROR, err=str(exc))
                return TickResult(action="balance_error", error=str(exc))

            log_event(log, "balance_checked", logging.DEBUG, balance=balance, threshold=self.config.threshold)
            if balance >= self.config.threshold:
                return TickResult(action="above_threshold", balance=balance)
            if self._stopping:
                return TickResult(action="skipped_stopping", balance=balance)

            return await self._bridge(balance)
        finally:
            self._tick_running = False

    async def _bridge(self, balance: int) -> TickResult:
        amount = self.config.top_up_amount
        log_event(log, "bridge_starting", balance=balance, threshold=self.config.threshold, amount=amount)
        self._set_bridge_in_flight(True)
        try:
            try:
                result = await self.submitter.submit(amount)
            except Exception as exc:
                self._record_event("failed")
                log_event(log, "bridge_submit_failed", logging.ERROR, amount=amount, err=str(exc))
                return TickResult(action="submit_failed", balance=balance, error=str(exc))

            self._record_event("submitted")
            log_event(
                log, "bridge_submitted",
                baseline=balance,
                **result.claim_material(include_secret=self.config.log_claim_secret),
            )

            record = BridgeRecord(
                baseline_balance=balance,
                amount=result.amount,
                claim_secret_hash=result.claim_secret_hash,
                message_hash=result.message_hash,
                message_leaf_index=result.message_leaf_index,
                submitted_at_ms=result.submitted_at_ms,
            )
            try:
                await self.store.write(record)
            except Exception as exc:
                self._record_event("failed")
                # the operator needs the secret to claim manually
                log.critical(json.dumps({
                    "event": "bridge_persist_failed",
                    "state_path": str(self.store.path),
                    "err": str(exc),
                    "baseline": str(balance),
                    **result.claim_material(include_secret=True),
                }))
                return TickResult(action="persist_failed", balance=balance, bridge=result, error=str(exc))

            confirmation = await self._confirm(record, self.config.confirmation_timeout_sec)
            return TickResult(
                action=confirmation.status.value, balance=balance, bridge=result, confirmation=confirmation
            )
        finally:
            self._set_bridge_in_flight(False)

    async def _resume(self, record: BridgeRecord) -> TickResult:
        budget = remaining_budget_sec(
            record, self.config.confirmation_timeout_sec, self.waiter.config.initial_poll_sec
        )
        log_event(
            log, "bridge_resume",
            message_hash=field_to_hex(record.message_hash),
            submitted_at_ms=record.submitted_at_ms,
            budget_sec=round(budget, 3),
        )
        self._set_bridge_in_flight(True)
        try:
            confirmation = await self._confirm(record, budget)
        finally:
            self._set_bridge_in_flight(False)
        return TickResult(action=f"resumed_{confirmation.status.value}", confirmation=confirmation)

    async def _confirm(self, record: BridgeRecord, timeout_sec: float) -> ConfirmationResult:
        confirmation = await self.waiter.wait(record.baseline_balance, record.message_hash, timeout_sec, self.abort)
        self._record_event(confirmation.status.value)
        summary = {
            "outcome": confirmation.status.value,
            "signal": confirmation.signal,
            "delta": confirmation.observed_delta,
            "baseline": confirmation.baseline_balance,
            "max_observed": confirmation.max_observed_balance,
            "attempts": confirmation.attempts,
            "poll_errors": confirmation.poll_errors,
            "message_ready": confirmation.message_ready,
            "message_check_attempted": confirmation.message_check_attempted,
            "message_check_failed": confirmation.message_check_failed,
            "elapsed_sec": round(confirmation.elapsed, 3),
        }

        if confirmation.status is ConfirmationStatus.CONFIRMED:
            await self.store.clear()
            self._cooldown_until = self._clock() + self.config.cooldown_sec
            log_event(log, "bridge_confirmed", **summary)
        else:
            log_event(
                log, "bridge_unconfirmed", logging.WARNING,
                message_hash=field_to_hex(record.message_hash),
                detail="bridge state retained",
                **summary,
            )
        return confirmation


async def run_topup_loop(checker: TopupChecker, interval_sec: float, stop: asyncio.Event) -> None:
    """
    Tick `checker` every `interval_sec` until `stop` is set.

    The first tick fires immediately. Outstanding ticks are awaited on exit.
    """
    running: Set[asyncio.Task] = set()

    async def tick() -> None:
        try:
            await checker.check_and_top_up()
        except Exception:
            log.exception(json.dumps({"event": "topup_tick_error"}))

    try:
        while not stop.is_set():
            task = asyncio.create_task(tick())
            running.add(task)
            task.add_done_callback(running.discard)
            try:
                await asyncio.wait_for(stop.wait(), timeout=interval_sec)
            except asyncio.TimeoutError:
                pass
    finally:
        checker.request_stop()
        if running:
            await asyncio.gather(*running, return_exceptions=True)
