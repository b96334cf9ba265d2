"""
Startup reconciliation of a persisted bridge.

Runs once before the periodic loop. A persisted record means a bridge was
submitted but never confirmed; the confirmation wait is resumed against the
record's baseline and message hash. The record is cleared only when the
bridge confirms. It is never resubmitted.
"""

from __future__ import annotations

import asyncio
import logging
import time
from enum import Enum
from typing import Callable, Optional

from fpc_services.core.fields import field_to_hex
from fpc_services.infra.logging_cfg import log_event
from fpc_services.topup.confirm import ConfirmationStatus, ConfirmationWaiter
from fpc_services.topup.state import BridgeRecord, BridgeStateStore

log = logging.getLogger("fpc.topup.reconcile")


class ReconciliationOutcome(str, Enum):
    NONE = "none"
    CONFIRMED = "confirmed"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


def remaining_budget_sec(
    record: BridgeRecord,
    timeout_sec: float,
    floor_sec: float,
    now_ms: Optional[int] = None,
) -> float:
    """Confirmation budget left for `record`, never below `floor_sec`."""
    now_ms = int(time.time() * 1000) if now_ms is None else now_ms
    elapsed_sec = max(0, now_ms - record.submitted_at_ms) / 1000.0
    return max(timeout_sec - elapsed_sec, floor_sec)


async def reconcile_persisted_bridge(
    store: BridgeStateStore,
    waiter: ConfirmationWaiter,
    timeout_sec: float,
    abort: Optional[asyncio.Event] = None,
    clock_ms: Optional[Callable[[], int]] = None,
) -> ReconciliationOutcome:
    """
    Resume confirmation of a persisted bridge.

    Raises BridgeStateError when the state file is corrupt.
    """
    record = await store.read()
    if record is None:
        return ReconciliationOutcome.NONE

    budget = remaining_budget_sec(
        record,
        timeout_sec,
        waiter.config.initial_poll_sec,
        now_ms=clock_ms() if clock_ms else None,
    )
    log_event(
        log, "bridge_reconcile_started",
        message_hash=field_to_hex(record.message_hash),
        submitted_at_ms=record.submitted_at_ms,
        baseline=record.baseline_balance,
        amount=record.amount,
        budget_sec=round(budget, 3),
    )

    result = await waiter.wait(record.baseline_balance, record.message_hash, budget, abort)

    if result.status is ConfirmationStatus.CONFIRMED:
        await store.clear()
        log_event(
            log, "bridge_reconcile_confirmed",
            message_hash=field_to_hex(record.message_hash),
            signal=result.signal,
            delta=result.observed_delta,
            attempts=result.attempts,
        )
        return ReconciliationOutcome.CONFIRMED

    outcome = (
        ReconciliationOutcome.ABORTED
        if result.status is ConfirmationStatus.ABORTED
        else ReconciliationOutcome.TIMEOUT
    )
    log_event(
        log, "bridge_reconcile_unresolved", logging.WARNING,
        outcome=outcome.value,
        message_hash=field_to_hex(record.message_hash),
        delta=result.observed_delta,
        attempts=result.attempts,
        detail="persisted bridge state retained; it will not be resubmitted",
    )
    return outcome
