"""
ConfirmationWaiter: decides when a submitted bridge has landed on L2.

Architecture:
    Two independent pollers run as tasks and race to fill a first-write-wins
    result slot:

    - message poller: asks the node whether the L1->L2 message is consumable
    - balance poller: watches the facility balance for growth over baseline

    The wait ends when the slot is filled (confirmed), the abort event is set
    (aborted) or the wall-clock timeout elapses (timeout). Pollers are
    cancelled on every exit path.

    A failing message check only disables the message signal; balance polling
    continues. Balance read errors are counted and retried with the same
    backoff. The poll interval starts at initial_poll_sec and grows x1.5 up
    to max_poll_sec.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional, Protocol, Union

from fpc_services.core.fields import FieldError, parse_field_hex
from fpc_services.infra.logging_cfg import log_event

log = logging.getLogger("fpc.topup.confirm")

POLL_BACKOFF = 1.5


class ConfirmationStatus(str, Enum):
    CONFIRMED = "confirmed"
    TIMEOUT = "timeout"
    ABORTED = "aborted"


class MessageReadiness(Protocol):
    async def is_l1_to_l2_message_ready(self, message_hash: int, for_public_consumption: bool = True) -> bool:
        ...


@dataclass(frozen=True)
class ConfirmationConfig:
    initial_poll_sec: float = 1.0
    max_poll_sec: float = 15.0
    for_public_consumption: bool = False

    def __post_init__(self) -> None:
        if self.initial_poll_sec <= 0:
            raise ValueError("initial_poll_sec must be > 0")
        if self.max_poll_sec < self.initial_poll_sec:
            raise ValueError("max_poll_sec must be >= initial_poll_sec")


@dataclass(frozen=True)
class ConfirmationResult:
    status: ConfirmationStatus
    baseline_balance: int
    max_observed_balance: int
    last_observed_balance: int
    observed_delta: int
    elapsed: float
    attempts: int
    poll_errors: int
    message_check_attempted: bool
    message_ready: bool
    message_check_failed: bool
    signal: Optional[str] = None  # "balance" | "message"

    @property
    def confirmed(self) -> bool:
        return self.status is ConfirmationStatus.CONFIRMED


@dataclass
class _Progress:
    baseline: int
    max_observed: int
    last_observed: int
    attempts: int = 0
    poll_errors: int = 0
    successful_reads: int = 0
    message_check_attempted: bool = False
    message_ready: bool = False
    message_check_failed: bool = False


class _ResultSlot:
    """Holds the first confirmation signal; later writes are ignored."""

    def __init__(self) -> None:
        self.signal: Optional[str] = None
        self.filled = asyncio.Event()

    def fill(self, signal: str) -> bool:
        if self.signal is not None:
            return False
        self.signal = signal
        self.filled.set()
        return True


class ConfirmationWaiter:
    def __init__(
        self,
        read_balance: Callable[[], Awaitable[int]],
        node: Optional[MessageReadiness],
        config: ConfirmationConfig,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.read_balance = read_balance
        self.node = node
        self.config = config
        self._sleep = sleep

    def _next_delay(self, delay: float) -> float:
        return min(self.config.max_poll_sec, delay * POLL_BACKOFF)

    async def _poll_balance(self, progress: _Progress, slot: _ResultSlot) -> None:
        delay = self.config.initial_poll_sec
        while True:
            progress.attempts += 1
            try:
                balance = await self.read_balance()
            except Exception as exc:
                progress.poll_errors += 1
                log_event(
                    log, "balance_poll_failed", logging.WARNING,
                    attempt=progress.attempts, err=str(exc),
                )
            else:
                progress.successful_reads += 1
                progress.last_observed = balance
                if balance > progress.max_observed:
                    progress.max_observed = balance
                if progress.max_observed - progress.baseline > 0:
                    slot.fill("balance")
                    return
            await self._sleep(delay)
            delay = self._next_delay(delay)

    async def _poll_message(self, message_hash: int, progress: _Progress, slot: _ResultSlot) -> None:
        delay = self.config.initial_poll_sec
        while True:
            try:
                ready = await self.node.is_l1_to_l2_message_ready(
                    message_hash, for_public_consumption=self.config.for_public_consumption
                )
            except Exception as exc:
                progress.message_check_failed = True
                log_event(log, "message_check_failed", logging.WARNING, err=str(exc))
                return
            if ready:
                progress.message_ready = True
                slot.fill("message")
                return
            await self._sleep(delay)
            delay = self._next_delay(delay)

    async def wait(
        self,
        baseline_balance: int,
        message_hash: Union[int, str, None],
        timeout_sec: float,
        abort: Optional[asyncio.Event] = None,
    ) -> ConfirmationResult:
        started = time.monotonic()
        progress = _Progress(baseline=baseline_balance, max_observed=baseline_balance, last_observed=baseline_balance)
        slot = _ResultSlot()
        abort = abort or asyncio.Event()

        parsed_hash: Optional[int] = None
        if message_hash is not None and self.node is not None:
            progress.message_check_attempted = True
            try:
                parsed_hash = (
                    parse_field_hex(message_hash, "message hash") if isinstance(message_hash, str) else message_hash
                )
            except FieldError as exc:
                progress.message_check_failed = True
                log_event(log, "message_hash_invalid", logging.WARNING, err=str(exc))

        if abort.is_set():
            return self._result(ConfirmationStatus.ABORTED, progress, slot, started)

        pollers = [asyncio.create_task(self._poll_balance(progress, slot))]
        if parsed_hash is not None:
            pollers.append(asyncio.create_task(self._poll_message(parsed_hash, progress, slot)))
        filled_waiter = asyncio.create_task(slot.filled.wait())
        abort_waiter = asyncio.create_task(abort.wait())

        try:
            await asyncio.wait(
                [filled_waiter, abort_waiter],
                timeout=max(timeout_sec, 0.0),
                return_when=asyncio.FIRST_COMPLETED,
            )
        finally:
            tasks = pollers + [filled_waiter, abort_waiter]
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)

        if slot.signal is not None:
            status = ConfirmationStatus.CONFIRMED
        elif abort.is_set():
            status = ConfirmationStatus.ABORTED
        else:
            status = ConfirmationStatus.TIMEOUT
        return self._result(status, progress, slot, started)

    @staticmethod
    def _result(
        status: ConfirmationStatus,
        progress: _Progress,
        slot: _ResultSlot,
        started: float,
    ) -> ConfirmationResult:
        return ConfirmationResult(
            status=status,
            baseline_balance=progress.baseline,
            max_observed_balance=progress.max_observed,
            last_observed_balance=progress.last_observed,
            observed_delta=progress.max_observed - progress.baseline,
            elapsed=time.monotonic() - started,
            attempts=progress.attempts,
            poll_errors=progress.poll_errors,
            message_check_attempted=progress.message_check_attempted,
            message_ready=progress.message_ready,
            message_check_failed=progress.message_check_failed,
            signal=slot.signal,
        )
