"""
BridgeSubmitter: one L1 -> L2 Fee Juice deposit per call.

Generates a fresh claim secret, deposits through the portal to the facility's
public balance and returns the claim material the caller must persist before
waiting.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Callable, Optional, Protocol

from fpc_services.core.fields import compute_secret_hash, field_to_hex, random_field_element
from fpc_services.infra.l1_client import PortalDeposit


class BridgeSubmissionError(RuntimeError):
    pass


class PortalClient(Protocol):
    async def deposit_to_public(self, recipient: int, amount: int, secret_hash: int) -> PortalDeposit:
        ...


@dataclass(frozen=True)
class BridgeResult:
    amount: int
    claim_secret: int
    claim_secret_hash: int
    message_hash: int
    message_leaf_index: int
    l1_tx_hash: str
    submitted_at_ms: int

    def claim_material(self, include_secret: bool = False) -> dict:
        material = {
            "amount": str(self.amount),
            "claim_secret_hash": field_to_hex(self.claim_secret_hash),
            "message_hash": field_to_hex(self.message_hash),
            "message_leaf_index": str(self.message_leaf_index),
            "l1_tx_hash": self.l1_tx_hash,
            "submitted_at_ms": str(self.submitted_at_ms),
        }
        if include_secret:
            material["claim_secret"] = field_to_hex(self.claim_secret)
        return material


class BridgeSubmitter:
    def __init__(
        self,
        portal: PortalClient,
        recipient: int,
        secret_fn: Callable[[], int] = random_field_element,
        clock_ms: Optional[Callable[[], int]] = None,
    ) -> None:
        if recipient == 0:
            raise ValueError("bridge recipient must be a non-zero address")
        self.portal = portal
        self.recipient = recipient
        self._secret_fn = secret_fn
        self._clock_ms = clock_ms or (lambda: int(time.time() * 1000))

    async def submit(self, amount: int) -> BridgeResult:
        if amount <= 0:
            raise BridgeSubmissionError("bridge amount must be positive")
        claim_secret = self._secret_fn()
        claim_secret_hash = compute_secret_hash(claim_secret)
        try:
            deposit = await self.portal.deposit_to_public(self.recipient, amount, claim_secret_hash)
        except Exception as exc:
            raise BridgeSubmissionError(f"Fee Juice deposit of {amount} failed: {exc}") from exc
        return BridgeResult(
            amount=amount,
            claim_secret=claim_secret,
            claim_secret_hash=claim_secret_hash,
            message_hash=deposit.message_hash,
            message_leaf_index=deposit.message_leaf_index,
            l1_tx_hash=deposit.l1_tx_hash,
            submitted_at_ms=self._clock_ms(),
        )
