"""
ReserveBalanceMonitor: reads the facility's Fee Juice balance on L2.

Two read paths:

    primary   node balance RPC method; only used when the Fee Juice address
              came from node info, and permanently disabled after its first
              failure
    fallback  direct public storage read of balances[owner] in the Fee Juice
              contract (map rooted at slot 1)

Both paths must yield an unsigned integer; a missing or negative result is a
failed read. Every read outcome is recorded into the attached ReadinessState.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fpc_services.core.fields import derive_map_slot, field_to_hex
from fpc_services.infra.logging_cfg import log_event
from fpc_services.infra.rollup_node import NodeInfo, NodeRpcError, RollupNodeClient, to_uint
from fpc_services.topup.ops import ReadinessState

log = logging.getLogger("fpc.topup.monitor")

FEE_JUICE_BALANCES_SLOT = 1


class BalanceReadError(RuntimeError):
    pass


class PrimaryReadUnsupported(BalanceReadError):
    """The node does not expose the primary balance method."""


class FallbackReadFailed(BalanceReadError):
    def __init__(self, contract: int, cause: BaseException) -> None:
        super().__init__(
            f"Unable to read Fee Juice balance from L2 storage at {field_to_hex(contract)}: {cause}"
        )
        self.contract = contract


@dataclass(frozen=True)
class FeeJuiceResolution:
    address: int
    source: str  # "config" | "node_info"
    node_info: Optional[NodeInfo] = None


async def resolve_fee_juice_address(
    node: RollupNodeClient,
    configured: Optional[str] = None,
    node_info: Optional[NodeInfo] = None,
) -> FeeJuiceResolution:
    """Explicit FEE_JUICE_ADDRESS wins; otherwise ask the node."""
    if configured:
        address = int(configured, 16)
        if address == 0:
            raise ValueError("FEE_JUICE_ADDRESS must not be zero")
        return FeeJuiceResolution(address=address, source="config")

    info = node_info or await node.node_info()
    if info.fee_juice_address == 0:
        raise ValueError(
            "Node info returned zero protocolContractAddresses.feeJuice "
            f"(nodeVersion={info.node_version}, rollupVersion={info.rollup_version})"
        )
    return FeeJuiceResolution(address=info.fee_juice_address, source="node_info", node_info=info)


class ReserveBalanceMonitor:
    def __init__(
        self,
        node: RollupNodeClient,
        resolution: FeeJuiceResolution,
        balance_rpc_method: str = "node_getFeeJuiceBalance",
        readiness: Optional[ReadinessState] = None,
    ) -> None:
        self.node = node
        self.resolution = resolution
        self.balance_rpc_method = balance_rpc_method
        self.readiness = readiness
        self.primary_enabled = resolution.source == "node_info"
        # "unsupported" when the node lacks the method, "error" for any other failure
        self.primary_disabled_reason: Optional[str] = None

    @property
    def fee_juice_address(self) -> int:
        return self.resolution.address

    async def get_balance(self, owner: int) -> int:
        try:
            balance = await self._read(owner)
        except BalanceReadError as exc:
            if self.readiness is not None:
                self.readiness.record_balance_check_failure(exc)
            raise
        if self.readiness is not None:
            self.readiness.record_balance_check_success()
        return balance

    async def _read(self, owner: int) -> int:
        if self.primary_enabled:
            try:
                return await self._read_primary(owner)
            except Exception as exc:
                self.primary_enabled = False
                self.primary_disabled_reason = (
                    "unsupported" if isinstance(exc, PrimaryReadUnsupported) else "error"
                )
                info = self.resolution.node_info
                log_event(
                    log, "primary_balance_read_disabled", logging.WARNING,
                    method=self.balance_rpc_method,
                    reason=self.primary_disabled_reason,
                    err=str(exc),
                    node_version=info.node_version if info else None,
                    rollup_version=info.rollup_version if info else None,
                )

        try:
            slot = derive_map_slot(FEE_JUICE_BALANCES_SLOT, owner)
            return to_uint(await self.node.public_storage_at(self.resolution.address, slot), "public storage")
        except Exception as exc:
            raise FallbackReadFailed(self.resolution.address, exc) from exc

    async def _read_primary(self, owner: int) -> int:
        try:
            return to_uint(await self.node.fee_juice_balance(self.balance_rpc_method, owner), "fee juice balance")
        except NodeRpcError as exc:
            if exc.method_not_found:
                raise PrimaryReadUnsupported(str(exc)) from exc
            raise
