"""
Minimal async JSON-RPC client for the rollup node using HTTP/2.

Only the handful of node methods the services need are wrapped. Responses are
normalized into ints and field-hex strings so callers never see the node's
mixed encodings (numbers, decimal strings, hex strings).
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import httpx

from fpc_services.core.fields import field_to_hex

JSONRPC_METHOD_NOT_FOUND = -32601


class NodeRpcError(RuntimeError):
    """JSON-RPC level error returned by the node."""

    def __init__(self, method: str, code: Optional[int], message: str) -> None:
        super().__init__(f"{method} failed: {message} (code={code})")
        self.method = method
        self.code = code

    @property
    def method_not_found(self) -> bool:
        return self.code == JSONRPC_METHOD_NOT_FOUND


def to_int(value: Any, label: str = "value") -> int:
    """Accept ints, decimal strings and 0x hex strings."""
    if isinstance(value, bool):
        raise ValueError(f"{label}: unexpected boolean")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        text = value.strip()
        if text.startswith(("0x", "0X")):
            return int(text, 16)
        return int(text, 10)
    if isinstance(value, dict) and "value" in value:
        return to_int(value["value"], label)
    raise ValueError(f"{label}: cannot interpret {value!r} as an integer")


def to_uint(value: Any, label: str = "value") -> int:
    """Like to_int, but a missing or negative result is an error."""
    if value is None or value == "":
        raise ValueError(f"{label}: missing result")
    number = to_int(value, label)
    if number < 0:
        raise ValueError(f"{label}: negative value {number}")
    return number


def _zero_if_missing(value: Any) -> int:
    if value in (None, ""):
        return 0
    return to_int(value)


@dataclass(frozen=True)
class NodeInfo:
    node_version: str
    rollup_version: str
    l1_chain_id: int
    fee_juice_address: int
    fee_juice_portal_l1: int
    fee_juice_token_l1: int

    @classmethod
    def from_rpc(cls, data: Dict[str, Any]) -> "NodeInfo":
        l1 = data.get("l1ContractAddresses") or {}
        protocol = data.get("protocolContractAddresses") or {}
        return cls(
            node_version=str(data.get("nodeVersion", "unknown")),
            rollup_version=str(data.get("rollupVersion", "unknown")),
            l1_chain_id=_zero_if_missing(data.get("l1ChainId")),
            fee_juice_address=_zero_if_missing(protocol.get("feeJuice")),
            fee_juice_portal_l1=_zero_if_missing(l1.get("feeJuicePortalAddress")),
            fee_juice_token_l1=_zero_if_missing(l1.get("feeJuiceAddress")),
        )

    @property
    def fee_juice_portal_l1_hex(self) -> str:
        return f"0x{self.fee_juice_portal_l1:040x}"

    @property
    def fee_juice_token_l1_hex(self) -> str:
        return f"0x{self.fee_juice_token_l1:040x}"


class RollupNodeClient:
    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None) -> None:
        self.base_url = base_url.rstrip("/")
        # A shared client is never closed here; an owned one is.
        if client is not None:
            self.client = client
            self._owns_client = False
        else:
            self.client = httpx.AsyncClient(base_url=self.base_url, http2=True, timeout=timeout)
            self._owns_client = True
        self._ids = itertools.count(1)

    async def close(self) -> None:
        if self._owns_client:
            await self.client.aclose()

    async def call(self, method: str, params: Optional[List[Any]] = None) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params or []}
        resp = await self.client.post(self.base_url, json=payload)
        resp.raise_for_status()
        data = resp.json()
        if not isinstance(data, dict):
            raise NodeRpcError(method, None, "malformed JSON-RPC response")
        error = data.get("error")
        if error:
            code = error.get("code") if isinstance(error, dict) else None
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            raise NodeRpcError(method, code, message)
        return data.get("result")

    async def node_info(self) -> NodeInfo:
        return NodeInfo.from_rpc(await self.call("node_getNodeInfo") or {})

    async def block_number(self) -> int:
        return to_int(await self.call("node_getBlockNumber"), "block number")

    async def latest_block_timestamp(self) -> Optional[int]:
        """Timestamp of the latest block, or None before the first block."""
        block = await self.call("node_getBlock", ["latest"])
        if not block:
            return None
        if "timestamp" in block:
            return to_int(block["timestamp"], "block timestamp")
        header = block.get("header") or {}
        global_vars = header.get("globalVariables") or {}
        if "timestamp" not in global_vars:
            return None
        return to_int(global_vars["timestamp"], "block timestamp")

    async def l1_to_l2_message_block(self, message_hash: int) -> Optional[int]:
        result = await self.call("node_getL1ToL2MessageBlock", [field_to_hex(message_hash)])
        if result is None:
            return None
        return to_int(result, "message block")

    async def is_l1_to_l2_message_ready(self, message_hash: int, for_public_consumption: bool = True) -> bool:
        message_block = await self.l1_to_l2_message_block(message_hash)
        if message_block is None:
            return False
        current = await self.block_number()
        # public functions run in the block being built, one past the latest
        if for_public_consumption:
            return current + 1 >= message_block
        return current >= message_block

    async def public_storage_at(self, contract: int, slot: int, block: str = "latest") -> int:
        result = await self.call(
            "node_getPublicStorageAt", [block, field_to_hex(contract), field_to_hex(slot)]
        )
        return to_uint(result, "public storage")

    async def fee_juice_balance(self, method: str, owner: int) -> int:
        return to_uint(await self.call(method, [field_to_hex(owner)]), "fee juice balance")
