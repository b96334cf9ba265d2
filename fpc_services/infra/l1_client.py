"""
L1 access for the Fee Juice portal.

Wraps the two contracts the top-up service touches on the settlement layer:

- the Fee Juice ERC-20 token (allowance / approve)
- the Fee Juice portal (depositToAztecPublic + DepositToAztecPublic event)

Transactions are built by web3, signed locally with eth_account and
broadcast raw. A reverted receipt is an error; the caller decides whether the
tick is retried.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from eth_account import Account
from eth_account.signers.local import LocalAccount
from web3 import AsyncWeb3
from web3.contract import AsyncContract
from web3.providers import AsyncHTTPProvider
from web3.types import TxParams

log = logging.getLogger("fpc.l1")

ERC20_ABI = [
    {
        "name": "allowance",
        "type": "function",
        "stateMutability": "view",
        "inputs": [
            {"name": "owner", "type": "address"},
            {"name": "spender", "type": "address"},
        ],
        "outputs": [{"name": "", "type": "uint256"}],
    },
    {
        "name": "approve",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "spender", "type": "address"},
            {"name": "amount", "type": "uint256"},
        ],
        "outputs": [{"name": "", "type": "bool"}],
    },
]

FEE_JUICE_PORTAL_ABI = [
    {
        "name": "depositToAztecPublic",
        "type": "function",
        "stateMutability": "nonpayable",
        "inputs": [
            {"name": "to", "type": "bytes32"},
            {"name": "amount", "type": "uint256"},
            {"name": "secretHash", "type": "bytes32"},
        ],
        "outputs": [
            {"name": "", "type": "bytes32"},
            {"name": "", "type": "uint256"},
        ],
    },
    {
        "name": "DepositToAztecPublic",
        "type": "event",
        "anonymous": False,
        "inputs": [
            {"name": "to", "type": "bytes32", "indexed": True},
            {"name": "amount", "type": "uint256", "indexed": False},
            {"name": "secretHash", "type": "bytes32", "indexed": False},
            {"name": "key", "type": "bytes32", "indexed": False},
            {"name": "index", "type": "uint256", "indexed": False},
        ],
    },
]


class L1TransactionError(RuntimeError):
    """L1 transaction reverted or produced an unexpected receipt."""


class L1ChainMismatch(RuntimeError):
    pass


@dataclass(frozen=True)
class PortalDeposit:
    l1_tx_hash: str
    message_hash: int
    message_leaf_index: int


class L1BridgeClient:
    def __init__(
        self,
        rpc_url: str,
        private_key: str,
        portal_address: str,
        fee_token_address: str,
        chain_id: int,
        receipt_timeout_sec: float = 300.0,
        w3: AsyncWeb3 | None = None,
    ) -> None:
        self.w3 = w3 or AsyncWeb3(AsyncHTTPProvider(rpc_url))
        self.account: LocalAccount = Account.from_key(private_key)
        self.chain_id = chain_id
        self.receipt_timeout_sec = receipt_timeout_sec
        self.portal_address = AsyncWeb3.to_checksum_address(portal_address)
        self.portal: AsyncContract = self.w3.eth.contract(address=self.portal_address, abi=FEE_JUICE_PORTAL_ABI)
        self.fee_token: AsyncContract = self.w3.eth.contract(
            address=AsyncWeb3.to_checksum_address(fee_token_address),
            abi=ERC20_ABI,
        )

    @property
    def operator_address(self) -> str:
        return self.account.address

    async def ensure_allowance(self, amount: int) -> str | None:
        """Approve the portal for `amount` when the current allowance is short."""
        current = await self.fee_token.functions.allowance(self.account.address, self.portal_address).call()
        if current >= amount:
            return None
        log.info("fee token allowance %d < %d, approving portal %s", current, amount, self.portal_address)
        tx_hash, _ = await self._send(self.fee_token.functions.approve(self.portal_address, amount))
        return tx_hash

    async def deposit_to_public(self, recipient: int, amount: int, secret_hash: int) -> PortalDeposit:
        await self.ensure_allowance(amount)
        tx_hash, receipt = await self._send(
            self.portal.functions.depositToAztecPublic(
                recipient.to_bytes(32, "big"),
                amount,
                secret_hash.to_bytes(32, "big"),
            )
        )
        events = self.portal.events.DepositToAztecPublic().process_receipt(receipt)
        if not events:
            raise L1TransactionError(f"No DepositToAztecPublic event in receipt of {tx_hash}")
        args = events[0]["args"]
        return PortalDeposit(
            l1_tx_hash=tx_hash,
            message_hash=int.from_bytes(bytes(args["key"]), "big"),
            message_leaf_index=int(args["index"]),
        )

    async def _send(self, contract_fn: Any) -> tuple[str, Any]:
        nonce = await self.w3.eth.get_transaction_count(self.account.address, "pending")
        tx_params: TxParams = {
            "from": self.account.address,
            "nonce": nonce,
            "chainId": self.chain_id,
        }
        built_tx = await contract_fn.build_transaction(tx_params)
        signed = self.account.sign_transaction(built_tx)
        raw_hash = await self.w3.eth.send_raw_transaction(signed.raw_transaction)
        tx_hash = "0x" + bytes(raw_hash).hex()

        receipt = await self.w3.eth.wait_for_transaction_receipt(raw_hash, timeout=self.receipt_timeout_sec)
        if receipt["status"] == 0:
            raise L1TransactionError(f"L1 transaction reverted: {tx_hash} (gasUsed={receipt.get('gasUsed')})")
        log.info("L1 tx %s confirmed in block %d", tx_hash, receipt["blockNumber"])
        return tx_hash, receipt


async def assert_l1_chain_matches(w3: AsyncWeb3, expected_chain_id: int, rpc_url: str) -> None:
    rpc_chain_id = await w3.eth.chain_id
    if rpc_chain_id != expected_chain_id:
        raise L1ChainMismatch(
            f"L1 chain mismatch: rollup node expects chain_id={expected_chain_id}, "
            f"but RPC {rpc_url} reports chain_id={rpc_chain_id}"
        )
