"""
Shared fixtures and helpers for the fpc_services tests.
"""

import contextlib
import logging
from typing import AsyncIterator

import httpx
import pytest

from fpc_services.core.fields import field_to_hex
from fpc_services.infra.http_server import Handler, bound_port, start_http_server
from fpc_services.topup.confirm import ConfirmationResult, ConfirmationStatus

# well-known development key (anvil/hardhat account #0)
OPERATOR_KEY = "0xac0974bec39a17e36ba4a6b4d238ff944bacb478cbed5efcae784d7bf4f2ff80"

FPC_ADDRESS = 0x0F0C
ACCEPTED_ASSET = 0x0A55E7
USER_ADDRESS = 0x05E1


@contextlib.asynccontextmanager
async def serving(handler: Handler) -> AsyncIterator[httpx.AsyncClient]:
    """Run `handler` on an ephemeral port and yield a client bound to it."""
    srv = await start_http_server(handler, "127.0.0.1", 0)
    try:
        async with httpx.AsyncClient(base_url=f"http://127.0.0.1:{bound_port(srv)}") as client:
            yield client
    finally:
        srv.close()
        await srv.wait_closed()


def make_confirmation(
    status: ConfirmationStatus,
    baseline: int = 10,
    delta: int = 0,
    signal=None,
) -> ConfirmationResult:
    return ConfirmationResult(
        status=status,
        baseline_balance=baseline,
        max_observed_balance=baseline + delta,
        last_observed_balance=baseline + delta,
        observed_delta=delta,
        elapsed=0.01,
        attempts=1,
        poll_errors=0,
        message_check_attempted=True,
        message_ready=signal == "message",
        message_check_failed=False,
        signal=signal,
    )


@pytest.fixture
def quote_env():
    return {
        "FPC_ADDRESS": field_to_hex(FPC_ADDRESS),
        "ACCEPTED_ASSET_ADDRESS": field_to_hex(ACCEPTED_ASSET),
        "ACCEPTED_ASSET_NAME": "humanUSDC",
        "MARKET_RATE_NUM": "1",
        "MARKET_RATE_DEN": "100000",
        "FEE_BIPS": "200",
        "OPERATOR_SECRET_KEY": OPERATOR_KEY,
    }


@pytest.fixture
def topup_env():
    return {
        "FPC_ADDRESS": field_to_hex(FPC_ADDRESS),
        "AZTEC_NODE_URL": "http://localhost:8080",
        "L1_RPC_URL": "http://localhost:8545",
        "L1_OPERATOR_PRIVATE_KEY": OPERATOR_KEY,
        "TOPUP_THRESHOLD": "5",
        "TOPUP_AMOUNT": "2",
    }


@pytest.fixture(autouse=True)
def _propagate_service_logs(monkeypatch):
    """Let caplog see records even after an entry point has configured the "fpc" logger."""
    monkeypatch.setattr(logging.getLogger("fpc"), "propagate", True)
