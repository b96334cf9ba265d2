"""
Tests for service wiring helpers in the entry points.
"""

import dataclasses

import pytest
from eth_account import Account

from conftest import OPERATOR_KEY, serving
from fpc_services.attestation.main import build_service
from fpc_services.config.settings import QuoteSettings
from fpc_services.core.fields import field_to_hex
from fpc_services.infra.rollup_node import NodeInfo
from fpc_services.topup.main import StartupCheckError, validate_node_info

GOOD_INFO = NodeInfo(
    node_version="2.1.0",
    rollup_version="1",
    l1_chain_id=31337,
    fee_juice_address=0x5,
    fee_juice_portal_l1=0x11,
    fee_juice_token_l1=0x22,
)


class TestValidateNodeInfo:
    def test_accepts_complete_info(self):
        validate_node_info(GOOD_INFO)

    @pytest.mark.parametrize("field,message", [
        ("l1_chain_id", "l1ChainId"),
        ("fee_juice_portal_l1", "feeJuicePortalAddress"),
        ("fee_juice_token_l1", "feeJuiceAddress"),
    ])
    def test_rejects_missing_values(self, field, message):
        with pytest.raises(StartupCheckError, match=message):
            validate_node_info(dataclasses.replace(GOOD_INFO, **{field: 0}))


class TestBuildService:
    @pytest.mark.asyncio
    async def test_service_from_settings(self, quote_env):
        cfg = QuoteSettings.load(quote_env, env_file=None)
        service = build_service(cfg)
        assert service.binder.signer.address == Account.from_key(OPERATOR_KEY).address
        assert (service.quoter.rate.num, service.quoter.rate.den) == (10_200, 1_000_000_000)

        async with serving(service.handle) as client:
            asset = (await client.get("/asset")).json()
        assert asset == {"name": "humanUSDC", "address": cfg.accepted_asset_address}
        assert asset["address"] == field_to_hex(int(cfg.accepted_asset_address, 16))
