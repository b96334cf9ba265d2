"""
Entry point for the Fee Juice top-up service.

Startup order:
    settings -> node info checks -> L1 chain check -> Fee Juice address
    -> ops server -> reconcile persisted bridge -> periodic loop
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys

import httpx

from fpc_services.config.secrets import ConfigError, SecretProvider
from fpc_services.config.settings import TopupSettings
from fpc_services.core.fields import field_to_hex
from fpc_services.infra.http_server import bound_port, start_http_server
from fpc_services.infra.l1_client import L1BridgeClient, assert_l1_chain_matches
from fpc_services.infra.logging_cfg import build_logger
from fpc_services.infra.rollup_node import NodeInfo, RollupNodeClient
from fpc_services.topup.bridge import BridgeSubmitter
from fpc_services.topup.checker import TopupChecker, TopupCheckerConfig, run_topup_loop
from fpc_services.topup.confirm import ConfirmationConfig, ConfirmationWaiter
from fpc_services.topup.monitor import ReserveBalanceMonitor, resolve_fee_juice_address
from fpc_services.topup.ops import OpsHandler, ReadinessState
from fpc_services.topup.reconcile import reconcile_persisted_bridge
from fpc_services.topup.state import BridgeStateError, BridgeStateStore

log = build_logger("fpc")


class StartupCheckError(RuntimeError):
    pass


def validate_node_info(info: NodeInfo) -> None:
    if info.l1_chain_id <= 0:
        raise StartupCheckError(f"Node info returned invalid l1ChainId={info.l1_chain_id}")
    if info.fee_juice_portal_l1 == 0:
        raise StartupCheckError("Node info returned zero l1ContractAddresses.feeJuicePortalAddress")
    if info.fee_juice_token_l1 == 0:
        raise StartupCheckError("Node info returned zero l1ContractAddresses.feeJuiceAddress")


def _log_key_provenance(cfg: TopupSettings) -> None:
    key = cfg.l1_operator_key
    if key.dual_source:
        log.warning(json.dumps({
            "event": "l1_operator_key_dual_source",
            "detail": "L1_OPERATOR_PRIVATE_KEY is set in both the environment and the .env file; using the environment",
        }))
    level = log.warning if key.source is SecretProvider.INLINE else log.info
    level(json.dumps({"event": "l1_operator_key_resolved", "source": key.source.value, "provider": key.provider.value}))


async def main() -> None:
    try:
        cfg = TopupSettings.load()
    except ConfigError as exc:
        log.error(json.dumps({"event": "config_error", "err": str(exc)}))
        sys.exit(1)
    build_logger("fpc", file_path=cfg.log_file)
    _log_key_provenance(cfg)

    fpc_address = int(cfg.fpc_address, 16)
    shared_client = httpx.AsyncClient(http2=True, timeout=cfg.http_timeout)
    node = RollupNodeClient(cfg.aztec_node_url, client=shared_client)
    srv = None
    try:
        node_info = await node.node_info()
        validate_node_info(node_info)

        l1 = L1BridgeClient(
            rpc_url=cfg.l1_rpc_url,
            private_key=cfg.l1_operator_key.value,
            portal_address=node_info.fee_juice_portal_l1_hex,
            fee_token_address=node_info.fee_juice_token_l1_hex,
            chain_id=node_info.l1_chain_id,
            receipt_timeout_sec=cfg.l1_receipt_timeout_sec,
        )
        await assert_l1_chain_matches(l1.w3, node_info.l1_chain_id, cfg.l1_rpc_url)

        resolution = await resolve_fee_juice_address(node, cfg.fee_juice_address, node_info)
        readiness = ReadinessState(check_interval_sec=cfg.check_interval_ms / 1000)
        monitor = ReserveBalanceMonitor(node, resolution, cfg.balance_rpc_method, readiness)

        async def read_balance() -> int:
            return await monitor.get_balance(fpc_address)

        waiter = ConfirmationWaiter(
            read_balance,
            node,
            ConfirmationConfig(
                initial_poll_sec=cfg.confirmation_poll_initial_ms / 1000,
                max_poll_sec=cfg.confirmation_poll_max_ms / 1000,
            ),
        )
        store = BridgeStateStore(cfg.state_path)
        abort = asyncio.Event()
        stop = asyncio.Event()
        checker = TopupChecker(
            TopupCheckerConfig(
                threshold=cfg.threshold,
                top_up_amount=cfg.top_up_amount,
                confirmation_timeout_sec=cfg.confirmation_timeout_ms / 1000,
                cooldown_sec=cfg.cooldown_ms / 1000,
                log_claim_secret=cfg.log_claim_secret,
            ),
            read_balance=read_balance,
            submitter=BridgeSubmitter(l1, recipient=fpc_address),
            store=store,
            waiter=waiter,
            readiness=readiness,
            abort=abort,
        )

        srv = await start_http_server(OpsHandler(readiness).handle, cfg.ops_host, cfg.ops_port)
        log.info(json.dumps({
            "event": "startup",
            "service": "topup",
            "ops_port": bound_port(srv),
            "fpc_address": cfg.fpc_address,
            "threshold": str(cfg.threshold),
            "top_up_amount": str(cfg.top_up_amount),
            "l1_chain_id": node_info.l1_chain_id,
            "l1_portal": node_info.fee_juice_portal_l1_hex,
            "l1_fee_juice": node_info.fee_juice_token_l1_hex,
            "l1_operator": l1.operator_address,
            "fee_juice_contract": field_to_hex(resolution.address),
            "fee_juice_source": resolution.source,
        }))

        def request_shutdown() -> None:
            log.info(json.dumps({"event": "shutdown_requested"}))
            readiness.mark_shutdown_requested()
            checker.request_stop()
            abort.set()
            stop.set()

        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, request_shutdown)
            except NotImplementedError:
                pass

        try:
            outcome = await reconcile_persisted_bridge(
                store, waiter, cfg.confirmation_timeout_ms / 1000, abort=abort
            )
        except BridgeStateError as exc:
            log.critical(json.dumps({"event": "bridge_state_corrupt", "err": str(exc)}))
            sys.exit(1)
        log.info(json.dumps({"event": "startup_reconcile", "outcome": outcome.value}))

        await run_topup_loop(checker, cfg.check_interval_ms / 1000, stop)
    finally:
        log.info("Closing servers and connections...")
        if srv is not None:
            srv.close()
            await srv.wait_closed()
        await shared_client.aclose()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
    except (StartupCheckError, ValueError, httpx.HTTPError, RuntimeError) as exc:
        log.critical(json.dumps({"event": "fatal", "err": str(exc)}))
        sys.exit(1)


if __name__ == "__main__":
    run()
