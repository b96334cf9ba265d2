"""
Entry point for the quote (attestation) service.
"""

from __future__ import annotations

import asyncio
import json
import signal
import sys
from typing import Optional

import httpx

from fpc_services.attestation.access import AccessGate, FixedWindowRateLimiter
from fpc_services.attestation.binder import LocalQuoteSigner, QuoteBinder
from fpc_services.attestation.rates import RateQuoter
from fpc_services.attestation.service import QuoteClock, QuoteService
from fpc_services.config.secrets import ConfigError, SecretProvider
from fpc_services.config.settings import QuoteSettings
from fpc_services.infra.http_server import bound_port, start_http_server
from fpc_services.infra.logging_cfg import build_logger
from fpc_services.infra.rollup_node import RollupNodeClient
from fpc_services.monitoring.quote_metrics import QuoteMetrics

log = build_logger("fpc")


def build_service(cfg: QuoteSettings, node: Optional[RollupNodeClient] = None) -> QuoteService:
    signer = LocalQuoteSigner(cfg.operator_secret.value)
    binder = QuoteBinder(
        signer=signer,
        fpc_address=int(cfg.fpc_address, 16),
        accepted_asset=int(cfg.accepted_asset_address, 16),
        validity_seconds=cfg.quote_validity_seconds,
    )
    return QuoteService(
        binder=binder,
        quoter=RateQuoter(cfg.market_rate_num, cfg.market_rate_den, cfg.fee_bips),
        gate=AccessGate(cfg.quote_auth, FixedWindowRateLimiter(cfg.rate_limit)),
        metrics=QuoteMetrics(),
        asset_name=cfg.accepted_asset_name,
        clock=QuoteClock(node),
    )


def _log_secret_provenance(cfg: QuoteSettings) -> None:
    secret = cfg.operator_secret
    if secret.dual_source:
        log.warning(json.dumps({
            "event": "operator_secret_dual_source",
            "detail": "OPERATOR_SECRET_KEY is set in both the environment and the .env file; using the environment",
        }))
    level = log.warning if secret.source is SecretProvider.INLINE else log.info
    level(json.dumps({
        "event": "operator_secret_resolved",
        "source": secret.source.value,
        "provider": secret.provider.value,
    }))


async def main() -> None:
    try:
        cfg = QuoteSettings.load()
    except ConfigError as exc:
        log.error(json.dumps({"event": "config_error", "err": str(exc)}))
        sys.exit(1)
    build_logger("fpc", file_path=cfg.log_file)
    _log_secret_provenance(cfg)

    node: Optional[RollupNodeClient] = None
    shared_client: Optional[httpx.AsyncClient] = None
    if cfg.aztec_node_url:
        shared_client = httpx.AsyncClient(http2=True, timeout=cfg.http_timeout)
        node = RollupNodeClient(cfg.aztec_node_url, client=shared_client)

    service = build_service(cfg, node)
    srv = await start_http_server(service.handle, cfg.host, cfg.port)
    log.info(json.dumps({
        "event": "startup",
        "service": "attestation",
        "port": bound_port(srv),
        "operator_address": service.binder.signer.address,
        "fpc_address": cfg.fpc_address,
        "accepted_asset": cfg.accepted_asset_address,
        "rate": f"{service.quoter.rate.num}/{service.quoter.rate.den}",
        "quote_clock": "block_timestamp" if node else "wall_clock",
    }))

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        await stop.wait()
        log.info("Shutdown signal received, cleaning up...")
    finally:
        srv.close()
        await srv.wait_closed()
        if shared_client is not None:
            await shared_client.aclose()
        log.info("Shutdown complete")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
