"""
Environment-driven configuration with validation.

Values come from the process environment first and from the `.env` file
second. The file is read with `dotenv_values` rather than `load_dotenv` so
the secret resolver can tell a key exported by the deployment apart from a
plaintext key sitting on disk.
"""

from __future__ import annotations

import json
import logging
import os
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional
from urllib.parse import urlparse

from dotenv import dotenv_values

from fpc_services.attestation.access import QuoteAuthConfig, QuoteAuthMode, RateLimitConfig
from fpc_services.attestation.binder import MAX_QUOTE_VALIDITY_SECONDS
from fpc_services.config.secrets import (
    ConfigError,
    ResolvedSecret,
    RuntimeProfile,
    SecretAdapterRegistry,
    SecretProvider,
    resolve_secret,
)
from fpc_services.core.fields import FieldError, field_to_hex, parse_address, parse_uint

log = logging.getLogger("fpc.config")

RATE_LIMIT_MAX_WINDOW_SECONDS = 3600
RATE_LIMIT_MAX_REQUESTS = 1_000_000
RATE_LIMIT_MAX_TRACKED_KEYS = 1_000_000

_PRIVATE_KEY = re.compile(r"^0x[0-9a-fA-F]{64}$")
_HEADER_NAME = re.compile(r"^[!#$%&'*+.^_`|~0-9A-Za-z-]+$")
_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


class EnvSource:
    """Merged view of the process environment and an optional .env file."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None, env_file: Optional[str] = ".env") -> None:
        self.environ: Dict[str, str] = dict(os.environ if environ is None else environ)
        self.file_values: Dict[str, str] = {}
        if env_file and Path(env_file).is_file():
            self.file_values = {k: v for k, v in dotenv_values(env_file).items() if v is not None}

    def get(self, key: str, default: Optional[str] = None) -> Optional[str]:
        raw = self.environ.get(key)
        if raw is None or raw.strip() == "":
            raw = self.file_values.get(key)
        if raw is None or raw.strip() == "":
            return default
        return raw.strip()

    def require(self, key: str) -> str:
        value = self.get(key)
        if value is None:
            raise ConfigError(f"Missing required setting {key}")
        return value

    def get_int(self, key: str, default: Optional[int], lo: int, hi: Optional[int] = None) -> int:
        raw = self.get(key)
        if raw is None:
            if default is None:
                raise ConfigError(f"Missing required setting {key}")
            return default
        try:
            value = int(raw)
        except ValueError:
            raise ConfigError(f"Invalid {key}: expected an integer, got {raw!r}") from None
        if value < lo or (hi is not None and value > hi):
            bound = f"[{lo}, {hi}]" if hi is not None else f">= {lo}"
            raise ConfigError(f"Invalid {key}: expected integer in range {bound}")
        return value

    def get_float(self, key: str, default: float) -> float:
        raw = self.get(key)
        if raw is None:
            return default
        try:
            value = float(raw)
        except ValueError:
            raise ConfigError(f"Invalid {key}: expected a number, got {raw!r}") from None
        if value <= 0:
            raise ConfigError(f"Invalid {key}: must be > 0")
        return value

    def get_bool(self, key: str, default: bool) -> bool:
        raw = self.get(key)
        if raw is None:
            return default
        normalized = raw.lower()
        if normalized in _TRUE:
            return True
        if normalized in _FALSE:
            return False
        raise ConfigError(f"Invalid {key}: expected boolean value (true/false, 1/0, yes/no, on/off)")

    def get_uint(self, key: str, default: Optional[str] = None) -> int:
        raw = self.get(key, default)
        if raw is None:
            raise ConfigError(f"Missing required setting {key}")
        try:
            return parse_uint(raw, key)
        except FieldError as exc:
            raise ConfigError(str(exc)) from None

    def get_address(self, key: str, required: bool = True) -> Optional[str]:
        raw = self.require(key) if required else self.get(key)
        if raw is None:
            return None
        try:
            return field_to_hex(parse_address(raw, key))
        except FieldError as exc:
            raise ConfigError(str(exc)) from None

    def get_url(self, key: str, required: bool = True) -> Optional[str]:
        raw = self.require(key) if required else self.get(key)
        if raw is None:
            return None
        parsed = urlparse(raw)
        if parsed.scheme not in {"http", "https"} or not parsed.netloc:
            raise ConfigError(f"Invalid {key}: expected an http(s) URL, got {raw!r}")
        return raw

    def get_enum(self, key: str, enum_cls, default):
        raw = self.get(key)
        if raw is None:
            return default
        try:
            return enum_cls(raw.lower())
        except ValueError:
            allowed = ", ".join(m.value for m in enum_cls)
            raise ConfigError(f"Invalid {key}: expected one of {allowed}") from None


def _resolve_private_key(
    env: EnvSource,
    label: str,
    var: str,
    profile: RuntimeProfile,
    registry: Optional[SecretAdapterRegistry],
) -> ResolvedSecret:
    provider = env.get_enum(f"{var}_PROVIDER", SecretProvider, SecretProvider.AUTO)
    resolved = resolve_secret(
        label=label,
        provider=provider,
        runtime_profile=profile,
        env_var_name=var,
        env_value=env.environ.get(var),
        inline_value=env.file_values.get(var),
        secret_ref=env.get(f"{var}_REF"),
        registry=registry,
        environ=env.environ,
    )
    if not _PRIVATE_KEY.match(resolved.value):
        raise ConfigError(f"{label} must be a 32-byte 0x-prefixed hex private key")
    return resolved


def _normalize_header_name(value: str, label: str) -> str:
    normalized = value.strip().lower()
    if not normalized:
        raise ConfigError(f"{label} header name must be non-empty")
    if not _HEADER_NAME.match(normalized):
        raise ConfigError(f"{label} header name contains invalid characters")
    return normalized


def resolve_quote_auth(env: EnvSource, profile: RuntimeProfile) -> QuoteAuthConfig:
    mode = env.get_enum("QUOTE_AUTH_MODE", QuoteAuthMode, QuoteAuthMode.DISABLED)
    api_key = env.get("QUOTE_AUTH_API_KEY")
    api_key_header = _normalize_header_name(env.get("QUOTE_AUTH_API_KEY_HEADER", "x-api-key"), "quote auth api key")
    trusted_name_raw = env.get("QUOTE_AUTH_TRUSTED_HEADER_NAME")
    trusted_value = env.get("QUOTE_AUTH_TRUSTED_HEADER_VALUE")
    trusted_name = (
        _normalize_header_name(trusted_name_raw, "quote auth trusted upstream") if trusted_name_raw else None
    )

    if profile is RuntimeProfile.PRODUCTION and mode is QuoteAuthMode.DISABLED:
        raise ConfigError(
            "Insecure quote auth configuration: QUOTE_AUTH_MODE must not be disabled "
            "when FPC_RUNTIME_PROFILE=production"
        )

    if mode.uses_api_key and not api_key:
        raise ConfigError(f"Missing quote auth API key: set QUOTE_AUTH_API_KEY when QUOTE_AUTH_MODE={mode.value}")
    if not mode.uses_api_key and api_key:
        raise ConfigError(f"Unexpected quote auth API key: QUOTE_AUTH_MODE={mode.value} does not use API key auth")

    if mode.uses_trusted_header:
        if not trusted_name or not trusted_value:
            raise ConfigError(
                "Missing trusted upstream auth header config: set QUOTE_AUTH_TRUSTED_HEADER_NAME and "
                f"QUOTE_AUTH_TRUSTED_HEADER_VALUE when QUOTE_AUTH_MODE={mode.value}"
            )
        if mode is QuoteAuthMode.API_KEY_AND_TRUSTED_HEADER and trusted_name == api_key_header:
            raise ConfigError(
                "Invalid quote auth header config: QUOTE_AUTH_API_KEY_HEADER and QUOTE_AUTH_TRUSTED_HEADER_NAME "
                "must differ when QUOTE_AUTH_MODE=api_key_and_trusted_header"
            )
    elif trusted_name or trusted_value:
        raise ConfigError(
            f"Unexpected trusted upstream auth config: QUOTE_AUTH_MODE={mode.value} does not use trusted header auth"
        )

    return QuoteAuthConfig(
        mode=mode,
        api_key=api_key,
        api_key_header=api_key_header,
        trusted_header_name=trusted_name,
        trusted_header_value=trusted_value,
    )


def resolve_rate_limit(env: EnvSource) -> RateLimitConfig:
    return RateLimitConfig(
        enabled=env.get_bool("QUOTE_RATE_LIMIT_ENABLED", True),
        max_requests=env.get_int("QUOTE_RATE_LIMIT_MAX_REQUESTS", 60, 1, RATE_LIMIT_MAX_REQUESTS),
        window_seconds=env.get_int("QUOTE_RATE_LIMIT_WINDOW_SECONDS", 60, 1, RATE_LIMIT_MAX_WINDOW_SECONDS),
        max_tracked_keys=env.get_int("QUOTE_RATE_LIMIT_MAX_TRACKED_KEYS", 10_000, 1, RATE_LIMIT_MAX_TRACKED_KEYS),
    )


@dataclass(frozen=True)
class QuoteSettings:
    runtime_profile: RuntimeProfile
    fpc_address: str
    aztec_node_url: Optional[str]
    accepted_asset_address: str
    accepted_asset_name: str
    market_rate_num: int
    market_rate_den: int
    fee_bips: int
    quote_validity_seconds: int
    host: str
    port: int
    operator_secret: ResolvedSecret
    quote_auth: QuoteAuthConfig
    rate_limit: RateLimitConfig
    http_timeout: float
    log_file: Optional[str]

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = ".env",
        secret_adapters: Optional[SecretAdapterRegistry] = None,
    ) -> "QuoteSettings":
        env = EnvSource(environ, env_file)
        profile = env.get_enum("FPC_RUNTIME_PROFILE", RuntimeProfile, RuntimeProfile.DEVELOPMENT)
        cfg = cls(
            runtime_profile=profile,
            fpc_address=env.get_address("FPC_ADDRESS"),
            aztec_node_url=env.get_url("AZTEC_NODE_URL", required=False),
            accepted_asset_address=env.get_address("ACCEPTED_ASSET_ADDRESS"),
            accepted_asset_name=env.require("ACCEPTED_ASSET_NAME"),
            market_rate_num=env.get_int("MARKET_RATE_NUM", None, 1),
            market_rate_den=env.get_int("MARKET_RATE_DEN", None, 1),
            fee_bips=env.get_int("FEE_BIPS", None, 0, 10_000),
            quote_validity_seconds=env.get_int("QUOTE_VALIDITY_SECONDS", 300, 1, MAX_QUOTE_VALIDITY_SECONDS),
            host=env.get("QUOTE_HOST", "0.0.0.0"),
            port=env.get_int("QUOTE_PORT", 3000, 1, 65535),
            operator_secret=_resolve_private_key(
                env, "operator secret key", "OPERATOR_SECRET_KEY", profile, secret_adapters
            ),
            quote_auth=resolve_quote_auth(env, profile),
            rate_limit=resolve_rate_limit(env),
            http_timeout=env.get_float("HTTP_TIMEOUT", 5.0),
            log_file=env.get("LOG_FILE"),
        )
        _log_loaded("quote_config_loaded", cfg)
        return cfg

    def summary(self) -> dict:
        return {
            "runtime_profile": self.runtime_profile.value,
            "fpc_address": self.fpc_address,
            "accepted_asset": self.accepted_asset_address,
            "market_rate": f"{self.market_rate_num}/{self.market_rate_den}",
            "fee_bips": self.fee_bips,
            "quote_validity_seconds": self.quote_validity_seconds,
            "quote_auth_mode": self.quote_auth.mode.value,
            "rate_limit_enabled": self.rate_limit.enabled,
            "operator_secret": repr(self.operator_secret),
        }


@dataclass(frozen=True)
class TopupSettings:
    runtime_profile: RuntimeProfile
    fpc_address: str
    aztec_node_url: str
    fee_juice_address: Optional[str]
    l1_rpc_url: str
    l1_operator_key: ResolvedSecret
    threshold: int
    top_up_amount: int
    check_interval_ms: int
    confirmation_timeout_ms: int
    confirmation_poll_initial_ms: int
    confirmation_poll_max_ms: int
    cooldown_ms: int
    state_path: str
    ops_host: str
    ops_port: int
    log_claim_secret: bool
    balance_rpc_method: str
    l1_receipt_timeout_sec: float
    http_timeout: float
    log_file: Optional[str]

    @classmethod
    def load(
        cls,
        environ: Optional[Mapping[str, str]] = None,
        env_file: Optional[str] = ".env",
        secret_adapters: Optional[SecretAdapterRegistry] = None,
    ) -> "TopupSettings":
        env = EnvSource(environ, env_file)
        profile = env.get_enum("FPC_RUNTIME_PROFILE", RuntimeProfile, RuntimeProfile.DEVELOPMENT)
        check_interval_ms = env.get_int("TOPUP_CHECK_INTERVAL_MS", 60_000, 1)
        cfg = cls(
            runtime_profile=profile,
            fpc_address=env.get_address("FPC_ADDRESS"),
            aztec_node_url=env.get_url("AZTEC_NODE_URL"),
            fee_juice_address=env.get_address("FEE_JUICE_ADDRESS", required=False),
            l1_rpc_url=env.get_url("L1_RPC_URL"),
            l1_operator_key=_resolve_private_key(
                env, "L1 operator private key", "L1_OPERATOR_PRIVATE_KEY", profile, secret_adapters
            ),
            threshold=env.get_uint("TOPUP_THRESHOLD"),
            top_up_amount=env.get_uint("TOPUP_AMOUNT"),
            check_interval_ms=check_interval_ms,
            confirmation_timeout_ms=env.get_int("TOPUP_CONFIRMATION_TIMEOUT_MS", 900_000, 1),
            confirmation_poll_initial_ms=env.get_int("TOPUP_CONFIRMATION_POLL_INITIAL_MS", 1_000, 1),
            confirmation_poll_max_ms=env.get_int("TOPUP_CONFIRMATION_POLL_MAX_MS", 15_000, 1),
            cooldown_ms=env.get_int("TOPUP_COOLDOWN_MS", check_interval_ms, 0),
            state_path=env.get("TOPUP_STATE_PATH", ".topup-bridge-state.json"),
            ops_host=env.get("TOPUP_OPS_HOST", "0.0.0.0"),
            ops_port=env.get_int("TOPUP_OPS_PORT", 3001, 1, 65535),
            log_claim_secret=env.get_bool("TOPUP_LOG_CLAIM_SECRET", False),
            balance_rpc_method=env.get("TOPUP_BALANCE_RPC_METHOD", "node_getFeeJuiceBalance"),
            l1_receipt_timeout_sec=env.get_float("L1_RECEIPT_TIMEOUT_SEC", 300.0),
            http_timeout=env.get_float("HTTP_TIMEOUT", 5.0),
            log_file=env.get("LOG_FILE"),
        )
        cfg._validate()
        _log_loaded("topup_config_loaded", cfg)
        return cfg

    def _validate(self) -> None:
        if self.top_up_amount <= 0:
            raise ConfigError("TOPUP_AMOUNT must be > 0")
        if self.confirmation_poll_max_ms < self.confirmation_poll_initial_ms:
            raise ConfigError("TOPUP_CONFIRMATION_POLL_MAX_MS must be >= TOPUP_CONFIRMATION_POLL_INITIAL_MS")
        if self.log_claim_secret and self.runtime_profile is RuntimeProfile.PRODUCTION:
            log.warning("TOPUP_LOG_CLAIM_SECRET is enabled under the production profile; claim secrets will be logged")

    def summary(self) -> dict:
        return {
            "runtime_profile": self.runtime_profile.value,
            "fpc_address": self.fpc_address,
            "threshold": str(self.threshold),
            "top_up_amount": str(self.top_up_amount),
            "check_interval_ms": self.check_interval_ms,
            "confirmation_timeout_ms": self.confirmation_timeout_ms,
            "confirmation_poll_ms": f"{self.confirmation_poll_initial_ms}->{self.confirmation_poll_max_ms}",
            "cooldown_ms": self.cooldown_ms,
            "state_path": self.state_path,
            "l1_operator_key": repr(self.l1_operator_key),
        }


def _log_loaded(event: str, cfg) -> None:
    log.info(json.dumps({"event": event, **cfg.summary()}))
