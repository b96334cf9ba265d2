"""
Operator secret resolution.

A secret comes from exactly one source, chosen by a provider setting:

    auto    process env first, then the .env file (non-production only)
    env     process environment variable
    inline  plaintext value from the .env file on disk
    kms/hsm external adapter looked up in a SecretAdapterRegistry

Resolution happens once at startup. The resolved value travels with its
provenance so the entry point can audit-log where the key came from.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Mapping, Optional


class ConfigError(ValueError):
    """Invalid or insecure configuration detected at startup."""


class RuntimeProfile(str, Enum):
    DEVELOPMENT = "development"
    TEST = "test"
    PRODUCTION = "production"


class SecretProvider(str, Enum):
    AUTO = "auto"
    ENV = "env"
    INLINE = "inline"
    KMS = "kms"
    HSM = "hsm"


EXTERNAL_PROVIDERS = frozenset({SecretProvider.KMS, SecretProvider.HSM})

# adapter(secret_ref, environ) -> secret value
SecretAdapter = Callable[[str, Mapping[str, str]], str]


class SecretAdapterRegistry:
    """Adapters for external secret stores, keyed by provider."""

    def __init__(self) -> None:
        self._adapters: Dict[SecretProvider, SecretAdapter] = {}

    def register(self, provider: SecretProvider, adapter: SecretAdapter) -> None:
        if provider not in EXTERNAL_PROVIDERS:
            raise ConfigError(f"Secret adapters can only be registered for kms/hsm, not {provider.value}")
        self._adapters[provider] = adapter

    def get(self, provider: SecretProvider) -> Optional[SecretAdapter]:
        return self._adapters.get(provider)


@dataclass(frozen=True)
class ResolvedSecret:
    value: str
    source: SecretProvider
    provider: SecretProvider
    dual_source: bool

    def __repr__(self) -> str:
        # never render the value
        return (
            f"ResolvedSecret(source={self.source.value}, provider={self.provider.value}, "
            f"dual_source={self.dual_source})"
        )


def _normalize(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    trimmed = value.strip()
    return trimmed or None


def _require(value: Optional[str], message: str) -> str:
    if not value:
        raise ConfigError(message)
    return value


def _resolve_external(
    provider: SecretProvider,
    label: str,
    secret_ref: Optional[str],
    registry: Optional[SecretAdapterRegistry],
    environ: Mapping[str, str],
) -> str:
    adapter = registry.get(provider) if registry else None
    if adapter is None:
        raise ConfigError(f'Secret provider "{provider.value}" selected for {label}, but no adapter is configured')
    ref = _require(_normalize(secret_ref), f'Missing {label} secret reference for provider "{provider.value}"')
    return _require(
        _normalize(adapter(ref, environ)),
        f'Secret provider "{provider.value}" returned an empty value for {label}',
    )


def resolve_secret(
    label: str,
    provider: SecretProvider,
    runtime_profile: RuntimeProfile,
    env_var_name: str,
    env_value: Optional[str] = None,
    inline_value: Optional[str] = None,
    secret_ref: Optional[str] = None,
    registry: Optional[SecretAdapterRegistry] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> ResolvedSecret:
    env_secret = _normalize(env_value)
    inline_secret = _normalize(inline_value)
    production = runtime_profile is RuntimeProfile.PRODUCTION

    if production and inline_secret:
        raise ConfigError(
            f"Insecure secret source for {label}: plaintext .env secrets are not allowed "
            "when FPC_RUNTIME_PROFILE=production"
        )

    if provider is SecretProvider.AUTO:
        if env_secret:
            source, value = SecretProvider.ENV, env_secret
        elif inline_secret:
            source, value = SecretProvider.INLINE, inline_secret
        else:
            raise ConfigError(
                f"Missing {label}: set {env_var_name} in the environment "
                "(or in the .env file for non-production profiles)"
            )
    elif provider is SecretProvider.ENV:
        source = SecretProvider.ENV
        value = _require(env_secret, f"Missing {label}: {env_var_name} is required when provider=env")
    elif provider is SecretProvider.INLINE:
        source = SecretProvider.INLINE
        value = _require(inline_secret, f"Missing {label} in the .env file when provider=inline")
    else:
        source = provider
        value = _resolve_external(provider, label, secret_ref, registry, environ if environ is not None else os.environ)

    return ResolvedSecret(
        value=value,
        source=source,
        provider=provider,
        dual_source=bool(env_secret and inline_secret),
    )
