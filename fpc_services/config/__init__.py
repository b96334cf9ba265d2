"""
Configuration package: environment-driven settings and secret resolution.
"""

from fpc_services.config.secrets import (
    ConfigError,
    ResolvedSecret,
    RuntimeProfile,
    SecretAdapterRegistry,
    SecretProvider,
    resolve_secret,
)
from fpc_services.config.settings import EnvSource, QuoteSettings, TopupSettings

__all__ = [
    "ConfigError",
    "ResolvedSecret",
    "RuntimeProfile",
    "SecretAdapterRegistry",
    "SecretProvider",
    "resolve_secret",
    "EnvSource",
    "QuoteSettings",
    "TopupSettings",
]
