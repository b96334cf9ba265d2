"""
Attestation package: quote pricing, binding, access control and the HTTP
handler of the quote service.
"""

from fpc_services.attestation.access import (
    AccessDecision,
    AccessGate,
    FixedWindowRateLimiter,
    QuoteAuthConfig,
    QuoteAuthMode,
    RateLimitConfig,
)
from fpc_services.attestation.binder import (
    MAX_QUOTE_VALIDITY_SECONDS,
    QUOTE_DOMAIN_SEPARATOR,
    LocalQuoteSigner,
    Quote,
    QuoteBinder,
    QuoteParams,
    compute_quote_hash,
)
from fpc_services.attestation.rates import ExchangeRate, RateQuoter, ceil_div, compute_final_rate
from fpc_services.attestation.service import QuoteClock, QuoteService

__all__ = [
    "AccessDecision",
    "AccessGate",
    "FixedWindowRateLimiter",
    "QuoteAuthConfig",
    "QuoteAuthMode",
    "RateLimitConfig",
    "MAX_QUOTE_VALIDITY_SECONDS",
    "QUOTE_DOMAIN_SEPARATOR",
    "LocalQuoteSigner",
    "Quote",
    "QuoteBinder",
    "QuoteParams",
    "compute_quote_hash",
    "ExchangeRate",
    "RateQuoter",
    "ceil_div",
    "compute_final_rate",
    "QuoteClock",
    "QuoteService",
]
