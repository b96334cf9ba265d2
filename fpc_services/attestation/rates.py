"""
Exchange-rate arithmetic for quotes.

Everything is integer math on (numerator, denominator) pairs. The operator fee
is applied on top of the market rate in basis points and the resulting
payment is rounded up, so the facility is never under-paid.
"""

from __future__ import annotations

from dataclasses import dataclass

BIPS_DENOMINATOR = 10_000
MAX_FEE_BIPS = 10_000


class RateError(ValueError):
    pass


@dataclass(frozen=True)
class ExchangeRate:
    """Accepted-asset units per unit of Fee Juice, as num/den."""
    num: int
    den: int

    def __post_init__(self) -> None:
        if self.num <= 0:
            raise RateError("rate numerator must be positive")
        if self.den <= 0:
            raise RateError("rate denominator must be positive")


def compute_final_rate(market_rate_num: int, market_rate_den: int, fee_bips: int) -> ExchangeRate:
    if not 0 <= fee_bips <= MAX_FEE_BIPS:
        raise RateError(f"fee_bips must be in [0, {MAX_FEE_BIPS}]")
    return ExchangeRate(
        num=market_rate_num * (BIPS_DENOMINATOR + fee_bips),
        den=market_rate_den * BIPS_DENOMINATOR,
    )


def ceil_div(numerator: int, denominator: int) -> int:
    if denominator <= 0:
        raise RateError("denominator must be positive")
    if numerator < 0:
        raise RateError("numerator must be non-negative")
    return -(-numerator // denominator)


class RateQuoter:
    """Holds the configured final rate and prices Fee Juice amounts."""

    def __init__(self, market_rate_num: int, market_rate_den: int, fee_bips: int) -> None:
        self.fee_bips = fee_bips
        self.rate = compute_final_rate(market_rate_num, market_rate_den, fee_bips)

    def payment_for(self, fj_amount: int) -> int:
        """Accepted-asset amount owed for `fj_amount`, rounded up."""
        if fj_amount < 0:
            raise RateError("fj_amount must be non-negative")
        return ceil_div(fj_amount * self.rate.num, self.rate.den)
