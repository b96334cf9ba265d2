"""
Tests for quote pricing.
"""

import pytest

from fpc_services.attestation.rates import (
    ExchangeRate,
    RateError,
    RateQuoter,
    ceil_div,
    compute_final_rate,
)


class TestFinalRate:
    """Fee application on the market rate."""

    def test_fee_applied_as_integer_pair(self):
        rate = compute_final_rate(1, 100_000, 200)
        assert rate == ExchangeRate(num=10_200, den=1_000_000_000)

    def test_zero_fee_keeps_market_ratio(self):
        rate = compute_final_rate(3, 7, 0)
        assert rate.num * 7 == rate.den * 3

    @pytest.mark.parametrize("bips", [-1, 10_001])
    def test_fee_bips_bounds(self, bips):
        with pytest.raises(RateError):
            compute_final_rate(1, 1, bips)

    def test_non_positive_parts_rejected(self):
        with pytest.raises(RateError):
            ExchangeRate(num=0, den=1)
        with pytest.raises(RateError):
            ExchangeRate(num=1, den=0)


class TestCeilDiv:
    """Integer ceiling division."""

    def test_exact_and_inexact(self):
        assert ceil_div(0, 5) == 0
        assert ceil_div(10, 5) == 2
        assert ceil_div(11, 5) == 3

    def test_rejects_bad_inputs(self):
        with pytest.raises(RateError):
            ceil_div(1, 0)
        with pytest.raises(RateError):
            ceil_div(-1, 3)


class TestRateQuoter:
    """Payment amounts."""

    def test_documented_scenario(self):
        quoter = RateQuoter(1, 100_000, 200)
        fj_amount = 10_200_000_000_000_000_000
        expected = -(-fj_amount * quoter.rate.num // quoter.rate.den)
        assert quoter.payment_for(fj_amount) == expected == 104_040_000_000_000

    @pytest.mark.parametrize("fj_amount,num,den,bips", [
        (1, 1, 3, 0),
        (7, 5, 11, 37),
        (999_999, 13, 1_000_000, 10_000),
        (10 ** 18 + 1, 1, 100_000, 200),
    ])
    def test_ceiling_is_minimal_cover(self, fj_amount, num, den, bips):
        quoter = RateQuoter(num, den, bips)
        pay = quoter.payment_for(fj_amount)
        owed = fj_amount * quoter.rate.num
        assert pay * quoter.rate.den >= owed
        assert (pay - 1) * quoter.rate.den < owed

    def test_negative_amount_rejected(self):
        with pytest.raises(RateError):
            RateQuoter(1, 1, 0).payment_for(-1)
