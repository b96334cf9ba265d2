"""
Tests for quote hashing, signing and binding.
"""

import dataclasses

import pytest
from eth_account import Account

from conftest import ACCEPTED_ASSET, FPC_ADDRESS, OPERATOR_KEY, USER_ADDRESS
from fpc_services.attestation.binder import (
    MAX_QUOTE_VALIDITY_SECONDS,
    QUOTE_DOMAIN_SEPARATOR,
    LocalQuoteSigner,
    QuoteBinder,
    QuoteParams,
    compute_quote_hash,
    quote_preimage,
)
from fpc_services.core.fields import FIELD_MODULUS, FieldError


def _params(**overrides) -> QuoteParams:
    base = QuoteParams(
        fpc_address=FPC_ADDRESS,
        accepted_asset=ACCEPTED_ASSET,
        fj_amount=1_000,
        aa_payment_amount=1_020,
        valid_until=1_700_000_300,
        user_address=USER_ADDRESS,
    )
    return dataclasses.replace(base, **overrides)


class RecordingSigner:
    """Signer double that records what it was asked to sign."""

    address = "0x0000000000000000000000000000000000000001"

    def __init__(self):
        self.signed = []

    def sign_quote(self, params):
        self.signed.append(params)
        return "0xsig"


class TestQuoteHash:
    """Preimage layout and digest."""

    def test_preimage_order(self):
        assert quote_preimage(_params()) == [
            QUOTE_DOMAIN_SEPARATOR,
            FPC_ADDRESS,
            ACCEPTED_ASSET,
            1_000,
            1_020,
            1_700_000_300,
            USER_ADDRESS,
        ]

    def test_hash_is_deterministic(self):
        assert compute_quote_hash(_params()) == compute_quote_hash(_params())
        assert len(compute_quote_hash(_params())) == 32

    @pytest.mark.parametrize("field_name", [f.name for f in dataclasses.fields(QuoteParams)])
    def test_any_single_field_change_changes_hash(self, field_name):
        original = _params()
        changed = dataclasses.replace(original, **{field_name: getattr(original, field_name) + 1})
        assert compute_quote_hash(changed) != compute_quote_hash(original)

    def test_out_of_field_value_rejected(self):
        with pytest.raises(FieldError, match="fj_amount"):
            compute_quote_hash(_params(fj_amount=FIELD_MODULUS))


class TestLocalQuoteSigner:
    """secp256k1 signatures over the quote digest."""

    def test_signature_recovers_operator(self):
        signer = LocalQuoteSigner(OPERATOR_KEY)
        params = _params()
        signature = signer.sign_quote(params)
        assert signature.startswith("0x")
        assert len(signature) == 2 + 65 * 2
        recovered = Account._recover_hash(compute_quote_hash(params), signature=signature)
        assert recovered == signer.address

    def test_signature_bound_to_user(self):
        signer = LocalQuoteSigner(OPERATOR_KEY)
        assert signer.sign_quote(_params()) != signer.sign_quote(_params(user_address=USER_ADDRESS + 1))


class TestQuoteBinder:
    """Quote construction."""

    def test_bind_sets_expiry_from_issue_time(self):
        signer = RecordingSigner()
        binder = QuoteBinder(signer, FPC_ADDRESS, ACCEPTED_ASSET, validity_seconds=300, now_fn=lambda: 1_000)
        quote = binder.bind(USER_ADDRESS, 10, 11)
        assert quote.valid_until == 1_300
        assert quote.user_address == USER_ADDRESS
        assert signer.signed == [QuoteParams(FPC_ADDRESS, ACCEPTED_ASSET, 10, 11, 1_300, USER_ADDRESS)]

    def test_explicit_issue_time_wins(self):
        binder = QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, 60, now_fn=lambda: 1)
        assert binder.bind(USER_ADDRESS, 1, 1, issued_at=500).valid_until == 560

    @pytest.mark.parametrize("validity", [0, -1, MAX_QUOTE_VALIDITY_SECONDS + 1])
    def test_validity_outside_protocol_bounds(self, validity):
        with pytest.raises(ValueError, match="validity_seconds"):
            QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, validity)

    def test_validity_at_cap(self):
        binder = QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, MAX_QUOTE_VALIDITY_SECONDS, now_fn=lambda: 0)
        assert binder.bind(USER_ADDRESS, 1, 1).valid_until == MAX_QUOTE_VALIDITY_SECONDS

    def test_zero_user_rejected(self):
        binder = QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, 60)
        with pytest.raises(FieldError):
            binder.bind(0, 1, 1)

    def test_quote_is_immutable(self):
        quote = QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, 60, now_fn=lambda: 0).bind(USER_ADDRESS, 1, 1)
        with pytest.raises(dataclasses.FrozenInstanceError):
            quote.fj_amount = 2

    def test_wire_format_uses_decimal_strings(self):
        quote = QuoteBinder(RecordingSigner(), FPC_ADDRESS, ACCEPTED_ASSET, 60, now_fn=lambda: 0).bind(
            USER_ADDRESS, 10_200_000_000_000_000_000, 104_040_000_000_000
        )
        wire = quote.to_wire()
        assert wire["fj_amount"] == "10200000000000000000"
        assert wire["aa_payment_amount"] == "104040000000000"
        assert wire["valid_until"] == "60"
        assert wire["accepted_asset"] == "0x" + f"{ACCEPTED_ASSET:064x}"
        assert wire["signature"] == "0xsig"
