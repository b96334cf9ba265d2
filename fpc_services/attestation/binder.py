"""
QuoteBinder: builds and signs user-bound quotes.

The signed preimage is, in this exact order:

    [QUOTE_DOMAIN_SEPARATOR, fpc_address, accepted_asset,
     fj_amount, aa_payment_amount, valid_until, user_address]

Each element is a BN254 field element. The digest is keccak-256 over their
32-byte big-endian encodings and the default signer is a local secp256k1 key
through eth_account. Binding the user address into the preimage means a
signature captured from one caller cannot be replayed by another.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from eth_account import Account

from fpc_services.core.fields import FieldError, ensure_field, hash_fields

# ASCII "FPC"
QUOTE_DOMAIN_SEPARATOR = 0x465043
MAX_QUOTE_VALIDITY_SECONDS = 3600


@dataclass(frozen=True)
class QuoteParams:
    fpc_address: int
    accepted_asset: int
    fj_amount: int
    aa_payment_amount: int
    valid_until: int
    user_address: int


def quote_preimage(params: QuoteParams) -> List[int]:
    values = [
        QUOTE_DOMAIN_SEPARATOR,
        params.fpc_address,
        params.accepted_asset,
        params.fj_amount,
        params.aa_payment_amount,
        params.valid_until,
        params.user_address,
    ]
    labels = ("domain", "fpc_address", "accepted_asset", "fj_amount",
              "aa_payment_amount", "valid_until", "user_address")
    return [ensure_field(v, label) for v, label in zip(values, labels)]


def compute_quote_hash(params: QuoteParams) -> bytes:
    return hash_fields(quote_preimage(params))


class QuoteSigner(Protocol):
    address: str

    def sign_quote(self, params: QuoteParams) -> str:
        ...


class LocalQuoteSigner:
    """secp256k1 signer over the keccak quote digest."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)
        self.address = self._account.address

    def sign_quote(self, params: QuoteParams) -> str:
        signed = self._account.unsafe_sign_hash(compute_quote_hash(params))
        return "0x" + bytes(signed.signature).hex()


@dataclass(frozen=True)
class Quote:
    accepted_asset: int
    fj_amount: int
    aa_payment_amount: int
    valid_until: int
    user_address: int
    signature: str

    def to_wire(self) -> Dict[str, Any]:
        return {
            "accepted_asset": f"0x{self.accepted_asset:064x}",
            "fj_amount": str(self.fj_amount),
            "aa_payment_amount": str(self.aa_payment_amount),
            "valid_until": str(self.valid_until),
            "signature": self.signature,
        }


class QuoteBinder:
    def __init__(
        self,
        signer: QuoteSigner,
        fpc_address: int,
        accepted_asset: int,
        validity_seconds: int,
        now_fn: Optional[Callable[[], int]] = None,
    ) -> None:
        if not 0 < validity_seconds <= MAX_QUOTE_VALIDITY_SECONDS:
            raise ValueError(
                f"validity_seconds must be in [1, {MAX_QUOTE_VALIDITY_SECONDS}], got {validity_seconds}"
            )
        self.signer = signer
        self.fpc_address = fpc_address
        self.accepted_asset = accepted_asset
        self.validity_seconds = validity_seconds
        self._now = now_fn or (lambda: int(time.time()))

    def bind(
        self,
        user_address: int,
        fj_amount: int,
        aa_payment_amount: int,
        issued_at: Optional[int] = None,
    ) -> Quote:
        if user_address == 0:
            raise FieldError("user address must be non-zero")
        now = self._now() if issued_at is None else issued_at
        params = QuoteParams(
            fpc_address=self.fpc_address,
            accepted_asset=self.accepted_asset,
            fj_amount=fj_amount,
            aa_payment_amount=aa_payment_amount,
            valid_until=now + self.validity_seconds,
            user_address=user_address,
        )
        signature = self.signer.sign_quote(params)
        return Quote(
            accepted_asset=params.accepted_asset,
            fj_amount=params.fj_amount,
            aa_payment_amount=params.aa_payment_amount,
            valid_until=params.valid_until,
            user_address=params.user_address,
            signature=signature,
        )
