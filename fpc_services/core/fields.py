"""
Field element and address codec shared by both services.

Rollup addresses, message hashes and claim secrets are elements of the BN254
scalar field and travel as 32-byte 0x-prefixed hex strings. Amounts and
timestamps enter hashes as field elements too, so every value is range-checked
against the modulus before it is encoded.

Protocol hooks:
    derive_map_slot() and compute_secret_hash() stand in for the rollup's
    native hash. They are kept here so a deployment against a different
    storage layout only has to swap these two functions.
"""

from __future__ import annotations

import re
import secrets
from typing import Iterable

from eth_utils import keccak

FIELD_MODULUS = 21888242871839275222246405745257275088548364400416034343698204186575808495617

_FIELD_HEX = re.compile(r"^0x[0-9a-fA-F]{64}$")
_UINT_DECIMAL = re.compile(r"^(0|[1-9][0-9]*)$")


class FieldError(ValueError):
    """Raised when a value cannot be represented as a field element."""


def is_field_hex(value: object) -> bool:
    return isinstance(value, str) and bool(_FIELD_HEX.match(value))


def parse_field_hex(value: str, label: str) -> int:
    """Parse a 32-byte 0x hex string into an in-range field element."""
    if not is_field_hex(value):
        raise FieldError(f"{label} must be a 32-byte 0x-prefixed hex string")
    parsed = int(value, 16)
    if parsed >= FIELD_MODULUS:
        raise FieldError(f"{label} is not a valid field element")
    return parsed


def parse_address(value: str, label: str, allow_zero: bool = False) -> int:
    parsed = parse_field_hex(value.strip(), label)
    if parsed == 0 and not allow_zero:
        raise FieldError(f"{label} must be a non-zero address")
    return parsed


def parse_uint(value: str, label: str) -> int:
    """Parse a canonical unsigned decimal string (no sign, no leading zeros)."""
    if not isinstance(value, str) or not _UINT_DECIMAL.match(value):
        raise FieldError(f"{label} must be an unsigned integer string")
    return int(value)


def ensure_field(value: int, label: str) -> int:
    if value < 0 or value >= FIELD_MODULUS:
        raise FieldError(f"{label} is out of field range")
    return value


def field_to_hex(value: int) -> str:
    return f"0x{value:064x}"


def to_word(value: int) -> bytes:
    return value.to_bytes(32, "big")


def hash_fields(values: Iterable[int]) -> bytes:
    """keccak-256 over the concatenated 32-byte big-endian words."""
    return keccak(b"".join(to_word(ensure_field(v, "hash input")) for v in values))


def derive_map_slot(base_slot: int, key: int) -> int:
    """Storage slot of `key` inside the map rooted at `base_slot`."""
    return int.from_bytes(keccak(to_word(key) + to_word(base_slot)), "big") % FIELD_MODULUS


def compute_secret_hash(secret: int) -> int:
    return int.from_bytes(keccak(to_word(ensure_field(secret, "claim secret"))), "big") % FIELD_MODULUS


def random_field_element() -> int:
    # zero is reserved as "no secret"
    return secrets.randbelow(FIELD_MODULUS - 1) + 1
