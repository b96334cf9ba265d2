"""
Core codecs shared by both services: field elements, addresses and the
protocol hash hooks.
"""

from fpc_services.core.fields import (
    FIELD_MODULUS,
    FieldError,
    compute_secret_hash,
    derive_map_slot,
    field_to_hex,
    hash_fields,
    parse_address,
    parse_field_hex,
    parse_uint,
)

__all__ = [
    "FIELD_MODULUS",
    "FieldError",
    "compute_secret_hash",
    "derive_map_slot",
    "field_to_hex",
    "hash_fields",
    "parse_address",
    "parse_field_hex",
    "parse_uint",
]
