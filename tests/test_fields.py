"""
Tests for the field element / address codec.
"""

import pytest

from fpc_services.core.fields import (
    FIELD_MODULUS,
    FieldError,
    compute_secret_hash,
    derive_map_slot,
    field_to_hex,
    hash_fields,
    is_field_hex,
    parse_address,
    parse_field_hex,
    parse_uint,
    random_field_element,
)


class TestParsing:
    """Hex and decimal parsing."""

    def test_parse_field_hex_roundtrip(self):
        value = 0xDEADBEEF
        encoded = field_to_hex(value)
        assert len(encoded) == 66
        assert parse_field_hex(encoded, "x") == value

    @pytest.mark.parametrize("raw", ["0x1234", "deadbeef", "0x" + "g" * 64, "", "0x" + "0" * 65])
    def test_parse_field_hex_rejects_bad_shapes(self, raw):
        with pytest.raises(FieldError, match="32-byte"):
            parse_field_hex(raw, "x")

    def test_parse_field_hex_rejects_out_of_field(self):
        with pytest.raises(FieldError, match="not a valid field element"):
            parse_field_hex(field_to_hex(FIELD_MODULUS), "x")

    def test_parse_address_rejects_zero(self):
        with pytest.raises(FieldError, match="non-zero"):
            parse_address(field_to_hex(0), "user")
        assert parse_address(field_to_hex(0), "user", allow_zero=True) == 0

    def test_parse_address_strips_whitespace(self):
        assert parse_address("  " + field_to_hex(7) + " ", "user") == 7

    @pytest.mark.parametrize("raw", ["01", "-1", "1.0", "", " 1", "1e3"])
    def test_parse_uint_rejects_non_canonical(self, raw):
        with pytest.raises(FieldError):
            parse_uint(raw, "amount")

    def test_parse_uint_accepts_canonical(self):
        assert parse_uint("0", "amount") == 0
        assert parse_uint("10200000000000000000", "amount") == 10200000000000000000

    def test_is_field_hex(self):
        assert is_field_hex(field_to_hex(1))
        assert not is_field_hex(1)
        assert not is_field_hex(None)


class TestHashes:
    """Protocol hash hooks."""

    def test_hash_fields_rejects_out_of_range(self):
        with pytest.raises(FieldError):
            hash_fields([1, FIELD_MODULUS])

    def test_hash_fields_order_matters(self):
        assert hash_fields([1, 2]) != hash_fields([2, 1])

    def test_map_slot_is_deterministic_and_in_field(self):
        slot = derive_map_slot(1, 0x1234)
        assert slot == derive_map_slot(1, 0x1234)
        assert 0 <= slot < FIELD_MODULUS
        assert slot != derive_map_slot(1, 0x1235)
        assert slot != derive_map_slot(2, 0x1234)

    def test_secret_hash_differs_from_secret(self):
        assert compute_secret_hash(42) != 42
        assert compute_secret_hash(42) == compute_secret_hash(42)

    def test_random_field_element_in_range(self):
        for _ in range(50):
            value = random_field_element()
            assert 0 < value < FIELD_MODULUS
