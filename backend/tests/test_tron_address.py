"""
Tests for TRON address encoding and request validators.
"""
import pytest

from blockserved.utils.exceptions import ValidationError
from blockserved.utils.tron_address import (
    base58_to_hex,
    decode_address,
    hex_to_base58,
    is_valid_address,
    same_address,
)
from blockserved.utils.validators import is_token_id, validate_tron_address, validate_tx_hash


class TestAddressValidation:

    @pytest.mark.parametrize("address", [
        "TFfagVe1aZpSfYaruY6xJfVPYZBuMj57FH",
        "TGdD34RR3rZfUozoQLze9d4tzFbigL4JAY",
        "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",
        "T9yD14Nj9j7xAB4dbGeiX9h8unkKHxuWwb",
    ])
    def test_valid_addresses(self, address):
        assert is_valid_address(address)

    @pytest.mark.parametrize("address", [
        "",
        None,
        "TUnrelatedAddress",
        "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6u",   # checksum broken
        "XR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t",   # wrong prefix
        "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6",    # too short
        "0x41a614f803b6fd780986a42c78ec9c7f77e6ded13c",
    ])
    def test_invalid_addresses(self, address):
        assert not is_valid_address(address)

    def test_decode_rejects_bad_checksum(self):
        with pytest.raises(ValueError):
            decode_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6u")

    def test_validator_raises_400(self):
        with pytest.raises(ValidationError) as exc:
            validate_tron_address("not-an-address", "recipientAddress")
        assert exc.value.status_code == 400
        assert "recipientAddress" in exc.value.detail

    def test_validator_strips_whitespace(self):
        assert validate_tron_address("  TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t ") == "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"


class TestHexConversion:

    def test_hex_with_version_byte(self):
        assert hex_to_base58("413e7b5d68bceb401021cd92b31cf85f5d3f4b5235") == "TFfagVe1aZpSfYaruY6xJfVPYZBuMj57FH"

    def test_0x_prefixed_account_id(self):
        assert hex_to_base58("0xa614f803b6fd780986a42c78ec9c7f77e6ded13c") == "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"

    def test_abi_word(self):
        word = "000000000000000000000000a614f803b6fd780986a42c78ec9c7f77e6ded13c"
        assert hex_to_base58(word) == "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t"

    def test_base58_to_hex(self):
        assert base58_to_hex("TGdD34RR3rZfUozoQLze9d4tzFbigL4JAY") == "414900970d508b5ec85b0c2aef2386d4b7a3c83145"

    def test_zero_address(self):
        assert hex_to_base58("41" + "00" * 20) == "T9yD14Nj9j7xAB4dbGeiX9h8unkKHxuWwb"

    def test_bad_length(self):
        with pytest.raises(ValueError):
            hex_to_base58("41abcd")


class TestComparisonsAndFormats:

    def test_same_address_is_case_insensitive(self):
        assert same_address("TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t", "tr7nhqjekqxgtci8q8zy4pl8otszgjlj6t")

    def test_same_address_empty_never_matches(self):
        assert not same_address("", "")
        assert not same_address(None, "TR7NHqjeKQxGTCi8q8ZY4pL8otSzgjLj6t")

    def test_tx_hash(self):
        assert validate_tx_hash("ab" * 32)
        assert validate_tx_hash("0x" + "AB" * 32)
        assert not validate_tx_hash("ab" * 31)
        assert not validate_tx_hash("zz" * 32)

    def test_token_id(self):
        assert is_token_id("17")
        assert not is_token_id("N-17")
        assert not is_token_id("1" * 19)
