"""
Custom validators
"""
import re

from blockserved.utils.exceptions import ValidationError
from blockserved.utils.tron_address import is_valid_address


def validate_tron_address(address: str, field: str = "address") -> str:
    """
    Validate a TRON base58check address
    Expected format: T + 33 base58 chars, version byte 0x41, valid checksum
    """
    if not is_valid_address(address):
        raise ValidationError(f"Invalid TRON address for {field}")
    return address.strip()


def validate_case_number(case_number: str) -> str:
    """Case numbers are free-form; only emptiness is rejected."""
    value = (case_number or "").strip()
    if not value:
        raise ValidationError("Case number is required")
    return value


def validate_tx_hash(tx_hash: str) -> bool:
    """TRON transaction ids are 64 hex chars"""
    pattern = r'^(0x)?[0-9a-fA-F]{64}$'
    return bool(re.match(pattern, (tx_hash or "").strip()))


def is_token_id(identifier: str) -> bool:
    """Numeric identifiers are looked up as alert/document token ids"""
    return bool(re.match(r'^\d{1,18}$', identifier or ""))


def normalize_tx_hash(tx_hash: str) -> str:
    """Lowercase hex without the 0x prefix; raises on anything else"""
    if not validate_tx_hash(tx_hash):
        raise ValidationError("Invalid transaction hash")
    return tx_hash.strip().lower().removeprefix("0x")
