"""
TRON address encoding.

A TRON address is base58check over 21 bytes: the 0x41 version byte plus a
20-byte account id, followed by the first 4 bytes of sha256(sha256(payload)).
Contract calls and event payloads carry the hex form ("41..." or "0x...").
"""
import hashlib
from typing import Optional

B58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_B58_INDEX = {c: i for i, c in enumerate(B58_ALPHABET)}

ADDRESS_VERSION = 0x41
ADDRESS_LENGTH = 34


def _checksum(payload: bytes) -> bytes:
    return hashlib.sha256(hashlib.sha256(payload).digest()).digest()[:4]


def b58encode(data: bytes) -> str:
    n = int.from_bytes(data, "big")
    out = []
    while n > 0:
        n, rem = divmod(n, 58)
        out.append(B58_ALPHABET[rem])
    pad = len(data) - len(data.lstrip(b"\x00"))
    return "1" * pad + "".join(reversed(out))


def b58decode(text: str) -> bytes:
    n = 0
    for ch in text:
        if ch not in _B58_INDEX:
            raise ValueError(f"invalid base58 character {ch!r}")
        n = n * 58 + _B58_INDEX[ch]
    body = n.to_bytes((n.bit_length() + 7) // 8, "big") if n else b""
    pad = len(text) - len(text.lstrip("1"))
    return b"\x00" * pad + body


def decode_address(address: str) -> bytes:
    """Return the 21-byte payload of a base58check address or raise ValueError."""
    raw = b58decode(address)
    if len(raw) != 25:
        raise ValueError("address must decode to 25 bytes")
    payload, check = raw[:21], raw[21:]
    if _checksum(payload) != check:
        raise ValueError("address checksum mismatch")
    if payload[0] != ADDRESS_VERSION:
        raise ValueError("address version byte is not 0x41")
    return payload


def is_valid_address(address: Optional[str]) -> bool:
    if not address or not isinstance(address, str):
        return False
    address = address.strip()
    if len(address) != ADDRESS_LENGTH or not address.startswith("T"):
        return False
    try:
        decode_address(address)
    except ValueError:
        return False
    return True


def hex_to_base58(hex_address: str) -> str:
    """Convert '41…', '0x…' or a 32-byte ABI word to a base58 T-address."""
    h = hex_address.lower()
    if h.startswith("0x"):
        h = h[2:]
    if len(h) == 64:
        h = h[24:]  # ABI-encoded address word
    if len(h) == 40:
        h = "41" + h
    if len(h) != 42:
        raise ValueError(f"unexpected hex address length: {hex_address}")
    payload = bytes.fromhex(h)
    return b58encode(payload + _checksum(payload))


def base58_to_hex(address: str) -> str:
    """'T…' -> '41…' hex, as TronGrid expects for owner/contract fields."""
    return decode_address(address).hex()


def same_address(a: Optional[str], b: Optional[str]) -> bool:
    """Case-insensitive comparison, matching how wallets are stored and compared."""
    if not a or not b:
        return False
    return a.strip().lower() == b.strip().lower()
