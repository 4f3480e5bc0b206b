"""Hashing helpers and Tron address handling."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass

from Crypto.Hash import keccak

ADDRESS_LENGTH = 21
ADDRESS_PREFIX = 0x41

_BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"


def _keccak256(data: bytes) -> bytes:
    digest = keccak.new(digest_bits=256)
    digest.update(data)
    return digest.digest()


def _base58_encode(data: bytes) -> str:
    number = int.from_bytes(data, "big")
    encoded = ""
    while number:
        number, remainder = divmod(number, 58)
        encoded = _BASE58_ALPHABET[remainder] + encoded
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "1" * leading_zeros + encoded


@dataclass(frozen=True)
class TronAddress:
    """A 21-byte Tron account address."""

    raw: bytes

    def __post_init__(self) -> None:
        if len(self.raw) != ADDRESS_LENGTH:
            raise ValueError(
                f"invalid address length: expected {ADDRESS_LENGTH} bytes, got {len(self.raw)}"
            )

    @classmethod
    def from_hex(cls, value: str) -> TronAddress:
        """Build an address from its hex form, with or without a 0x prefix."""
        text = value[2:] if value[:2].lower() == "0x" else value
        return cls(bytes.fromhex(text))

    def hex(self) -> str:
        """Return the address as lower-case hex, prefix byte included."""
        return self.raw.hex()

    def __str__(self) -> str:
        checksum = hashlib.sha256(hashlib.sha256(self.raw).digest()).digest()[:4]
        return _base58_encode(self.raw + checksum)


def get_event_topic_hash(event_signature: str) -> str:
    """Return the hex Keccak-256 hash of an event signature."""
    return _keccak256(event_signature.encode()).hex()


def byte_array_to_str(items: list[bytes]) -> str:
    """Render a list of byte strings as ``[0x..,0x..]``."""
    return "[" + ",".join("0x" + item.hex() for item in items) + "]"


def public_key_to_tron_address(pub_key: str) -> TronAddress:
    """Derive the Tron address of an uncompressed hex-encoded public key."""
    if pub_key == "":
        raise ValueError("public key cannot be empty")
    key_bytes = bytes.fromhex(pub_key)
    # drop the 0x04 uncompressed-point prefix
    hashed = _keccak256(key_bytes[1:])
    return TronAddress(bytes([ADDRESS_PREFIX]) + hashed[-20:])