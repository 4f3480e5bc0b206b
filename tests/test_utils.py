import pytest

from tronrelay.utils import (
    TronAddress,
    byte_array_to_str,
    get_event_topic_hash,
    public_key_to_tron_address,
)

# Uncompressed public key of the secp256k1 generator point.
GENERATOR_PUBKEY = (
    "04"
    "79be667ef9dcbbac55a06295ce870b07029bfcdb2dce28d959f2815b16f81798"
    "483ada7726a3c4655da4fbfc0e1108a8fd17b448a68554199c47d08ffb10d4b8"
)


def test_get_event_topic_hash():
    topic_hash = get_event_topic_hash("Transfer(address,address,uint256)")
    assert topic_hash == "ddf252ad1be2c89b69c2b068fc378daa952ba7f163c4a11628f55a4df523b3ef"


def test_byte_array_to_str():
    items = [bytes([0x01, 0x02, 0x03]), bytes([0x04, 0x05, 0x06])]
    assert byte_array_to_str(items) == "[0x010203,0x040506]"


def test_byte_array_to_str_empty():
    assert byte_array_to_str([]) == "[]"


def test_public_key_to_tron_address():
    address = public_key_to_tron_address(GENERATOR_PUBKEY)
    assert address.hex() == "417e5f4552091a69125d5dfcb7b8c2659029395bdf"


def test_public_key_to_tron_address_base58_form():
    text = str(public_key_to_tron_address(GENERATOR_PUBKEY))
    assert text.startswith("T")
    assert len(text) == 34


def test_public_key_empty():
    with pytest.raises(ValueError, match="public key cannot be empty"):
        public_key_to_tron_address("")


def test_public_key_invalid_hex():
    with pytest.raises(ValueError):
        public_key_to_tron_address("zz11")


def test_address_hex_round_trip():
    hex_value = "417e5f4552091a69125d5dfcb7b8c2659029395bdf"
    address = TronAddress.from_hex("0x" + hex_value)
    assert address.hex() == hex_value
    assert TronAddress.from_hex(address.hex()) == address


def test_address_wrong_length():
    with pytest.raises(ValueError, match="invalid address length"):
        TronAddress.from_hex("41aabb")