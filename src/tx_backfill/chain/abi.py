"""Minimal ABI helpers for the calls and logs the backfill touches.

Only fixed-width types are needed here (address, bytes32, uint256), so
encoding is plain 32-byte word packing. Hashing uses keccak-256 from
pycryptodome.
"""

from __future__ import annotations

from Crypto.Hash import keccak

NULL_ADDRESS = "0x0000000000000000000000000000000000000000"

TRANSFER_EVENT_SIGNATURE = "Transfer(address,address,uint256)"
GET_CARD_ADDRESS_SIGNATURE = "getCardAddress(bytes32,bytes32)"

_WORD_HEX = 64


def keccak256(data: bytes | str) -> bytes:
    """keccak-256 digest; strings are UTF-8 encoded first."""
    if isinstance(data, str):
        data = data.encode("utf-8")
    h = keccak.new(digest_bits=256)
    h.update(data)
    return h.digest()


def event_topic(signature: str) -> str:
    """Topic-0 hash for an event signature."""
    return "0x" + keccak256(signature).hex()


def function_selector(signature: str) -> str:
    """First four bytes of the signature hash, 0x-prefixed."""
    return "0x" + keccak256(signature)[:4].hex()


def encode_call(signature: str, *words: bytes) -> str:
    """Encode a call whose arguments are all static 32-byte words."""
    parts = [function_selector(signature)[2:]]
    for word in words:
        if len(word) != 32:
            raise ValueError(f"Expected 32-byte argument, got {len(word)} bytes")
        parts.append(word.hex())
    return "0x" + "".join(parts)


def decode_address(word: str) -> str:
    """Decode a left-padded 32-byte word (topic or return data) to an address."""
    raw = word[2:] if word.startswith("0x") else word
    if len(raw) < _WORD_HEX:
        raise ValueError(f"Not a 32-byte word: {word!r}")
    return "0x" + raw[_WORD_HEX - 40:_WORD_HEX].lower()


def decode_uint(data: str) -> int:
    raw = data[2:] if data.startswith("0x") else data
    return int(raw or "0", 16)


TRANSFER_TOPIC = event_topic(TRANSFER_EVENT_SIGNATURE)
