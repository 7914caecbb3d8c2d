"""Decoder for consensus-serialized Clarity values.

Read-only contract calls return their result as hex-encoded Clarity
values. Decoded values map onto Python as follows:

- int / uint: ``int``
- buffer: ``bytes``
- bool: ``bool``
- principals: c32check address strings (``SP...`` / ``SP....contract``)
- ``(ok v)`` / ``(err v)``: ``ClarityResponse``
- ``none`` / ``(some v)``: ``None`` / ``v``
- list: ``list``; tuple: ``dict``
- string-ascii / string-utf8: ``str``
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Any

C32_ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"


class ClarityDecodeError(ValueError):
    """Raised when a hex payload is not a valid serialized Clarity value."""


@dataclass(frozen=True)
class ClarityResponse:
    ok: bool
    value: Any


def c32_encode(data: bytes) -> str:
    """Crockford-style base32 used by Stacks addresses, preserving leading zero bytes."""
    number = int.from_bytes(data, "big")
    chars = []
    while number > 0:
        number, remainder = divmod(number, 32)
        chars.append(C32_ALPHABET[remainder])
    leading_zeros = len(data) - len(data.lstrip(b"\x00"))
    return "0" * leading_zeros + "".join(reversed(chars))


def c32_address(version: int, hash160: bytes) -> str:
    """Render a principal (version byte + hash160) as a c32check address."""
    checksum = hashlib.sha256(hashlib.sha256(bytes([version]) + hash160).digest()).digest()[:4]
    return "S" + C32_ALPHABET[version] + c32_encode(hash160 + checksum)


def _take(data: bytes, offset: int, size: int) -> tuple[bytes, int]:
    end = offset + size
    if end > len(data):
        raise ClarityDecodeError(f"unexpected end of data at offset {offset}")
    return data[offset:end], end


def _take_u32(data: bytes, offset: int) -> tuple[int, int]:
    raw, offset = _take(data, offset, 4)
    return int.from_bytes(raw, "big"), offset


def _decode(data: bytes, offset: int) -> tuple[Any, int]:
    raw_type, offset = _take(data, offset, 1)
    type_id = raw_type[0]

    if type_id in (0x00, 0x01):
        raw, offset = _take(data, offset, 16)
        return int.from_bytes(raw, "big", signed=type_id == 0x00), offset
    if type_id == 0x02:
        length, offset = _take_u32(data, offset)
        return _take(data, offset, length)
    if type_id == 0x03:
        return True, offset
    if type_id == 0x04:
        return False, offset
    if type_id in (0x05, 0x06):
        version, offset = _take(data, offset, 1)
        hash160, offset = _take(data, offset, 20)
        address = c32_address(version[0], hash160)
        if type_id == 0x05:
            return address, offset
        name_length, offset = _take(data, offset, 1)
        name, offset = _take(data, offset, name_length[0])
        return f"{address}.{name.decode('ascii')}", offset
    if type_id in (0x07, 0x08):
        inner, offset = _decode(data, offset)
        return ClarityResponse(ok=type_id == 0x07, value=inner), offset
    if type_id == 0x09:
        return None, offset
    if type_id == 0x0A:
        return _decode(data, offset)
    if type_id == 0x0B:
        count, offset = _take_u32(data, offset)
        items = []
        for _ in range(count):
            item, offset = _decode(data, offset)
            items.append(item)
        return items, offset
    if type_id == 0x0C:
        count, offset = _take_u32(data, offset)
        fields: dict[str, Any] = {}
        for _ in range(count):
            name_length, offset = _take(data, offset, 1)
            name, offset = _take(data, offset, name_length[0])
            fields[name.decode("ascii")], offset = _decode(data, offset)
        return fields, offset
    if type_id in (0x0D, 0x0E):
        length, offset = _take_u32(data, offset)
        raw, offset = _take(data, offset, length)
        try:
            return raw.decode("ascii" if type_id == 0x0D else "utf-8"), offset
        except UnicodeDecodeError as e:
            raise ClarityDecodeError(f"invalid string payload: {e}") from e

    raise ClarityDecodeError(f"unknown Clarity type id 0x{type_id:02x}")


def decode_clarity_hex(hex_value: str) -> Any:
    """Decode a ``0x``-prefixed (or bare) hex string into a Python value."""
    text = hex_value[2:] if hex_value.startswith("0x") else hex_value
    try:
        data = bytes.fromhex(text)
    except ValueError as e:
        raise ClarityDecodeError(f"invalid hex: {e}") from e
    value, offset = _decode(data, 0)
    if offset != len(data):
        raise ClarityDecodeError(f"{len(data) - offset} trailing byte(s)")
    return value
