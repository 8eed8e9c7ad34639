"""Unsigned LEB128 varints as used by multiformats."""

from __future__ import annotations

from retrieve_checker.ipld.errors import VarintError

# multiformats caps varints at 9 bytes (63 bits)
MAX_VARINT_BYTES = 9


def encode_varint(value: int) -> bytes:
    """Encode a non-negative integer."""
    if value < 0:
        msg = "varint must be non-negative"
        raise VarintError(msg)
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def decode_varint(data: bytes | memoryview, offset: int = 0) -> tuple[int, int]:
    """Decode a varint starting at ``offset``.

    Returns:
        Tuple of (value, offset just past the varint)

    """
    value = 0
    shift = 0
    pos = offset
    while True:
        if pos >= len(data):
            msg = "truncated varint"
            raise VarintError(msg)
        if pos - offset >= MAX_VARINT_BYTES:
            msg = "varint too long"
            raise VarintError(msg)
        byte = data[pos]
        pos += 1
        value |= (byte & 0x7F) << shift
        if not byte & 0x80:
            return value, pos
        shift += 7
