"""Minimal DAG-CBOR codec.

Decodes the strict DAG-CBOR subset: definite lengths only, string map keys
and tag 42 for links. The encoder exists for CAR headers and fixtures.
"""

from __future__ import annotations

import struct
from typing import Any

from retrieve_checker.ipld.cid import CID
from retrieve_checker.ipld.errors import DagCborError, IpldError

CID_TAG = 42
# Arrays, maps and tags nested deeper than this are rejected
MAX_DEPTH = 256


def _encode_uint(major: int, value: int) -> bytes:
    if value < 24:
        return bytes([(major << 5) | value])
    if value < 1 << 8:
        return bytes([(major << 5) | 24, value])
    if value < 1 << 16:
        return bytes([(major << 5) | 25]) + value.to_bytes(2, "big")
    if value < 1 << 32:
        return bytes([(major << 5) | 26]) + value.to_bytes(4, "big")
    if value < 1 << 64:
        return bytes([(major << 5) | 27]) + value.to_bytes(8, "big")
    msg = "integer too large for CBOR"
    raise DagCborError(msg)


def _encode_value(value: Any) -> bytes:
    if value is None:
        return b"\xf6"
    if value is True:
        return b"\xf5"
    if value is False:
        return b"\xf4"
    if isinstance(value, CID):
        return _encode_uint(6, CID_TAG) + _encode_value(b"\x00" + value.encode())
    if isinstance(value, int):
        if value >= 0:
            return _encode_uint(0, value)
        return _encode_uint(1, -1 - value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        value = bytes(value)
        return _encode_uint(2, len(value)) + value
    if isinstance(value, str):
        data = value.encode("utf-8")
        return _encode_uint(3, len(data)) + data
    if isinstance(value, float):
        return b"\xfb" + struct.pack(">d", value)
    if isinstance(value, (list, tuple)):
        return _encode_uint(4, len(value)) + b"".join(_encode_value(v) for v in value)
    if isinstance(value, dict):
        # DAG-CBOR key order: length first, then bytewise
        keys = sorted(value, key=lambda k: (len(k.encode("utf-8")), k.encode("utf-8")))
        out = bytearray(_encode_uint(5, len(keys)))
        for key in keys:
            out.extend(_encode_value(key))
            out.extend(_encode_value(value[key]))
        return bytes(out)
    msg = f"unsupported type {type(value)!r}"
    raise DagCborError(msg)


def encode(value: Any) -> bytes:
    """Encode a Python value as DAG-CBOR."""
    return _encode_value(value)


def _read_uint(ai: int, data: memoryview, pos: int) -> tuple[int, int]:
    if ai < 24:
        return ai, pos
    width = {24: 1, 25: 2, 26: 4, 27: 8}.get(ai)
    if width is None:
        msg = "indefinite-length values are not allowed"
        raise DagCborError(msg)
    if pos + width > len(data):
        msg = "unexpected end of data"
        raise DagCborError(msg)
    return int.from_bytes(data[pos : pos + width], "big"), pos + width


def _decode_value(data: memoryview, pos: int, depth: int = 0) -> tuple[Any, int]:
    if depth > MAX_DEPTH:
        msg = f"nesting deeper than {MAX_DEPTH} levels"
        raise DagCborError(msg)
    if pos >= len(data):
        msg = "unexpected end of data"
        raise DagCborError(msg)
    initial = data[pos]
    major = initial >> 5
    ai = initial & 0x1F
    pos += 1

    if major in (0, 1):
        value, pos = _read_uint(ai, data, pos)
        return (value if major == 0 else -1 - value), pos
    if major in (2, 3):
        length, pos = _read_uint(ai, data, pos)
        end = pos + length
        if end > len(data):
            msg = "string truncated"
            raise DagCborError(msg)
        raw = data[pos:end].tobytes()
        if major == 2:
            return raw, end
        try:
            return raw.decode("utf-8"), end
        except UnicodeDecodeError as e:
            msg = "invalid UTF-8 in text string"
            raise DagCborError(msg) from e
    if major == 4:
        length, pos = _read_uint(ai, data, pos)
        items = []
        for _ in range(length):
            value, pos = _decode_value(data, pos, depth + 1)
            items.append(value)
        return items, pos
    if major == 5:
        length, pos = _read_uint(ai, data, pos)
        result: dict[str, Any] = {}
        for _ in range(length):
            key, pos = _decode_value(data, pos, depth + 1)
            if not isinstance(key, str):
                msg = "map keys must be strings"
                raise DagCborError(msg)
            value, pos = _decode_value(data, pos, depth + 1)
            result[key] = value
        return result, pos
    if major == 6:
        tag, pos = _read_uint(ai, data, pos)
        if tag != CID_TAG:
            msg = f"unsupported tag {tag}"
            raise DagCborError(msg)
        raw, pos = _decode_value(data, pos, depth + 1)
        if not isinstance(raw, bytes) or not raw.startswith(b"\x00"):
            msg = "tag 42 must wrap a 0x00-prefixed byte string"
            raise DagCborError(msg)
        try:
            cid, end = CID.decode(raw, 1)
        except IpldError as e:
            msg = f"invalid link: {e}"
            raise DagCborError(msg) from e
        if end != len(raw):
            msg = "trailing bytes in link"
            raise DagCborError(msg)
        return cid, pos
    if major == 7:
        if ai == 20:
            return False, pos
        if ai == 21:
            return True, pos
        if ai == 22:
            return None, pos
        if ai in (25, 26, 27):
            width, fmt = {25: (2, ">e"), 26: (4, ">f"), 27: (8, ">d")}[ai]
            if pos + width > len(data):
                msg = "float truncated"
                raise DagCborError(msg)
            return struct.unpack(fmt, data[pos : pos + width])[0], pos + width
        msg = f"unsupported simple value ai={ai}"
        raise DagCborError(msg)
    msg = f"unsupported major type {major}"  # pragma: no cover
    raise DagCborError(msg)  # pragma: no cover


def decode_prefix(data: bytes | memoryview, offset: int = 0) -> tuple[Any, int]:
    """Decode one value at ``offset`` and return it with the end offset."""
    return _decode_value(memoryview(data), offset)


def decode(data: bytes | memoryview) -> Any:
    """Decode exactly one DAG-CBOR value."""
    value, end = decode_prefix(data)
    if end != len(data):
        msg = "trailing bytes after DAG-CBOR value"
        raise DagCborError(msg)
    return value


def iter_links(value: Any):
    """Yield every CID reachable inside a decoded value."""
    if isinstance(value, CID):
        yield value
    elif isinstance(value, list):
        for item in value:
            yield from iter_links(item)
    elif isinstance(value, dict):
        for item in value.values():
            yield from iter_links(item)
