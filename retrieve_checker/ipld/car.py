"""CAR (Content Addressable aRchive) reader.

A CARv1 is a varint-prefixed DAG-CBOR header ``{"roots": [...], "version": 1}``
followed by sections of ``varint(len) | CID | block bytes``. A CARv2 wraps a
CARv1 payload behind a fixed pragma and a 40-byte header.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator

from retrieve_checker.ipld import dag_cbor
from retrieve_checker.ipld.block import Block
from retrieve_checker.ipld.cid import CID
from retrieve_checker.ipld.errors import CarFormatError, IpldError
from retrieve_checker.ipld.varint import decode_varint, encode_varint

CARV2_PRAGMA = bytes.fromhex("0aa16776657273696f6e02")
CARV2_HEADER_SIZE = 40


@dataclass
class CarHeader:
    version: int
    roots: list[CID] = field(default_factory=list)


def _read_v1_header(buf: memoryview) -> tuple[CarHeader, int]:
    length, pos = decode_varint(buf, 0)
    if length == 0:
        msg = "CAR header has zero length"
        raise CarFormatError(msg)
    end = pos + length
    if end > len(buf):
        msg = "CAR header truncated"
        raise CarFormatError(msg)
    header = dag_cbor.decode(buf[pos:end])
    if not isinstance(header, dict):
        msg = "CAR header is not a map"
        raise CarFormatError(msg)
    version = header.get("version")
    roots = header.get("roots", [])
    if version == 1 and (not isinstance(roots, list) or not all(isinstance(r, CID) for r in roots)):
        msg = "CAR header roots must be a list of CIDs"
        raise CarFormatError(msg)
    return CarHeader(version, list(roots) if isinstance(roots, list) else []), end


def _unwrap_v2(buf: memoryview) -> memoryview:
    start = len(CARV2_PRAGMA)
    if len(buf) < start + CARV2_HEADER_SIZE:
        msg = "CARv2 header truncated"
        raise CarFormatError(msg)
    header = buf[start : start + CARV2_HEADER_SIZE]
    # 16 bytes of characteristics, then little-endian u64 offsets
    data_offset = int.from_bytes(header[16:24], "little")
    data_size = int.from_bytes(header[24:32], "little")
    if data_offset + data_size > len(buf):
        msg = "CARv2 payload truncated"
        raise CarFormatError(msg)
    return buf[data_offset : data_offset + data_size]


def _iter_sections(buf: memoryview, pos: int) -> Iterator[Block]:
    while pos < len(buf):
        length, pos = decode_varint(buf, pos)
        end = pos + length
        if length == 0 or end > len(buf):
            msg = "CAR section truncated"
            raise CarFormatError(msg)
        cid, data_start = CID.decode(buf[:end], pos)
        yield Block(cid, buf[data_start:end].tobytes())
        pos = end


def read_car(data: bytes | memoryview) -> tuple[CarHeader, list[Block]]:
    """Parse a CARv1 or CARv2 container.

    Returns:
        Tuple of (header of the CARv1 payload, blocks in file order)

    Raises:
        CarFormatError: the bytes are not a readable container

    """
    buf = memoryview(data)
    try:
        if buf[: len(CARV2_PRAGMA)] == CARV2_PRAGMA:
            buf = _unwrap_v2(buf)
        header, pos = _read_v1_header(buf)
        if header.version != 1:
            msg = f"unsupported CAR version {header.version}"
            raise CarFormatError(msg)
        blocks = list(_iter_sections(buf, pos))
    except CarFormatError:
        raise
    except IpldError as e:
        msg = f"Invalid CAR: {e}"
        raise CarFormatError(msg) from e
    return header, blocks


def encode_car(roots: list[CID], blocks: list[Block]) -> bytes:
    """Encode a CARv1 container."""
    header = dag_cbor.encode({"roots": roots, "version": 1})
    out = bytearray(encode_varint(len(header)) + header)
    for block in blocks:
        cid_bytes = block.cid.encode()
        out.extend(encode_varint(len(cid_bytes) + len(block.data)))
        out.extend(cid_bytes)
        out.extend(block.data)
    return bytes(out)
