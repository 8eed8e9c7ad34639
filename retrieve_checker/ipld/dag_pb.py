"""DAG-PB (UnixFS node) protobuf codec.

Wire layout::

    PBNode { 2: repeated PBLink Links; 1: optional bytes Data }
    PBLink { 1: bytes Hash; 2: optional string Name; 3: optional uint64 Tsize }
"""

from __future__ import annotations

from dataclasses import dataclass, field

from retrieve_checker.ipld.cid import CID
from retrieve_checker.ipld.errors import DagPbError, IpldError
from retrieve_checker.ipld.varint import decode_varint, encode_varint

WIRE_VARINT = 0
WIRE_LENGTH_DELIMITED = 2


@dataclass
class PBLink:
    hash: CID
    name: str | None = None
    tsize: int | None = None


@dataclass
class PBNode:
    links: list[PBLink] = field(default_factory=list)
    data: bytes | None = None


def _read_field(buf: memoryview, pos: int) -> tuple[int, int, int | bytes, int]:
    """Read one protobuf field.

    Returns:
        Tuple of (field number, wire type, value, next offset)

    """
    key, pos = decode_varint(buf, pos)
    field_no, wire_type = key >> 3, key & 0x07
    if wire_type == WIRE_VARINT:
        value, pos = decode_varint(buf, pos)
        return field_no, wire_type, value, pos
    if wire_type == WIRE_LENGTH_DELIMITED:
        length, pos = decode_varint(buf, pos)
        end = pos + length
        if end > len(buf):
            msg = f"field {field_no} truncated"
            raise DagPbError(msg)
        return field_no, wire_type, buf[pos:end].tobytes(), end
    msg = f"unexpected wire type {wire_type} for field {field_no}"
    raise DagPbError(msg)


def _decode_link(buf: memoryview) -> PBLink:
    link_hash: CID | None = None
    name: str | None = None
    tsize: int | None = None
    pos = 0
    while pos < len(buf):
        field_no, wire_type, value, pos = _read_field(buf, pos)
        if field_no == 1 and wire_type == WIRE_LENGTH_DELIMITED:
            cid, end = CID.decode(value)
            if end != len(value):
                msg = "trailing bytes in link hash"
                raise DagPbError(msg)
            link_hash = cid
        elif field_no == 2 and wire_type == WIRE_LENGTH_DELIMITED:
            name = value.decode("utf-8")
        elif field_no == 3 and wire_type == WIRE_VARINT:
            tsize = value
        else:
            msg = f"unexpected field {field_no} in PBLink"
            raise DagPbError(msg)
    if link_hash is None:
        msg = "PBLink without Hash"
        raise DagPbError(msg)
    return PBLink(link_hash, name, tsize)


def decode(data: bytes | memoryview) -> PBNode:
    """Decode a DAG-PB block."""
    buf = memoryview(data)
    node = PBNode()
    pos = 0
    try:
        while pos < len(buf):
            field_no, wire_type, value, pos = _read_field(buf, pos)
            if field_no == 2 and wire_type == WIRE_LENGTH_DELIMITED:
                node.links.append(_decode_link(memoryview(value)))
            elif field_no == 1 and wire_type == WIRE_LENGTH_DELIMITED:
                if node.data is not None:
                    msg = "duplicate Data field"
                    raise DagPbError(msg)
                node.data = value
            else:
                msg = f"unexpected field {field_no} in PBNode"
                raise DagPbError(msg)
    except UnicodeDecodeError as e:
        msg = "link name is not valid UTF-8"
        raise DagPbError(msg) from e
    except DagPbError:
        raise
    except IpldError as e:
        msg = f"invalid DAG-PB node: {e}"
        raise DagPbError(msg) from e
    return node


def _length_delimited(field_no: int, payload: bytes) -> bytes:
    return encode_varint(field_no << 3 | WIRE_LENGTH_DELIMITED) + encode_varint(len(payload)) + payload


def encode(node: PBNode) -> bytes:
    """Encode a node in canonical order (links first, then data)."""
    out = bytearray()
    for link in node.links:
        body = _length_delimited(1, link.hash.encode())
        if link.name is not None:
            body += _length_delimited(2, link.name.encode("utf-8"))
        if link.tsize is not None:
            body += encode_varint(3 << 3 | WIRE_VARINT) + encode_varint(link.tsize)
        out.extend(_length_delimited(2, body))
    if node.data is not None:
        out.extend(_length_delimited(1, node.data))
    return bytes(out)
