"""IPLD codecs: varint, multibase, CID, DAG-CBOR, DAG-PB and CAR."""

from __future__ import annotations

from retrieve_checker.ipld.block import Block, block_links, validate_block
from retrieve_checker.ipld.car import CarHeader, encode_car, read_car
from retrieve_checker.ipld.cid import CID, Multihash
from retrieve_checker.ipld.errors import (
    CarFormatError,
    CIDError,
    DagCborError,
    DagPbError,
    IpldError,
    MultibaseError,
    VarintError,
)

__all__ = [
    "CID",
    "Block",
    "CIDError",
    "CarFormatError",
    "CarHeader",
    "DagCborError",
    "DagPbError",
    "IpldError",
    "MultibaseError",
    "Multihash",
    "VarintError",
    "block_links",
    "encode_car",
    "read_car",
    "validate_block",
]
