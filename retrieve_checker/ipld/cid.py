"""Content identifiers and multihashes."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import Callable

from retrieve_checker.ipld.errors import CIDError, IpldError
from retrieve_checker.ipld.multibase import (
    base58btc_decode,
    base58btc_encode,
    encode_base32,
    multibase_decode,
)
from retrieve_checker.ipld.varint import decode_varint, encode_varint

# Multicodec codes
RAW = 0x55
DAG_PB = 0x70
DAG_CBOR = 0x71

IDENTITY = 0x00
SHA2_256 = 0x12
SHA2_512 = 0x13
BLAKE2B_256 = 0xB220


def _blake2b_256(data: bytes) -> bytes:
    return hashlib.blake2b(data, digest_size=32).digest()


HASHERS: dict[int, Callable[[bytes], bytes]] = {
    IDENTITY: lambda data: data,
    SHA2_256: lambda data: hashlib.sha256(data).digest(),
    SHA2_512: lambda data: hashlib.sha512(data).digest(),
    BLAKE2B_256: _blake2b_256,
}


@dataclass(frozen=True)
class Multihash:
    code: int
    digest: bytes

    @classmethod
    def decode(cls, data: bytes | memoryview, offset: int = 0) -> tuple[Multihash, int]:
        """Read a multihash at ``offset``.

        Returns:
            Tuple of (multihash, offset just past it)

        """
        code, pos = decode_varint(data, offset)
        length, pos = decode_varint(data, pos)
        end = pos + length
        if end > len(data):
            msg = f"multihash digest truncated: expected {length} bytes"
            raise CIDError(msg)
        return cls(code, bytes(data[pos:end])), end

    def encode(self) -> bytes:
        return encode_varint(self.code) + encode_varint(len(self.digest)) + self.digest


@dataclass(frozen=True)
class CID:
    """A parsed CID; two CIDs are equal when version, codec and multihash match."""

    version: int
    codec: int
    multihash: Multihash

    @classmethod
    def parse(cls, text: str) -> CID:
        """Parse the string form of a CID (v0 base58btc or multibase v1)."""
        try:
            if len(text) == 46 and text.startswith("Qm"):
                data = base58btc_decode(text)
            else:
                data = multibase_decode(text)
            cid, end = cls.decode(data)
        except IpldError as e:
            msg = f"invalid CID {text!r}: {e}"
            raise CIDError(msg) from e
        if end != len(data):
            msg = f"invalid CID {text!r}: trailing bytes"
            raise CIDError(msg)
        return cid

    @classmethod
    def decode(cls, data: bytes | memoryview, offset: int = 0) -> tuple[CID, int]:
        """Read a binary CID at ``offset``.

        Returns:
            Tuple of (cid, offset just past it)

        """
        # CIDv0 is a bare sha2-256 multihash
        if len(data) - offset >= 2 and data[offset] == SHA2_256 and data[offset + 1] == 0x20:
            mh, end = Multihash.decode(data, offset)
            return cls(0, DAG_PB, mh), end

        version, pos = decode_varint(data, offset)
        if version != 1:
            msg = f"unsupported CID version {version}"
            raise CIDError(msg)
        codec, pos = decode_varint(data, pos)
        mh, end = Multihash.decode(data, pos)
        return cls(1, codec, mh), end

    def encode(self) -> bytes:
        if self.version == 0:
            return self.multihash.encode()
        return encode_varint(1) + encode_varint(self.codec) + self.multihash.encode()

    def __str__(self) -> str:
        if self.version == 0:
            return base58btc_encode(self.multihash.encode())
        return encode_base32(self.encode())

    @classmethod
    def from_data(cls, data: bytes, codec: int = RAW, hash_code: int = SHA2_256) -> CID:
        """Build a v1 CID for ``data``."""
        try:
            hasher = HASHERS[hash_code]
        except KeyError:
            msg = f"unsupported multihash code 0x{hash_code:x}"
            raise CIDError(msg) from None
        return cls(1, codec, Multihash(hash_code, hasher(data)))
