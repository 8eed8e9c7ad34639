"""Errors raised by the IPLD codecs.

All of them are ``ValueError`` subclasses: they describe malformed input,
never an I/O failure.
"""

from __future__ import annotations


class IpldError(ValueError):
    """Base class for codec failures."""


class VarintError(IpldError):
    """Unsigned varint is truncated or too long."""


class MultibaseError(IpldError):
    """String uses an unknown multibase prefix or invalid characters."""


class CIDError(IpldError):
    """Bytes or string do not form a valid CID."""


class DagCborError(IpldError):
    """Bytes are not valid DAG-CBOR."""


class DagPbError(IpldError):
    """Bytes are not a valid DAG-PB node."""


class CarFormatError(IpldError):
    """Bytes are not a readable CAR (v1 or v2) container."""
