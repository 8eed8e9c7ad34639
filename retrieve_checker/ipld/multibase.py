"""Multibase string encodings used for CIDs."""

from __future__ import annotations

import base64
import binascii

from retrieve_checker.ipld.errors import MultibaseError

BASE58_ALPHABET = "123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz"
_BASE58_INDEX = {ch: i for i, ch in enumerate(BASE58_ALPHABET)}


def base58btc_encode(data: bytes) -> str:
    """Encode bytes as base58btc (no multibase prefix)."""
    zeros = len(data) - len(data.lstrip(b"\x00"))
    num = int.from_bytes(data, "big")
    chars = []
    while num:
        num, rem = divmod(num, 58)
        chars.append(BASE58_ALPHABET[rem])
    return "1" * zeros + "".join(reversed(chars))


def base58btc_decode(text: str) -> bytes:
    """Decode base58btc text (no multibase prefix)."""
    num = 0
    for ch in text:
        try:
            num = num * 58 + _BASE58_INDEX[ch]
        except KeyError:
            msg = f"invalid base58btc character {ch!r}"
            raise MultibaseError(msg) from None
    zeros = len(text) - len(text.lstrip("1"))
    body = num.to_bytes((num.bit_length() + 7) // 8, "big") if num else b""
    return b"\x00" * zeros + body


def _b32_decode(text: str) -> bytes:
    text = text.upper()
    return base64.b32decode(text + "=" * (-len(text) % 8))


def _b64_decode(text: str, altchars: bytes | None) -> bytes:
    return base64.b64decode(text + "=" * (-len(text) % 4), altchars=altchars, validate=True)


def encode_base32(data: bytes) -> str:
    """Encode bytes as multibase base32 (``b`` prefix, lowercase, unpadded)."""
    return "b" + base64.b32encode(data).decode("ascii").lower().rstrip("=")


def multibase_decode(text: str) -> bytes:
    """Decode a multibase-prefixed string."""
    if not text:
        msg = "empty multibase string"
        raise MultibaseError(msg)
    prefix, body = text[0], text[1:]
    try:
        if prefix in ("b", "B"):
            return _b32_decode(body)
        if prefix == "z":
            return base58btc_decode(body)
        if prefix in ("f", "F"):
            return bytes.fromhex(body)
        if prefix == "m":
            return _b64_decode(body, None)
        if prefix == "u":
            return _b64_decode(body, b"-_")
    except (binascii.Error, ValueError) as e:
        if isinstance(e, MultibaseError):
            raise
        msg = f"invalid multibase string {text!r}: {e}"
        raise MultibaseError(msg) from e
    msg = f"unsupported multibase prefix {prefix!r}"
    raise MultibaseError(msg)
