"""Map retrieval failures to stable numeric status codes.

The numbers are consumed by downstream analytics and must never be
renumbered:

* 600 - unknown failure (fallback)
* 701-705 - multiaddr cannot be turned into a URL
* 801-802 - transport failures (DNS, TCP connect)
* 901-904 - downloaded content failed verification
"""

from __future__ import annotations

import logging

from retrieve_checker.utils.exceptions import HashMismatchError, UnsupportedHashError

logger = logging.getLogger(__name__)

UNKNOWN_ERROR = 600

CODE_STATUS: dict[str, int] = {
    "UNSUPPORTED_MULTIADDR_HOST_TYPE": 701,
    "UNSUPPORTED_MULTIADDR_PROTO": 702,
    "UNSUPPORTED_MULTIADDR_SCHEME": 703,
    "MULTIADDR_HAS_TOO_MANY_PARTS": 704,
    "INVALID_HTTP_PATH": 705,
    "UNSUPPORTED_HASH": 901,
    "HASH_MISMATCH": 902,
    "UNEXPECTED_CAR_BLOCK": 903,
    "CANNOT_PARSE_CAR_BYTES": 904,
}

# Substrings of transport error text, checked in order. aiohttp wraps
# resolver and connect failures with these phrases.
TRANSPORT_PATTERNS: tuple[tuple[str, int], ...] = (
    ("dns error", 801),
    ("name or service not known", 801),
    ("nodename nor servname provided", 801),
    ("temporary failure in name resolution", 801),
    ("domain name not found", 801),
    ("could not contact dns servers", 801),
    ("tcp connect error", 802),
    ("cannot connect to host", 802),
    ("connection refused", 802),
)


def _describe(err: BaseException) -> str:
    parts = [str(err)]
    cause = err.__cause__ or err.__context__
    # Include one level of cause: connectors often wrap the OS error
    if cause is not None and cause is not err:
        parts.append(str(cause))
    return " ".join(parts).lower()


def classify_error(err: BaseException) -> int:
    """Return the status code for ``err``; never raises."""
    try:
        code = getattr(err, "code", None)
        if isinstance(code, str) and code in CODE_STATUS:
            return CODE_STATUS[code]

        if isinstance(err, UnsupportedHashError):
            return 901
        if isinstance(err, HashMismatchError):
            return 902

        text = _describe(err)
        for needle, status in TRANSPORT_PATTERNS:
            if needle in text:
                return status
    except Exception:  # pragma: no cover
        logger.exception("Failed to classify %r", err)
    return UNKNOWN_ERROR
