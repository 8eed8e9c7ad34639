"""Exception hierarchy for the retrieval checker.

Every failure that can end up in a Stats record carries a stable ``code``
string. The error classifier maps those codes to numeric status codes, so
messages can change freely while codes must not.
"""

from __future__ import annotations

from typing import Any


class CheckerError(Exception):
    """Base exception for all retrieval checker errors."""

    code: str | None = None

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        """Initialize checker error."""
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        """Return string representation of the error."""
        if self.details:
            return f"{self.message} (Details: {self.details})"
        return self.message


class ConfigurationError(CheckerError):
    """Configuration validation errors."""


# Address translation


class MultiaddrError(CheckerError, ValueError):
    """Multiaddr cannot be converted to an HTTP(S) URL."""


class UnsupportedHostTypeError(MultiaddrError):
    """Host segment is not ip4, ip6, dns, dns4 or dns6."""

    code = "UNSUPPORTED_MULTIADDR_HOST_TYPE"


class UnsupportedProtocolError(MultiaddrError):
    """Transport segment is not tcp."""

    code = "UNSUPPORTED_MULTIADDR_PROTO"


class UnsupportedSchemeError(MultiaddrError):
    """Scheme segment is not http or https."""

    code = "UNSUPPORTED_MULTIADDR_SCHEME"


class TooManyPartsError(MultiaddrError):
    """Multiaddr has unconsumed trailing segments."""

    code = "MULTIADDR_HAS_TOO_MANY_PARTS"


class InvalidHttpPathError(MultiaddrError):
    """The /http-path suffix is not valid percent-encoding."""

    code = "INVALID_HTTP_PATH"


# Content verification


class ContentVerificationError(CheckerError):
    """Downloaded content could not be verified against the requested CID."""


class UnsupportedHashError(ContentVerificationError):
    """Block uses a multihash function we cannot compute."""

    code = "UNSUPPORTED_HASH"


class HashMismatchError(ContentVerificationError):
    """Block bytes do not hash to the digest in the block's CID."""

    code = "HASH_MISMATCH"


class UnexpectedCarBlockError(ContentVerificationError):
    """Container carries a block that was not requested."""

    code = "UNEXPECTED_CAR_BLOCK"


class CarParseError(ContentVerificationError):
    """Container bytes are not a readable CAR file."""

    code = "CANNOT_PARSE_CAR_BYTES"


class IncompleteDagError(ContentVerificationError):
    """Neither the requested block nor a fully linked parent was found."""

    code = "INCOMPLETE_DAG"


class EmptyCarError(ContentVerificationError):
    """Provider answered 2xx with an empty body."""

    code = "EMPTY_CAR"


# Network


class NetworkError(CheckerError):
    """Network-related errors."""


class HttpResponseError(NetworkError):
    """Server answered with a non-2xx status."""

    def __init__(
        self,
        message: str,
        status_code: int,
        server_message: str | None = None,
    ):
        """Initialize HTTP response error."""
        super().__init__(message)
        self.status_code = status_code
        self.server_message = server_message


class RetrievalTimeoutError(NetworkError):
    """Retrieval was aborted by the idle timer or the hard deadline."""

    code = "RETRIEVAL_TIMEOUT"


class RpcTransportError(NetworkError):
    """JSON-RPC request failed before a JSON-RPC response was received."""

    def __init__(self, message: str, status_code: int | None = None):
        """Initialize RPC transport error."""
        super().__init__(message)
        self.status_code = status_code


class FilecoinRpcError(CheckerError):
    """Server returned a JSON-RPC error object.

    Unlike transport failures this is not routine unavailability: it usually
    means we sent a request the node considers invalid.
    """

    def __init__(self, message: str, rpc_code: int | None = None):
        """Initialize JSON-RPC error."""
        super().__init__(message)
        self.rpc_code = rpc_code


class PeerResolutionError(CheckerError):
    """Miner's index provider peer id could not be obtained."""


class ContractCallError(CheckerError):
    """On-chain peer-id lookup failed."""
