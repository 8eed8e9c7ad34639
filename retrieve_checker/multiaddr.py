"""Translate provider multiaddrs into HTTP(S) URLs.

Only the subset of multiaddr grammar that IPNI HTTP providers advertise is
understood::

    /<host-type>/<host>/tcp/<port>/<scheme>
    /<host-type>/<host>/<scheme>
    /<host-type>/<host>/<scheme>/http-path/<percent-encoded path>
"""

from __future__ import annotations

import re
from urllib.parse import unquote_to_bytes

from retrieve_checker.utils.exceptions import (
    InvalidHttpPathError,
    TooManyPartsError,
    UnsupportedHostTypeError,
    UnsupportedProtocolError,
    UnsupportedSchemeError,
)

HTTP_PATH_MARKER = "/http-path"
SUPPORTED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": "80", "https": "443"}

# "%" not followed by two hex digits
_BAD_ESCAPE = re.compile(r"%(?![0-9A-Fa-f]{2})")


def _at(items: list[str], index: int) -> str | None:
    return items[index] if index < len(items) else None


def _decode_uri_component(value: str) -> str:
    """Percent-decode ``value``, rejecting malformed escapes and invalid UTF-8."""
    if _BAD_ESCAPE.search(value):
        msg = f"malformed percent-encoding in {value!r}"
        raise ValueError(msg)
    return unquote_to_bytes(value).decode("utf-8")


def multiaddr_to_http_url(addr: str) -> str:
    """Convert a multiaddr to a URL.

    Args:
        addr: Multiaddr, e.g. ``/ip4/127.0.0.1/tcp/80/http``

    Returns:
        URL without a trailing slash, e.g. ``http://127.0.0.1``. Default
        ports are omitted.

    Raises:
        MultiaddrError: one of its subclasses, carrying the failure code

    """
    pieces = addr.split(HTTP_PATH_MARKER)
    tokens = pieces[0].split("/")
    host_type, host_value = _at(tokens, 1), _at(tokens, 2)
    parts = tokens[3:]

    port: str | None = None
    path: str | None = None

    if HTTP_PATH_MARKER in addr:
        scheme, rest = _at(parts, 0), parts[1:]
        try:
            # Drop the leading slash of the path component
            path = _decode_uri_component(pieces[1][1:])
        except ValueError as e:
            msg = f'Cannot parse "{addr}": unsupported http path'
            raise InvalidHttpPathError(msg) from e
    elif _at(parts, 0) in SUPPORTED_SCHEMES:
        scheme, rest = parts[0], parts[1:]
    else:
        ip_protocol, port, scheme = _at(parts, 0), _at(parts, 1), _at(parts, 2)
        rest = parts[3:]
        if ip_protocol != "tcp":
            msg = f'Cannot parse "{addr}": unsupported protocol "{ip_protocol}"'
            raise UnsupportedProtocolError(msg)

    if scheme not in SUPPORTED_SCHEMES:
        msg = f'Cannot parse "{addr}": unsupported scheme "{scheme}"'
        raise UnsupportedSchemeError(msg)

    if rest:
        msg = f'Cannot parse "{addr}": too many parts'
        raise TooManyPartsError(msg)

    url = f"{scheme}://{_uri_host(host_type, host_value)}"
    if port and DEFAULT_PORTS[scheme] != port:
        url += f":{port}"
    if path:
        url += path
    return url


def _uri_host(host_type: str | None, host_value: str | None) -> str:
    if host_type in ("ip4", "dns", "dns4", "dns6"):
        return host_value or ""
    if host_type == "ip6":
        # RFC 2732: literal IPv6 addresses are bracketed in URLs
        return f"[{host_value}]"
    msg = f'Unsupported multiaddr host type "{host_type}"'
    raise UnsupportedHostTypeError(msg)
