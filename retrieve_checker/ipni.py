"""IPNI client: find where and how a provider serves a CID."""

from __future__ import annotations

import asyncio
import base64
import binascii
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable
from urllib.parse import quote

import aiohttp

from retrieve_checker.ipld.errors import VarintError
from retrieve_checker.ipld.varint import decode_varint
from retrieve_checker.models import IndexerConfig, IndexerResult, RetrievalProtocol
from retrieve_checker.utils.backoff import ExponentialBackoff
from retrieve_checker.utils.exceptions import HttpResponseError
from retrieve_checker.utils.resilience import retry_async

logger = logging.getLogger(__name__)

# Transport codes from the multicodec table
PROTOCOL_CODES: dict[int, RetrievalProtocol] = {
    0x900: RetrievalProtocol.BITSWAP,
    0x910: RetrievalProtocol.GRAPHSYNC,
    0x920: RetrievalProtocol.HTTP,
    # Legacy graphsync metadata encoding
    4128768: RetrievalProtocol.GRAPHSYNC,
}


@dataclass(frozen=True)
class ProviderInfo:
    address: str
    protocol: str


@dataclass(frozen=True)
class ProviderResult:
    """IPNI lookup outcome; ``provider`` is set for OK and HTTP_NOT_ADVERTISED."""

    indexer_result: str
    provider: ProviderInfo | None = None

    @property
    def provider_found(self) -> bool:
        return self.provider is not None


def decode_protocol(metadata: str) -> RetrievalProtocol | None:
    """Decode the transport code at the start of base64 advertisement metadata."""
    try:
        code, _ = decode_varint(base64.b64decode(metadata, validate=True))
    except (binascii.Error, ValueError, VarintError, TypeError):
        return None
    return PROTOCOL_CODES.get(code)


def select_provider(provider_results: list[dict[str, Any]], provider_id: str) -> ProviderResult:
    """Pick the advertisement to retrieve from.

    HTTP wins immediately. Otherwise the first graphsync advertisement is
    used, with the peer id appended to its address. Bitswap and unknown
    transports are ignored.
    """
    graphsync: ProviderInfo | None = None
    for p in provider_results:
        provider = p.get("Provider") or {}
        if provider.get("ID") != provider_id:
            continue

        protocol = decode_protocol(p.get("Metadata", ""))
        addrs = provider.get("Addrs") or []
        address = addrs[0] if addrs else None
        if not address:
            continue

        if protocol is RetrievalProtocol.HTTP:
            return ProviderResult(
                IndexerResult.OK.value,
                ProviderInfo(address, protocol.value),
            )
        if protocol is RetrievalProtocol.GRAPHSYNC and graphsync is None:
            graphsync = ProviderInfo(f"{address}/p2p/{provider_id}", protocol.value)

    if graphsync is not None:
        logger.info("HTTP protocol is not advertised, falling back to Graphsync")
        return ProviderResult(IndexerResult.HTTP_NOT_ADVERTISED.value, graphsync)

    logger.info("All advertisements are from other miners or for unsupported protocols")
    return ProviderResult(IndexerResult.NO_VALID_ADVERTISEMENT.value)


def _is_server_error(err: Exception) -> bool:
    return isinstance(err, HttpResponseError) and err.status_code >= 500


class IndexerClient:
    """Queries an IPNI instance such as cid.contact."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        config: IndexerConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize IPNI client.

        Args:
            session: Shared HTTP session
            config: IPNI settings (defaults if omitted)
            sleep: Delay function used between retries

        """
        self.session = session
        self.config = config or IndexerConfig()
        self._sleep = sleep
        self._backoff = ExponentialBackoff(
            base_delay=self.config.min_backoff,
            multiplier=self.config.backoff_multiplier,
        )

    async def get_retrieval_providers(self, cid: str) -> list[dict[str, Any]]:
        """Return all provider records IPNI holds for ``cid``."""
        url = f"{self.config.url.rstrip('/')}/cid/{quote(cid, safe='')}"
        async with self.session.get(
            url,
            headers={"Accept": "application/json"},
            timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
        ) as res:
            if not 200 <= res.status < 300:
                body = await res.text(errors="replace")
                msg = f"IPNI query failed ({res.status}): {body.rstrip()}"
                raise HttpResponseError(msg, res.status, body)
            data = await res.json(content_type=None)

        return [
            provider_result
            for multihash_result in data.get("MultihashResults") or []
            for provider_result in multihash_result.get("ProviderResults") or []
        ]

    async def query_index(self, cid: str, provider_id: str) -> ProviderResult:
        """Find the retrieval endpoint ``provider_id`` advertises for ``cid``.

        A failed lookup is a normal result (``ERROR_<status>`` or
        ``ERROR_FETCH``), never an exception.
        """

        def on_failed_attempt(err: Exception, attempt: int) -> None:
            logger.warning("IPNI query failed (attempt %d), retrying: %s", attempt, err)

        try:
            provider_results = await retry_async(
                lambda: self.get_retrieval_providers(cid),
                attempts=self.config.max_attempts,
                backoff=self._backoff,
                should_retry=_is_server_error,
                on_failed_attempt=on_failed_attempt,
                sleep=self._sleep,
            )
        except asyncio.CancelledError:
            raise
        except Exception as err:
            logger.warning("IPNI query failed: %s", err)
            status = err.status_code if isinstance(err, HttpResponseError) else None
            return ProviderResult(IndexerResult.error(status))

        logger.info("IPNI returned %d provider results", len(provider_results))
        return select_provider(provider_results, provider_id)
