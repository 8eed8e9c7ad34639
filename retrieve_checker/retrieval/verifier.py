"""Content retrieval and verification.

Streams a CAR from a provider under an idle timeout and a hard deadline,
validates every block hash and confirms that the requested CID (or a block
whose links are all present) is in the archive.
"""

from __future__ import annotations

import asyncio
import hashlib
import logging
from dataclasses import dataclass
from urllib.parse import urlencode, urlsplit

import aiohttp

from retrieve_checker.ipld import (
    CID,
    Block,
    CarFormatError,
    CIDError,
    IpldError,
    block_links,
    read_car,
    validate_block,
)
from retrieve_checker.models import RetrievalConfig, RetrievalStats
from retrieve_checker.multiaddr import multiaddr_to_http_url
from retrieve_checker.retrieval.classifier import classify_error
from retrieve_checker.utils.exceptions import (
    CarParseError,
    ContentVerificationError,
    EmptyCarError,
    IncompleteDagError,
    RetrievalTimeoutError,
    UnexpectedCarBlockError,
)

logger = logging.getLogger(__name__)

BLOCK_SCOPE = "?dag-scope=block"
ACCEPT_CAR = "application/vnd.ipld.car"
ACCEPT_RAW = "application/vnd.ipld.raw"
# Multihash prefix for sha2-256 with a 32-byte digest
CHECKSUM_PREFIX = "1220"


@dataclass
class VerificationResult:
    """Outcome of a successful content verification."""

    valid: bool
    root_block: Block
    total_blocks: int
    total_size: int


def get_retrieval_url(protocol: str, address: str, cid: str) -> str:
    """Build the URL used to fetch ``cid`` from a provider.

    HTTP providers get a trustless-gateway URL limited to the requested
    block. Other protocols get an ``ipfs://`` URL naming the protocol and
    provider.
    """
    if protocol == "http":
        base_url = multiaddr_to_http_url(address)
        return f"{base_url}/ipfs/{cid}{BLOCK_SCOPE}"

    query = urlencode({"protocols": protocol, "providers": address})
    return f"ipfs://{cid}?{query}"


def verify_content(
    cid: str,
    car_bytes: bytes | bytearray | memoryview,
    *,
    block_scope: bool = False,
) -> VerificationResult:
    """Verify that ``car_bytes`` carries valid content for ``cid``.

    Args:
        cid: Requested CID
        car_bytes: Complete CAR payload
        block_scope: If True, the CAR may only contain the requested block

    Raises:
        CarParseError: the payload is not a CAR
        UnsupportedHashError: a block uses a hash we cannot compute
        HashMismatchError: a block does not match its CID
        UnexpectedCarBlockError: block scope was requested and another block is present
        IncompleteDagError: no root could be established

    """
    try:
        target = CID.parse(cid)
    except CIDError as e:
        raise ContentVerificationError(str(e)) from e

    try:
        _, blocks = read_car(car_bytes)
    except CarFormatError as e:
        raise CarParseError(str(e)) from e

    by_cid: dict[CID, Block] = {}
    for block in blocks:
        validate_block(block)
        if block_scope and block.cid != target:
            msg = f"Unexpected block CID {block.cid}. Expected: {cid}"
            raise UnexpectedCarBlockError(msg)
        by_cid.setdefault(block.cid, block)

    root = by_cid.get(target)
    if root is None:
        # Might be a file or directory CID; accept a block whose links are all here
        logger.debug(
            "Target CID %s not found directly, checking %d blocks for a complete DAG",
            cid,
            len(by_cid),
        )
        for block_cid, block in by_cid.items():
            try:
                links = block_links(block)
            except IpldError as e:
                logger.debug("Failed to decode block %s: %s", block_cid, e)
                continue
            if links and all(link in by_cid for link in links):
                logger.debug("Found valid DAG structure in block %s", block_cid)
                root = block
                break

    if root is None:
        msg = f"Could not verify complete file structure for CID {cid}"
        raise IncompleteDagError(msg)

    return VerificationResult(
        valid=True,
        root_block=root,
        total_blocks=len(by_cid),
        total_size=sum(len(b) for b in by_cid.values()),
    )


class ContentVerifier:
    """Fetches CARs from providers and records what happened in a stats record."""

    def __init__(self, session: aiohttp.ClientSession, config: RetrievalConfig | None = None):
        """Initialize content verifier.

        Args:
            session: Shared HTTP session
            config: Retrieval settings (defaults if omitted)

        """
        self.session = session
        self.config = config or RetrievalConfig()

    def _fetch_url(self, protocol: str, address: str, cid: str) -> str:
        url = get_retrieval_url(protocol, address, cid)
        if self.config.full_verification:
            url = url.replace(BLOCK_SCOPE, "")
        if url.startswith("ipfs://"):
            if not self.config.lassie_url:
                logger.warning("No lassie_url configured, cannot fetch %s retrievals", protocol)
                return url
            parts = urlsplit(url)
            base = self.config.lassie_url.rstrip("/")
            query = f"?{parts.query}" if parts.query else ""
            url = f"{base}/ipfs/{parts.netloc}{query}"
        return url

    async def check_retrieval(
        self,
        protocol: str,
        address: str,
        cid: str,
        stats: RetrievalStats | None = None,
    ) -> RetrievalStats:
        """Retrieve ``cid`` from the provider and verify it.

        Failures never propagate: they are classified into
        ``stats.status_code``. Only cancellation of the calling task escapes.

        Returns:
            The stats record, updated in place

        """
        stats = stats if stats is not None else RetrievalStats()
        stats.record_start()
        stats.full_verification = self.config.full_verification

        loop = asyncio.get_running_loop()
        download: asyncio.Task | None = None
        idle_handle: asyncio.TimerHandle | None = None
        deadline_handle: asyncio.TimerHandle | None = None

        def abort(reason: str) -> None:
            if download is not None and not download.done():
                logger.warning("Aborting retrieval of %s: %s", cid, reason)
                stats.timeout = True
                download.cancel()

        def touch() -> None:
            nonlocal idle_handle
            if idle_handle is not None:
                idle_handle.cancel()
            idle_handle = loop.call_later(self.config.idle_timeout, abort, "idle timeout")

        try:
            url = self._fetch_url(protocol, address, cid)
            logger.info("Starting CAR retrieval from %s", url)
            logger.debug("Protocol: %s, address: %s, CID: %s", protocol, address, cid)

            download = asyncio.create_task(self._download(url, stats, touch))
            deadline_handle = loop.call_later(
                self.config.max_request_duration, abort, "request deadline exceeded"
            )
            touch()
            try:
                payload = await download
            except asyncio.CancelledError:
                current = asyncio.current_task()
                if not stats.timeout or (current is not None and current.cancelling()):
                    raise
                msg = f"Retrieval of {cid} timed out after {stats.byte_length} bytes"
                raise RetrievalTimeoutError(msg) from None

            if payload is not None:
                car_bytes, checksum = payload
                # Hashing a large CAR would block the event loop
                result = await asyncio.to_thread(
                    verify_content,
                    cid,
                    car_bytes,
                    block_scope=not self.config.full_verification,
                )
                logger.info(
                    "Verified %s: %d blocks, %d bytes, root %s",
                    cid,
                    result.total_blocks,
                    result.total_size,
                    result.root_block.cid,
                )
                stats.car_checksum = checksum
                logger.debug("CAR checksum: %s", stats.car_checksum)
        except asyncio.CancelledError:
            raise
        except Exception as err:
            code = classify_error(err)
            logger.warning(
                "CAR retrieval failed for %s from %s: %s",
                cid,
                address,
                err,
                extra={
                    "error_code": getattr(err, "code", None),
                    "error_type": type(err).__name__,
                    "protocol": protocol,
                    "byte_length": stats.byte_length,
                    "timeout": stats.timeout,
                    "mapped_status": code,
                },
            )
            stats.record_failure(code)
        finally:
            if idle_handle is not None:
                idle_handle.cancel()
            if deadline_handle is not None:
                deadline_handle.cancel()
            if download is not None and not download.done():
                download.cancel()

        stats.record_end()
        logger.info(
            "Retrieval finished: status=%s bytes=%d timeout=%s too_large=%s",
            stats.status_code,
            stats.byte_length,
            stats.timeout,
            stats.car_too_large,
        )
        return stats

    async def _download(
        self,
        url: str,
        stats: RetrievalStats,
        touch,
    ) -> tuple[bytearray, str] | None:
        """Stream the response body.

        Returns:
            Tuple of (CAR bytes, checksum), or None for a non-2xx response

        Raises:
            EmptyCarError: 2xx response without a body

        """
        async with self.session.get(url, headers={"Accept": ACCEPT_CAR}) as res:
            stats.record_response_status(res.status)
            logger.debug("Response status %d, headers: %s", res.status, dict(res.headers))

            if not 200 <= res.status < 300:
                body = await res.text(errors="replace")
                logger.warning(
                    "CAR retrieval failed with HTTP %d %s: %s",
                    res.status,
                    res.reason,
                    body.rstrip(),
                )
                return None

            touch()
            buf = bytearray()
            digest = hashlib.sha256()
            async for chunk in res.content.iter_any():
                if stats.record_chunk(len(chunk), self.config.max_car_size):
                    logger.warning(
                        "CAR size exceeded %d bytes, continuing download",
                        self.config.max_car_size,
                    )
                buf.extend(chunk)
                digest.update(chunk)
                touch()

        if not buf:
            msg = "Received empty CAR file"
            raise EmptyCarError(msg)
        logger.debug("Received %d bytes", len(buf))
        return buf, CHECKSUM_PREFIX + digest.hexdigest()

    async def check_head(self, address: str, cid: str, stats: RetrievalStats) -> RetrievalStats:
        """Issue a HEAD request and record only its status code."""
        try:
            url = get_retrieval_url("http", address, cid)
            logger.debug("Testing HEAD request: %s", url)
            async with self.session.head(
                url,
                headers={"Accept": ACCEPT_RAW},
                timeout=aiohttp.ClientTimeout(total=self.config.head_timeout),
            ) as res:
                stats.head_status_code = res.status
        except asyncio.CancelledError:
            raise
        except Exception as err:
            logger.warning("HEAD request to %s for %s failed: %s", address, cid, err)
            stats.head_status_code = classify_error(err)
        return stats
