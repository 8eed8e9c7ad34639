"""Resolve a storage provider id to its index provider peer id."""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable

from retrieve_checker.chain.rpc import FilecoinRpcClient
from retrieve_checker.interfaces import PeerIdSourceProtocol
from retrieve_checker.models import ChainConfig, PeerIdSource
from retrieve_checker.utils.backoff import ExponentialBackoff
from retrieve_checker.utils.exceptions import (
    FilecoinRpcError,
    PeerResolutionError,
    RpcTransportError,
)
from retrieve_checker.utils.resilience import retry_async

logger = logging.getLogger(__name__)


def _is_transient(err: Exception) -> bool:
    # JSON-RPC error objects (e.g. "actor code is not miner") are final
    return not isinstance(err, FilecoinRpcError)


def _consume_result(task: asyncio.Task) -> None:
    # Results of lower-priority sources are not needed once one source wins
    if not task.cancelled():
        task.exception()


class MinerInfoPeerIdSource:
    """Reads ``PeerId`` from ``Filecoin.StateMinerInfo`` at the chain head."""

    name = PeerIdSource.MINER_INFO.value

    def __init__(
        self,
        rpc: FilecoinRpcClient,
        config: ChainConfig | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        """Initialize miner info source.

        Args:
            rpc: JSON-RPC client
            config: Retry settings (defaults if omitted)
            sleep: Delay function used between retries

        """
        self.rpc = rpc
        self.config = config or ChainConfig()
        self._sleep = sleep
        self._backoff = ExponentialBackoff(
            base_delay=self.config.min_backoff,
            multiplier=self.config.backoff_multiplier,
        )

    async def _with_retry(self, func, context: str):
        try:
            return await retry_async(
                func,
                attempts=self.config.max_attempts,
                backoff=self._backoff,
                should_retry=_is_transient,
                on_failed_attempt=lambda err, attempt: logger.warning(
                    "%s (attempt %d/%d): %s",
                    context,
                    attempt,
                    self.config.max_attempts,
                    err,
                ),
                sleep=self._sleep,
            )
        except (FilecoinRpcError, RpcTransportError) as err:
            err.message = f"{context}: {err.message}"
            err.args = (err.message,)
            raise

    async def get_chain_head(self) -> list[dict[str, str]]:
        return await self._with_retry(self.rpc.chain_head, "Cannot obtain chain head")

    async def get_peer_id(self, miner_id: str) -> str | None:
        chain_head = await self.get_chain_head()
        info = await self._with_retry(
            lambda: self.rpc.state_miner_info(miner_id, chain_head),
            f"Cannot obtain miner info for {miner_id}",
        )
        return (info or {}).get("PeerId")


class PeerIdResolver:
    """Tries peer id sources in priority order.

    All sources start concurrently, each bounded by ``source_timeout``. The
    first source (in priority order) that yields a non-empty peer id wins; a
    failing or empty source only matters if every source fails or is empty.
    """

    def __init__(self, sources: list[PeerIdSourceProtocol], source_timeout: float = 120.0):
        if not sources:
            msg = "at least one peer id source is required"
            raise ValueError(msg)
        self.sources = sources
        self.source_timeout = source_timeout

    async def resolve_peer_id(self, miner_id: str) -> str:
        """Return the index provider peer id of ``miner_id``.

        Raises:
            PeerResolutionError: no source produced a peer id; ``__cause__``
                holds the last underlying error

        """
        tasks = [
            (
                source,
                asyncio.create_task(
                    asyncio.wait_for(source.get_peer_id(miner_id), self.source_timeout),
                    name=f"peer-id-{source.name}-{miner_id}",
                ),
            )
            for source in self.sources
        ]
        last_error: Exception | None = None
        try:
            for source, task in tasks:
                try:
                    peer_id = await task
                except asyncio.TimeoutError:
                    last_error = TimeoutError(
                        f"{source.name} did not answer within {self.source_timeout}s"
                    )
                    logger.warning("Peer id source %s timed out for %s", source.name, miner_id)
                    continue
                except Exception as err:
                    last_error = err
                    logger.warning("Peer id source %s failed for %s: %s", source.name, miner_id, err)
                    continue
                if peer_id:
                    logger.info("Using PeerID from %s", source.name)
                    return peer_id
                logger.info("Peer id source %s has no peer id for %s", source.name, miner_id)
        finally:
            for _, task in tasks:
                if not task.done():
                    task.cancel()
                task.add_done_callback(_consume_result)

        if last_error is None:
            last_error = PeerResolutionError(
                f"Failed to obtain Miner's Index Provider PeerID for {miner_id}: all sources returned empty"
            )
        msg = f"Error fetching PeerID for miner {miner_id}."
        raise PeerResolutionError(msg) from last_error
