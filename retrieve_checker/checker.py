"""Verification orchestrator.

Resolves the provider's peer id, asks IPNI where the content is served and
retrieves it. Only peer resolution failures escape; everything after that is
recorded in the stats record.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable

import aiohttp

from retrieve_checker.chain import (
    ContractPeerIdSource,
    FilecoinRpcClient,
    MinerInfoPeerIdSource,
    PeerIdResolver,
)
from retrieve_checker.interfaces import PeerDataContract, PeerIdSourceProtocol
from retrieve_checker.ipni import IndexerClient
from retrieve_checker.models import Config, PeerIdSource, RetrievalProtocol, RetrievalStats, RetrievalTask
from retrieve_checker.retrieval import ContentVerifier
from retrieve_checker.utils.exceptions import ConfigurationError, FilecoinRpcError

logger = logging.getLogger(__name__)

ResolvePeerId = Callable[[str], Awaitable[str]]


def root_cause(err: BaseException) -> BaseException:
    """Follow ``__cause__`` to the innermost exception."""
    seen = {id(err)}
    while err.__cause__ is not None and id(err.__cause__) not in seen:
        err = err.__cause__
        seen.add(id(err))
    return err


def build_peer_id_sources(
    config: Config,
    rpc: FilecoinRpcClient,
    contract: PeerDataContract | None = None,
) -> list[PeerIdSourceProtocol]:
    """Instantiate the configured peer id sources in priority order.

    Raises:
        ConfigurationError: the contract source is enabled without a contract client

    """
    sources: list[PeerIdSourceProtocol] = []
    for name in config.chain.peer_id_sources:
        if name is PeerIdSource.MINER_INFO:
            sources.append(MinerInfoPeerIdSource(rpc, config.chain))
        elif name is PeerIdSource.CONTRACT:
            if contract is None:
                msg = "peer id source 'contract' requires a PeerDataContract client"
                raise ConfigurationError(msg)
            sources.append(ContractPeerIdSource(contract))
    return sources


class RetrievalChecker:
    """Runs the end-to-end check of one retrieval task."""

    def __init__(
        self,
        resolve_peer_id: ResolvePeerId,
        indexer: IndexerClient,
        verifier: ContentVerifier,
    ):
        """Initialize retrieval checker.

        Args:
            resolve_peer_id: Coroutine function mapping a miner id to its peer id
            indexer: IPNI client
            verifier: Content verifier

        """
        self.resolve_peer_id = resolve_peer_id
        self.indexer = indexer
        self.verifier = verifier

    @classmethod
    def from_config(
        cls,
        session: aiohttp.ClientSession,
        config: Config,
        contract: PeerDataContract | None = None,
        resolve_peer_id: ResolvePeerId | None = None,
    ) -> RetrievalChecker:
        """Wire up a checker sharing ``session`` for every HTTP call.

        Args:
            session: Shared HTTP session
            config: Complete configuration
            contract: MinerPeerIDMapping client, needed by the contract source
            resolve_peer_id: Override for peer resolution (e.g. a fixed peer id)

        """
        if resolve_peer_id is None:
            rpc = FilecoinRpcClient(session, config.chain)
            resolver = PeerIdResolver(
                build_peer_id_sources(config, rpc, contract),
                source_timeout=config.chain.source_timeout,
            )
            resolve_peer_id = resolver.resolve_peer_id
        return cls(
            resolve_peer_id,
            IndexerClient(session, config.indexer),
            ContentVerifier(session, config.retrieval),
        )

    async def execute_check(
        self,
        task: RetrievalTask,
        stats: RetrievalStats | None = None,
    ) -> RetrievalStats:
        """Check whether ``task.cid`` is retrievable from ``task.miner_id``.

        Returns:
            The stats record, updated in place

        Raises:
            PeerResolutionError: the provider's peer id could not be determined

        """
        stats = stats if stats is not None else RetrievalStats()
        logger.info("Checking retrieval of %s from %s", task.cid, task.miner_id)

        try:
            peer_id = await self.resolve_peer_id(task.miner_id)
        except Exception as err:
            if isinstance(root_cause(err), FilecoinRpcError):
                logger.error(
                    "The error printed below was not expected, please report it "
                    "together with the miner id %s",
                    task.miner_id,
                )
            raise
        stats.provider_id = peer_id
        logger.info("Miner %s uses index provider peer id %s", task.miner_id, peer_id)

        result = await self.indexer.query_index(task.cid, peer_id)
        stats.indexer_result = result.indexer_result
        if result.provider is None:
            logger.info("No retrieval provider found for %s: %s", task.cid, result.indexer_result)
            return stats

        stats.protocol = result.provider.protocol
        stats.provider_address = result.provider.address
        await self.verifier.check_retrieval(
            result.provider.protocol,
            result.provider.address,
            task.cid,
            stats,
        )
        if stats.protocol == RetrievalProtocol.HTTP.value:
            await self.verifier.check_head(result.provider.address, task.cid, stats)
        return stats
