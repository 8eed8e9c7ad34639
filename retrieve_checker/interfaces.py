"""Boundaries to the systems the checker talks to but does not implement.

The host process supplies these: the RetrieveChecker contract client (dispute
listing and result submission), the MinerPeerIDMapping contract client and
the runtime hooks for job completion and activity reporting.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from retrieve_checker.models import RetrievalStats, RetrievalTask


@runtime_checkable
class DisputeSource(Protocol):
    """Source of disputes awaiting a retrieval check."""

    async def get_pending_disputes(self) -> list[RetrievalTask]:
        """Return all disputes currently pending, oldest first."""
        ...

    async def poll_events(self) -> list[RetrievalTask]:
        """Return disputes raised since the previous call.

        The first call only establishes the starting point and may return
        an empty list. Events can be delivered more than once.
        """
        ...


@runtime_checkable
class ResultReporter(Protocol):
    """Receives the outcome of each check."""

    async def submit(self, task_id: str, stats: RetrievalStats) -> None:
        """Persist or publish the stats recorded for ``task_id``."""
        ...


@runtime_checkable
class Host(Protocol):
    """Runtime hooks of the process hosting the checker."""

    def job_completed(self) -> None:
        """Signal that one task was processed."""
        ...

    def activity_info(self, message: str) -> None:
        ...

    def activity_error(self, message: str) -> None:
        ...


@runtime_checkable
class PeerDataContract(Protocol):
    """Read access to the MinerPeerIDMapping contract."""

    async def get_peer_data(self, miner_id: int) -> Any:
        """Return the ``PeerData`` struct (``peerID``, ``signature``) for ``miner_id``."""
        ...


class PeerIdSourceProtocol(Protocol):
    """One way of mapping a miner id to its index provider peer id."""

    name: str

    async def get_peer_id(self, miner_id: str) -> str | None:
        ...
