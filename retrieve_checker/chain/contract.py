"""Peer id lookup through the MinerPeerIDMapping contract.

The contract call itself (ABI encoding, ``eth_call``) belongs to the host:
it passes in any object implementing ``PeerDataContract``.
"""

from __future__ import annotations

import logging
import re
from typing import Any

from retrieve_checker.interfaces import PeerDataContract
from retrieve_checker.models import PeerIdSource
from retrieve_checker.utils.exceptions import ContractCallError

logger = logging.getLogger(__name__)

_MINER_ID = re.compile(r"f0(\d+)")


def parse_actor_id(miner_id: str) -> int:
    """Convert ``f0<number>`` to its numeric actor id."""
    match = _MINER_ID.fullmatch(miner_id)
    if match is None:
        msg = f'minerID must be "f0{{number}}". Actual value: "{miner_id}"'
        raise ValueError(msg)
    return int(match.group(1))


def _peer_id_of(peer_data: Any) -> str | None:
    if peer_data is None:
        return None
    if isinstance(peer_data, dict):
        return peer_data.get("peerID", peer_data.get("peer_id"))
    return getattr(peer_data, "peer_id", getattr(peer_data, "peerID", None))


class ContractPeerIdSource:
    """Resolves a miner's peer id from the on-chain mapping."""

    name = PeerIdSource.CONTRACT.value

    def __init__(self, contract: PeerDataContract):
        self.contract = contract

    async def get_peer_id(self, miner_id: str) -> str | None:
        """Return the mapped peer id.

        The contract returns an empty string for miners without a mapping;
        that value is passed through.

        Raises:
            ContractCallError: the id is malformed or the call failed

        """
        try:
            numeric_id = parse_actor_id(miner_id)
            peer_data = await self.contract.get_peer_data(numeric_id)
        except Exception as e:
            msg = f"Error fetching peer ID from contract for miner {miner_id}."
            raise ContractCallError(msg) from e
        # TODO: verify peer_data.signature once the contract documents the signing scheme
        return _peer_id_of(peer_data)
