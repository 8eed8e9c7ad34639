"""Filecoin chain access: JSON-RPC client and peer id resolution."""

from __future__ import annotations

from retrieve_checker.chain.contract import ContractPeerIdSource, parse_actor_id
from retrieve_checker.chain.miner_info import MinerInfoPeerIdSource, PeerIdResolver
from retrieve_checker.chain.rpc import FilecoinRpcClient

__all__ = [
    "ContractPeerIdSource",
    "FilecoinRpcClient",
    "MinerInfoPeerIdSource",
    "PeerIdResolver",
    "parse_actor_id",
]
