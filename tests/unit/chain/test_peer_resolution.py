"""Tests for peer id sources and the priority resolver."""

from __future__ import annotations

import asyncio
from unittest.mock import AsyncMock, MagicMock

import pytest

pytestmark = [pytest.mark.unit, pytest.mark.chain]

from retrieve_checker.chain import ContractPeerIdSource, MinerInfoPeerIdSource, PeerIdResolver, parse_actor_id
from retrieve_checker.models import ChainConfig
from retrieve_checker.utils.exceptions import (
    ContractCallError,
    FilecoinRpcError,
    PeerResolutionError,
    RpcTransportError,
)

HEAD = [{"/": "bafy2bzacehead"}]
PEER_ID = "12D3KooWC8gXxg9LoJ9h3hy3jzBkEAxamyHEQJKtRmAuBuvoMzpr"


def make_rpc(head=None, info=None):
    rpc = MagicMock()
    rpc.chain_head = AsyncMock(side_effect=head or [HEAD])
    rpc.state_miner_info = AsyncMock(side_effect=info or [{"PeerId": PEER_ID}])
    return rpc


class StaticSource:
    def __init__(self, name, result=None, error=None, delay=0.0):
        self.name = name
        self.result = result
        self.error = error
        self.delay = delay
        self.calls = 0

    async def get_peer_id(self, miner_id):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class TestMinerInfoSource:
    @pytest.mark.asyncio
    async def test_returns_peer_id(self):
        rpc = make_rpc()
        source = MinerInfoPeerIdSource(rpc, sleep=AsyncMock())
        assert await source.get_peer_id("f0123") == PEER_ID
        rpc.state_miner_info.assert_awaited_once_with("f0123", HEAD)

    @pytest.mark.asyncio
    async def test_missing_peer_id(self):
        source = MinerInfoPeerIdSource(make_rpc(info=[{"PeerId": None}]), sleep=AsyncMock())
        assert await source.get_peer_id("f0123") is None

    @pytest.mark.asyncio
    async def test_retries_transport_errors_with_backoff(self):
        sleep = AsyncMock()
        rpc = make_rpc(head=[RpcTransportError("boom"), RpcTransportError("boom"), HEAD])
        source = MinerInfoPeerIdSource(rpc, sleep=sleep)
        assert await source.get_peer_id("f0123") == PEER_ID
        assert rpc.chain_head.await_count == 3
        assert [c.args[0] for c in sleep.await_args_list] == [5.0, 7.5]

    @pytest.mark.asyncio
    async def test_chain_head_failure_is_prefixed(self):
        rpc = make_rpc(head=[RpcTransportError("JSON RPC failed with 503: down")] * 5)
        source = MinerInfoPeerIdSource(rpc, sleep=AsyncMock())
        with pytest.raises(RpcTransportError) as exc_info:
            await source.get_peer_id("f0123")
        assert str(exc_info.value) == "Cannot obtain chain head: JSON RPC failed with 503: down"
        assert rpc.chain_head.await_count == 5

    @pytest.mark.asyncio
    async def test_rpc_error_is_not_retried(self):
        rpc = make_rpc(info=[FilecoinRpcError("actor code is not miner", 1)])
        source = MinerInfoPeerIdSource(rpc, sleep=AsyncMock())
        with pytest.raises(FilecoinRpcError) as exc_info:
            await source.get_peer_id("f0123")
        assert str(exc_info.value) == "Cannot obtain miner info for f0123: actor code is not miner"
        assert rpc.state_miner_info.await_count == 1

    @pytest.mark.asyncio
    async def test_attempt_budget_from_config(self):
        rpc = make_rpc(head=[RpcTransportError("x")] * 2)
        source = MinerInfoPeerIdSource(rpc, ChainConfig(max_attempts=2), sleep=AsyncMock())
        with pytest.raises(RpcTransportError):
            await source.get_peer_id("f0123")
        assert rpc.chain_head.await_count == 2


class TestContractSource:
    @pytest.mark.parametrize(("miner_id", "actor_id"), [("f01", 1), ("f0123456", 123456)])
    def test_parse_actor_id(self, miner_id, actor_id):
        assert parse_actor_id(miner_id) == actor_id

    @pytest.mark.parametrize("miner_id", ["f01spark", "t0123", "f0", "f0123 ", "123"])
    def test_parse_actor_id_invalid(self, miner_id):
        with pytest.raises(ValueError) as exc_info:
            parse_actor_id(miner_id)
        assert str(exc_info.value) == f'minerID must be "f0{{number}}". Actual value: "{miner_id}"'

    @pytest.mark.asyncio
    async def test_peer_data_dict(self):
        contract = MagicMock()
        contract.get_peer_data = AsyncMock(return_value={"peerID": PEER_ID, "signature": b""})
        assert await ContractPeerIdSource(contract).get_peer_id("f03303347") == PEER_ID
        contract.get_peer_data.assert_awaited_once_with(3303347)

    @pytest.mark.asyncio
    async def test_peer_data_object(self):
        contract = MagicMock()
        contract.get_peer_data = AsyncMock(return_value=MagicMock(peer_id=PEER_ID))
        assert await ContractPeerIdSource(contract).get_peer_id("f01") == PEER_ID

    @pytest.mark.asyncio
    async def test_empty_mapping_passes_through(self):
        contract = MagicMock()
        contract.get_peer_data = AsyncMock(return_value={"peerID": "", "signature": b""})
        assert await ContractPeerIdSource(contract).get_peer_id("f01") == ""

    @pytest.mark.asyncio
    async def test_call_failure_is_wrapped(self):
        contract = MagicMock()
        contract.get_peer_data = AsyncMock(side_effect=RuntimeError("execution reverted"))
        with pytest.raises(ContractCallError) as exc_info:
            await ContractPeerIdSource(contract).get_peer_id("f0123")
        assert str(exc_info.value) == "Error fetching peer ID from contract for miner f0123."
        assert isinstance(exc_info.value.__cause__, RuntimeError)

    @pytest.mark.asyncio
    async def test_invalid_miner_id_is_wrapped(self):
        contract = MagicMock()
        contract.get_peer_data = AsyncMock()
        with pytest.raises(ContractCallError) as exc_info:
            await ContractPeerIdSource(contract).get_peer_id("f01spark")
        assert isinstance(exc_info.value.__cause__, ValueError)
        contract.get_peer_data.assert_not_awaited()


class TestPeerIdResolver:
    def test_requires_sources(self):
        with pytest.raises(ValueError):
            PeerIdResolver([])

    @pytest.mark.asyncio
    async def test_single_source(self):
        resolver = PeerIdResolver([StaticSource("miner_info", PEER_ID)])
        assert await resolver.resolve_peer_id("f0123") == PEER_ID

    @pytest.mark.asyncio
    async def test_priority_order_wins(self):
        resolver = PeerIdResolver(
            [StaticSource("contract", "from-contract", delay=0.05), StaticSource("miner_info", "from-rpc")]
        )
        assert await resolver.resolve_peer_id("f0123") == "from-contract"

    @pytest.mark.asyncio
    async def test_empty_primary_falls_back(self):
        resolver = PeerIdResolver([StaticSource("contract", ""), StaticSource("miner_info", PEER_ID)])
        assert await resolver.resolve_peer_id("f0123") == PEER_ID

    @pytest.mark.asyncio
    async def test_failing_primary_falls_back(self):
        resolver = PeerIdResolver(
            [StaticSource("contract", error=ContractCallError("nope")), StaticSource("miner_info", PEER_ID)]
        )
        assert await resolver.resolve_peer_id("f0123") == PEER_ID

    @pytest.mark.asyncio
    async def test_sources_run_concurrently(self):
        sources = [StaticSource("contract", "", delay=0.2), StaticSource("miner_info", PEER_ID, delay=0.2)]
        loop = asyncio.get_running_loop()
        started = loop.time()
        assert await PeerIdResolver(sources).resolve_peer_id("f0123") == PEER_ID
        assert loop.time() - started < 0.39
        assert all(s.calls == 1 for s in sources)

    @pytest.mark.asyncio
    async def test_all_fail(self):
        rpc_error = FilecoinRpcError("Cannot obtain miner info for f0123: actor code is not miner")
        resolver = PeerIdResolver(
            [StaticSource("contract", error=ContractCallError("nope")), StaticSource("miner_info", error=rpc_error)]
        )
        with pytest.raises(PeerResolutionError) as exc_info:
            await resolver.resolve_peer_id("f0123")
        assert str(exc_info.value) == "Error fetching PeerID for miner f0123."
        assert exc_info.value.__cause__ is rpc_error

    @pytest.mark.asyncio
    async def test_all_empty(self):
        resolver = PeerIdResolver([StaticSource("contract", ""), StaticSource("miner_info", None)])
        with pytest.raises(PeerResolutionError) as exc_info:
            await resolver.resolve_peer_id("f0123")
        assert "all sources returned empty" in str(exc_info.value.__cause__)

    @pytest.mark.asyncio
    async def test_source_timeout(self):
        resolver = PeerIdResolver(
            [StaticSource("contract", "late", delay=1.0), StaticSource("miner_info", PEER_ID)],
            source_timeout=0.05,
        )
        assert await resolver.resolve_peer_id("f0123") == PEER_ID

    @pytest.mark.asyncio
    async def test_lower_priority_task_cancelled_after_win(self):
        slow = StaticSource("miner_info", "late", delay=5.0)
        resolver = PeerIdResolver([StaticSource("contract", PEER_ID), slow])
        assert await resolver.resolve_peer_id("f0123") == PEER_ID
        await asyncio.sleep(0)
        pending = [t for t in asyncio.all_tasks() if t.get_name().startswith("peer-id-")]
        assert all(t.done() or t.cancelling() for t in pending)
