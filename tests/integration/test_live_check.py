"""Checks against public IPNI and a public HTTP provider.

Skipped unless RCHECK_INTEGRATION=1.
"""

from __future__ import annotations

import aiohttp
import pytest

from retrieve_checker.checker import RetrievalChecker
from retrieve_checker.models import Config, RetrievalTask

pytestmark = [pytest.mark.integration]

CID = "bafkreih25dih6ug3xtj73vswccw423b56ilrwmnos4cbwhrceudopdp5sq"
PEER_ID = "12D3KooWC8gXxg9LoJ9h3hy3jzBkEAxamyHEQJKtRmAuBuvoMzpr"


@pytest.mark.asyncio
async def test_retrieves_content_from_frisbii():
    async def resolve_peer_id(_miner_id):
        return PEER_ID

    task = RetrievalTask(id="integration", cid=CID, miner_id="f01spark")
    async with aiohttp.ClientSession() as session:
        checker = RetrievalChecker.from_config(session, Config(), resolve_peer_id=resolve_peer_id)
        stats = await checker.execute_check(task)

    assert stats.indexer_result == "OK"
    assert stats.provider_id == PEER_ID
    assert stats.protocol == "http"
    assert stats.provider_address == "/dns/frisbii.fly.dev/tcp/443/https"
    assert stats.status_code == 200
    assert stats.head_status_code == 405
    assert stats.byte_length == 200
    assert stats.timeout is False
    assert stats.car_checksum.startswith("1220")
