"""Filecoin JSON-RPC client."""

from __future__ import annotations

import asyncio
import itertools
import logging
from typing import Any

import aiohttp

from retrieve_checker.models import ChainConfig
from retrieve_checker.utils.exceptions import FilecoinRpcError, RpcTransportError

logger = logging.getLogger(__name__)


class FilecoinRpcClient:
    """Minimal JSON-RPC 2.0 client for Lotus-compatible endpoints."""

    def __init__(self, session: aiohttp.ClientSession, config: ChainConfig | None = None):
        """Initialize RPC client.

        Args:
            session: Shared HTTP session
            config: Chain settings (defaults if omitted)

        """
        self.session = session
        self.config = config or ChainConfig()
        self._ids = itertools.count(1)

    def _headers(self) -> dict[str, str]:
        headers = {
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        if self.config.rpc_auth_token:
            headers["Authorization"] = f"Bearer {self.config.rpc_auth_token}"
        return headers

    async def call(self, method: str, *params: Any) -> Any:
        """Invoke ``method`` and return its ``result``.

        Raises:
            RpcTransportError: request failed or the server answered non-2xx
            FilecoinRpcError: the response carries a JSON-RPC ``error`` object

        """
        payload = {
            "jsonrpc": "2.0",
            "id": next(self._ids),
            "method": method,
            "params": list(params),
        }
        logger.debug("JSON-RPC %s -> %s", method, self.config.rpc_url)
        try:
            async with self.session.post(
                self.config.rpc_url,
                json=payload,
                headers=self._headers(),
                timeout=aiohttp.ClientTimeout(total=self.config.request_timeout),
            ) as res:
                if not 200 <= res.status < 300:
                    text = await res.text(errors="replace")
                    msg = f"JSON RPC failed with {res.status}: {text.rstrip()}"
                    raise RpcTransportError(msg, res.status)
                body = await res.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            msg = f"JSON RPC request failed: {str(e) or type(e).__name__}"
            raise RpcTransportError(msg) from e

        if not isinstance(body, dict):
            msg = f"JSON RPC returned unexpected payload: {body!r}"
            raise RpcTransportError(msg)

        error = body.get("error")
        if error:
            if isinstance(error, dict):
                raise FilecoinRpcError(str(error.get("message", error)), error.get("code"))
            raise FilecoinRpcError(str(error))

        return body.get("result")

    async def chain_head(self) -> list[dict[str, str]]:
        """Return the CIDs of the current chain head tipset.

        Raises:
            RpcTransportError: the result is not a tipset with a ``Cids`` list

        """
        result = await self.call("Filecoin.ChainHead")
        cids = result.get("Cids") if isinstance(result, dict) else None
        if not isinstance(cids, list):
            msg = f"JSON RPC returned unexpected chain head: {result!r}"
            raise RpcTransportError(msg)
        return cids

    async def state_miner_info(self, miner_id: str, tipset_key: list[dict[str, str]]) -> dict[str, Any] | None:
        """Return the miner actor's info at ``tipset_key``.

        Raises:
            RpcTransportError: the result is neither an object nor null

        """
        result = await self.call("Filecoin.StateMinerInfo", miner_id, tipset_key)
        if result is not None and not isinstance(result, dict):
            msg = f"JSON RPC returned unexpected miner info: {result!r}"
            raise RpcTransportError(msg)
        return result
