"""
Chain control client.

The supervisor, snapshot registry and impersonation tracker talk to a node
only through the narrow ``ChainControlClient`` protocol. The default
implementation speaks JSON-RPC over HTTP with httpx.
"""

from __future__ import annotations

import itertools
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

import httpx
from web3 import Web3

from anvilkit.errors import NodeConnectionError, NodeRpcError
from anvilkit.utils.logging import get_logger

_logger = get_logger(__name__)


@dataclass(frozen=True)
class BlockInfo:
    """Chain position taken from the latest block."""

    number: int
    hash: str
    timestamp: int


@runtime_checkable
class ChainControlClient(Protocol):
    """Control-plane operations the core needs from a node."""

    rpc_url: str

    async def query_block_height(self) -> Optional[int]:
        """Current block number, or None if the node answered without one."""
        ...

    async def query_chain_id(self) -> int:
        ...

    async def query_latest_block(self) -> BlockInfo:
        ...

    async def query_balance(self, address: str) -> int:
        ...

    async def call_control_method(self, name: str, params: Optional[List[Any]] = None) -> Any:
        ...

    async def aclose(self) -> None:
        ...


def _connection_hint(error: httpx.HTTPError) -> str:
    """Operator-facing explanation for a transport failure."""
    if isinstance(error, httpx.TimeoutException):
        return "RPC connection timed out. Check that the node is running and the RPC URL is correct."
    if isinstance(error, httpx.ConnectError):
        return "Cannot connect to RPC endpoint. Is the node running?"
    return "Network error connecting to RPC. Verify the node is running on the expected port."


def _to_int(value: Any, method: str) -> int:
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return Web3.to_int(hexstr=value) if value.startswith("0x") else int(value)
        except ValueError as e:
            raise NodeRpcError(method, f"expected a quantity, got {value!r}") from e
    raise NodeRpcError(method, f"expected a quantity, got {value!r}")


class JsonRpcChainClient:
    """
    JSON-RPC chain control client backed by ``httpx.AsyncClient``.

    Example:
        ```python
        client = JsonRpcChainClient("http://127.0.0.1:8545")
        height = await client.query_block_height()
        token = await client.call_control_method("evm_snapshot")
        await client.aclose()
        ```
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout: float = 5.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Initialize client.

        Args:
            rpc_url: HTTP endpoint of the node
            timeout: Per-request timeout in seconds
            transport: Optional httpx transport (tests use MockTransport)
        """
        self.rpc_url = rpc_url
        self._http = httpx.AsyncClient(timeout=timeout, transport=transport)
        self._ids = itertools.count(1)

    async def _request(self, method: str, params: Optional[List[Any]] = None) -> Dict[str, Any]:
        payload = {
            "jsonrpc": "2.0",
            "method": method,
            "params": params or [],
            "id": next(self._ids),
        }
        try:
            response = await self._http.post(self.rpc_url, json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NodeRpcError(
                method,
                f"HTTP {e.response.status_code}",
                rpc_url=self.rpc_url,
            ) from e
        except httpx.HTTPError as e:
            raise NodeConnectionError(
                method,
                _connection_hint(e),
                rpc_url=self.rpc_url,
                cause=str(e) or e.__class__.__name__,
            ) from e

        try:
            body = response.json()
        except ValueError as e:
            raise NodeRpcError(method, "response is not JSON", rpc_url=self.rpc_url) from e

        if not isinstance(body, dict):
            raise NodeRpcError(method, "response is not a JSON object", rpc_url=self.rpc_url)
        return body

    async def call_control_method(self, name: str, params: Optional[List[Any]] = None) -> Any:
        """
        Invoke a JSON-RPC method and return its ``result``.

        Raises:
            NodeConnectionError: If the endpoint is unreachable
            NodeRpcError: If the node returned an error object or no result
        """
        body = await self._request(name, params)
        error = body.get("error")
        if error is not None:
            message = error.get("message", str(error)) if isinstance(error, dict) else str(error)
            rpc_code = error.get("code") if isinstance(error, dict) else None
            _logger.debug(
                "Control method returned an error",
                extra={"method": name, "rpc_code": rpc_code, "rpc_url": self.rpc_url},
            )
            raise NodeRpcError(name, message, rpc_code=rpc_code, rpc_url=self.rpc_url)
        if "result" not in body:
            raise NodeRpcError(name, "response has no result field", rpc_url=self.rpc_url)
        return body["result"]

    async def query_block_height(self) -> Optional[int]:
        """
        Current block number.

        Returns None when the node answers without a ``result`` field, which
        callers treat as "not ready yet" rather than as a failure.
        """
        body = await self._request("eth_blockNumber")
        if body.get("result") is None:
            return None
        return _to_int(body["result"], "eth_blockNumber")

    async def query_chain_id(self) -> int:
        return _to_int(await self.call_control_method("eth_chainId"), "eth_chainId")

    async def query_latest_block(self) -> BlockInfo:
        block = await self.call_control_method("eth_getBlockByNumber", ["latest", False])
        if not isinstance(block, dict):
            raise NodeRpcError("eth_getBlockByNumber", "latest block missing", rpc_url=self.rpc_url)
        return BlockInfo(
            number=_to_int(block.get("number"), "eth_getBlockByNumber"),
            hash=str(block.get("hash")),
            timestamp=_to_int(block.get("timestamp"), "eth_getBlockByNumber"),
        )

    async def query_balance(self, address: str) -> int:
        return _to_int(
            await self.call_control_method("eth_getBalance", [address, "latest"]),
            "eth_getBalance",
        )

    async def aclose(self) -> None:
        await self._http.aclose()

    def __repr__(self) -> str:
        return f"JsonRpcChainClient(rpc_url={self.rpc_url!r})"
