"""
Shared fixtures for anvilkit tests.

Lifecycle tests spawn a real child process: a small Python script that
accepts the node's command-line flags and answers the JSON-RPC methods the
core uses. It prints a fake private key so redaction can be observed.
"""

import os
import random
import stat
import sys
import textwrap
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest

from anvilkit.config import AnvilKitConfig
from anvilkit.node.ports import is_port_free
from anvilkit.rpc import BlockInfo
from anvilkit.errors import NodeRpcError


# =============================================================================
# Test Constants
# =============================================================================

# Hardhat/anvil default account #0 (checksummed) and #1 (lowercase)
FUNDED_ADDRESS = "0xf39Fd6e51aad88F6F4ce6aB8827279cffFb92266"
UNFUNDED_ADDRESS = "0x70997970c51812dc3a010c7d01b50e0d17dc79c8"

FAKE_PRIVATE_KEY = "0x" + "ab" * 32


# =============================================================================
# Fake node executable
# =============================================================================

FAKE_NODE_SOURCE = textwrap.dedent(
    '''
    import argparse
    import json
    import sys
    from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer

    MODE = "{mode}"
    FUNDED = "{funded}"

    parser = argparse.ArgumentParser()
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, required=True)
    parser.add_argument("--chain-id", type=int, default=31337)
    parser.add_argument("--fork-url")
    parser.add_argument("--fork-block-number", type=int)
    args = parser.parse_args()

    print("Available Accounts", flush=True)
    print("Private Keys", flush=True)
    print("(0) {key}", flush=True)

    if MODE == "crash":
        print("error: failed to start node", file=sys.stderr, flush=True)
        sys.exit(3)

    state = {{"block": args.fork_block_number or 0, "next": 1, "snapshots": {{}}}}


    def block_view():
        number = state["block"]
        return {{
            "number": hex(number),
            "hash": "0x" + format(number, "064x"),
            "timestamp": hex(1700000000 + number),
        }}


    def dispatch(method, params):
        if method == "eth_blockNumber":
            return hex(state["block"])
        if method == "eth_chainId":
            return hex(args.chain_id)
        if method == "eth_getBlockByNumber":
            return block_view()
        if method == "evm_mine":
            state["block"] += 1
            return "0x0"
        if method == "evm_snapshot":
            token = hex(state["next"])
            state["next"] += 1
            state["snapshots"][token] = state["block"]
            return token
        if method == "evm_revert":
            token = params[0]
            if token not in state["snapshots"]:
                return False
            state["block"] = state["snapshots"][token]
            return True
        if method in ("anvil_impersonateAccount", "anvil_stopImpersonatingAccount"):
            return None
        if method == "eth_getBalance":
            return hex(10 ** 22) if params[0].lower() == FUNDED else "0x0"
        raise KeyError(method)


    class Handler(BaseHTTPRequestHandler):
        def log_message(self, *args):
            pass

        def do_POST(self):
            length = int(self.headers.get("Content-Length", 0))
            request = json.loads(self.rfile.read(length))
            body = {{"jsonrpc": "2.0", "id": request.get("id")}}
            if MODE != "hang":
                try:
                    body["result"] = dispatch(request["method"], request.get("params") or [])
                except KeyError:
                    body["error"] = {{"code": -32601, "message": "Method not found"}}
            data = json.dumps(body).encode()
            self.send_response(200)
            self.send_header("Content-Type", "application/json")
            self.send_header("Content-Length", str(len(data)))
            self.end_headers()
            self.wfile.write(data)


    server = ThreadingHTTPServer((args.host, args.port), Handler)
    print(f"Listening on {{args.host}}:{{args.port}}", flush=True)
    server.serve_forever()
    '''
)


@pytest.fixture
def make_fake_node(tmp_path: Path) -> Callable[[str], str]:
    """
    Factory writing an executable fake node.

    Modes:
        ok: answers every method
        hang: answers without a ``result`` field (never becomes ready)
        crash: prints a key, writes to stderr and exits with code 3
    """

    def factory(mode: str = "ok") -> str:
        path = tmp_path / f"fake-anvil-{mode}"
        body = FAKE_NODE_SOURCE.format(
            mode=mode,
            funded=FUNDED_ADDRESS.lower(),
            key=FAKE_PRIVATE_KEY,
        )
        path.write_text(f"#!{sys.executable}\n{body}")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return str(path)

    return factory


@pytest.fixture
def fake_node(make_fake_node: Callable[[str], str]) -> str:
    return make_fake_node("ok")


# =============================================================================
# Ports and config
# =============================================================================


def find_free_port_range(size: int, low: int = 20000, high: int = 60000) -> int:
    """First port of ``size`` consecutive ports that all pass the bind probe."""
    for _ in range(200):
        base = random.randint(low, high - size)
        if all(is_port_free(port) for port in range(base, base + size)):
            return base
    raise RuntimeError("No free port range found")


@pytest.fixture
def port_base() -> int:
    return find_free_port_range(3)


@pytest.fixture
def node_config(fake_node: str, port_base: int) -> AnvilKitConfig:
    """Config for three fake nodes on three consecutive free ports."""
    return AnvilKitConfig(
        db_path=":memory:",
        anvil_path=fake_node,
        anvil_port_start=port_base,
        anvil_port_end=port_base + 2,
        startup_timeout=10.0,
        startup_poll_interval=0.05,
        stop_timeout=3.0,
        rpc_timeout=2.0,
    )


# =============================================================================
# In-process chain control client
# =============================================================================


class FakeChainClient:
    """
    ChainControlClient double recording every control call.

    ``rejected`` names methods that fail with NodeRpcError, to exercise
    fallbacks; ``revert_results`` overrides the revert return value.
    """

    def __init__(
        self,
        *,
        rejected: Optional[List[str]] = None,
        balances: Optional[Dict[str, int]] = None,
        revert_result: Any = True,
    ) -> None:
        self.rpc_url = "http://127.0.0.1:8545"
        self.calls: List[tuple] = []
        self.rejected = set(rejected or [])
        self.balances = balances or {}
        self.revert_result = revert_result
        self.block = 100
        self._next_token = 1
        self.closed = False

    async def call_control_method(self, name: str, params: Optional[List[Any]] = None) -> Any:
        self.calls.append((name, list(params or [])))
        if name in self.rejected:
            raise NodeRpcError(name, "Method not found", rpc_code=-32601)
        if name in ("evm_snapshot", "anvil_snapshot"):
            token = hex(self._next_token)
            self._next_token += 1
            return token
        if name in ("evm_revert", "anvil_revert"):
            return self.revert_result
        return None

    async def query_block_height(self) -> Optional[int]:
        return self.block

    async def query_chain_id(self) -> int:
        return 31337

    async def query_latest_block(self) -> BlockInfo:
        return BlockInfo(number=self.block, hash="0x" + format(self.block, "064x"), timestamp=1700000000)

    async def query_balance(self, address: str) -> int:
        self.calls.append(("eth_getBalance", [address]))
        return self.balances.get(address.lower(), 0)

    async def aclose(self) -> None:
        self.closed = True

    def methods(self) -> List[str]:
        return [name for name, _ in self.calls]


@pytest.fixture
def chain_client() -> FakeChainClient:
    return FakeChainClient(balances={FUNDED_ADDRESS.lower(): 10 ** 22})
