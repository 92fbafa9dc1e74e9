"""
Control-plane access to local test nodes.
"""

from anvilkit.rpc.client import BlockInfo, ChainControlClient, JsonRpcChainClient

__all__ = [
    "BlockInfo",
    "ChainControlClient",
    "JsonRpcChainClient",
]
