"""
anvilkit - local test-node lifecycle and test-isolation state.

Spawns and supervises local Ethereum test-node processes, allocates their
ports, reconciles records a crashed supervisor left behind, and tracks
snapshots and impersonated accounts per node.

Quick Start:
    >>> from anvilkit import AnvilKit, StartNodeOptions, load_config
    >>> import asyncio
    >>>
    >>> async def main():
    ...     async with await AnvilKit.create(load_config()) as kit:
    ...         node = await kit.start_node(StartNodeOptions(chain_id=1))
    ...         await kit.capture_snapshot(node.id, name="clean")
    ...         await kit.revert_snapshot(node.id, "clean")
    ...
    >>> asyncio.run(main())

Modules:
- `kit`: AnvilKit composition root
- `node`: PortAllocator, NodeSupervisor, StartupReconciler
- `state`: instance stores, SnapshotRegistry, ImpersonationTracker
- `rpc`: ChainControlClient protocol and JSON-RPC implementation
- `errors`: Exception hierarchy
- `utils`: Logging, redaction, retry and validation helpers
"""

from anvilkit.version import __version__, __version_info__

from anvilkit.config import AnvilKitConfig, load_config
from anvilkit.kit import AnvilKit

# Node lifecycle
from anvilkit.node import (
    InstanceRecord,
    NodeInstance,
    NodeState,
    NodeStatus,
    NodeSupervisor,
    PortAllocator,
    StartNodeOptions,
    StartupReconciler,
)

# State
from anvilkit.state import (
    ImpersonationResult,
    ImpersonationTracker,
    InMemoryInstanceStore,
    InstanceStore,
    RevertResult,
    Snapshot,
    SnapshotRegistry,
    SQLiteInstanceStore,
)

# RPC
from anvilkit.rpc import BlockInfo, ChainControlClient, JsonRpcChainClient

# Errors
from anvilkit.errors import (
    AnvilKitError,
    CapacityExhaustedError,
    DuplicateSnapshotNameError,
    InstanceNotFoundError,
    InvalidAddressError,
    NodeConnectionError,
    NodeError,
    NodeNotReadyError,
    NodeRpcError,
    NodeSpawnError,
    NotFoundError,
    OrphanedInstanceError,
    PortUnavailableError,
    PossiblyInvalidatedWarning,
    SnapshotNotFoundError,
    StartupTimeoutError,
    ValidationError,
    ZeroBalanceWarning,
)

__all__ = [
    "__version__",
    "__version_info__",
    # Composition root
    "AnvilKit",
    "AnvilKitConfig",
    "load_config",
    # Node lifecycle
    "NodeSupervisor",
    "PortAllocator",
    "StartupReconciler",
    "NodeStatus",
    "NodeInstance",
    "InstanceRecord",
    "NodeState",
    "StartNodeOptions",
    # State
    "InstanceStore",
    "InMemoryInstanceStore",
    "SQLiteInstanceStore",
    "Snapshot",
    "RevertResult",
    "SnapshotRegistry",
    "ImpersonationResult",
    "ImpersonationTracker",
    # RPC
    "ChainControlClient",
    "JsonRpcChainClient",
    "BlockInfo",
    # Errors
    "AnvilKitError",
    "NotFoundError",
    "ValidationError",
    "InvalidAddressError",
    "NodeError",
    "CapacityExhaustedError",
    "PortUnavailableError",
    "NodeSpawnError",
    "StartupTimeoutError",
    "OrphanedInstanceError",
    "InstanceNotFoundError",
    "NodeRpcError",
    "NodeConnectionError",
    "NodeNotReadyError",
    "SnapshotNotFoundError",
    "DuplicateSnapshotNameError",
    "PossiblyInvalidatedWarning",
    "ZeroBalanceWarning",
]
