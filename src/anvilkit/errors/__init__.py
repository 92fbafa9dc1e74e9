"""
Exception hierarchy for anvilkit.

    AnvilKitError
    ├── NotFoundError
    │   ├── InstanceNotFoundError
    │   └── SnapshotNotFoundError
    ├── ValidationError
    │   └── InvalidAddressError
    ├── NodeError
    │   ├── CapacityExhaustedError
    │   ├── PortUnavailableError
    │   ├── NodeSpawnError
    │   ├── StartupTimeoutError
    │   └── OrphanedInstanceError
    ├── NodeRpcError
    │   └── NodeConnectionError
    ├── NodeNotReadyError
    └── DuplicateSnapshotNameError
"""

from anvilkit.errors.base import (
    AnvilKitError,
    InvalidAddressError,
    NotFoundError,
    ValidationError,
)
from anvilkit.errors.node import (
    CapacityExhaustedError,
    InstanceNotFoundError,
    NodeError,
    NodeSpawnError,
    OrphanedInstanceError,
    PortUnavailableError,
    StartupTimeoutError,
)
from anvilkit.errors.rpc import NodeConnectionError, NodeNotReadyError, NodeRpcError
from anvilkit.errors.state import (
    DuplicateSnapshotNameError,
    PossiblyInvalidatedWarning,
    SnapshotNotFoundError,
    ZeroBalanceWarning,
)

__all__ = [
    # Base
    "AnvilKitError",
    "NotFoundError",
    "ValidationError",
    "InvalidAddressError",
    # Node lifecycle
    "NodeError",
    "CapacityExhaustedError",
    "PortUnavailableError",
    "NodeSpawnError",
    "StartupTimeoutError",
    "OrphanedInstanceError",
    "InstanceNotFoundError",
    # RPC
    "NodeRpcError",
    "NodeConnectionError",
    "NodeNotReadyError",
    # State
    "SnapshotNotFoundError",
    "DuplicateSnapshotNameError",
    # Warnings
    "PossiblyInvalidatedWarning",
    "ZeroBalanceWarning",
]
