"""
Test-isolation state: durable instance records, snapshots and impersonation.
"""

from anvilkit.state.store import InMemoryInstanceStore, InstanceStore, SQLiteInstanceStore
from anvilkit.state.impersonation import ImpersonationResult, ImpersonationTracker
from anvilkit.state.snapshots import RevertResult, Snapshot, SnapshotRegistry

__all__ = [
    "InstanceStore",
    "InMemoryInstanceStore",
    "SQLiteInstanceStore",
    "Snapshot",
    "RevertResult",
    "SnapshotRegistry",
    "ImpersonationResult",
    "ImpersonationTracker",
]
