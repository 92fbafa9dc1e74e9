"""
Snapshot registry for one node instance.

Records node-issued snapshot tokens, optionally under a unique name, and
tracks which tokens have been reverted to. Most nodes invalidate a token
after its first revert, but the node stays authoritative: reverting a
consumed token is attempted anyway and only flagged.

Snapshots are in-memory only. They are not invalidated when the owning
node stops; a stale token is only detected by the node refusing it.
"""

from __future__ import annotations

import asyncio
import warnings
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set

from anvilkit.errors import (
    DuplicateSnapshotNameError,
    NodeConnectionError,
    NodeRpcError,
    PossiblyInvalidatedWarning,
    SnapshotNotFoundError,
)
from anvilkit.node.types import utc_now
from anvilkit.rpc import ChainControlClient
from anvilkit.utils.logging import get_logger

_logger = get_logger(__name__)

SNAPSHOT_METHODS = ("evm_snapshot", "anvil_snapshot")
REVERT_METHODS = ("evm_revert", "anvil_revert")


@dataclass(frozen=True)
class Snapshot:
    """
    A captured state marker.

    Attributes:
        snapshot_id: Opaque token issued by the node
        name: Optional unique name
        description: Optional free text
        block_number: Block number at capture time
        block_hash: Block hash at capture time
        timestamp: Block timestamp at capture time
        created_at: Wall-clock capture time
    """

    snapshot_id: str
    name: Optional[str]
    description: Optional[str]
    block_number: int
    block_hash: str
    timestamp: int
    created_at: datetime = field(default_factory=utc_now)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "name": self.name,
            "description": self.description,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "timestamp": self.timestamp,
            "created_at": self.created_at.isoformat(),
        }


@dataclass
class RevertResult:
    """Outcome of a revert, with the chain position afterwards."""

    success: bool
    snapshot_id: str
    block_number: int
    block_hash: str
    timestamp: int
    possibly_invalidated: bool = False
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": self.success,
            "snapshot_id": self.snapshot_id,
            "block_number": self.block_number,
            "block_hash": self.block_hash,
            "timestamp": self.timestamp,
            "possibly_invalidated": self.possibly_invalidated,
            "warnings": list(self.warnings),
        }


async def _call_with_fallback(
    client: ChainControlClient,
    methods: tuple,
    params: Optional[List[Any]] = None,
) -> Any:
    """
    Call the first method, falling back to the alias when the node rejects it.

    Transport failures are not retried under the alias.
    """
    primary, fallback = methods
    try:
        return await client.call_control_method(primary, params)
    except NodeConnectionError:
        raise
    except NodeRpcError as e:
        _logger.debug(
            f"{primary} rejected, trying {fallback}",
            extra={"rpc_url": client.rpc_url, "error": str(e)},
        )
        return await client.call_control_method(fallback, params)


class SnapshotRegistry:
    """
    Per-instance snapshot registry.

    Example:
        >>> registry = SnapshotRegistry(instance.id)
        >>> snap = await registry.capture(client, name="clean")
        >>> result = await registry.revert(client, "clean")
    """

    def __init__(self, instance_id: Optional[str] = None) -> None:
        self.instance_id = instance_id
        self._by_id: Dict[str, Snapshot] = {}
        self._by_name: Dict[str, str] = {}
        self._consumed: Set[str] = set()
        self._lock = asyncio.Lock()

    def __len__(self) -> int:
        return len(self._by_id)

    def _resolve(self, id_or_name: str) -> Optional[str]:
        token = self._by_name.get(id_or_name)
        if token is not None:
            return token
        if id_or_name in self._by_id:
            return id_or_name
        return None

    def get(self, id_or_name: str) -> Optional[Snapshot]:
        """Look up a snapshot by name, then by token."""
        token = self._resolve(id_or_name)
        return self._by_id.get(token) if token is not None else None

    def list(self) -> List[Snapshot]:
        """Snapshots in capture order."""
        return list(self._by_id.values())

    def is_consumed(self, id_or_name: str) -> bool:
        token = self._resolve(id_or_name)
        return token is not None and token in self._consumed

    async def capture(
        self,
        client: ChainControlClient,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Snapshot:
        """
        Take a snapshot through the node and register it.

        Args:
            client: Control client of the instance
            name: Optional unique name
            description: Optional free text

        Returns:
            The registered snapshot.

        Raises:
            DuplicateSnapshotNameError: If ``name`` is already registered
            NodeRpcError: If the node refuses the snapshot
        """
        if name is not None and name in self._by_name:
            raise DuplicateSnapshotNameError(name, instance_id=self.instance_id)

        result = await _call_with_fallback(client, SNAPSHOT_METHODS)
        if result is None:
            raise NodeRpcError(SNAPSHOT_METHODS[0], "node returned no snapshot id", rpc_url=client.rpc_url)
        block = await client.query_latest_block()

        snapshot = Snapshot(
            snapshot_id=str(result),
            name=name,
            description=description,
            block_number=block.number,
            block_hash=block.hash,
            timestamp=block.timestamp,
        )

        async with self._lock:
            # A concurrent capture may have claimed the name while we awaited the node.
            if name is not None and name in self._by_name:
                raise DuplicateSnapshotNameError(name, instance_id=self.instance_id)
            self._by_id[snapshot.snapshot_id] = snapshot
            if name is not None:
                self._by_name[name] = snapshot.snapshot_id
            # A node may reissue a token after reverting past it.
            self._consumed.discard(snapshot.snapshot_id)

        _logger.info(
            f"Captured snapshot {snapshot.snapshot_id}",
            extra={
                "instance_id": self.instance_id,
                "snapshot_name": name,
                "block_number": block.number,
            },
        )
        return snapshot

    async def revert(self, client: ChainControlClient, id_or_name: str) -> RevertResult:
        """
        Revert the node to a registered snapshot.

        A token that was already reverted to is tried anyway; the result then
        carries ``possibly_invalidated`` and a PossiblyInvalidatedWarning is
        emitted.

        Raises:
            SnapshotNotFoundError: If ``id_or_name`` resolves to nothing
            NodeRpcError: If the node call fails
        """
        token = self._resolve(id_or_name)
        if token is None:
            raise SnapshotNotFoundError(id_or_name, instance_id=self.instance_id)

        notes: List[str] = []
        possibly_invalidated = token in self._consumed
        if possibly_invalidated:
            message = (
                f"Snapshot {token} was already reverted to and may have been "
                "invalidated by the node"
            )
            notes.append(message)
            warnings.warn(message, PossiblyInvalidatedWarning, stacklevel=2)
            _logger.warning(message, extra={"instance_id": self.instance_id, "snapshot_id": token})

        success = bool(await _call_with_fallback(client, REVERT_METHODS, [token]))
        if success:
            self._consumed.add(token)
        else:
            notes.append(f"Node reported revert to {token} as unsuccessful")
            _logger.warning(
                "Node reported unsuccessful revert",
                extra={"instance_id": self.instance_id, "snapshot_id": token},
            )

        block = await client.query_latest_block()
        _logger.info(
            f"Reverted to snapshot {token}",
            extra={
                "instance_id": self.instance_id,
                "success": success,
                "block_number": block.number,
            },
        )
        return RevertResult(
            success=success,
            snapshot_id=token,
            block_number=block.number,
            block_hash=block.hash,
            timestamp=block.timestamp,
            possibly_invalidated=possibly_invalidated,
            warnings=notes,
        )
