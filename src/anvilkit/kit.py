"""
AnvilKit - composition root for the local test-node core.

Owns one supervisor, one port allocator, one durable store and the
per-instance snapshot registries and impersonation trackers. Nothing is a
module-level singleton: tests build as many isolated kits as they need.

Example:
    >>> kit = await AnvilKit.create(load_config())
    >>> node = await kit.start_node(StartNodeOptions(chain_id=1))
    >>> snap = await kit.capture_snapshot(node.id, name="clean")
    >>> await kit.revert_snapshot(node.id, "clean")
    >>> await kit.close()
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from anvilkit.config import AnvilKitConfig, load_config
from anvilkit.errors import NodeNotReadyError
from anvilkit.node import (
    ClientFactory,
    NodeInstance,
    NodeState,
    NodeStatus,
    NodeSupervisor,
    PortAllocator,
    StartNodeOptions,
)
from anvilkit.rpc import ChainControlClient
from anvilkit.state import (
    ImpersonationResult,
    ImpersonationTracker,
    InstanceStore,
    RevertResult,
    Snapshot,
    SnapshotRegistry,
    SQLiteInstanceStore,
)
from anvilkit.utils.logging import configure_logging, get_logger

_logger = get_logger(__name__)


class AnvilKit:
    """
    Lifecycle, snapshot and impersonation operations over local test nodes.

    Use :meth:`create` rather than the constructor; it runs startup
    reconciliation before returning.
    """

    def __init__(
        self,
        config: AnvilKitConfig,
        store: InstanceStore,
        supervisor: NodeSupervisor,
    ) -> None:
        self._config = config
        self._store = store
        self._supervisor = supervisor
        self._snapshots: Dict[str, SnapshotRegistry] = {}
        self._impersonation: Dict[str, ImpersonationTracker] = {}
        self._clients: Dict[str, ChainControlClient] = {}
        self._closed = False

    @classmethod
    async def create(
        cls,
        config: Optional[AnvilKitConfig] = None,
        *,
        store: Optional[InstanceStore] = None,
        allocator: Optional[PortAllocator] = None,
        client_factory: Optional[ClientFactory] = None,
        setup_logging: bool = False,
    ) -> "AnvilKit":
        """
        Build a kit and reconcile records left by a previous process.

        Args:
            config: Configuration (read from the environment if omitted)
            store: Durable store (SQLite at ``config.db_path`` if omitted)
            allocator: Port allocator (built from the config range if omitted)
            client_factory: Control client factory (JSON-RPC if omitted)
            setup_logging: Install the stderr log handler at ``config.log_level``

        Returns:
            Initialized AnvilKit.
        """
        config = config or load_config()
        if setup_logging:
            configure_logging(config.log_level)

        store = store or SQLiteInstanceStore(config.db_path)
        supervisor = NodeSupervisor(
            config,
            store,
            allocator,
            client_factory=client_factory,
        )
        await supervisor.initialize()
        return cls(config, store, supervisor)

    @property
    def config(self) -> AnvilKitConfig:
        return self._config

    @property
    def supervisor(self) -> NodeSupervisor:
        return self._supervisor

    @property
    def store(self) -> InstanceStore:
        return self._store

    # ------------------------------------------------------------------
    # Node lifecycle
    # ------------------------------------------------------------------

    async def start_node(self, options: Optional[StartNodeOptions] = None) -> NodeInstance:
        """Start a node and wait for it to become ready."""
        instance = await self._supervisor.start(options)
        self._snapshots[instance.id] = SnapshotRegistry(instance.id)
        self._impersonation[instance.id] = ImpersonationTracker(instance.id)
        return instance

    async def stop_node(self, instance_id: str) -> NodeInstance:
        """Stop a node. Its snapshots and impersonations are kept but stale."""
        instance = await self._supervisor.stop(instance_id)
        await self._drop_client(instance_id)
        return instance

    async def stop_all(self) -> List[NodeInstance]:
        stopped = await self._supervisor.stop_all()
        for instance in stopped:
            await self._drop_client(instance.id)
        return stopped

    def get_node(self, instance_id: str) -> Optional[NodeInstance]:
        return self._supervisor.get(instance_id)

    def list_nodes(self, status: Optional[NodeStatus] = None) -> List[NodeInstance]:
        return self._supervisor.list(status)

    async def get_node_state(self, instance_id: str) -> NodeState:
        return await self._supervisor.get_state(instance_id)

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    async def capture_snapshot(
        self,
        instance_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Snapshot:
        client = await self._client_for(instance_id)
        return await self._registry(instance_id).capture(client, name, description)

    async def revert_snapshot(self, instance_id: str, id_or_name: str) -> RevertResult:
        registry = self._registry(instance_id)
        return await registry.revert(await self._client_for(instance_id), id_or_name)

    def get_snapshot(self, instance_id: str, id_or_name: str) -> Optional[Snapshot]:
        return self._registry(instance_id).get(id_or_name)

    def list_snapshots(self, instance_id: str) -> List[Snapshot]:
        return self._registry(instance_id).list()

    # ------------------------------------------------------------------
    # Impersonation
    # ------------------------------------------------------------------

    async def impersonate(self, instance_id: str, address: str) -> ImpersonationResult:
        client = await self._client_for(instance_id)
        return await self._tracker(instance_id).start(client, address)

    async def stop_impersonating(self, instance_id: str, address: str) -> ImpersonationResult:
        client = await self._client_for(instance_id)
        return await self._tracker(instance_id).stop(client, address)

    def impersonated(self, instance_id: str) -> List[str]:
        return self._tracker(instance_id).active

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _registry(self, instance_id: str) -> SnapshotRegistry:
        self._supervisor.require(instance_id)
        return self._snapshots.setdefault(instance_id, SnapshotRegistry(instance_id))

    def _tracker(self, instance_id: str) -> ImpersonationTracker:
        self._supervisor.require(instance_id)
        return self._impersonation.setdefault(instance_id, ImpersonationTracker(instance_id))

    async def _client_for(self, instance_id: str) -> ChainControlClient:
        """
        Cached control client for a usable instance.

        Clients of instances whose process has exited (stopped through the
        kit or not) are closed first.

        Raises:
            InstanceNotFoundError: If the id is unknown
            NodeNotReadyError: If the instance has no live process
        """
        instance = self._supervisor.require(instance_id)
        await self._evict_dead_clients()
        if not instance.has_live_process:
            raise NodeNotReadyError(
                f"Node instance {instance_id} is {instance.status.value} and has no live process"
            )
        client = self._clients.get(instance_id)
        if client is None:
            client = self._supervisor.client_factory(instance.rpc_url)
            self._clients[instance_id] = client
        return client

    async def _evict_dead_clients(self) -> None:
        for instance_id in list(self._clients):
            instance = self._supervisor.get(instance_id)
            if instance is None or not instance.has_live_process:
                _logger.debug("Closing client of exited node", extra={"instance_id": instance_id})
                await self._drop_client(instance_id)

    @property
    def cached_clients(self) -> List[str]:
        """Instance ids with an open control client."""
        return sorted(self._clients)

    async def _drop_client(self, instance_id: str) -> None:
        client = self._clients.pop(instance_id, None)
        if client is not None:
            await client.aclose()

    async def stats(self) -> Dict[str, Any]:
        """
        Instance counts for health endpoints.

        ``instances``, ``total`` and ``running`` describe this process;
        ``durable_total`` and ``durable_running`` come from the store and
        include records left by earlier runs.
        """
        instances = self._supervisor.list()
        by_status = {status.value: 0 for status in NodeStatus}
        for instance in instances:
            by_status[instance.status.value] += 1
        records = await self._store.list_all()
        return {
            "instances": by_status,
            "total": len(instances),
            "running": by_status[NodeStatus.RUNNING.value],
            "durable_total": len(records),
            "durable_running": sum(1 for r in records if r.status == NodeStatus.RUNNING),
            "allocated_ports": self._supervisor.allocator.allocated,
        }

    async def close(self) -> None:
        """Stop every controlled node, close clients and the store."""
        if self._closed:
            return
        self._closed = True
        await self._supervisor.shutdown()
        for instance_id in list(self._clients):
            await self._drop_client(instance_id)
        self._store.close()
        _logger.info("AnvilKit closed")

    async def __aenter__(self) -> "AnvilKit":
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    def __repr__(self) -> str:
        return f"AnvilKit(supervisor={self._supervisor!r})"
