"""
Node process supervisor.

Spawns one external node process per instance, captures and redacts its
output, drives the lifecycle status machine and mirrors every transition
to the durable instance store.

    starting -> running -> stopped
        |          \
        v           -> (process exit) -> stopped
      error (liveness probe timed out; process left running)

    orphaned: set only by startup reconciliation
"""

from __future__ import annotations

import asyncio
import traceback
import uuid
from collections import deque
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, List, Optional, Set

from anvilkit.config import AnvilKitConfig
from anvilkit.errors import (
    AnvilKitError,
    CapacityExhaustedError,
    InstanceNotFoundError,
    NodeNotReadyError,
    NodeRpcError,
    NodeSpawnError,
    OrphanedInstanceError,
    StartupTimeoutError,
)
from anvilkit.node.output import STREAM_LIMIT, OutputPump
from anvilkit.node.ports import PortAllocator
from anvilkit.node.reconciler import StartupReconciler
from anvilkit.node.types import (
    NodeInstance,
    NodeState,
    NodeStatus,
    StartNodeOptions,
    utc_now,
)
from anvilkit.rpc import ChainControlClient, JsonRpcChainClient
from anvilkit.utils.logging import LogContext, get_logger
from anvilkit.utils.redaction import RedactionPolicy
from anvilkit.utils.retry import RetryConfig, retry_async
from anvilkit.utils.validation import mask_url, validate_fork_url

if TYPE_CHECKING:
    from anvilkit.state.store import InstanceStore

_logger = get_logger(__name__)

ClientFactory = Callable[[str], ChainControlClient]
"""Builds a control client for an RPC URL."""


class NodeSupervisor:
    """
    Owns every node instance spawned by this process.

    Instances live in an in-memory map owned by the supervisor; callers
    observe them through ``get``/``list`` and change them only through
    ``start``/``stop``/``stop_all``.

    Example:
        >>> supervisor = NodeSupervisor(config, store)
        >>> await supervisor.initialize()
        >>> instance = await supervisor.start(StartNodeOptions(chain_id=1))
        >>> await supervisor.stop(instance.id)
    """

    def __init__(
        self,
        config: AnvilKitConfig,
        store: InstanceStore,
        allocator: Optional[PortAllocator] = None,
        *,
        client_factory: Optional[ClientFactory] = None,
        redaction: Optional[RedactionPolicy] = None,
    ) -> None:
        """
        Initialize supervisor.

        Args:
            config: anvilkit configuration
            store: Durable instance store
            allocator: Port allocator (built from the config range if omitted)
            client_factory: Control client factory (JSON-RPC over httpx if omitted)
            redaction: Output redaction policy (built from the config if omitted)
        """
        self._config = config
        self._store = store
        self._allocator = allocator or PortAllocator(
            config.anvil_port_start,
            config.anvil_port_end,
            host=config.anvil_host,
        )
        self._client_factory: ClientFactory = client_factory or (
            lambda url: JsonRpcChainClient(url, timeout=config.rpc_timeout)
        )
        self._redaction = redaction or RedactionPolicy.from_pattern(config.redact_pattern)
        self._instances: Dict[str, NodeInstance] = {}
        self._pumps: Dict[str, "asyncio.Task[None]"] = {}
        self._tasks: Set["asyncio.Task[Any]"] = set()
        self._init_lock = asyncio.Lock()
        self._initialized = False

    @property
    def allocator(self) -> PortAllocator:
        return self._allocator

    @property
    def client_factory(self) -> ClientFactory:
        return self._client_factory

    @property
    def is_initialized(self) -> bool:
        return self._initialized

    # ------------------------------------------------------------------
    # Startup reconciliation
    # ------------------------------------------------------------------

    async def initialize(self) -> List[NodeInstance]:
        """
        Reconcile durable records left by a previous supervisor.

        Runs once; later calls are no-ops. Must complete before ``start``.

        Returns:
            Instances marked orphaned by this call.
        """
        async with self._init_lock:
            if self._initialized:
                return []

            records = await StartupReconciler(self._store).reconcile()
            orphaned = []
            for record in records:
                instance = NodeInstance.from_record(record)
                self._instances[instance.id] = instance
                orphaned.append(instance)

            self._initialized = True
            _logger.info(
                "Node supervisor initialized",
                extra={
                    "port_start": self._allocator.start,
                    "port_end": self._allocator.end,
                    "orphaned": len(orphaned),
                },
            )
            return orphaned

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get(self, instance_id: str) -> Optional[NodeInstance]:
        """Return the instance, or None if the id is unknown."""
        return self._instances.get(instance_id)

    def require(self, instance_id: str) -> NodeInstance:
        """
        Return the instance.

        Raises:
            InstanceNotFoundError: If the id is unknown
        """
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFoundError(instance_id)
        return instance

    def list(self, status: Optional[NodeStatus] = None) -> List[NodeInstance]:
        """All known instances, oldest first, optionally filtered by status."""
        instances = sorted(self._instances.values(), key=lambda i: i.started_at)
        if status is None:
            return instances
        return [i for i in instances if i.status == status]

    async def get_state(self, instance_id: str) -> NodeState:
        """
        Query the live chain position of an instance.

        Raises:
            InstanceNotFoundError: If the id is unknown
            NodeRpcError: If the node cannot be queried
        """
        instance = self.require(instance_id)
        client = self._client_factory(instance.rpc_url)
        try:
            block_number = await client.query_block_height()
            if block_number is None:
                raise NodeRpcError("eth_blockNumber", "response has no result field")
            chain_id = await client.query_chain_id()
        finally:
            await client.aclose()

        return NodeState(
            instance_id=instance.id,
            chain_id=chain_id,
            block_number=block_number,
            recent_logs=list(instance.output_tail),
        )

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def build_args(
        self,
        options: StartNodeOptions,
        port: int,
        chain_id: int,
    ) -> List[str]:
        """Command-line arguments for the node executable."""
        args = [
            "--host",
            self._config.anvil_host,
            "--port",
            str(port),
            "--chain-id",
            str(chain_id),
        ]
        if options.fork_url:
            args.extend(["--fork-url", options.fork_url])
            if options.fork_block_number is not None:
                args.extend(["--fork-block-number", str(options.fork_block_number)])
        return args

    async def _acquire_port(self, override: Optional[int]) -> int:
        if override is not None:
            await self._allocator.reserve(override)
            return override

        port = await self._allocator.allocate()
        if port is None:
            raise CapacityExhaustedError(self._allocator.start, self._allocator.end)
        return port

    async def start(self, options: Optional[StartNodeOptions] = None) -> NodeInstance:
        """
        Spawn a node and wait until it answers its liveness probe.

        Args:
            options: Start options (defaults to a fresh, non-forked chain)

        Returns:
            The running instance.

        Raises:
            RuntimeError: If ``initialize`` has not completed
            CapacityExhaustedError: If no port is free
            PortUnavailableError: If an explicit port is already held
            NodeSpawnError: If the executable cannot be launched or exits
                during startup
            StartupTimeoutError: If the node never became ready; the
                instance is left in ``error`` with its process running
        """
        if not self._initialized:
            raise RuntimeError("Node supervisor is not initialized; call initialize() first")

        options = options or StartNodeOptions()
        if options.fork_url:
            validate_fork_url(options.fork_url)

        chain_id = options.chain_id or self._config.anvil_default_chain_id
        port = await self._acquire_port(options.port)
        instance_id = str(uuid.uuid4())
        args = self.build_args(options, port, chain_id)

        with LogContext(instance_id=instance_id, port=port):
            _logger.info(
                "Starting node instance",
                extra={
                    "chain_id": chain_id,
                    "fork_url": mask_url(options.fork_url),
                    "fork_block_number": options.fork_block_number,
                },
            )

            try:
                process = await asyncio.create_subprocess_exec(
                    self._config.anvil_path,
                    *args,
                    stdin=asyncio.subprocess.DEVNULL,
                    stdout=asyncio.subprocess.PIPE,
                    stderr=asyncio.subprocess.PIPE,
                    limit=STREAM_LIMIT,
                )
            except OSError as e:
                self._allocator.release(port)
                _logger.error(
                    "Failed to launch node process",
                    extra={"executable": self._config.anvil_path, "error": str(e)},
                )
                raise NodeSpawnError(
                    f"Failed to launch {self._config.anvil_path}: {e}",
                    instance_id=instance_id,
                ) from e

            instance = NodeInstance(
                id=instance_id,
                port=port,
                chain_id=chain_id,
                host=self._config.anvil_host,
                fork_url=options.fork_url,
                fork_block_number=options.fork_block_number,
                pid=process.pid,
                process=process,
                output_tail=deque(maxlen=self._config.output_tail_lines),
            )
            self._instances[instance_id] = instance

            pump = OutputPump(instance_id, self._redaction, instance.output_tail)
            self._pumps[instance_id] = self._spawn_task(
                pump.run(process), f"node-output-{instance_id[:8]}"
            )
            self._spawn_task(self._watch_exit(instance), f"node-exit-{instance_id[:8]}")

            await self._store.upsert(instance_id, instance.to_record())

            try:
                await self._wait_for_startup(instance)
            except StartupTimeoutError:
                await self._mark_failed(instance)
                raise
            except asyncio.CancelledError:
                if instance.status == NodeStatus.STARTING:
                    instance.status = NodeStatus.ERROR
                    instance.stopped_at = utc_now()
                    self._spawn_task(self._persist_quietly(instance), f"node-persist-{instance_id[:8]}")
                raise

            instance.status = NodeStatus.RUNNING
            await self._store.upsert(instance_id, instance.to_record())
            _logger.info(
                f"Node instance {instance_id} RPC ready on port {port}",
                extra={"pid": instance.pid},
            )
            return instance

    async def _wait_for_startup(self, instance: NodeInstance) -> None:
        client = self._client_factory(instance.rpc_url)
        interval_ms = int(self._config.startup_poll_interval * 1000)

        async def probe() -> int:
            if instance.process is not None and instance.process.returncode is not None:
                raise await self._early_exit_error(instance)
            height = await client.query_block_height()
            if height is None:
                raise NodeNotReadyError()
            return height

        retry = RetryConfig(
            max_attempts=None,
            base_delay_ms=interval_ms,
            max_delay_ms=interval_ms,
            jitter=False,
            exponential_base=1.0,
            timeout_s=self._config.startup_timeout,
            retryable_errors=(NodeNotReadyError, NodeRpcError),
        )

        try:
            await retry_async(probe, retry)
        except asyncio.TimeoutError as e:
            raise StartupTimeoutError(
                instance.id,
                self._config.startup_timeout,
                port=instance.port,
            ) from e
        finally:
            await client.aclose()

        if instance.status != NodeStatus.STARTING:
            raise await self._early_exit_error(instance)

    async def _early_exit_error(self, instance: NodeInstance) -> NodeSpawnError:
        await instance.exited.wait()
        pump = self._pumps.get(instance.id)
        if pump is not None and not pump.done():
            # Let the pump flush what the process wrote before dying.
            await asyncio.wait({pump}, timeout=1.0)
        return NodeSpawnError(
            f"Node instance {instance.id} exited during startup",
            instance_id=instance.id,
            exit_code=instance.exit_code,
            output_tail=list(instance.output_tail)[-20:],
        )

    async def _mark_failed(self, instance: NodeInstance) -> None:
        if instance.status != NodeStatus.STARTING:
            return
        instance.status = NodeStatus.ERROR
        instance.stopped_at = utc_now()
        await self._store.upsert(instance.id, instance.to_record())
        _logger.error(
            f"Node instance {instance.id} did not become ready; left running for inspection",
            extra={"instance_id": instance.id, "pid": instance.pid, "port": instance.port},
        )

    # ------------------------------------------------------------------
    # Exit handling
    # ------------------------------------------------------------------

    async def _watch_exit(self, instance: NodeInstance) -> None:
        assert instance.process is not None
        returncode = await instance.process.wait()

        instance.exit_code = returncode
        self._allocator.release(instance.port)
        transitioned = instance.status != NodeStatus.STOPPED
        if transitioned:
            instance.status = NodeStatus.STOPPED
            instance.stopped_at = utc_now()
            await self._persist_quietly(instance)
        instance.exited.set()

        _logger.info(
            f"Node instance {instance.id} exited with code {returncode}",
            extra={"instance_id": instance.id, "port": instance.port},
        )

    async def _persist_quietly(self, instance: NodeInstance) -> None:
        """Persist from a background task, where no caller can receive the error."""
        try:
            await self._store.upsert(instance.id, instance.to_record())
        except Exception as e:
            _logger.error(
                "Failed to update node status",
                extra={
                    "instance_id": instance.id,
                    "status": instance.status.value,
                    "error": str(e),
                    "traceback": traceback.format_exc(),
                },
            )

    def _spawn_task(self, coro: Awaitable[Any], name: str) -> "asyncio.Task[Any]":
        task = asyncio.ensure_future(coro)
        task.set_name(name)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)
        return task

    def _task_done(self, task: "asyncio.Task[Any]") -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            _logger.error(
                "Background task failed",
                extra={"task": task.get_name(), "error": repr(error)},
            )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    async def stop(self, instance_id: str) -> NodeInstance:
        """
        Terminate an instance's process and mark it stopped.

        Sends SIGTERM, waits up to ``stop_timeout`` for the exit, then
        sends SIGKILL. Stopping an already stopped instance is a no-op.

        Raises:
            InstanceNotFoundError: If the id is unknown
            OrphanedInstanceError: If the instance was not spawned by this
                process; orphans are never signalled
        """
        instance = self.require(instance_id)

        if instance.status == NodeStatus.ORPHANED:
            raise OrphanedInstanceError(instance_id, pid=instance.pid)

        process = instance.process
        if process is None or process.returncode is not None:
            _logger.debug(
                "Node instance already exited",
                extra={"instance_id": instance_id, "status": instance.status.value},
            )
            return instance

        try:
            process.terminate()
        except ProcessLookupError:
            # Exited between the returncode check and the signal.
            pass

        instance.status = NodeStatus.STOPPED
        instance.stopped_at = utc_now()
        await self._store.upsert(instance_id, instance.to_record())

        try:
            await asyncio.wait_for(instance.exited.wait(), timeout=self._config.stop_timeout)
        except asyncio.TimeoutError:
            _logger.warning(
                f"Node instance {instance_id} ignored SIGTERM, killing",
                extra={"instance_id": instance_id, "pid": instance.pid},
            )
            try:
                process.kill()
            except ProcessLookupError:
                pass
            await instance.exited.wait()

        _logger.info(f"Stopped node instance {instance_id}", extra={"instance_id": instance_id})
        return instance

    async def stop_all(self) -> List[NodeInstance]:
        """
        Stop every instance this process controls.

        Orphaned instances are skipped with a warning. A failure to stop one
        instance is logged and does not prevent stopping the others.

        Returns:
            Instances that were stopped by this call.
        """
        stopped: List[NodeInstance] = []
        for instance in list(self._instances.values()):
            if instance.status == NodeStatus.ORPHANED:
                _logger.warning(
                    f"Skipping stop for instance {instance.id} (no process control)",
                    extra={"instance_id": instance.id, "pid": instance.pid},
                )
                continue
            if not instance.has_live_process:
                continue
            try:
                stopped.append(await self.stop(instance.id))
            except AnvilKitError as e:
                _logger.error(
                    "Failed to stop node instance",
                    extra={"instance_id": instance.id, "error": str(e)},
                )
        return stopped

    async def shutdown(self) -> None:
        """Stop all controlled instances and wait for their background tasks."""
        await self.stop_all()
        pending = [t for t in self._tasks if not t.done()]
        if pending:
            _, still_running = await asyncio.wait(pending, timeout=self._config.stop_timeout)
            for task in still_running:
                task.cancel()

    def __repr__(self) -> str:
        running = sum(1 for i in self._instances.values() if i.status == NodeStatus.RUNNING)
        return (
            f"NodeSupervisor(instances={len(self._instances)}, "
            f"running={running}, allocator={self._allocator!r})"
        )
