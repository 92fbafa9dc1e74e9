"""
Node lifecycle exceptions.

Raised by the port allocator and the node process supervisor while
starting, supervising and stopping local test-node processes.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional

from anvilkit.errors.base import AnvilKitError, NotFoundError


class NodeError(AnvilKitError):
    """Base exception for node lifecycle failures."""

    def __init__(
        self,
        message: str,
        *,
        instance_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(
            message,
            code="NODE_ERROR",
            instance_id=instance_id,
            details=details,
        )


class CapacityExhaustedError(NodeError):
    """
    Raised when no port in the configured range is free.

    Not retryable: nothing changes until an instance is stopped.

    Example:
        >>> raise CapacityExhaustedError(8545, 8555)
    """

    def __init__(self, port_start: int, port_end: int) -> None:
        super().__init__(
            f"No available ports for node instance in range {port_start}-{port_end}",
            details={"port_start": port_start, "port_end": port_end},
        )
        self.code = "CAPACITY_EXHAUSTED"
        self.port_start = port_start
        self.port_end = port_end


class PortUnavailableError(NodeError):
    """Raised when an explicitly requested port is already held."""

    def __init__(self, port: int, *, holder: Optional[str] = None) -> None:
        details: Dict[str, Any] = {"port": port}
        if holder:
            details["holder"] = holder
        super().__init__(f"Port {port} is already in use", details=details)
        self.code = "PORT_UNAVAILABLE"
        self.port = port


class NodeSpawnError(NodeError):
    """
    Raised when the node process cannot be launched or dies during startup.

    The output tail is already redacted.
    """

    def __init__(
        self,
        message: str,
        *,
        instance_id: Optional[str] = None,
        exit_code: Optional[int] = None,
        output_tail: Optional[List[str]] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if exit_code is not None:
            details["exit_code"] = exit_code
        if output_tail:
            details["output_tail"] = output_tail
        super().__init__(message, instance_id=instance_id, details=details)
        self.code = "SPAWN_FAILED"
        self.exit_code = exit_code
        self.output_tail = output_tail or []


class StartupTimeoutError(NodeError):
    """
    Raised when a spawned node never answers its liveness probe.

    The process is left running so it can be inspected and stopped explicitly.
    """

    def __init__(self, instance_id: str, timeout: float, *, port: Optional[int] = None) -> None:
        details: Dict[str, Any] = {"timeout_s": timeout}
        if port is not None:
            details["port"] = port
        super().__init__(
            f"Node instance {instance_id} failed to start within {timeout:g}s",
            instance_id=instance_id,
            details=details,
        )
        self.code = "STARTUP_TIMEOUT"
        self.timeout = timeout


class OrphanedInstanceError(NodeError):
    """Raised when asked to signal an instance this process did not spawn."""

    def __init__(self, instance_id: str, *, pid: Optional[int] = None) -> None:
        super().__init__(
            f"Node instance {instance_id} is orphaned; no process handle to signal",
            instance_id=instance_id,
            details={"pid": pid},
        )
        self.code = "INSTANCE_ORPHANED"
        self.pid = pid


class InstanceNotFoundError(NotFoundError):
    """Raised when an instance id is unknown to the supervisor."""

    def __init__(self, instance_id: str) -> None:
        super().__init__(
            f"Node instance not found: {instance_id}",
            code="INSTANCE_NOT_FOUND",
            instance_id=instance_id,
        )
