"""
Node instance types.

Provides:
- NodeStatus: lifecycle status enum
- StartNodeOptions: validated start request
- NodeInstance: in-memory state of one supervised node process
- InstanceRecord: durable mirror of a NodeInstance
- NodeState: live chain position of a running node
"""

from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Deque, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from anvilkit.utils.validation import mask_url


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class NodeStatus(str, Enum):
    """
    Node instance lifecycle status.

    starting -> running -> stopped, with terminal alternates orphaned
    (found by startup reconciliation) and error (never became ready).
    """

    STARTING = "starting"
    RUNNING = "running"
    STOPPED = "stopped"
    ORPHANED = "orphaned"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (NodeStatus.STOPPED, NodeStatus.ORPHANED, NodeStatus.ERROR)


class StartNodeOptions(BaseModel):
    """
    Options for starting a node instance.

    Example:
        ```python
        options = StartNodeOptions(
            fork_url="https://eth-mainnet.g.alchemy.com/v2/KEY",
            fork_block_number=19_000_000,
        )
        ```
    """

    model_config = ConfigDict(frozen=True)

    fork_url: Optional[str] = Field(
        default=None,
        description="RPC endpoint to fork state from",
    )
    fork_block_number: Optional[int] = Field(
        default=None,
        ge=0,
        description="Block to fork at (requires fork_url)",
    )
    chain_id: Optional[int] = Field(
        default=None,
        ge=1,
        description="Chain id (defaults to the configured default)",
    )
    port: Optional[int] = Field(
        default=None,
        ge=1,
        le=65535,
        description="Explicit port; skips the allocator's range scan",
    )

    @model_validator(mode="after")
    def _fork_point_needs_source(self) -> "StartNodeOptions":
        if self.fork_block_number is not None and not self.fork_url:
            raise ValueError("fork_block_number requires fork_url")
        return self


class InstanceRecord(BaseModel):
    """
    Durable mirror of a node instance.

    Records are only ever inserted or updated, never deleted. The fork
    source is stored masked since provider URLs embed API keys.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    port: int
    status: NodeStatus
    forked_from: Optional[str] = None
    chain_id: Optional[int] = None
    started_at: datetime
    stopped_at: Optional[datetime] = None
    pid: Optional[int] = None


@dataclass
class NodeInstance:
    """
    One externally spawned node process.

    Owned by the supervisor; callers get references for reading but all
    status transitions go through the supervisor.

    Attributes:
        id: Opaque unique id, stable for the process lifetime
        port: Port the node listens on
        chain_id: Declared chain id
        status: Lifecycle status
        host: Interface the node listens on
        fork_url: Fork source, if any
        fork_block_number: Fork point, if any
        pid: Native process id (None for records without a process)
        started_at: Creation time
        stopped_at: Termination time
        exit_code: Process exit code once observed
    """

    id: str
    port: int
    chain_id: int
    status: NodeStatus = NodeStatus.STARTING
    host: str = "127.0.0.1"
    fork_url: Optional[str] = None
    fork_block_number: Optional[int] = None
    pid: Optional[int] = None
    started_at: datetime = field(default_factory=utc_now)
    stopped_at: Optional[datetime] = None
    exit_code: Optional[int] = None
    process: Optional[asyncio.subprocess.Process] = field(default=None, repr=False, compare=False)
    output_tail: Deque[str] = field(default_factory=lambda: deque(maxlen=200), repr=False, compare=False)
    exited: asyncio.Event = field(default_factory=asyncio.Event, repr=False, compare=False)

    @property
    def rpc_url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def has_live_process(self) -> bool:
        return self.process is not None and self.process.returncode is None

    @property
    def holds_port(self) -> bool:
        """True while this instance may still be bound to its port."""
        return not self.status.is_terminal or self.has_live_process

    def to_record(self) -> InstanceRecord:
        return InstanceRecord(
            id=self.id,
            port=self.port,
            status=self.status,
            forked_from=mask_url(self.fork_url),
            chain_id=self.chain_id,
            started_at=self.started_at,
            stopped_at=self.stopped_at,
            pid=self.pid,
        )

    @classmethod
    def from_record(cls, record: InstanceRecord) -> "NodeInstance":
        """Rebuild an instance without a process handle (reconciled records)."""
        return cls(
            id=record.id,
            port=record.port,
            chain_id=record.chain_id or 0,
            status=record.status,
            fork_url=record.forked_from,
            pid=record.pid,
            started_at=record.started_at,
            stopped_at=record.stopped_at,
        )

    def to_dict(self) -> Dict[str, Any]:
        """Public view of the instance, free of process handles and secrets."""
        return {
            "id": self.id,
            "port": self.port,
            "status": self.status.value,
            "rpc_url": self.rpc_url,
            "chain_id": self.chain_id,
            "forked_from": mask_url(self.fork_url),
            "fork_block_number": self.fork_block_number,
            "pid": self.pid,
            "started_at": self.started_at.isoformat(),
            "stopped_at": self.stopped_at.isoformat() if self.stopped_at else None,
            "exit_code": self.exit_code,
        }


@dataclass(frozen=True)
class NodeState:
    """Live chain position of a node instance."""

    instance_id: str
    chain_id: int
    block_number: int
    recent_logs: List[str] = field(default_factory=list)
