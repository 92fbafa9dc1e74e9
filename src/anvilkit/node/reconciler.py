"""
Startup reconciliation of durable instance records.

A supervisor restart loses every child process handle. Records a previous
supervisor left at ``running`` are therefore marked ``orphaned``, whether or
not their PID still looks alive: a live PID may belong to an unrelated
process that reused the number. Nothing is killed or reattached.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, List

import psutil

from anvilkit.node.types import InstanceRecord, NodeStatus, utc_now
from anvilkit.utils.logging import get_logger

if TYPE_CHECKING:
    from anvilkit.state.store import InstanceStore

_logger = get_logger(__name__)


class StartupReconciler:
    """
    Reclassifies records left behind by a previous supervisor process.

    Example:
        >>> orphaned = await StartupReconciler(store).reconcile()
    """

    def __init__(self, store: InstanceStore) -> None:
        self._store = store

    async def reconcile(self) -> List[InstanceRecord]:
        """
        Mark every durable ``running`` record as ``orphaned``.

        Returns:
            The updated (orphaned) records.
        """
        previous = await self._store.list_by_status(NodeStatus.RUNNING)
        orphaned: List[InstanceRecord] = []

        for record in previous:
            updated = record.model_copy(
                update={"status": NodeStatus.ORPHANED, "stopped_at": utc_now()}
            )
            await self._store.upsert(record.id, updated)
            orphaned.append(updated)

            pid_alive = record.pid is not None and psutil.pid_exists(record.pid)
            reason = (
                f"cannot reattach to PID {record.pid}"
                if pid_alive
                else f"PID {record.pid} not running"
            )
            _logger.warning(
                f"Node instance {record.id} marked as orphaned ({reason})",
                extra={"instance_id": record.id, "pid": record.pid, "port": record.port},
            )

        _logger.info(
            f"Checked {len(previous)} previous node instances",
            extra={"orphaned": len(orphaned)},
        )
        return orphaned
