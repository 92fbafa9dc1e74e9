"""
Local test-node lifecycle: port allocation, process supervision and
startup reconciliation.
"""

from anvilkit.node.output import OutputPump
from anvilkit.node.ports import PortAllocator, is_port_free
from anvilkit.node.reconciler import StartupReconciler
from anvilkit.node.supervisor import ClientFactory, NodeSupervisor
from anvilkit.node.types import (
    InstanceRecord,
    NodeInstance,
    NodeState,
    NodeStatus,
    StartNodeOptions,
)

__all__ = [
    "NodeSupervisor",
    "ClientFactory",
    "PortAllocator",
    "is_port_free",
    "StartupReconciler",
    "OutputPump",
    "NodeStatus",
    "NodeInstance",
    "InstanceRecord",
    "NodeState",
    "StartNodeOptions",
]
