"""
Port allocation for node instances.

Hands out exclusive-use ports from an inclusive range. A candidate port is
only returned if this allocator has not handed it out already and an
OS-level bind probe succeeds. The probe is best-effort: an unrelated
process can still grab the port between the probe and the node binding it.
"""

from __future__ import annotations

import asyncio
import socket
from typing import List, Optional, Set

from anvilkit.errors import PortUnavailableError
from anvilkit.utils.logging import get_logger
from anvilkit.utils.validation import validate_port

_logger = get_logger(__name__)


def is_port_free(port: int, host: str = "127.0.0.1") -> bool:
    """
    Bind-and-release probe.

    Returns:
        True if a listening socket could be opened on ``host:port``.
    """
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    # Lingering TIME_WAIT connections from a dead node must not count as
    # held; an active listener still makes bind fail.
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
        sock.listen(1)
        return True
    except OSError:
        return False
    finally:
        sock.close()


class PortAllocator:
    """
    Allocates ports from ``[start, end]`` in ascending order.

    Safe under concurrent ``allocate()`` calls: the scan and the marking of
    the chosen port happen under one lock, so two callers never receive the
    same port until it is released.

    Example:
        >>> allocator = PortAllocator(8545, 8555)
        >>> port = await allocator.allocate()
        >>> allocator.release(port)
    """

    def __init__(self, start: int, end: int, host: str = "127.0.0.1") -> None:
        """
        Initialize allocator.

        Args:
            start: First port of the range (inclusive)
            end: Last port of the range (inclusive)
            host: Interface used for the bind probe
        """
        validate_port(start, "start")
        validate_port(end, "end")
        if end < start:
            raise ValueError(f"Port range end ({end}) must be >= start ({start})")

        self.start = start
        self.end = end
        self.host = host
        self._allocated: Set[int] = set()
        self._lock = asyncio.Lock()

    @property
    def allocated(self) -> List[int]:
        """Currently allocated ports, ascending."""
        return sorted(self._allocated)

    @property
    def capacity(self) -> int:
        return self.end - self.start + 1

    def in_range(self, port: int) -> bool:
        return self.start <= port <= self.end

    def is_allocated(self, port: int) -> bool:
        return port in self._allocated

    def _probe(self, port: int) -> bool:
        return is_port_free(port, self.host)

    async def allocate(self) -> Optional[int]:
        """
        Allocate the lowest free port.

        Returns:
            The port, or None when every port is allocated or fails the bind
            probe. None is a capacity condition, not a transient error.
        """
        async with self._lock:
            for port in range(self.start, self.end + 1):
                if port in self._allocated:
                    continue
                if not self._probe(port):
                    _logger.debug(
                        "Port held by another process, skipping",
                        extra={"port": port},
                    )
                    continue
                self._allocated.add(port)
                return port

        _logger.warning(
            "Port range exhausted",
            extra={"port_start": self.start, "port_end": self.end},
        )
        return None

    async def reserve(self, port: int) -> None:
        """
        Mark an explicitly requested port as allocated.

        Ports outside the range are tracked too, so two explicit requests
        for the same port conflict. No bind probe is made: the node itself
        reports a bind failure for an explicit port.

        Raises:
            PortUnavailableError: If the port is already allocated
        """
        validate_port(port)
        async with self._lock:
            if port in self._allocated:
                raise PortUnavailableError(port, holder="allocator")
            self._allocated.add(port)

    def release(self, port: int) -> None:
        """Return a port to the pool. Releasing a free port is a no-op."""
        self._allocated.discard(port)

    def __repr__(self) -> str:
        return (
            f"PortAllocator(range={self.start}-{self.end}, "
            f"allocated={len(self._allocated)})"
        )
