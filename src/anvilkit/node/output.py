"""
Captured output handling for node processes.

Node stdout/stderr is never inherited. Each line is decoded, passed through
the redaction policy and only then appended to the instance's output tail
and written to the ``anvilkit.node.output`` logger. A line that cannot be
redacted is dropped.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Deque, Optional

from anvilkit.utils.logging import get_logger
from anvilkit.utils.redaction import DEFAULT_POLICY, RedactionPolicy, redact_line

_logger = get_logger(__name__)

STREAM_LIMIT = 1024 * 1024
"""StreamReader line limit for spawned processes."""


class OutputPump:
    """
    Line-oriented redacting transform from process streams to log sinks.

    Example:
        >>> pump = OutputPump(instance.id, policy, instance.output_tail)
        >>> asyncio.create_task(pump.run(process))
    """

    def __init__(
        self,
        instance_id: str,
        policy: RedactionPolicy = DEFAULT_POLICY,
        tail: Optional[Deque[str]] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.instance_id = instance_id
        self.policy = policy
        self.tail = tail
        self._logger = logger or _logger
        self.suppressed = 0

    def feed(self, raw: bytes, stream_name: str = "stdout") -> Optional[str]:
        """
        Redact one raw line and emit it.

        Returns:
            The redacted text that was emitted, or None if it was suppressed.
        """
        text = raw.decode("utf-8", errors="replace").rstrip("\r\n")
        redacted = redact_line(text, self.policy)
        if redacted is None:
            self.suppressed += 1
            self._logger.warning(
                "Suppressed node output line after redaction failure",
                extra={"instance_id": self.instance_id, "stream": stream_name},
            )
            return None

        if not redacted:
            return redacted

        if self.tail is not None:
            self.tail.append(redacted)
        level = logging.WARNING if stream_name == "stderr" else logging.DEBUG
        self._logger.log(
            level,
            f"[node {self.instance_id[:8]}] {redacted}",
            extra={"instance_id": self.instance_id, "stream": stream_name},
        )
        return redacted

    async def drain(self, stream: Optional[asyncio.StreamReader], stream_name: str) -> None:
        if stream is None:
            return
        while True:
            try:
                line = await stream.readline()
            except ValueError:
                # Line longer than the reader limit; drop what is buffered.
                self.suppressed += 1
                self._logger.warning(
                    "Dropped oversized node output line",
                    extra={"instance_id": self.instance_id, "stream": stream_name},
                )
                continue
            if not line:
                break
            self.feed(line, stream_name)

    async def run(self, process: asyncio.subprocess.Process) -> None:
        """Pump both streams until the process closes them."""
        await asyncio.gather(
            self.drain(process.stdout, "stdout"),
            self.drain(process.stderr, "stderr"),
        )
