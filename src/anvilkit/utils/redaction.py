"""
Secret redaction for captured node output.

Test nodes print their funded accounts' private keys on startup. Every line
of captured output passes through ``redact_line`` before it reaches a log
sink or the in-memory output tail.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional, Pattern, Union

DEFAULT_SECRET_PATTERN = r"0x[a-fA-F0-9]{64}"
"""Long hex strings: private keys (and, unavoidably, 32-byte hashes)."""

REDACTED = "0x[REDACTED]"


@dataclass(frozen=True)
class RedactionPolicy:
    """
    Pattern-based redaction rule.

    Example:
        >>> policy = RedactionPolicy.from_pattern(r"0x[a-fA-F0-9]{64}")
        >>> policy.apply("(0) 0x" + "ab" * 32)
        '(0) 0x[REDACTED]'
    """

    pattern: Pattern[str]
    replacement: str = REDACTED

    @classmethod
    def from_pattern(
        cls,
        pattern: Union[str, Pattern[str]] = DEFAULT_SECRET_PATTERN,
        replacement: str = REDACTED,
    ) -> "RedactionPolicy":
        compiled = re.compile(pattern) if isinstance(pattern, str) else pattern
        return cls(pattern=compiled, replacement=replacement)

    def apply(self, line: str) -> str:
        return self.pattern.sub(self.replacement, line)


DEFAULT_POLICY = RedactionPolicy.from_pattern()


def redact_line(line: str, policy: RedactionPolicy = DEFAULT_POLICY) -> Optional[str]:
    """
    Redact secrets from one line of output.

    Returns:
        The redacted line, or None when redaction itself failed. A None
        result means the line must be dropped, never emitted unredacted.
    """
    try:
        return policy.apply(line)
    except Exception:
        return None
