"""
anvilkit utilities.

This module provides logging, redaction, retry and validation helpers.
"""

from anvilkit.utils.logging import (
    LogContext,
    configure_logging,
    disable_logging,
    enable_debug,
    get_logger,
    set_level,
)
from anvilkit.utils.redaction import (
    DEFAULT_SECRET_PATTERN,
    REDACTED,
    RedactionPolicy,
    redact_line,
)
from anvilkit.utils.retry import RetryConfig, calculate_delay, retry_async
from anvilkit.utils.validation import (
    mask_url,
    validate_address,
    validate_fork_url,
    validate_port,
)

__all__ = [
    # Structured logging
    "get_logger",
    "configure_logging",
    "set_level",
    "disable_logging",
    "enable_debug",
    "LogContext",
    # Redaction
    "DEFAULT_SECRET_PATTERN",
    "REDACTED",
    "RedactionPolicy",
    "redact_line",
    # Retry
    "RetryConfig",
    "calculate_delay",
    "retry_async",
    # Validation
    "validate_address",
    "validate_port",
    "validate_fork_url",
    "mask_url",
]
