"""
Base exception classes for anvilkit.

Every anvilkit exception inherits from AnvilKitError, which carries a
machine-readable error code, the node instance it concerns (if any), and a
dictionary of extra context suitable for structured logging.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class AnvilKitError(Exception):
    """
    Base exception for all anvilkit errors.

    Attributes:
        message: Human-readable error description.
        code: Machine-readable error code (e.g., "CAPACITY_EXHAUSTED").
        instance_id: Optional id of the node instance related to the error.
        details: Optional dictionary with additional error context.

    Example:
        >>> raise AnvilKitError(
        ...     "Node failed",
        ...     code="NODE_FAILED",
        ...     instance_id="5f0c...",
        ...     details={"port": 8545}
        ... )
    """

    def __init__(
        self,
        message: str,
        *,
        code: str = "ANVILKIT_ERROR",
        instance_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.instance_id = instance_id
        self.details = details or {}

    def __str__(self) -> str:
        """Return formatted error message."""
        parts = [f"[{self.code}] {self.message}"]
        if self.instance_id:
            parts.append(f"(instance: {self.instance_id[:8]})")
        return " ".join(parts)

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"code={self.code!r}, "
            f"instance_id={self.instance_id!r}, "
            f"details={self.details!r})"
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to a dictionary for JSON serialization.

        Returns:
            Dictionary representation of the error.
        """
        return {
            "error": self.__class__.__name__,
            "code": self.code,
            "message": self.message,
            "instance_id": self.instance_id,
            "details": self.details,
        }


class NotFoundError(AnvilKitError):
    """Raised when an operation references an unknown instance, snapshot or target."""

    def __init__(
        self,
        message: str,
        *,
        code: str = "NOT_FOUND",
        instance_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code=code, instance_id=instance_id, details=details)


class ValidationError(AnvilKitError):
    """
    Raised when caller-supplied input is malformed.

    Example:
        >>> raise ValidationError("port must be between 1 and 65535", details={"port": 0})
    """

    def __init__(
        self,
        message: str,
        *,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidAddressError(ValidationError):
    """Raised when an Ethereum address is malformed."""

    def __init__(
        self,
        address: str,
        *,
        field: str = "address",
        reason: Optional[str] = None,
    ) -> None:
        message = f"Invalid {field}: {address!r}"
        if reason:
            message += f" ({reason})"
        super().__init__(message, details={"field": field, "value": address})
        self.code = "INVALID_ADDRESS"
        self.address = address
        self.reason = reason
