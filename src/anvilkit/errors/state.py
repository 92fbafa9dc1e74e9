"""
Snapshot and impersonation state exceptions and warnings.
"""

from __future__ import annotations

from typing import Optional

from anvilkit.errors.base import AnvilKitError, NotFoundError


class SnapshotNotFoundError(NotFoundError):
    """Raised when a snapshot id or name does not resolve."""

    def __init__(self, id_or_name: str, *, instance_id: Optional[str] = None) -> None:
        super().__init__(
            f"Snapshot not found: {id_or_name}. Create a snapshot first.",
            code="SNAPSHOT_NOT_FOUND",
            instance_id=instance_id,
            details={"snapshot": id_or_name},
        )
        self.id_or_name = id_or_name


class DuplicateSnapshotNameError(AnvilKitError):
    """Raised when a snapshot name is already registered. Never auto-renamed."""

    def __init__(self, name: str, *, instance_id: Optional[str] = None) -> None:
        super().__init__(
            f'Snapshot name "{name}" already exists. Use a unique name.',
            code="DUPLICATE_SNAPSHOT_NAME",
            instance_id=instance_id,
            details={"name": name},
        )
        self.name = name


class PossiblyInvalidatedWarning(UserWarning):
    """A snapshot that was already reverted to is being reverted to again."""


class ZeroBalanceWarning(UserWarning):
    """An impersonated address has no balance to pay for gas."""
