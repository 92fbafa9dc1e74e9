"""
Impersonation tracker for one node instance.

Tracks which addresses the node currently lets callers send from without a
signing key. Not persisted: impersonation only means something while the
node process that granted it is alive.
"""

from __future__ import annotations

import asyncio
import warnings
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set

from anvilkit.errors import NodeRpcError, ZeroBalanceWarning
from anvilkit.rpc import ChainControlClient
from anvilkit.utils.logging import get_logger
from anvilkit.utils.validation import validate_address

_logger = get_logger(__name__)

IMPERSONATE_METHOD = "anvil_impersonateAccount"
STOP_IMPERSONATE_METHOD = "anvil_stopImpersonatingAccount"


@dataclass
class ImpersonationResult:
    """Outcome of an impersonation start or stop."""

    address: str
    active: bool
    balance: Optional[int] = None
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "address": self.address,
            "active": self.active,
            "balance": str(self.balance) if self.balance is not None else None,
            "warnings": list(self.warnings),
        }


class ImpersonationTracker:
    """
    Active impersonation set of a single node instance.

    Addresses are stored lowercase, so checksummed and lowercase forms of
    the same address are one entry.

    Example:
        >>> tracker = ImpersonationTracker(instance.id)
        >>> await tracker.start(client, "0x70997970c51812dc3a010c7d01b50e0d17dc79c8")
        >>> tracker.is_active("0x70997970C51812dc3A010C7d01b50e0d17dc79C8")
        True
    """

    def __init__(self, instance_id: Optional[str] = None) -> None:
        self.instance_id = instance_id
        self._active: Set[str] = set()
        self._lock = asyncio.Lock()

    def is_active(self, address: str) -> bool:
        return address.lower() in self._active

    @property
    def active(self) -> List[str]:
        """Impersonated addresses, sorted."""
        return sorted(self._active)

    async def start(self, client: ChainControlClient, address: str) -> ImpersonationResult:
        """
        Start impersonating ``address`` on the node.

        A zero balance is reported as a warning on the result, since the
        address cannot pay for gas.

        Raises:
            InvalidAddressError: If ``address`` is malformed
            NodeRpcError: If the node refuses
        """
        normalized = validate_address(address)
        notes: List[str] = []

        if normalized in self._active:
            notes.append(f"Already impersonating {normalized}")
            _logger.warning(
                "Address already impersonated",
                extra={"instance_id": self.instance_id, "address": normalized},
            )

        await client.call_control_method(IMPERSONATE_METHOD, [normalized])
        async with self._lock:
            self._active.add(normalized)

        balance: Optional[int] = None
        try:
            balance = await client.query_balance(normalized)
        except NodeRpcError as e:
            notes.append(f"Could not read balance of {normalized}: {e}")
            _logger.warning(
                "Balance lookup failed",
                extra={"instance_id": self.instance_id, "address": normalized, "error": str(e)},
            )

        if balance == 0:
            message = (
                f"{normalized} has zero balance and cannot pay for gas; "
                "fund it with anvil_setBalance first"
            )
            notes.append(message)
            warnings.warn(message, ZeroBalanceWarning, stacklevel=2)
            _logger.warning(
                "Impersonated address has zero balance",
                extra={"instance_id": self.instance_id, "address": normalized},
            )

        _logger.info(
            f"Impersonating {normalized}",
            extra={"instance_id": self.instance_id, "balance": balance},
        )
        return ImpersonationResult(address=normalized, active=True, balance=balance, warnings=notes)

    async def stop(self, client: ChainControlClient, address: str) -> ImpersonationResult:
        """
        Stop impersonating ``address``.

        Idempotent: an address that was never impersonated is simply absent
        afterwards.

        Raises:
            InvalidAddressError: If ``address`` is malformed
            NodeRpcError: If the node refuses
        """
        normalized = validate_address(address)
        await client.call_control_method(STOP_IMPERSONATE_METHOD, [normalized])
        async with self._lock:
            was_active = normalized in self._active
            self._active.discard(normalized)

        _logger.info(
            f"Stopped impersonating {normalized}",
            extra={"instance_id": self.instance_id, "was_active": was_active},
        )
        return ImpersonationResult(address=normalized, active=False)
