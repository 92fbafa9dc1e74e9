"""
Validation utilities for anvilkit.

Provides input validation for:
- Ethereum addresses
- TCP ports
- Fork source URLs

and masking of URLs before they are written to logs. All validation
functions raise ValidationError (or subclasses) on failure.
"""

from __future__ import annotations

from typing import Optional
from urllib.parse import urlparse, urlunparse

from web3 import Web3

from anvilkit.errors import InvalidAddressError, ValidationError

MIN_PORT = 1
MAX_PORT = 65535


def validate_address(address: str, field_name: str = "address") -> str:
    """
    Validate Ethereum address format.

    Mixed-case addresses must carry a valid EIP-55 checksum.

    Args:
        address: Address to validate
        field_name: Field name for error messages

    Returns:
        Normalized (lowercase) address

    Raises:
        InvalidAddressError: If address is invalid
    """
    if not address:
        raise InvalidAddressError("", field=field_name, reason=f"{field_name} is required")

    if not isinstance(address, str):
        raise InvalidAddressError(
            str(address),
            field=field_name,
            reason=f"{field_name} must be a string",
        )

    if not Web3.is_address(address):
        raise InvalidAddressError(
            address,
            field=field_name,
            reason="must be 0x followed by 40 hex characters with a valid checksum",
        )

    return address.lower()


def validate_port(port: int, field_name: str = "port") -> int:
    """
    Validate a TCP port number.

    Raises:
        ValidationError: If port is not an int in 1..65535
    """
    if isinstance(port, bool) or not isinstance(port, int):
        raise ValidationError(
            f"Invalid {field_name}: must be an integer",
            details={"field": field_name, "value": port},
        )
    if not MIN_PORT <= port <= MAX_PORT:
        raise ValidationError(
            f"Invalid {field_name}: must be between {MIN_PORT} and {MAX_PORT}",
            details={"field": field_name, "value": port},
        )
    return port


def validate_fork_url(url: str, field_name: str = "fork_url") -> str:
    """
    Validate a fork source URL.

    Unlike public endpoint validation, private and loopback hosts are
    allowed: forking from another local node is a normal workflow.

    Raises:
        ValidationError: If URL is malformed or not http(s)/ws(s)
    """
    if not url:
        raise ValidationError(
            f"{field_name} is required",
            details={"field": field_name, "value": None},
        )

    parsed = urlparse(url)
    if parsed.scheme not in ("http", "https", "ws", "wss"):
        raise ValidationError(
            f"Invalid {field_name}: scheme must be http, https, ws or wss",
            details={"field": field_name, "scheme": parsed.scheme},
        )

    if not parsed.hostname:
        raise ValidationError(
            f"Invalid {field_name}: missing hostname",
            details={"field": field_name},
        )

    return url


def mask_url(url: Optional[str]) -> Optional[str]:
    """
    Strip credentials, path and query from a URL for logging.

    Provider URLs typically embed API keys in the path
    (``https://eth-mainnet.g.alchemy.com/v2/<key>``).

    Example:
        >>> mask_url("https://user:pw@eth-mainnet.g.alchemy.com/v2/abc123?x=1")
        'https://eth-mainnet.g.alchemy.com/***'
    """
    if not url:
        return url
    parsed = urlparse(url)
    if not parsed.hostname:
        return "***"
    netloc = parsed.hostname
    if parsed.port:
        netloc = f"{netloc}:{parsed.port}"
    suffix = "/***" if (parsed.path not in ("", "/") or parsed.query) else ""
    return urlunparse((parsed.scheme, netloc, "", "", "", "")) + suffix
