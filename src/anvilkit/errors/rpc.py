"""
Exceptions raised while talking to a node's JSON-RPC control endpoint.
"""

from __future__ import annotations

from typing import Any, Dict, Optional

from anvilkit.errors.base import AnvilKitError


class NodeRpcError(AnvilKitError):
    """
    Raised when a control method returns an error or a malformed response.

    Example:
        >>> raise NodeRpcError("evm_revert", "invalid snapshot id", rpc_code=-32602)
    """

    def __init__(
        self,
        method: str,
        message: str,
        *,
        rpc_code: Optional[int] = None,
        rpc_url: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        details = details or {}
        details["method"] = method
        if rpc_code is not None:
            details["rpc_code"] = rpc_code
        if rpc_url:
            details["rpc_url"] = rpc_url

        super().__init__(
            f"{method} failed: {message}",
            code="RPC_ERROR",
            details=details,
        )
        self.method = method
        self.rpc_code = rpc_code
        self.rpc_url = rpc_url


class NodeConnectionError(NodeRpcError):
    """Raised when the control endpoint cannot be reached at all."""

    def __init__(
        self,
        method: str,
        hint: str,
        *,
        rpc_url: Optional[str] = None,
        cause: Optional[str] = None,
    ) -> None:
        details: Dict[str, Any] = {}
        if cause:
            details["cause"] = cause
        super().__init__(method, hint, rpc_url=rpc_url, details=details)
        self.code = "CONNECTION_ERROR"
        self.hint = hint


class NodeNotReadyError(AnvilKitError):
    """The control endpoint answered but without the expected field yet."""

    def __init__(self, message: str = "Node not ready") -> None:
        super().__init__(message, code="NODE_NOT_READY")
