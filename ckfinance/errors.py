"""
Error taxonomy for the client core.

Every failure path in the orchestrator and trading session ends in one of
these types (or in a retained error message derived from one). None of them
is fatal to the process.
"""

from __future__ import annotations

from typing import Optional


class ClientError(Exception):
    """Base class for all client-side errors."""

    def __init__(self, message: str, *, cause: Optional[BaseException] = None) -> None:
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class AuthError(ClientError):
    """Identity provider failure, or an operation attempted without a session."""


class RpcError(ClientError):
    """A remote call was rejected, timed out, or returned an unusable reply."""

    def __init__(
        self,
        message: str,
        *,
        method: Optional[str] = None,
        service_id: Optional[str] = None,
        cause: Optional[BaseException] = None,
    ) -> None:
        super().__init__(message, cause=cause)
        self.method = method
        self.service_id = service_id


class ValidationError(ClientError):
    """Invalid input rejected before any remote call was made."""


class NotFoundError(ClientError):
    """A prerequisite (deposit address, tx hash, selected asset) is missing."""


class StaleSessionError(ClientError):
    """A result arrived for a session that has since been replaced or closed."""
