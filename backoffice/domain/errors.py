"""Typed errors raised by the synchronization core.

Callers branch on ``code`` (or the class), never on the message text.
"""

from __future__ import annotations

from typing import Any, Dict, Optional


class SyncError(Exception):
    code: str = "sync_error"
    status_code: int = 400
    retryable: bool = False

    def __init__(self, message: str = "", *, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"code": self.code, "message": self.message}
        if self.details:
            body["details"] = self.details
        if self.retryable:
            body["retryable"] = True
        return body


class NotFoundError(SyncError):
    code = "not_found"
    status_code = 404


class ValidationError(SyncError):
    code = "validation_error"
    status_code = 422


class PreconditionError(SyncError):
    code = "precondition_failed"
    status_code = 409


class ConflictError(SyncError):
    code = "conflict"
    status_code = 409


class OperationNotImplementedError(SyncError):
    """The operation exists but its gateway integration is not wired."""

    code = "not_implemented"
    status_code = 501


class GatewayError(SyncError):
    """Payment gateway call failed or timed out; local state was left untouched."""

    code = "gateway_error"
    status_code = 502
    retryable = True


class InternalError(SyncError):
    code = "internal_error"
    status_code = 500
    retryable = True
