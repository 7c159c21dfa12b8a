"""Error taxonomy shared by the config store, mutation, and aggregation services."""

from __future__ import annotations


class FlowboardError(RuntimeError):
    """Base class for structured, client-reportable failures."""

    code = "InternalError"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_payload(self) -> dict[str, str]:
        return {"error": self.code, "message": self.message}


class ValidationError(FlowboardError):
    code = "ValidationError"
    http_status = 400


class DuplicateError(FlowboardError):
    code = "DuplicateError"
    http_status = 409


class NotFoundError(FlowboardError):
    code = "NotFoundError"
    http_status = 404


class VersionConflict(FlowboardError):
    """The stored document advanced past the version the writer read."""

    code = "VersionConflict"
    http_status = 409


class ConflictExhausted(FlowboardError):
    code = "ConflictExhausted"
    http_status = 409

    def __init__(self, message: str, attempts: int) -> None:
        super().__init__(message)
        self.attempts = attempts


class StoreUnavailable(FlowboardError):
    code = "StoreUnavailable"
    http_status = 503


class AuthError(FlowboardError):
    code = "AuthError"
    http_status = 502


__all__ = [
    "AuthError",
    "ConflictExhausted",
    "DuplicateError",
    "FlowboardError",
    "NotFoundError",
    "StoreUnavailable",
    "ValidationError",
    "VersionConflict",
]
