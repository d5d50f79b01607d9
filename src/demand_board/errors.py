# src/demand_board/errors.py

"""
Error hierarchy.

Hierarchy:
    BoardError
    ├── ValidationError        - rejected locally, before any remote call
    ├── PermissionDeniedError  - actor may not perform the operation
    ├── RemoteStoreError       - transient store/network failure
    ├── AuthError              - login / registration / session failure
    ├── ClassificationError    - AI classifier returned unusable output
    └── ConfigError            - invalid settings or allowlist

Every error carries free-form context kwargs and serializes to a dict for logs.
"""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


class BoardError(Exception):
    """Base error with structured context."""

    def __init__(self, message: str, **context: Any) -> None:
        self.message = message
        self.context: dict[str, Any] = context
        self.error_type: str = self.__class__.__name__
        self.timestamp: str = datetime.now(UTC).isoformat()
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        return {
            "error_type": self.error_type,
            "message": self.message,
            "timestamp": self.timestamp,
            "context": {k: str(v) for k, v in self.context.items()},
        }

    def __repr__(self) -> str:
        return f"{self.error_type}: {self.message}"


class ValidationError(BoardError):
    """Input rejected before reaching the store (empty title, no assignees, ...)."""

    def __init__(self, message: str, **context: Any) -> None:
        self.field: str | None = context.get("field")
        super().__init__(message, **context)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["field"] = self.field
        return d


class PermissionDeniedError(BoardError):
    """The current actor is not allowed to perform the operation."""

    def __init__(self, message: str, **context: Any) -> None:
        self.actor: str | None = context.get("actor")
        self.operation: str | None = context.get("operation")
        super().__init__(message, **context)


class RemoteStoreError(BoardError):
    """A remote store call failed (network, HTTP status, database error)."""

    def __init__(self, message: str, **context: Any) -> None:
        self.operation: str | None = context.get("operation")
        self.status_code: int | None = context.get("status_code")
        super().__init__(message, **context)

    def to_dict(self) -> dict[str, Any]:
        d = super().to_dict()
        d["operation"] = self.operation
        d["status_code"] = self.status_code
        return d


class AuthError(BoardError):
    """Unknown email, wrong password, invalid registration or missing session."""
    pass


class ClassificationError(BoardError):
    """The demand classifier could not produce a structured result."""
    pass


class ConfigError(BoardError):
    """Invalid configuration (e.g. allowlist without exactly one BOSS)."""
    pass
