"""
Taskboard Error Hierarchy — Structured exceptions for the rule layer.

All errors carry a UTC timestamp and arbitrary keyword context, and can be
serialized with to_dict()/to_json() for the JSONL log files and for the
request boundary response body.

Hierarchy:
    TaskboardError
    ├── UnauthorizedError          — Missing/invalid credential, bad login
    │   └── AdminRequiredError     — Authenticated, but admin role required
    ├── NotFoundError              — Absent, soft-deleted, or not visible
    ├── ValidationFailedError      — One (path, message) pair per violation
    ├── ConflictError              — Duplicate email, etc.
    │   └── AlreadyDeletedError    — Second soft-delete of a project
    ├── InternalError              — Unexpected store failure
    └── ConfigError                — Invalid taskboard.yaml
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional


class TaskboardError(Exception):
    """Base error for all Taskboard failures."""

    def __init__(self, message: str, **context: Any):
        self.message = message
        self.error_type: str = self.__class__.__name__
        self.context: Dict[str, Any] = context
        self.request_id: Optional[str] = context.get("request_id")
        self.resource: Optional[str] = context.get("resource")
        self.resource_id: Optional[str] = context.get("resource_id")
        self.timestamp: str = datetime.now(timezone.utc).isoformat()
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Serialize error to a JSON-compatible dict."""
        return {
            "error_type": self.error_type,
            "message": self.message,
            "request_id": self.request_id,
            "resource": self.resource,
            "resource_id": self.resource_id,
            "timestamp": self.timestamp,
            "context": {
                k: str(v) for k, v in self.context.items()
                if k not in ("request_id", "resource", "resource_id")
            },
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)

    def __repr__(self) -> str:
        parts = [f"{self.error_type}: {self.message}"]
        if self.resource:
            parts.append(f"resource={self.resource}")
        if self.resource_id:
            parts.append(f"resource_id={self.resource_id}")
        return " | ".join(parts)


class UnauthorizedError(TaskboardError):
    """
    Missing, invalid or expired credential, or a failed login.
    The message never reveals whether an email address is registered.
    """

    def __init__(self, message: str = "Unauthorized", **context: Any):
        self.subject_id: Optional[str] = context.get("subject_id")
        super().__init__(message, **context)


class AdminRequiredError(UnauthorizedError):
    """Subject is authenticated but the operation is admin-only."""

    def __init__(self, message: str = "Admin role required", **context: Any):
        self.role: Optional[str] = context.get("role")
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["role"] = self.role
        return d


class NotFoundError(TaskboardError):
    """
    Resource absent, soft-deleted, or not visible to the subject.
    Ownership violations are deliberately reported with this type.
    """
    pass


class ValidationFailedError(TaskboardError):
    """
    Input validation failed before any mutation was attempted.
    `errors` holds one {"path": ..., "message": ...} entry per violation.
    """

    def __init__(self, message: str = "Validation error", **context: Any):
        self.errors: List[Dict[str, str]] = list(context.get("errors") or [])
        super().__init__(message, **context)

    def to_dict(self) -> Dict[str, Any]:
        d = super().to_dict()
        d["errors"] = self.errors
        d["context"].pop("errors", None)
        return d

    @classmethod
    def single(cls, path: str, message: str, **context: Any) -> "ValidationFailedError":
        return cls(message, errors=[{"path": path, "message": message}], **context)


class ConflictError(TaskboardError):
    """State conflict: duplicate unique value or repeated operation."""
    pass


class AlreadyDeletedError(ConflictError):
    """The record already carries a soft-delete marker."""

    def __init__(self, message: str, **context: Any):
        self.deleted_at: Optional[str] = context.get("deleted_at")
        super().__init__(message, **context)


class InternalError(TaskboardError):
    """Unexpected store failure."""
    pass


class ConfigError(TaskboardError):
    """Configuration error — invalid taskboard.yaml."""
    pass
