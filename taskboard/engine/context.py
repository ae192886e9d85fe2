"""
Taskboard Request Context — the resolved subject of one request.

The request boundary resolves the credential once, loads the subject's role
from the user directory, and hands the resulting RequestContext to every
store/policy call as an explicit argument. Nothing reads it from ambient
state.

Usage:
    from taskboard.engine.context import RequestContext, ROLE_ADMIN
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, Optional

ROLE_ADMIN = "admin"
ROLE_MEMBER = "member"
ROLES = (ROLE_ADMIN, ROLE_MEMBER)


@dataclass(frozen=True)
class RequestContext:
    """
    Per-request subject identity. Built by AuthService.resolve_context().
    """

    subject_id: str
    role: str
    email: str = ""
    name: str = ""
    request_id: str = field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    client_ip: Optional[str] = None

    def __post_init__(self) -> None:
        if self.role not in ROLES:
            raise ValueError(f"role must be one of {ROLES}, got '{self.role}'")

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    def to_dict(self) -> Dict[str, Any]:
        """Serialize for logging."""
        return {
            "subject_id": self.subject_id,
            "role": self.role,
            "email": self.email,
            "request_id": self.request_id,
            "client_ip": self.client_ip,
        }
