"""
Taskboard Access Policy Engine — pure allow/deny and field-set decisions.

decide(ctx, resource_kind, operation, resource) → Decision(allow,
readable_fields, writable_fields). No I/O: the stores load the resource,
ask for a decision, then mask the payload and build queries from it.

Ownership is one visibility predicate parameterized by {subject, role,
resource}. The two historical ownership models are expressed as named
profiles:

    project  — tasks are scoped by assignment. Members see and may move
               (status only) the tasks assigned to them; admins see and
               edit everything; delete is creator-or-admin.
    creator  — tasks are scoped by creator. Single-task read/update/delete
               is creator-only for every role; member listings show the
               tasks they created.

Projects are readable by every authenticated subject and writable by
admins only, under both profiles.

Denials carry `deny_as` so the request boundary can surface ownership
violations as NotFound (never "forbidden") and admin-only operations as
AdminRequired.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple

from taskboard.engine.context import RequestContext
from taskboard.engine.errors import (
    AdminRequiredError,
    NotFoundError,
    UnauthorizedError,
    ValidationFailedError,
)
from taskboard.engine.logging import log, log_security_event

logger = logging.getLogger("taskboard.policy.access")

PROFILE_PROJECT = "project"
PROFILE_CREATOR = "creator"

RESOURCE_TASK = "task"
RESOURCE_PROJECT = "project"
RESOURCE_USER = "user"

OP_LIST = "list"
OP_READ = "read"
OP_CREATE = "create"
OP_UPDATE = "update"
OP_UPDATE_STATUS = "update_status"
OP_DELETE = "delete"

DENY_UNAUTHORIZED = "unauthorized"
DENY_NOT_FOUND = "not_found"
DENY_ADMIN_REQUIRED = "admin_required"

TASK_CONTENT_FIELDS: FrozenSet[str] = frozenset(
    {"title", "description", "status", "priority", "tags", "due_date"}
)
TASK_WRITE_FIELDS: FrozenSet[str] = TASK_CONTENT_FIELDS | {"assigned_to", "project_id"}
TASK_READ_FIELDS: FrozenSet[str] = TASK_WRITE_FIELDS | {
    "id", "created_by", "created_at", "updated_at", "assignee", "project",
}
STATUS_ONLY: FrozenSet[str] = frozenset({"status"})

PROJECT_WRITE_FIELDS: FrozenSet[str] = frozenset({"title", "description", "team"})
PROJECT_READ_FIELDS: FrozenSet[str] = PROJECT_WRITE_FIELDS | {
    "id", "created_by", "creator", "progress", "status", "task_count", "done_count",
    "created_at", "updated_at",
}

USER_READ_FIELDS: FrozenSet[str] = frozenset({"id", "name", "email", "role", "avatar", "created_at"})
USER_SELF_WRITE_FIELDS: FrozenSet[str] = frozenset({"name", "email", "password", "avatar"})
USER_ADMIN_CREATE_FIELDS: FrozenSet[str] = frozenset({"name", "email", "password", "avatar", "role"})

_NOTHING: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Decision:
    allow: bool
    readable_fields: FrozenSet[str] = _NOTHING
    writable_fields: FrozenSet[str] = _NOTHING
    deny_as: Optional[str] = None
    reason: str = ""

    @classmethod
    def permit(
        cls,
        readable: FrozenSet[str],
        writable: FrozenSet[str] = _NOTHING,
    ) -> "Decision":
        return cls(allow=True, readable_fields=readable, writable_fields=writable)

    @classmethod
    def deny(cls, deny_as: str, reason: str) -> "Decision":
        return cls(allow=False, deny_as=deny_as, reason=reason)


def readable(view: Mapping[str, Any], fields: FrozenSet[str]) -> Dict[str, Any]:
    """Project a serialized record onto a decision's readable fields."""
    return {k: v for k, v in view.items() if k in fields}


def _owner(resource: Any, attr: str) -> Optional[str]:
    if resource is None:
        return None
    if isinstance(resource, Mapping):
        return resource.get(attr)
    return getattr(resource, attr, None)


# ---------------------------------------------------------------------------
# Task profiles
# ---------------------------------------------------------------------------

class TaskProfile:
    """Task ownership rules. Subclasses differ in who owns a task."""

    name = ""
    requires_project = False

    def visibility(self, ctx: RequestContext) -> Dict[str, str]:
        raise NotImplementedError

    def decide(self, ctx: RequestContext, operation: str, task: Any) -> Decision:
        raise NotImplementedError

    def create_fields(self, ctx: RequestContext) -> FrozenSet[str]:
        """Assignee choice is honoured for admins only."""
        if ctx.is_admin:
            return TASK_WRITE_FIELDS
        return TASK_WRITE_FIELDS - {"assigned_to"}


class ProjectScopedProfile(TaskProfile):
    name = PROFILE_PROJECT
    requires_project = True

    def visibility(self, ctx: RequestContext) -> Dict[str, str]:
        if ctx.is_admin:
            return {}
        return {"assigned_to": ctx.subject_id}

    def decide(self, ctx: RequestContext, operation: str, task: Any) -> Decision:
        is_assignee = _owner(task, "assigned_to") == ctx.subject_id
        is_creator = _owner(task, "created_by") == ctx.subject_id

        if operation == OP_READ:
            if ctx.is_admin or is_assignee:
                return Decision.permit(TASK_READ_FIELDS)
            return Decision.deny(DENY_NOT_FOUND, "not admin or assignee")

        if operation == OP_UPDATE:
            if ctx.is_admin:
                return Decision.permit(TASK_READ_FIELDS, TASK_CONTENT_FIELDS | {"assigned_to"})
            if is_assignee:
                return Decision.permit(TASK_READ_FIELDS, STATUS_ONLY)
            return Decision.deny(DENY_NOT_FOUND, "not admin or assignee")

        if operation == OP_UPDATE_STATUS:
            if ctx.is_admin or is_assignee:
                return Decision.permit(TASK_READ_FIELDS, STATUS_ONLY)
            return Decision.deny(DENY_NOT_FOUND, "not admin or assignee")

        if operation == OP_DELETE:
            if ctx.is_admin or is_creator:
                return Decision.permit(TASK_READ_FIELDS)
            return Decision.deny(DENY_NOT_FOUND, "not admin or creator")

        return Decision.deny(DENY_NOT_FOUND, f"unknown task operation '{operation}'")


class CreatorScopedProfile(TaskProfile):
    name = PROFILE_CREATOR
    requires_project = False

    def visibility(self, ctx: RequestContext) -> Dict[str, str]:
        if ctx.is_admin:
            return {}
        return {"created_by": ctx.subject_id}

    def decide(self, ctx: RequestContext, operation: str, task: Any) -> Decision:
        if _owner(task, "created_by") != ctx.subject_id:
            return Decision.deny(DENY_NOT_FOUND, "not creator")

        if operation in (OP_READ, OP_DELETE):
            return Decision.permit(TASK_READ_FIELDS)
        if operation == OP_UPDATE:
            writable = TASK_CONTENT_FIELDS | ({"assigned_to"} if ctx.is_admin else _NOTHING)
            return Decision.permit(TASK_READ_FIELDS, writable)
        if operation == OP_UPDATE_STATUS:
            return Decision.permit(TASK_READ_FIELDS, STATUS_ONLY)

        return Decision.deny(DENY_NOT_FOUND, f"unknown task operation '{operation}'")


PROFILES: Dict[str, TaskProfile] = {
    PROFILE_PROJECT: ProjectScopedProfile(),
    PROFILE_CREATOR: CreatorScopedProfile(),
}


# ---------------------------------------------------------------------------
# Policy
# ---------------------------------------------------------------------------

class AccessPolicy:
    """
    Access decisions for tasks, projects and users under one task profile.

    Usage:
        policy = AccessPolicy("project")
        decision = policy.enforce(ctx, "task", "update", task)
        allowed, dropped = policy.mask(payload, decision)
    """

    def __init__(self, profile: str = PROFILE_PROJECT):
        if profile not in PROFILES:
            raise ValueError(f"Unknown policy profile '{profile}'")
        self._profile = PROFILES[profile]

    @property
    def profile(self) -> TaskProfile:
        return self._profile

    def decide(
        self,
        ctx: Optional[RequestContext],
        resource_kind: str,
        operation: str,
        resource: Any = None,
    ) -> Decision:
        if ctx is None:
            return Decision.deny(DENY_UNAUTHORIZED, "no subject")

        if resource_kind == RESOURCE_TASK:
            if operation == OP_LIST:
                return Decision.permit(TASK_READ_FIELDS)
            if operation == OP_CREATE:
                return Decision.permit(TASK_READ_FIELDS, self._profile.create_fields(ctx))
            return self._profile.decide(ctx, operation, resource)

        if resource_kind == RESOURCE_PROJECT:
            if operation in (OP_LIST, OP_READ):
                return Decision.permit(PROJECT_READ_FIELDS)
            if operation in (OP_CREATE, OP_UPDATE, OP_DELETE):
                if ctx.is_admin:
                    writable = PROJECT_WRITE_FIELDS if operation != OP_DELETE else _NOTHING
                    return Decision.permit(PROJECT_READ_FIELDS, writable)
                return Decision.deny(DENY_ADMIN_REQUIRED, "project writes are admin-only")
            return Decision.deny(DENY_NOT_FOUND, f"unknown project operation '{operation}'")

        if resource_kind == RESOURCE_USER:
            if operation in (OP_LIST, OP_READ):
                return Decision.permit(USER_READ_FIELDS)
            if operation == OP_CREATE:
                if ctx.is_admin:
                    return Decision.permit(USER_READ_FIELDS, USER_ADMIN_CREATE_FIELDS)
                return Decision.deny(DENY_ADMIN_REQUIRED, "user administration is admin-only")
            if operation == OP_UPDATE:
                if _owner(resource, "id") == ctx.subject_id:
                    return Decision.permit(USER_READ_FIELDS, USER_SELF_WRITE_FIELDS)
                return Decision.deny(DENY_NOT_FOUND, "profile updates are self-service")
            return Decision.deny(DENY_NOT_FOUND, f"unknown user operation '{operation}'")

        return Decision.deny(DENY_NOT_FOUND, f"unknown resource kind '{resource_kind}'")

    def enforce(
        self,
        ctx: Optional[RequestContext],
        resource_kind: str,
        operation: str,
        resource: Any = None,
        resource_id: Optional[str] = None,
    ) -> Decision:
        """
        decide() and raise on denial.

        Raises:
            UnauthorizedError:  no subject.
            AdminRequiredError: admin-only operation.
            NotFoundError:      ownership/visibility violation.
        """
        decision = self.decide(ctx, resource_kind, operation, resource)
        if decision.allow:
            return decision

        if decision.deny_as == DENY_UNAUTHORIZED:
            raise UnauthorizedError("Authentication required")

        if resource_id is None:
            resource_id = _owner(resource, "id")
        log(log_security_event(
            event="access_denied",
            object_type=f"{resource_kind}s",
            operation=operation,
            subject_id=ctx.subject_id,
            role=ctx.role,
            request_id=ctx.request_id,
            record_id=resource_id,
            reason=decision.reason,
        ))
        logger.debug(
            "Denied %s %s for %s (%s)", operation, resource_kind, ctx.subject_id, decision.reason,
        )

        if decision.deny_as == DENY_ADMIN_REQUIRED:
            raise AdminRequiredError(
                resource=resource_kind, resource_id=resource_id,
                subject_id=ctx.subject_id, role=ctx.role, request_id=ctx.request_id,
            )
        raise NotFoundError(
            f"{resource_kind.capitalize()} not found",
            resource=resource_kind, resource_id=resource_id, request_id=ctx.request_id,
        )

    def visibility(self, ctx: RequestContext, resource_kind: str = RESOURCE_TASK) -> Dict[str, str]:
        """
        Equality constraints a record must satisfy to appear in the subject's
        listings. An empty dict means no constraint.
        """
        if resource_kind == RESOURCE_TASK:
            return self._profile.visibility(ctx)
        return {}

    def is_visible(self, ctx: RequestContext, resource: Any, resource_kind: str = RESOURCE_TASK) -> bool:
        return all(
            _owner(resource, attr) == value
            for attr, value in self.visibility(ctx, resource_kind).items()
        )

    @staticmethod
    def mask(
        payload: Mapping[str, Any],
        decision: Decision,
    ) -> Tuple[Dict[str, Any], Tuple[str, ...]]:
        """
        Split a payload into (allowed, dropped) by the decision's writable set.
        Dropped keys are ignored, never merged.
        """
        if not isinstance(payload, Mapping):
            raise ValidationFailedError.single("", "Request body must be an object")
        allowed = {k: v for k, v in payload.items() if k in decision.writable_fields}
        dropped = tuple(sorted(k for k in payload if k not in decision.writable_fields))
        return allowed, dropped


def decide(
    ctx: Optional[RequestContext],
    resource_kind: str,
    operation: str,
    resource: Any = None,
    profile: str = PROFILE_PROJECT,
) -> Decision:
    """Module-level shortcut for AccessPolicy(profile).decide(...)."""
    return AccessPolicy(profile).decide(ctx, resource_kind, operation, resource)
