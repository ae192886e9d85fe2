"""
Taskboard Task Store — policy-gated task CRUD with soft delete.

Every operation takes the request's RequestContext explicitly. Reads apply
the policy's visibility constraints in SQL; writes load the record, ask the
policy for a decision, drop any payload field outside the decision's
writable set, validate what remains and only then mutate.

Tasks that are soft-deleted, or whose project is soft-deleted, are treated
as absent everywhere.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, List, Mapping, Optional

from sqlalchemy import Select, func, or_, select
from sqlalchemy.orm import Session

from taskboard.db.base import ensure_utc, utcnow
from taskboard.db.models import Project, Task, TaskTag, User
from taskboard.engine.context import RequestContext
from taskboard.engine.errors import NotFoundError, ValidationFailedError
from taskboard.engine.logging import log, log_record_operation
from taskboard.policy.access import (
    OP_CREATE,
    OP_DELETE,
    OP_LIST,
    OP_READ,
    OP_UPDATE,
    OP_UPDATE_STATUS,
    RESOURCE_TASK,
    TASK_READ_FIELDS,
    AccessPolicy,
    readable,
)
from taskboard.services.users import user_summary
from taskboard.services.validation import (
    TaskCreate,
    TaskFilters,
    TaskStatusUpdate,
    TaskUpdate,
    parse,
)

logger = logging.getLogger("taskboard.services.tasks")


def live_project_ids() -> Select:
    return select(Project.id).where(Project.deleted_at.is_(None))


def live_tasks() -> Select:
    """Non-deleted tasks that are not attached to a deleted project."""
    return select(Task).where(
        Task.deleted_at.is_(None),
        or_(Task.project_id.is_(None), Task.project_id.in_(live_project_ids())),
    )


def apply_constraints(stmt: Select, constraints: Mapping[str, Any]) -> Select:
    """AND one equality predicate per visibility constraint."""
    for attr, value in constraints.items():
        stmt = stmt.where(getattr(Task, attr) == value)
    return stmt


def apply_filters(stmt: Select, filters: TaskFilters) -> Select:
    if filters.status is not None:
        stmt = stmt.where(Task.status == filters.status)
    if filters.priority is not None:
        stmt = stmt.where(Task.priority == filters.priority)
    if filters.search is not None:
        stmt = stmt.where(func.lower(Task.title).contains(filters.search.lower(), autoescape=True))
    if filters.tag is not None:
        stmt = stmt.where(Task.tag_rows.any(TaskTag.value == filters.tag))
    if filters.assigned_to is not None:
        stmt = stmt.where(Task.assigned_to == filters.assigned_to)
    if filters.project_id is not None:
        stmt = stmt.where(Task.project_id == filters.project_id)
    return stmt


def task_view(task: Task, fields: FrozenSet[str] = TASK_READ_FIELDS) -> Dict[str, Any]:
    due = ensure_utc(task.due_date)
    project = task.project
    return readable({
        "id": task.id,
        "title": task.title,
        "description": task.description,
        "status": task.status,
        "priority": task.priority,
        "tags": task.tags,
        "due_date": due.isoformat() if due else None,
        "created_by": task.created_by,
        "assigned_to": task.assigned_to,
        "project_id": task.project_id,
        "assignee": user_summary(task.assignee),
        "project": {"id": project.id, "title": project.title} if project is not None else None,
        "created_at": ensure_utc(task.created_at).isoformat() if task.created_at else None,
        "updated_at": ensure_utc(task.updated_at).isoformat() if task.updated_at else None,
    }, fields)


class TaskStore:
    """
    Usage:
        store = TaskStore(session, AccessPolicy("project"))
        task = store.create(ctx, {"title": "Write docs", "project_id": pid})
        store.update_status(ctx, task.id, {"status": "done"})
    """

    def __init__(self, session: Session, policy: Optional[AccessPolicy] = None):
        self._session = session
        self._policy = policy or AccessPolicy()

    # -- reads ---------------------------------------------------------------

    def list(self, ctx: Optional[RequestContext], filters: Optional[Mapping[str, Any]] = None) -> List[Task]:
        """
        Tasks visible to the subject, narrowed by the ANDed filters
        (status, priority, search, tag, assigned_to, project_id).
        Newest first.
        """
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        parsed = parse(TaskFilters, filters or {})

        stmt = apply_constraints(live_tasks(), self._policy.visibility(ctx, RESOURCE_TASK))
        stmt = apply_filters(stmt, parsed).order_by(Task.created_at.desc(), Task.id)
        return list(self._session.scalars(stmt))

    def list_for_project(
        self,
        ctx: Optional[RequestContext],
        project_id: str,
        filters: Optional[Mapping[str, Any]] = None,
    ) -> List[Task]:
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        self._live_project(project_id, ctx)
        return self.list(ctx, {**(filters or {}), "project_id": project_id})

    def get(self, ctx: Optional[RequestContext], task_id: str) -> Task:
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        task = self._load(task_id, ctx)
        self._policy.enforce(ctx, RESOURCE_TASK, OP_READ, task, resource_id=task_id)
        return task

    # -- writes --------------------------------------------------------------

    def create(self, ctx: Optional[RequestContext], payload: Mapping[str, Any]) -> Task:
        """
        Create a task. The creator is the assignee unless an admin names
        another existing user.

        Raises:
            ValidationFailedError: bad fields, or a missing project where the
                profile requires one.
            NotFoundError: the project or the named assignee does not exist.
        """
        decision = self._policy.enforce(ctx, RESOURCE_TASK, OP_CREATE)
        allowed, dropped = self._policy.mask(payload or {}, decision)
        if dropped:
            logger.debug("Ignoring fields %s on task create by %s", dropped, ctx.subject_id)
        data = parse(TaskCreate, allowed)

        if data.project_id is None and self._policy.profile.requires_project:
            raise ValidationFailedError.single("project_id", "Project is required")
        if data.project_id is not None:
            self._live_project(data.project_id, ctx)

        assignee = ctx.subject_id
        if data.assigned_to:
            if self._session.get(User, data.assigned_to) is None:
                raise NotFoundError(
                    "Assignee not found", resource="user", resource_id=data.assigned_to,
                    request_id=ctx.request_id,
                )
            assignee = data.assigned_to

        task = Task(
            title=data.title,
            description=data.description,
            status=data.status,
            priority=data.priority,
            due_date=data.due_date,
            created_by=ctx.subject_id,
            assigned_to=assignee,
            project_id=data.project_id,
        )
        task.tags = data.tags
        self._session.add(task)
        self._session.flush()

        log(log_record_operation(
            "tasks", "create", task.id, subject_id=ctx.subject_id, request_id=ctx.request_id,
        ))
        return task

    def update(self, ctx: Optional[RequestContext], task_id: str, payload: Mapping[str, Any]) -> Task:
        """
        Partial update. Fields the subject may not write are dropped from
        the payload before validation; the rest are applied.
        """
        return self._update(ctx, task_id, payload, OP_UPDATE, TaskUpdate)

    def update_status(self, ctx: Optional[RequestContext], task_id: str, payload: Mapping[str, Any]) -> Task:
        """Status-only update. Any status is reachable from any other."""
        return self._update(ctx, task_id, payload, OP_UPDATE_STATUS, TaskStatusUpdate)

    def delete(self, ctx: Optional[RequestContext], task_id: str) -> Task:
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        task = self._load(task_id, ctx)
        self._policy.enforce(ctx, RESOURCE_TASK, OP_DELETE, task, resource_id=task_id)

        task.deleted_at = utcnow()
        task.deleted_by = ctx.subject_id
        self._session.flush()

        log(log_record_operation(
            "tasks", "delete", task.id, subject_id=ctx.subject_id, request_id=ctx.request_id,
        ))
        return task

    # -- internals -----------------------------------------------------------

    def _update(self, ctx, task_id, payload, operation, schema) -> Task:
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        task = self._load(task_id, ctx)
        decision = self._policy.enforce(ctx, RESOURCE_TASK, operation, task, resource_id=task_id)

        allowed, dropped = self._policy.mask(payload or {}, decision)
        if dropped:
            logger.debug("Ignoring fields %s on task %s for %s", dropped, task_id, ctx.subject_id)
        changes = parse(schema, allowed).model_dump(exclude_unset=True)

        if "assigned_to" in changes and self._session.get(User, changes["assigned_to"]) is None:
            raise NotFoundError(
                "Assignee not found", resource="user", resource_id=changes["assigned_to"],
                request_id=ctx.request_id,
            )

        changed: List[str] = []
        for field, value in changes.items():
            if field == "tags":
                if task.tags != value:
                    task.tags = value
                    changed.append(field)
            elif field == "due_date":
                if ensure_utc(task.due_date) != value:
                    task.due_date = value
                    changed.append(field)
            elif getattr(task, field) != value:
                setattr(task, field, value)
                changed.append(field)

        if changed:
            self._session.flush()
            log(log_record_operation(
                "tasks", "update", task.id,
                subject_id=ctx.subject_id, request_id=ctx.request_id, fields_changed=changed,
            ))
            if "status" in changed and task.project_id:
                logger.debug("Project %s progress invalidated by task %s", task.project_id, task.id)
        return task

    def _load(self, task_id: str, ctx: RequestContext) -> Task:
        task = self._session.scalars(live_tasks().where(Task.id == task_id)).first()
        if task is None:
            raise NotFoundError(
                "Task not found", resource="task", resource_id=task_id, request_id=ctx.request_id,
            )
        return task

    def _live_project(self, project_id: str, ctx: RequestContext) -> Project:
        project = self._session.get(Project, project_id)
        if project is None or project.is_deleted:
            raise NotFoundError(
                "Project not found", resource="project", resource_id=project_id,
                request_id=ctx.request_id,
            )
        return project
