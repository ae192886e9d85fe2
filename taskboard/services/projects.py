"""
Taskboard Project Store — admin-managed projects with derived progress.

Progress is never read from the projects table. On every read it is
recomputed from the project's non-deleted tasks:

    T = live tasks in the project, D = those with status "done"
    progress = 0 if T == 0 else round-half-up(100 * D / T)
    status   = "completed" iff progress == 100 else "in-progress"

The stored progress/status columns hold the creation seed only.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterable, List, Mapping, Optional, Tuple

from sqlalchemy import case, func, select
from sqlalchemy.orm import Session

from taskboard.db.base import ensure_utc, utcnow
from taskboard.db.models import PROJECT_STATUSES, Project, Task, User
from taskboard.engine.context import RequestContext
from taskboard.engine.errors import AlreadyDeletedError, NotFoundError, ValidationFailedError
from taskboard.engine.logging import log, log_record_operation
from taskboard.policy.access import (
    OP_CREATE,
    OP_DELETE,
    OP_LIST,
    OP_READ,
    OP_UPDATE,
    PROJECT_READ_FIELDS,
    RESOURCE_PROJECT,
    AccessPolicy,
    readable,
)
from taskboard.services.users import user_summary
from taskboard.services.validation import ProjectCreate, ProjectUpdate, parse

logger = logging.getLogger("taskboard.services.projects")

STATUS_IN_PROGRESS, STATUS_COMPLETED = PROJECT_STATUSES


def compute_progress(total: int, done: int) -> int:
    """round(100 * done / total), halves rounded up; 0 for an empty project."""
    if total <= 0:
        return 0
    return (200 * done + total) // (2 * total)


def status_for(progress: int) -> str:
    return STATUS_COMPLETED if progress == 100 else STATUS_IN_PROGRESS


@dataclass
class ProjectSnapshot:
    """A project together with its task counts at read time."""

    project: Project
    total: int = 0
    done: int = 0

    @property
    def progress(self) -> int:
        return compute_progress(self.total, self.done)

    @property
    def status(self) -> str:
        return status_for(self.progress)


def project_view(snapshot: ProjectSnapshot, fields: FrozenSet[str] = PROJECT_READ_FIELDS) -> Dict[str, Any]:
    project = snapshot.project
    members = sorted(project.members, key=lambda u: (u.name, u.id))
    return readable({
        "id": project.id,
        "title": project.title,
        "description": project.description,
        "team": [user_summary(u) for u in members],
        "created_by": project.created_by,
        "creator": user_summary(project.creator),
        "progress": snapshot.progress,
        "status": snapshot.status,
        "task_count": snapshot.total,
        "done_count": snapshot.done,
        "created_at": ensure_utc(project.created_at).isoformat() if project.created_at else None,
        "updated_at": ensure_utc(project.updated_at).isoformat() if project.updated_at else None,
    }, fields)


class ProjectStore:
    """
    Usage:
        store = ProjectStore(session, policy)
        snap = store.create(admin_ctx, {"title": "Launch", "team": [uid]})
        snap.progress, snap.status
    """

    def __init__(self, session: Session, policy: Optional[AccessPolicy] = None):
        self._session = session
        self._policy = policy or AccessPolicy()

    # -- reads ---------------------------------------------------------------

    def list(self, ctx: Optional[RequestContext]) -> List[ProjectSnapshot]:
        """All live projects, newest first, each with fresh progress."""
        self._policy.enforce(ctx, RESOURCE_PROJECT, OP_LIST)
        projects = list(self._session.scalars(
            select(Project)
            .where(Project.deleted_at.is_(None))
            .order_by(Project.created_at.desc(), Project.id)
        ))
        counts = self._task_counts(p.id for p in projects)
        return [ProjectSnapshot(p, *counts.get(p.id, (0, 0))) for p in projects]

    def get(self, ctx: Optional[RequestContext], project_id: str) -> ProjectSnapshot:
        self._policy.enforce(ctx, RESOURCE_PROJECT, OP_READ)
        return self._snapshot(self._load(project_id, ctx))

    # -- writes --------------------------------------------------------------

    def create(self, ctx: Optional[RequestContext], payload: Mapping[str, Any]) -> ProjectSnapshot:
        """
        Admin-only. progress/status in the payload are ignored; the record
        is seeded at 0 / in-progress.
        """
        decision = self._policy.enforce(ctx, RESOURCE_PROJECT, OP_CREATE)
        allowed, _ = self._policy.mask(payload or {}, decision)
        data = parse(ProjectCreate, allowed)
        members = self._resolve_team(allowed.get("team") or [])

        project = Project(
            title=data.title,
            description=data.description,
            created_by=ctx.subject_id,
            progress=0,
            status=STATUS_IN_PROGRESS,
        )
        project.members = members
        self._session.add(project)
        self._session.flush()

        log(log_record_operation(
            "projects", "create", project.id, subject_id=ctx.subject_id, request_id=ctx.request_id,
        ))
        logger.info("Project %s created by %s", project.id, ctx.subject_id)
        return ProjectSnapshot(project)

    def update(
        self,
        ctx: Optional[RequestContext],
        project_id: str,
        payload: Mapping[str, Any],
    ) -> ProjectSnapshot:
        """
        Admin-only partial update of title, description and team. Replacing
        the team does not touch existing task assignments.
        """
        decision = self._policy.enforce(ctx, RESOURCE_PROJECT, OP_UPDATE, resource_id=project_id)
        project = self._load(project_id, ctx)

        allowed, dropped = self._policy.mask(payload or {}, decision)
        if dropped:
            logger.debug("Ignoring fields %s on project %s", dropped, project_id)
        changes = parse(ProjectUpdate, allowed).model_dump(exclude_unset=True)

        changed: List[str] = []
        if "team" in changes:
            members = self._resolve_team(allowed["team"])
            if sorted(u.id for u in members) != project.team_ids:
                project.members = members
                changed.append("team")
        for field in ("title", "description"):
            if field in changes and getattr(project, field) != changes[field]:
                setattr(project, field, changes[field])
                changed.append(field)

        if changed:
            self._session.flush()
            log(log_record_operation(
                "projects", "update", project.id,
                subject_id=ctx.subject_id, request_id=ctx.request_id, fields_changed=changed,
            ))
        return self._snapshot(project)

    def delete(self, ctx: Optional[RequestContext], project_id: str) -> Project:
        """
        Admin-only soft delete. Tasks are left in place and disappear from
        reads through the live-project filter.

        Raises:
            NotFoundError: no such project.
            AlreadyDeletedError: the project already carries a delete marker,
                which is left unchanged.
        """
        self._policy.enforce(ctx, RESOURCE_PROJECT, OP_DELETE, resource_id=project_id)
        project = self._session.get(Project, project_id) if project_id else None
        if project is None:
            raise NotFoundError(
                "Project not found", resource="project", resource_id=project_id,
                request_id=ctx.request_id,
            )
        if project.is_deleted:
            raise AlreadyDeletedError(
                "Project already deleted",
                resource="project", resource_id=project_id, request_id=ctx.request_id,
                deleted_at=ensure_utc(project.deleted_at).isoformat(),
            )

        project.deleted_at = utcnow()
        project.deleted_by = ctx.subject_id
        self._session.flush()

        log(log_record_operation(
            "projects", "delete", project.id, subject_id=ctx.subject_id, request_id=ctx.request_id,
        ))
        logger.info("Project %s soft-deleted by %s", project.id, ctx.subject_id)
        return project

    # -- internals -----------------------------------------------------------

    def _load(self, project_id: str, ctx: RequestContext) -> Project:
        project = self._session.get(Project, project_id) if project_id else None
        if project is None or project.is_deleted:
            raise NotFoundError(
                "Project not found", resource="project", resource_id=project_id,
                request_id=ctx.request_id,
            )
        return project

    def _snapshot(self, project: Project) -> ProjectSnapshot:
        total, done = self._task_counts([project.id]).get(project.id, (0, 0))
        return ProjectSnapshot(project, total, done)

    def _task_counts(self, project_ids: Iterable[str]) -> Dict[str, Tuple[int, int]]:
        ids = list(project_ids)
        if not ids:
            return {}
        rows = self._session.execute(
            select(
                Task.project_id,
                func.count(Task.id),
                func.sum(case((Task.status == "done", 1), else_=0)),
            )
            .where(Task.deleted_at.is_(None), Task.project_id.in_(ids))
            .group_by(Task.project_id)
        )
        return {pid: (int(total), int(done or 0)) for pid, total, done in rows}

    def _resolve_team(self, team: List[str]) -> List[User]:
        """Map team ids to users, reporting unknown ids at their input index."""
        errors = []
        members: Dict[str, User] = {}
        for i, user_id in enumerate(team):
            user = self._session.get(User, user_id)
            if user is None:
                errors.append({"path": f"team.{i}", "message": "Unknown user"})
            else:
                members.setdefault(user.id, user)
        if errors:
            raise ValidationFailedError(errors[0]["message"], errors=errors)
        return list(members.values())
