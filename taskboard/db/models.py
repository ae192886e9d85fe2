"""
Taskboard Models — SQLAlchemy tables for users, projects and tasks.

Tables:
1. users            — Accounts with role admin|member
2. projects         — Project records (soft delete, derived progress seed)
3. project_members  — Project ↔ User team junction
4. tasks            — Task records (soft delete)
5. task_tags        — Ordered tag list per task (duplicates allowed)
"""

from __future__ import annotations

from typing import List, Tuple

from sqlalchemy import (
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from taskboard.db.base import AuditMixin, Base, SoftDeleteMixin, new_id

TASK_STATUSES = ("todo", "in-progress", "done", "blocked")
TASK_PRIORITIES = ("low", "medium", "high", "urgent")
PROJECT_STATUSES = ("in-progress", "completed")


def _one_of(column: str, values: Tuple[str, ...], name: str) -> CheckConstraint:
    allowed = ", ".join(f"'{v}'" for v in values)
    return CheckConstraint(f"{column} IN ({allowed})", name=name)


# ---------------------------------------------------------------------------
# 1. Users
# ---------------------------------------------------------------------------

class User(Base, AuditMixin):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    role = Column(String(20), default="member", nullable=False, index=True)
    avatar = Column(String(500), nullable=True)

    __table_args__ = (
        CheckConstraint("role IN ('admin', 'member')", name="ck_users_role"),
    )

    def __repr__(self) -> str:
        return f"<User(id='{self.id}', email='{self.email}', role='{self.role}')>"


# ---------------------------------------------------------------------------
# 2. Projects + 3. team junction
# ---------------------------------------------------------------------------

class ProjectMember(Base):
    __tablename__ = "project_members"

    id = Column(Integer, primary_key=True, autoincrement=True)
    project_id = Column(String(32), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        Index("idx_pm_user_id", "user_id"),
    )


class Project(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "projects"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    created_by = Column(String(32), ForeignKey("users.id"), nullable=False)
    # Creation-time seed only; readers always recompute from the task population
    progress = Column(Integer, default=0, nullable=False)
    status = Column(String(20), default="in-progress", nullable=False)

    members = relationship("User", secondary="project_members", lazy="selectin")
    creator = relationship("User", foreign_keys=[created_by], lazy="joined")

    __table_args__ = (
        CheckConstraint("progress >= 0 AND progress <= 100", name="ck_projects_progress"),
        _one_of("status", PROJECT_STATUSES, "ck_projects_status"),
    )

    @property
    def team_ids(self) -> List[str]:
        return sorted(u.id for u in self.members)

    def __repr__(self) -> str:
        return f"<Project(id='{self.id}', title='{self.title}')>"


# ---------------------------------------------------------------------------
# 4. Tasks + 5. tags
# ---------------------------------------------------------------------------

class TaskTag(Base):
    __tablename__ = "task_tags"

    id = Column(Integer, primary_key=True, autoincrement=True)
    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False)
    value = Column(String(100), nullable=False, index=True)


class Task(Base, AuditMixin, SoftDeleteMixin):
    __tablename__ = "tasks"

    id = Column(String(32), primary_key=True, default=new_id)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    status = Column(String(20), default="todo", nullable=False, index=True)
    priority = Column(String(20), default="low", nullable=False, index=True)
    due_date = Column(DateTime(timezone=True), nullable=True, index=True)
    created_by = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    assigned_to = Column(String(32), ForeignKey("users.id"), nullable=False, index=True)
    project_id = Column(String(32), ForeignKey("projects.id"), nullable=True, index=True)

    tag_rows = relationship(
        "TaskTag",
        order_by="TaskTag.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    assignee = relationship("User", foreign_keys=[assigned_to], lazy="joined")
    creator = relationship("User", foreign_keys=[created_by], lazy="joined")
    project = relationship("Project", foreign_keys=[project_id], lazy="joined")

    __table_args__ = (
        _one_of("status", TASK_STATUSES, "ck_tasks_status"),
        _one_of("priority", TASK_PRIORITIES, "ck_tasks_priority"),
    )

    @property
    def tags(self) -> List[str]:
        return [t.value for t in self.tag_rows]

    @tags.setter
    def tags(self, values: List[str]) -> None:
        self.tag_rows = [TaskTag(position=i, value=v) for i, v in enumerate(values)]

    def __repr__(self) -> str:
        return f"<Task(id='{self.id}', title='{self.title}', status='{self.status}')>"
