"""
Taskboard Database Base — SQLAlchemy declarative base, mixins and helpers.

Provides:
- Base: SQLAlchemy declarative base for all models
- AuditMixin: created_at, updated_at
- SoftDeleteMixin: deleted_at, deleted_by (nullable marker)
- new_id(): opaque primary keys
- ensure_utc(): normalise datetimes read back from stores without tz support
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, DateTime, String
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all Taskboard models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_id() -> str:
    """Opaque identifier for users, projects and tasks."""
    return uuid.uuid4().hex


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """
    Return `value` as an aware UTC datetime.

    Naive values are taken to already be UTC (SQLite drops the offset on
    the way back out).
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class AuditMixin:
    """Adds created_at and updated_at columns."""
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False, index=True)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)


class SoftDeleteMixin:
    """Adds the soft-delete marker. A record is live iff deleted_at is NULL."""
    deleted_at = Column(DateTime(timezone=True), nullable=True, index=True)
    deleted_by = Column(String(32), nullable=True)

    @property
    def is_deleted(self) -> bool:
        return self.deleted_at is not None
