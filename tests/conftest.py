"""
Taskboard Test Suite — Shared fixtures and configuration.

Run:  pytest tests/ -v
"""

from __future__ import annotations

from typing import Any, Dict

import pytest
from sqlalchemy.orm import sessionmaker


# ---------------------------------------------------------------------------
# Environment setup: in-memory SQLite, fast bcrypt, no log files
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch):
    """Reset global singletons between tests."""
    import taskboard.engine.config as cfg_mod
    import taskboard.engine.logging as log_mod

    monkeypatch.delenv("TASKBOARD_SECRET_KEY", raising=False)
    monkeypatch.delenv("TASKBOARD_DATABASE_URL", raising=False)
    cfg_mod._config = None
    log_mod._global_queue = None
    yield
    cfg_mod._config = None
    log_mod._global_queue = None


@pytest.fixture
def config():
    """Config with fast bcrypt and an in-memory database."""
    from taskboard.engine.config import DatabaseConfig, SecurityConfig, TaskboardConfig

    return TaskboardConfig(
        database=DatabaseConfig(url="sqlite://"),
        security=SecurityConfig(secret_key="test-secret", bcrypt_rounds=4),
    )


@pytest.fixture
def session_factory():
    """Fresh in-memory database with all tables created."""
    from taskboard.db import models  # noqa: F401
    from taskboard.db.base import Base
    from taskboard.db.session import build_engine

    engine = build_engine("sqlite://")
    Base.metadata.create_all(engine)
    yield sessionmaker(bind=engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def session(session_factory):
    s = session_factory()
    yield s
    s.rollback()
    s.close()


def make_user(session, name: str, email: str, role: str = "member", password: str = "password1"):
    from taskboard.db.models import User
    from taskboard.engine.security import hash_password

    user = User(name=name, email=email, role=role, password_hash=hash_password(password, rounds=4))
    session.add(user)
    session.flush()
    return user


def ctx_for(user):
    from taskboard.engine.context import RequestContext

    return RequestContext(subject_id=user.id, role=user.role, email=user.email, name=user.name)


# ---------------------------------------------------------------------------
# Users and contexts
# ---------------------------------------------------------------------------

@pytest.fixture
def admin_user(session):
    return make_user(session, "Admin", "admin@example.com", role="admin")


@pytest.fixture
def member_user(session):
    return make_user(session, "Mia Member", "mia@example.com")


@pytest.fixture
def other_user(session):
    return make_user(session, "Otto Other", "otto@example.com")


@pytest.fixture
def admin_ctx(admin_user):
    return ctx_for(admin_user)


@pytest.fixture
def member_ctx(member_user):
    return ctx_for(member_user)


@pytest.fixture
def other_ctx(other_user):
    return ctx_for(other_user)


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------

@pytest.fixture
def policy():
    from taskboard.policy.access import AccessPolicy

    return AccessPolicy("project")


@pytest.fixture
def creator_policy():
    from taskboard.policy.access import AccessPolicy

    return AccessPolicy("creator")


@pytest.fixture
def users(session, policy):
    from taskboard.services.users import UserDirectory

    return UserDirectory(session, policy, bcrypt_rounds=4)


@pytest.fixture
def tasks(session, policy):
    from taskboard.services.tasks import TaskStore

    return TaskStore(session, policy)


@pytest.fixture
def projects(session, policy):
    from taskboard.services.projects import ProjectStore

    return ProjectStore(session, policy)


@pytest.fixture
def project(projects, admin_ctx, member_user, other_user):
    """A live project with both members on the team."""
    return projects.create(admin_ctx, {
        "title": "Website relaunch",
        "description": "Q3 launch",
        "team": [member_user.id, other_user.id],
    }).project


@pytest.fixture
def task_payload(project) -> Dict[str, Any]:
    return {"title": "Write copy", "project_id": project.id}


@pytest.fixture
def user_factory(session):
    """Callable creating extra users: user_factory(name, email, role="member")."""
    def _make(name: str, email: str, role: str = "member"):
        return make_user(session, name, email, role=role)
    return _make


@pytest.fixture
def ctx_factory():
    return ctx_for
