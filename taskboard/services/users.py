"""
Taskboard User Directory — user records, registration and profile updates.

Emails are stored lower-cased and are unique. Password hashes never leave
this module: views are built by user_view()/user_summary().
"""

from __future__ import annotations

import logging
from typing import Any, Dict, FrozenSet, List, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from taskboard.db.base import ensure_utc
from taskboard.db.models import User
from taskboard.engine.context import ROLE_MEMBER, RequestContext
from taskboard.engine.errors import ConflictError, NotFoundError
from taskboard.engine.logging import log, log_record_operation
from taskboard.engine.security import hash_password
from taskboard.policy.access import (
    OP_CREATE,
    OP_LIST,
    OP_UPDATE,
    RESOURCE_USER,
    USER_READ_FIELDS,
    AccessPolicy,
    readable,
)
from taskboard.services.validation import (
    DEFAULT_PASSWORD_MIN_LENGTH,
    ProfileUpdate,
    UserCreate,
    UserRegister,
    parse,
)

logger = logging.getLogger("taskboard.services.users")


def user_summary(user: Optional[User]) -> Optional[Dict[str, Any]]:
    """Populated reference used inside task and project views."""
    if user is None:
        return None
    return {"id": user.id, "name": user.name, "email": user.email, "avatar": user.avatar}


def user_view(user: User, fields: FrozenSet[str] = USER_READ_FIELDS) -> Dict[str, Any]:
    return readable({
        "id": user.id,
        "name": user.name,
        "email": user.email,
        "role": user.role,
        "avatar": user.avatar,
        "created_at": ensure_utc(user.created_at).isoformat() if user.created_at else None,
    }, fields)


class UserDirectory:
    """
    Usage:
        users = UserDirectory(session, policy)
        user = users.register({"name": "Ada", "email": "ada@example.com", "password": "secret1"})
    """

    def __init__(
        self,
        session: Session,
        policy: Optional[AccessPolicy] = None,
        password_min_length: int = DEFAULT_PASSWORD_MIN_LENGTH,
        bcrypt_rounds: int = 12,
    ):
        self._session = session
        self._policy = policy or AccessPolicy()
        self._password_min_length = password_min_length
        self._bcrypt_rounds = bcrypt_rounds

    @property
    def _validation_context(self) -> Dict[str, Any]:
        return {"password_min_length": self._password_min_length}

    # -- lookups -------------------------------------------------------------

    def get(self, user_id: str) -> User:
        user = self._session.get(User, user_id) if user_id else None
        if user is None:
            raise NotFoundError("User not found", resource="user", resource_id=user_id)
        return user

    def find_by_email(self, email: str) -> Optional[User]:
        return self._session.scalars(
            select(User).where(func.lower(User.email) == (email or "").strip().lower())
        ).first()

    def list_users(self, ctx: RequestContext) -> List[User]:
        """All users, for the team and assignee pickers."""
        self._policy.enforce(ctx, RESOURCE_USER, OP_LIST)
        return list(self._session.scalars(select(User).order_by(User.name, User.id)))

    # -- mutations -----------------------------------------------------------

    def register(self, payload: Dict[str, Any]) -> User:
        """
        Self-service sign-up. New accounts always get the member role.

        Raises:
            ValidationFailedError: bad name/email/password.
            ConflictError: the email is already registered.
        """
        data = parse(UserRegister, payload, context=self._validation_context)
        return self._create(data.name, data.email, data.password, ROLE_MEMBER, data.avatar)

    def create_user(self, ctx: Optional[RequestContext], payload: Dict[str, Any]) -> User:
        """Administrative creation with an explicit role."""
        self._policy.enforce(ctx, RESOURCE_USER, OP_CREATE)
        data = parse(UserCreate, payload, context=self._validation_context)
        return self._create(
            data.name, data.email, data.password, data.role, data.avatar,
            actor_id=ctx.subject_id, request_id=ctx.request_id,
        )

    def bootstrap_admin(self, name: str, email: str, password: str) -> User:
        """Seed an admin account (``taskboard init``). No subject required."""
        data = parse(
            UserCreate,
            {"name": name, "email": email, "password": password, "role": "admin"},
            context=self._validation_context,
        )
        return self._create(data.name, data.email, data.password, data.role)

    def update_profile(self, ctx: RequestContext, payload: Dict[str, Any]) -> User:
        """
        Self-service profile update: name, email, new password, avatar.
        Other keys in the payload are ignored.
        """
        user = self.get(ctx.subject_id)
        decision = self._policy.enforce(ctx, RESOURCE_USER, OP_UPDATE, user)
        allowed, _ = self._policy.mask(payload or {}, decision)
        changes = parse(ProfileUpdate, allowed, context=self._validation_context).model_dump(
            exclude_unset=True
        )

        if "email" in changes and changes["email"] != user.email:
            other = self.find_by_email(changes["email"])
            if other is not None and other.id != user.id:
                raise ConflictError("Email already in use", resource="user", resource_id=user.id)

        changed: List[str] = []
        for field in ("name", "email", "avatar"):
            if field in changes and getattr(user, field) != changes[field]:
                setattr(user, field, changes[field])
                changed.append(field)
        if changes.get("password"):
            user.password_hash = hash_password(changes["password"], rounds=self._bcrypt_rounds)
            changed.append("password")

        self._flush_unique("Email already in use", user.id)
        if changed:
            log(log_record_operation(
                "users", "update", user.id,
                subject_id=ctx.subject_id, request_id=ctx.request_id, fields_changed=changed,
            ))
        return user

    def _create(
        self,
        name: str,
        email: str,
        password: str,
        role: str,
        avatar: Optional[str] = None,
        actor_id: Optional[str] = None,
        request_id: Optional[str] = None,
    ) -> User:
        if self.find_by_email(email) is not None:
            raise ConflictError("User already exists", resource="user")

        user = User(
            name=name,
            email=email,
            password_hash=hash_password(password, rounds=self._bcrypt_rounds),
            role=role,
            avatar=avatar,
        )
        self._session.add(user)
        self._flush_unique("User already exists")

        log(log_record_operation(
            "users", "create", user.id,
            subject_id=actor_id or user.id, request_id=request_id,
        ))
        logger.info("User %s created with role %s", user.id, role)
        return user

    def _flush_unique(self, message: str, user_id: Optional[str] = None) -> None:
        """
        Flush, reporting a lost race on the unique email index as a conflict.
        The transaction must be rolled back by the caller afterwards.
        """
        try:
            self._session.flush()
        except IntegrityError as e:
            raise ConflictError(message, resource="user", resource_id=user_id) from e
