"""
Taskboard Security — Password hashing, bearer credentials and authentication.

Implements:
- hash_password / verify_password: bcrypt with configurable work factor
- TokenService: the credential verifier. Issues and verifies opaque bearer
  tokens (Fernet, AES-128-CBC + HMAC-SHA256) carrying the subject id, with
  a time-to-live enforced at decrypt time
- AuthService: login by email/password and per-request subject resolution
  into a RequestContext

The request boundary resolves the subject once and passes the resulting
context explicitly to the stores.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import time
from typing import Any, Dict, Optional

import bcrypt
from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from taskboard.db.models import User
from taskboard.engine.context import RequestContext
from taskboard.engine.errors import UnauthorizedError
from taskboard.engine.logging import log, log_security_event

logger = logging.getLogger("taskboard.engine.security")

_LOGIN_FAILED = "Invalid email or password"

# Compared against when the email is unknown, keyed by bcrypt rounds
_DUMMY_HASHES: Dict[int, str] = {}


# ---------------------------------------------------------------------------
# Password Utilities
# ---------------------------------------------------------------------------

def hash_password(password: str, rounds: int = 12) -> str:
    """Hash a password using bcrypt."""
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=rounds)).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its bcrypt hash."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # Malformed stored hash
        return False


def _dummy_hash(rounds: int) -> str:
    if rounds not in _DUMMY_HASHES:
        _DUMMY_HASHES[rounds] = hash_password("taskboard-unknown-user", rounds=rounds)
    return _DUMMY_HASHES[rounds]


# ---------------------------------------------------------------------------
# Credential Verifier
# ---------------------------------------------------------------------------

class TokenService:
    """
    Issues and verifies bearer credentials.

    A token is a Fernet blob over {"sub": <user id>, "iat": <unix seconds>}.
    Fernet embeds its own timestamp, so expiry is checked by passing the
    TTL to decrypt().

    Usage:
        tokens = TokenService(secret_key="...", ttl_seconds=604800)
        token = tokens.issue(user.id)
        user_id = tokens.verify(token)   # raises UnauthorizedError
    """

    def __init__(self, secret_key: str, ttl_seconds: int = 7 * 24 * 3600):
        self._fernet = self._build_fernet(secret_key)
        self._ttl = ttl_seconds

    @staticmethod
    def _build_fernet(secret_key: str) -> Fernet:
        # Derive a 32-byte key using SHA-256, then url-safe base64 for Fernet
        derived = hashlib.sha256(secret_key.encode("utf-8")).digest()
        return Fernet(base64.urlsafe_b64encode(derived))

    @property
    def ttl_seconds(self) -> int:
        return self._ttl

    def issue(self, user_id: str) -> str:
        payload = json.dumps({"sub": user_id, "iat": int(time.time())})
        return self._fernet.encrypt(payload.encode("utf-8")).decode("utf-8")

    def verify(self, token: Optional[str]) -> str:
        """
        Return the subject id carried by `token`.

        Raises:
            UnauthorizedError: token missing, tampered, signed with another
                key, expired, or without a subject.
        """
        if not token:
            raise UnauthorizedError("Authentication required")
        try:
            raw = self._fernet.decrypt(token.encode("utf-8"), ttl=self._ttl)
            payload = json.loads(raw.decode("utf-8"))
        except (InvalidToken, ValueError) as e:
            raise UnauthorizedError("Invalid or expired credential") from e

        subject_id = payload.get("sub") if isinstance(payload, dict) else None
        if not subject_id:
            raise UnauthorizedError("Invalid or expired credential")
        return subject_id


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

class AuthService:
    """
    Email/password login and credential → RequestContext resolution.

    Flow:
    1. login(email, password) → bearer token (+ profile)
    2. Each request → resolve_context(token) → verify token → load the
       subject's current role from the users table → RequestContext
    """

    def __init__(self, session: Session, tokens: TokenService, bcrypt_rounds: int = 12):
        self._session = session
        self._tokens = tokens
        self._bcrypt_rounds = bcrypt_rounds

    def login(
        self,
        email: str,
        password: str,
    ) -> Dict[str, Any]:
        """
        Authenticate by email and password.

        Returns:
            Dict with token, expires_in and the user id.

        Raises:
            UnauthorizedError with the same message whether the email is
            unknown or the password is wrong.
        """
        normalized = (email or "").strip().lower()
        user = self._session.scalars(
            select(User).where(func.lower(User.email) == normalized)
        ).first()

        if user is None:
            # Same bcrypt cost as a wrong password
            verify_password(password or "", _dummy_hash(self._bcrypt_rounds))
        if user is None or not verify_password(password or "", user.password_hash):
            reason = "unknown_email" if user is None else "invalid_password"
            log(log_security_event(
                event="login_failed",
                object_type="users",
                operation="login",
                subject_id=user.id if user is not None else None,
                reason=reason,
            ))
            logger.info("Login failed (%s)", reason)
            raise UnauthorizedError(_LOGIN_FAILED)

        log(log_security_event(
            event="login_succeeded",
            object_type="users",
            operation="login",
            subject_id=user.id,
            role=user.role,
            level="INFO",
        ))
        logger.info("User %s authenticated", user.id)

        return {
            "token": self._tokens.issue(user.id),
            "expires_in": self._tokens.ttl_seconds,
            "user_id": user.id,
        }

    def resolve_context(
        self,
        token: Optional[str],
        request_id: Optional[str] = None,
        client_ip: Optional[str] = None,
    ) -> RequestContext:
        """
        Resolve a bearer credential into the request's subject context.

        Raises:
            UnauthorizedError: invalid credential, or the subject no longer exists.
        """
        subject_id = self._tokens.verify(token)
        user = self._session.get(User, subject_id)
        if user is None:
            raise UnauthorizedError("Invalid or expired credential", subject_id=subject_id)

        kwargs: Dict[str, Any] = {}
        if request_id:
            kwargs["request_id"] = request_id
        return RequestContext(
            subject_id=user.id,
            role=user.role,
            email=user.email,
            name=user.name,
            client_ip=client_ip,
            **kwargs,
        )
