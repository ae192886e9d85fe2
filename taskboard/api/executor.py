"""
Taskboard API Executor — transport-independent request boundary.

Pipeline (per-request):
    1. Match method + path against the route table
    2. Open one DB transaction (commit on success, rollback on any error)
    3. Resolve the credential (Authorization: Bearer <token> or the "token"
       cookie) into a RequestContext, once
    4. Call the store operation with that context
    5. Map the result, or the raised TaskboardError, to an APIResponse
    6. Emit an api_request log entry

Any HTTP framework can sit in front of this: build an APIRequest from the
framework's request and copy the APIResponse back out.

Error mapping:
    AdminRequiredError     → 403
    UnauthorizedError      → 401 (+ WWW-Authenticate and the sign-in path)
    NotFoundError          → 404
    ValidationFailedError  → 400 (+ errors[])
    ConflictError          → 409
    anything else          → 500
"""

from __future__ import annotations

import logging
import re
import time
import uuid
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Pattern, Tuple

from pydantic import BaseModel
from sqlalchemy.orm import Session, sessionmaker

from taskboard.db.session import get_session_factory, session_scope
from taskboard.engine.config import TaskboardConfig, get_config
from taskboard.engine.context import RequestContext
from taskboard.engine.errors import (
    AdminRequiredError,
    ConflictError,
    InternalError,
    NotFoundError,
    TaskboardError,
    UnauthorizedError,
    ValidationFailedError,
)
from taskboard.engine.logging import log, log_api_request
from taskboard.engine.security import AuthService, TokenService
from taskboard.policy.access import AccessPolicy
from taskboard.services.notifications import NotificationSelector
from taskboard.services.projects import ProjectStore, project_view
from taskboard.services.tasks import TaskStore, task_view
from taskboard.services.users import UserDirectory, user_view
from taskboard.services.validation import LoginRequest, parse

logger = logging.getLogger("taskboard.api.executor")

TOKEN_COOKIE = "token"


# ---------------------------------------------------------------------------
# Request / Response Models
# ---------------------------------------------------------------------------

class APIRequest(BaseModel):
    """Normalized inbound request. Header names are matched case-insensitively."""

    method: str
    path: str
    query_params: Dict[str, str] = {}
    headers: Dict[str, str] = {}
    cookies: Dict[str, str] = {}
    body: Optional[Any] = None
    client_ip: Optional[str] = None

    def header(self, name: str, default: str = "") -> str:
        wanted = name.lower()
        for key, value in self.headers.items():
            if key.lower() == wanted:
                return value
        return default


class APIResponse(BaseModel):
    """Normalized outbound response."""

    status_code: int = 200
    body: Any = None
    headers: Dict[str, str] = {}


# ---------------------------------------------------------------------------
# Per-request services
# ---------------------------------------------------------------------------

@dataclass
class Services:
    """Stores bound to one request's session."""

    session: Session
    auth: AuthService
    users: UserDirectory
    tasks: TaskStore
    projects: ProjectStore
    notifications: NotificationSelector


def build_services(session: Session, config: TaskboardConfig, tokens: Optional[TokenService] = None) -> Services:
    policy = AccessPolicy(config.policy.profile)
    tokens = tokens or TokenService(config.security.secret_key, config.security.token_ttl_seconds)
    return Services(
        session=session,
        auth=AuthService(session, tokens, bcrypt_rounds=config.security.bcrypt_rounds),
        users=UserDirectory(
            session, policy,
            password_min_length=config.security.password_min_length,
            bcrypt_rounds=config.security.bcrypt_rounds,
        ),
        tasks=TaskStore(session, policy),
        projects=ProjectStore(session, policy),
        notifications=NotificationSelector(
            session, policy,
            horizon_days=config.notifications.horizon_days,
            timezone=config.notifications.timezone,
        ),
    )


# ---------------------------------------------------------------------------
# Routing
# ---------------------------------------------------------------------------

Handler = Callable[[Services, Optional[RequestContext], APIRequest, Dict[str, str]], Tuple[int, Any]]


@dataclass
class Route:
    method: str
    template: str
    operation: str
    handler: Handler
    auth_required: bool = True
    pattern: Optional[Pattern[str]] = None

    def __post_init__(self) -> None:
        regex = re.sub(r"\{(\w+)\}", r"(?P<\1>[^/]+)", self.template)
        self.pattern = re.compile(f"^{regex}$")

    def match(self, method: str, path: str) -> Optional[Dict[str, str]]:
        if method != self.method:
            return None
        m = self.pattern.match(path)
        return m.groupdict() if m else None


# -- auth / users -----------------------------------------------------------

def _register(svc, ctx, req, params):
    return 201, user_view(svc.users.register(req.body))


def _login(svc, ctx, req, params):
    creds = parse(LoginRequest, req.body)
    result = svc.auth.login(creds.email, creds.password)
    user = svc.users.get(result["user_id"])
    return 200, {"token": result["token"], "expires_in": result["expires_in"], "user": user_view(user)}


def _logout(svc, ctx, req, params):
    return 200, {"message": "Logged out"}


def _me(svc, ctx, req, params):
    return 200, user_view(svc.users.get(ctx.subject_id))


def _update_me(svc, ctx, req, params):
    return 200, user_view(svc.users.update_profile(ctx, req.body))


def _list_users(svc, ctx, req, params):
    return 200, [user_view(u) for u in svc.users.list_users(ctx)]


def _create_user(svc, ctx, req, params):
    return 201, user_view(svc.users.create_user(ctx, req.body))


# -- tasks ------------------------------------------------------------------

def _list_tasks(svc, ctx, req, params):
    return 200, [task_view(t) for t in svc.tasks.list(ctx, req.query_params)]


def _create_task(svc, ctx, req, params):
    return 201, task_view(svc.tasks.create(ctx, req.body))


def _get_task(svc, ctx, req, params):
    return 200, task_view(svc.tasks.get(ctx, params["task_id"]))


def _update_task(svc, ctx, req, params):
    return 200, task_view(svc.tasks.update(ctx, params["task_id"], req.body))


def _update_task_status(svc, ctx, req, params):
    return 200, task_view(svc.tasks.update_status(ctx, params["task_id"], req.body))


def _delete_task(svc, ctx, req, params):
    task = svc.tasks.delete(ctx, params["task_id"])
    return 200, {"message": "Task deleted", "id": task.id}


def _list_project_tasks(svc, ctx, req, params):
    tasks = svc.tasks.list_for_project(ctx, params["project_id"], req.query_params)
    return 200, [task_view(t) for t in tasks]


# -- projects ---------------------------------------------------------------

def _list_projects(svc, ctx, req, params):
    return 200, [project_view(s) for s in svc.projects.list(ctx)]


def _create_project(svc, ctx, req, params):
    return 201, project_view(svc.projects.create(ctx, req.body))


def _get_project(svc, ctx, req, params):
    return 200, project_view(svc.projects.get(ctx, params["project_id"]))


def _update_project(svc, ctx, req, params):
    return 200, project_view(svc.projects.update(ctx, params["project_id"], req.body))


def _delete_project(svc, ctx, req, params):
    project = svc.projects.delete(ctx, params["project_id"])
    return 200, {"message": "Project deleted", "id": project.id}


# -- schedule ---------------------------------------------------------------

def _notifications(svc, ctx, req, params):
    return 200, [task_view(t) for t in svc.notifications.due_soon(ctx)]


def _calendar(svc, ctx, req, params):
    days = svc.notifications.calendar(ctx, req.query_params)
    return 200, [{"date": day, "tasks": [task_view(t) for t in tasks]} for day, tasks in days.items()]


ROUTES: List[Route] = [
    Route("POST", "/auth/register", "register", _register, auth_required=False),
    Route("POST", "/auth/login", "login", _login, auth_required=False),
    Route("POST", "/auth/logout", "logout", _logout, auth_required=False),
    Route("GET", "/auth/me", "me", _me),
    Route("PUT", "/users/me", "update_profile", _update_me),
    Route("GET", "/users", "list_users", _list_users),
    Route("POST", "/users", "create_user", _create_user),
    Route("GET", "/tasks", "list_tasks", _list_tasks),
    Route("POST", "/tasks", "create_task", _create_task),
    Route("GET", "/tasks/{task_id}", "get_task", _get_task),
    Route("PUT", "/tasks/{task_id}", "update_task", _update_task),
    Route("PATCH", "/tasks/{task_id}/status", "update_task_status", _update_task_status),
    Route("DELETE", "/tasks/{task_id}", "delete_task", _delete_task),
    Route("GET", "/projects", "list_projects", _list_projects),
    Route("POST", "/projects", "create_project", _create_project),
    Route("GET", "/projects/{project_id}", "get_project", _get_project),
    Route("PUT", "/projects/{project_id}", "update_project", _update_project),
    Route("DELETE", "/projects/{project_id}", "delete_project", _delete_project),
    Route("GET", "/projects/{project_id}/tasks", "list_project_tasks", _list_project_tasks),
    Route("GET", "/notifications", "notifications", _notifications),
    Route("GET", "/calendar", "calendar", _calendar),
]


# ---------------------------------------------------------------------------
# API Executor
# ---------------------------------------------------------------------------

class APIExecutor:
    """
    Runs one APIRequest through the store layer.

    Usage:
        executor = APIExecutor(config, session_factory)
        resp = executor.execute(APIRequest(method="GET", path="/tasks",
                                           headers={"Authorization": f"Bearer {token}"}))
    """

    def __init__(
        self,
        config: Optional[TaskboardConfig] = None,
        session_factory: Optional[sessionmaker] = None,
        routes: Optional[List[Route]] = None,
    ):
        self._config = config or get_config()
        self._session_factory = session_factory
        self._routes = routes if routes is not None else ROUTES
        self._tokens = TokenService(
            self._config.security.secret_key,
            self._config.security.token_ttl_seconds,
        )

    def resolve(self, method: str, path: str) -> Tuple[Optional[Route], Dict[str, str]]:
        path = "/" + path.strip("/")
        for route in self._routes:
            params = route.match(method, path)
            if params is not None:
                return route, params
        return None, {}

    def execute(self, request: APIRequest) -> APIResponse:
        start_time = time.monotonic()
        method = request.method.upper()
        request_id = request.header("x-request-id") or f"req_{uuid.uuid4().hex[:12]}"
        route, params = self.resolve(method, request.path)
        ctx: Optional[RequestContext] = None

        if route is None:
            response = APIResponse(status_code=404, body={"error": "Not found", "request_id": request_id})
            self._log(request, response, start_time, None, request_id, None)
            return response

        try:
            factory = self._session_factory or get_session_factory()
            with session_scope(factory) as session:
                svc = build_services(session, self._config, self._tokens)
                if route.auth_required:
                    ctx = svc.auth.resolve_context(
                        self._extract_token(request),
                        request_id=request_id,
                        client_ip=request.client_ip,
                    )
                status_code, body = route.handler(svc, ctx, request, params)
            response = APIResponse(status_code=status_code, body=body)
            if route.operation == "login":
                response.headers["Set-Cookie"] = self._token_cookie(body["token"])
            elif route.operation == "logout":
                response.headers["Set-Cookie"] = f"{TOKEN_COOKIE}=; HttpOnly; Path=/; Max-Age=0; SameSite=Lax"

        except TaskboardError as e:
            response = self._error_response(e, request_id)

        except Exception as e:
            logger.exception("Unhandled error in %s %s", method, request.path)
            response = self._error_response(
                InternalError("Internal server error", request_id=request_id, cause=repr(e)),
                request_id,
            )

        self._log(request, response, start_time, ctx, request_id, route.operation)
        return response

    # -----------------------------------------------------------------------
    # Helpers
    # -----------------------------------------------------------------------

    @staticmethod
    def _extract_token(request: APIRequest) -> Optional[str]:
        auth = request.header("authorization").strip()
        if auth.lower().startswith("bearer "):
            token = auth[7:].strip()
            if token:
                return token
        return request.cookies.get(TOKEN_COOKIE) or None

    def _token_cookie(self, token: str) -> str:
        return (
            f"{TOKEN_COOKIE}={token}; HttpOnly; Path=/; "
            f"Max-Age={self._config.security.token_ttl_seconds}; SameSite=Lax"
        )

    def _error_response(self, error: TaskboardError, request_id: str) -> APIResponse:
        body: Dict[str, Any] = {
            "error": error.message,
            "error_type": error.error_type,
            "request_id": request_id,
        }
        headers: Dict[str, str] = {}

        if isinstance(error, AdminRequiredError):
            status_code = 403
        elif isinstance(error, UnauthorizedError):
            status_code = 401
            body["sign_in"] = self._config.security.sign_in_path
            headers["WWW-Authenticate"] = "Bearer"
        elif isinstance(error, NotFoundError):
            status_code = 404
        elif isinstance(error, ValidationFailedError):
            status_code = 400
            body["errors"] = error.errors
        elif isinstance(error, ConflictError):
            status_code = 409
        else:
            status_code = 500
            body["error"] = "Internal server error"
            if not isinstance(error, InternalError):
                logger.error("Unmapped error: %r", error)

        return APIResponse(status_code=status_code, body=body, headers=headers)

    @staticmethod
    def _log(
        request: APIRequest,
        response: APIResponse,
        start_time: float,
        ctx: Optional[RequestContext],
        request_id: str,
        operation: Optional[str],
    ) -> None:
        duration_ms = round((time.monotonic() - start_time) * 1000, 2)
        log(log_api_request(
            method=request.method.upper(),
            path=request.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
            subject_id=ctx.subject_id if ctx else None,
            request_id=request_id,
            operation=operation,
        ))
