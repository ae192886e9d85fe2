"""Tests for taskboard.api.executor — request boundary, auth and error mapping."""

from unittest.mock import patch

import pytest

from taskboard.api.executor import APIExecutor, APIRequest
from taskboard.db.models import Project, User
from taskboard.engine.security import hash_password


@pytest.fixture
def executor(config, session_factory):
    return APIExecutor(config, session_factory)


@pytest.fixture
def seed(session_factory):
    """Commit an admin and a member; return their ids."""
    s = session_factory()
    admin = User(name="Admin", email="admin@example.com", role="admin",
                 password_hash=hash_password("adminpass", rounds=4))
    member = User(name="Mia", email="mia@example.com", role="member",
                  password_hash=hash_password("miapass1", rounds=4))
    s.add_all([admin, member])
    s.commit()
    ids = {"admin": admin.id, "member": member.id}
    s.close()
    return ids


def call(executor, method, path, token=None, body=None, query=None, cookies=None):
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return executor.execute(APIRequest(
        method=method, path=path, headers=headers, body=body,
        query_params=query or {}, cookies=cookies or {},
    ))


def login(executor, email, password):
    resp = call(executor, "POST", "/auth/login", body={"email": email, "password": password})
    assert resp.status_code == 200, resp.body
    return resp.body["token"]


@pytest.fixture
def admin_token(executor, seed):
    return login(executor, "admin@example.com", "adminpass")


@pytest.fixture
def member_token(executor, seed):
    return login(executor, "mia@example.com", "miapass1")


@pytest.fixture
def project_id(executor, admin_token, seed):
    resp = call(executor, "POST", "/projects", admin_token, {"title": "Launch", "team": [seed["member"]]})
    assert resp.status_code == 201, resp.body
    return resp.body["id"]


class TestRouting:
    def test_unknown_route(self, executor):
        resp = call(executor, "GET", "/nope")
        assert resp.status_code == 404

    def test_trailing_slash(self, executor, member_token):
        assert call(executor, "GET", "/tasks/", member_token).status_code == 200

    def test_resolve_params(self, executor):
        route, params = executor.resolve("PATCH", "/tasks/abc/status")
        assert route.operation == "update_task_status"
        assert params == {"task_id": "abc"}


class TestAuth:
    def test_register_then_login(self, executor):
        resp = call(executor, "POST", "/auth/register",
                    body={"name": "New", "email": "new@example.com", "password": "secret1"})
        assert resp.status_code == 201
        assert resp.body["role"] == "member"
        assert "password_hash" not in resp.body
        assert login(executor, "new@example.com", "secret1")

    def test_register_duplicate(self, executor, seed):
        resp = call(executor, "POST", "/auth/register",
                    body={"name": "Again", "email": "mia@example.com", "password": "secret1"})
        assert resp.status_code == 409

    def test_register_race_is_conflict(self, executor, seed):
        with patch("taskboard.services.users.UserDirectory.find_by_email", return_value=None):
            resp = call(executor, "POST", "/auth/register",
                        body={"name": "Again", "email": "mia@example.com", "password": "secret1"})
        assert resp.status_code == 409
        assert resp.body["error"] == "User already exists"

    def test_login_sets_cookie(self, executor, seed):
        resp = call(executor, "POST", "/auth/login", body={"email": "mia@example.com", "password": "miapass1"})
        assert resp.headers["Set-Cookie"].startswith(f"token={resp.body['token']};")
        assert "HttpOnly" in resp.headers["Set-Cookie"]

    def test_login_failure_same_for_unknown_email(self, executor, seed):
        wrong = call(executor, "POST", "/auth/login", body={"email": "mia@example.com", "password": "bad"})
        unknown = call(executor, "POST", "/auth/login", body={"email": "who@example.com", "password": "bad"})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.body["error"] == unknown.body["error"]

    def test_missing_credential(self, executor, config):
        resp = call(executor, "GET", "/tasks")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        assert resp.body["sign_in"] == config.security.sign_in_path

    def test_cookie_credential(self, executor, member_token):
        resp = call(executor, "GET", "/auth/me", cookies={"token": member_token})
        assert resp.status_code == 200
        assert resp.body["email"] == "mia@example.com"

    def test_logout_clears_cookie(self, executor):
        resp = call(executor, "POST", "/auth/logout")
        assert "Max-Age=0" in resp.headers["Set-Cookie"]

    def test_profile_update(self, executor, member_token):
        resp = call(executor, "PUT", "/users/me", member_token, {"name": "Mia M.", "role": "admin"})
        assert resp.status_code == 200
        assert (resp.body["name"], resp.body["role"]) == ("Mia M.", "member")

    def test_user_admin(self, executor, admin_token, member_token):
        body = {"name": "Bo", "email": "bo@example.com", "password": "secret1", "role": "admin"}
        assert call(executor, "POST", "/users", member_token, body).status_code == 403
        assert call(executor, "POST", "/users", admin_token, body).status_code == 201
        assert len(call(executor, "GET", "/users", member_token).body) == 3


class TestTasks:
    def test_crud_flow(self, executor, member_token, project_id):
        created = call(executor, "POST", "/tasks", member_token,
                       {"title": "Draft plan", "project_id": project_id, "tags": ["a", "b", "a"]})
        assert created.status_code == 201
        task_id = created.body["id"]
        assert created.body["tags"] == ["a", "b", "a"]
        assert created.body["assignee"]["email"] == "mia@example.com"

        got = call(executor, "GET", f"/tasks/{task_id}", member_token)
        assert got.body["project"]["title"] == "Launch"

        moved = call(executor, "PATCH", f"/tasks/{task_id}/status", member_token, {"status": "done"})
        assert moved.body["status"] == "done"

        listed = call(executor, "GET", f"/projects/{project_id}/tasks", member_token, query={"status": "all"})
        assert [t["id"] for t in listed.body] == [task_id]

        assert call(executor, "DELETE", f"/tasks/{task_id}", member_token).status_code == 200
        assert call(executor, "GET", f"/tasks/{task_id}", member_token).status_code == 404

    def test_validation_response(self, executor, member_token, project_id):
        resp = call(executor, "POST", "/tasks", member_token, {"title": "ab", "project_id": project_id})
        assert resp.status_code == 400
        assert resp.body["errors"] == [{"path": "title", "message": "Title must be at least 3 characters"}]

    def test_member_update_masked(self, executor, admin_token, member_token, seed, project_id):
        task = call(executor, "POST", "/tasks", admin_token,
                    {"title": "Assigned work", "project_id": project_id, "assigned_to": seed["member"]}).body
        resp = call(executor, "PUT", f"/tasks/{task['id']}", member_token,
                    {"title": "Renamed", "status": "in-progress"})
        assert resp.status_code == 200
        assert (resp.body["title"], resp.body["status"]) == ("Assigned work", "in-progress")

    def test_admin_unknown_assignee(self, executor, admin_token, project_id):
        resp = call(executor, "POST", "/tasks", admin_token,
                    {"title": "Ghost work", "project_id": project_id, "assigned_to": "ghost"})
        assert resp.status_code == 404

    def test_body_must_be_object(self, executor, member_token):
        resp = call(executor, "POST", "/tasks", member_token, ["not", "an", "object"])
        assert resp.status_code == 400

    def test_failed_request_rolls_back(self, executor, member_token, project_id, session_factory):
        with patch("taskboard.api.executor.task_view", side_effect=RuntimeError("boom")):
            resp = call(executor, "POST", "/tasks", member_token, {"title": "Lost task", "project_id": project_id})
        assert resp.status_code == 500
        assert resp.body["error"] == "Internal server error"
        assert call(executor, "GET", "/tasks", member_token).body == []


class TestProjects:
    def test_member_cannot_create(self, executor, member_token):
        resp = call(executor, "POST", "/projects", member_token, {"title": "Mine"})
        assert resp.status_code == 403

    def test_progress_in_views(self, executor, admin_token, member_token, project_id):
        for title in ("One", "Two"):
            task = call(executor, "POST", "/tasks", member_token, {"title": f"Task {title}", "project_id": project_id}).body
        call(executor, "PATCH", f"/tasks/{task['id']}/status", member_token, {"status": "done"})
        view = call(executor, "GET", f"/projects/{project_id}", member_token).body
        assert (view["progress"], view["status"]) == (50, "in-progress")
        assert [m["email"] for m in view["team"]] == ["mia@example.com"]

    def test_double_delete(self, executor, admin_token, project_id, session_factory):
        assert call(executor, "DELETE", f"/projects/{project_id}", admin_token).status_code == 200
        s = session_factory()
        first = s.get(Project, project_id).deleted_at
        s.close()

        resp = call(executor, "DELETE", f"/projects/{project_id}", admin_token)
        assert resp.status_code == 409
        assert resp.body["error_type"] == "AlreadyDeletedError"

        s = session_factory()
        assert s.get(Project, project_id).deleted_at == first
        s.close()


class TestSchedule:
    def test_notifications(self, executor, member_token, project_id):
        resp = call(executor, "GET", "/notifications", member_token)
        assert resp.status_code == 200
        assert resp.body == []

    def test_calendar(self, executor, member_token, project_id):
        call(executor, "POST", "/tasks", member_token,
             {"title": "Dated", "project_id": project_id, "due_date": "2024-06-01T10:00:00Z"})
        resp = call(executor, "GET", "/calendar", member_token,
                    query={"start": "2024-06-01T00:00:00Z", "end": "2024-06-02T00:00:00Z"})
        assert resp.status_code == 200
        assert resp.body[0]["date"] == "2024-06-01"
        assert resp.body[0]["tasks"][0]["title"] == "Dated"
