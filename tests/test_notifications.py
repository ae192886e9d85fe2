"""Tests for taskboard.services.notifications — due-tomorrow selection and calendar."""

from datetime import datetime, timezone

import pytest

from taskboard.engine.errors import UnauthorizedError, ValidationFailedError
from taskboard.services.notifications import NotificationSelector

NOW = datetime(2024, 3, 10, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def selector(session, policy):
    return NotificationSelector(session, policy, clock=lambda: NOW)


@pytest.fixture
def seeded(tasks, admin_ctx, member_user, other_user, project):
    """Tasks around the 2024-03-11 boundary, split between two members."""
    def make(title, due, assignee):
        return tasks.create(admin_ctx, {
            "title": title, "due_date": due, "assigned_to": assignee.id, "project_id": project.id,
        })

    return {
        "tomorrow_mia": make("Tomorrow morning", "2024-03-11T09:00:00Z", member_user),
        "tomorrow_otto": make("Tomorrow late", "2024-03-11T23:59:59Z", other_user),
        "day_after": make("Day after", "2024-03-12T00:00:01Z", member_user),
        "today": make("Today", "2024-03-10T12:00:00Z", member_user),
        "midnight": make("Midnight start", "2024-03-11T00:00:00Z", member_user),
    }


class TestDueWindow:
    def test_calendar_day_not_rolling(self, selector):
        start, end = selector.due_window(datetime(2024, 3, 10, 18, 30, tzinfo=timezone.utc))
        assert start == datetime(2024, 3, 11, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 12, tzinfo=timezone.utc)

    def test_timezone_boundaries(self, session, policy):
        berlin = NotificationSelector(session, policy, timezone="Europe/Berlin")
        # 23:30 UTC on the 10th is already the 11th in Berlin
        start, end = berlin.due_window(datetime(2024, 3, 10, 23, 30, tzinfo=timezone.utc))
        assert start == datetime(2024, 3, 11, 23, 0, tzinfo=timezone.utc)
        assert end == datetime(2024, 3, 12, 23, 0, tzinfo=timezone.utc)

    def test_horizon(self, session, policy):
        week = NotificationSelector(session, policy, horizon_days=7)
        start, _ = week.due_window(NOW)
        assert start == datetime(2024, 3, 17, tzinfo=timezone.utc)


class TestDueSoon:
    def test_admin_sees_all_due_tomorrow(self, selector, admin_ctx, seeded):
        ids = {t.id for t in selector.due_soon(admin_ctx)}
        assert ids == {seeded["tomorrow_mia"].id, seeded["tomorrow_otto"].id, seeded["midnight"].id}

    def test_member_sees_own(self, selector, member_ctx, seeded):
        ids = [t.id for t in selector.due_soon(member_ctx)]
        assert ids == [seeded["midnight"].id, seeded["tomorrow_mia"].id]

    def test_excludes_deleted(self, selector, tasks, admin_ctx, seeded):
        tasks.delete(admin_ctx, seeded["tomorrow_otto"].id)
        assert seeded["tomorrow_otto"].id not in {t.id for t in selector.due_soon(admin_ctx)}

    def test_excludes_deleted_project(self, selector, projects, admin_ctx, project, seeded):
        projects.delete(admin_ctx, project.id)
        assert selector.due_soon(admin_ctx) == []

    def test_explicit_now(self, selector, admin_ctx, seeded):
        ids = {t.id for t in selector.due_soon(admin_ctx, now=datetime(2024, 3, 9, 8, 0, tzinfo=timezone.utc))}
        assert ids == {seeded["today"].id}

    def test_requires_subject(self, selector):
        with pytest.raises(UnauthorizedError):
            selector.due_soon(None)


class TestCalendar:
    def test_grouped_by_day(self, selector, admin_ctx, seeded):
        days = selector.calendar(admin_ctx, {"start": "2024-03-10T00:00:00Z", "end": "2024-03-12T00:00:00Z"})
        assert list(days) == ["2024-03-10", "2024-03-11"]
        assert [t.title for t in days["2024-03-11"]] == ["Midnight start", "Tomorrow morning", "Tomorrow late"]

    def test_member_visibility(self, selector, other_ctx, seeded):
        days = selector.calendar(other_ctx, {"start": "2024-03-01T00:00:00Z", "end": "2024-04-01T00:00:00Z"})
        assert {t.id for tasks in days.values() for t in tasks} == {seeded["tomorrow_otto"].id}

    def test_project_filter(self, selector, projects, tasks, admin_ctx, seeded):
        other = projects.create(admin_ctx, {"title": "Side project"}).project
        side = tasks.create(admin_ctx, {"title": "Side task", "due_date": "2024-03-11T10:00:00Z", "project_id": other.id})
        days = selector.calendar(admin_ctx, {
            "start": "2024-03-11T00:00:00Z", "end": "2024-03-12T00:00:00Z", "project_id": other.id,
        })
        assert [t.id for t in days["2024-03-11"]] == [side.id]

    def test_invalid_range(self, selector, admin_ctx):
        with pytest.raises(ValidationFailedError, match="End must be after start"):
            selector.calendar(admin_ctx, {"start": "2024-03-12T00:00:00Z", "end": "2024-03-11T00:00:00Z"})

    def test_missing_bounds(self, selector, admin_ctx):
        with pytest.raises(ValidationFailedError) as exc:
            selector.calendar(admin_ctx, {})
        assert {e["path"] for e in exc.value.errors} == {"start", "end"}
