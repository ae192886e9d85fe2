"""
Taskboard Notification Selector — due-date driven, read-only task views.

- due_soon(): tasks due on the calendar day `horizon_days` after "now"
  (the whole day in the configured timezone, not a rolling 24h window).
  Admins see every such task; everyone else sees the tasks assigned to them.
- calendar(): tasks due in [start, end) visible to the subject, grouped by
  calendar day, optionally for one project.

Nothing is persisted: each call recomputes from the task table.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from datetime import date, datetime, time, timedelta
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

from sqlalchemy.orm import Session

from taskboard.db.base import ensure_utc, utcnow
from taskboard.db.models import Task
from taskboard.engine.context import RequestContext
from taskboard.policy.access import OP_LIST, RESOURCE_TASK, AccessPolicy
from taskboard.services.tasks import apply_constraints, live_tasks
from taskboard.services.validation import DateRange, parse

logger = logging.getLogger("taskboard.services.notifications")


class NotificationSelector:
    """
    Usage:
        selector = NotificationSelector(session, policy, horizon_days=1, timezone="UTC")
        tasks = selector.due_soon(ctx)
    """

    def __init__(
        self,
        session: Session,
        policy: Optional[AccessPolicy] = None,
        horizon_days: int = 1,
        timezone: str = "UTC",
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self._session = session
        self._policy = policy or AccessPolicy()
        self._horizon = timedelta(days=horizon_days)
        self._tz = ZoneInfo(timezone)
        self._clock = clock or utcnow

    def due_window(self, now: Optional[datetime] = None) -> Tuple[datetime, datetime]:
        """[start, end) in UTC of the calendar day `horizon_days` after `now`."""
        local_now = ensure_utc(now or self._clock()).astimezone(self._tz)
        target = local_now.date() + self._horizon
        return self._day_bounds(target)

    def due_soon(self, ctx: Optional[RequestContext], now: Optional[datetime] = None) -> List[Task]:
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        start, end = self.due_window(now)

        constraints = {} if ctx.is_admin else {"assigned_to": ctx.subject_id}
        stmt = (
            apply_constraints(live_tasks(), constraints)
            .where(Task.due_date >= start, Task.due_date < end)
            .order_by(Task.due_date, Task.id)
        )
        tasks = list(self._session.scalars(stmt))
        logger.debug("%d task(s) due %s for %s", len(tasks), start.date(), ctx.subject_id)
        return tasks

    def calendar(
        self,
        ctx: Optional[RequestContext],
        params: Mapping[str, Any],
    ) -> "OrderedDict[str, List[Task]]":
        """
        Tasks with a due date in [start, end), keyed by local ISO day in
        ascending order. Days without tasks are omitted.
        """
        self._policy.enforce(ctx, RESOURCE_TASK, OP_LIST)
        window = parse(DateRange, params)

        stmt = apply_constraints(live_tasks(), self._policy.visibility(ctx, RESOURCE_TASK))
        stmt = stmt.where(Task.due_date >= window.start, Task.due_date < window.end)
        if window.project_id:
            stmt = stmt.where(Task.project_id == window.project_id)

        days: "OrderedDict[str, List[Task]]" = OrderedDict()
        for task in self._session.scalars(stmt.order_by(Task.due_date, Task.id)):
            day = ensure_utc(task.due_date).astimezone(self._tz).date().isoformat()
            days.setdefault(day, []).append(task)
        return days

    def _day_bounds(self, day: date) -> Tuple[datetime, datetime]:
        start = datetime.combine(day, time.min, tzinfo=self._tz)
        end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=self._tz)
        return ensure_utc(start), ensure_utc(end)
