"""Unit tests for taskboard.engine.logging — FileLogger, AsyncLogQueue, builders."""

import json
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

import taskboard.engine.logging as log_mod
from taskboard.engine.logging import (
    OBJECT_TYPE_CATEGORIES,
    AsyncLogQueue,
    FileLogger,
    LogEntry,
    log,
    log_api_request,
    log_record_operation,
    log_security_event,
    log_system_event,
)


def _read_lines(path):
    return [json.loads(line) for line in path.read_text(encoding="utf-8").splitlines()]


def _today():
    return datetime.now(timezone.utc).date().isoformat()


class TestObjectTypeCategories:
    def test_types(self):
        assert set(OBJECT_TYPE_CATEGORIES) == {"tasks", "projects", "users", "api", "system"}

    def test_every_type_has_execution_and_security(self):
        for cats in OBJECT_TYPE_CATEGORIES.values():
            assert set(cats) == {"execution", "security"}


class TestLogEntry:
    def test_to_json(self):
        entry = LogEntry("tasks", "execution", {"record_id": "t1"})
        assert json.loads(entry.to_json()) == {"record_id": "t1"}


class TestFileLogger:
    def test_creates_directories(self, tmp_path):
        FileLogger(log_dir=str(tmp_path / "logs"))
        assert (tmp_path / "logs" / "tasks" / "security").is_dir()

    def test_write_creates_file(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write(LogEntry("tasks", "execution", {"event": "record_create"}))
        path = tmp_path / "logs" / "tasks" / "execution" / f"{_today()}.jsonl"
        assert _read_lines(path) == [{"event": "record_create"}]

    def test_write_batch_groups_by_file(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write_batch([
            LogEntry("tasks", "execution", {"n": 1}),
            LogEntry("projects", "execution", {"n": 2}),
            LogEntry("tasks", "execution", {"n": 3}),
        ])
        day = f"{_today()}.jsonl"
        assert [e["n"] for e in _read_lines(tmp_path / "logs" / "tasks" / "execution" / day)] == [1, 3]
        assert [e["n"] for e in _read_lines(tmp_path / "logs" / "projects" / "execution" / day)] == [2]

    def test_file_named_by_utc_day(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        # 23:30 on Jan 1 in UTC-5 is already Jan 2 in UTC
        local = datetime(2024, 1, 1, 23, 30, tzinfo=timezone(timedelta(hours=-5)))
        with patch.object(log_mod, "datetime") as dt:
            dt.now.side_effect = lambda tz=None: local.astimezone(tz)
            path = logger.path_for(LogEntry("tasks", "execution", {}))
        assert path.name == "2024-01-02.jsonl"

    def test_unknown_object_type_goes_to_system(self, tmp_path):
        logger = FileLogger(log_dir=str(tmp_path / "logs"))
        logger.write(LogEntry("widgets", "execution", {"n": 1}))
        path = tmp_path / "logs" / "system" / "execution" / f"{_today()}.jsonl"
        assert path.exists()


class TestAsyncLogQueue:
    def test_stop_drains(self, tmp_path):
        file_logger = FileLogger(log_dir=str(tmp_path / "logs"))
        queue = AsyncLogQueue(file_logger, flush_interval_ms=10_000)
        for i in range(3):
            assert queue.push(LogEntry("users", "security", {"n": i}))
        queue.stop()
        path = tmp_path / "logs" / "users" / "security" / f"{_today()}.jsonl"
        assert [e["n"] for e in _read_lines(path)] == [0, 1, 2]
        assert queue.pending_count == 0

    def test_full_queue_drops(self, tmp_path):
        queue = AsyncLogQueue(FileLogger(log_dir=str(tmp_path / "logs")), max_queue_size=1)
        assert queue.push(LogEntry("api", "execution", {}))
        assert not queue.push(LogEntry("api", "execution", {}))
        assert queue.dropped_count == 1


class TestGlobalQueue:
    def test_log_without_queue_is_dropped(self):
        assert log_mod.get_log_queue() is None
        assert log(log_system_event("noop")) is False

    def test_init_and_shutdown(self, tmp_path):
        queue = log_mod.init_logging(log_dir=str(tmp_path / "logs"), flush_interval_ms=10)
        try:
            assert log_mod.get_log_queue() is queue
            assert log(log_system_event("startup")) is True
        finally:
            log_mod.shutdown_logging()
        assert log_mod.get_log_queue() is None
        path = tmp_path / "logs" / "system" / "execution" / f"{_today()}.jsonl"
        assert _read_lines(path)[0]["event"] == "startup"


class TestLogBuilders:
    def test_record_operation(self):
        entry = log_record_operation(
            "tasks", "update", "t1", subject_id="u1", request_id="req_1",
            fields_changed=["title", "status"],
        )
        assert (entry.object_type, entry.category) == ("tasks", "execution")
        assert entry.data["event"] == "record_update"
        assert entry.data["fields_changed"] == ["status", "title"]
        assert entry.data["subject_id"] == "u1"

    def test_security_event(self):
        entry = log_security_event(
            "access_denied", "tasks", "update", subject_id="u1", role="member",
            record_id="t1", reason="not assignee",
        )
        assert entry.category == "security"
        assert entry.data["level"] == "WARNING"
        assert entry.data["reason"] == "not assignee"

    @pytest.mark.parametrize("status,level", [(200, "INFO"), (404, "ERROR")])
    def test_api_request_level(self, status, level):
        entry = log_api_request("GET", "/tasks", status, 1.5, operation="list_tasks")
        assert (entry.object_type, entry.category) == ("api", "execution")
        assert entry.data["level"] == level
        assert entry.data["operation"] == "list_tasks"

    def test_system_event(self):
        entry = log_system_event("cli_start", details={"command": "init"})
        assert entry.data["details"] == {"command": "init"}
