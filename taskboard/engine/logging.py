"""
Taskboard Logging — Structured JSON file-based logging with async queue.

Implements:
- FileLogger: Per-object-type, per-category JSONL files (daily rotation)
- AsyncLogQueue: In-memory queue with background flush (interval / batch size)
- Log entry builders for record operations, security events, API requests
  and system events

Operator diagnostics go through the stdlib `logging` module; the entries
built here are business events destined for
logs/{object_type}/{category}/{YYYY-MM-DD}.jsonl.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from queue import Empty, Full, Queue
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger("taskboard.engine.logging")

OBJECT_TYPE_CATEGORIES = {
    "tasks": ["execution", "security"],
    "projects": ["execution", "security"],
    "users": ["execution", "security"],
    "api": ["execution", "security"],
    "system": ["execution", "security"],
}


@dataclass
class LogEntry:
    """One business event and the file it belongs to."""

    object_type: str
    category: str
    data: Dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        return json.dumps(self.data, default=str, separators=(",", ":"))


class FileLogger:
    """
    Appends entries to {log_dir}/{object_type}/{category}/{YYYY-MM-DD}.jsonl.

    Unknown object types are filed under "system". Writers to the same file
    are serialized by a per-file lock.
    """

    def __init__(self, log_dir: str = "logs"):
        self._log_dir = Path(log_dir)
        self._locks: Dict[Path, threading.Lock] = {}
        self._locks_guard = threading.Lock()
        self._ensure_layout()

    @property
    def log_dir(self) -> Path:
        return self._log_dir

    def write(self, entry: LogEntry) -> None:
        self.write_batch([entry])

    def write_batch(self, entries: Iterable[LogEntry]) -> None:
        by_file: Dict[Path, List[str]] = {}
        for entry in entries:
            by_file.setdefault(self.path_for(entry), []).append(entry.to_json() + "\n")

        for path, lines in by_file.items():
            with self._lock_for(path), path.open("a", encoding="utf-8") as fh:
                fh.write("".join(lines))

    def path_for(self, entry: LogEntry) -> Path:
        object_type = entry.object_type if entry.object_type in OBJECT_TYPE_CATEGORIES else "system"
        day = datetime.now(timezone.utc).date().isoformat()
        return self._log_dir / object_type / entry.category / f"{day}.jsonl"

    def _ensure_layout(self) -> None:
        for object_type, categories in OBJECT_TYPE_CATEGORIES.items():
            for category in categories:
                (self._log_dir / object_type / category).mkdir(parents=True, exist_ok=True)

    def _lock_for(self, path: Path) -> threading.Lock:
        with self._locks_guard:
            return self._locks.setdefault(path, threading.Lock())


class AsyncLogQueue:
    """
    Bounded in-memory buffer in front of a FileLogger.

    push() never blocks: when the buffer is full the entry is counted as
    dropped. A daemon thread writes batches of up to `flush_batch_size`
    entries, waiting at most `flush_interval_ms` for the first one.
    stop() ends the thread and writes whatever is still buffered.
    """

    def __init__(
        self,
        file_logger: FileLogger,
        flush_interval_ms: int = 100,
        flush_batch_size: int = 50,
        max_queue_size: int = 10000,
    ):
        self._writer = file_logger
        self._interval = max(flush_interval_ms, 1) / 1000.0
        self._batch_size = max(1, flush_batch_size)
        self._buffer: Queue[LogEntry] = Queue(maxsize=max_queue_size)
        self._stopping = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._dropped = 0

    @property
    def pending_count(self) -> int:
        return self._buffer.qsize()

    @property
    def dropped_count(self) -> int:
        return self._dropped

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stopping.clear()
        self._thread = threading.Thread(target=self._run, name="taskboard-log-flush", daemon=True)
        self._thread.start()
        logger.info("Async log queue started")

    def stop(self, timeout: float = 5.0) -> None:
        self._stopping.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            self._thread = None
        while self._flush(wait=None):
            pass
        logger.info("Async log queue stopped (dropped: %d)", self._dropped)

    def push(self, entry: LogEntry) -> bool:
        try:
            self._buffer.put_nowait(entry)
        except Full:
            self._dropped += 1
            return False
        return True

    def _run(self) -> None:
        while not self._stopping.is_set():
            self._flush(wait=self._interval)

    def _flush(self, wait: Optional[float]) -> int:
        """Write one batch; returns the number of entries written."""
        try:
            batch = [self._buffer.get_nowait() if wait is None else self._buffer.get(timeout=wait)]
        except Empty:
            return 0
        while len(batch) < self._batch_size:
            try:
                batch.append(self._buffer.get_nowait())
            except Empty:
                break
        try:
            self._writer.write_batch(batch)
        except OSError as e:
            logger.error("Failed to write %d log entries: %s", len(batch), e)
        return len(batch)


# ---------------------------------------------------------------------------
# Log Entry Builders
# ---------------------------------------------------------------------------

def _base_entry(
    event: str,
    level: str,
    request_id: Optional[str] = None,
    subject_id: Optional[str] = None,
    **extra: Any,
) -> Dict[str, Any]:
    entry: Dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "level": level,
        "event": event,
    }
    if request_id:
        entry["request_id"] = request_id
    if subject_id is not None:
        entry["subject_id"] = subject_id
    entry.update(extra)
    return entry


def log_record_operation(
    object_type: str,
    operation: str,
    record_id: Any,
    subject_id: Optional[str] = None,
    request_id: Optional[str] = None,
    fields_changed: Optional[List[str]] = None,
) -> LogEntry:
    """Build a record create/update/delete entry."""
    data = _base_entry(
        event=f"record_{operation}",
        level="INFO",
        request_id=request_id,
        subject_id=subject_id,
        operation=operation,
        record_id=record_id,
    )
    if fields_changed:
        data["fields_changed"] = sorted(fields_changed)
    return LogEntry(object_type, "execution", data)


def log_security_event(
    event: str,
    object_type: str,
    operation: str,
    subject_id: Optional[str] = None,
    role: Optional[str] = None,
    request_id: Optional[str] = None,
    record_id: Optional[Any] = None,
    reason: Optional[str] = None,
    level: str = "WARNING",
) -> LogEntry:
    """Build a security event entry (denial, failed login)."""
    data = _base_entry(
        event=event,
        level=level,
        request_id=request_id,
        subject_id=subject_id,
        operation=operation,
        role=role,
    )
    if record_id is not None:
        data["record_id"] = record_id
    if reason:
        data["reason"] = reason
    return LogEntry(object_type, "security", data)


def log_api_request(
    method: str,
    path: str,
    status_code: int,
    duration_ms: float,
    subject_id: Optional[str] = None,
    request_id: Optional[str] = None,
    operation: Optional[str] = None,
) -> LogEntry:
    data = _base_entry(
        event="api_request",
        level="INFO" if status_code < 400 else "ERROR",
        request_id=request_id,
        subject_id=subject_id,
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )
    if operation:
        data["operation"] = operation
    return LogEntry("api", "execution", data)


def log_system_event(
    event: str,
    level: str = "INFO",
    details: Optional[Dict[str, Any]] = None,
) -> LogEntry:
    """Build a system event entry (startup, shutdown, bootstrap)."""
    data = _base_entry(event=event, level=level)
    if details:
        data["details"] = details
    return LogEntry("system", "execution", data)


# ---------------------------------------------------------------------------
# Global Log Queue Singleton
# ---------------------------------------------------------------------------

_global_queue: Optional[AsyncLogQueue] = None


def init_logging(
    log_dir: str = "logs",
    flush_interval_ms: int = 100,
    flush_batch_size: int = 50,
    max_queue_size: int = 10000,
) -> AsyncLogQueue:
    """Initialize and start the global async log queue."""
    global _global_queue
    _global_queue = AsyncLogQueue(
        file_logger=FileLogger(log_dir=log_dir),
        flush_interval_ms=flush_interval_ms,
        flush_batch_size=flush_batch_size,
        max_queue_size=max_queue_size,
    )
    _global_queue.start()
    return _global_queue


def get_log_queue() -> Optional[AsyncLogQueue]:
    return _global_queue


def log(entry: LogEntry) -> bool:
    """Push a log entry to the global queue. Non-blocking."""
    if _global_queue is None:
        logger.debug("Log queue not initialized — %s entry dropped", entry.data.get("event"))
        return False
    return _global_queue.push(entry)


def shutdown_logging() -> None:
    """Flush and stop the global log queue."""
    global _global_queue
    if _global_queue:
        _global_queue.stop()
        _global_queue = None
