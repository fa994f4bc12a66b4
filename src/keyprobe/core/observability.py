from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional


_RESERVED_LOG_KEYS = {
    "name",
    "msg",
    "args",
    "levelname",
    "levelno",
    "pathname",
    "filename",
    "module",
    "exc_info",
    "exc_text",
    "stack_info",
    "lineno",
    "funcName",
    "created",
    "msecs",
    "relativeCreated",
    "thread",
    "threadName",
    "processName",
    "process",
    "message",
    "stacklevel",
    "taskName",
}


class JsonLogFormatter(logging.Formatter):
    """Minimal JSON formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        base: Dict[str, Any] = {
            "ts": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname.lower(),
            "logger": record.name,
            "thread": record.threadName,
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event:
            base["event"] = event
        payload = getattr(record, "payload", None)
        if isinstance(payload, dict):
            base.update(payload)
        for key, value in record.__dict__.items():
            if key in _RESERVED_LOG_KEYS or key in base or key == "payload":
                continue
            base[key] = value
        if record.exc_info:
            base["exc"] = self.formatException(record.exc_info)
        return json.dumps(base, default=str)


_logging_configured = False


def configure_logging(level: Optional[str] = None, json_output: bool = True) -> None:
    """Configure root logging once; JSON lines on stderr unless json_output is False."""
    global _logging_configured
    if _logging_configured:
        return
    log_level = (level or os.getenv("KEYPROBE_LOG_LEVEL", "WARNING")).upper()
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JsonLogFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(levelname)s - %(threadName)s - %(message)s", "%Y-%m-%d %H:%M:%S")
        )
    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(log_level)

    # paramiko logs failed negotiations at ERROR; for a scanner those are expected outcomes
    if log_level != "DEBUG":
        logging.getLogger("paramiko").setLevel(logging.CRITICAL)

    _logging_configured = True


def log_event(logger: logging.Logger, event: str, **payload: Any) -> None:
    """Helper to emit structured events consistently."""
    logger.info(event, extra={"event": event, "payload": payload})


@dataclass
class ScanMetrics:
    started: int = 0
    completed: int = 0
    failed: int = 0
    in_progress: int = 0
    total_duration_seconds: float = 0.0
    last_duration_seconds: Optional[float] = None
    outcomes: Dict[str, int] = field(default_factory=dict)


class Metrics:
    """Thread-safe counters for one scan run, updated from worker threads."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self.scans = ScanMetrics()

    def record_started(self) -> None:
        with self._lock:
            self.scans.started += 1
            self.scans.in_progress += 1

    def record_finished(self, outcome: str, duration_seconds: float) -> None:
        with self._lock:
            self.scans.in_progress = max(0, self.scans.in_progress - 1)
            self.scans.completed += 1
            self.scans.outcomes[outcome] = self.scans.outcomes.get(outcome, 0) + 1
            self.scans.total_duration_seconds += duration_seconds
            self.scans.last_duration_seconds = duration_seconds

    def record_failed(self, duration_seconds: float) -> None:
        # a job that raised instead of producing an outcome
        with self._lock:
            self.scans.in_progress = max(0, self.scans.in_progress - 1)
            self.scans.failed += 1
            self.scans.total_duration_seconds += duration_seconds
            self.scans.last_duration_seconds = duration_seconds

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            finished = self.scans.completed + self.scans.failed
            avg = self.scans.total_duration_seconds / finished if finished else 0.0
            return {
                "started": self.scans.started,
                "completed": self.scans.completed,
                "failed": self.scans.failed,
                "in_progress": self.scans.in_progress,
                "avg_duration_seconds": round(avg, 3),
                "last_duration_seconds": self.scans.last_duration_seconds,
                "outcomes": dict(self.scans.outcomes),
            }

    def reset(self) -> None:
        with self._lock:
            self.scans = ScanMetrics()


class Timer:
    """Lightweight context manager for timing blocks."""

    def __enter__(self) -> "Timer":
        self._start = time.perf_counter()
        self.duration = 0.0
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.duration = time.perf_counter() - self._start
