"""
Error reporter: aggregates recorded errors by group, type, message and call-site location.

skip_frames counts frames above record_error's caller to omit when locating the call site;
the agent facade passes caller's value + 1 so locations stay relative to application code.
Distinct keys are capped at MAX_AGGREGATED_KEYS between reports; the overflow is
counted and reported as errors_dropped.
"""
import os
import sys
import threading
import time
from typing import Any

from stackimpact.constants import MAX_AGGREGATED_KEYS

from stackimpact._collaborators._base import AgentContext, PeriodicTask
from stackimpact._collaborators._message_queue import MessageQueue


def _caller_location(depth: int) -> str:
    """file:line (function) of the frame depth levels above this helper's caller."""
    try:
        frame = sys._getframe(depth + 1)
    except ValueError:
        return "unknown"
    filename = frame.f_code.co_filename
    try:
        filename = os.path.relpath(filename, os.getcwd())
    except (ValueError, OSError):
        pass
    return f"{filename}:{frame.f_lineno} ({frame.f_code.co_name})"


class ErrorReporter:
    def __init__(self, context: AgentContext, message_queue: MessageQueue) -> None:
        self._context = context
        self._message_queue = message_queue
        self._lock = threading.Lock()
        self._errors: dict[tuple[str, str, str, str], dict[str, Any]] = {}
        self._dropped = 0
        self._task: PeriodicTask | None = None

    @property
    def dropped(self) -> int:
        with self._lock:
            return self._dropped

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask(
            "stackimpact-errors",
            self._context.config.report_interval,
            self.report,
            self._context.diagnostics,
        )
        self._task.start()

    def record_error(self, group: str, error: BaseException, skip_frames: int) -> None:
        location = _caller_location(max(0, skip_frames) + 1)
        key = (group, type(error).__name__, str(error), location)
        now = int(time.time())
        with self._lock:
            entry = self._errors.get(key)
            if entry is None:
                if len(self._errors) >= MAX_AGGREGATED_KEYS:
                    self._dropped += 1
                    return
                entry = {
                    "group": group,
                    "error_type": key[1],
                    "message": key[2],
                    "location": location,
                    "count": 0,
                    "first_seen": now,
                }
                self._errors[key] = entry
            entry["count"] += 1
            entry["last_seen"] = now

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [dict(entry) for entry in self._errors.values()]

    def report(self) -> list[dict[str, Any]]:
        """Queue aggregated errors (and the drop count, if any) and reset."""
        with self._lock:
            errors = list(self._errors.values())
            self._errors = {}
            dropped, self._dropped = self._dropped, 0
        if errors:
            self._message_queue.add("errors", errors)
        if dropped:
            self._context.diagnostics.log("Dropped %d error records over the key limit.", dropped)
            self._message_queue.add("errors_dropped", {"count": dropped, "limit": MAX_AGGREGATED_KEYS})
        return errors
