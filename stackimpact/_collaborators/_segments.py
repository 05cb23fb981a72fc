"""
Segment reporter: aggregates timed, named units of work per label path.
At most MAX_AGGREGATED_KEYS distinct paths are held between reports; records for new
paths past that are counted and reported as segments_dropped.
"""
import threading
from typing import Any, Sequence

from stackimpact.constants import MAX_AGGREGATED_KEYS

from stackimpact._collaborators._base import AgentContext, PeriodicTask
from stackimpact._collaborators._message_queue import MessageQueue


class SegmentReporter:
    def __init__(self, context: AgentContext, message_queue: MessageQueue) -> None:
        self._context = context
        self._message_queue = message_queue
        self._lock = threading.Lock()
        self._segments: dict[tuple[str, ...], dict[str, int]] = {}
        self._dropped = 0
        self._task: PeriodicTask | None = None

    @property
    def dropped(self) -> int:
        """Records discarded since the last report because the path cap was reached."""
        with self._lock:
            return self._dropped

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask(
            "stackimpact-segments",
            self._context.config.report_interval,
            self.report,
            self._context.diagnostics,
        )
        self._task.start()

    def record_segment(self, path: Sequence[str], duration: int) -> None:
        key = tuple(str(label) for label in path)
        with self._lock:
            stats = self._segments.get(key)
            if stats is None:
                if len(self._segments) >= MAX_AGGREGATED_KEYS:
                    self._dropped += 1
                    return
                stats = {"count": 0, "total": 0, "max": 0}
                self._segments[key] = stats
            stats["count"] += 1
            stats["total"] += duration
            stats["max"] = max(stats["max"], duration)

    def snapshot(self) -> list[dict[str, Any]]:
        with self._lock:
            return [{"path": list(key), **stats} for key, stats in self._segments.items()]

    def report(self) -> list[dict[str, Any]]:
        """Queue aggregated segments (and the drop count, if any) and reset."""
        with self._lock:
            segments = [{"path": list(key), **stats} for key, stats in self._segments.items()]
            self._segments = {}
            dropped, self._dropped = self._dropped, 0
        if segments:
            self._message_queue.add("segments", segments)
        if dropped:
            self._context.diagnostics.log("Dropped %d segment records over the path limit.", dropped)
            self._message_queue.add("segments_dropped", {"count": dropped, "limit": MAX_AGGREGATED_KEYS})
        return segments
