"""Process reporter: periodic process-level metrics (CPU times, threads, GC, allocated blocks)."""
import gc
import os
import sys
import threading
from typing import Any

from stackimpact._collaborators._base import AgentContext, PeriodicTask
from stackimpact._collaborators._message_queue import MessageQueue


def collect_process_metrics() -> dict[str, Any]:
    times = os.times()
    gen0, gen1, gen2 = gc.get_count()
    return {
        "cpu_user_s": times.user,
        "cpu_system_s": times.system,
        "thread_count": threading.active_count(),
        "gc_count": {"gen0": gen0, "gen1": gen1, "gen2": gen2},
        "gc_collections": sum(s.get("collections", 0) for s in gc.get_stats()),
        "allocated_blocks": sys.getallocatedblocks(),
    }


class ProcessReporter:
    def __init__(self, context: AgentContext, message_queue: MessageQueue) -> None:
        self._context = context
        self._message_queue = message_queue
        self._task: PeriodicTask | None = None

    def start(self) -> None:
        if self._task is not None:
            return
        self._task = PeriodicTask(
            "stackimpact-process",
            self._context.config.report_interval,
            self.report,
            self._context.diagnostics,
        )
        self._task.start()

    def report(self) -> dict[str, Any]:
        with self._context.overhead_lock:
            metrics = collect_process_metrics()
        self._message_queue.add("metrics", metrics)
        return metrics
