"""
Shared pieces for collaborators: the read-mostly AgentContext, the start contract,
and PeriodicTask for background reporting.
Depends: stackimpact.config, stackimpact.diagnostics.
"""
import threading
from dataclasses import dataclass, field
from typing import Callable, Protocol

from stackimpact.config import AgentConfig
from stackimpact.constants import MIN_REPORT_INTERVAL_S
from stackimpact.diagnostics import Diagnostics


class Collaborator(Protocol):
    """Anything the agent starts: one start() call, no arguments, no return value."""

    def start(self) -> None: ...


@dataclass
class AgentContext:
    """What collaborators may see of the agent. They never hold the agent itself."""

    config: AgentConfig
    diagnostics: Diagnostics
    run_id: str
    run_ts: int
    overhead_lock: threading.Lock = field(default_factory=threading.Lock)


class PeriodicTask:
    """Daemon thread calling fn every interval_s seconds until stop().

    interval_s is raised to min_interval_s, so a zero or negative report_interval
    set in code cannot turn the loop into a busy wait.
    """

    def __init__(
        self,
        name: str,
        interval_s: float,
        fn: Callable[[], object],
        diagnostics: Diagnostics,
        min_interval_s: float = MIN_REPORT_INTERVAL_S,
    ) -> None:
        self.name = name
        self._interval_s = max(min_interval_s, float(interval_s))
        self._fn = fn
        self._diagnostics = diagnostics
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    @property
    def interval_s(self) -> float:
        return self._interval_s

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()

    def stop(self, timeout_s: float = 1.0) -> None:
        self._stop.set()
        t = self._thread
        if t is not None and t.is_alive():
            t.join(timeout=timeout_s)
        self._thread = None

    def _run(self) -> None:
        while not self._stop.wait(self._interval_s):
            with self._diagnostics.recover_and_log():
                self._fn()
