"""
The agent coordinator: configuration, single-start guard, collaborator startup, and the
recording facade (record_segment, record_error) called from instrumented code.

Public methods never raise into the host application; faults are logged (debug-gated)
and suppressed by Diagnostics.recover_and_log.
Depends: stackimpact.config, stackimpact.diagnostics, stackimpact.errors, stackimpact.ids,
stackimpact._collaborators.
"""
import atexit
import socket
import threading
import time
from typing import Any, Sequence

from stackimpact.config import AgentConfig, config_field_names, load_config
from stackimpact.diagnostics import Diagnostics
from stackimpact.errors import normalize_error
from stackimpact.ids import IdGenerator

from stackimpact._collaborators import (
    AgentContext,
    AllocationReporter,
    BlockReporter,
    Collaborator,
    ConfigLoader,
    CPUReporter,
    ErrorReporter,
    MessageQueue,
    ProcessReporter,
    SegmentReporter,
    Transport,
)


class _StartGuard:
    """Process-wide one-shot flag; claim() is an atomic check-and-set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed = False

    @property
    def claimed(self) -> bool:
        return self._claimed

    def claim(self) -> bool:
        """Return True for the first caller only."""
        with self._lock:
            if self._claimed:
                return False
            self._claimed = True
            return True

    def reset(self) -> None:
        with self._lock:
            self._claimed = False


_start_guard = _StartGuard()


def _reset_start_guard_for_tests() -> None:
    """Allow another agent to start. For tests only."""
    _start_guard.reset()


class _ConfigOption:
    """Agent attribute backed by the AgentConfig field of the same name."""

    def __set_name__(self, owner: type, name: str) -> None:
        self._name = name

    def __get__(self, obj: Any, objtype: type | None = None) -> Any:
        if obj is None:
            return self
        return getattr(obj.config, self._name)

    def __set__(self, obj: Any, value: Any) -> None:
        setattr(obj.config, self._name, value)


class Agent:
    """
    Owns the configuration and every collaborator; starts them once per process.

    Usage:
        agent = Agent(agent_key="...", app_name="MyApp")
        agent.start()
        agent.record_segment(["db", "query"], 120)
        agent.record_error("db", exc)
    """

    dashboard_address = _ConfigOption()
    agent_key = _ConfigOption()
    app_name = _ConfigOption()
    app_version = _ConfigOption()
    app_environment = _ConfigOption()
    host_name = _ConfigOption()
    debug = _ConfigOption()
    disable_profiling = _ConfigOption()
    data_dir = _ConfigOption()
    report_interval = _ConfigOption()

    def __init__(self, config: AgentConfig | None = None, **options: Any) -> None:
        self.config = config if config is not None else AgentConfig()
        known = config_field_names()
        for name, value in options.items():
            if name not in known:
                raise TypeError(f"unknown agent option: {name}")
            setattr(self.config, name, value)

        self._run_ts = int(time.time())
        self.overhead_lock = threading.Lock()
        self._started = False
        self.start_errors: dict[str, BaseException] = {}
        self._diagnostics = Diagnostics(self.config)
        self._ids = IdGenerator()
        self._run_id = self._ids()

        context = AgentContext(
            config=self.config,
            diagnostics=self._diagnostics,
            run_id=self._run_id,
            run_ts=self._run_ts,
            overhead_lock=self.overhead_lock,
        )
        self._transport = Transport(context)
        self._config_loader = ConfigLoader(context)
        self._message_queue = MessageQueue(context, self._transport)
        self._process_reporter = ProcessReporter(context, self._message_queue)
        self._cpu_reporter = CPUReporter(context)
        self._allocation_reporter = AllocationReporter(context)
        self._block_reporter = BlockReporter(context)
        self._segment_reporter = SegmentReporter(context, self._message_queue)
        self._error_reporter = ErrorReporter(context, self._message_queue)

    @classmethod
    def from_env(cls, **overrides: Any) -> "Agent":
        """Agent configured from STACKIMPACT_* environment variables plus overrides."""
        return cls(load_config(**overrides))

    @property
    def run_id(self) -> str:
        return self._run_id

    @property
    def run_ts(self) -> int:
        return self._run_ts

    @property
    def started(self) -> bool:
        return self._started

    @property
    def collaborators(self) -> list[tuple[str, Collaborator]]:
        """Collaborators in start order."""
        return [
            ("config_loader", self._config_loader),
            ("message_queue", self._message_queue),
            ("process_reporter", self._process_reporter),
            ("cpu_reporter", self._cpu_reporter),
            ("allocation_reporter", self._allocation_reporter),
            ("block_reporter", self._block_reporter),
            ("segment_reporter", self._segment_reporter),
            ("error_reporter", self._error_reporter),
        ]

    def new_id(self) -> str:
        """Fresh 40-char hex correlation id."""
        return self._ids()

    def start(self) -> None:
        """
        Start the agent. Only the first start in the process has any effect; later
        calls log a warning (debug-gated) and return.
        A collaborator that raises during start is recorded in start_errors and skipped.
        Registers flush() to run at interpreter exit so pending aggregates are spooled.
        """
        with self._diagnostics.recover_and_log():
            if not _start_guard.claim():
                self._diagnostics.warning(
                    "Agent configuration failed. Another agent has already been initialized."
                )
                return
            self._started = True

            if not self.config.host_name:
                self.config.host_name = self._resolve_host_name()

            for name, collaborator in self.collaborators:
                try:
                    collaborator.start()
                except Exception as e:
                    self.start_errors[name] = e
                    self._diagnostics.error(e)

            atexit.register(self.flush)
            self._diagnostics.log("Agent started.")

    def _resolve_host_name(self) -> str:
        try:
            return socket.gethostname()
        except OSError as e:
            self._diagnostics.error(e)
            return ""

    def record_segment(self, path: Sequence[str], duration: int) -> None:
        """Report a timed unit of work identified by a label path. No-op until started."""
        with self._diagnostics.recover_and_log():
            if not self._started:
                return
            self._segment_reporter.record_segment(path, duration)

    def record_error(self, group: str, payload: Any, skip_frames: int = 0) -> None:
        """
        Report an error under group. payload may be an exception or any value
        (wrapped so its str() is the error text). skip_frames is relative to the caller.
        No-op until started.
        """
        with self._diagnostics.recover_and_log():
            if not self._started:
                return
            err = normalize_error(payload)
            self._error_reporter.record_error(group, err, skip_frames + 1)

    def flush(self) -> int:
        """Queue pending segment and error aggregates and deliver everything queued now."""
        with self._diagnostics.recover_and_log():
            if not self._started:
                return 0
            self._segment_reporter.report()
            self._error_reporter.report()
            return self._message_queue.flush()
        return 0
