"""
Agent tests: construction defaults, single-start guard, collaborator start order,
host name resolution, the recording facade (gating, forwarding, fault isolation),
and exit-time delivery of pending records.
"""
import os
import re
import socket
import subprocess
import sys
import textwrap
import threading
import time
from pathlib import Path

import pytest

from stackimpact import Agent, AgentConfig, RecordedError
from stackimpact.constants import SAAS_DASHBOARD_ADDRESS
from stackimpact.storage import list_runs, load_messages
from tests.conftest import get_latest_run_id, spooled_topics, spy_on_starts, stop_periodic_tasks

_HEX40 = re.compile(r"^[0-9a-f]{40}$")

_START_ORDER = [
    "config_loader",
    "message_queue",
    "process_reporter",
    "cpu_reporter",
    "allocation_reporter",
    "block_reporter",
    "segment_reporter",
    "error_reporter",
]


class _Recorder:
    def __init__(self):
        self.calls = []

    def __call__(self, *args):
        self.calls.append(args)


# ------------------------------------------------------------------
# Construction & configuration
# ------------------------------------------------------------------

def test_new_agent_has_neutral_defaults():
    """Fresh agent: default dashboard, empty identity fields, not started, 40-hex run id."""
    before = int(time.time())
    agent = Agent()

    assert agent.dashboard_address == SAAS_DASHBOARD_ADDRESS
    assert agent.agent_key == ""
    assert agent.app_name == ""
    assert agent.host_name == ""
    assert agent.debug is False
    assert agent.disable_profiling is False
    assert agent.started is False
    assert _HEX40.match(agent.run_id)
    assert before <= agent.run_ts <= int(time.time())
    assert [name for name, _ in agent.collaborators] == _START_ORDER
    assert all(c is not None for _, c in agent.collaborators)


def test_options_and_attributes_share_config():
    """Keyword options land on config; attribute writes go to the same config object."""
    config = AgentConfig()
    agent = Agent(config, agent_key="key-1", app_name="MyApp")

    assert agent.config is config
    assert config.agent_key == "key-1"
    assert agent.app_name == "MyApp"

    agent.app_environment = "staging"
    agent.debug = True
    assert config.app_environment == "staging"
    assert config.debug is True


def test_unknown_option_raises_type_error():
    with pytest.raises(TypeError, match="unknown agent option"):
        Agent(no_such_option=1)


def test_run_id_is_read_only_and_new_ids_differ(make_agent):
    agent = make_agent()
    run_id = agent.run_id
    with pytest.raises(AttributeError):
        agent.run_id = "x"  # type: ignore[misc]
    ids = {agent.new_id() for _ in range(5)}
    assert len(ids) == 5
    assert run_id not in ids
    assert agent.run_id == run_id


def test_from_env_reads_environment(monkeypatch, temp_data_dir):
    monkeypatch.setenv("STACKIMPACT_APP_NAME", "EnvApp")
    agent = Agent.from_env(app_version="2.0")
    assert agent.app_name == "EnvApp"
    assert agent.app_version == "2.0"
    assert agent.data_dir == temp_data_dir


# ------------------------------------------------------------------
# Startup lifecycle
# ------------------------------------------------------------------

def test_start_runs_collaborators_once_in_fixed_order(make_agent, monkeypatch):
    agent = make_agent(host_name="h")
    started = spy_on_starts(agent, monkeypatch)

    agent.start()

    assert agent.started is True
    assert started == _START_ORDER


def test_second_start_is_noop_and_warns_once(make_agent, monkeypatch, capsys):
    """Second start: no collaborator restarts, exactly one 'already been initialized' line."""
    agent = make_agent(debug=True, host_name="h")
    started = spy_on_starts(agent, monkeypatch)

    agent.start()
    first = capsys.readouterr().out
    assert "Agent started." in first

    agent.start()
    second = capsys.readouterr().out

    assert started == _START_ORDER
    assert second.count("Another agent has already been initialized.") == 1
    assert "Agent started." not in second


def test_second_agent_in_process_does_not_start(make_agent, monkeypatch):
    first = make_agent(host_name="h")
    second = make_agent(host_name="h")
    spy_on_starts(first, monkeypatch)
    second_started = spy_on_starts(second, monkeypatch)

    first.start()
    second.start()

    assert first.started is True
    assert second.started is False
    assert second_started == []


def test_second_start_is_silent_without_debug(make_agent, monkeypatch, capsys):
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    agent.start()
    agent.start()
    assert capsys.readouterr().out == ""


def test_explicit_host_name_is_not_overwritten(make_agent, monkeypatch):
    monkeypatch.setattr(socket, "gethostname", lambda: "detected-host")
    agent = make_agent(host_name="configured-host")
    spy_on_starts(agent, monkeypatch)

    agent.start()

    assert agent.host_name == "configured-host"


def test_empty_host_name_is_detected(make_agent, monkeypatch):
    monkeypatch.setattr(socket, "gethostname", lambda: "detected-host")
    agent = make_agent()
    spy_on_starts(agent, monkeypatch)

    agent.start()

    assert agent.host_name == "detected-host"


def test_host_name_failure_is_tolerated(make_agent, monkeypatch, capsys):
    """gethostname raising OSError: error logged (debug), empty host name, collaborators still start."""

    def _fail():
        raise OSError("no hostname")

    monkeypatch.setattr(socket, "gethostname", _fail)
    agent = make_agent(debug=True)
    started = spy_on_starts(agent, monkeypatch)

    agent.start()

    assert agent.host_name == ""
    assert started == _START_ORDER
    out = capsys.readouterr().out
    assert "Error" in out
    assert "no hostname" in out


def test_failing_collaborator_does_not_stop_the_sequence(make_agent, monkeypatch):
    agent = make_agent(host_name="h")
    started = spy_on_starts(agent, monkeypatch)
    boom = RuntimeError("cpu reporter broke")

    def _fail():
        raise boom

    monkeypatch.setattr(agent._cpu_reporter, "start", _fail)

    agent.start()

    assert agent.started is True
    assert agent.start_errors == {"cpu_reporter": boom}
    assert started == [n for n in _START_ORDER if n != "cpu_reporter"]


def test_concurrent_starts_claim_the_guard_once(make_agent, monkeypatch):
    """Agents started from racing threads: exactly one starts, its collaborators start once."""
    n = 8
    agents = [make_agent(host_name="h") for _ in range(n)]
    started_names = [spy_on_starts(agent, monkeypatch) for agent in agents]
    barrier = threading.Barrier(n)

    def _start(agent):
        barrier.wait()
        agent.start()

    threads = [threading.Thread(target=_start, args=(agent,)) for agent in agents]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert sum(agent.started for agent in agents) == 1
    assert [names for names in started_names if names] == [_START_ORDER]


def test_profiling_switch_set_in_code_survives_start(make_agent, monkeypatch):
    monkeypatch.setenv("STACKIMPACT_DISABLE_PROFILING", "0")
    agent = make_agent(host_name="h", disable_profiling=True)
    agent.start()
    try:
        assert agent.disable_profiling is True
        assert agent._cpu_reporter.active is False
    finally:
        stop_periodic_tasks(agent)


def test_zero_report_interval_does_not_spin(make_agent):
    agent = make_agent(host_name="h", report_interval=0)
    agent.start()
    try:
        time.sleep(0.5)
        runs = list_runs(limit=10, config=agent.config)
        envelopes = load_messages(agent.run_id, agent.config) if runs else []
        assert len(envelopes) <= 1
    finally:
        stop_periodic_tasks(agent)


# ------------------------------------------------------------------
# Recording facade
# ------------------------------------------------------------------

def test_recording_before_start_reaches_no_collaborator(make_agent, monkeypatch):
    agent = make_agent()
    segments = _Recorder()
    errors = _Recorder()
    monkeypatch.setattr(agent._segment_reporter, "record_segment", segments)
    monkeypatch.setattr(agent._error_reporter, "record_error", errors)

    agent.record_segment(["db", "query"], 120)
    agent.record_error("db", 42, 0)

    assert segments.calls == []
    assert errors.calls == []


def test_record_segment_forwards_unchanged(make_agent, monkeypatch):
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    segments = _Recorder()
    monkeypatch.setattr(agent._segment_reporter, "record_segment", segments)
    agent.start()

    path = ["db", "query"]
    agent.record_segment(path, 120)

    assert len(segments.calls) == 1
    got_path, got_duration = segments.calls[0]
    assert got_path is path
    assert got_duration == 120


def test_record_error_wraps_non_exception_value(make_agent, monkeypatch):
    """record_error('db', 42, 0) -> group 'db', error text '42', skip_frames 1."""
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    errors = _Recorder()
    monkeypatch.setattr(agent._error_reporter, "record_error", errors)
    agent.start()

    agent.record_error("db", 42, 0)

    assert len(errors.calls) == 1
    group, err, skip = errors.calls[0]
    assert group == "db"
    assert isinstance(err, RecordedError)
    assert str(err) == "42"
    assert skip == 1


def test_record_error_passes_exception_through(make_agent, monkeypatch):
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    errors = _Recorder()
    monkeypatch.setattr(agent._error_reporter, "record_error", errors)
    agent.start()

    exc = ValueError("bad input")
    agent.record_error("validation", exc)

    assert errors.calls[0][1] is exc


@pytest.mark.parametrize("skip_frames", [0, 1, 5])
def test_record_error_adds_one_skip_frame(make_agent, monkeypatch, skip_frames):
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    errors = _Recorder()
    monkeypatch.setattr(agent._error_reporter, "record_error", errors)
    agent.start()

    agent.record_error("g", "oops", skip_frames)

    assert errors.calls[0][2] == skip_frames + 1


def test_recorded_error_location_points_at_caller(make_agent, monkeypatch):
    agent = make_agent(host_name="h")
    spy_on_starts(agent, monkeypatch)
    agent.start()

    agent.record_error("g", "oops")

    entries = agent._error_reporter.snapshot()
    assert len(entries) == 1
    assert "test_agent.py" in entries[0]["location"]
    assert "test_recorded_error_location_points_at_caller" in entries[0]["location"]


def test_facade_never_raises_on_collaborator_fault(make_agent, monkeypatch, capsys):
    agent = make_agent(host_name="h", debug=True)
    spy_on_starts(agent, monkeypatch)
    agent.start()
    capsys.readouterr()

    def _boom(*args):
        raise RuntimeError("reporter fault")

    monkeypatch.setattr(agent._segment_reporter, "record_segment", _boom)
    monkeypatch.setattr(agent._error_reporter, "record_error", _boom)

    assert agent.record_segment(["a"], 1) is None
    assert agent.record_error("g", 1) is None
    out = capsys.readouterr().out
    assert out.count("Recovered from panic in agent: reporter fault") == 2


# ------------------------------------------------------------------
# End to end with real collaborators
# ------------------------------------------------------------------

def test_started_agent_spools_segments_and_errors(make_agent):
    agent = make_agent(host_name="h", app_name="e2e")
    agent.start()

    agent.record_segment(["db", "query"], 120)
    agent.record_segment(["db", "query"], 80)
    agent.record_error("db", 42)
    delivered = agent.flush()

    assert delivered == 2
    config = agent.config
    assert get_latest_run_id(config) == agent.run_id
    by_topic = {m["topic"]: m["content"] for m in spooled_topics(agent.run_id, config)}
    assert by_topic["segments"] == [{"path": ["db", "query"], "count": 2, "total": 200, "max": 120}]
    assert by_topic["errors"][0]["group"] == "db"
    assert by_topic["errors"][0]["message"] == "42"


def test_flush_before_start_delivers_nothing(make_agent):
    agent = make_agent()
    assert agent.flush() == 0


def test_pending_records_are_spooled_at_interpreter_exit(tmp_path):
    """A process that records and exits without flush() still spools segments and errors."""
    code = textwrap.dedent(
        f"""
        from pathlib import Path
        from stackimpact import Agent

        agent = Agent(data_dir=Path({str(tmp_path)!r}), report_interval=3600, host_name="h")
        agent.start()
        agent.record_segment(["db", "query"], 120)
        agent.record_error("db", 42)
        """
    )
    repo_root = Path(__file__).resolve().parent.parent
    python_path = [str(repo_root)]
    if os.environ.get("PYTHONPATH"):
        python_path.append(os.environ["PYTHONPATH"])
    env = {**os.environ, "PYTHONPATH": os.pathsep.join(python_path)}

    result = subprocess.run(
        [sys.executable, "-c", code], env=env, capture_output=True, text=True, timeout=60
    )

    assert result.returncode == 0, result.stderr
    config = AgentConfig(data_dir=tmp_path)
    run_id = get_latest_run_id(config)
    by_topic = {m["topic"]: m["content"] for m in spooled_topics(run_id, config)}
    assert by_topic["segments"] == [{"path": ["db", "query"], "count": 1, "total": 120, "max": 120}]
    assert by_topic["errors"][0]["message"] == "42"
