"""
Shared fixtures: clean STACKIMPACT_* env, start-guard reset, temp data dir, agent factory.
"""
import time

import pytest

import stackimpact.storage as storage
from stackimpact._collaborators import AgentContext
from stackimpact.agent import Agent, _reset_start_guard_for_tests
from stackimpact.config import AgentConfig
from stackimpact.diagnostics import Diagnostics
from stackimpact.ids import IdGenerator

_ENV_KEYS = [
    "STACKIMPACT_DASHBOARD_ADDRESS",
    "STACKIMPACT_AGENT_KEY",
    "STACKIMPACT_APP_NAME",
    "STACKIMPACT_APP_VERSION",
    "STACKIMPACT_APP_ENVIRONMENT",
    "STACKIMPACT_HOST_NAME",
    "STACKIMPACT_DEBUG",
    "STACKIMPACT_DISABLE_PROFILING",
    "STACKIMPACT_DATA_DIR",
    "STACKIMPACT_REPORT_INTERVAL",
]


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    """Ensure none of the STACKIMPACT_* env vars leak into tests."""
    for key in _ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture(autouse=True)
def _reset_start_guard():
    """Every test may start its own agent."""
    _reset_start_guard_for_tests()
    yield
    _reset_start_guard_for_tests()


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Spool under tmp_path via STACKIMPACT_DATA_DIR; periodic reporting effectively off."""
    monkeypatch.setenv("STACKIMPACT_DATA_DIR", str(tmp_path))
    monkeypatch.setenv("STACKIMPACT_REPORT_INTERVAL", "3600")
    return tmp_path


@pytest.fixture
def make_agent(tmp_path):
    """Factory for agents spooling under tmp_path with a long report interval."""

    def _make(**options) -> Agent:
        options.setdefault("data_dir", tmp_path)
        options.setdefault("report_interval", 3600.0)
        return Agent(**options)

    return _make


@pytest.fixture
def context(tmp_path):
    """AgentContext for exercising collaborators without an agent."""
    config = AgentConfig(data_dir=tmp_path, report_interval=3600.0, app_name="test-app")
    return AgentContext(
        config=config,
        diagnostics=Diagnostics(config),
        run_id=IdGenerator()(),
        run_ts=int(time.time()),
    )


def spy_on_starts(agent: Agent, monkeypatch) -> list[str]:
    """Replace each collaborator's start with a recorder; returns the list of started names."""
    started: list[str] = []
    for name, collaborator in agent.collaborators:
        monkeypatch.setattr(collaborator, "start", lambda n=name: started.append(n))
    return started


def get_latest_run_id(config: AgentConfig) -> str:
    runs = storage.list_runs(limit=1, config=config)
    assert runs, "no spooled runs"
    return runs[0]["run_id"]


def spooled_topics(run_id: str, config: AgentConfig) -> list[dict]:
    """Flatten every queued message (topic, content) across all spooled upload envelopes."""
    out: list[dict] = []
    for envelope in storage.load_messages(run_id, config):
        out.extend(envelope.get("payload", {}).get("messages", []))
    return out


def stop_periodic_tasks(agent: Agent) -> None:
    """Stop the background tickers of a really-started agent so they do not outlive the test."""
    for _, collaborator in agent.collaborators:
        task = getattr(collaborator, "_task", None)
        if task is not None:
            task.stop()
