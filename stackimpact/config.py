"""Configuration for the StackImpact agent: dashboard, application identity, and runtime switches."""

import os
from dataclasses import asdict, dataclass, field, fields
from pathlib import Path
from typing import Any

from stackimpact.constants import (
    DEFAULT_REPORT_INTERVAL_S,
    MIN_REPORT_INTERVAL_S,
    REDACTED_MARKER,
    SAAS_DASHBOARD_ADDRESS,
)

_TRUE_VALUES = ("1", "true", "yes")


def _default_data_dir() -> Path:
    return Path.home() / ".stackimpact"


@dataclass
class AgentConfig:
    """
    Options shared by the agent and its collaborators.

    Plain mutable fields; the owning application sets them before Agent.start().
    Collaborators only read them (ConfigLoader may flip runtime switches).
    """

    dashboard_address: str = SAAS_DASHBOARD_ADDRESS
    agent_key: str = ""
    app_name: str = ""
    app_version: str = ""
    app_environment: str = ""
    host_name: str = ""
    debug: bool = False
    disable_profiling: bool = False
    data_dir: Path = field(default_factory=_default_data_dir)
    report_interval: float = DEFAULT_REPORT_INTERVAL_S


def config_field_names() -> list[str]:
    """Names of all AgentConfig fields, in declaration order."""
    return [f.name for f in fields(AgentConfig)]


def parse_bool(value: str) -> bool:
    return value.strip().lower() in _TRUE_VALUES


def redacted_config(config: AgentConfig) -> dict[str, Any]:
    """Config as a JSON-friendly dict with the agent key masked."""
    data = asdict(config)
    if data.get("agent_key"):
        data["agent_key"] = REDACTED_MARKER
    data["data_dir"] = str(config.data_dir)
    return data


def load_config(**overrides: Any) -> AgentConfig:
    """
    Load AgentConfig with precedence (highest first):
    1. Keyword overrides passed by the caller
    2. STACKIMPACT_* environment variables
    3. Built-in defaults
    """
    unknown = set(overrides) - set(config_field_names())
    if unknown:
        raise TypeError(f"unknown config option(s): {', '.join(sorted(unknown))}")

    config = AgentConfig()

    for name in ("dashboard_address", "agent_key", "app_name", "app_version", "app_environment", "host_name"):
        env_val = os.environ.get(f"STACKIMPACT_{name.upper()}")
        if env_val and env_val.strip():
            setattr(config, name, env_val.strip())

    env_debug = os.environ.get("STACKIMPACT_DEBUG")
    if env_debug is not None:
        config.debug = parse_bool(env_debug)

    env_profiling = os.environ.get("STACKIMPACT_DISABLE_PROFILING")
    if env_profiling is not None:
        config.disable_profiling = parse_bool(env_profiling)

    env_data = os.environ.get("STACKIMPACT_DATA_DIR")
    if env_data and env_data.strip():
        config.data_dir = Path(env_data.strip()).expanduser()

    env_interval = os.environ.get("STACKIMPACT_REPORT_INTERVAL")
    if env_interval is not None:
        try:
            config.report_interval = max(MIN_REPORT_INTERVAL_S, float(env_interval))
        except ValueError:
            pass

    for name, value in overrides.items():
        setattr(config, name, value)

    return config
