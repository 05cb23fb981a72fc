"""StackImpact: process-embedded telemetry agent (Agent.start, record_segment, record_error)."""

from stackimpact.agent import Agent
from stackimpact.config import AgentConfig, load_config
from stackimpact.errors import RecordedError
from stackimpact.version import version as __version__

__all__ = ["Agent", "AgentConfig", "RecordedError", "load_config", "__version__"]
