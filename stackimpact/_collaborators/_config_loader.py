"""
Runtime switch loader. At start it logs the effective configuration; runtime switches
arrive later through apply(). The environment layer is load_config's job, so start()
never overrides what the owner set in code. Identity fields are never changed here.
"""
from typing import Any

from stackimpact.config import parse_bool, redacted_config

from stackimpact._collaborators._base import AgentContext

# Accepted spellings for the profiling switch in settings dicts.
_PROFILING_KEYS = ("disable_profiling", "profiling_disabled")


class ConfigLoader:
    def __init__(self, context: AgentContext) -> None:
        self._context = context
        self.loaded = False

    def start(self) -> None:
        self.loaded = True
        self._context.diagnostics.log("Effective configuration: %s", redacted_config(self._context.config))

    def apply(self, settings: dict[str, Any]) -> None:
        config = self._context.config
        for key in _PROFILING_KEYS:
            if key in settings:
                value = settings[key]
                config.disable_profiling = parse_bool(value) if isinstance(value, str) else bool(value)
                self._context.diagnostics.log("Profiling disabled: %s", config.disable_profiling)
