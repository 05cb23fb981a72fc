"""
Outbound transport: wraps payloads in the runtime envelope and delivers them.
Delivery target is the local spool (stackimpact.storage); remote upload is not implemented.
"""
import os
import sys
from typing import Any

import stackimpact.storage as storage
from stackimpact.version import version as agent_version

from stackimpact._collaborators._base import AgentContext


class Transport:
    def __init__(self, context: AgentContext) -> None:
        self._context = context
        self._run_created = False

    def envelope(self, payload: Any) -> dict[str, Any]:
        """Runtime metadata attached to every outbound payload."""
        config = self._context.config
        return {
            "runtime_type": "python",
            "runtime_version": f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}",
            "agent_version": agent_version,
            "app_name": config.app_name,
            "app_version": config.app_version,
            "app_environment": config.app_environment,
            "host_name": config.host_name,
            "process_id": os.getpid(),
            "run_id": self._context.run_id,
            "run_ts": self._context.run_ts,
            "sent_at": storage.utc_now_iso_ms_z(),
            "payload": payload,
        }

    def post(self, endpoint: str, payload: Any) -> None:
        """Deliver payload under endpoint. Raises OSError on spool failures."""
        config = self._context.config
        run_id = self._context.run_id
        if not self._run_created:
            storage.create_run(run_id, self._context.run_ts, config)
            self._run_created = True
        storage.append_message(run_id, {"endpoint": endpoint, **self.envelope(payload)}, config)
        self._context.diagnostics.log("Delivered %s to %s.", endpoint, config.data_dir)
