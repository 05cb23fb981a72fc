"""
Collaborators the agent creates at construction and starts once.

Each holds an AgentContext (shared config, diagnostics, run identity, overhead lock),
never the agent. Start order is decided by stackimpact.agent.Agent.
"""
from stackimpact._collaborators._base import AgentContext, Collaborator, PeriodicTask
from stackimpact._collaborators._config_loader import ConfigLoader
from stackimpact._collaborators._errors import ErrorReporter
from stackimpact._collaborators._message_queue import MessageQueue
from stackimpact._collaborators._process import ProcessReporter
from stackimpact._collaborators._profilers import AllocationReporter, BlockReporter, CPUReporter
from stackimpact._collaborators._segments import SegmentReporter
from stackimpact._collaborators._transport import Transport

__all__ = [
    "AgentContext",
    "Collaborator",
    "PeriodicTask",
    "ConfigLoader",
    "Transport",
    "MessageQueue",
    "ProcessReporter",
    "CPUReporter",
    "AllocationReporter",
    "BlockReporter",
    "SegmentReporter",
    "ErrorReporter",
]
