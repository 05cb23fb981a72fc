"""
Profiling reporters (CPU, allocation, block). They honor config.disable_profiling at start;
sample capture itself lives outside the agent core.
"""
from stackimpact._collaborators._base import AgentContext


class _ProfilerReporter:
    kind = "profiler"

    def __init__(self, context: AgentContext) -> None:
        self._context = context
        self.active = False

    def start(self) -> None:
        if self._context.config.disable_profiling:
            self._context.diagnostics.log("%s profiling disabled.", self.kind)
            return
        self.active = True
        self._context.diagnostics.log("%s profiler active.", self.kind)


class CPUReporter(_ProfilerReporter):
    kind = "CPU"


class AllocationReporter(_ProfilerReporter):
    kind = "Allocation"


class BlockReporter(_ProfilerReporter):
    kind = "Block"
