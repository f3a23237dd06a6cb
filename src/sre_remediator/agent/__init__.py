"""Agent: orchestration of analyze → remediate → verify, once or on a schedule."""

from sre_remediator.agent.loop import OrchestrationLoop
from sre_remediator.agent.orchestrator import (
    CycleReport,
    build_accessor,
    build_report,
    print_result,
    run_cycle,
)

__all__ = [
    "CycleReport",
    "OrchestrationLoop",
    "build_accessor",
    "build_report",
    "print_result",
    "run_cycle",
]
