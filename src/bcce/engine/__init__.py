"""Execution engine for workflows.

This package drives workflow runs with clean architecture:

- ExecutionEngine: Sequences steps and persists every transition
- ResumeController: Re-enters a recorded run at a chosen step
- PolicyGuard: Compares live counters against an agent step's policy
- CommandRunner / AgentRunner / DiffApplier: Executor protocols
- Container: Binds the protocols to subprocess-backed implementations
"""

from bcce.engine.backends import GitDiffApplier, SubprocessAgentRunner, SubprocessCommandRunner
from bcce.engine.container import Container
from bcce.engine.deadline import Deadline
from bcce.engine.engine import ExecutionEngine, RunHandle
from bcce.engine.policy import GuardResult, PolicyGuard, glob_match
from bcce.engine.protocols import (
    AgentRequest,
    AgentResult,
    AgentRunner,
    ApprovalHandler,
    CommandResult,
    CommandRunner,
    DiffApplier,
    DiffResult,
    ProposedEdits,
)
from bcce.engine.resume import ResumeController

__all__ = [
    # Core classes
    "ExecutionEngine",
    "RunHandle",
    "ResumeController",
    "Container",
    "Deadline",
    "PolicyGuard",
    "GuardResult",
    "glob_match",
    # Protocols
    "CommandRunner",
    "AgentRunner",
    "DiffApplier",
    "ApprovalHandler",
    "CommandResult",
    "AgentRequest",
    "AgentResult",
    "ProposedEdits",
    "DiffResult",
    # Implementations
    "SubprocessCommandRunner",
    "SubprocessAgentRunner",
    "GitDiffApplier",
]
