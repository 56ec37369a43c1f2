"""bcce - governed, resumable agent workflows.

Runs declarative workflows of prompt, cmd, agent and apply_diff steps,
enforcing per-step policies and recording every step durably so a failed
run can be resumed.
"""

from bcce.exceptions import (
    BcceError,
    ConfigError,
    ExecutionError,
    ExecutionTimeoutError,
    PersistenceError,
    PolicyViolationError,
    ResumeError,
    ValidationError,
    WorkflowNotFoundError,
)

__version__ = "0.1.0"

__all__ = [
    # Base exception
    "BcceError",
    # Definition
    "WorkflowNotFoundError",
    "ValidationError",
    "ConfigError",
    # Execution
    "PolicyViolationError",
    "ExecutionError",
    "ExecutionTimeoutError",
    # Persistence
    "PersistenceError",
    "ResumeError",
    "__version__",
]
