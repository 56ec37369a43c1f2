"""Composition root for engine dependency injection.

Centralizes the creation and wiring of engine components.
This is the single place where concrete implementations are bound to protocols.

Usage:
    # Default usage (production)
    engine = Container.engine(base_dir=Path.cwd())

    # Testing with mocks
    Container.set_command_runner(ScriptedCommandRunner())
    Container.set_agent_runner(ScriptedAgentRunner())
    engine = Container.engine(base_dir=tmp_path)

    # Reset to defaults
    Container.reset()
"""

from pathlib import Path

from bcce.engine.approval import ConsoleApprovalHandler
from bcce.engine.backends import GitDiffApplier, SubprocessAgentRunner, SubprocessCommandRunner
from bcce.engine.engine import ExecutionEngine
from bcce.engine.protocols import AgentRunner, ApprovalHandler, CommandRunner, DiffApplier
from bcce.engine.resume import ResumeController
from bcce.env import get_settings
from bcce.store.artifacts import LocalArtifactStore


class Container:
    """Service container for engine dependencies.

    Provides lazy initialization of default implementations and
    allows overriding for testing purposes.
    """

    _command_runner: CommandRunner | None = None
    _agent_runner: AgentRunner | None = None
    _diff_applier: DiffApplier | None = None
    _approval_handler: ApprovalHandler | None = None

    @classmethod
    def command_runner(cls) -> CommandRunner:
        """Get the command runner.

        Returns SubprocessCommandRunner by default.
        """
        if cls._command_runner is None:
            cls._command_runner = SubprocessCommandRunner()
        return cls._command_runner

    @classmethod
    def agent_runner(cls, base_dir: Path | None = None) -> AgentRunner | None:
        """Get the agent runner.

        Returns a SubprocessAgentRunner for ``BCCE_AGENT_COMMAND``, or None
        when no agent command is configured.
        """
        if cls._agent_runner is not None:
            return cls._agent_runner
        command = get_settings().agent_command
        if not command:
            return None
        return SubprocessAgentRunner(command, cwd=base_dir)

    @classmethod
    def approval_handler(cls) -> ApprovalHandler:
        """Get the approval handler.

        Returns ConsoleApprovalHandler by default.
        """
        if cls._approval_handler is None:
            cls._approval_handler = ConsoleApprovalHandler()
        return cls._approval_handler

    @classmethod
    def diff_applier(cls, base_dir: Path | None = None) -> DiffApplier:
        """Get the diff applier.

        Returns a GitDiffApplier working in ``base_dir`` by default.
        """
        if cls._diff_applier is not None:
            return cls._diff_applier
        return GitDiffApplier(cwd=base_dir, approval=cls.approval_handler())

    @classmethod
    def store(cls, runs_dir: Path | None = None) -> LocalArtifactStore:
        """Artifact store rooted at ``runs_dir`` (default ``BCCE_RUNS_DIR``)."""
        return LocalArtifactStore(runs_dir or get_settings().runs_dir)

    @classmethod
    def engine(
        cls,
        base_dir: Path | None = None,
        runs_dir: Path | None = None,
        approve_all: bool = False,
    ) -> ExecutionEngine:
        """Create an ExecutionEngine with current dependencies.

        This is the main factory method for workflow execution.
        """
        base_dir = base_dir or get_settings().workspace or Path.cwd()
        return ExecutionEngine(
            store=cls.store(runs_dir),
            command_runner=cls.command_runner(),
            agent_runner=cls.agent_runner(base_dir),
            diff_applier=cls.diff_applier(base_dir),
            base_dir=base_dir,
            approve_all=approve_all,
        )

    @classmethod
    def resume_controller(
        cls,
        base_dir: Path | None = None,
        runs_dir: Path | None = None,
        approve_all: bool = False,
    ) -> ResumeController:
        """Create a ResumeController sharing the engine's store."""
        engine = cls.engine(base_dir=base_dir, runs_dir=runs_dir, approve_all=approve_all)
        return ResumeController(store=engine.store, engine=engine)

    @classmethod
    def set_command_runner(cls, runner: CommandRunner | None) -> None:
        """Override the command runner.

        Pass None to reset to default on next access.
        """
        cls._command_runner = runner

    @classmethod
    def set_agent_runner(cls, runner: AgentRunner | None) -> None:
        cls._agent_runner = runner

    @classmethod
    def set_diff_applier(cls, applier: DiffApplier | None) -> None:
        cls._diff_applier = applier

    @classmethod
    def set_approval_handler(cls, handler: ApprovalHandler | None) -> None:
        cls._approval_handler = handler

    @classmethod
    def reset(cls) -> None:
        """Reset all overrides to defaults.

        Call this in test teardown to ensure clean state.
        """
        cls._command_runner = None
        cls._agent_runner = None
        cls._diff_applier = None
        cls._approval_handler = None
