"""Execution engine: drives a workflow's steps through their state machine.

Per step::

    pending -> running -> succeeded | failed | policy_violation | skipped

Steps run strictly in document order, and a step starts only once every
step ``Workflow.predecessors`` names for it has succeeded. The first
``failed`` (fatal) or ``policy_violation`` step marks the run ``failed``
and every later step is skipped. A step's record and the run state are
written before the engine advances, so a crash always leaves a resumable
run on disk.

The engine holds no nondeterminism of its own: timestamps, monotonic time
and run ids come from injectable callables, and all other variation lives
in the executors.
"""

import hashlib
import logging
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from bcce.core.models import (
    RunState,
    RunStatus,
    StepCounters,
    StepExecution,
    StepStatus,
)
from bcce.core.schemas import (
    AgentStep,
    ApplyDiffStep,
    CmdStep,
    OnError,
    PromptStep,
    Workflow,
    hash_document,
)
from bcce.engine.deadline import Deadline
from bcce.engine.policy import PolicyGuard, to_exception, to_record
from bcce.engine.protocols import (
    AgentRequest,
    AgentResult,
    AgentRunner,
    CommandRunner,
    DiffApplier,
    ProposedEdits,
)
from bcce.env import RUN_ID_VARIABLE, find_placeholders, resolve_definition
from bcce.exceptions import (
    BcceError,
    ConfigError,
    ExecutionError,
    ExecutionTimeoutError,
    PolicyViolationError,
)
from bcce.store.artifacts import ArtifactStore, LocalArtifactStore, step_dir_name
from bcce.store.events import (
    RunCompletedEvent,
    RunFailedEvent,
    RunStartedEvent,
    StepCompletedEvent,
    StepFailedEvent,
    StepPolicyViolationEvent,
    StepSkippedEvent,
    StepStartedEvent,
)
from bcce.store.journal import JournalWriter

logger = logging.getLogger(__name__)

TRANSCRIPT_FILE = "transcript.log"
POLICY_FILE = "policy.json"
METRICS_FILE = "metrics.json"
PROPOSED_DIFF_FILE = "proposed.diff"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def default_run_id(content_hash: str, created_at: datetime) -> str:
    """Time-prefixed id, unique across processes.

    Example: ``20251207-215930-3f9a1c0b2e``
    """
    digest = hashlib.sha256(
        f"{content_hash}:{created_at.isoformat()}:{uuid.uuid4().hex}".encode()
    ).hexdigest()
    return f"{created_at:%Y%m%d-%H%M%S}-{digest[:10]}"


@dataclass
class RunHandle:
    """A run as seen by the caller once the engine returns."""

    run_id: str
    run_dir: Path
    state: RunState
    error: BcceError | None = None

    @property
    def status(self) -> RunStatus:
        return self.state.status

    @property
    def succeeded(self) -> bool:
        return self.state.status == RunStatus.SUCCEEDED

    def raise_for_status(self) -> None:
        """Re-raise the error that aborted the run, if any.

        Raises:
            PolicyViolationError: If a step breached its policy
            ExecutionError: If a step failed
        """
        if self.error is not None:
            raise self.error


class ExecutionEngine:
    """Runs validated, fully-resolved workflow definitions.

    Executors are injected, following the same composition-root approach
    as ``Container``, so tests can script every outcome.
    """

    def __init__(
        self,
        store: ArtifactStore,
        command_runner: CommandRunner,
        agent_runner: AgentRunner | None = None,
        diff_applier: DiffApplier | None = None,
        guard: PolicyGuard | None = None,
        base_dir: Path | None = None,
        approve_all: bool = False,
        clock: Callable[[], datetime] = _utcnow,
        monotonic: Callable[[], float] = time.monotonic,
        run_id_factory: Callable[[str, datetime], str] = default_run_id,
        store_factory: Callable[[Path], ArtifactStore] = LocalArtifactStore,
    ) -> None:
        """Initialize engine with its collaborators.

        Args:
            store: Artifact store for runs
            command_runner: Executor for cmd steps
            agent_runner: Executor for prompt and agent steps
            diff_applier: Executor for apply_diff steps
            guard: Policy guard (default PolicyGuard())
            base_dir: Working directory for executors. Prompt files are
                      resolved against the workflow document's directory,
                      or against base_dir when there is no document
            approve_all: Treat every apply_diff step as pre-approved
            clock: Source of wall-clock timestamps
            monotonic: Source of monotonic time for deadlines and durations
            run_id_factory: Builds a run id from a content hash and time
            store_factory: Builds a store for a workflow's ``env.artifacts_dir``
        """
        self.store = store
        self.command_runner = command_runner
        self.agent_runner = agent_runner
        self.diff_applier = diff_applier
        self.guard = guard or PolicyGuard()
        self.base_dir = base_dir or Path.cwd()
        self.approve_all = approve_all
        self._clock = clock
        self._monotonic = monotonic
        self._run_id_factory = run_id_factory
        self._store_factory = store_factory

    # Entry points

    def run(self, definition: Workflow, workflow_path: Path | None = None) -> RunHandle:
        """Launch a fresh run.

        Args:
            definition: Validated workflow with placeholders resolved
                        (``${RUN_ID}`` may remain; it is filled in here)
            workflow_path: Document the definition came from; its hash is
                           recorded so a later resume can detect drift

        Raises:
            ConfigError: Before any step runs, if the definition cannot run
            PersistenceError: If the run cannot be recorded
        """
        self.preflight(definition, workflow_path=workflow_path)

        created_at = self._clock()
        definition_hash = hash_document(workflow_path) if workflow_path else None
        content_hash = definition_hash or hashlib.sha256(
            definition.model_dump_json().encode()
        ).hexdigest()
        run_id = self._run_id_factory(content_hash, created_at)
        definition = resolve_definition(definition, {RUN_ID_VARIABLE: run_id}, reserved=())
        store = self._store_for(definition, run_id)

        state = RunState(
            run_id=run_id,
            workflow_name=definition.name,
            workflow_path=str(workflow_path.resolve()) if workflow_path else None,
            definition_hash=definition_hash,
            created_at=created_at,
            updated_at=created_at,
            steps=[
                StepExecution(
                    step_id=step.id,
                    step_type=step.type,
                    index=index,
                    artifact_dir=step_dir_name(index, step.id, len(definition.steps)),
                )
                for index, step in enumerate(definition.steps)
            ],
        )
        run_dir = store.create_run(state, definition)
        if run_dir.resolve() != self.store.run_dir(run_id).resolve():
            self.store.link_run(run_id, run_dir)
        logger.info("Starting run %s of '%s'", run_id, definition.name)

        journal = store.journal(run_id)
        journal.write_event(
            RunStartedEvent(
                run_id=run_id,
                timestamp=created_at,
                workflow_name=definition.name,
                workflow_path=state.workflow_path,
                definition_hash=definition_hash,
                step_ids=definition.step_ids(),
            )
        )
        return self._drive(store, journal, definition, state, 0)

    def continue_run(
        self,
        definition: Workflow,
        state: RunState,
        start_index: int,
        store: ArtifactStore | None = None,
    ) -> RunHandle:
        """Drive an existing run from ``start_index`` onward.

        Steps before ``start_index`` are neither executed nor rewritten.
        Used by the resume controller after it has reset the run state.
        """
        workflow_path = Path(state.workflow_path) if state.workflow_path else None
        self.preflight(definition, start_index, workflow_path)
        store = store or self.store
        return self._drive(store, store.journal(state.run_id), definition, state, start_index)

    def preflight(
        self, definition: Workflow, start_index: int = 0, workflow_path: Path | None = None
    ) -> None:
        """Check that the steps from ``start_index`` can run at all.

        Raises:
            ConfigError: Unresolved placeholders, missing executors, or
                         missing prompt files
        """
        unresolved = find_placeholders(definition) - {RUN_ID_VARIABLE}
        if unresolved:
            raise ConfigError.unresolved(sorted(unresolved))

        for step in definition.steps[start_index:]:
            if isinstance(step, PromptStep | AgentStep) and self.agent_runner is None:
                raise ConfigError(
                    f"Step '{step.id}' needs an agent runner; set BCCE_AGENT_COMMAND"
                )
            if isinstance(step, ApplyDiffStep) and self.diff_applier is None:
                raise ConfigError(f"Step '{step.id}' needs a diff applier")

            prompt_file = getattr(step, "prompt_file", None)
            if prompt_file:
                path = self.prompt_dir(workflow_path) / prompt_file
                if not path.is_file():
                    raise ConfigError(f"Step '{step.id}': prompt file not found: {path}")

    # Sequencing

    def _store_for(self, definition: Workflow, run_id: str) -> ArtifactStore:
        if not definition.env.artifacts_dir:
            return self.store
        path = Path(definition.env.artifacts_dir)
        if not path.is_absolute():
            path = self.base_dir / path
        # `.bcce_runs/${RUN_ID}` names the run directory itself.
        return self._store_factory(path.parent if path.name == run_id else path)

    def _drive(
        self,
        store: ArtifactStore,
        journal: JournalWriter,
        definition: Workflow,
        state: RunState,
        start_index: int,
    ) -> RunHandle:
        run_deadline = Deadline.after(definition.env.max_runtime_seconds, self._monotonic)
        run_error: BcceError | None = None

        try:
            for index in range(start_index, len(definition.steps)):
                step = definition.steps[index]
                execution = state.steps[index]

                blocker = self._unfinished_predecessor(definition, state, step.id)
                if blocker is not None and state.status != RunStatus.FAILED:
                    state.status = RunStatus.FAILED
                    state.failed_step = blocker
                    state.error = f"step '{step.id}' needs '{blocker}' to succeed first"
                    run_error = ExecutionError(state.error, step_id=step.id)

                if state.status == RunStatus.FAILED:
                    self._skip(store, journal, state, execution)
                    continue

                error = self._run_step(store, journal, definition, state, step, execution, run_deadline)
                if execution.status in (StepStatus.FAILED, StepStatus.POLICY_VIOLATION):
                    state.status = RunStatus.FAILED
                    state.failed_step = step.id
                    state.error = execution.error
                    run_error = error

            now = self._clock()
            if state.status != RunStatus.FAILED:
                state.status = RunStatus.SUCCEEDED
                state.error = None
                state.failed_step = None
                journal.write_event(
                    RunCompletedEvent(run_id=state.run_id, timestamp=now, step_count=len(state.steps))
                )
                logger.info("Run %s succeeded", state.run_id)
            else:
                journal.write_event(
                    RunFailedEvent(
                        run_id=state.run_id,
                        timestamp=now,
                        error=state.error or "run failed",
                        failed_step=state.failed_step,
                    )
                )
                logger.warning("Run %s failed at step '%s'", state.run_id, state.failed_step)

            state.updated_at = now
            store.save_run_state(state)
        finally:
            journal.close()

        return RunHandle(
            run_id=state.run_id,
            run_dir=store.run_dir(state.run_id),
            state=state,
            error=run_error,
        )

    @staticmethod
    def _unfinished_predecessor(definition: Workflow, state: RunState, step_id: str) -> str | None:
        for predecessor in definition.predecessors(step_id):
            execution = state.get_step(predecessor)
            if execution is None or execution.status != StepStatus.SUCCEEDED:
                return predecessor
        return None

    def _run_step(
        self,
        store: ArtifactStore,
        journal: JournalWriter,
        definition: Workflow,
        state: RunState,
        step: PromptStep | CmdStep | AgentStep | ApplyDiffStep,
        execution: StepExecution,
        run_deadline: Deadline,
    ) -> BcceError | None:
        execution.reset()
        execution.status = StepStatus.RUNNING
        execution.attempt += 1
        execution.started_at = self._clock()
        self._persist(store, state, execution)
        journal.write_event(
            StepStartedEvent(
                run_id=state.run_id,
                timestamp=execution.started_at,
                step_id=step.id,
                step_type=step.type,
                attempt=execution.attempt,
            )
        )
        logger.info("Step %s (%s) started", step.id, step.type)

        error: BcceError | None = None
        try:
            if run_deadline.expired():
                raise ExecutionTimeoutError(definition.env.max_runtime_seconds or 0, step.id)
            self._dispatch(store, definition, state, step, execution, run_deadline)
            execution.status = StepStatus.SUCCEEDED
        except PolicyViolationError as e:
            error = e if e.step_id == step.id else e.for_step(step.id)
            execution.status = StepStatus.POLICY_VIOLATION
            execution.violation = to_record(error)
            execution.error = error.reason
        except ExecutionError as e:
            error = e
            if e.step_id is None:
                error = ExecutionError(e.reason, step_id=step.id)
            execution.status = StepStatus.FAILED
            execution.error = e.reason

        execution.ended_at = self._clock()
        self._persist(store, state, execution)
        self._journal_outcome(journal, state, execution)
        return error

    def _skip(
        self,
        store: ArtifactStore,
        journal: JournalWriter,
        state: RunState,
        execution: StepExecution,
    ) -> None:
        execution.reset()
        execution.status = StepStatus.SKIPPED
        execution.ended_at = self._clock()
        self._persist(store, state, execution)
        reason = f"run failed at step '{state.failed_step}'"
        journal.write_event(
            StepSkippedEvent(
                run_id=state.run_id,
                timestamp=execution.ended_at,
                step_id=execution.step_id,
                reason=reason,
            )
        )
        logger.info("Step %s skipped: %s", execution.step_id, reason)

    def _persist(self, store: ArtifactStore, state: RunState, execution: StepExecution) -> None:
        store.append_step_record(state.run_id, execution)
        state.updated_at = self._clock()
        store.save_run_state(state)

    def _journal_outcome(
        self, journal: JournalWriter, state: RunState, execution: StepExecution
    ) -> None:
        timestamp = execution.ended_at or self._clock()
        if execution.status == StepStatus.SUCCEEDED:
            journal.write_event(
                StepCompletedEvent(
                    run_id=state.run_id,
                    timestamp=timestamp,
                    step_id=execution.step_id,
                    duration_seconds=execution.duration_seconds,
                    non_fatal_failure=execution.non_fatal_failure,
                    warning=execution.warning,
                )
            )
            logger.info("Step %s succeeded", execution.step_id)
        elif execution.status == StepStatus.POLICY_VIOLATION and execution.violation:
            journal.write_event(
                StepPolicyViolationEvent(
                    run_id=state.run_id,
                    timestamp=timestamp,
                    step_id=execution.step_id,
                    dimension=execution.violation.dimension,
                    value=execution.violation.value,
                    limit=execution.violation.limit,
                )
            )
            logger.warning("Step %s policy violation: %s", execution.step_id, execution.error)
        else:
            journal.write_event(
                StepFailedEvent(
                    run_id=state.run_id,
                    timestamp=timestamp,
                    step_id=execution.step_id,
                    error=execution.error or "step failed",
                    duration_seconds=execution.duration_seconds,
                )
            )
            logger.warning("Step %s failed: %s", execution.step_id, execution.error)

    # Dispatch

    def _dispatch(
        self,
        store: ArtifactStore,
        definition: Workflow,
        state: RunState,
        step: PromptStep | CmdStep | AgentStep | ApplyDiffStep,
        execution: StepExecution,
        run_deadline: Deadline,
    ) -> None:
        # Every step kind must have a branch here.
        if isinstance(step, CmdStep):
            self._run_cmd(store, state, step, execution, run_deadline)
        elif isinstance(step, PromptStep):
            self._run_prompt(store, definition, state, step, execution, run_deadline)
        elif isinstance(step, AgentStep):
            self._run_agent(store, definition, state, step, execution, run_deadline)
        elif isinstance(step, ApplyDiffStep):
            self._run_apply_diff(store, state, step, execution)
        else:
            raise TypeError(f"Unhandled step type: {type(step).__name__}")

    def _run_cmd(
        self,
        store: ArtifactStore,
        state: RunState,
        step: CmdStep,
        execution: StepExecution,
        run_deadline: Deadline,
    ) -> None:
        result = self.command_runner.run(step.command, run_deadline, cwd=self.base_dir)

        execution.exit_code = result.exit_code
        execution.counters = StepCounters(
            elapsed_seconds=result.duration_seconds, commands=[step.command]
        )
        transcript = (
            f"$ {step.command}\n\n=== STDOUT ===\n{result.stdout}\n\n=== STDERR ===\n{result.stderr}"
        )
        store.write_step_artifact(state.run_id, execution, TRANSCRIPT_FILE, transcript)
        self._write_metrics(store, state, execution)

        if result.timed_out:
            raise ExecutionTimeoutError(round(result.duration_seconds, 3), step.id)

        if result.exit_code != 0:
            if step.on_error == OnError.CONTINUE:
                execution.non_fatal_failure = True
                execution.warning = (
                    f"command exited with code {result.exit_code}; continuing (on_error: continue)"
                )
                logger.warning("Step %s: %s", step.id, execution.warning)
                return
            raise ExecutionError(f"command exited with code {result.exit_code}", step.id)

    def _run_prompt(
        self,
        store: ArtifactStore,
        definition: Workflow,
        state: RunState,
        step: PromptStep,
        execution: StepExecution,
        run_deadline: Deadline,
    ) -> None:
        request = AgentRequest(
            step_id=step.id,
            step_type=step.type,
            model=definition.model,
            prompt=self._read_prompt(state, step.prompt_file),
            capabilities=step.available_tools,
            inputs=step.inputs,
        )
        start = self._monotonic()
        result = self._agent_runner().run(request, run_deadline, None)
        self._record_agent_result(store, state, execution, result, self._monotonic() - start)

        if result.timed_out:
            raise ExecutionTimeoutError(round(execution.counters.elapsed_seconds, 3), step.id)
        if not result.ok:
            raise ExecutionError(result.error or "agent runner reported an error", step.id)

    def _run_agent(
        self,
        store: ArtifactStore,
        definition: Workflow,
        state: RunState,
        step: AgentStep,
        execution: StepExecution,
        run_deadline: Deadline,
    ) -> None:
        policy = step.policy
        store.write_step_artifact(state.run_id, execution, POLICY_FILE, policy.model_dump_json(indent=2))

        step_deadline = run_deadline.earliest(Deadline.after(policy.timeout_seconds, self._monotonic))
        request = AgentRequest(
            step_id=step.id,
            step_type=step.type,
            model=definition.model,
            prompt=self._read_prompt(state, step.prompt_file) if step.prompt_file else None,
            capabilities=step.available_tools,
            policy=policy,
        )

        latest = StepCounters()

        def monitor(counters: StepCounters) -> None:
            latest.files_touched = list(counters.files_touched)
            latest.edits_applied = counters.edits_applied
            latest.commands = list(counters.commands)
            latest.elapsed_seconds = counters.elapsed_seconds
            self.guard.enforce(policy, counters, step.id)

        start = self._monotonic()
        try:
            result = self._agent_runner().run(request, step_deadline, monitor)
        except PolicyViolationError as e:
            latest.elapsed_seconds = self._monotonic() - start
            execution.counters = latest
            store.write_step_artifact(state.run_id, execution, TRANSCRIPT_FILE, e.transcript or "")
            if e.proposed_diff:
                store.write_step_artifact(state.run_id, execution, PROPOSED_DIFF_FILE, e.proposed_diff)
            self._write_metrics(store, state, execution)
            raise

        self._record_agent_result(store, state, execution, result, self._monotonic() - start)
        if result.proposed_diff:
            store.write_step_artifact(state.run_id, execution, PROPOSED_DIFF_FILE, result.proposed_diff)

        check = self.guard.check(policy, execution.counters)
        if check.violation is not None:
            raise to_exception(check.violation, step.id)

        if result.timed_out:
            if run_deadline.expired():
                raise ExecutionTimeoutError(definition.env.max_runtime_seconds or 0, step.id)
            raise PolicyViolationError(
                "timeout_seconds",
                round(execution.counters.elapsed_seconds, 3),
                policy.timeout_seconds,
                step_id=step.id,
            )
        if not result.ok:
            raise ExecutionError(result.error or "agent runner reported an error", step.id)

    def _run_apply_diff(
        self,
        store: ArtifactStore,
        state: RunState,
        step: ApplyDiffStep,
        execution: StepExecution,
    ) -> None:
        # Edits proposed by agent steps since the previous apply_diff step.
        diffs: list[str] = []
        sources: list[str] = []
        for prior in reversed(state.steps[: execution.index]):
            if prior.step_type == "apply_diff":
                break
            if prior.step_type != "agent" or prior.status != StepStatus.SUCCEEDED:
                continue
            diff = store.read_step_artifact(state.run_id, prior, PROPOSED_DIFF_FILE)
            if diff:
                diffs.insert(0, diff)
                sources.insert(0, prior.step_id)

        edits = ProposedEdits(diff="".join(diffs), source_steps=sources)
        approve = step.approve or self.approve_all
        if self.diff_applier is None:
            raise ConfigError(f"Step '{step.id}' needs a diff applier")
        result = self.diff_applier.apply(edits, approve)

        lines = [
            f"sources: {', '.join(sources) or '-'}",
            f"pre-approved: {approve}",
            f"applied: {result.applied}",
        ]
        if result.reason:
            lines.append(f"reason: {result.reason}")
        store.write_step_artifact(state.run_id, execution, TRANSCRIPT_FILE, "\n".join(lines) + "\n")

        if not result.applied:
            raise ExecutionError(result.reason or "edits were not applied", step.id)

    # Helpers

    def _agent_runner(self) -> AgentRunner:
        if self.agent_runner is None:
            raise ConfigError("No agent runner configured; set BCCE_AGENT_COMMAND")
        return self.agent_runner

    def prompt_dir(self, workflow_path: Path | None) -> Path:
        """Directory prompt_file paths are relative to."""
        return workflow_path.resolve().parent if workflow_path else self.base_dir

    def _read_prompt(self, state: RunState, prompt_file: str) -> str:
        workflow_path = Path(state.workflow_path) if state.workflow_path else None
        path = self.prompt_dir(workflow_path) / prompt_file
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ExecutionError(f"cannot read prompt file {path}: {e}") from e

    def _record_agent_result(
        self,
        store: ArtifactStore,
        state: RunState,
        execution: StepExecution,
        result: AgentResult,
        elapsed: float,
    ) -> None:
        execution.counters = StepCounters(
            files_touched=result.files_touched,
            edits_applied=result.edits_applied,
            commands=result.commands,
            elapsed_seconds=elapsed,
        )
        store.write_step_artifact(state.run_id, execution, TRANSCRIPT_FILE, result.transcript)
        self._write_metrics(store, state, execution)

    def _write_metrics(self, store: ArtifactStore, state: RunState, execution: StepExecution) -> None:
        if execution.counters is None:
            return
        store.write_step_artifact(
            state.run_id, execution, METRICS_FILE, execution.counters.model_dump_json(indent=2)
        )
