"""Resume controller: re-enter a recorded run at a chosen step.

A resumed run keeps its run id and artifact directory. Steps before the
resume point keep their records untouched; the resume point and every
later step are reset to pending and executed again by the engine.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timezone
from pathlib import Path

from bcce.core.models import RunState, RunStatus, StepStatus
from bcce.core.schemas import hash_document
from bcce.engine.engine import ExecutionEngine, RunHandle
from bcce.exceptions import ResumeError
from bcce.store.artifacts import ArtifactStore
from bcce.store.events import RunResumedEvent

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ResumeController:
    """Validates resume requests and hands the run back to the engine."""

    def __init__(
        self,
        store: ArtifactStore,
        engine: ExecutionEngine,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.engine = engine
        self._clock = clock

    def resume(self, run_id: str, from_step: str | None = None) -> RunHandle:
        """Resume a run.

        Args:
            run_id: Run to resume
            from_step: Step to restart at. Defaults to the first step that
                       has not succeeded.

        Raises:
            ResumeError: If the run is unknown, already succeeded, its
                         workflow changed, or the resume point is invalid
        """
        state = self.store.load_run_state(run_id)
        if state is None:
            raise ResumeError(run_id, "unknown run")

        definition = self.store.load_definition(run_id)
        if definition is None:
            raise ResumeError(run_id, "definition snapshot is missing")

        self._check_document(state)

        if state.status == RunStatus.SUCCEEDED:
            raise ResumeError(run_id, "run already succeeded")

        index = self._resume_index(state, from_step)
        resume_step = state.steps[index].step_id

        for execution in state.steps[index:]:
            execution.reset()
        state.status = RunStatus.RUNNING
        state.error = None
        state.failed_step = None
        state.resume_count += 1
        state.updated_at = self._clock()
        self.store.save_run_state(state)

        with self.store.journal(run_id) as journal:
            journal.write_event(
                RunResumedEvent(
                    run_id=run_id,
                    timestamp=state.updated_at,
                    from_step=resume_step,
                    resume_count=state.resume_count,
                )
            )
        logger.info("Resuming run %s from step '%s'", run_id, resume_step)

        return self.engine.continue_run(definition, state, index, store=self.store)

    def _check_document(self, state: RunState) -> None:
        if not state.workflow_path or not state.definition_hash:
            return
        path = Path(state.workflow_path)
        if not path.exists():
            raise ResumeError(state.run_id, f"workflow document no longer exists: {path}")
        if hash_document(path) != state.definition_hash:
            raise ResumeError(state.run_id, f"workflow document changed since the run started: {path}")

    def _resume_index(self, state: RunState, from_step: str | None) -> int:
        if from_step is None:
            for execution in state.steps:
                if execution.status != StepStatus.SUCCEEDED:
                    return execution.index
            raise ResumeError(state.run_id, "every step has already succeeded")

        try:
            index = state.index_of(from_step)
        except KeyError:
            raise ResumeError(state.run_id, f"unknown step '{from_step}'") from None

        for execution in state.steps[:index]:
            if execution.status != StepStatus.SUCCEEDED:
                raise ResumeError(
                    state.run_id,
                    f"step '{execution.step_id}' before '{from_step}' has not succeeded "
                    f"(status: {execution.status.value})",
                )
        return index
