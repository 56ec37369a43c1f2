"""Tests for resuming recorded runs."""

import json
from collections.abc import Callable
from pathlib import Path

import pytest
from factories import cmd, document

from bcce.core.models import RunStatus, StepStatus
from bcce.engine import CommandResult, ExecutionEngine, ResumeController
from bcce.engine.mocks import ScriptedCommandRunner
from bcce.exceptions import PersistenceError, ResumeError
from bcce.store import JournalReader, LocalArtifactStore
from bcce.store.artifacts import JOURNAL_FILE, RECORD_FILE

FAIL = CommandResult(exit_code=1, stdout="", stderr="boom", duration_seconds=0.1)
OK = CommandResult(exit_code=0, stdout="fixed", stderr="", duration_seconds=0.1)


@pytest.fixture
def failed_run(
    make_engine: Callable[..., ExecutionEngine],
    command_runner: ScriptedCommandRunner,
    write_workflow: Callable[..., Path],
    load_workflow: Callable[[Path], object],
):
    """A run of [A, B, C] where B failed and C was skipped."""
    command_runner.set_result("step-b", FAIL)
    path = write_workflow(document(cmd("A", "step-a"), cmd("B", "step-b"), cmd("C", "step-c")))
    engine = make_engine()
    handle = engine.run(load_workflow(path), workflow_path=path)
    assert handle.status == RunStatus.FAILED
    return engine, handle, path


@pytest.fixture
def controller(failed_run, store: LocalArtifactStore) -> ResumeController:
    engine, _, _ = failed_run
    return ResumeController(store=store, engine=engine)


class TestResume:
    """Tests for successful resumes."""

    def test_resume_from_failed_step(
        self,
        failed_run,
        controller: ResumeController,
        command_runner: ScriptedCommandRunner,
    ) -> None:
        """Test A stays untouched while B is re-executed fresh."""
        _, first, _ = failed_run
        a_record = (first.run_dir / "steps" / "01-A" / RECORD_FILE).read_text()
        a_started = first.state.get_step("A").started_at

        command_runner.set_result("step-b", OK)
        command_runner.calls.clear()
        handle = controller.resume(first.run_id, "B")

        assert handle.run_id == first.run_id
        assert handle.run_dir == first.run_dir
        assert handle.succeeded
        assert command_runner.commands == ["step-b", "step-c"]

        a = handle.state.get_step("A")
        assert a.started_at == a_started
        assert a.attempt == 1
        assert (first.run_dir / "steps" / "01-A" / RECORD_FILE).read_text() == a_record

        b = handle.state.get_step("B")
        assert b.status == StepStatus.SUCCEEDED
        assert b.attempt == 2
        assert handle.state.resume_count == 1

    def test_previous_attempt_archived(
        self, failed_run, controller: ResumeController, command_runner: ScriptedCommandRunner
    ) -> None:
        """Test B's failed attempt is kept in its history."""
        _, first, _ = failed_run
        command_runner.set_result("step-b", OK)
        controller.resume(first.run_id, "B")

        history = (first.run_dir / "steps" / "02-B" / "history.jsonl").read_text().splitlines()
        assert json.loads(history[-1])["status"] == "failed"
        assert json.loads(history[-1])["attempt"] == 1

    def test_default_resume_point(
        self, failed_run, controller: ResumeController, command_runner: ScriptedCommandRunner
    ) -> None:
        """Test resume defaults to the first step that has not succeeded."""
        _, first, _ = failed_run
        command_runner.set_result("step-b", OK)
        command_runner.calls.clear()
        handle = controller.resume(first.run_id)
        assert handle.succeeded
        assert command_runner.commands == ["step-b", "step-c"]

    def test_resume_from_earlier_step(
        self, failed_run, controller: ResumeController, command_runner: ScriptedCommandRunner
    ) -> None:
        """Test resuming at A re-runs every step."""
        _, first, _ = failed_run
        command_runner.set_result("step-b", OK)
        command_runner.calls.clear()
        handle = controller.resume(first.run_id, "A")
        assert command_runner.commands == ["step-a", "step-b", "step-c"]
        assert handle.state.get_step("A").attempt == 2

    def test_failing_again(self, failed_run, controller: ResumeController) -> None:
        """Test a step that fails again leaves the run resumable."""
        _, first, _ = failed_run
        handle = controller.resume(first.run_id, "B")
        assert handle.status == RunStatus.FAILED
        assert [s.status.value for s in handle.state.steps] == ["succeeded", "failed", "skipped"]
        assert handle.state.resume_count == 1

        handle = controller.resume(first.run_id, "B")
        assert handle.state.resume_count == 2
        assert handle.state.get_step("B").attempt == 3

    def test_resume_journaled(
        self, failed_run, controller: ResumeController, command_runner: ScriptedCommandRunner
    ) -> None:
        """Test the resume is recorded in the run journal."""
        _, first, _ = failed_run
        command_runner.set_result("step-b", OK)
        controller.resume(first.run_id, "B")

        events = JournalReader(first.run_dir / JOURNAL_FILE).read_events()
        resumed = [e for e in events if e["event_type"] == "run.resumed"]
        assert resumed[0]["from_step"] == "B"
        assert events[-1]["event_type"] == "run.completed"


class TestResumeErrors:
    """Tests for rejected resume requests."""

    def test_unknown_run(self, controller: ResumeController) -> None:
        """Test an unknown run id is a ResumeError."""
        with pytest.raises(ResumeError, match="unknown run"):
            controller.resume("missing-run", "B")

    def test_unknown_step(self, failed_run, controller: ResumeController) -> None:
        """Test a step id not in the recorded workflow is a ResumeError."""
        _, first, _ = failed_run
        with pytest.raises(ResumeError, match="unknown step 'Z'"):
            controller.resume(first.run_id, "Z")

    def test_earlier_step_not_succeeded(self, failed_run, controller: ResumeController) -> None:
        """Test steps before the resume point must have succeeded."""
        _, first, _ = failed_run
        with pytest.raises(ResumeError, match="'B' before 'C'"):
            controller.resume(first.run_id, "C")

    def test_changed_document(self, failed_run, controller: ResumeController) -> None:
        """Test a modified workflow document is never silently resumed."""
        _, first, path = failed_run
        path.write_text(path.read_text() + "\n# edited\n")
        with pytest.raises(ResumeError, match="changed"):
            controller.resume(first.run_id, "B")

        state = controller.store.load_run_state(first.run_id)
        assert state.resume_count == 0
        assert state.get_step("B").status == StepStatus.FAILED

    def test_deleted_document(self, failed_run, controller: ResumeController) -> None:
        """Test a missing workflow document blocks the resume."""
        _, first, path = failed_run
        path.unlink()
        with pytest.raises(ResumeError, match="no longer exists"):
            controller.resume(first.run_id, "B")

    def test_succeeded_run(
        self,
        make_engine: Callable[..., ExecutionEngine],
        store: LocalArtifactStore,
        write_workflow: Callable[..., Path],
        load_workflow: Callable[[Path], object],
    ) -> None:
        """Test a run that already succeeded cannot be resumed."""
        path = write_workflow(document(cmd("A")), name="ok.yml")
        engine = make_engine()
        handle = engine.run(load_workflow(path), workflow_path=path)
        with pytest.raises(ResumeError, match="already succeeded"):
            ResumeController(store=store, engine=engine).resume(handle.run_id)


class FailingStore(LocalArtifactStore):
    """Store whose writes for one step fail while ``armed`` is set."""

    def __init__(self, root: Path, fail_on: str, step_id: str) -> None:
        super().__init__(root)
        self.fail_on = fail_on
        self.step_id = step_id
        self.armed = True

    def append_step_record(self, run_id, execution) -> None:
        if self.armed and self.fail_on == "append_step_record" and execution.step_id == self.step_id:
            raise PersistenceError(str(self.root), "disk full")
        super().append_step_record(run_id, execution)

    def save_run_state(self, state) -> None:
        execution = state.get_step(self.step_id)
        if (
            self.armed
            and self.fail_on == "save_run_state"
            and execution is not None
            and execution.status == StepStatus.RUNNING
        ):
            raise PersistenceError(str(self.root), "disk full")
        super().save_run_state(state)


class TestInterruptedRun:
    """Tests for runs stopped by a failed write."""

    @pytest.mark.parametrize("fail_on", ["append_step_record", "save_run_state"])
    def test_failed_write_stops_run_and_resumes(
        self,
        fail_on: str,
        make_engine: Callable[..., ExecutionEngine],
        command_runner: ScriptedCommandRunner,
        write_workflow: Callable[..., Path],
        load_workflow: Callable[[Path], object],
        tmp_path: Path,
    ) -> None:
        """Test the error propagates, no later step runs, and the run resumes."""
        store = FailingStore(tmp_path / "runs", fail_on, "B")
        engine = make_engine(store=store)
        path = write_workflow(document(cmd("A", "step-a"), cmd("B", "step-b"), cmd("C", "step-c")))

        with pytest.raises(PersistenceError):
            engine.run(load_workflow(path), workflow_path=path)
        assert command_runner.commands == ["step-a"]

        state = store.load_run_state("run-1")
        assert state.status == RunStatus.RUNNING
        assert state.get_step("A").status == StepStatus.SUCCEEDED
        assert state.get_step("B").status == StepStatus.PENDING
        assert state.get_step("C").status == StepStatus.PENDING

        store.armed = False
        handle = ResumeController(store=store, engine=engine).resume("run-1")
        assert handle.succeeded
        assert command_runner.commands == ["step-a", "step-b", "step-c"]
        assert [s.status for s in store.load_run_state("run-1").steps] == [StepStatus.SUCCEEDED] * 3
