"""Tests for the artifact store and run journal."""

import json
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from factories import cmd, document

from bcce.core.models import RunState, StepExecution, StepStatus
from bcce.exceptions import PersistenceError
from bcce.store import JournalReader, LocalArtifactStore, LocalJournalWriter, step_dir_name
from bcce.store.artifacts import HISTORY_FILE, LOCATION_FILE, RECORD_FILE, RUN_STATE_FILE
from bcce.store.events import RunStartedEvent, StepSkippedEvent
from bcce.validation import validate_workflow

NOW = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_state(run_id: str = "run-1", created_at: datetime = NOW) -> RunState:
    return RunState(
        run_id=run_id,
        workflow_name="test workflow",
        created_at=created_at,
        steps=[
            StepExecution(step_id="a", step_type="cmd", index=0, artifact_dir=step_dir_name(0, "a")),
            StepExecution(step_id="b/c", step_type="cmd", index=1, artifact_dir=step_dir_name(1, "b/c")),
        ],
    )


@pytest.fixture
def definition():
    return validate_workflow(document(cmd("a"), cmd("b/c")))


def test_step_dir_name() -> None:
    """Test step directories sort in sequence order with safe names."""
    assert step_dir_name(0, "lint") == "steps/01-lint"
    assert step_dir_name(9, "b/c") == "steps/10-b_c"


def test_step_dir_name_long_workflow() -> None:
    """Test the prefix widens with the step count so names still sort."""
    assert step_dir_name(8, "a", 120) == "steps/009-a"
    assert step_dir_name(99, "a", 120) == "steps/100-a"
    names = [step_dir_name(i, "s", 120) for i in range(120)]
    assert sorted(names) == names


class TestLocalArtifactStore:
    """Tests for LocalArtifactStore."""

    def test_create_and_load(self, store: LocalArtifactStore, definition) -> None:
        """Test a created run can be loaded back."""
        run_dir = store.create_run(make_state(), definition)
        assert (run_dir / RUN_STATE_FILE).exists()

        loaded = store.load_run_state("run-1")
        assert loaded is not None
        assert loaded.workflow_name == "test workflow"
        assert [s.step_id for s in loaded.steps] == ["a", "b/c"]
        assert store.load_definition("run-1") == definition

    def test_create_refuses_existing_run(self, store: LocalArtifactStore, definition) -> None:
        """Test run directories are never reused."""
        store.create_run(make_state(), definition)
        with pytest.raises(PersistenceError):
            store.create_run(make_state(), definition)

    def test_unknown_run(self, store: LocalArtifactStore) -> None:
        """Test unknown and unsafe run ids load as None."""
        assert store.load_run_state("nope") is None
        assert store.load_run_state("../etc") is None
        assert store.load_definition("nope") is None

    def test_corrupt_run_state(self, store: LocalArtifactStore, definition) -> None:
        """Test an unreadable run-state record raises PersistenceError."""
        run_dir = store.create_run(make_state(), definition)
        (run_dir / RUN_STATE_FILE).write_text("{not json")
        with pytest.raises(PersistenceError):
            store.load_run_state("run-1")

    def test_step_record_history(self, store: LocalArtifactStore, definition) -> None:
        """Test earlier attempts are archived, never deleted."""
        state = make_state()
        store.create_run(state, definition)
        execution = state.steps[0]

        execution.attempt = 1
        execution.status = StepStatus.RUNNING
        store.append_step_record("run-1", execution)
        execution.status = StepStatus.FAILED
        store.append_step_record("run-1", execution)

        step_dir = store.step_dir("run-1", execution)
        assert json.loads((step_dir / RECORD_FILE).read_text())["status"] == "failed"
        assert not (step_dir / HISTORY_FILE).exists()

        execution.attempt = 2
        execution.status = StepStatus.SUCCEEDED
        store.append_step_record("run-1", execution)

        history = store.read_step_history("run-1", execution)
        assert len(history) == 1
        assert history[0].attempt == 1
        assert history[0].status == StepStatus.FAILED

    def test_step_artifacts(self, store: LocalArtifactStore, definition) -> None:
        """Test named artifacts are written into the step directory."""
        state = make_state()
        store.create_run(state, definition)
        path = store.write_step_artifact("run-1", state.steps[1], "transcript.log", "hello")
        assert path == store.run_dir("run-1") / "steps" / "02-b_c" / "transcript.log"
        assert store.read_step_artifact("run-1", state.steps[1], "transcript.log") == "hello"
        assert store.read_step_artifact("run-1", state.steps[1], "missing.txt") is None

    def test_no_temp_files_left(self, store: LocalArtifactStore, definition) -> None:
        """Test atomic writes leave only the final files."""
        state = make_state()
        run_dir = store.create_run(state, definition)
        store.save_run_state(state)
        assert not [p for p in run_dir.iterdir() if p.name.endswith(".tmp")]

    def test_list_runs_newest_first(self, store: LocalArtifactStore, definition) -> None:
        """Test runs are listed newest first."""
        store.create_run(make_state("old", NOW), definition)
        store.create_run(make_state("new", NOW + timedelta(hours=1)), definition)
        assert [s.run_id for s in store.list_runs()] == ["new", "old"]

    def test_list_runs_skips_unreadable(self, store: LocalArtifactStore, definition) -> None:
        """Test an unreadable run does not hide the others."""
        store.create_run(make_state("good"), definition)
        bad_dir = store.create_run(make_state("bad"), definition)
        (bad_dir / RUN_STATE_FILE).write_text("garbage")
        assert [s.run_id for s in store.list_runs()] == ["good"]

    def test_linked_run(self, store: LocalArtifactStore, definition, tmp_path: Path) -> None:
        """Test a run stored elsewhere is found through its location record."""
        elsewhere = LocalArtifactStore(tmp_path / "elsewhere")
        run_dir = elsewhere.create_run(make_state(), definition)
        store.link_run("run-1", run_dir)

        assert (store.root / "run-1" / LOCATION_FILE).exists()
        assert store.run_dir("run-1") == run_dir.resolve()
        assert store.load_run_state("run-1").workflow_name == "test workflow"
        assert store.load_definition("run-1") == definition
        assert [s.run_id for s in store.list_runs()] == ["run-1"]

        state = store.load_run_state("run-1")
        state.steps[0].status = StepStatus.SUCCEEDED
        store.save_run_state(state)
        assert elsewhere.load_run_state("run-1").steps[0].status == StepStatus.SUCCEEDED

    def test_corrupt_location(self, store: LocalArtifactStore) -> None:
        """Test an unreadable location record raises PersistenceError."""
        (store.root / "run-1").mkdir(parents=True)
        (store.root / "run-1" / LOCATION_FILE).write_text("{not json")
        with pytest.raises(PersistenceError):
            store.load_run_state("run-1")
        assert store.list_runs() == []

    def test_list_runs_missing_root(self, tmp_path: Path) -> None:
        """Test a store with no runs directory lists nothing."""
        assert LocalArtifactStore(tmp_path / "absent").list_runs() == []


class TestJournal:
    """Tests for the append-only journal."""

    def test_write_and_read(self, tmp_path: Path) -> None:
        """Test events round-trip with their version envelope."""
        path = tmp_path / "events.jsonl"
        with LocalJournalWriter(path) as journal:
            journal.write_event(RunStartedEvent(run_id="r", workflow_name="wf", step_ids=["a"]))
            journal.write_event(StepSkippedEvent(run_id="r", step_id="a", reason="run failed"))

        first = json.loads(path.read_text().splitlines()[0])
        assert first["version"] == 1

        events = JournalReader(path).read_events()
        assert [e["event_type"] for e in events] == ["run.started", "step.skipped"]
        assert events[1]["reason"] == "run failed"

    def test_corrupt_lines_skipped(self, tmp_path: Path) -> None:
        """Test a torn final line does not hide earlier events."""
        path = tmp_path / "events.jsonl"
        with LocalJournalWriter(path) as journal:
            journal.write_event(RunStartedEvent(run_id="r", workflow_name="wf"))
        with open(path, "a") as f:
            f.write('{"version": 1, "event": {"event_ty')

        assert len(JournalReader(path).read_events()) == 1

    def test_missing_journal(self, tmp_path: Path) -> None:
        """Test a missing journal reads as empty."""
        assert JournalReader(tmp_path / "none.jsonl").read_events() == []
