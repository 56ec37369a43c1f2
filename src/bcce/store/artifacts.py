"""Artifact store: durable per-run, per-step records.

Layout for one run::

    <root>/<run_id>/
        run-state.json          status and timestamps of every step
        definition.json         resolved workflow the run executes
        events.jsonl            append-only journal
        steps/01-<step_id>/
            record.json         latest StepExecution for the step
            history.jsonl       earlier records, appended before overwrite
            transcript.log      executor output
            policy.json         policy in force (agent steps)
            metrics.json        resource counters
            proposed.diff       edits proposed by an agent step

A run kept outside the store root (``env.artifacts_dir``) is linked from
``<root>/<run_id>/location.json``, so it can still be found, shown and
resumed through the store.

Every file is written to a temporary sibling, fsynced and renamed into
place, so a crash leaves either the old or the new content. Nothing is
ever deleted. Runs live in disjoint directories, so concurrent runs never
write the same file.
"""

import json
import logging
import os
import re
import tempfile
from pathlib import Path
from typing import Protocol, runtime_checkable

from pydantic import ValidationError as PydanticValidationError

from bcce.core.models import RunState, StepExecution
from bcce.core.schemas import Workflow
from bcce.exceptions import PersistenceError
from bcce.store.journal import LocalJournalWriter

logger = logging.getLogger(__name__)

RUN_STATE_FILE = "run-state.json"
DEFINITION_FILE = "definition.json"
JOURNAL_FILE = "events.jsonl"
RECORD_FILE = "record.json"
HISTORY_FILE = "history.jsonl"
LOCATION_FILE = "location.json"

_UNSAFE = re.compile(r"[^A-Za-z0-9._-]")


def step_dir_name(index: int, step_id: str, step_count: int = 0) -> str:
    """Relative directory for a step.

    The numeric prefix is padded to the width of ``step_count`` (at least
    two digits) so directory names sort in sequence order.
    """
    width = max(2, len(str(step_count)))
    return f"steps/{index + 1:0{width}d}-{_UNSAFE.sub('_', step_id)}"


def _atomic_write(path: Path, content: str) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, path)
        except BaseException:
            if os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise
    except OSError as e:
        raise PersistenceError(str(path), str(e)) from e


def _append_line(path: Path, line: str) -> None:
    try:
        with open(path, "a", encoding="utf-8") as f:
            f.write(line.rstrip("\n") + "\n")
            f.flush()
            os.fsync(f.fileno())
    except OSError as e:
        raise PersistenceError(str(path), str(e)) from e


@runtime_checkable
class ArtifactStore(Protocol):
    """Protocol for run persistence.

    The engine and the resume controller only need these operations,
    enabling different storage strategies (local disk, object storage).
    """

    def create_run(self, state: RunState, definition: Workflow) -> Path:
        """Create the run directory and write the initial records."""
        ...

    def load_run_state(self, run_id: str) -> RunState | None:
        """Load a run's state, or None if the run is unknown."""
        ...

    def save_run_state(self, state: RunState) -> None:
        """Durably overwrite the run-state record."""
        ...

    def append_step_record(self, run_id: str, execution: StepExecution) -> None:
        """Durably record a step execution, keeping earlier records."""
        ...

    def write_step_artifact(
        self, run_id: str, execution: StepExecution, name: str, content: str
    ) -> Path:
        """Write a named artifact into the step directory."""
        ...

    def read_step_artifact(self, run_id: str, execution: StepExecution, name: str) -> str | None:
        """Read a named artifact, or None if absent."""
        ...

    def load_definition(self, run_id: str) -> Workflow | None:
        """Load the definition snapshot a run executes."""
        ...

    def journal(self, run_id: str) -> LocalJournalWriter:
        """Open the run's journal for appending."""
        ...

    def run_dir(self, run_id: str) -> Path:
        """Directory holding a run's artifacts."""
        ...

    def link_run(self, run_id: str, run_dir: Path) -> None:
        """Record that a run's artifacts live in another directory."""
        ...


class LocalArtifactStore:
    """Local filesystem artifact store rooted at a runs directory."""

    def __init__(self, root: Path) -> None:
        self.root = Path(root)

    def run_dir(self, run_id: str) -> Path:
        """Directory holding a run's artifacts, following a location record.

        Raises:
            PersistenceError: If the location record cannot be read
        """
        local = self.root / run_id
        location = local / LOCATION_FILE
        if not location.exists() or (local / RUN_STATE_FILE).exists():
            return local
        try:
            return Path(json.loads(location.read_text(encoding="utf-8"))["run_dir"])
        except (OSError, json.JSONDecodeError, KeyError, TypeError) as e:
            raise PersistenceError(str(location), f"unreadable run location: {e}") from e

    def link_run(self, run_id: str, run_dir: Path) -> None:
        """Point ``<root>/<run_id>`` at a run stored elsewhere."""
        _atomic_write(
            self.root / run_id / LOCATION_FILE,
            json.dumps({"run_id": run_id, "run_dir": str(Path(run_dir).resolve())}, indent=2),
        )

    def step_dir(self, run_id: str, execution: StepExecution) -> Path:
        return self.run_dir(run_id) / execution.artifact_dir

    def create_run(self, state: RunState, definition: Workflow) -> Path:
        """Create a new run directory.

        Raises:
            PersistenceError: If the run directory already exists or cannot be written
        """
        run_dir = self.run_dir(state.run_id)
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            run_dir.mkdir()
        except OSError as e:
            raise PersistenceError(str(run_dir), str(e)) from e

        _atomic_write(
            run_dir / DEFINITION_FILE,
            json.dumps(definition.to_document(), indent=2),
        )
        self.save_run_state(state)
        logger.info("Created run %s at %s", state.run_id, run_dir)
        return run_dir

    def save_run_state(self, state: RunState) -> None:
        _atomic_write(self.run_dir(state.run_id) / RUN_STATE_FILE, state.model_dump_json(indent=2))

    def load_run_state(self, run_id: str) -> RunState | None:
        """Load a run's state.

        Returns:
            RunState, or None if no such run exists

        Raises:
            PersistenceError: If the record exists but cannot be read
        """
        if not _is_safe_id(run_id):
            return None
        path = self.run_dir(run_id) / RUN_STATE_FILE
        if not path.exists():
            return None
        try:
            return RunState.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            raise PersistenceError(str(path), f"unreadable run state: {e}") from e

    def load_definition(self, run_id: str) -> Workflow | None:
        if not _is_safe_id(run_id):
            return None
        path = self.run_dir(run_id) / DEFINITION_FILE
        if not path.exists():
            return None
        try:
            return Workflow.model_validate_json(path.read_text(encoding="utf-8"))
        except (OSError, PydanticValidationError) as e:
            raise PersistenceError(str(path), f"unreadable definition snapshot: {e}") from e

    def append_step_record(self, run_id: str, execution: StepExecution) -> None:
        step_dir = self.step_dir(run_id, execution)
        record_path = step_dir / RECORD_FILE
        if record_path.exists():
            try:
                previous = json.loads(record_path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError) as e:
                raise PersistenceError(str(record_path), str(e)) from e
            # Only archive a record that belongs to an earlier attempt.
            if previous.get("attempt") != execution.attempt:
                _append_line(step_dir / HISTORY_FILE, json.dumps(previous))
        _atomic_write(record_path, execution.model_dump_json(indent=2))

    def write_step_artifact(
        self, run_id: str, execution: StepExecution, name: str, content: str
    ) -> Path:
        path = self.step_dir(run_id, execution) / name
        _atomic_write(path, content)
        return path

    def read_step_artifact(self, run_id: str, execution: StepExecution, name: str) -> str | None:
        path = self.step_dir(run_id, execution) / name
        if not path.exists():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise PersistenceError(str(path), str(e)) from e

    def read_step_history(self, run_id: str, execution: StepExecution) -> list[StepExecution]:
        """Earlier records of a step, oldest first."""
        path = self.step_dir(run_id, execution) / HISTORY_FILE
        if not path.exists():
            return []
        with open(path, encoding="utf-8") as f:
            return [StepExecution.model_validate_json(line) for line in f if line.strip()]

    def journal(self, run_id: str) -> LocalJournalWriter:
        return LocalJournalWriter(self.run_dir(run_id) / JOURNAL_FILE)

    def list_runs(self) -> list[RunState]:
        """All readable runs, newest first."""
        if not self.root.exists():
            return []

        runs = []
        for run_path in self.root.iterdir():
            if not ((run_path / RUN_STATE_FILE).exists() or (run_path / LOCATION_FILE).exists()):
                continue
            try:
                state = self.load_run_state(run_path.name)
            except PersistenceError as e:
                logger.warning("Skipping unreadable run %s: %s", run_path.name, e)
                continue
            if state is not None:
                runs.append(state)

        runs.sort(key=lambda s: s.created_at, reverse=True)
        return runs


def _is_safe_id(run_id: str) -> bool:
    return bool(run_id) and run_id not in (".", "..") and "/" not in run_id and "\\" not in run_id
