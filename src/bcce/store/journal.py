"""Append-only run journal.

Writes run events to ``<run_dir>/events.jsonl``:
- Append-only: events are never modified or deleted
- Versioned: each line is ``{"version": 1, "event": {...}}``
- Flushed: fsync after each write for durability
"""

import json
import logging
import os
from collections.abc import Iterator
from pathlib import Path
from typing import IO, Protocol

from bcce.exceptions import PersistenceError
from bcce.store.events import Event

logger = logging.getLogger(__name__)

JOURNAL_SCHEMA_VERSION = 1


class JournalWriter(Protocol):
    """Protocol for journal persistence."""

    def write_event(self, event: Event) -> None:
        """Write an event to the journal."""
        ...

    def close(self) -> None:
        """Release the journal."""
        ...


class LocalJournalWriter:
    """Writes events to a local JSONL journal, syncing every line to disk."""

    def __init__(self, journal_path: Path) -> None:
        self._journal_path = journal_path
        self._file_handle: IO[str] | None = None

    def write_event(self, event: Event) -> None:
        """Append one event and fsync.

        Raises:
            PersistenceError: If the journal cannot be written
        """
        entry = {
            "version": JOURNAL_SCHEMA_VERSION,
            "event": json.loads(event.model_dump_json()),
        }
        try:
            if self._file_handle is None:
                self._journal_path.parent.mkdir(parents=True, exist_ok=True)
                self._file_handle = open(self._journal_path, "a", encoding="utf-8")  # noqa: SIM115
            self._file_handle.write(json.dumps(entry, default=str) + "\n")
            self._file_handle.flush()
            os.fsync(self._file_handle.fileno())
        except OSError as e:
            raise PersistenceError(str(self._journal_path), str(e)) from e

    def close(self) -> None:
        if self._file_handle is not None:
            self._file_handle.close()
            self._file_handle = None

    def __enter__(self) -> "LocalJournalWriter":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.close()


class JournalReader:
    """Reads events from a journal file.

    Corrupt or incomplete lines (a crash during write) are skipped with a
    warning.
    """

    def __init__(self, journal_path: Path) -> None:
        self._journal_path = journal_path

    def read_events(self) -> list[dict]:
        """Read all events as dictionaries."""
        return list(self.iter_events())

    def iter_events(self) -> Iterator[dict]:
        if not self._journal_path.exists():
            return

        with open(self._journal_path, encoding="utf-8") as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()
                if not line:
                    continue

                try:
                    entry = json.loads(line)
                except json.JSONDecodeError as e:
                    logger.warning("Corrupt journal line %d in %s: %s", line_num, self._journal_path, e)
                    continue

                version = entry.get("version", JOURNAL_SCHEMA_VERSION)
                if version != JOURNAL_SCHEMA_VERSION:
                    logger.warning("Unknown journal version %s at line %d", version, line_num)
                    continue

                yield entry["event"]


__all__ = [
    "JournalWriter",
    "LocalJournalWriter",
    "JournalReader",
]
