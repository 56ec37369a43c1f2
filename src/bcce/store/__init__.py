"""Run persistence: artifact store and append-only journal."""

from bcce.store.artifacts import ArtifactStore, LocalArtifactStore, step_dir_name
from bcce.store.journal import JournalReader, LocalJournalWriter

__all__ = [
    "ArtifactStore",
    "LocalArtifactStore",
    "step_dir_name",
    "JournalReader",
    "LocalJournalWriter",
]
