"""Shared pytest fixtures for bcce tests.

Provides scripted executors, an artifact store in a temp directory, and
helpers for writing workflow documents.
"""

from collections.abc import Callable
from pathlib import Path
from typing import Any

import pytest
import yaml

from bcce.core.schemas import Workflow, load_document
from bcce.engine import Container, ExecutionEngine
from bcce.engine.mocks import RecordingDiffApplier, ScriptedAgentRunner, ScriptedCommandRunner
from bcce.env import clear_settings_cache
from bcce.store import LocalArtifactStore
from bcce.validation import validate_workflow


@pytest.fixture(autouse=True)
def clean_container() -> None:
    """Reset Container overrides and cached settings around every test."""
    Container.reset()
    clear_settings_cache()
    yield
    Container.reset()
    clear_settings_cache()


@pytest.fixture
def store(tmp_path: Path) -> LocalArtifactStore:
    return LocalArtifactStore(tmp_path / "runs")


@pytest.fixture
def command_runner() -> ScriptedCommandRunner:
    return ScriptedCommandRunner()


@pytest.fixture
def agent_runner() -> ScriptedAgentRunner:
    return ScriptedAgentRunner()


@pytest.fixture
def diff_applier() -> RecordingDiffApplier:
    return RecordingDiffApplier()


@pytest.fixture
def make_engine(
    tmp_path: Path,
    store: LocalArtifactStore,
    command_runner: ScriptedCommandRunner,
    agent_runner: ScriptedAgentRunner,
    diff_applier: RecordingDiffApplier,
) -> Callable[..., ExecutionEngine]:
    """Factory for engines wired to the scripted executors.

    Run ids are deterministic: run-1, run-2, ...
    """
    counter = {"n": 0}

    def run_id_factory(content_hash: str, created_at: Any) -> str:
        counter["n"] += 1
        return f"run-{counter['n']}"

    def factory(**overrides: Any) -> ExecutionEngine:
        kwargs: dict[str, Any] = {
            "store": store,
            "command_runner": command_runner,
            "agent_runner": agent_runner,
            "diff_applier": diff_applier,
            "base_dir": tmp_path,
            "run_id_factory": run_id_factory,
        }
        kwargs.update(overrides)
        return ExecutionEngine(**kwargs)

    return factory


@pytest.fixture
def write_workflow(tmp_path: Path) -> Callable[..., Path]:
    """Write a workflow document to disk and return its path."""

    def write(doc: dict[str, Any], name: str = "workflow.yml") -> Path:
        path = tmp_path / name
        path.write_text(yaml.safe_dump(doc, sort_keys=False), encoding="utf-8")
        return path

    return write


@pytest.fixture
def load_workflow() -> Callable[[Path], Workflow]:
    def load(path: Path) -> Workflow:
        return validate_workflow(load_document(path), base_dir=path.parent)

    return load
