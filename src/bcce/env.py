"""Environment configuration and template resolution for bcce.

Settings come from ``BCCE_*`` environment variables or a ``.env`` file
(pydantic-settings). Workflow documents may reference ``${NAME}``
placeholders (e.g. ``model: ${BEDROCK_MODEL_ID}``); ``resolve_definition``
substitutes them into a new, fully-resolved ``Workflow`` before the engine
sees it.
"""

import os
import re
from collections.abc import Iterable, Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any, Protocol

from pydantic_settings import BaseSettings, SettingsConfigDict

from bcce.core.schemas import Workflow
from bcce.exceptions import ConfigError

PLACEHOLDER = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")

# Filled in by the engine once the run id exists.
RUN_ID_VARIABLE = "RUN_ID"


class BcceSettings(BaseSettings):
    """bcce settings with type-safe access.

    Every field can be set through ``BCCE_<FIELD>`` or a ``.env`` file in
    the working directory.
    """

    model_config = SettingsConfigDict(
        env_prefix="BCCE_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    runs_dir: Path = Path(".bcce_runs")
    agent_command: str | None = None
    workspace: Path | None = None
    log_level: str = "WARNING"


@lru_cache(maxsize=1)
def get_settings() -> BcceSettings:
    """Get cached settings instance."""
    return BcceSettings()


def clear_settings_cache() -> None:
    """Clear the settings cache. Useful for testing."""
    get_settings.cache_clear()


class EnvironmentProvider(Protocol):
    """Supplies values for template placeholders."""

    def variables(self) -> Mapping[str, str]:
        """Return every variable this provider can resolve."""
        ...


class OsEnvironmentProvider:
    """Resolves placeholders from the process environment.

    Explicit overrides (``--var KEY=VALUE`` on the CLI) win over
    ``os.environ``.
    """

    def __init__(self, overrides: Mapping[str, str] | None = None) -> None:
        self._overrides = dict(overrides or {})

    def variables(self) -> Mapping[str, str]:
        merged = dict(os.environ)
        merged.update(self._overrides)
        return merged


def parse_var_overrides(pairs: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings.

    Raises:
        ConfigError: If a pair has no ``=`` or an empty key
    """
    overrides: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Invalid variable override '{pair}', expected KEY=VALUE")
        overrides[key.strip()] = value
    return overrides


def _walk_strings(value: Any) -> Iterable[str]:
    if isinstance(value, str):
        yield value
    elif isinstance(value, Mapping):
        for item in value.values():
            yield from _walk_strings(item)
    elif isinstance(value, list | tuple):
        for item in value:
            yield from _walk_strings(item)


def find_placeholders(workflow: Workflow) -> set[str]:
    """Names of every ``${NAME}`` placeholder still present in a workflow."""
    names: set[str] = set()
    for text in _walk_strings(workflow.to_document()):
        names.update(PLACEHOLDER.findall(text))
    return names


def substitute(text: str, variables: Mapping[str, str], reserved: Iterable[str] = ()) -> str:
    """Replace placeholders in one string.

    Raises:
        ConfigError: If a non-reserved placeholder has no value
    """
    keep = set(reserved)
    missing = [
        name for name in PLACEHOLDER.findall(text) if name not in keep and name not in variables
    ]
    if missing:
        raise ConfigError.unresolved(sorted(set(missing)))

    def replace(match: re.Match[str]) -> str:
        name = match.group(1)
        return match.group(0) if name in keep else variables[name]

    return PLACEHOLDER.sub(replace, text)


def _substitute_tree(value: Any, variables: Mapping[str, str], reserved: set[str]) -> Any:
    if isinstance(value, str):
        return substitute(value, variables, reserved)
    if isinstance(value, Mapping):
        return {key: _substitute_tree(item, variables, reserved) for key, item in value.items()}
    if isinstance(value, list):
        return [_substitute_tree(item, variables, reserved) for item in value]
    return value


def resolve_definition(
    workflow: Workflow,
    variables: Mapping[str, str],
    reserved: Iterable[str] = (RUN_ID_VARIABLE,),
) -> Workflow:
    """Produce a new workflow with every placeholder substituted.

    The input is left untouched. All missing variables are reported
    together.

    Raises:
        ConfigError: If any non-reserved placeholder has no value
    """
    keep = set(reserved)
    missing = sorted(
        name for name in find_placeholders(workflow) if name not in keep and name not in variables
    )
    if missing:
        raise ConfigError.unresolved(missing)

    resolved = _substitute_tree(workflow.to_document(), variables, keep)
    return Workflow.model_validate(resolved)
