"""Policy guard: keeps agent steps inside their declared budget.

Dimensions are checked in a fixed order and the first breach wins:

1. elapsed time vs ``timeout_seconds``
2. distinct files touched vs ``max_files``
3. edits applied vs ``max_edits``
4. every touched path matched against ``allowed_paths``
5. every invoked command's executable against ``cmd_allowlist``
"""

import posixpath
import re
import shlex
from functools import lru_cache

from pydantic import BaseModel

from bcce.core.models import StepCounters, ViolationRecord
from bcce.core.schemas import Policy
from bcce.exceptions import PolicyViolationError

_SHELL_PUNCTUATION = "();<>|&"
_ASSIGNMENT = re.compile(r"[A-Za-z_][A-Za-z0-9_]*=")


class GuardResult(BaseModel):
    """Outcome of one policy check."""

    violation: ViolationRecord | None = None

    @property
    def ok(self) -> bool:
        return self.violation is None


@lru_cache(maxsize=256)
def _compile_glob(pattern: str) -> re.Pattern[str]:
    parts: list[str] = []
    i = 0
    while i < len(pattern):
        char = pattern[i]
        if pattern.startswith("**/", i):
            parts.append("(?:.*/)?")
            i += 3
        elif pattern.startswith("**", i):
            parts.append(".*")
            i += 2
        elif char == "*":
            parts.append("[^/]*")
            i += 1
        elif char == "?":
            parts.append("[^/]")
            i += 1
        else:
            parts.append(re.escape(char))
            i += 1
    return re.compile("".join(parts) + r"\Z")


def normalize_path(path: str) -> str:
    """POSIX form without a leading ``./``."""
    normalized = posixpath.normpath(path.replace("\\", "/"))
    return "" if normalized == "." else normalized


def glob_match(pattern: str, path: str) -> bool:
    """Match a path against a glob.

    ``**`` crosses directory boundaries (``**/`` also matches no directory
    at all); ``*`` and ``?`` never match ``/``.
    """
    return _compile_glob(normalize_path(pattern)).match(normalize_path(path)) is not None


def _is_separator(token: str) -> bool:
    # Punctuation runs such as ";", "&&", "|&" or "&&(" end a simple command;
    # redirections ("2>&1", "&>") do not.
    return (
        all(c in _SHELL_PUNCTUATION for c in token)
        and not any(c in "<>" for c in token)
        and any(c in ";&|(" for c in token)
    )


def command_executables(command: str) -> list[str]:
    """Basenames of every program a command line invokes.

    The line is split into simple commands on newlines, ``;``, ``&&``,
    ``||``, ``|``, ``&`` and ``(``. Leading ``NAME=value`` assignments are
    skipped. A line the shell lexer cannot parse is returned whole, so it
    never matches an allowlist entry.
    """
    names: list[str] = []
    for line in command.splitlines():
        lexer = shlex.shlex(line, posix=True, punctuation_chars=True)
        lexer.whitespace_split = True
        lexer.commenters = ""
        try:
            tokens = list(lexer)
        except ValueError:
            return [command.strip()]

        at_start = True
        for token in tokens:
            if _is_separator(token):
                at_start = True
                continue
            if not at_start or _ASSIGNMENT.match(token):
                continue
            if all(c in _SHELL_PUNCTUATION for c in token):
                continue
            names.append(posixpath.basename(token))
            at_start = False
    return names


def executable_name(command: str) -> str:
    """Basename of the first program a command line invokes."""
    names = command_executables(command)
    return names[0] if names else ""


class PolicyGuard:
    """Evaluates counters against a policy."""

    def check(self, policy: Policy, counters: StepCounters) -> GuardResult:
        """Return the first breached dimension, if any."""
        if counters.elapsed_seconds > policy.timeout_seconds:
            return _violation(
                "timeout_seconds",
                round(counters.elapsed_seconds, 3),
                policy.timeout_seconds,
                f"ran {counters.elapsed_seconds:.1f}s, limit is {policy.timeout_seconds}s",
            )

        files = counters.distinct_files
        if len(files) > policy.max_files:
            return _violation(
                "max_files",
                len(files),
                policy.max_files,
                f"touched {len(files)} files, limit is {policy.max_files}",
            )

        if counters.edits_applied > policy.max_edits:
            return _violation(
                "max_edits",
                counters.edits_applied,
                policy.max_edits,
                f"applied {counters.edits_applied} edits, limit is {policy.max_edits}",
            )

        for path in files:
            if _escapes(path) or not any(
                glob_match(pattern, path) for pattern in policy.allowed_paths
            ):
                return _violation(
                    "allowed_paths",
                    path,
                    policy.allowed_paths,
                    f"path '{path}' is outside allowed_paths",
                )

        allowed = set(policy.cmd_allowlist)
        for command in counters.commands:
            for name in command_executables(command):
                if name not in allowed:
                    return _violation(
                        "cmd_allowlist",
                        name,
                        policy.cmd_allowlist,
                        f"command '{name}' is not in cmd_allowlist",
                    )

        return GuardResult()

    def enforce(self, policy: Policy, counters: StepCounters, step_id: str | None = None) -> None:
        """Raise on the first breach.

        Raises:
            PolicyViolationError: Naming the failing dimension and value
        """
        result = self.check(policy, counters)
        if result.violation is not None:
            raise to_exception(result.violation, step_id)


def _escapes(path: str) -> bool:
    normalized = normalize_path(path)
    return normalized.startswith(("/", "../")) or normalized == ".."


def _violation(dimension: str, value: object, limit: object, reason: str) -> GuardResult:
    return GuardResult(
        violation=ViolationRecord(dimension=dimension, value=value, limit=limit, reason=reason)
    )


def to_exception(record: ViolationRecord, step_id: str | None = None) -> PolicyViolationError:
    return PolicyViolationError(
        record.dimension, record.value, record.limit, step_id=step_id, reason=record.reason
    )


def to_record(error: PolicyViolationError) -> ViolationRecord:
    return ViolationRecord(
        dimension=error.dimension, value=error.value, limit=error.limit, reason=error.reason
    )
