"""Tests for the policy guard."""

import pytest

from bcce.core.models import StepCounters
from bcce.core.schemas import Policy
from bcce.engine.policy import PolicyGuard, command_executables, executable_name, glob_match, to_record
from bcce.exceptions import PolicyViolationError


@pytest.fixture
def policy() -> Policy:
    return Policy(
        timeout_seconds=60,
        max_files=2,
        max_edits=3,
        allowed_paths=["src/**", "*.md"],
        cmd_allowlist=["pytest", "npm"],
    )


class TestGlobMatch:
    """Tests for allowed_paths glob semantics."""

    @pytest.mark.parametrize(
        ("pattern", "path", "expected"),
        [
            ("src/**", "src/a.py", True),
            ("src/**", "src/pkg/deep/a.py", True),
            ("src/*", "src/a.py", True),
            ("src/*", "src/pkg/a.py", False),
            ("*.md", "README.md", True),
            ("*.md", "docs/README.md", False),
            ("**/*.md", "docs/README.md", True),
            ("**/*.md", "README.md", True),
            ("src/?.py", "src/a.py", True),
            ("src/?.py", "src/ab.py", False),
            ("src/**", "lib/a.py", False),
            ("src/**", "./src/a.py", True),
        ],
    )
    def test_patterns(self, pattern: str, path: str, expected: bool) -> None:
        """Test ** crosses directories and * does not."""
        assert glob_match(pattern, path) is expected


def test_executable_name() -> None:
    """Test commands are reduced to their program basename."""
    assert executable_name("/usr/bin/pytest -q tests/") == "pytest"
    assert executable_name("npm test") == "npm"
    assert executable_name("") == ""


@pytest.mark.parametrize(
    ("command", "expected"),
    [
        ("pytest && rm -rf src", ["pytest", "rm"]),
        ("pytest -q | tee out.log", ["pytest", "tee"]),
        ("npm test; curl http://x", ["npm", "curl"]),
        ("pytest || make clean", ["pytest", "make"]),
        ("sleep 1 & /bin/rm x", ["sleep", "rm"]),
        ("pytest\nrm x", ["pytest", "rm"]),
        ("CI=1 LANG=C pytest -q", ["pytest"]),
        ("pytest 2>&1 > out.log", ["pytest"]),
        ("echo 'a && b; c'", ["echo"]),
        ("pytest&&(rm x)", ["pytest", "rm"]),
        ("echo 'unclosed", ["echo 'unclosed"]),
    ],
)
def test_command_executables(command: str, expected: list[str]) -> None:
    """Test every simple command of a line is found, not only the first."""
    assert command_executables(command) == expected


class TestPolicyGuard:
    """Tests for PolicyGuard.check and enforce."""

    def test_within_budget(self, policy: Policy) -> None:
        """Test counters inside every limit pass."""
        counters = StepCounters(
            files_touched=["src/a.py", "src/a.py", "README.md"],
            edits_applied=3,
            elapsed_seconds=10,
            commands=["pytest -q"],
        )
        assert PolicyGuard().check(policy, counters).ok

    def test_timeout(self, policy: Policy) -> None:
        """Test elapsed time beyond timeout_seconds is a breach."""
        result = PolicyGuard().check(policy, StepCounters(elapsed_seconds=61))
        assert result.violation is not None
        assert result.violation.dimension == "timeout_seconds"

    def test_max_files_counts_distinct(self, policy: Policy) -> None:
        """Test max_files counts distinct paths."""
        counters = StepCounters(files_touched=["src/a.py", "src/b.py", "src/c.py"])
        result = PolicyGuard().check(policy, counters)
        assert result.violation is not None
        assert result.violation.dimension == "max_files"
        assert result.violation.value == 3
        assert result.violation.limit == 2

    def test_max_edits(self, policy: Policy) -> None:
        """Test edits beyond max_edits are a breach."""
        result = PolicyGuard().check(policy, StepCounters(edits_applied=4))
        assert result.violation is not None
        assert result.violation.dimension == "max_edits"
        assert result.violation.value == 4

    def test_path_outside_allowed(self, policy: Policy) -> None:
        """Test a touched path must match allowed_paths."""
        result = PolicyGuard().check(policy, StepCounters(files_touched=["lib/x.py"]))
        assert result.violation is not None
        assert result.violation.dimension == "allowed_paths"
        assert result.violation.value == "lib/x.py"

    def test_path_escaping_workspace(self, policy: Policy) -> None:
        """Test paths leaving the workspace never match."""
        result = PolicyGuard().check(policy, StepCounters(files_touched=["src/../../etc/passwd"]))
        assert result.violation is not None
        assert result.violation.dimension == "allowed_paths"

    def test_command_not_allowlisted(self, policy: Policy) -> None:
        """Test commands must be in cmd_allowlist."""
        result = PolicyGuard().check(policy, StepCounters(commands=["pytest", "rm -rf /"]))
        assert result.violation is not None
        assert result.violation.dimension == "cmd_allowlist"
        assert result.violation.value == "rm"

    @pytest.mark.parametrize("command", ["pytest && rm -rf src", "pytest | sh", "CI=1 pytest; curl x"])
    def test_chained_command_not_allowlisted(self, policy: Policy, command: str) -> None:
        """Test a disallowed program chained after an allowed one is caught."""
        result = PolicyGuard().check(policy, StepCounters(commands=[command]))
        assert result.violation is not None
        assert result.violation.dimension == "cmd_allowlist"
        assert result.violation.value != "pytest"

    def test_chained_allowlisted_commands(self, policy: Policy) -> None:
        """Test lines made only of allowlisted programs pass."""
        result = PolicyGuard().check(policy, StepCounters(commands=["pytest -q && npm test | pytest"]))
        assert result.ok

    def test_empty_allowlist_blocks_all_commands(self) -> None:
        """Test no commands are allowed by default."""
        policy = Policy(timeout_seconds=10, max_files=1, max_edits=1, allowed_paths=["**"])
        result = PolicyGuard().check(policy, StepCounters(commands=["ls"]))
        assert result.violation is not None

    def test_first_breach_wins(self, policy: Policy) -> None:
        """Test dimensions are checked in a fixed order."""
        counters = StepCounters(
            files_touched=["a", "b", "c"], edits_applied=10, commands=["rm x"], elapsed_seconds=100
        )
        assert PolicyGuard().check(policy, counters).violation.dimension == "timeout_seconds"

    def test_enforce_raises(self, policy: Policy) -> None:
        """Test enforce raises with the dimension and value."""
        with pytest.raises(PolicyViolationError) as exc_info:
            PolicyGuard().enforce(policy, StepCounters(edits_applied=9), step_id="fix")
        error = exc_info.value
        assert error.dimension == "max_edits"
        assert error.value == 9
        assert error.step_id == "fix"
        assert "fix" in str(error)

        record = to_record(error)
        assert record.dimension == "max_edits"
        assert record.limit == 3
