"""Tests for the subprocess-backed executors."""

import shutil
import subprocess
import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from bcce.core.models import StepCounters
from bcce.core.schemas import Policy
from bcce.engine import AgentRequest, Deadline, ProposedEdits
from bcce.engine.approval import AutoApprovalHandler
from bcce.engine.backends import TIMEOUT_EXIT_CODE, GitDiffApplier, SubprocessAgentRunner, SubprocessCommandRunner
from bcce.engine.policy import PolicyGuard
from bcce.exceptions import PolicyViolationError

pytestmark = pytest.mark.skipif(sys.platform == "win32", reason="uses POSIX shell and process groups")


class TestSubprocessCommandRunner:
    """Tests for SubprocessCommandRunner."""

    def test_captures_output(self, tmp_path: Path) -> None:
        """Test stdout, stderr and exit code are captured."""
        result = SubprocessCommandRunner().run("echo out; echo err >&2; exit 3", Deadline.never(), tmp_path)
        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert result.timed_out is False

    def test_runs_in_cwd(self, tmp_path: Path) -> None:
        """Test commands run in the given working directory."""
        result = SubprocessCommandRunner().run("pwd", Deadline.never(), tmp_path)
        assert Path(result.stdout.strip()).resolve() == tmp_path.resolve()

    def test_killed_at_deadline(self, tmp_path: Path) -> None:
        """Test a command still running at the deadline is terminated."""
        result = SubprocessCommandRunner().run("sleep 10", Deadline.after(0.3), tmp_path)
        assert result.timed_out is True
        assert result.exit_code == TIMEOUT_EXIT_CODE
        assert result.duration_seconds < 5


def agent_request(step_id: str = "fix") -> AgentRequest:
    return AgentRequest(
        step_id=step_id,
        step_type="agent",
        model="test-model",
        prompt="do the thing",
        capabilities=["ReadFile", "Cmd"],
        policy=Policy(timeout_seconds=10, max_files=1, max_edits=5, allowed_paths=["src/**"]),
    )


class TestSubprocessAgentRunner:
    """Tests for SubprocessAgentRunner and its report protocol."""

    def test_reports_counted(self, tmp_path: Path) -> None:
        """Test report lines become counters and the proposed diff."""
        script = (
            "cat > /dev/null; "
            'printf "%s\\n" \'{"edit": "src/a.py"}\' >> "$BCCE_REPORT_FILE"; '
            'printf "%s\\n" \'{"command": "pytest -q"}\' >> "$BCCE_REPORT_FILE"; '
            'printf "%s\\n" \'{"diff": "--- a/src/a.py\\n"}\' >> "$BCCE_REPORT_FILE"; '
            'echo "model=$BCCE_MODEL step=$BCCE_STEP_ID tools=$BCCE_CAPABILITIES"'
        )
        result = SubprocessAgentRunner(script, cwd=tmp_path).run(agent_request(), Deadline.never())

        assert result.ok
        assert result.files_touched == ["src/a.py"]
        assert result.edits_applied == 1
        assert result.commands == ["pytest -q"]
        assert result.proposed_diff == "--- a/src/a.py\n"
        assert "model=test-model step=fix tools=ReadFile,Cmd" in result.transcript

    def test_wrong_shape_reports_ignored(self, tmp_path: Path) -> None:
        """Test report lines that are valid JSON of the wrong shape are skipped."""
        script = (
            'echo 1 >> "$BCCE_REPORT_FILE"; '
            'echo \'["src/a.py"]\' >> "$BCCE_REPORT_FILE"; '
            'echo \'{"file": 5}\' >> "$BCCE_REPORT_FILE"; '
            'echo \'{"edit": "src/b.py"}\' >> "$BCCE_REPORT_FILE"'
        )
        result = SubprocessAgentRunner(script, cwd=tmp_path).run(agent_request(), Deadline.never())

        assert result.ok
        assert result.files_touched == ["src/b.py"]
        assert result.edits_applied == 1

    def test_prompt_on_stdin(self, tmp_path: Path) -> None:
        """Test the prompt is written to the agent's stdin."""
        result = SubprocessAgentRunner("cat", cwd=tmp_path).run(agent_request(), Deadline.never())
        assert result.transcript == "do the thing"

    def test_nonzero_exit_is_error(self, tmp_path: Path) -> None:
        """Test a failing agent command reports an error."""
        result = SubprocessAgentRunner("exit 7", cwd=tmp_path).run(agent_request(), Deadline.never())
        assert not result.ok
        assert "code 7" in (result.error or "")

    def test_killed_at_deadline(self, tmp_path: Path) -> None:
        """Test an agent still running at the deadline is terminated."""
        result = SubprocessAgentRunner("sleep 10", cwd=tmp_path).run(agent_request(), Deadline.after(0.5))
        assert result.timed_out
        assert not result.ok

    def test_monitor_violation_kills_agent(self, tmp_path: Path) -> None:
        """Test a policy breach reported mid-run stops the agent and propagates."""
        script = (
            "cat > /dev/null; "
            "echo editing files; "
            'printf "%s\\n" \'{"diff": "--- a/src/a.py\\n"}\' >> "$BCCE_REPORT_FILE"; '
            'printf "%s\\n" \'{"file": "src/a.py"}\' >> "$BCCE_REPORT_FILE"; '
            'printf "%s\\n" \'{"file": "src/b.py"}\' >> "$BCCE_REPORT_FILE"; '
            "sleep 10"
        )
        policy = agent_request().policy

        def monitor(counters: StepCounters) -> None:
            PolicyGuard().enforce(policy, counters, "fix")

        with pytest.raises(PolicyViolationError) as exc_info:
            SubprocessAgentRunner(script, cwd=tmp_path).run(agent_request(), Deadline.after(8), monitor)
        error = exc_info.value
        assert error.dimension == "max_files"
        assert "editing files" in error.transcript
        assert error.proposed_diff == "--- a/src/a.py\n"


class TestGitDiffApplier:
    """Tests for GitDiffApplier."""

    def test_empty_diff_is_noop(self) -> None:
        """Test nothing to apply counts as applied."""
        result = GitDiffApplier(approval=AutoApprovalHandler()).apply(ProposedEdits(diff=""), approve=False)
        assert result.applied

    def test_rejection(self) -> None:
        """Test edits the reviewer rejects are not applied."""
        approval = AutoApprovalHandler("reject")
        applier = GitDiffApplier(approval=approval)
        with patch("bcce.engine.backends.subprocess.run") as mock_run:
            result = applier.apply(ProposedEdits(diff="diff", source_steps=["fix"]), approve=False)
        assert not result.applied
        assert "reject" in result.reason
        assert approval.requests == ["apply_diff"]
        mock_run.assert_not_called()

    def test_pre_approved_skips_prompt(self) -> None:
        """Test approve=True applies without asking."""
        approval = AutoApprovalHandler("reject")
        applier = GitDiffApplier(approval=approval)
        with patch("bcce.engine.backends.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=0, stdout="", stderr="")
            result = applier.apply(ProposedEdits(diff="diff"), approve=True)
        assert result.applied
        assert approval.requests == []
        assert [c[0][0] for c in mock_run.call_args_list] == [["git", "apply", "--check"], ["git", "apply"]]

    def test_check_failure(self) -> None:
        """Test a diff that does not apply cleanly is reported."""
        with patch("bcce.engine.backends.subprocess.run") as mock_run:
            mock_run.return_value = MagicMock(returncode=1, stdout="", stderr="patch does not apply")
            result = GitDiffApplier(approval=AutoApprovalHandler()).apply(ProposedEdits(diff="diff"), approve=True)
        assert not result.applied
        assert result.reason == "patch does not apply"
        assert mock_run.call_count == 1

    @pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
    def test_applies_real_diff(self, tmp_path: Path) -> None:
        """Test a unified diff is applied to the working tree."""
        subprocess.run(["git", "init", "-q"], cwd=tmp_path, check=True)
        (tmp_path / "a.txt").write_text("old\n")
        diff = "--- a/a.txt\n+++ b/a.txt\n@@ -1 +1 @@\n-old\n+new\n"
        result = GitDiffApplier(cwd=tmp_path, approval=AutoApprovalHandler()).apply(
            ProposedEdits(diff=diff), approve=True
        )
        assert result.applied
        assert (tmp_path / "a.txt").read_text() == "new\n"
