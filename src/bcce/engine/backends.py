"""Executor implementations.

Concrete implementations of the CommandRunner, AgentRunner and DiffApplier
protocols backed by subprocesses.
"""

import json
import logging
import os
import signal
import subprocess
import tempfile
import threading
import time
from pathlib import Path

from bcce.core.models import StepCounters
from bcce.engine.approval import ConsoleApprovalHandler
from bcce.engine.deadline import Deadline
from bcce.engine.protocols import (
    AgentRequest,
    AgentResult,
    ApprovalHandler,
    CommandResult,
    DiffResult,
    ProgressMonitor,
    ProposedEdits,
)
from bcce.exceptions import ExecutionError, PolicyViolationError

logger = logging.getLogger(__name__)

# Exit code 124 is the Unix convention for timeout (used by GNU timeout).
TIMEOUT_EXIT_CODE = 124

# How often the agent runner polls its report file.
POLL_INTERVAL_SECONDS = 0.2


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output


def _kill_process_group(process: subprocess.Popen) -> None:
    """Terminate a process and everything it spawned."""
    try:
        os.killpg(process.pid, signal.SIGKILL)
    except (ProcessLookupError, PermissionError):
        process.kill()


class SubprocessCommandRunner:
    """Run cmd steps through the shell.

    Each command gets its own process group so that a timeout kills the
    whole tree, not only the shell.
    """

    def run(self, command: str, deadline: Deadline, cwd: Path | None = None) -> CommandResult:
        """Execute a command, terminating it at the deadline.

        Raises:
            ExecutionError: If the command cannot be started
        """
        start = time.monotonic()
        try:
            process = subprocess.Popen(
                command,
                shell=True,
                cwd=cwd,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                start_new_session=True,
            )
        except OSError as e:
            raise ExecutionError(f"cannot start command: {e}") from e

        try:
            stdout, stderr = process.communicate(timeout=deadline.remaining())
        except subprocess.TimeoutExpired:
            _kill_process_group(process)
            stdout, stderr = process.communicate()
            logger.warning("Command killed at deadline: %s", command)
            return CommandResult(
                exit_code=TIMEOUT_EXIT_CODE,
                stdout=_decode(stdout),
                stderr=_decode(stderr) + "\nTimeout: command terminated at deadline",
                duration_seconds=time.monotonic() - start,
                timed_out=True,
            )

        return CommandResult(
            exit_code=process.returncode,
            stdout=_decode(stdout),
            stderr=_decode(stderr),
            duration_seconds=time.monotonic() - start,
        )


class SubprocessAgentRunner:
    """Delegate prompt and agent steps to an external agent CLI.

    The configured command is run through the shell with the prompt on
    stdin. Step details travel in environment variables:

    - ``BCCE_STEP_ID``, ``BCCE_STEP_TYPE``, ``BCCE_MODEL``
    - ``BCCE_CAPABILITIES``: comma-separated tool names
    - ``BCCE_POLICY``: policy as JSON (agent steps)
    - ``BCCE_REPORT_FILE``: JSON-lines file the agent appends progress to

    Each report line is one of ``{"file": path}``, ``{"edit": path}``,
    ``{"command": cmdline}`` or ``{"diff": unified_diff}``. The runner
    tails the file, hands updated counters to the monitor, and kills the
    agent's process group if the monitor raises or the deadline passes.
    """

    def __init__(self, command: str, cwd: Path | None = None) -> None:
        self.command = command
        self.cwd = cwd

    def run(
        self,
        request: AgentRequest,
        deadline: Deadline,
        monitor: ProgressMonitor | None = None,
    ) -> AgentResult:
        start = time.monotonic()
        with tempfile.TemporaryDirectory(prefix="bcce-agent-") as tmp:
            report_path = Path(tmp) / "report.jsonl"
            report_path.touch()
            env = dict(os.environ)
            env.update(self._environment(request, report_path))

            try:
                process = subprocess.Popen(
                    self.command,
                    shell=True,
                    cwd=self.cwd,
                    env=env,
                    stdin=subprocess.PIPE,
                    stdout=subprocess.PIPE,
                    stderr=subprocess.STDOUT,
                    text=True,
                    start_new_session=True,
                )
            except OSError as e:
                raise ExecutionError(f"cannot start agent runner: {e}", step_id=request.step_id) from e

            return self._supervise(process, request, report_path, deadline, monitor, start)

    def _environment(self, request: AgentRequest, report_path: Path) -> dict[str, str]:
        env = {
            "BCCE_STEP_ID": request.step_id,
            "BCCE_STEP_TYPE": request.step_type,
            "BCCE_MODEL": request.model or "",
            "BCCE_CAPABILITIES": ",".join(request.capabilities),
            "BCCE_REPORT_FILE": str(report_path),
        }
        if request.policy is not None:
            env["BCCE_POLICY"] = request.policy.model_dump_json()
        return env

    def _supervise(
        self,
        process: subprocess.Popen,
        request: AgentRequest,
        report_path: Path,
        deadline: Deadline,
        monitor: ProgressMonitor | None,
        start: float,
    ) -> AgentResult:
        # communicate() feeds stdin and drains output on its own thread so the
        # report file can be polled here.
        output: list[str] = []

        def collect() -> None:
            out, _ = process.communicate(input=request.prompt or "")
            output.append(_decode(out))

        reader = threading.Thread(target=collect, daemon=True)
        reader.start()

        counters = StepCounters()
        diffs: list[str] = []
        offset = 0
        timed_out = False
        try:
            while True:
                finished = process.poll() is not None
                offset = self._read_reports(report_path, offset, counters, diffs)
                counters.elapsed_seconds = time.monotonic() - start
                if monitor is not None:
                    monitor(counters)
                if finished:
                    break
                if deadline.expired():
                    timed_out = True
                    _kill_process_group(process)
                    break
                time.sleep(POLL_INTERVAL_SECONDS)
        except PolicyViolationError as e:
            _kill_process_group(process)
            reader.join()
            e.transcript = output[0] if output else ""
            e.proposed_diff = "".join(diffs)
            raise
        except BaseException:
            _kill_process_group(process)
            reader.join()
            raise

        reader.join()
        counters.elapsed_seconds = time.monotonic() - start
        exit_code = process.returncode
        transcript = output[0] if output else ""
        status = "ok" if exit_code == 0 and not timed_out else "error"
        error = None
        if timed_out:
            error = "agent runner terminated at deadline"
        elif exit_code != 0:
            error = f"agent runner exited with code {exit_code}"

        return AgentResult(
            status=status,
            files_touched=counters.files_touched,
            edits_applied=counters.edits_applied,
            commands=counters.commands,
            transcript=transcript,
            proposed_diff="".join(diffs),
            error=error,
            timed_out=timed_out,
        )

    def _read_reports(
        self, report_path: Path, offset: int, counters: StepCounters, diffs: list[str]
    ) -> int:
        with open(report_path, encoding="utf-8") as f:
            f.seek(offset)
            chunk = f.read()
        # Only consume complete lines; a partial line is re-read next poll.
        consumed = chunk.rfind("\n") + 1
        for line in chunk[:consumed].splitlines():
            if not line.strip():
                continue
            try:
                record = json.loads(line)
            except json.JSONDecodeError:
                logger.warning("Ignoring malformed agent report line: %s", line[:200])
                continue
            if not isinstance(record, dict) or not all(isinstance(v, str) for v in record.values()):
                logger.warning("Ignoring malformed agent report line: %s", line[:200])
                continue
            if "file" in record:
                counters.files_touched.append(self._relative(record["file"]))
            if "edit" in record:
                counters.files_touched.append(self._relative(record["edit"]))
                counters.edits_applied += 1
            if "command" in record:
                counters.commands.append(record["command"])
            if "diff" in record:
                diffs.append(record["diff"])
        return offset + len(chunk[:consumed].encode("utf-8"))

    def _relative(self, path: str) -> str:
        base = (self.cwd or Path.cwd()).resolve()
        candidate = Path(path)
        if candidate.is_absolute():
            try:
                return candidate.resolve().relative_to(base).as_posix()
            except ValueError:
                return candidate.as_posix()
        return candidate.as_posix()


class GitDiffApplier:
    """Apply unified diffs to the working tree with ``git apply``.

    Edits that are not pre-approved go through the approval handler first.
    """

    def __init__(self, cwd: Path | None = None, approval: ApprovalHandler | None = None) -> None:
        self.cwd = cwd
        self.approval = approval or ConsoleApprovalHandler()

    def apply(self, edits: ProposedEdits, approve: bool) -> DiffResult:
        if edits.empty:
            return DiffResult(applied=True, reason="no proposed edits")

        if not approve:
            decision = self.approval.request_approval(
                step_name="apply_diff",
                prompt=f"Apply edits proposed by {', '.join(edits.source_steps) or 'earlier steps'}?",
                options=["approve", "reject"],
                context={"diff": edits.diff},
                timeout_seconds=None,
            )
            if decision != "approve":
                return DiffResult(
                    applied=False, reason=f"edits not approved by reviewer (decision: {decision})"
                )

        for args in (["git", "apply", "--check"], ["git", "apply"]):
            try:
                result = subprocess.run(
                    args,
                    input=edits.diff,
                    capture_output=True,
                    text=True,
                    cwd=self.cwd,
                )
            except OSError as e:
                raise ExecutionError(f"cannot run git: {e}") from e
            if result.returncode != 0:
                return DiffResult(applied=False, reason=result.stderr.strip() or "git apply failed")

        return DiffResult(applied=True)
