"""External process execution.

Every git, npm/npx and ngrok invocation goes through a ``ProcessRunner``
so stages never touch ``subprocess`` directly and tests can swap in a
scripted fake.

Two shapes of work:
  - ``run()`` executes a bounded command and captures its output into a
    StepResult. It never raises; the caller inspects ``is_success`` and
    maps failure to its own error type.
  - ``spawn()`` starts a long-lived child (the tunnel agent) whose output
    is streamed into the log from a daemon thread.

Commands are argument lists executed without a shell, so URLs carrying
credentials are never interpreted by /bin/sh.
"""

import logging
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)

# Default timeout per command (seconds)
DEFAULT_TIMEOUT = 300


@dataclass
class StepResult:
    """Outcome of one external command. Success means exit_code == 0.

    exit_code -1 marks a timeout and -2 a command that could not be started.
    """

    name: str
    command: list[str]
    exit_code: int
    duration_seconds: float
    stdout: str = ""
    stderr: str = ""

    @property
    def is_success(self) -> bool:
        return self.exit_code == 0

    def output_tail(self, max_lines: int = 60, max_chars: int = 4000) -> str:
        """stderr tail, falling back to stdout when stderr is empty."""
        return _truncate_output(self.stderr or self.stdout, max_lines, max_chars)

    def to_dict(self) -> dict:
        return {
            "name": self.name,
            "command": " ".join(self.command),
            "exit_code": self.exit_code,
            "duration_seconds": round(self.duration_seconds, 3),
            "is_success": self.is_success,
        }


class RunningProcess(Protocol):
    """The subset of ``subprocess.Popen`` the pipeline relies on."""

    pid: int

    def poll(self) -> Optional[int]: ...

    def terminate(self) -> None: ...

    def kill(self) -> None: ...

    def wait(self, timeout: Optional[float] = None) -> int: ...


def _truncate_output(text: str, max_lines: int = 60, max_chars: int = 4000) -> str:
    """Return a concise tail of command output for logs and error messages."""
    if not text:
        return ""
    lines = text.splitlines()
    joined = "\n".join(lines[-max_lines:])
    if len(joined) > max_chars:
        joined = joined[-max_chars:]
    return joined


def _pump_output(name: str, stream: IO[str]) -> None:
    for line in stream:
        logger.info("%s: %s", name, line.rstrip())
    stream.close()


class ProcessRunner:
    """Runs external commands on behalf of the pipeline stages."""

    def run(
        self,
        name: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        timeout: float = DEFAULT_TIMEOUT,
        env: Optional[dict] = None,
        redact: Sequence[str] = (),
    ) -> StepResult:
        """Execute ``args`` to completion and capture its output.

        ``redact`` lists secrets (tokens) that must not appear in the logged
        command line or the captured output.
        """
        command = [str(a) for a in args]
        shown = _redact(" ".join(command), redact)
        logger.info("Running step '%s': %s (cwd=%s)", name, shown, cwd or ".")
        start = time.monotonic()

        try:
            result = subprocess.run(
                command,
                cwd=str(cwd) if cwd else None,
                capture_output=True,
                text=True,
                timeout=timeout,
                env=env,
            )
            step_result = StepResult(
                name=name,
                command=command,
                exit_code=result.returncode,
                duration_seconds=time.monotonic() - start,
                stdout=_redact(result.stdout or "", redact),
                stderr=_redact(result.stderr or "", redact),
            )

        except subprocess.TimeoutExpired:
            step_result = StepResult(
                name=name,
                command=command,
                exit_code=-1,
                duration_seconds=time.monotonic() - start,
                stderr=f"Timed out after {timeout} seconds",
            )

        except OSError as exc:
            step_result = StepResult(
                name=name,
                command=command,
                exit_code=-2,
                duration_seconds=time.monotonic() - start,
                stderr=_redact(str(exc), redact),
            )

        status = "OK" if step_result.is_success else "FAILED"
        logger.info(
            "Step '%s' %s (exit=%d, %.1fs)",
            name, status, step_result.exit_code, step_result.duration_seconds,
        )
        if not step_result.is_success:
            if step_result.stderr:
                logger.warning(
                    "Step '%s' stderr (tail):\n%s",
                    name, _truncate_output(step_result.stderr),
                )
            if step_result.stdout:
                logger.warning(
                    "Step '%s' stdout (tail):\n%s",
                    name, _truncate_output(step_result.stdout),
                )

        # Store the redacted command so it is safe to echo back to callers.
        step_result.command = [_redact(a, redact) for a in command]
        return step_result

    def spawn(
        self,
        name: str,
        args: Sequence[str],
        cwd: Optional[Path] = None,
        env: Optional[dict] = None,
    ) -> RunningProcess:
        """Start a long-lived child process and stream its output to the log.

        Raises:
            OSError: if the executable cannot be started.
        """
        command = [str(a) for a in args]
        logger.info("Spawning '%s': %s", name, command[0])
        proc = subprocess.Popen(
            command,
            cwd=str(cwd) if cwd else None,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
        )
        if proc.stdout is not None:
            threading.Thread(
                target=_pump_output,
                args=(name, proc.stdout),
                name=f"{name}-output",
                daemon=True,
            ).start()
        return proc


def _redact(text: str, secrets: Sequence[str]) -> str:
    for secret in secrets:
        if secret:
            text = text.replace(secret, "***")
    return text


def stop_process(proc: RunningProcess, grace_seconds: float = 5.0) -> None:
    """Terminate ``proc`` and escalate to kill if it ignores SIGTERM."""
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=grace_seconds)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s ignored SIGTERM; killing", proc.pid)
        proc.kill()
        proc.wait(timeout=grace_seconds)
