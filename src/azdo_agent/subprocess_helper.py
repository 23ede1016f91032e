"""Subprocess execution with live output for long-running installers.

The agent installer downloads a large tarball, configures the agent and
installs a service; it can run for minutes. ``safe_run`` forwards each stdout
line to a callback as it arrives while stderr is drained on a background
thread, so neither pipe can fill up and block the child.

Public API:
    SubprocessResult: Result dataclass
    safe_run: Main execution function
"""

import logging
import subprocess
import threading
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass
class SubprocessResult:
    """Result of subprocess execution."""

    returncode: int
    stdout: str
    stderr: str
    timed_out: bool


def safe_run(
    cmd: list[str],
    cwd: Path | None = None,
    timeout: float | None = None,
    env: dict[str, str] | None = None,
    on_output: Callable[[str], None] | None = None,
) -> SubprocessResult:
    """
    Run ``cmd`` to completion, streaming stdout lines to ``on_output``.

    Args:
        cmd: Command and arguments
        cwd: Working directory
        timeout: Kill the process after this many seconds (None = no limit)
        env: Environment variables
        on_output: Called with each stdout line, newline stripped

    Returns:
        SubprocessResult with the full output and exit code

    Example:
        >>> result = safe_run(["bash", "install-agent-linux.sh"], on_output=print)
        >>> result.returncode
        0
    """
    try:
        process = subprocess.Popen(
            cmd,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            cwd=cwd,
            env=env,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
    except FileNotFoundError:
        # Shell convention for "command not found"
        return SubprocessResult(
            returncode=127,
            stdout="",
            stderr=f"Command not found: {cmd[0] if cmd else 'unknown'}",
            timed_out=False,
        )
    except OSError as e:
        return SubprocessResult(
            returncode=1,
            stdout="",
            stderr=f"Error executing command: {e!s}",
            timed_out=False,
        )

    stderr_chunks: list[str] = []

    def drain_stderr():
        try:
            stderr_chunks.append(process.stderr.read())
        except (OSError, ValueError):
            # Pipe closed while the process was being killed
            pass

    stderr_thread = threading.Thread(target=drain_stderr, daemon=True)
    stderr_thread.start()

    expired = threading.Event()

    def expire():
        expired.set()
        logger.warning(f"Killing {cmd[0]} after {timeout} seconds")
        process.kill()

    timer = threading.Timer(timeout, expire) if timeout is not None else None
    if timer:
        timer.daemon = True
        timer.start()

    stdout_lines: list[str] = []
    try:
        for line in process.stdout:
            stdout_lines.append(line)
            if on_output:
                on_output(line.rstrip("\n"))
        process.wait()
    finally:
        if timer:
            timer.cancel()

    stderr_thread.join(timeout=1)

    return SubprocessResult(
        returncode=process.returncode,
        stdout="".join(stdout_lines),
        stderr="".join(chunk for chunk in stderr_chunks if chunk),
        timed_out=expired.is_set(),
    )


__all__ = ["SubprocessResult", "safe_run"]
