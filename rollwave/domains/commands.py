"""Subprocess helpers shared by the docker and git integrations."""
import logging
import subprocess
import time
from pathlib import Path
from typing import Dict, List, Optional

from .errors import CommandError

logger = logging.getLogger(__name__)


class Deadline:
    """Run-wide time budget shared by every external call.

    A deadline built without seconds never expires.
    """

    def __init__(self, seconds: Optional[float] = None):
        self.seconds = seconds
        self._expires_at = time.monotonic() + seconds if seconds else None

    @property
    def expired(self) -> bool:
        return self._expires_at is not None and time.monotonic() >= self._expires_at

    def remaining(self) -> Optional[float]:
        """Seconds left, or None when unbounded.

        Raises:
            CommandError: If the deadline has already passed
        """
        if self._expires_at is None:
            return None
        left = self._expires_at - time.monotonic()
        if left <= 0:
            raise CommandError(f"Deadline of {self.seconds}s exceeded")
        return left


def run_command(
    command: List[str],
    deadline: Optional[Deadline] = None,
    input: Optional[str] = None,
    env: Optional[Dict[str, str]] = None,
    cwd: Optional[Path] = None,
    capture: bool = True,
) -> subprocess.CompletedProcess:
    """
    Run an external command bounded by the deadline.

    Args:
        command: argv to execute
        deadline: Shared run deadline; the child is killed when it expires
        input: Text written to the child's stdin
        env: Full environment for the child (inherits ours when None)
        cwd: Working directory
        capture: Capture stdout/stderr instead of streaming them to the terminal

    Returns:
        The completed process; a non-zero return code is left to the caller

    Raises:
        CommandError: If the executable is missing or the deadline expires
    """
    timeout = deadline.remaining() if deadline else None
    logger.debug(f"$ {' '.join(command)}")

    try:
        return subprocess.run(
            command,
            cwd=cwd,
            env=env,
            input=input,
            capture_output=capture,
            text=True,
            timeout=timeout,
            check=False,
        )
    except FileNotFoundError:
        raise CommandError(f"Executable not found: {command[0]}")
    except subprocess.TimeoutExpired:
        raise CommandError(f"Command timed out after {timeout:.0f}s: {' '.join(command)}")


def describe_failure(result: subprocess.CompletedProcess) -> str:
    """Short reason for a failed command, taken from its captured output."""
    output = (result.stderr or result.stdout or "").strip()
    if output:
        return output.splitlines()[-1]
    return f"exit code {result.returncode}"
