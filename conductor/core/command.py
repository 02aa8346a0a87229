"""Run external commands with timeout handling.

Used by agents that shell out to build tooling, by the exit-test runner and
by command-based validation probes.
"""

import os
import shlex
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from .exceptions import CommandExecutionError, CommandTimeoutError


@dataclass
class ShellResult:
    """Result of an external command."""

    command: str
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float

    @property
    def success(self) -> bool:
        return self.exit_code == 0

    @property
    def error_message(self) -> Optional[str]:
        if self.success:
            return None
        message = f"Command exited with code {self.exit_code}"
        if self.stderr:
            message += f": {self.stderr.strip()[:500]}"
        return message


class CommandRunner:
    """Execute commands in a working directory."""

    def __init__(
        self,
        working_dir: Optional[Path] = None,
        default_timeout: int = 600,
        env: Optional[Dict[str, str]] = None,
    ):
        """Initialize the runner.

        Args:
            working_dir: Working directory for commands (default: cwd)
            default_timeout: Default timeout in seconds
            env: Extra environment variables
        """
        self.working_dir = Path(working_dir) if working_dir else Path.cwd()
        self.default_timeout = default_timeout
        self.env = env or {}

    def run(
        self,
        command: Union[str, List[str]],
        timeout: Optional[int] = None,
        cwd: Optional[Path] = None,
    ) -> ShellResult:
        """Run a command and capture its output.

        Args:
            command: Command string (split with shlex) or argument list
            timeout: Timeout in seconds (uses default if None)
            cwd: Working directory override

        Returns:
            ShellResult; a non-zero exit code is not an error

        Raises:
            CommandTimeoutError: If the command times out
            CommandExecutionError: If the command cannot be started
        """
        if timeout is None:
            timeout = self.default_timeout

        args = shlex.split(command) if isinstance(command, str) else list(command)
        display = command if isinstance(command, str) else shlex.join(args)
        if not args:
            raise CommandExecutionError("Empty command")

        env = dict(os.environ)
        env.update(self.env)
        start_time = time.time()

        try:
            process = subprocess.Popen(
                args,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=str(cwd or self.working_dir),
                env=env,
                text=True,
            )

            # Wait with timeout
            try:
                stdout, stderr = process.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.communicate()
                raise CommandTimeoutError(
                    f"Command timed out after {timeout}s: {display}"
                )

        except FileNotFoundError as e:
            raise CommandExecutionError(f"Command not found: {args[0]}") from e
        except OSError as e:
            raise CommandExecutionError(f"Failed to execute {display}: {e}") from e

        return ShellResult(
            command=display,
            exit_code=process.returncode,
            stdout=stdout,
            stderr=stderr,
            duration_seconds=time.time() - start_time,
        )
