"""Synchronous external command execution.

``CommandExecutor.run`` blocks until the process exits and hands back its full
output. A non-zero exit status is not an error at this level; callers that
need success use ``run_checked``, which raises ``CommandError`` naming the
command and the device it targeted.
"""

from __future__ import annotations

import subprocess
from dataclasses import dataclass
from typing import Optional, Sequence

from disk_provisioner.logging import LoggerFactory

from .exceptions import CommandError, MissingCommandError, format_command

log = LoggerFactory.for_command()
output_log = log.bind(tags=["command", "output"])


@dataclass(frozen=True)
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def success(self) -> bool:
        return self.returncode == 0


class CommandExecutor:
    """Runs external tools with captured output.

    Args:
        timeout: Seconds before a running command is killed and reported as a
            ``CommandError``. ``None`` waits forever.
    """

    def __init__(self, timeout: Optional[float] = None):
        self.timeout = timeout

    def run(self, argv: Sequence[str], input_text: Optional[str] = None) -> CommandResult:
        argv_list = [str(arg) for arg in argv]
        if not argv_list:
            raise MissingCommandError()

        log.debug(f"Running command: {format_command(argv_list)}")
        try:
            result = subprocess.run(
                argv_list,
                input=input_text,
                text=True,
                capture_output=True,
                timeout=self.timeout,
            )
        except subprocess.TimeoutExpired as error:
            raise CommandError(
                argv_list, reason=f"timed out after {error.timeout} seconds"
            ) from error
        except OSError as error:
            raise CommandError(argv_list, reason=str(error)) from error

        if result.stdout:
            output_log.trace(f"stdout: {result.stdout.strip()}")
        if result.stderr:
            output_log.trace(f"stderr: {result.stderr.strip()}")
        log.debug(f"Command completed with return code {result.returncode}")

        return CommandResult(
            argv=argv_list,
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or "",
        )

    def run_checked(
        self,
        argv: Sequence[str],
        target: Optional[str] = None,
        input_text: Optional[str] = None,
    ) -> CommandResult:
        """Run a command and raise ``CommandError`` unless it exits zero."""
        try:
            result = self.run(argv, input_text=input_text)
        except CommandError as error:
            if target and not error.target:
                raise CommandError(
                    error.argv, target=target, reason=error.reason
                ) from error
            raise
        if not result.success:
            log.error(
                f"Command failed ({result.returncode}): {format_command(result.argv)}"
            )
            raise CommandError(
                result.argv,
                target=target,
                returncode=result.returncode,
                stderr=result.stderr or result.stdout,
            )
        return result
