"""Custom exceptions for storage provisioning.

Every failure in the provisioning engine surfaces as one of these exceptions.
None of them is caught inside the engine itself; the CLI logs them and maps
them to an exit code.

Exception Hierarchy:
    ProvisioningError (base)
        ├── EnumerationError
        ├── ResolutionError
        ├── DependencyError
        ├── PreconditionError
        ├── CommandError
        ├── MissingCommandError
        └── UnknownFilesystemError

Usage:
    from disk_provisioner.storage.exceptions import CommandError

    result = executor.run(["mkfs.ext4", "-F", partition.device_path])
    if not result.success:
        raise CommandError(result.argv, target=partition.device_path)
"""

from __future__ import annotations

import shlex
from typing import Sequence


def format_command(argv: Sequence[str]) -> str:
    return " ".join(shlex.quote(str(arg)) for arg in argv)


class ProvisioningError(Exception):
    """Base exception for all provisioning operations."""


class EnumerationError(ProvisioningError):
    """Block device metadata could not be read while listing devices."""

    def __init__(self, message: str, path: str | None = None):
        self.path = path
        if path:
            message = f"{message} ({path})"
        super().__init__(message)


class ResolutionError(ProvisioningError):
    """Partition topology was unreadable or did not match expectations."""

    def __init__(self, device_name: str, reason: str):
        self.device_name = device_name
        self.reason = reason
        super().__init__(f"Cannot resolve partitions of {device_name}: {reason}")


class DependencyError(ProvisioningError):
    """A kernel module or tool required by a filesystem is unavailable."""

    def __init__(self, dependency: str, reason: str = ""):
        self.dependency = dependency
        self.reason = reason
        msg = f"Missing dependency: {dependency}"
        if reason:
            msg += f": {reason}"
        super().__init__(msg)


class PreconditionError(ProvisioningError):
    """The host is not in a state where provisioning may start."""

    def __init__(self, check: str, reason: str):
        self.check = check
        self.reason = reason
        super().__init__(f"Precondition '{check}' failed: {reason}")


class CommandError(ProvisioningError):
    """An external tool failed to spawn or exited non-zero."""

    def __init__(
        self,
        argv: Sequence[str],
        target: str | None = None,
        returncode: int | None = None,
        stderr: str = "",
        reason: str = "",
    ):
        self.argv = list(argv)
        self.target = target
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        self.reason = reason

        msg = f"Command failed: {format_command(self.argv)}"
        if target:
            msg += f" [target {target}]"
        if returncode is not None:
            msg += f" (exit {returncode})"
        detail = reason or self.stderr
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


class MissingCommandError(ProvisioningError):
    """An empty command was handed to the executor."""

    def __init__(self):
        self.argv: list[str] = []
        super().__init__("Missing command: the executor was given an empty argv")


class UnknownFilesystemError(ProvisioningError):
    """The requested filesystem has no backend."""

    def __init__(self, name: str, known: Sequence[str] = ()):
        self.name = name
        self.known = list(known)
        msg = f"Unknown filesystem: {name}"
        if self.known:
            msg += f" (expected one of: {', '.join(self.known)})"
        super().__init__(msg)
