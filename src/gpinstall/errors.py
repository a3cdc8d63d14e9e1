# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/errors.py

from __future__ import annotations

from typing import Dict, Optional


class InstallerError(RuntimeError):
    """
    Root of every error the installer reports to the operator.

    ``category`` is printed in front of the message (``[category] message``)
    and recorded in the error journal.
    """

    category = "error"


class ConfigurationError(InstallerError):
    """Missing or invalid configuration. Raised before any remote side effect."""

    category = "configuration"


class ConnectivityError(InstallerError):
    """Host unreachable, transport dropped or authentication rejected."""

    category = "connectivity"

    def __init__(self, host: str, message: str):
        self.host = host
        super().__init__(f"{host}: {message}")


class AuthenticationError(ConnectivityError):
    """The host answered but rejected every credential offered."""


class CommandTimeoutError(InstallerError):
    """A remote command did not finish within its timeout."""

    category = "timeout"

    def __init__(self, host: str, command: str, timeout: float):
        self.host = host
        self.command = command
        self.timeout = timeout
        super().__init__(f"{host}: command timed out after {timeout:g}s: {command}")


class RemoteCommandError(InstallerError):
    """A remote command ran and returned a non-zero exit status."""

    category = "remote-command"

    def __init__(
        self,
        host: str,
        command: str,
        exit_code: int,
        stdout: str = "",
        stderr: str = "",
    ):
        self.host = host
        self.command = command
        self.exit_code = exit_code
        self.stdout = stdout
        self.stderr = stderr
        detail = stderr.strip().splitlines()[-1] if stderr.strip() else ""
        msg = f"{host}: '{command}' exited with {exit_code}"
        if detail:
            msg += f" ({detail})"
        super().__init__(msg)


class PreflightError(InstallerError):
    """A host or the local workspace failed a pre-flight check."""

    category = "preflight"


class CleanupError(InstallerError):
    """Best-effort teardown failure. Logged, never escalated."""

    category = "cleanup"


class PhaseError(InstallerError):
    """A step failed; the phase it belongs to stays pending."""

    def __init__(self, phase: str, step: str, cause: BaseException):
        self.phase = phase
        self.step = step
        self.cause = cause
        super().__init__(f"phase '{phase}' failed at step '{step}': {cause}")

    @property
    def category(self) -> str:  # type: ignore[override]
        return getattr(self.cause, "category", "error")


class ParallelExecutionError(InstallerError):
    """One or more hosts failed in a parallel batch."""

    category = "parallel"

    def __init__(self, failures: Dict[str, BaseException]):
        self.failures = dict(failures)
        hosts = ", ".join(sorted(self.failures))
        super().__init__(f"{len(self.failures)} host(s) failed: {hosts}")


def describe_failure(exc: BaseException) -> Dict[str, Optional[object]]:
    """
    Flatten the interesting attributes of an error for the error journal.
    """
    root = exc
    while not hasattr(root, "host"):
        nxt = root.cause if isinstance(root, PhaseError) else root.__cause__
        if nxt is None:
            break
        root = nxt
    return {
        "category": getattr(exc, "category", "error"),
        "error": str(exc),
        "host": getattr(root, "host", None),
        "command": getattr(root, "command", None),
        "exit_code": getattr(root, "exit_code", None),
    }
