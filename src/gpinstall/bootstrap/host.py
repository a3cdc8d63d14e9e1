# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/bootstrap/host.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Sequence

from gpinstall.errors import ConfigurationError
from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.executor import RemoteExecutor
from gpinstall.topology.models import Role

log = logging.getLogger("gpinstall")


@dataclass(frozen=True)
class ServiceAccount:
    name: str = "gpadmin"
    password: Optional[str] = field(default=None, repr=False)
    group: Optional[str] = None
    home: Optional[str] = None

    @property
    def group_name(self) -> str:
        return self.group or self.name

    @property
    def home_dir(self) -> str:
        return self.home or f"/home/{self.name}"


# Scripts are constant text; every value arrives as a positional parameter.
_ENSURE_GROUP = 'getent group "$1" >/dev/null || groupadd "$1"'
_ENSURE_USER = 'id -u "$1" >/dev/null 2>&1 || useradd -m -d "$3" -g "$2" -s /bin/bash "$1"'
_STOP_PROCESSES = """
id -u "$1" >/dev/null 2>&1 || exit 0
pgrep -u "$1" >/dev/null || exit 0
pkill -TERM -u "$1" || true
sleep "$2"
pkill -KILL -u "$1" || true
"""
_CLEAN_IPC = """
id -u "$1" >/dev/null 2>&1 || exit 0
for kind in m s q; do
    ipcs -"$kind" | awk -v owner="$1" '$3 == owner {print $2}' | while read -r id; do
        ipcrm -"$kind" "$id" || true
    done
done
"""


class HostBootstrapper:
    """
    Idempotent host preparation, one concern per remote operation so that
    a failure names what broke (process teardown, shared memory, directory
    ownership, account).
    """

    def __init__(self, executor: RemoteExecutor, *, settle_seconds: int = 2):
        self.executor = executor
        self.settle_seconds = settle_seconds

    def _run(self, host: str, cmd: RemoteCommand) -> None:
        # each small operation gets its own retry budget
        self.executor.execute(host, cmd, retry_command=True)

    # ------------------ account ------------------

    def ensure_group(self, host: str, account: ServiceAccount) -> None:
        self._run(host, RemoteCommand.script(
            _ENSURE_GROUP, account.group_name, sudo=True,
            description=f"ensure group {account.group_name}",
        ))

    def ensure_user(self, host: str, account: ServiceAccount) -> None:
        self._run(host, RemoteCommand.script(
            _ENSURE_USER, account.name, account.group_name, account.home_dir, sudo=True,
            description=f"ensure user {account.name}",
        ))

    def set_password(self, host: str, account: ServiceAccount) -> None:
        if not account.password:
            log.debug("%s: no password for %s, leaving it unchanged", host, account.name)
            return
        self._run(host, RemoteCommand.of(
            "chpasswd", sudo=True,
            stdin=f"{account.name}:{account.password}\n",
            description=f"set password for {account.name}",
        ))

    # ------------------ directories ------------------

    def ensure_directories(self, host: str, directories: Iterable[str], account: ServiceAccount) -> None:
        for path in directories:
            self._run(host, RemoteCommand.of(
                "install", "-d", "-m", "0755",
                "-o", account.name, "-g", account.group_name, path,
                sudo=True,
                description=f"ensure directory {path}",
            ))

    def remove_directories(self, host: str, directories: Sequence[str]) -> None:
        directories = list(directories)
        if not directories:
            return
        for path in directories:
            if path.rstrip("/") == "":
                raise ConfigurationError("refusing to remove /")
        self._run(host, RemoteCommand.of(
            "rm", "-rf", "--", *directories, sudo=True,
            description=f"remove {' '.join(directories)}",
        ))

    # ------------------ leftovers ------------------

    def stop_processes(self, host: str, account: ServiceAccount) -> None:
        self._run(host, RemoteCommand.script(
            _STOP_PROCESSES, account.name, str(self.settle_seconds), sudo=True,
            description=f"stop processes owned by {account.name}",
        ))

    def clean_shared_memory(self, host: str, account: ServiceAccount) -> None:
        self._run(host, RemoteCommand.script(
            _CLEAN_IPC, account.name, sudo=True,
            description=f"remove IPC segments owned by {account.name}",
        ))

    def clear_leftovers(self, host: str, directories: Sequence[str], account: ServiceAccount) -> None:
        """Undo what an aborted cluster initialisation may have left behind."""
        log.info("%s: clearing leftovers of previous attempts", host)
        self.stop_processes(host, account)
        self.clean_shared_memory(host, account)
        self.remove_directories(host, directories)

    # ------------------ entry point ------------------

    def ensure_host(
        self,
        host: str,
        roles: Sequence[Role],
        directories: Sequence[str],
        account: ServiceAccount,
        *,
        install_root: str,
        fresh: bool = True,
    ) -> None:
        """
        Make ``host`` ready for its roles: service account with its
        password, install root and data directories owned by the account.
        ``fresh`` first clears leftover processes, IPC and data directories.
        """
        role_names = ",".join(r.value for r in roles) or "none"
        log.info("%s: bootstrapping host (roles=%s)", host, role_names)
        if fresh:
            self.clear_leftovers(host, directories, account)
        self.ensure_group(host, account)
        self.ensure_user(host, account)
        self.set_password(host, account)
        self.ensure_directories(host, [install_root, *directories], account)

