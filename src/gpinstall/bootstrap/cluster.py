# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/bootstrap/cluster.py

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import Iterable

from gpinstall.errors import RemoteCommandError
from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.executor import RemoteExecutor
from gpinstall.utils.templates import TemplateRenderer

log = logging.getLogger("gpinstall")

PROFILE_TEMPLATE = "service_profile.j2"
PROFILE_MARKER = "# >>> gpinstall >>>"

_WITH_GP_ENV = 'source "$1/greenplum_path.sh" && shift && exec "$@"'
_APPEND_ONCE = 'touch "$1" && { grep -qxF -- "$2" "$1" || cat >> "$1"; }'


class ClusterOperator:
    """
    Commands run against an installed cluster as the service account, with
    the environment from ``greenplum_path.sh``.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        *,
        gphome: str,
        account: str,
        coordinator: str,
        coordinator_dir: str,
        port: int,
        database: str,
        seg_prefix: str = "gpseg",
        renderer: TemplateRenderer | None = None,
    ):
        self.executor = executor
        self.gphome = gphome
        self.account = account
        self.coordinator = coordinator
        self.coordinator_dir = coordinator_dir
        self.port = port
        self.database = database
        self.seg_prefix = seg_prefix
        self.renderer = renderer or TemplateRenderer()

    @property
    def coordinator_data_directory(self) -> str:
        # gpinitsystem creates <COORDINATOR_DIRECTORY>/<SEG_PREFIX>-1
        return posixpath.join(self.coordinator_dir, f"{self.seg_prefix}-1")

    @property
    def pg_hba_path(self) -> str:
        return posixpath.join(self.coordinator_data_directory, "pg_hba.conf")

    def gp(self, *argv: str, mutating: bool = True, description: str = "", timeout: float | None = None) -> RemoteCommand:
        return RemoteCommand.script(
            _WITH_GP_ENV, self.gphome, *argv,
            run_as=self.account,
            env=(
                ("COORDINATOR_DATA_DIRECTORY", self.coordinator_data_directory),
                ("PGPORT", str(self.port)),
            ),
            mutating=mutating,
            description=description or " ".join(argv),
            timeout=timeout,
        )

    # ------------------ binaries ------------------

    def binaries_present(self, host: str) -> bool:
        return self.executor.check(host, RemoteCommand.of(
            "test", "-x", posixpath.join(self.gphome, "bin", "gpinitsystem"),
            mutating=False, description="check gpinitsystem binary",
        ))

    # ------------------ environment ------------------

    def profile_text(self) -> str:
        return self.renderer.render(PROFILE_TEMPLATE, {
            "marker": PROFILE_MARKER,
            "gphome": self.gphome,
            "coordinator_data_directory": self.coordinator_data_directory,
            "port": self.port,
            "account": self.account,
            "database": self.database,
        })

    def configure_profile(self, host: str, home_dir: str) -> None:
        """Append the environment block to the account's .bashrc once."""
        bashrc = posixpath.join(home_dir, ".bashrc")
        self.executor.execute(host, RemoteCommand.script(
            _APPEND_ONCE, bashrc, PROFILE_MARKER,
            run_as=self.account,
            stdin=self.profile_text(),
            description=f"configure environment in {bashrc}",
        ), retry_command=True)

    # ------------------ initialisation ------------------

    def upload_artifact(self, config_path: Path, machine_list_path: Path, remote_dir: str) -> tuple[str, str]:
        remote_config = posixpath.join(remote_dir, config_path.name)
        remote_machines = posixpath.join(remote_dir, machine_list_path.name)
        self.executor.copy(self.coordinator, config_path, remote_config)
        self.executor.copy(self.coordinator, machine_list_path, remote_machines)
        for path in (remote_config, remote_machines):
            self.executor.execute(self.coordinator, RemoteCommand.of(
                "chown", f"{self.account}:", path, sudo=True,
                description=f"hand {path} to {self.account}",
            ))
        return remote_config, remote_machines

    def initialize(self, remote_config: str, *, timeout: float = 3600.0) -> None:
        """
        Run gpinitsystem. Exit status 1 means "completed with warnings",
        anything above is a failure.
        """
        cmd = self.gp("gpinitsystem", "-a", "-c", remote_config,
                      description="gpinitsystem", timeout=timeout)
        result = self.executor.execute(self.coordinator, cmd, check=False)
        if result.exit_code == 1:
            log.warning("gpinitsystem finished with warnings; see gpAdminLogs on %s", self.coordinator)
        elif result.exit_code > 1:
            raise RemoteCommandError(self.coordinator, "gpinitsystem", result.exit_code, result.stdout, result.stderr)

    def allow_clients(self, hosts: Iterable[str]) -> None:
        for host in hosts:
            line = f"host    all    all    {host}/32    md5"
            self.executor.execute(self.coordinator, RemoteCommand.script(
                _APPEND_ONCE, self.pg_hba_path, line,
                run_as=self.account,
                stdin=line + "\n",
                description=f"allow {host} in pg_hba.conf",
            ))

    def reload(self) -> None:
        self.executor.execute(self.coordinator, self.gp("gpstop", "-u", description="reload cluster configuration"))

    def stop(self) -> None:
        self.executor.execute(self.coordinator, self.gp("gpstop", "-a", "-M", "fast", description="stop cluster"))

    # ------------------ queries ------------------

    def psql(self, sql: str, *, database: str | None = None, mutating: bool = True) -> str:
        result = self.executor.execute(self.coordinator, self.gp(
            "psql", "-d", database or self.database, "-v", "ON_ERROR_STOP=1", "-At", "-c", sql,
            mutating=mutating, description=f"psql: {sql}",
        ))
        return result.stdout.strip()

    def create_extension(self, name: str) -> None:
        self.psql(f"CREATE EXTENSION IF NOT EXISTS {name};")

    def version(self) -> str:
        return self.psql("SELECT version();", mutating=False)
