# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/phases/installer.py

from __future__ import annotations

import logging
import posixpath
from functools import cached_property
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from gpinstall.bootstrap.cluster import ClusterOperator
from gpinstall.bootstrap.extensions import EXTENSIONS, ExtensionInstaller, ExtensionSpec
from gpinstall.bootstrap.host import HostBootstrapper, ServiceAccount
from gpinstall.bootstrap.packages import PackageManager
from gpinstall.bootstrap.teardown import CleanupFailure, Teardown
from gpinstall.config.credentials import Credentials
from gpinstall.config.loader import save_config
from gpinstall.config.models import InstallerConfig
from gpinstall.errors import RemoteCommandError
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import ComponentSkipped, stamp
from gpinstall.remote.executor import RemoteExecutor
from gpinstall.remote.leases import sweep_stale_sessions
from gpinstall.topology.generator import MACHINE_LIST_FILENAME, generate, write_artifact
from gpinstall.topology.models import Topology
from gpinstall.utils.execution import ExecutionContext
from gpinstall.utils.retry import RetryPolicy

from .context import OrchestratorContext
from .machine import Phase, RunMode, Step
from .preflight import PreflightChecker, locate_installer

log = logging.getLogger("gpinstall")

STAGING_DIR = "/tmp/gpinstall"
CONFIG_SNAPSHOT = "config.yaml"


def build_executor(
    cfg: InstallerConfig,
    credentials: Credentials,
    *,
    exec_ctx: ExecutionContext,
    runtime_dir: Optional[Path] = None,
    bus: Optional[EventBus] = None,
    run_ctx: Optional[dict] = None,
    client_factory=None,
) -> RemoteExecutor:
    extra = {"client_factory": client_factory} if client_factory is not None else {}
    return RemoteExecutor(
        user=cfg.ssh_user,
        port=cfg.ssh_port,
        auth=credentials.ssh_auth(cfg.ssh_key_path),
        ctx=exec_ctx,
        policy=RetryPolicy(max_attempts=cfg.retry.attempts, delay=cfg.retry.delay),
        connect_timeout=cfg.connect_timeout,
        command_timeout=cfg.command_timeout,
        idle_timeout=cfg.idle_timeout,
        runtime_dir=runtime_dir,
        bus=bus,
        run_ctx=run_ctx,
        **extra,
    )


def remote_config_dir(cfg: InstallerConfig) -> str:
    """Where the generated configuration lands on the coordinator."""
    return posixpath.join(ServiceAccount(cfg.service_account).home_dir, "gpconfigs")


def build_topology(cfg: InstallerConfig) -> Topology:
    return Topology.from_config(
        cfg,
        machine_list_file=posixpath.join(remote_config_dir(cfg), MACHINE_LIST_FILENAME),
    )


class GreenplumInstaller:
    """
    The fixed phase list of a cluster installation and the teardown used
    by clean mode. Collaborators are built lazily from the context so
    that they see the topology computed during Initialization.
    """

    def __init__(self, ctx: OrchestratorContext):
        self.ctx = ctx

    @property
    def cfg(self) -> InstallerConfig:
        return self.ctx.config

    @property
    def executor(self) -> RemoteExecutor:
        return self.ctx.executor

    @property
    def files_dir(self) -> Path:
        return self.cfg.files_path(self.ctx.workspace)

    def account(self, with_password: bool = False) -> ServiceAccount:
        password = None
        if with_password:
            password = self.ctx.credentials.require_service_password(self.cfg.service_account)
        return ServiceAccount(name=self.cfg.service_account, password=password)

    @cached_property
    def bootstrapper(self) -> HostBootstrapper:
        return HostBootstrapper(self.executor)

    @cached_property
    def packages(self) -> PackageManager:
        return PackageManager(self.executor, staging_dir=STAGING_DIR)

    @cached_property
    def cluster(self) -> ClusterOperator:
        topo = self.ctx.topology
        return ClusterOperator(
            self.executor,
            gphome=self.cfg.gphome,
            account=self.cfg.service_account,
            coordinator=topo.coordinator.target,
            coordinator_dir=topo.coordinator_dir,
            port=topo.coordinator_port,
            database=topo.database_name,
            seg_prefix=topo.seg_prefix,
        )

    @cached_property
    def extensions(self) -> ExtensionInstaller:
        return ExtensionInstaller(
            self.packages, self.cluster,
            settings=self.cfg.extensions, files_dir=self.files_dir,
        )

    @cached_property
    def preflight(self) -> PreflightChecker:
        return PreflightChecker(self.executor)

    # ------------------ topology ------------------

    def directories_on(self, address: str) -> List[str]:
        """Data directories a host needs for its roles."""
        topo = self.ctx.topology
        dirs: List[str] = []
        if address in (topo.coordinator.address, topo.standby.address if topo.standby else None):
            dirs.append(topo.coordinator_dir)
        for path in self.ctx.artifact.directories_for(address):
            if path not in dirs:
                dirs.append(path)
        return dirs

    def plan(self) -> List[Tuple[str, List[str], list]]:
        """(target, directories, roles) for every host, canonical order."""
        topo = self.ctx.topology
        return [(h.target, self.directories_on(h.address), topo.roles_of(h)) for h in topo.hosts()]

    def _generate(self, write: bool = True) -> None:
        ctx = self.ctx
        ctx.topology = build_topology(self.cfg)
        ctx.artifact = generate(ctx.topology)
        if write:
            ctx.artifact_paths = write_artifact(ctx.artifact, ctx.artifacts_dir)
            log.info("Cluster configuration written to %s", ctx.artifact_paths[0])

    # ------------------ phase 1: initialization ------------------

    def _prepare(self, ctx: OrchestratorContext) -> None:
        ctx.state_dir.mkdir(parents=True, exist_ok=True)
        ctx.artifacts_dir.mkdir(parents=True, exist_ok=True)
        if self.executor.runtime_dir is not None:
            sweep_stale_sessions(self.executor.runtime_dir)
        self.files_dir.mkdir(parents=True, exist_ok=True)
        log.info("Installation files are read from %s", self.files_dir)

    def _configure(self, ctx: OrchestratorContext) -> None:
        self._generate(write=True)
        topo = ctx.topology
        log.info(
            "Topology: coordinator=%s, %d segment(s), mirrors=%s, standby=%s",
            topo.coordinator.target, len(topo.segment_hosts),
            bool(ctx.artifact.mirror_dirs), topo.standby.target if topo.standby else "none",
        )
        snapshot = ctx.state_dir / CONFIG_SNAPSHOT
        if not ctx.exec_ctx.intercept(f"would snapshot configuration to {snapshot}"):
            save_config(self.cfg, snapshot)

    # ------------------ phase 2: pre-flight ------------------

    def _connect(self, ctx: OrchestratorContext) -> None:
        for host in ctx.hosts:
            self.executor.connect(host)
        degraded = self.executor.degraded_hosts
        if degraded:
            log.warning("Continuing with degraded host(s): %s", ", ".join(degraded))

    def _check_hosts(self, ctx: OrchestratorContext) -> None:
        self.preflight.check_hosts(ctx.hosts)

    def _locate_packages(self, ctx: OrchestratorContext) -> None:
        if ctx.mode != RunMode.EXTENSIONS_ONLY.value:
            ctx.installer_package = locate_installer(self.files_dir, self.cfg.installer_pattern)
        for spec in EXTENSIONS:
            package = self.extensions.package_for(spec)
            ctx.components[spec.name] = package.name if package else "not selected"

    # ------------------ phase 3: host setup ------------------

    def _setup_hosts(self, ctx: OrchestratorContext) -> None:
        account = self.account(with_password=True)
        for target, dirs, roles in self.plan():
            self.bootstrapper.ensure_host(target, roles, dirs, account, install_root=self.cfg.install_dir)

    def _configure_environment(self, ctx: OrchestratorContext) -> None:
        account = self.account()
        for host in ctx.hosts:
            self.cluster.configure_profile(host, account.home_dir)

    # ------------------ phase 4: binaries ------------------

    def _install_binaries(self, ctx: OrchestratorContext) -> None:
        for host in ctx.hosts:
            self.packages.ensure_installed(host, ctx.installer_package, self.cfg.package_name)

    def _verify_binaries(self, ctx: OrchestratorContext) -> None:
        if ctx.exec_ctx.intercept(f"would verify binaries under {self.cfg.gphome} on {len(ctx.hosts)} host(s)"):
            return
        for host in ctx.hosts:
            if not self.cluster.binaries_present(host):
                raise RemoteCommandError(host, f"test -x {self.cfg.gphome}/bin/gpinitsystem", 1)
        log.info("Binaries present on all hosts")

    # ------------------ phase 5: cluster initialization ------------------

    def _reset_data_directories(self, ctx: OrchestratorContext) -> None:
        account = self.account()
        for target, dirs, _ in self.plan():
            self.bootstrapper.clear_leftovers(target, dirs, account)
            self.bootstrapper.ensure_directories(target, dirs, account)

    def _upload(self, ctx: OrchestratorContext) -> None:
        remote_dir = remote_config_dir(self.cfg)
        self.bootstrapper.ensure_directories(ctx.topology.coordinator.target, [remote_dir], self.account())
        config_path, machines_path = ctx.artifact_paths
        self.cluster.upload_artifact(config_path, machines_path, remote_dir)

    def _initialize(self, ctx: OrchestratorContext) -> None:
        remote_config = posixpath.join(remote_config_dir(self.cfg), ctx.artifact_paths[0].name)
        self.cluster.initialize(remote_config)

    def _open_access(self, ctx: OrchestratorContext) -> None:
        self.cluster.allow_clients(h.address for h in ctx.topology.hosts())
        self.cluster.reload()

    # ------------------ phase 6: optional components ------------------

    def _component(self, spec: ExtensionSpec):
        def action(ctx: OrchestratorContext) -> None:
            if self.extensions.install(spec, ctx.hosts):
                ctx.components[spec.name] = "installed"
                return
            ctx.components[spec.name] = "skipped"
            if ctx.bus:
                ctx.bus.emit(ComponentSkipped(name=spec.title, reason="not selected", **stamp(ctx.run_ctx)))
        action.__name__ = f"install_{spec.name}"
        return action

    # ------------------ phase 7: completion ------------------

    def _verify_cluster(self, ctx: OrchestratorContext) -> None:
        if ctx.exec_ctx.intercept(f"would query server version on {self.cluster.coordinator}"):
            return
        version = self.cluster.version()
        log.info("Connected to %s: %s", self.cluster.database, version)

    def _summarize(self, ctx: OrchestratorContext) -> None:
        topo = ctx.topology
        log.info("Coordinator: %s:%d (%s)", topo.coordinator.address, topo.coordinator_port, self.cluster.coordinator_data_directory)
        log.info("Segments: %d on %d machine(s)", len(ctx.artifact.segments), len(ctx.artifact.machine_list))
        log.info("Mirrors: %d", len(ctx.artifact.mirror_dirs))
        if topo.standby is not None:
            log.info("Standby: %s", topo.standby.target)
        for name in (spec.name for spec in EXTENSIONS):
            log.info("Component %s: %s", name, ctx.components.get(name, "unknown"))
        degraded = self.executor.degraded_hosts
        if degraded:
            log.warning("Degraded host(s) during this run: %s", ", ".join(degraded))

    # ------------------ phase list ------------------

    def phases(self) -> List[Phase]:
        return [
            Phase(
                key="initialization",
                name="Initialization",
                steps=(
                    Step("Prepare state and workspace directories", self._prepare),
                    Step("Compute topology and generate cluster configuration", self._configure),
                ),
                rehydrate=lambda ctx: self._generate(write=True),
                extensions_only=True,
            ),
            Phase(
                key="preflight",
                name="Pre-flight Checks",
                steps=(
                    Step("Establish sessions to all hosts", self._connect),
                    Step("Check operating system, commands and sudo", self._check_hosts),
                    Step("Locate installation packages", self._locate_packages),
                ),
                rehydrate=self._locate_packages,
                extensions_only=True,
            ),
            Phase(
                key="host_setup",
                name="Host Setup",
                steps=(
                    Step("Create service account and directories", self._setup_hosts),
                    Step("Configure service account environment", self._configure_environment),
                ),
                remote=True,
            ),
            Phase(
                key="binaries",
                name="Binary Installation",
                steps=(
                    Step("Distribute and install database package", self._install_binaries),
                    Step("Verify installed binaries", self._verify_binaries),
                ),
                remote=True,
            ),
            Phase(
                key="cluster_init",
                name="Cluster Initialization",
                steps=(
                    Step("Clear leftovers and recreate data directories", self._reset_data_directories),
                    Step("Upload cluster configuration", self._upload),
                    Step("Run gpinitsystem", self._initialize),
                    Step("Allow client access and reload configuration", self._open_access),
                ),
                remote=True,
            ),
            Phase(
                key="components",
                name="Optional Components",
                steps=tuple(Step(f"Install {spec.title}", self._component(spec)) for spec in EXTENSIONS),
                optional=True,
                extensions_only=True,
                rerun_extensions_only=True,
                remote=True,
            ),
            Phase(
                key="completion",
                name="Completion",
                steps=(
                    Step("Verify database connectivity", self._verify_cluster),
                    Step("Summarize installation", self._summarize),
                ),
                extensions_only=True,
                rerun_extensions_only=True,
                remote=True,
            ),
        ]

    # ------------------ clean mode ------------------

    def teardown_plan(self) -> List[Tuple[str, Sequence[str]]]:
        if self.ctx.topology is None:
            self._generate(write=False)
        return [(target, dirs) for target, dirs, _ in self.plan()]

    def teardown(self, ctx: OrchestratorContext) -> List[CleanupFailure]:
        plan = self.teardown_plan()
        teardown = Teardown(
            bootstrapper=self.bootstrapper,
            packages=self.packages,
            cluster=self.cluster,
            account=self.account(),
            package_names=[spec.package_prefix for spec in EXTENSIONS] + [self.cfg.package_name],
            install_paths=[self.cfg.install_dir, STAGING_DIR, remote_config_dir(self.cfg)],
            bus=ctx.bus,
            run_ctx=ctx.run_ctx,
        )
        return teardown.run(plan)


def select_mode(*, force: bool = False, extensions_only: bool = False, clean: bool = False) -> RunMode:
    if clean:
        return RunMode.CLEAN
    if extensions_only:
        return RunMode.EXTENSIONS_ONLY
    if force:
        return RunMode.FORCE_RESET
    return RunMode.NORMAL
