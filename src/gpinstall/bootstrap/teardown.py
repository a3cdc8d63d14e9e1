# src/gpinstall/bootstrap/teardown.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable, List, Optional, Sequence, Tuple

from gpinstall.errors import CleanupError, InstallerError
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import CleanupFailed, stamp

from .cluster import ClusterOperator
from .host import HostBootstrapper, ServiceAccount
from .packages import PackageManager

log = logging.getLogger("gpinstall")


@dataclass(frozen=True)
class CleanupFailure:
    host: str
    step: str
    error: str


class Teardown:
    """
    Removes the cluster from every host. Each step is best effort: a
    failure is logged and recorded, and teardown moves on.
    """

    def __init__(
        self,
        *,
        bootstrapper: HostBootstrapper,
        packages: PackageManager,
        cluster: ClusterOperator,
        account: ServiceAccount,
        package_names: Sequence[str],
        install_paths: Sequence[str],
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.bootstrapper = bootstrapper
        self.packages = packages
        self.cluster = cluster
        self.account = account
        self.package_names = list(package_names)
        self.install_paths = list(install_paths)
        self.bus = bus
        self.run_ctx = run_ctx or {}

    def _steps(self, host: str, directories: Sequence[str]) -> List[Tuple[str, Callable[[], None]]]:
        steps: List[Tuple[str, Callable[[], None]]] = []
        if host == self.cluster.coordinator:
            steps.append(("stop cluster", self.cluster.stop))
        steps += [
            ("stop processes", lambda: self.bootstrapper.stop_processes(host, self.account)),
            ("remove data directories", lambda: self.bootstrapper.remove_directories(host, directories)),
            ("clean shared memory", lambda: self.bootstrapper.clean_shared_memory(host, self.account)),
        ]
        for name in self.package_names:
            steps.append((f"uninstall {name}", lambda name=name: self._uninstall(host, name)))
        steps.append(("remove install files", lambda: self.bootstrapper.remove_directories(host, self.install_paths)))
        return steps

    def _uninstall(self, host: str, name: str) -> None:
        if not self.packages.is_installed(host, name):
            log.debug("%s: %s not installed", host, name)
            return
        self.packages.remove(host, name)

    def run_host(self, host: str, directories: Sequence[str]) -> List[CleanupFailure]:
        failures: List[CleanupFailure] = []
        log.warning("CLEAN MODE: removing cluster from %s", host)
        for step, action in self._steps(host, directories):
            try:
                action()
            except InstallerError as exc:
                err = CleanupError(f"{host}: {step}: {exc}")
                log.warning("%s", err)
                failures.append(CleanupFailure(host=host, step=step, error=str(exc)))
                if self.bus:
                    self.bus.emit(CleanupFailed(host=host, step=step, error=str(exc), **stamp(self.run_ctx)))
        return failures

    def run(self, plan: Sequence[Tuple[str, Sequence[str]]]) -> List[CleanupFailure]:
        """``plan`` pairs each host with the data directories to remove there."""
        failures: List[CleanupFailure] = []
        for host, directories in plan:
            failures += self.run_host(host, directories)
        if failures:
            log.warning("Teardown finished with %d failed step(s)", len(failures))
        else:
            log.info("Teardown finished on %d host(s)", len(plan))
        return failures

