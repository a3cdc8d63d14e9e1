# src/gpinstall/bootstrap/packages.py

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import List, Optional, Sequence

from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.executor import RemoteExecutor

log = logging.getLogger("gpinstall")

_INSTALLED = 'rpm -qa | grep -qi -- "^$1"'


def find_packages(files_dir: Path, patterns: Sequence[str]) -> List[Path]:
    """All files in ``files_dir`` matching any pattern, first pattern first."""
    found: List[Path] = []
    if not files_dir.is_dir():
        return found
    for pattern in patterns:
        for p in sorted(files_dir.glob(pattern)):
            if p.is_file() and p not in found:
                found.append(p)
    return found


def find_package(files_dir: Path, patterns: Sequence[str]) -> Optional[Path]:
    found = find_packages(files_dir, patterns)
    if len(found) > 1:
        log.warning("Multiple packages match %s in %s; using %s", list(patterns), files_dir, found[0].name)
    return found[0] if found else None


class PackageManager:
    """
    Thin wrapper over the OS package manager. Install/remove are treated as
    black boxes that succeed or fail.
    """

    def __init__(self, executor: RemoteExecutor, *, staging_dir: str):
        self.executor = executor
        self.staging_dir = staging_dir

    def is_installed(self, host: str, name_prefix: str) -> bool:
        return self.executor.check(host, RemoteCommand.script(
            _INSTALLED, name_prefix, mutating=False,
            description=f"query package {name_prefix}",
        ))

    def distribute(self, host: str, package: Path) -> str:
        remote = posixpath.join(self.staging_dir, package.name)
        self.executor.execute(host, RemoteCommand.of(
            "mkdir", "-p", self.staging_dir, description=f"create {self.staging_dir}",
        ))
        self.executor.copy(host, package, remote)
        return remote

    def install(self, host: str, remote_path: str) -> None:
        self.executor.execute(host, RemoteCommand.of(
            "yum", "install", "-y", remote_path, sudo=True,
            description=f"install {posixpath.basename(remote_path)}",
        ))

    def remove(self, host: str, name: str) -> None:
        self.executor.execute(host, RemoteCommand.of(
            "yum", "remove", "-y", name, sudo=True,
            description=f"remove package {name}",
        ))

    def ensure_installed(self, host: str, package: Path, name_prefix: str) -> bool:
        """Distribute and install unless already present. True when installed now."""
        if self.is_installed(host, name_prefix):
            log.info("%s: %s already installed, skipping", host, name_prefix)
            return False
        remote = self.distribute(host, package)
        self.install(host, remote)
        log.info("%s: installed %s", host, package.name)
        return True
