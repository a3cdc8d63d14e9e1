# src/gpinstall/deploy/push.py

from __future__ import annotations

import logging
import posixpath
import tarfile
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from gpinstall.errors import ConfigurationError, RemoteCommandError
from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.executor import RemoteExecutor
from gpinstall.remote.parallel import run_parallel

log = logging.getLogger("gpinstall")

BUNDLE_ROOT = "gpinstall"
MANIFEST = "MANIFEST"
DEFAULT_TARGET_DIR = "/opt/gpinstall"

_BACKUP = '[ -d "$1" ] || exit 0; mv -- "$1" "$1.backup.$2"'
_EXTRACT = 'tar -xzf "$2" -C "$1" --strip-components=1 && rm -f -- "$2"'


def build_bundle(
    config_path: Path,
    output_dir: Path,
    *,
    files_dir: Optional[Path] = None,
    extra: Sequence[Path] = (),
) -> Path:
    """
    Pack the configuration, the installation files and anything in
    ``extra`` into ``gpinstall-bundle-<ts>.tar.gz`` under ``output_dir``.
    A MANIFEST lists every member.
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise ConfigurationError(f"configuration file not found: {config_path}")

    members: List[tuple] = [(config_path, config_path.name)]
    if files_dir is not None and Path(files_dir).is_dir():
        for p in sorted(Path(files_dir).rglob("*")):
            if p.is_file():
                members.append((p, posixpath.join("files", p.relative_to(files_dir).as_posix())))
    for p in extra:
        p = Path(p)
        if not p.exists():
            raise ConfigurationError(f"bundle member not found: {p}")
        members.append((p, p.name))

    output_dir.mkdir(parents=True, exist_ok=True)
    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    bundle = output_dir / f"gpinstall-bundle-{ts}.tar.gz"
    manifest = output_dir / MANIFEST
    manifest.write_text("".join(f"{arc}\n" for _, arc in members))

    with tarfile.open(bundle, "w:gz") as tar:
        for path, arc in members:
            tar.add(path, arcname=posixpath.join(BUNDLE_ROOT, arc))
        tar.add(manifest, arcname=posixpath.join(BUNDLE_ROOT, MANIFEST))
    manifest.unlink()
    log.info("Bundle %s: %d file(s)", bundle.name, len(members))
    return bundle


@dataclass
class PushReport:
    durations: Dict[str, float] = field(default_factory=dict)
    parallel: bool = False

    @property
    def hosts(self) -> List[str]:
        return sorted(self.durations)


class Pusher:
    """
    Copies a bundle to hosts and unpacks it under ``target_dir``. An
    existing target is moved aside first when ``backup`` is set.
    """

    def __init__(
        self,
        executor: RemoteExecutor,
        *,
        target_dir: str = DEFAULT_TARGET_DIR,
        backup: bool = True,
        verify: bool = True,
    ):
        self.executor = executor
        self.target_dir = target_dir.rstrip("/") or "/"
        self.backup = backup
        self.verify = verify

    def push_host(self, host: str, bundle: Path) -> float:
        started = time.monotonic()
        log.info("[%s] deploying %s to %s", host, bundle.name, self.target_dir)

        if self.backup:
            stamp = datetime.now(timezone.utc).strftime("%Y%m%d_%H%M%S")
            self.executor.execute(host, RemoteCommand.script(
                _BACKUP, self.target_dir, stamp, description=f"back up {self.target_dir}",
            ))
        self.executor.execute(host, RemoteCommand.of(
            "mkdir", "-p", self.target_dir, description=f"create {self.target_dir}",
        ))
        remote_bundle = posixpath.join(self.target_dir, bundle.name)
        self.executor.copy(host, bundle, remote_bundle)
        self.executor.execute(host, RemoteCommand.script(
            _EXTRACT, self.target_dir, remote_bundle, description=f"unpack {bundle.name}",
        ))
        if self.verify:
            self.verify_host(host)

        duration = time.monotonic() - started
        log.info("[%s] deployed in %.1fs", host, duration)
        return duration

    def verify_host(self, host: str) -> None:
        if self.executor.ctx.intercept(f"{host}: would verify {self.target_dir}/{MANIFEST}"):
            return
        manifest = posixpath.join(self.target_dir, MANIFEST)
        if not self.executor.check(host, RemoteCommand.of("test", "-f", manifest)):
            raise RemoteCommandError(host, f"test -f {manifest}", 1)

    def push(self, hosts: Sequence[str], bundle: Path, *, parallel: bool = False, max_workers: Optional[int] = None) -> PushReport:
        """
        Sequential mode stops at the first failing host. Parallel mode runs
        every host and raises ParallelExecutionError listing all failures.
        """
        report = PushReport(parallel=parallel)
        if parallel:
            report.durations = run_parallel(hosts, lambda h: self.push_host(h, bundle), max_workers=max_workers)
            return report
        for host in hosts:
            report.durations[host] = self.push_host(host, bundle)
        return report
