# src/gpinstall/phases/preflight.py

from __future__ import annotations

import logging
import re
import shlex
from pathlib import Path
from typing import Dict, Iterable, Optional, Sequence, Tuple

from gpinstall.bootstrap.packages import find_package
from gpinstall.errors import PreflightError
from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.executor import RemoteExecutor

log = logging.getLogger("gpinstall")

SUPPORTED_OS_IDS = ("centos", "rhel", "rocky", "ol", "almalinux")
SUPPORTED_MAJORS = ("7", "8", "9")
REQUIRED_COMMANDS = ("sudo", "rpm", "yum", "tar")

_GP_VERSION = re.compile(r"greenplum-db-(\d+)\.(\d+)")


def parse_os_release(text: str) -> Dict[str, str]:
    """Key/value pairs of an os-release file, quotes removed."""
    out: Dict[str, str] = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        out[key.strip()] = parts[0] if parts else ""
    return out


def os_supported(release: Dict[str, str]) -> Tuple[bool, str]:
    os_id = release.get("ID", "").lower()
    major = release.get("VERSION_ID", "").split(".")[0]
    label = f"{os_id or 'unknown'} {major or '?'}"
    return (os_id in SUPPORTED_OS_IDS and major in SUPPORTED_MAJORS), label


def installer_version(package: Path) -> Optional[Tuple[int, int]]:
    m = _GP_VERSION.search(package.name)
    return (int(m.group(1)), int(m.group(2))) if m else None


class PreflightChecker:
    """
    Read-only host checks, each reduced to pass/fail. Probes run under
    dry-run as well; nothing here changes a host.
    """

    def __init__(self, executor: RemoteExecutor, *, required_commands: Sequence[str] = REQUIRED_COMMANDS):
        self.executor = executor
        self.required_commands = tuple(required_commands)

    def check_os(self, host: str) -> str:
        result = self.executor.execute(host, RemoteCommand.script(
            "cat /etc/os-release 2>/dev/null || cat /usr/lib/os-release",
            mutating=False, description="read os-release",
        ), check=False)
        ok, label = os_supported(parse_os_release(result.stdout))
        if not ok:
            raise PreflightError(
                f"{host}: unsupported operating system '{label}'; "
                f"supported: {'/'.join(SUPPORTED_OS_IDS)} {'/'.join(SUPPORTED_MAJORS)}"
            )
        log.info("%s: OS %s is supported", host, label)
        return label

    def check_commands(self, host: str) -> None:
        missing = [
            name for name in self.required_commands
            if not self.executor.check(host, RemoteCommand.script(
                'command -v "$1" >/dev/null', name, description=f"look for {name}",
            ))
        ]
        if missing:
            raise PreflightError(f"{host}: required command(s) not found: {', '.join(missing)}")

    def check_sudo(self, host: str) -> None:
        if not self.executor.check(host, RemoteCommand.of("true", sudo=True, description="check sudo")):
            raise PreflightError(f"{host}: passwordless or password-fed sudo is not available")

    def check_host(self, host: str) -> None:
        self.check_os(host)
        self.check_commands(host)
        self.check_sudo(host)

    def check_hosts(self, hosts: Iterable[str]) -> None:
        for host in hosts:
            self.check_host(host)


def locate_installer(files_dir: Path, pattern: str) -> Path:
    """The database installer package, which must exist before host work starts."""
    package = find_package(files_dir, (pattern,))
    if package is None:
        raise PreflightError(f"no installer matching '{pattern}' in {files_dir}")
    version = installer_version(package)
    if version is None:
        log.warning("Could not read a version from %s; compatibility not verified", package.name)
    elif version[0] != 7:
        log.warning("Installer %s is version %d.%d; only 7.x is verified", package.name, *version)
    else:
        log.info("Installer: %s (version %d.%d)", package.name, *version)
    return package
