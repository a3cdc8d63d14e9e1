# src/gpinstall/bootstrap/extensions.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Optional, Sequence, Tuple

from gpinstall.config.models import ExtensionsConfig
from gpinstall.errors import ConfigurationError

from .cluster import ClusterOperator
from .packages import PackageManager, find_package

log = logging.getLogger("gpinstall")


@dataclass(frozen=True)
class ExtensionSpec:
    """
    An optional component: an RPM installed on every host plus what has to
    happen on the coordinator afterwards.
    """

    name: str
    title: str
    patterns: Tuple[str, ...]
    package_prefix: str
    extensions: Tuple[str, ...]
    # commands run on the coordinator as the service account after install
    post_install: Tuple[Tuple[str, ...], ...] = ()


EXTENSIONS: Tuple[ExtensionSpec, ...] = (
    ExtensionSpec(
        name="madlib",
        title="MADlib",
        patterns=("madlib*gp7*.rpm", "madlib-oss-gp7-*.rpm", "madlib-*.rpm"),
        package_prefix="madlib",
        extensions=("madlib",),
    ),
    ExtensionSpec(
        name="postgis",
        title="PostGIS",
        patterns=("postgis*gp7*.rpm", "postgis-gp7-*.rpm", "postgis-*.rpm"),
        package_prefix="postgis",
        extensions=("postgis",),
    ),
    ExtensionSpec(
        name="pxf",
        title="PXF",
        patterns=("pxf-gp7-*.rpm",),
        package_prefix="pxf-gp7",
        extensions=("pxf",),
        post_install=(("pxf", "cluster", "register"), ("pxf", "cluster", "start")),
    ),
)

BY_NAME: Dict[str, ExtensionSpec] = {e.name: e for e in EXTENSIONS}


def resolve_package(spec: ExtensionSpec, toggle, files_dir: Path) -> Optional[Path]:
    """
    Decide whether ``spec`` is installed in this run.

    False: never. "auto": when a matching package sits in ``files_dir``.
    True: the package is required; its absence is a configuration error.
    """
    if toggle is False:
        return None
    package = find_package(files_dir, spec.patterns)
    if package is None and toggle is True:
        raise ConfigurationError(
            f"{spec.title} is enabled but no package matching {list(spec.patterns)} is in {files_dir}"
        )
    return package


class ExtensionInstaller:
    def __init__(
        self,
        packages: PackageManager,
        cluster: ClusterOperator,
        *,
        settings: ExtensionsConfig,
        files_dir: Path,
    ):
        self.packages = packages
        self.cluster = cluster
        self.settings = settings
        self.files_dir = files_dir

    def package_for(self, spec: ExtensionSpec) -> Optional[Path]:
        return resolve_package(spec, getattr(self.settings, spec.name), self.files_dir)

    def install(self, spec: ExtensionSpec, hosts: Sequence[str]) -> bool:
        """Install and enable ``spec``. Returns False when it is not selected."""
        package = self.package_for(spec)
        if package is None:
            log.info("%s not selected (no package or disabled), skipping", spec.title)
            return False

        log.info("Installing %s from %s on %d host(s)", spec.title, package.name, len(hosts))
        for host in hosts:
            self.packages.ensure_installed(host, package, spec.package_prefix)

        coordinator = self.cluster.coordinator
        for argv in spec.post_install:
            self.cluster.executor.execute(coordinator, self.cluster.gp(*argv))
        for ext in spec.extensions:
            self.cluster.create_extension(ext)
        log.info("%s enabled in database %s", spec.title, self.cluster.database)
        return True
