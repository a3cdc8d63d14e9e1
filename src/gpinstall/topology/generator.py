# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/topology/generator.py

from __future__ import annotations

import logging
import posixpath
from pathlib import Path
from typing import List, Optional, Tuple

from gpinstall.errors import ConfigurationError
from gpinstall.utils.templates import TemplateRenderer

from .models import ConfigArtifact, SegmentAssignment, Topology
from .placement import place_mirrors
from .validation import validate_hostname, validate_path

log = logging.getLogger("gpinstall")

CONFIG_TEMPLATE = "gpinitsystem_config.j2"
CONFIG_FILENAME = "gpinitsystem_config"
MACHINE_LIST_FILENAME = "machine_list"


def _validate(topology: Topology) -> None:
    if not topology.segment_hosts:
        raise ConfigurationError("segment host list is empty")

    validate_hostname(topology.coordinator.address, "coordinator host")
    for h in topology.segment_hosts:
        validate_hostname(h.address, "segment host")
    if topology.standby is not None:
        validate_hostname(topology.standby.address, "standby host")

    validate_path(topology.coordinator_dir, "coordinator directory")
    validate_path(topology.segment_base, "segment base directory")
    validate_path(topology.mirror_base, "mirror base directory")
    validate_path(topology.machine_list_file, "machine list file")


def assign_segments(topology: Topology) -> List[SegmentAssignment]:
    """Primary ``{segment_base}/seg{i}`` on segment i's host, mirror per place_mirrors."""
    machines = [h.address for h in topology.segment_hosts]
    mirrors = place_mirrors(machines)
    out: List[SegmentAssignment] = []
    for i, (primary, mirror) in enumerate(zip(machines, mirrors)):
        out.append(
            SegmentAssignment(
                index=i,
                primary_host=primary,
                primary_dir=posixpath.join(topology.segment_base, f"seg{i}"),
                mirror_host=mirror,
                mirror_dir=posixpath.join(topology.mirror_base, f"seg{i}") if mirror else None,
            )
        )
    return out


def _unique(items) -> List[str]:
    seen = set()
    out = []
    for item in items:
        if item not in seen:
            seen.add(item)
            out.append(item)
    return out


def generate(topology: Topology, renderer: Optional[TemplateRenderer] = None) -> ConfigArtifact:
    """
    Turn a topology into the gpinitsystem configuration and machine list.

    Pure: no remote access, no clock, no environment. Raises
    ConfigurationError for an empty segment list or an invalid host or path.
    """
    _validate(topology)

    segments = assign_segments(topology)
    machine_list = _unique(h.address for h in topology.segment_hosts)
    primary_dirs = [s.primary_dir for s in segments]
    mirror_dirs = [s.mirror_dir for s in segments if s.mirror_dir]

    fields: List[Tuple[str, str]] = [
        ("ARRAY_NAME", topology.array_name),
        ("SEG_PREFIX", topology.seg_prefix),
        ("PORT_BASE", str(topology.port_base)),
        ("COORDINATOR_HOSTNAME", topology.coordinator.address),
        ("COORDINATOR_DIRECTORY", topology.coordinator_dir),
        ("COORDINATOR_PORT", str(topology.coordinator_port)),
        ("DATABASE_NAME", topology.database_name),
        ("ENCODING", topology.encoding),
        ("LOCALE", topology.locale),
        ("CHECK_POINT_SEGMENTS", str(topology.check_point_segments)),
        ("MACHINE_LIST_FILE", topology.machine_list_file),
    ]
    if mirror_dirs:
        fields.append(("MIRROR_PORT_BASE", str(topology.mirror_port_base)))
    if topology.standby is not None:
        fields.append(("STANDBY_COORDINATOR_HOSTNAME", topology.standby.address))

    renderer = renderer or TemplateRenderer()
    text = renderer.render(
        CONFIG_TEMPLATE,
        {
            "array_name": topology.array_name,
            "seg_prefix": topology.seg_prefix,
            "port_base": topology.port_base,
            "coordinator": topology.coordinator.address,
            "coordinator_dir": topology.coordinator_dir,
            "coordinator_port": topology.coordinator_port,
            "database_name": topology.database_name,
            "encoding": topology.encoding,
            "locale": topology.locale,
            "check_point_segments": topology.check_point_segments,
            "machine_list_file": topology.machine_list_file,
            "primary_dirs": primary_dirs,
            "mirror_dirs": mirror_dirs,
            "mirror_port_base": topology.mirror_port_base,
            "standby": topology.standby.address if topology.standby else None,
        },
    )

    log.debug(
        "topology: %d segment(s) on %d machine(s), mirrors=%s",
        len(segments), len(machine_list), bool(mirror_dirs),
    )
    return ConfigArtifact(
        segments=tuple(segments),
        machine_list=tuple(machine_list),
        hosts=tuple(topology.hosts()),
        text=text,
        machine_list_text="".join(f"{m}\n" for m in machine_list),
        fields=tuple(fields),
    )


def write_artifact(artifact: ConfigArtifact, directory: str | Path) -> Tuple[Path, Path]:
    """Write both files locally; returns (config path, machine list path)."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    config_path = directory / CONFIG_FILENAME
    machines_path = directory / MACHINE_LIST_FILENAME
    config_path.write_text(artifact.text)
    machines_path.write_text(artifact.machine_list_text)
    return config_path, machines_path
