# src/gpinstall/topology/models.py

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Tuple

from gpinstall.config.models import InstallerConfig


class Role(str, Enum):
    COORDINATOR = "coordinator"
    SEGMENT = "segment"
    STANDBY = "standby"


@dataclass(frozen=True)
class Host:
    """
    A network-addressable target. ``port`` is only set when the operator
    wrote ``address:port``; otherwise the executor's default SSH port applies.
    """

    address: str
    port: Optional[int] = None
    role: Role = Role.SEGMENT

    @classmethod
    def parse(cls, raw: str, role: Role) -> "Host":
        address, sep, port = raw.strip().rpartition(":")
        if sep and port.isdigit():
            return cls(address=address, port=int(port), role=role)
        return cls(address=raw.strip(), role=role)

    @property
    def target(self) -> str:
        """The string the remote layer connects to."""
        return f"{self.address}:{self.port}" if self.port else self.address

    @property
    def identity(self) -> Tuple[str, Optional[int]]:
        return (self.address, self.port)


@dataclass(frozen=True)
class Topology:
    """
    Cluster shape. The index of a segment is its position in
    ``segment_hosts``; a host may appear more than once to carry several
    segments.
    """

    coordinator: Host
    segment_hosts: Tuple[Host, ...]
    standby: Optional[Host] = None
    coordinator_dir: str = "/data/coordinator"
    segment_base: str = "/data/primary"
    mirror_base: str = "/data/mirror"
    coordinator_port: int = 5432
    database_name: str = "tdi"
    encoding: str = "UNICODE"
    locale: str = "en_US.utf8"
    array_name: str = "TDI Greenplum Cluster"
    seg_prefix: str = "gpseg"
    port_base: int = 40000
    mirror_port_base: int = 50000
    check_point_segments: int = 8
    machine_list_file: str = "/tmp/gpinstall_machine_list"

    @classmethod
    def from_config(cls, cfg: InstallerConfig, *, machine_list_file: Optional[str] = None) -> "Topology":
        extra = {"machine_list_file": machine_list_file} if machine_list_file else {}
        return cls(
            coordinator=Host.parse(cfg.coordinator_host, Role.COORDINATOR),
            segment_hosts=tuple(Host.parse(h, Role.SEGMENT) for h in cfg.segment_hosts),
            standby=Host.parse(cfg.standby_host, Role.STANDBY) if cfg.standby_host else None,
            coordinator_dir=cfg.coordinator_data_dir,
            segment_base=cfg.segment_base,
            mirror_base=cfg.mirror_base,
            coordinator_port=cfg.coordinator_port,
            database_name=cfg.database_name,
            encoding=cfg.encoding,
            locale=cfg.locale,
            array_name=cfg.array_name,
            seg_prefix=cfg.seg_prefix,
            port_base=cfg.port_base,
            mirror_port_base=cfg.mirror_port_base,
            check_point_segments=cfg.check_point_segments,
            **extra,
        )

    def hosts(self) -> List[Host]:
        """
        Canonical host set: coordinator, then segments, then standby,
        deduplicated in first-seen order. A host keeps the role it was first
        seen with.
        """
        seen = set()
        out: List[Host] = []
        for h in (self.coordinator, *self.segment_hosts, *([self.standby] if self.standby else [])):
            if h.identity in seen:
                continue
            seen.add(h.identity)
            out.append(h)
        return out

    def roles_of(self, host: Host) -> List[Role]:
        roles = []
        if host.identity == self.coordinator.identity:
            roles.append(Role.COORDINATOR)
        if any(s.identity == host.identity for s in self.segment_hosts):
            roles.append(Role.SEGMENT)
        if self.standby is not None and self.standby.identity == host.identity:
            roles.append(Role.STANDBY)
        return roles


@dataclass(frozen=True)
class SegmentAssignment:
    index: int
    primary_host: str
    primary_dir: str
    mirror_host: Optional[str] = None
    mirror_dir: Optional[str] = None


@dataclass(frozen=True)
class ConfigArtifact:
    """
    Output of the generator. ``text`` and ``machine_list_text`` are the
    exact bytes handed to gpinitsystem.
    """

    segments: Tuple[SegmentAssignment, ...]
    machine_list: Tuple[str, ...]
    hosts: Tuple[Host, ...]
    text: str
    machine_list_text: str
    fields: Tuple[Tuple[str, str], ...] = field(default=())

    @property
    def primary_dirs(self) -> List[str]:
        return [s.primary_dir for s in self.segments]

    @property
    def mirror_dirs(self) -> List[str]:
        return [s.mirror_dir for s in self.segments if s.mirror_dir]

    def directories_for(self, address: str) -> List[str]:
        """Primary and mirror directories that live on ``address``."""
        out: List[str] = []
        for s in self.segments:
            if s.primary_host == address:
                out.append(s.primary_dir)
            if s.mirror_host == address and s.mirror_dir:
                out.append(s.mirror_dir)
        return out
