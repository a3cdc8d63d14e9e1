# src/gpinstall/config/models.py

from __future__ import annotations

import posixpath
from pathlib import Path
from typing import List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

# true: install, false: never, auto: install when the package is in files_dir
Toggle = Union[bool, Literal["auto"]]


class ExtensionsConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    madlib: Toggle = "auto"
    postgis: Toggle = "auto"
    pxf: Toggle = "auto"


class RetryConfig(BaseModel):
    model_config = ConfigDict(extra="forbid")

    attempts: int = Field(3, ge=1)
    delay: float = Field(5.0, ge=0)


class InstallerConfig(BaseModel):
    """
    Everything the installer needs to know about the target cluster.
    Credentials are never part of this model.
    """

    model_config = ConfigDict(extra="forbid")

    # topology
    coordinator_host: str
    coordinator_port: int = Field(5432, gt=0, lt=65536)
    segment_hosts: List[str] = Field(min_length=1)
    standby_host: Optional[str] = None

    # layout
    install_dir: str = "/opt/greenplum"
    gphome: str = "/usr/local/greenplum-db"
    data_root: str = "/data"
    coordinator_dir: Optional[str] = None
    segment_dir: Optional[str] = None
    mirror_dir: Optional[str] = None

    # database
    array_name: str = "TDI Greenplum Cluster"
    seg_prefix: str = "gpseg"
    database_name: str = "tdi"
    encoding: str = "UNICODE"
    locale: str = "en_US.utf8"
    port_base: int = 40000
    mirror_port_base: int = 50000
    check_point_segments: int = 8

    # access
    ssh_user: str = "root"
    ssh_port: int = Field(22, gt=0, lt=65536)
    ssh_key_path: Optional[str] = None
    service_account: str = "gpadmin"

    # artifacts & state
    files_dir: str = "files"
    installer_pattern: str = "greenplum-db-*.el*.x86_64.rpm"
    package_name: str = "greenplum-db-7"
    state_dir: Optional[str] = None

    extensions: ExtensionsConfig = Field(default_factory=ExtensionsConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    connect_timeout: float = Field(10.0, gt=0)
    command_timeout: float = Field(300.0, gt=0)
    idle_timeout: float = Field(300.0, gt=0)

    @field_validator("coordinator_host", "standby_host")
    @classmethod
    def _strip_host(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        return v or None

    @field_validator("segment_hosts", mode="before")
    @classmethod
    def _split_hosts(cls, v):
        # accept "h1 h2 h3" / "h1,h2" as well as a YAML list
        if isinstance(v, str):
            v = v.replace(",", " ").split()
        return [str(h).strip() for h in v if str(h).strip()]

    @property
    def coordinator_data_dir(self) -> str:
        return self.coordinator_dir or posixpath.join(self.data_root, "coordinator")

    @property
    def segment_base(self) -> str:
        return self.segment_dir or posixpath.join(self.data_root, "primary")

    @property
    def mirror_base(self) -> str:
        return self.mirror_dir or posixpath.join(self.data_root, "mirror")

    def files_path(self, base: Optional[Path] = None) -> Path:
        p = Path(self.files_dir).expanduser()
        if not p.is_absolute() and base is not None:
            p = base / p
        return p
