# src/gpinstall/topology/validation.py

from __future__ import annotations

import re

from gpinstall.errors import ConfigurationError

_HOSTNAME = re.compile(r"^[a-zA-Z0-9.-]+$")
_PATH = re.compile(r"^/[a-zA-Z0-9/_.-]*$")

MAX_HOSTNAME = 253
MAX_PATH = 4096


def validate_hostname(value: str, what: str = "hostname") -> str:
    if not value or len(value) > MAX_HOSTNAME or not _HOSTNAME.match(value):
        raise ConfigurationError(f"invalid {what}: {value!r}")
    return value


def validate_path(value: str, what: str = "path") -> str:
    """Absolute path of plain characters; ``..`` components are refused."""
    if not value or len(value) > MAX_PATH or not _PATH.match(value):
        raise ConfigurationError(f"invalid {what}: {value!r}")
    if ".." in value.split("/"):
        raise ConfigurationError(f"invalid {what}: {value!r} (parent reference)")
    return value
