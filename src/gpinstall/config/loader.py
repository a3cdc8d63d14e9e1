# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from gpinstall.errors import ConfigurationError
from .models import InstallerConfig

log = logging.getLogger("gpinstall")

DEFAULT_CONFIG = "gpinstall.yaml"


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    try:
        data = yaml.safe_load(expanded) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"{path}: invalid YAML: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a mapping at top level")
    return data


def _format_validation(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def load_config(path: str | Path) -> InstallerConfig:
    """
    Load and validate an installer YAML config.

    ``${ENV_VAR}`` placeholders are resolved at load time, so values such
    as host lists can come from the environment. Unknown keys are
    rejected.
    """
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"configuration file not found: {path}")

    data = _load_yaml(path)
    log.debug("Loaded configuration from %s", path)
    try:
        return InstallerConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigurationError(f"{path}: {_format_validation(exc)}") from exc


def dump_config(cfg: InstallerConfig) -> str:
    """Deterministic YAML rendering: sorted keys, unset optionals omitted."""
    data = cfg.model_dump(mode="json", exclude_none=True)
    return yaml.safe_dump(data, sort_keys=True, default_flow_style=False)


def save_config(cfg: InstallerConfig, path: str | Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(dump_config(cfg))
    log.debug("Wrote configuration snapshot to %s", path)
    return path
