# src/gpinstall/remote/leases.py

from __future__ import annotations

import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import List, Optional

from .session import Endpoint

log = logging.getLogger("gpinstall")

# gpinstall-session-<host>_<port>_<user>.<pid>
SESSION_PREFIX = "gpinstall-session-"


def lease_path(runtime_dir: Path, endpoint: Endpoint, pid: Optional[int] = None) -> Path:
    pid = os.getpid() if pid is None else pid
    return Path(runtime_dir) / f"{SESSION_PREFIX}{endpoint.host}_{endpoint.port}_{endpoint.user}.{pid}"


def acquire(runtime_dir: Path, endpoint: Endpoint) -> Path:
    """Publish that this process holds a session to ``endpoint``."""
    path = lease_path(runtime_dir, endpoint)
    path.parent.mkdir(parents=True, exist_ok=True)
    opened = datetime.now(timezone.utc).isoformat(timespec="seconds")
    path.write_text(f"{endpoint}\n{opened}\n")
    return path


def release(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    return True


def _owner_pid(path: Path) -> Optional[int]:
    suffix = path.name.rsplit(".", 1)[-1]
    return int(suffix) if suffix.isdigit() else None


def sweep_stale_sessions(runtime_dir: Path, *, force: bool = False) -> List[Path]:
    """
    Remove session leases left behind by runs that ended abnormally.

    A lease is stale when its owning process is gone. With ``force`` every
    lease matching the naming convention is removed, the current process's
    included. Safe to call repeatedly.
    """
    runtime_dir = Path(runtime_dir)
    if not runtime_dir.is_dir():
        return []

    removed: List[Path] = []
    for path in sorted(runtime_dir.glob(f"{SESSION_PREFIX}*")):
        pid = _owner_pid(path)
        if not force and pid is not None and _pid_alive(pid):
            continue
        release(path)
        removed.append(path)
        log.debug("removed stale session lease %s", path.name)

    if removed:
        log.info("Swept %d stale session lease(s) from %s", len(removed), runtime_dir)
    return removed
