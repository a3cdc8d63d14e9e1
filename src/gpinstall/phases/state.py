# src/gpinstall/phases/state.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import List

from gpinstall.utils.execution import ExecutionContext

log = logging.getLogger("gpinstall")

MARKER_PREFIX = ".step_phase_"


class PhaseStateStore:
    """
    Phase completion markers. A marker file's presence is the only record
    that a phase completed; there is no partial state.

    Under dry-run nothing is written or deleted. A force reset then only
    hides the existing markers for the rest of this process.
    """

    def __init__(self, state_dir: Path, ctx: ExecutionContext | None = None):
        self.state_dir = Path(state_dir)
        self.ctx = ctx or ExecutionContext()
        self._ignore_existing = False

    def marker(self, key: str) -> Path:
        return self.state_dir / f"{MARKER_PREFIX}{key}"

    def is_complete(self, key: str) -> bool:
        if self._ignore_existing:
            return False
        return self.marker(key).is_file()

    def mark_complete(self, key: str) -> None:
        path = self.marker(key)
        if self.ctx.intercept(f"would mark phase '{key}' complete ({path})"):
            return
        self.state_dir.mkdir(parents=True, exist_ok=True)
        path.touch()
        log.debug("marker written: %s", path)

    def completed(self) -> List[str]:
        if self._ignore_existing or not self.state_dir.is_dir():
            return []
        return sorted(p.name[len(MARKER_PREFIX):] for p in self.state_dir.glob(f"{MARKER_PREFIX}*"))

    def clear_all(self) -> List[str]:
        """Remove every marker; returns the phase keys that were cleared."""
        cleared = self.completed()
        if self.ctx.intercept(f"would clear {len(cleared)} phase marker(s) in {self.state_dir}"):
            self._ignore_existing = True
            return cleared
        for key in cleared:
            self.marker(key).unlink(missing_ok=True)
        log.info("Cleared %d phase marker(s) in %s", len(cleared), self.state_dir)
        return cleared
