# src/gpinstall/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from typing import Dict, Any, Optional
from datetime import datetime, timezone
import uuid


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single installer invocation
    mode: str         # normal/force_reset/extensions_only/clean
    dry_run: bool

    def dict(self) -> Dict[str, Any]:
        return asdict(self)


def _now() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


def new_ctx(mode: str, dry_run: bool = False, run_id: Optional[str] = None) -> Dict[str, Any]:
    return {
        "ts": _now(),
        "run_id": run_id or str(uuid.uuid4()),
        "mode": mode,
        "dry_run": dry_run,
    }


def stamp(ctx: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``ctx`` with a fresh timestamp."""
    return {**ctx, "ts": _now()}


# ---------------------------------------------------------------------
# Phase lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    index: int
    name: str
    total_steps: int

@dataclass(frozen=True)
class PhaseSkipped(BaseEvent):
    name: str
    reason: str

@dataclass(frozen=True)
class StepStarted(BaseEvent):
    phase: str
    step: int
    total: int
    description: str

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    name: str
    duration_ms: int

@dataclass(frozen=True)
class PhaseFailed(BaseEvent):
    name: str
    step: str
    category: str
    error: str
    host: Optional[str] = None
    command: Optional[str] = None
    exit_code: Optional[int] = None


# ---------------------------------------------------------------------
# Remote execution
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class HostDegraded(BaseEvent):
    host: str
    reason: str

@dataclass(frozen=True)
class SessionReconnected(BaseEvent):
    host: str
    reason: str

@dataclass(frozen=True)
class CommandFailed(BaseEvent):
    host: str
    command: str
    exit_code: int
    stderr: str


# ---------------------------------------------------------------------
# Components, cleanup & summary
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class ComponentSkipped(BaseEvent):
    name: str
    reason: str

@dataclass(frozen=True)
class CleanupFailed(BaseEvent):
    host: str
    step: str
    error: str

@dataclass(frozen=True)
class RunSummary(BaseEvent):
    status: str       # "SUCCESS" | "FAILED" | "INTERRUPTED"
    completed: int
    skipped: int
    failed: int


# Events that belong in the persistent error journal.
FAILURE_EVENTS = (PhaseFailed, CommandFailed, CleanupFailed, HostDegraded)
