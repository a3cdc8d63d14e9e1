# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/phases/machine.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, List, Optional, Sequence

from gpinstall.errors import ConfigurationError, ConnectivityError, PhaseError, describe_failure
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import (
    PhaseCompleted,
    PhaseFailed,
    PhaseSkipped,
    PhaseStarted,
    RunSummary,
    stamp,
)
from gpinstall.utils.retry import RetryError

from .context import OrchestratorContext
from .state import PhaseStateStore

log = logging.getLogger("gpinstall")


class RunMode(str, Enum):
    NORMAL = "normal"
    FORCE_RESET = "force_reset"
    EXTENSIONS_ONLY = "extensions_only"
    CLEAN = "clean"


StepAction = Callable[[OrchestratorContext], None]


@dataclass(frozen=True)
class Step:
    description: str
    action: StepAction


@dataclass(frozen=True)
class Phase:
    """
    key: marker name, stable across releases
    rehydrate: re-derives in-memory state later phases need when this
               phase is skipped as already completed
    optional: a connectivity failure skips the phase with a warning
    extensions_only: kept in the reduced extensions-only run
    rerun_extensions_only: runs in the extensions-only run even when its
                           marker exists
    remote: sessions are checked before the first step
    """

    key: str
    name: str
    steps: Sequence[Step]
    rehydrate: Optional[StepAction] = None
    optional: bool = False
    extensions_only: bool = False
    rerun_extensions_only: bool = False
    remote: bool = False

    @property
    def total_steps(self) -> int:
        return len(self.steps)


@dataclass
class RunReport:
    executed: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    degraded: List[str] = field(default_factory=list)
    failed: Optional[str] = None
    interrupted: bool = False
    cleaned: bool = False

    @property
    def status(self) -> str:
        if self.interrupted:
            return "INTERRUPTED"
        return "FAILED" if self.failed else "SUCCESS"


def _is_connectivity(exc: BaseException) -> bool:
    if isinstance(exc, ConnectivityError):
        return True
    return isinstance(exc, RetryError) and isinstance(exc.__cause__, ConnectivityError)


class PhaseMachine:
    """
    Runs phases in declared order, persisting one marker per completed
    phase. Resume granularity is the whole phase: a failed step leaves its
    phase pending and the next run starts that phase from its first step.
    """

    def __init__(
        self,
        store: PhaseStateStore,
        *,
        teardown: Optional[StepAction] = None,
        bus: Optional[EventBus] = None,
    ):
        self.store = store
        self.teardown = teardown
        self.bus = bus

    def _emit(self, ctx: OrchestratorContext, event_cls, **fields) -> None:
        if self.bus:
            self.bus.emit(event_cls(**fields, **stamp(ctx.run_ctx)))

    @staticmethod
    def select(phases: Sequence[Phase], mode: RunMode) -> List[Phase]:
        if mode is RunMode.EXTENSIONS_ONLY:
            return [p for p in phases if p.extensions_only]
        return list(phases)

    def run(self, phases: Sequence[Phase], mode: RunMode, ctx: OrchestratorContext) -> RunReport:
        report = RunReport()

        if mode is RunMode.CLEAN:
            if self.teardown is None:
                raise ConfigurationError("clean mode requested but no teardown is configured")
            self.teardown(ctx)
            report.cleaned = True
            return report

        if mode is RunMode.FORCE_RESET:
            cleared = self.store.clear_all()
            log.info("Force reset: %d marker(s) cleared", len(cleared))

        current = "run"
        try:
            for index, phase in enumerate(self.select(phases, mode), start=1):
                current = phase.key
                self._run_phase(index, phase, mode, ctx, report)
        except KeyboardInterrupt:
            report.interrupted = True
            raise
        except Exception:
            report.failed = report.failed or current
            raise
        finally:
            if ctx.executor is not None:
                report.degraded = ctx.executor.degraded_hosts
            self._emit(
                ctx, RunSummary,
                status=report.status,
                completed=len(report.executed),
                skipped=len(report.skipped),
                failed=1 if report.failed else 0,
            )
        return report

    def _fail(
        self, phase: Phase, step: str, exc: Exception, ctx: OrchestratorContext, report: RunReport
    ) -> PhaseError:
        info = describe_failure(exc)
        log.error("%s failed at step '%s': %s", phase.name, step, exc)
        self._emit(
            ctx, PhaseFailed,
            name=phase.name,
            step=step,
            category=str(info["category"]),
            error=str(info["error"]),
            host=info["host"],
            command=info["command"],
            exit_code=info["exit_code"],
        )
        report.failed = phase.key
        return PhaseError(phase.name, step, exc)

    def _run_phase(
        self,
        index: int,
        phase: Phase,
        mode: RunMode,
        ctx: OrchestratorContext,
        report: RunReport,
    ) -> None:
        rerun = mode is RunMode.EXTENSIONS_ONLY and phase.rerun_extensions_only
        if self.store.is_complete(phase.key) and not rerun:
            log.info("%s phase already completed, skipping.", phase.name)
            self._emit(ctx, PhaseSkipped, name=phase.name, reason="already completed")
            if phase.rehydrate is not None:
                try:
                    phase.rehydrate(ctx)
                except Exception as exc:
                    raise self._fail(phase, "restore completed phase state", exc, ctx, report) from exc
            report.skipped.append(phase.key)
            return

        ctx.begin_phase(index, phase.name, phase.total_steps)
        log.info("=== Phase %d: %s (%d steps) ===", index, phase.name, phase.total_steps)
        self._emit(ctx, PhaseStarted, index=index, name=phase.name, total_steps=phase.total_steps)
        started = time.monotonic()

        current = "session check"
        try:
            if phase.remote:
                ctx.ensure_alive()
            for step in phase.steps:
                current = step.description
                ctx.advance(step.description)
                step.action(ctx)
        except Exception as exc:
            if phase.optional and _is_connectivity(exc):
                log.warning("%s skipped: %s", phase.name, exc)
                self._emit(ctx, PhaseSkipped, name=phase.name, reason=f"connectivity: {exc}")
                report.skipped.append(phase.key)
                return
            raise self._fail(phase, current, exc, ctx, report) from exc

        self.store.mark_complete(phase.key)
        duration_ms = int((time.monotonic() - started) * 1000)
        self._emit(ctx, PhaseCompleted, name=phase.name, duration_ms=duration_ms)
        log.info("%s completed", phase.name)
        report.executed.append(phase.key)
