# src/gpinstall/phases/context.py

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

from gpinstall.config.credentials import Credentials
from gpinstall.config.models import InstallerConfig
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import StepStarted, new_ctx, stamp
from gpinstall.remote.executor import RemoteExecutor
from gpinstall.topology.models import ConfigArtifact, Topology
from gpinstall.utils.execution import ExecutionContext

log = logging.getLogger("gpinstall")


@dataclass
class OrchestratorContext:
    """
    Everything a phase step may touch, passed explicitly: configuration,
    derived topology, the connection registry, credentials, the event bus
    and the phase/step cursor used for progress reporting.
    """

    config: Optional[InstallerConfig] = None
    executor: Optional[RemoteExecutor] = None
    credentials: Credentials = field(default_factory=Credentials)
    exec_ctx: ExecutionContext = field(default_factory=ExecutionContext)
    bus: Optional[EventBus] = None
    run_ctx: Dict[str, Any] = field(default_factory=lambda: new_ctx(mode="normal"))
    mode: str = "normal"
    state_dir: Path = Path(".")
    workspace: Path = Path(".")

    # derived during the run
    topology: Optional[Topology] = None
    artifact: Optional[ConfigArtifact] = None
    artifact_paths: Optional[tuple] = None
    installer_package: Optional[Path] = None
    components: Dict[str, str] = field(default_factory=dict)

    # cursor
    phase: Optional[str] = None
    phase_index: int = 0
    step: int = 0
    total_steps: int = 0

    _cleanups: List[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def dry_run(self) -> bool:
        return self.exec_ctx.dry_run

    @property
    def artifacts_dir(self) -> Path:
        return self.state_dir / "artifacts"

    @property
    def hosts(self) -> List[str]:
        if self.topology is None:
            return []
        return [h.target for h in self.topology.hosts()]

    # ------------------ cursor ------------------

    def begin_phase(self, index: int, name: str, total_steps: int) -> None:
        self.phase = name
        self.phase_index = index
        self.total_steps = total_steps
        self.step = 0

    def advance(self, description: str) -> int:
        self.step += 1
        log.info("Phase %d Step %d/%d: %s", self.phase_index, self.step, self.total_steps, description)
        if self.bus:
            self.bus.emit(StepStarted(
                phase=self.phase or "",
                step=self.step,
                total=self.total_steps,
                description=description,
                **stamp(self.run_ctx),
            ))
        return self.step

    # ------------------ remote ------------------

    def ensure_alive(self) -> List[str]:
        """Canary the sessions of every cluster host before a batch."""
        if self.executor is None or not self.hosts:
            return []
        degraded = self.executor.ensure_alive(self.hosts)
        if degraded:
            log.warning("Degraded host(s), using one-off connections: %s", ", ".join(degraded))
        return degraded

    # ------------------ cleanup ------------------

    def register_cleanup(self, fn: Callable[[], None]) -> None:
        self._cleanups.append(fn)

    def run_cleanup(self) -> None:
        """Run registered callbacks newest first. Failures are logged only."""
        while self._cleanups:
            fn = self._cleanups.pop()
            try:
                fn()
            except Exception as exc:
                log.warning("cleanup %s failed: %s", getattr(fn, "__name__", fn), exc)
