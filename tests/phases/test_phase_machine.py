from pathlib import Path

import pytest

from gpinstall.errors import ConnectivityError, PhaseError, PreflightError, RemoteCommandError
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import (
    PhaseCompleted,
    PhaseFailed,
    PhaseSkipped,
    PhaseStarted,
    RunSummary,
    StepStarted,
)
from gpinstall.phases.context import OrchestratorContext
from gpinstall.phases.machine import Phase, PhaseMachine, RunMode, Step
from gpinstall.phases.state import PhaseStateStore
from gpinstall.utils.execution import ExecutionContext
from gpinstall.utils.retry import RetryPolicy


class Recorder:
    """Builds phases whose steps record what ran."""

    def __init__(self):
        self.ran = []
        self.rehydrated = []
        self.fail = {}

    def step(self, phase, n):
        def action(ctx):
            self.ran.append((phase, n))
            exc = self.fail.get((phase, n))
            if exc is not None:
                raise exc
        return Step(f"{phase} step {n}", action)

    def phases(self, **flags):
        out = []
        for i, key in enumerate(["init", "preflight", "hosts", "cluster", "components", "completion"], start=1):
            out.append(Phase(
                key=key,
                name=key.title(),
                steps=tuple(self.step(key, n) for n in range(1, 3)),
                rehydrate=lambda ctx, key=key: self.rehydrated.append(key),
                optional=key == "components",
                extensions_only=key in ("init", "preflight", "components", "completion"),
                rerun_extensions_only=key in ("components", "completion"),
            ))
        return out

    def phases_run(self):
        seen = []
        for phase, _ in self.ran:
            if phase not in seen:
                seen.append(phase)
        return seen


@pytest.fixture
def setup(tmp_path: Path, capture):
    def _make(dry_run=False, teardown=None):
        exec_ctx = ExecutionContext(dry_run=dry_run)
        bus = EventBus([capture])
        ctx = OrchestratorContext(exec_ctx=exec_ctx, bus=bus, state_dir=tmp_path)
        store = PhaseStateStore(tmp_path, exec_ctx)
        return ctx, store, PhaseMachine(store, teardown=teardown, bus=bus)
    return _make


def test_normal_run_executes_all_phases_and_writes_markers(setup, capture):
    rec = Recorder()
    ctx, store, machine = setup()

    report = machine.run(rec.phases(), RunMode.NORMAL, ctx)

    assert rec.phases_run() == ["init", "preflight", "hosts", "cluster", "components", "completion"]
    assert store.completed() == sorted(["init", "preflight", "hosts", "cluster", "components", "completion"])
    assert report.status == "SUCCESS"
    assert len(capture.of(PhaseStarted)) == 6
    assert len(capture.of(PhaseCompleted)) == 6
    assert capture.of(RunSummary)[0].completed == 6


def test_resume_starts_at_first_pending_phase(setup, capture):
    rec = Recorder()
    ctx, store, machine = setup()
    for key in ("init", "preflight"):
        store.mark_complete(key)

    report = machine.run(rec.phases(), RunMode.NORMAL, ctx)

    assert rec.phases_run() == ["hosts", "cluster", "components", "completion"]
    assert rec.rehydrated == ["init", "preflight"]
    assert report.skipped == ["init", "preflight"]
    assert [e.reason for e in capture.of(PhaseSkipped)] == ["already completed"] * 2


def test_force_reset_runs_every_phase(setup):
    rec = Recorder()
    ctx, store, machine = setup()
    for key in ("init", "preflight", "hosts"):
        store.mark_complete(key)

    machine.run(rec.phases(), RunMode.FORCE_RESET, ctx)

    assert rec.phases_run()[0] == "init"
    assert len(rec.phases_run()) == 6
    assert rec.rehydrated == []


def test_scenario_failure_after_retries_then_resume(setup, capture):
    rec = Recorder()
    failure = RemoteCommandError("sdw2", "yum install -y pkg", 1, stderr="No space left\n")
    rec.fail[("hosts", 2)] = failure
    ctx, store, machine = setup()

    with pytest.raises(PhaseError) as info:
        machine.run(rec.phases(), RunMode.NORMAL, ctx)

    assert info.value.category == "remote-command"
    assert store.completed() == ["init", "preflight"]
    failed = capture.of(PhaseFailed)[0]
    assert (failed.name, failed.step, failed.host, failed.exit_code) == ("Hosts", "hosts step 2", "sdw2", 1)
    assert capture.of(RunSummary)[-1].status == "FAILED"

    # operator fixes the host and re-runs
    rec.fail.clear()
    rec.ran.clear()
    machine.run(rec.phases(), RunMode.NORMAL, ctx)

    assert rec.phases_run() == ["hosts", "cluster", "components", "completion"]
    # the failed phase restarts from its first step
    assert rec.ran[0] == ("hosts", 1)


def test_exhausted_retry_fails_the_phase(setup):
    rec = Recorder()
    calls = []

    def refuse():
        calls.append(1)
        raise ConnectivityError("sdw1", "refused")

    def flaky(ctx):
        RetryPolicy(max_attempts=3, delay=0).call(refuse)

    phases = rec.phases()
    phases[2] = Phase(key="hosts", name="Hosts", steps=(Step("flaky", flaky),))
    ctx, store, machine = setup()

    with pytest.raises(PhaseError) as info:
        machine.run(phases, RunMode.NORMAL, ctx)

    assert info.value.category == "connectivity"
    assert len(calls) == 3
    assert not store.is_complete("hosts")


def test_extensions_only_runs_reduced_list(setup):
    rec = Recorder()
    ctx, _, machine = setup()
    machine.run(rec.phases(), RunMode.EXTENSIONS_ONLY, ctx)
    assert rec.phases_run() == ["init", "preflight", "components", "completion"]


def test_extensions_only_reruns_components_after_full_install(setup):
    rec = Recorder()
    ctx, store, machine = setup()
    machine.run(rec.phases(), RunMode.NORMAL, ctx)
    rec.ran.clear()

    report = machine.run(rec.phases(), RunMode.EXTENSIONS_ONLY, ctx)

    assert rec.phases_run() == ["components", "completion"]
    assert rec.rehydrated == ["init", "preflight"]
    assert report.skipped == ["init", "preflight"]
    assert report.executed == ["components", "completion"]


def test_failed_rehydrate_fails_the_run(setup, capture):
    rec = Recorder()
    phases = rec.phases()

    def broken(ctx):
        raise PreflightError("no installer package matching greenplum-db-*.rpm")

    phases[1] = Phase(key="preflight", name="Preflight", steps=phases[1].steps, rehydrate=broken)
    ctx, store, machine = setup()
    for key in ("init", "preflight"):
        store.mark_complete(key)

    with pytest.raises(PhaseError) as info:
        machine.run(phases, RunMode.NORMAL, ctx)

    assert info.value.category == "preflight"
    assert [e.name for e in capture.of(PhaseFailed)] == ["Preflight"]
    assert [e.status for e in capture.of(RunSummary)] == ["FAILED"]
    assert rec.phases_run() == []


def test_interrupt_reports_interrupted_once(setup, capture):
    rec = Recorder()
    rec.fail[("hosts", 1)] = KeyboardInterrupt()
    ctx, store, machine = setup()

    with pytest.raises(KeyboardInterrupt):
        machine.run(rec.phases(), RunMode.NORMAL, ctx)

    summaries = capture.of(RunSummary)
    assert [s.status for s in summaries] == ["INTERRUPTED"]
    assert summaries[0].completed == 2
    assert capture.of(PhaseFailed) == []
    assert not store.is_complete("hosts")


def test_optional_phase_connectivity_failure_is_skipped(setup, capture):
    rec = Recorder()
    rec.fail[("components", 1)] = ConnectivityError("sdw3", "no route to host")
    ctx, store, machine = setup()

    report = machine.run(rec.phases(), RunMode.NORMAL, ctx)

    assert report.status == "SUCCESS"
    assert "components" in report.skipped
    assert not store.is_complete("components")
    assert store.is_complete("completion")
    assert any(e.reason.startswith("connectivity") for e in capture.of(PhaseSkipped))


def test_optional_phase_other_failure_is_fatal(setup):
    rec = Recorder()
    rec.fail[("components", 1)] = RemoteCommandError("cdw", "psql", 3)
    ctx, _, machine = setup()
    with pytest.raises(PhaseError):
        machine.run(rec.phases(), RunMode.NORMAL, ctx)


def test_clean_mode_runs_teardown_and_ignores_markers(setup, tmp_path: Path):
    rec = Recorder()
    torn = []
    ctx, store, machine = setup(teardown=lambda ctx: torn.append(True))
    store.mark_complete("init")

    report = machine.run(rec.phases(), RunMode.CLEAN, ctx)

    assert torn == [True]
    assert rec.ran == []
    assert report.cleaned
    assert store.completed() == ["init"]


def test_dry_run_writes_no_markers(setup, tmp_path: Path):
    rec = Recorder()
    ctx, store, machine = setup(dry_run=True)
    machine.run(rec.phases(), RunMode.NORMAL, ctx)
    assert len(rec.phases_run()) == 6
    assert list(tmp_path.glob(".step_phase_*")) == []


def test_step_counter_resets_per_phase(setup, capture):
    rec = Recorder()
    ctx, _, machine = setup()
    machine.run(rec.phases()[:2], RunMode.NORMAL, ctx)

    steps = [(e.phase, e.step, e.total) for e in capture.of(StepStarted)]
    assert steps == [("Init", 1, 2), ("Init", 2, 2), ("Preflight", 1, 2), ("Preflight", 2, 2)]
