# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/cli/app.py
from __future__ import annotations

import sys
import tempfile
from pathlib import Path
from typing import List, Optional

import typer

from gpinstall.config.credentials import Credentials
from gpinstall.config.loader import DEFAULT_CONFIG, load_config
from gpinstall.config.models import InstallerConfig
from gpinstall.deploy.push import DEFAULT_TARGET_DIR, Pusher, build_bundle
from gpinstall.errors import InstallerError, ParallelExecutionError
from gpinstall.logging.log import init_logging, state_root
from gpinstall.observers.console import ConsoleObserver
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import new_ctx
from gpinstall.observers.jsonfile import JsonFileObserver, error_journal
from gpinstall.observers.logger import LoggerObserver
from gpinstall.phases.context import OrchestratorContext
from gpinstall.phases.installer import GreenplumInstaller, build_executor, build_topology, select_mode
from gpinstall.phases.machine import PhaseMachine
from gpinstall.phases.state import PhaseStateStore
from gpinstall.remote.leases import sweep_stale_sessions
from gpinstall.topology import generator
from gpinstall.utils.execution import ExecutionContext

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="Greenplum cluster installer", no_args_is_help=True)

EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130


def _prompt(message: str) -> Optional[str]:
    value = typer.prompt(message, hide_input=True, default="", show_default=False)
    return value or None


def _interactive_prompt():
    return _prompt if sys.stdin.isatty() else None


def _fail(exc: InstallerError) -> typer.Exit:
    typer.secho(f"[{exc.category}] {exc}", fg=typer.colors.RED, err=True)
    return typer.Exit(code=EXIT_FAILURE)


def _state_dir(cfg: InstallerConfig) -> Path:
    if cfg.state_dir:
        return Path(cfg.state_dir).expanduser()
    return state_root() / "state"


def _runtime_dir() -> Path:
    return state_root() / "run"


def _bus(logger, run_id: str) -> EventBus:
    root = state_root()
    return EventBus(observers=[
        ConsoleObserver(),
        LoggerObserver(logger),
        JsonFileObserver(root / "logs" / f"{run_id}.jsonl"),
        error_journal(root / "errors.jsonl"),
    ])


# ------------------------------------------------------------------------------
# install
# ------------------------------------------------------------------------------

@app.command()
def install(
    config: Path = typer.Option(Path(DEFAULT_CONFIG), "--config", "-c", help="Installer configuration (YAML)"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log mutating operations instead of running them"),
    force: bool = typer.Option(False, "--force", "--reset", help="Clear phase markers and start from phase 1"),
    extensions_only: bool = typer.Option(False, "--extensions-only", help="Only install optional components"),
    clean: bool = typer.Option(False, "--clean", help="Remove the cluster from every host and exit"),
    debug: bool = typer.Option(False, "--debug", help="DEBUG output on the console"),
):
    """
    Install the cluster, resuming after the last completed phase.
    """
    if sum((force, extensions_only, clean)) > 1:
        raise typer.BadParameter("--force, --extensions-only and --clean are mutually exclusive")

    mode = select_mode(force=force, extensions_only=extensions_only, clean=clean)
    logger, run_id, log_path = init_logging(verbose=debug)
    exec_ctx = ExecutionContext(dry_run=dry_run)
    run_ctx = new_ctx(mode=mode.value, dry_run=dry_run, run_id=run_id)
    bus = _bus(logger, run_id)

    if dry_run:
        logger.warning("Dry run: no changes will be made on any host")

    ctx: Optional[OrchestratorContext] = None
    try:
        cfg = load_config(config)
        credentials = Credentials.collect(prompt=_interactive_prompt())
        executor = build_executor(
            cfg, credentials,
            exec_ctx=exec_ctx, runtime_dir=_runtime_dir(), bus=bus, run_ctx=run_ctx,
        )
        ctx = OrchestratorContext(
            config=cfg,
            executor=executor,
            credentials=credentials,
            exec_ctx=exec_ctx,
            bus=bus,
            run_ctx=run_ctx,
            mode=mode.value,
            state_dir=_state_dir(cfg),
            workspace=config.expanduser().resolve().parent,
        )
        ctx.register_cleanup(executor.close_all)

        installer = GreenplumInstaller(ctx)
        machine = PhaseMachine(
            PhaseStateStore(ctx.state_dir, exec_ctx),
            teardown=installer.teardown,
            bus=bus,
        )
        report = machine.run(installer.phases(), mode, ctx)
    except InstallerError as exc:
        logger.error("Run failed: %s (log: %s)", exc, log_path)
        raise _fail(exc)
    except KeyboardInterrupt:
        logger.warning("Interrupted by operator; running cleanup")
        typer.secho("Interrupted.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    finally:
        if ctx is not None:
            ctx.run_cleanup()

    if report.cleaned:
        typer.secho("Cluster removed.", fg=typer.colors.GREEN)
        return
    prefix = "[DRY-RUN] " if dry_run else ""
    typer.secho(
        f"{prefix}Installation finished: {len(report.executed)} phase(s) run, "
        f"{len(report.skipped)} skipped",
        fg=typer.colors.GREEN,
    )
    if report.degraded:
        typer.secho(f"Degraded host(s): {', '.join(report.degraded)}", fg=typer.colors.YELLOW)
    typer.echo(f"Log: {log_path}")


# ------------------------------------------------------------------------------
# generate
# ------------------------------------------------------------------------------

@app.command("generate")
def generate_config(
    config: Path = typer.Option(Path(DEFAULT_CONFIG), "--config", "-c"),
    output: Path = typer.Option(Path("artifacts"), "--output", "-o", help="Directory for the generated files"),
):
    """
    Write the gpinitsystem configuration and machine list locally.
    """
    try:
        cfg = load_config(config)
        artifact = generator.generate(build_topology(cfg))
        config_path, machines_path = generator.write_artifact(artifact, output)
    except InstallerError as exc:
        raise _fail(exc)

    typer.echo(f"{config_path}")
    typer.echo(f"{machines_path}")
    for seg in artifact.segments:
        mirror = f"{seg.mirror_host}:{seg.mirror_dir}" if seg.mirror_host else "-"
        typer.echo(f"seg{seg.index}: {seg.primary_host}:{seg.primary_dir}  mirror {mirror}")


# ------------------------------------------------------------------------------
# push
# ------------------------------------------------------------------------------

@app.command()
def push(
    hosts: List[str] = typer.Argument(..., help="Target hosts (address or address:port)"),
    config: Path = typer.Option(Path(DEFAULT_CONFIG), "--config", "-c"),
    target_dir: str = typer.Option(DEFAULT_TARGET_DIR, "--target-dir", "-t"),
    parallel: bool = typer.Option(False, "--parallel", "-P", help="Deploy to all hosts concurrently"),
    backup: bool = typer.Option(True, "--backup/--no-backup"),
    verify: bool = typer.Option(True, "--verify/--no-verify"),
    include_files: bool = typer.Option(True, "--files/--no-files", help="Ship the installation files directory"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    debug: bool = typer.Option(False, "--debug"),
):
    """
    Copy the installer configuration and files to one or more hosts.
    """
    logger, run_id, _ = init_logging(verbose=debug)
    exec_ctx = ExecutionContext(dry_run=dry_run)
    run_ctx = new_ctx(mode="push", dry_run=dry_run, run_id=run_id)
    bus = _bus(logger, run_id)

    executor = None
    try:
        cfg = load_config(config)
        executor = build_executor(
            cfg, Credentials.collect(prompt=_interactive_prompt()),
            exec_ctx=exec_ctx, runtime_dir=_runtime_dir(), bus=bus, run_ctx=run_ctx,
        )
        files_dir = cfg.files_path(config.expanduser().resolve().parent) if include_files else None
        with tempfile.TemporaryDirectory(prefix="gpinstall-push-") as tmp:
            bundle = build_bundle(config, Path(tmp), files_dir=files_dir)
            pusher = Pusher(executor, target_dir=target_dir, backup=backup, verify=verify)
            report = pusher.push(hosts, bundle, parallel=parallel)
    except ParallelExecutionError as exc:
        for host, err in sorted(exc.failures.items()):
            typer.secho(f"  {host}: {err}", fg=typer.colors.RED, err=True)
        raise _fail(exc)
    except InstallerError as exc:
        raise _fail(exc)
    except KeyboardInterrupt:
        typer.secho("Interrupted.", fg=typer.colors.YELLOW, err=True)
        raise typer.Exit(code=EXIT_INTERRUPTED)
    finally:
        if executor is not None:
            executor.close_all()

    mode = "parallel" if report.parallel else "sequential"
    typer.secho(f"Deployed to {len(report.hosts)} host(s) ({mode})", fg=typer.colors.GREEN)
    for host in report.hosts:
        typer.echo(f"  {host}: {report.durations[host]:.1f}s")


# ------------------------------------------------------------------------------
# sweep
# ------------------------------------------------------------------------------

@app.command()
def sweep(
    force: bool = typer.Option(False, "--force", help="Remove every lease, including live ones"),
    runtime_dir: Optional[Path] = typer.Option(None, "--runtime-dir"),
):
    """
    Remove session leases left behind by runs that ended abnormally.
    """
    removed = sweep_stale_sessions(runtime_dir or _runtime_dir(), force=force)
    typer.echo(f"Removed {len(removed)} stale session lease(s)")


if __name__ == "__main__":
    app()
