# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/remote/executor.py

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Set

import paramiko

from gpinstall.errors import AuthenticationError, ConfigurationError, ConnectivityError, RemoteCommandError
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import CommandFailed, HostDegraded, SessionReconnected, new_ctx, stamp
from gpinstall.utils.execution import ExecutionContext
from gpinstall.utils.retry import RetryPolicy

from . import leases
from .commands import RemoteCommand
from .session import CommandResult, Endpoint, Session, SshAuth, open_client

log = logging.getLogger("gpinstall")

# sessions idle for longer than this are re-established before reuse
DEFAULT_IDLE_TIMEOUT = 300.0


class RemoteExecutor:
    """
    Registry of per-host sessions plus the operations the installer runs
    through them.

    - ``connect`` opens one session per (host, port, user) and validates it
      with a canary; a host whose session cannot be established is marked
      degraded and served by one-off connections from then on.
    - ``execute``/``copy`` reuse the session, retry transport failures
      according to ``policy`` and skip mutating work under dry-run.
    - ``ensure_alive`` re-checks sessions before a batch and reconnects.
    """

    def __init__(
        self,
        *,
        user: str = "root",
        port: int = 22,
        auth: Optional[SshAuth] = None,
        ctx: Optional[ExecutionContext] = None,
        policy: Optional[RetryPolicy] = None,
        connect_timeout: float = 10.0,
        command_timeout: float = 300.0,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        runtime_dir: Optional[Path] = None,
        client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
        bus: Optional[EventBus] = None,
        run_ctx: Optional[dict] = None,
    ):
        self.user = user
        self.port = port
        self.auth = auth or SshAuth()
        self.ctx = ctx or ExecutionContext()
        self.policy = policy or RetryPolicy()
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self.idle_timeout = idle_timeout
        self.runtime_dir = runtime_dir
        self.client_factory = client_factory
        self.bus = bus
        self.run_ctx = run_ctx or new_ctx(mode="normal", dry_run=self.ctx.dry_run)

        self._sessions: Dict[Endpoint, Session] = {}
        self._leases: Dict[Endpoint, Path] = {}
        self._degraded: Set[Endpoint] = set()
        self._passwords: Dict[Endpoint, str] = {}
        # guards the registry dicts; each endpoint has its own connect lock
        self._lock = threading.Lock()
        self._connect_locks: Dict[Endpoint, threading.Lock] = {}
        self._prompt_lock = threading.Lock()

    # ------------------ registry ------------------

    def endpoint(self, host: str, port: Optional[int] = None) -> Endpoint:
        """``host`` may carry an explicit port as ``address:port``."""
        if port is None and ":" in host:
            host, _, raw = host.rpartition(":")
            port = int(raw)
        return Endpoint(host=host, port=port or self.port, user=self.user)

    def is_degraded(self, host: str, port: Optional[int] = None) -> bool:
        return self.endpoint(host, port) in self._degraded

    @property
    def degraded_hosts(self) -> List[str]:
        return sorted(ep.host for ep in self._degraded)

    def session(self, host: str, port: Optional[int] = None) -> Optional[Session]:
        return self._sessions.get(self.endpoint(host, port))

    def _emit(self, event_cls, **fields) -> None:
        if self.bus:
            self.bus.emit(event_cls(**fields, **stamp(self.run_ctx)))

    # ------------------ connections ------------------

    def _connect_lock(self, ep: Endpoint) -> threading.Lock:
        with self._lock:
            return self._connect_locks.setdefault(ep, threading.Lock())

    def _open(self, ep: Endpoint) -> paramiko.SSHClient:
        password = self.auth.password or self._passwords.get(ep)
        try:
            return open_client(
                ep,
                password=password,
                pkey_path=self.auth.pkey_path,
                connect_timeout=self.connect_timeout,
                client_factory=self.client_factory,
            )
        except AuthenticationError:
            if password is not None or self.auth.prompt is None:
                raise
            with self._prompt_lock:
                prompted = self.auth.prompt(ep)
            if not prompted:
                raise
            self._passwords[ep] = prompted
            return open_client(
                ep,
                password=prompted,
                pkey_path=self.auth.pkey_path,
                connect_timeout=self.connect_timeout,
                client_factory=self.client_factory,
            )

    def _establish(self, ep: Endpoint) -> Session:
        session = Session(ep, self._open(ep))
        if not session.canary(timeout=self.connect_timeout):
            session.close()
            raise ConnectivityError(ep.host, "canary command failed on new session")
        lease = leases.acquire(self.runtime_dir, ep) if self.runtime_dir is not None else None
        with self._lock:
            self._sessions[ep] = session
            if lease is not None:
                self._leases[ep] = lease
        log.debug("session established: %s", ep)
        return session

    def _degrade(self, ep: Endpoint, reason: str) -> None:
        with self._lock:
            self._degraded.add(ep)
        log.warning(
            "%s: persistent session unavailable (%s); using one-off connections for this host",
            ep.host, reason,
        )
        self._emit(HostDegraded, host=ep.host, reason=reason)

    def connect(self, host: str, port: Optional[int] = None) -> Optional[Session]:
        """
        Return the live session for ``host``, creating it on first use.
        Returns None when the host is degraded.
        """
        ep = self.endpoint(host, port)
        with self._connect_lock(ep):
            if ep in self._degraded:
                return None
            existing = self._sessions.get(ep)
            if existing is not None:
                if existing.idle_seconds() <= self.idle_timeout:
                    return existing
                log.debug("session %s idle for %.0fs, re-establishing", ep, existing.idle_seconds())
                self._drop(ep)
            try:
                return self._establish(ep)
            except AuthenticationError:
                raise
            except ConnectivityError as exc:
                self._degrade(ep, str(exc))
                return None

    def _drop(self, ep: Endpoint) -> None:
        with self._lock:
            session = self._sessions.pop(ep, None)
            lease = self._leases.pop(ep, None)
        if session is not None:
            session.close()
        if lease is not None:
            leases.release(lease)

    def close(self, host: str, port: Optional[int] = None) -> None:
        self._drop(self.endpoint(host, port))

    def close_all(self) -> None:
        with self._lock:
            endpoints = list(self._sessions)
        for ep in endpoints:
            self._drop(ep)
        log.debug("all sessions closed")

    def ensure_alive(self, hosts: Iterable[str]) -> List[str]:
        """
        Canary every session about to be used by a batch; reconnect the ones
        that stopped answering. Returns the hosts that are degraded.
        """
        hosts = list(hosts)
        for host in hosts:
            ep = self.endpoint(host)
            if ep in self._degraded:
                continue
            session = self._sessions.get(ep)
            if session is None:
                self.connect(host)
                continue
            if session.canary(timeout=self.connect_timeout):
                continue
            log.warning("%s: session stopped responding, re-establishing", host)
            self._emit(SessionReconnected, host=host, reason="canary failed")
            self.close(host)
            self.connect(host)
        return [h for h in hosts if self.is_degraded(h)]

    # ------------------ operations ------------------

    def _with_session(self, ep: Endpoint, fn: Callable[[Session], object]):
        session = self.connect(ep.host, ep.port)
        if session is not None:
            try:
                return fn(session)
            except ConnectivityError:
                # the next attempt builds a fresh session
                self.close(ep.host, ep.port)
                raise

        one_off = Session(ep, self._open(ep))
        try:
            return fn(one_off)
        finally:
            one_off.close()

    def execute(
        self,
        host: str,
        command: RemoteCommand,
        *,
        timeout: Optional[float] = None,
        check: bool = True,
        retry_command: bool = False,
    ) -> CommandResult:
        """
        Run ``command`` on ``host``.

        check: raise RemoteCommandError on non-zero exit
        retry_command: also retry non-zero exits (only meaningful with check)
        """
        if command.mutating and self.ctx.intercept(f"{host}: {command}"):
            return CommandResult(stdout="", stderr="", exit_code=0)

        ep = self.endpoint(host)
        limit = timeout or command.timeout or self.command_timeout
        use_sudo_password = bool(self.auth.sudo_password) and (command.sudo or command.run_as is not None)
        rendered = command.render(sudo_password=use_sudo_password)
        stdin = command.stdin
        if use_sudo_password:
            stdin = f"{self.auth.sudo_password}\n{stdin or ''}"

        def attempt() -> CommandResult:
            log.debug("%s$ %s", host, rendered)
            result = self._with_session(ep, lambda s: s.run(rendered, stdin=stdin, timeout=limit))
            if check and not result.ok:
                self._emit(
                    CommandFailed,
                    host=host,
                    command=str(command),
                    exit_code=result.exit_code,
                    stderr=result.stderr[-2000:],
                )
                raise RemoteCommandError(host, str(command), result.exit_code, result.stdout, result.stderr)
            return result

        retry_on = (ConnectivityError, RemoteCommandError) if retry_command else (ConnectivityError,)

        def on_retry(attempt_no: int, exc: Exception) -> None:
            log.warning("%s: attempt %d/%d failed: %s", host, attempt_no, self.policy.max_attempts, exc)

        return self.policy.call(attempt, retry_on=retry_on, on_retry=on_retry)

    def copy(self, host: str, local_path: str | Path, remote_path: str) -> None:
        local_path = Path(local_path)
        if self.ctx.intercept(f"{host}: copy {local_path} -> {remote_path}"):
            return
        if not local_path.is_file():
            raise ConfigurationError(f"local file not found: {local_path}")

        ep = self.endpoint(host)

        def attempt() -> None:
            log.debug("%s: put %s -> %s", host, local_path, remote_path)
            self._with_session(ep, lambda s: s.put_file(local_path, remote_path))

        self.policy.call(attempt, retry_on=(ConnectivityError,))

    def check(self, host: str, command: RemoteCommand, *, timeout: Optional[float] = None) -> bool:
        """Run a read-only probe and report whether it exited 0."""
        probe = replace(command, mutating=False)
        return self.execute(host, probe, timeout=timeout, check=False).ok
