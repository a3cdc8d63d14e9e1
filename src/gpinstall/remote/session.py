# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/gpinstall/remote/session.py

from __future__ import annotations

import logging
import socket
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Optional

import paramiko

from gpinstall.errors import (
    AuthenticationError,
    CommandTimeoutError,
    ConfigurationError,
    ConnectivityError,
    InstallerError,
)

log = logging.getLogger("gpinstall")


@dataclass(frozen=True)
class Endpoint:
    """Session key: one reusable session per (host, port, user)."""

    host: str
    port: int = 22
    user: str = "root"

    def __str__(self) -> str:
        return f"{self.user}@{self.host}:{self.port}"


@dataclass
class CommandResult:
    stdout: str
    stderr: str
    exit_code: int

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


@dataclass
class SshAuth:
    """
    Credentials offered to every connection attempt.

    password: shared secret collected once per run
    prompt: asks the operator for a password for one endpoint when no
            shared secret exists and key/agent auth was rejected
    sudo_password: fed to ``sudo -S`` when set
    """

    password: Optional[str] = field(default=None, repr=False)
    pkey_path: Optional[str] = None
    sudo_password: Optional[str] = field(default=None, repr=False)
    prompt: Optional[Callable[[Endpoint], Optional[str]]] = field(default=None, repr=False)


def load_private_key(path: str | Path) -> paramiko.PKey:
    path = Path(path).expanduser()
    if not path.is_file():
        raise ConfigurationError(f"SSH key not found: {path}")
    last_exc: Exception | None = None
    for key_cls in (
        paramiko.RSAKey,
        paramiko.Ed25519Key,
        paramiko.ECDSAKey,
    ):
        try:
            return key_cls.from_private_key_file(str(path))
        except paramiko.SSHException as exc:
            last_exc = exc
            continue
    raise ConfigurationError(f"unsupported private key format for {path}: {last_exc}")


def open_client(
    endpoint: Endpoint,
    *,
    password: Optional[str] = None,
    pkey_path: Optional[str] = None,
    connect_timeout: float = 10.0,
    client_factory: Callable[[], paramiko.SSHClient] = paramiko.SSHClient,
) -> paramiko.SSHClient:
    """
    Open an authenticated paramiko client, mapping transport exceptions to
    :class:`ConnectivityError`.
    """
    client = client_factory()
    client.set_missing_host_key_policy(paramiko.AutoAddPolicy())

    pkey = load_private_key(pkey_path) if pkey_path else None
    try:
        client.connect(
            hostname=endpoint.host,
            port=endpoint.port,
            username=endpoint.user,
            password=password,
            pkey=pkey,
            timeout=connect_timeout,
            banner_timeout=connect_timeout,
            auth_timeout=connect_timeout,
            allow_agent=password is None,
            look_for_keys=password is None and pkey is None,
        )
    except paramiko.AuthenticationException as exc:
        client.close()
        raise AuthenticationError(endpoint.host, f"authentication rejected for {endpoint.user}") from exc
    except (paramiko.SSHException, OSError, EOFError) as exc:
        client.close()
        raise ConnectivityError(endpoint.host, f"cannot connect to port {endpoint.port}: {exc}") from exc
    return client


class Session:
    """
    One authenticated transport to one endpoint, reused for many commands.
    """

    def __init__(
        self,
        endpoint: Endpoint,
        client: paramiko.SSHClient,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.endpoint = endpoint
        self.client = client
        self._clock = clock
        self.opened_at = clock()
        self.last_used = self.opened_at
        self.closed = False

    def idle_seconds(self) -> float:
        return self._clock() - self.last_used

    def run(self, command: str, *, stdin: Optional[str] = None, timeout: float = 300.0) -> CommandResult:
        self.last_used = self._clock()
        host = self.endpoint.host
        try:
            chan_in, out, err = self.client.exec_command(command, timeout=timeout)
            if stdin is not None:
                chan_in.write(stdin)
                chan_in.flush()
            chan_in.close()
            stdout = out.read().decode("utf-8", errors="replace")
            stderr = err.read().decode("utf-8", errors="replace")
            exit_code = out.channel.recv_exit_status()
        except socket.timeout as exc:
            raise CommandTimeoutError(host, command, timeout) from exc
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise ConnectivityError(host, f"transport failure: {exc}") from exc
        finally:
            self.last_used = self._clock()
        return CommandResult(stdout=stdout, stderr=stderr, exit_code=exit_code)

    def put_file(self, local_path: str | Path, remote_path: str) -> None:
        self.last_used = self._clock()
        try:
            sftp = self.client.open_sftp()
            try:
                sftp.put(str(local_path), str(remote_path))
            finally:
                sftp.close()
        except (paramiko.SSHException, OSError, EOFError) as exc:
            raise ConnectivityError(self.endpoint.host, f"copy to {remote_path} failed: {exc}") from exc

    def canary(self, timeout: float = 10.0) -> bool:
        """No-op round trip; True when the transport is usable."""
        try:
            return self.run("true", timeout=timeout).ok
        except InstallerError as exc:
            log.debug("canary on %s failed: %s", self.endpoint, exc)
            return False

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        try:
            self.client.close()
        except Exception as exc:
            log.debug("closing session %s: %s", self.endpoint, exc)
