import logging
import socket
from collections import defaultdict
from pathlib import Path

import paramiko
import pytest

from gpinstall.remote.executor import RemoteExecutor
from gpinstall.utils.execution import ExecutionContext
from gpinstall.utils.retry import RetryPolicy

# ----------------- Fakes for Paramiko -----------------


class FakeHost:
    """Scripted behaviour of one remote machine."""

    def __init__(self, name):
        self.name = name
        self.responses = []
        self.commands = []
        self.stdin = []
        self.puts = []
        self.connects = 0
        self.unreachable = False
        self.fail_connects = 0     # next N connect() calls raise
        self.canary_failures = 0   # next N "true" probes exit 1
        self.drop_transport = 0    # next N exec_command() calls raise SSHException
        self.password = None       # when set, connect() requires it
        self.hang_on = None        # substring that makes a command time out

    def respond(self, needle, stdout="", stderr="", rc=0):
        self.responses.append((needle, (stdout, stderr, rc)))

    def result_for(self, command):
        for needle, result in reversed(self.responses):
            if needle in command:
                return result
        return ("", "", 0)

    def ran(self, needle):
        return [c for c in self.commands if needle in c]


class _Stdin:
    def __init__(self, host):
        self.host = host
        self.buf = []

    def write(self, data):
        self.buf.append(data)

    def flush(self):
        pass

    def close(self):
        if self.buf:
            self.host.stdin.append("".join(self.buf))


class _FakeChannel:
    def __init__(self, rc=0):
        self._rc = rc

    def recv_exit_status(self):
        return self._rc


class _Buf:
    def __init__(self, s="", rc=0):
        self._s = s
        self.channel = _FakeChannel(rc)

    def read(self):
        return self._s.encode()


class FakeSFTP:
    def __init__(self, host):
        self.host = host

    def put(self, local, remote):
        self.host.puts.append((local, remote))

    def close(self):
        pass


class FakeSSHClient:
    def __init__(self, net):
        self.net = net
        self.host = None
        self.closed = False

    def set_missing_host_key_policy(self, policy):
        pass

    def connect(self, hostname, port=22, username=None, password=None, pkey=None, **kw):
        h = self.net.host(hostname)
        h.connects += 1
        self.net.connect_log.append((hostname, port, username, password))
        if h.unreachable:
            raise OSError("connection refused")
        if h.fail_connects > 0:
            h.fail_connects -= 1
            raise paramiko.SSHException("handshake failed")
        if h.password is not None and password != h.password:
            raise paramiko.AuthenticationException("denied")
        self.host = h

    def exec_command(self, command, timeout=None):
        h = self.host
        h.commands.append(command)
        if h.drop_transport > 0:
            h.drop_transport -= 1
            raise paramiko.SSHException("connection reset")
        if command == "true" and h.canary_failures > 0:
            h.canary_failures -= 1
            return _Stdin(h), _Buf("", 1), _Buf("", 1)
        if h.hang_on and h.hang_on in command:
            raise socket.timeout("timed out")
        out, err, rc = h.result_for(command)
        return _Stdin(h), _Buf(out, rc), _Buf(err, rc)

    def open_sftp(self):
        return FakeSFTP(self.host)

    def close(self):
        self.closed = True
        self.net.closed.append(self.host.name if self.host else None)


class FakeNetwork:
    def __init__(self):
        self.hosts = {}
        self.connect_log = []
        self.closed = []

    def host(self, name):
        if name not in self.hosts:
            self.hosts[name] = FakeHost(name)
        return self.hosts[name]

    def client_factory(self):
        return FakeSSHClient(self)

    def commands(self):
        out = defaultdict(list)
        for name, h in self.hosts.items():
            out[name] = list(h.commands)
        return out


# ----------------- Fixtures -----------------


@pytest.fixture
def network():
    return FakeNetwork()


@pytest.fixture
def make_executor(network, tmp_path: Path):
    def _make(*, dry_run=False, attempts=3, **kw):
        kw.setdefault("runtime_dir", tmp_path / "run")
        return RemoteExecutor(
            ctx=ExecutionContext(dry_run=dry_run),
            policy=RetryPolicy(max_attempts=attempts, delay=0),
            client_factory=network.client_factory,
            **kw,
        )
    return _make


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path: Path):
    monkeypatch.setenv("GPINSTALL_HOME", str(tmp_path / "home"))
    for var in ("GPINSTALL_SSH_PASSWORD", "GPINSTALL_SERVICE_PASSWORD", "GPINSTALL_SUDO_PASSWORD"):
        monkeypatch.delenv(var, raising=False)


class Capture:
    """Observer that keeps every event."""

    def __init__(self):
        self.events = []

    def notify(self, event):
        self.events.append(event)

    def of(self, cls):
        return [e for e in self.events if isinstance(e, cls)]


@pytest.fixture
def capture():
    return Capture()


@pytest.fixture(autouse=True)
def reset_logger():
    """Undo init_logging so later tests can use caplog."""
    yield
    logger = logging.getLogger("gpinstall")
    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.propagate = True
