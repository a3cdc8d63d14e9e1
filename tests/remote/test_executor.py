import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest

from gpinstall.errors import (
    AuthenticationError,
    CommandTimeoutError,
    ConfigurationError,
    RemoteCommandError,
)
from gpinstall.observers.dispatcher import EventBus
from gpinstall.observers.events import CommandFailed, HostDegraded, SessionReconnected
from gpinstall.remote.commands import RemoteCommand
from gpinstall.remote.leases import SESSION_PREFIX
from gpinstall.remote.session import SshAuth
from gpinstall.utils.retry import RetryError


def test_session_is_reused_across_operations(network, make_executor):
    ex = make_executor()
    for _ in range(5):
        ex.execute("h1", RemoteCommand.of("uptime"))

    assert network.host("h1").connects == 1
    assert network.host("h1").ran("uptime") == ["uptime"] * 5
    # the canary ran once, on establishment
    assert network.host("h1").commands[0] == "true"


def test_sessions_are_keyed_by_host_port_and_user(network, make_executor):
    ex = make_executor(user="admin")
    ex.execute("h1", RemoteCommand.of("id"))
    ex.execute("h1:2222", RemoteCommand.of("id"))

    ports = [(h, p, u) for h, p, u, _ in network.connect_log]
    assert ports == [("h1", 22, "admin"), ("h1", 2222, "admin")]


def test_sessions_to_different_hosts_open_concurrently(network, make_executor):
    # each connect waits until the other host is connecting too
    barrier = threading.Barrier(2, timeout=5)

    def factory():
        client = network.client_factory()
        real = client.connect

        def connect(**kw):
            barrier.wait()
            return real(**kw)

        client.connect = connect
        return client

    ex = make_executor()
    ex.client_factory = factory
    with ThreadPoolExecutor(max_workers=2) as pool:
        sessions = list(pool.map(ex.connect, ["h1", "h2"]))

    assert all(s is not None for s in sessions)
    assert network.host("h1").connects == network.host("h2").connects == 1


def test_scenario_one_degraded_host_among_five(network, make_executor, capture):
    hosts = ["h1", "h2", "h3", "h4", "h5"]
    network.host("h3").fail_connects = 1
    ex = make_executor(bus=EventBus([capture]))

    for h in hosts:
        ex.connect(h)
    for h in hosts:
        ex.execute(h, RemoteCommand.of("hostname"))
        ex.execute(h, RemoteCommand.of("uptime"))

    assert ex.degraded_hosts == ["h3"]
    assert [e.host for e in capture.of(HostDegraded)] == ["h3"]
    for h in ("h1", "h2", "h4", "h5"):
        assert network.host(h).connects == 1
    # failed establish + one one-off connection per operation
    assert network.host("h3").connects == 3
    assert network.host("h3").ran("hostname") == ["hostname"]
    assert ex.session("h3") is None


def test_degraded_when_canary_fails_on_new_session(network, make_executor):
    network.host("h1").canary_failures = 1
    ex = make_executor()
    assert ex.connect("h1") is None
    assert ex.is_degraded("h1")
    assert ex.execute("h1", RemoteCommand.of("echo", "ok")).ok


def test_authentication_rejection_is_not_degradation(network, make_executor):
    network.host("h1").password = "right"
    ex = make_executor(auth=SshAuth(password="wrong"))
    with pytest.raises(AuthenticationError):
        ex.connect("h1")
    assert not ex.is_degraded("h1")


def test_rejected_credential_is_not_retried(network, make_executor):
    network.host("h1").password = "right"
    ex = make_executor(auth=SshAuth(password="wrong"), attempts=3)

    with pytest.raises(AuthenticationError):
        ex.execute("h1", RemoteCommand.of("hostname"))

    assert network.host("h1").connects == 1


def test_rejected_credential_on_degraded_host_is_not_retried(network, make_executor):
    h1 = network.host("h1")
    h1.fail_connects = 1
    h1.password = "right"
    ex = make_executor(auth=SshAuth(password="wrong"), attempts=3)
    assert ex.connect("h1") is None

    with pytest.raises(AuthenticationError):
        ex.execute("h1", RemoteCommand.of("hostname"))

    # one failed session attempt, then a single one-off connection
    assert h1.connects == 2


def test_shared_password_is_offered_to_every_host(network, make_executor):
    network.host("h1").password = "pw"
    network.host("h2").password = "pw"
    ex = make_executor(auth=SshAuth(password="pw"))
    ex.connect("h1")
    ex.connect("h2")
    assert [pw for _, _, _, pw in network.connect_log] == ["pw", "pw"]


def test_per_host_prompt_after_key_auth_rejected(network, make_executor):
    network.host("h1").password = "typed"
    asked = []

    def prompt(ep):
        asked.append(ep.host)
        return "typed"

    ex = make_executor(auth=SshAuth(prompt=prompt))
    assert ex.connect("h1") is not None
    assert asked == ["h1"]
    assert [pw for _, _, _, pw in network.connect_log] == [None, "typed"]


def test_ensure_alive_reconnects_silently(network, make_executor, capture):
    ex = make_executor(bus=EventBus([capture]))
    first = ex.connect("h1")
    network.host("h1").canary_failures = 1

    degraded = ex.ensure_alive(["h1"])

    assert degraded == []
    assert first.closed
    assert ex.session("h1") is not first
    assert network.host("h1").connects == 2
    assert [e.host for e in capture.of(SessionReconnected)] == ["h1"]


def test_idle_session_is_re_established(network, make_executor):
    ex = make_executor(idle_timeout=60)
    first = ex.connect("h1")
    first.last_used -= 120
    second = ex.connect("h1")
    assert second is not first
    assert first.closed


def test_transport_failure_is_retried(network, make_executor):
    ex = make_executor(attempts=3)
    ex.connect("h1")
    network.host("h1").drop_transport = 2

    result = ex.execute("h1", RemoteCommand.of("uptime"))

    assert result.ok
    assert network.host("h1").connects == 3


def test_transport_failure_exhausts_attempts(network, make_executor):
    ex = make_executor(attempts=2)
    ex.connect("h1")
    network.host("h1").drop_transport = 10

    with pytest.raises(RetryError) as info:
        ex.execute("h1", RemoteCommand.of("uptime"))
    assert info.value.category == "connectivity"
    assert info.value.attempts == 2


def test_nonzero_exit_is_not_retried_by_default(network, make_executor, capture):
    network.host("h1").respond("false-cmd", stderr="boom\n", rc=3)
    ex = make_executor(bus=EventBus([capture]))

    with pytest.raises(RemoteCommandError) as info:
        ex.execute("h1", RemoteCommand.of("false-cmd"))

    assert info.value.exit_code == 3
    assert "boom" in str(info.value)
    assert len(network.host("h1").ran("false-cmd")) == 1
    assert capture.of(CommandFailed)[0].exit_code == 3


def test_command_level_retry_is_opt_in(network, make_executor):
    network.host("h1").respond("flaky", rc=1)
    ex = make_executor(attempts=3)

    with pytest.raises(RetryError) as info:
        ex.execute("h1", RemoteCommand.of("flaky"), retry_command=True)

    assert info.value.category == "remote-command"
    assert len(network.host("h1").ran("flaky")) == 3


def test_check_false_returns_result(network, make_executor):
    network.host("h1").respond("probe", stdout="x", rc=1)
    ex = make_executor()
    result = ex.execute("h1", RemoteCommand.of("probe"), check=False)
    assert (result.stdout, result.exit_code) == ("x", 1)


def test_timeout_is_a_distinct_error(network, make_executor):
    network.host("h1").hang_on = "sleep"
    ex = make_executor()
    with pytest.raises(CommandTimeoutError) as info:
        ex.execute("h1", RemoteCommand.of("sleep", "600"), timeout=5)
    assert info.value.timeout == 5
    assert not isinstance(info.value, RemoteCommandError)


def test_dry_run_skips_mutating_commands_and_copies(network, make_executor, tmp_path: Path):
    ex = make_executor(dry_run=True)
    result = ex.execute("h1", RemoteCommand.of("rm", "-rf", "/data"))
    ex.copy("h1", tmp_path / "missing.rpm", "/tmp/missing.rpm")

    assert result.ok
    assert "h1" not in network.hosts


def test_dry_run_still_runs_read_only_probes(network, make_executor):
    network.host("h1").respond("rpm -qa", stdout="greenplum-db-7\n")
    ex = make_executor(dry_run=True)
    assert ex.check("h1", RemoteCommand.of("rpm", "-qa"))
    assert network.host("h1").ran("rpm -qa")


def test_sudo_password_travels_on_stdin(network, make_executor):
    ex = make_executor(auth=SshAuth(sudo_password="sud0"))
    ex.execute("h1", RemoteCommand.of("chpasswd", sudo=True, stdin="gpadmin:pw\n"))

    cmd = network.host("h1").ran("chpasswd")[0]
    assert cmd.startswith("sudo -S -p ''")
    assert "sud0" not in cmd
    assert network.host("h1").stdin == ["sud0\ngpadmin:pw\n"]


def test_copy_uses_sftp_and_requires_local_file(network, make_executor, tmp_path: Path):
    pkg = tmp_path / "greenplum-db-7.1.0.el8.x86_64.rpm"
    pkg.write_text("rpm")
    ex = make_executor()

    ex.copy("h1", pkg, "/tmp/gpinstall/pkg.rpm")
    assert network.host("h1").puts == [(str(pkg), "/tmp/gpinstall/pkg.rpm")]

    with pytest.raises(ConfigurationError):
        ex.copy("h1", tmp_path / "nope.rpm", "/tmp/nope.rpm")


def test_leases_follow_session_lifecycle(network, make_executor, tmp_path: Path):
    runtime = tmp_path / "run"
    ex = make_executor(runtime_dir=runtime)
    ex.connect("h1")
    ex.connect("h2")
    assert len(list(runtime.glob(f"{SESSION_PREFIX}*"))) == 2

    ex.close("h1")
    assert [p.name.split(".")[0] for p in runtime.glob(f"{SESSION_PREFIX}*")] == [
        f"{SESSION_PREFIX}h2_22_root"
    ]

    ex.close_all()
    assert list(runtime.glob(f"{SESSION_PREFIX}*")) == []
    assert ex.session("h2") is None
