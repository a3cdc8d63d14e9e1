from pathlib import Path

import pytest

from gpinstall.errors import PreflightError
from gpinstall.phases.preflight import (
    PreflightChecker,
    installer_version,
    locate_installer,
    os_supported,
    parse_os_release,
)

ROCKY = 'NAME="Rocky Linux"\nID="rocky"\nID_LIKE="rhel centos fedora"\nVERSION_ID="8.9"\n'


def test_parse_os_release_strips_quotes_and_comments():
    release = parse_os_release("# comment\n" + ROCKY + "\nPRETTY_NAME='Rocky 8'\n")
    assert release["ID"] == "rocky"
    assert release["VERSION_ID"] == "8.9"
    assert release["PRETTY_NAME"] == "Rocky 8"
    assert "# comment" not in release


@pytest.mark.parametrize(
    "text, ok",
    [
        (ROCKY, True),
        ('ID=centos\nVERSION_ID="7"\n', True),
        ('ID="rhel"\nVERSION_ID="9.2"\n', True),
        ('ID=ubuntu\nVERSION_ID="22.04"\n', False),
        ('ID="rhel"\nVERSION_ID="6.10"\n', False),
        ("", False),
    ],
)
def test_os_supported(text, ok):
    assert os_supported(parse_os_release(text))[0] is ok


def test_installer_version():
    assert installer_version(Path("greenplum-db-7.1.0.el8.x86_64.rpm")) == (7, 1)
    assert installer_version(Path("gp.rpm")) is None


def test_check_host_passes_on_supported_host(network, make_executor):
    network.host("sdw1").respond("os-release", stdout=ROCKY)
    checker = PreflightChecker(make_executor())
    checker.check_host("sdw1")
    assert network.host("sdw1").ran("sudo -n -- true")


def test_unsupported_os_names_host_and_os(network, make_executor):
    network.host("sdw1").respond("os-release", stdout='ID=ubuntu\nVERSION_ID="22.04"\n')
    with pytest.raises(PreflightError, match="sdw1: unsupported operating system 'ubuntu 22'"):
        PreflightChecker(make_executor()).check_os("sdw1")


def test_missing_commands_are_listed(network, make_executor):
    host = network.host("sdw1")
    host.respond("os-release", stdout=ROCKY)
    host.respond("gpinstall tar", rc=1)
    host.respond("gpinstall yum", rc=1)
    with pytest.raises(PreflightError, match="yum, tar"):
        PreflightChecker(make_executor()).check_host("sdw1")


def test_sudo_unavailable(network, make_executor):
    host = network.host("sdw1")
    host.respond("os-release", stdout=ROCKY)
    host.respond("sudo -n -- true", rc=1)
    with pytest.raises(PreflightError, match="sudo"):
        PreflightChecker(make_executor()).check_host("sdw1")


def test_checks_run_under_dry_run(network, make_executor):
    network.host("sdw1").respond("os-release", stdout=ROCKY)
    PreflightChecker(make_executor(dry_run=True)).check_host("sdw1")
    assert network.host("sdw1").ran("command -v")


def test_locate_installer(tmp_path: Path):
    pattern = "greenplum-db-*.el*.x86_64.rpm"
    with pytest.raises(PreflightError, match="no installer"):
        locate_installer(tmp_path, pattern)

    pkg = tmp_path / "greenplum-db-7.1.0.el8.x86_64.rpm"
    pkg.write_text("")
    assert locate_installer(tmp_path, pattern) == pkg


def test_locate_installer_warns_on_other_major(tmp_path: Path, caplog):
    (tmp_path / "greenplum-db-6.25.3.el8.x86_64.rpm").write_text("")
    with caplog.at_level("WARNING", logger="gpinstall"):
        locate_installer(tmp_path, "greenplum-db-*.el*.x86_64.rpm")
    assert "only 7.x is verified" in caplog.text
