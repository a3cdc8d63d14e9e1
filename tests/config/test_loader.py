from pathlib import Path
import textwrap

import pytest
import yaml

from gpinstall.config.loader import dump_config, load_config, save_config
from gpinstall.errors import ConfigurationError


def _write(tmp_path: Path, text: str) -> Path:
    f = tmp_path / "gpinstall.yaml"
    f.write_text(textwrap.dedent(text))
    return f


def test_load_config_minimal_ok(tmp_path: Path):
    f = _write(tmp_path, """
        coordinator_host: cdw
        segment_hosts:
          - sdw1
          - sdw2
    """)
    cfg = load_config(f)
    assert cfg.coordinator_host == "cdw"
    assert cfg.segment_hosts == ["sdw1", "sdw2"]
    assert cfg.coordinator_port == 5432
    assert cfg.database_name == "tdi"
    assert cfg.coordinator_data_dir == "/data/coordinator"
    assert cfg.extensions.madlib == "auto"
    assert cfg.retry.attempts == 3


def test_env_placeholders_are_expanded(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("GP_SEGMENTS", "sdw1 sdw2,sdw3")
    f = _write(tmp_path, """
        coordinator_host: cdw
        segment_hosts: ${GP_SEGMENTS}
        extensions:
          pxf: false
    """)
    cfg = load_config(f)
    assert cfg.segment_hosts == ["sdw1", "sdw2", "sdw3"]
    assert cfg.extensions.pxf is False


def test_missing_file(tmp_path: Path):
    with pytest.raises(ConfigurationError, match="not found"):
        load_config(tmp_path / "absent.yaml")


def test_missing_required_field(tmp_path: Path):
    f = _write(tmp_path, """
        segment_hosts: [sdw1]
    """)
    with pytest.raises(ConfigurationError, match="coordinator_host"):
        load_config(f)


def test_unknown_keys_are_rejected(tmp_path: Path):
    f = _write(tmp_path, """
        coordinator_host: cdw
        segment_hosts: [sdw1]
        gpadmin_password: hunter2
    """)
    with pytest.raises(ConfigurationError, match="gpadmin_password"):
        load_config(f)


def test_invalid_yaml_and_non_mapping(tmp_path: Path):
    with pytest.raises(ConfigurationError, match="invalid YAML"):
        load_config(_write(tmp_path, "coordinator_host: [unclosed\n"))
    with pytest.raises(ConfigurationError, match="mapping"):
        load_config(_write(tmp_path, "- a\n- b\n"))


def test_invalid_extension_toggle(tmp_path: Path):
    f = _write(tmp_path, """
        coordinator_host: cdw
        segment_hosts: [sdw1]
        extensions:
          madlib: sometimes
    """)
    with pytest.raises(ConfigurationError, match="extensions.madlib"):
        load_config(f)


def test_save_and_reload_is_stable(tmp_path: Path):
    f = _write(tmp_path, """
        segment_hosts: "sdw2 sdw1"
        coordinator_host: cdw
        standby_host: scdw
    """)
    cfg = load_config(f)
    out = save_config(cfg, tmp_path / "state" / "config.yaml")

    again = load_config(out)
    assert again == cfg
    assert dump_config(again) == out.read_text()

    data = yaml.safe_load(out.read_text())
    assert list(data) == sorted(data)
    assert "state_dir" not in data
    assert data["segment_hosts"] == ["sdw2", "sdw1"]


@pytest.mark.parametrize("segments", ["", "segment_hosts: []\n"])
def test_segment_hosts_are_required(tmp_path: Path, segments):
    f = _write(tmp_path, "coordinator_host: cdw\n" + segments)
    with pytest.raises(ConfigurationError, match="segment_hosts"):
        load_config(f)
