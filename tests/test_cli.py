# portguard - CLI command tests
import pytest
import yaml

from portguard import cli
from portguard.delta import side_by_side
from portguard.models import PortSet
from portguard.store import CHECK_TAG, SNAPSHOT_TAG, SnapshotStore


def test_show_without_baseline(config, capsys):
    cli.cmd_show(config)
    assert "No baseline yet" in capsys.readouterr().out


def test_show_prints_records_and_delta_summary(config, capsys):
    store = SnapshotStore(config)
    store.ensure_dir()
    store.save_snapshot(PortSet.from_iterable([22, 80]))
    store.save_check_result(PortSet.from_iterable([22, 8080]))
    store.save_delta(side_by_side(["22", "80"], ["22", "8080"], header=(SNAPSHOT_TAG, CHECK_TAG)).text)

    cli.cmd_show(config)
    out = capsys.readouterr().out
    assert "Baseline: 22 80" in out
    assert "Current:  22 8080" in out
    assert "changed=1" in out


def test_reset_removes_records(config, capsys):
    store = SnapshotStore(config)
    store.ensure_dir()
    store.save_snapshot(PortSet.from_iterable([22]))
    store.save_delta("x\n")

    cli.cmd_reset(config, yes=True)
    assert not store.snapshot_path.exists()
    assert not store.delta_path.exists()
    assert "Removed" in capsys.readouterr().out


def test_reset_declined(config, monkeypatch, capsys):
    store = SnapshotStore(config)
    store.ensure_dir()
    store.save_snapshot(PortSet.from_iterable([22]))
    monkeypatch.setattr("builtins.input", lambda _: "n")

    cli.cmd_reset(config, yes=False)
    assert store.snapshot_path.exists()
    assert "Aborted." in capsys.readouterr().out


def test_config_set_writes_file(tmp_path):
    path = tmp_path / "config.yaml"
    path.write_text("delta:\n  width: 40\n")
    cli.cmd_config_set(str(path), "delta.width", "60", None)
    saved = yaml.safe_load(path.read_text())
    assert saved["delta"]["width"] == 60


def test_config_validate_exits_on_errors(config):
    config["delta"]["width"] = 5
    with pytest.raises(SystemExit) as exc:
        cli.cmd_config_validate(config)
    assert exc.value.code == 1
