"""Operator CLI against a temp SQLite ledger and the in-memory object store."""

import textwrap
from datetime import timedelta
from pathlib import Path

import pytest
from typer.testing import CliRunner

from storeledger.cli import app, format_size, parse_duration

runner = CliRunner()


@pytest.fixture
def config_file(tmp_path: Path) -> Path:
    cfg = tmp_path / "storeledger.yaml"
    cfg.write_text(textwrap.dedent(f"""\
        database:
          path: {tmp_path / "cli.db"}
        object_store:
          backend: memory
        logging:
          level: warning
    """))
    return cfg


def test_parse_duration():
    assert parse_duration("30m") == timedelta(minutes=30)
    assert parse_duration("24h") == timedelta(hours=24)
    assert parse_duration("7d") == timedelta(days=7)
    assert parse_duration("90") == timedelta(seconds=90)


def test_format_size():
    assert format_size(512) == "512.0 B"
    assert format_size(1536) == "1.5 KB"
    assert format_size(-2048) == "-2.0 KB"


def test_version():
    result = runner.invoke(app, ["version"])
    assert result.exit_code == 0
    assert "storeledger" in result.stdout


def test_set_tier_then_usage(config_file: Path):
    missing = runner.invoke(app, ["set-tier", "u1", "pro", "--config", str(config_file)])
    assert missing.exit_code == 1

    created = runner.invoke(app, ["set-tier", "u1", "pro", "--create", "--config", str(config_file)])
    assert created.exit_code == 0, created.stdout
    assert "tier pro" in created.stdout

    usage = runner.invoke(app, ["usage", "u1", "--config", str(config_file)])
    assert usage.exit_code == 0, usage.stdout
    assert "10.0 GB" in usage.stdout


def test_usage_unknown_account(config_file: Path):
    result = runner.invoke(app, ["usage", "ghost", "--config", str(config_file)])
    assert result.exit_code == 1
    assert "No storage account" in result.stdout


def test_check_size(config_file: Path):
    runner.invoke(app, ["set-tier", "u1", "free", "--create", "--config", str(config_file)])

    fits = runner.invoke(app, ["check-size", "u1", "1GB", "--config", str(config_file)])
    assert fits.exit_code == 0, fits.stdout

    too_big = runner.invoke(app, ["check-size", "u1", "1.5GB", "--config", str(config_file)])
    assert too_big.exit_code == 1
    assert "exceed storage quota" in too_big.stdout


def test_objects_reconcile_and_reap_on_empty_ledger(config_file: Path):
    runner.invoke(app, ["set-tier", "u1", "free", "--create", "--config", str(config_file)])

    objects = runner.invoke(app, ["objects", "u1", "--config", str(config_file)])
    assert objects.exit_code == 0
    assert "No storage objects" in objects.stdout

    reconcile = runner.invoke(app, ["reconcile", "u1", "--config", str(config_file)])
    assert reconcile.exit_code == 0
    assert "consistent" in reconcile.stdout

    reap = runner.invoke(app, ["reap-pending", "--older-than", "1h", "--config", str(config_file)])
    assert reap.exit_code == 0, reap.stdout
    assert "Tombstoned" in reap.stdout
