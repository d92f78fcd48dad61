from pathlib import Path

import pytest
import yaml
from typer.testing import CliRunner

import shardstrap.cli.app as cli
from shardstrap.cli.app import ExitCode, app, exit_code_for
from shardstrap.errors import BarrierFailure, Cancelled, ConfigurationInvalid, RetryExhausted

from fakes import FakeCluster, config_dict

runner = CliRunner()


@pytest.fixture
def cluster(monkeypatch):
    fake = FakeCluster()
    monkeypatch.setattr(cli, "make_admin", lambda settings: fake)
    monkeypatch.delenv("SHARDSTRAP_SECRETS_FILE", raising=False)
    return fake


def _config(tmp_path: Path, **settings) -> Path:
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump(config_dict(**settings)))
    return path


def test_exit_code_mapping():
    assert exit_code_for(Cancelled("x")) is ExitCode.CANCELLED
    assert exit_code_for(ConfigurationInvalid("x")) is ExitCode.CONFIG_INVALID
    assert exit_code_for(BarrierFailure("shard-groups", {})) is ExitCode.BARRIER_FAILED
    assert exit_code_for(RetryExhausted("routing:shard1rs", 3, None)) is ExitCode.STEP_FAILED


def test_bootstrap_ok(tmp_path, cluster):
    logs = tmp_path / "logs"
    result = runner.invoke(app, ["bootstrap", str(_config(tmp_path)), "--log-dir", str(logs), "--quiet"])

    assert result.exit_code == 0, result.output
    assert "Bootstrap complete: Done" in result.output
    assert cluster.closed
    assert len(list(logs.glob("*.jsonl"))) == 1
    assert len(list(logs.glob("shardstrap-*.log"))) == 1


def test_bootstrap_invalid_config_exit_code(tmp_path, cluster):
    data = config_dict()
    data["topology"]["shards"] = []
    path = tmp_path / "cluster.yaml"
    path.write_text(yaml.safe_dump(data))

    result = runner.invoke(app, ["bootstrap", str(path), "--log-dir", str(tmp_path / "logs")])

    assert result.exit_code == ExitCode.CONFIG_INVALID
    assert cluster.calls == []


def test_bootstrap_barrier_failure_exit_code(tmp_path, cluster):
    cluster.down_hosts.update({"shard2-1:27017", "shard2-2:27017", "shard2-3:27017"})

    result = runner.invoke(app, ["bootstrap", str(_config(tmp_path)), "--log-dir", str(tmp_path / "logs")])

    assert result.exit_code == ExitCode.BARRIER_FAILED
    assert "shard-groups" in result.output
    assert cluster.count("add_shard") == 0
    assert cluster.closed


def test_bootstrap_step_failure_exit_code(tmp_path, cluster):
    cluster.down_hosts.add("router1:27017")

    result = runner.invoke(app, ["bootstrap", str(_config(tmp_path)), "--log-dir", str(tmp_path / "logs")])

    assert result.exit_code == ExitCode.STEP_FAILED
    assert "routing:shard1rs" in result.output
    assert "after 5 attempt(s)" in result.output


def test_validate(tmp_path):
    result = runner.invoke(app, ["validate", str(_config(tmp_path))])
    assert result.exit_code == 0, result.output
    assert "shard1rs/shard1-1:27017" in result.output
    assert "businessdb.people shard key {jobTitle: 1, dateOfBirth: 1}" in result.output


def test_status_reports_unavailable_groups(tmp_path, cluster):
    result = runner.invoke(app, ["status", str(_config(tmp_path))])
    assert result.exit_code == 0, result.output
    assert "cfgrs" in result.output and "unavailable" in result.output
    assert "balancer     enabled=False" in result.output
