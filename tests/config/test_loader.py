from pathlib import Path
import textwrap

import pytest
import yaml

from shardstrap.config.loader import load_config
from shardstrap.errors import ConfigurationInvalid

from fakes import config_dict


def _write(path: Path, data) -> Path:
    path.write_text(yaml.safe_dump(data))
    return path


@pytest.fixture(autouse=True)
def _no_secrets_env(monkeypatch):
    monkeypatch.delenv("SHARDSTRAP_SECRETS_FILE", raising=False)


def test_load_config_ok(tmp_path: Path):
    cfg = load_config(_write(tmp_path / "cluster.yaml", config_dict()))
    assert cfg.environment == "dev"
    assert cfg.topology.config_group.id == "cfgrs"
    assert [s.id for s in cfg.topology.shards] == ["shard1rs", "shard2rs", "shard3rs"]
    assert cfg.topology.config_group.seed.host == "cfgsvr1:27019"
    # database name flows into each collection
    assert [c.namespace for c in cfg.collections] == [
        "businessdb.organizations",
        "businessdb.people",
        "businessdb.customers",
    ]
    assert cfg.principal.secret.get_secret_value() == "s3cret"


def test_secrets_yaml_is_merged(tmp_path: Path):
    data = config_dict()
    data["principal"]["secret"] = ""
    cfg_file = _write(tmp_path / "cluster.yaml", data)
    _write(tmp_path / "secrets.yaml", {"principal": {"secret": "from-secrets"}})

    cfg = load_config(cfg_file)
    assert cfg.principal.secret.get_secret_value() == "from-secrets"
    assert cfg.principal.username == "admin"


def test_secrets_file_env_override(tmp_path: Path, monkeypatch):
    data = config_dict()
    data["principal"]["secret"] = ""
    cfg_file = _write(tmp_path / "cluster.yaml", data)
    elsewhere = tmp_path / "vault"
    elsewhere.mkdir()
    secrets = _write(elsewhere / "s.yaml", {"principal": {"secret": "override"}})
    monkeypatch.setenv("SHARDSTRAP_SECRETS_FILE", str(secrets))

    assert load_config(cfg_file).principal.secret.get_secret_value() == "override"


def test_env_var_expansion(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("TEST_ADMIN_PASSWORD", "from-env")
    data = config_dict()
    data["principal"]["secret"] = "${TEST_ADMIN_PASSWORD}"
    cfg = load_config(_write(tmp_path / "cluster.yaml", data))
    assert cfg.principal.secret.get_secret_value() == "from-env"


def test_empty_secret_is_rejected(tmp_path: Path):
    data = config_dict()
    data["principal"]["secret"] = ""
    with pytest.raises(ConfigurationInvalid, match="secret"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_missing_file_is_config_invalid(tmp_path: Path):
    with pytest.raises(ConfigurationInvalid):
        load_config(tmp_path / "nope.yaml")


def test_bad_yaml_is_config_invalid(tmp_path: Path):
    f = tmp_path / "cluster.yaml"
    f.write_text("topology: [unclosed\n")
    with pytest.raises(ConfigurationInvalid):
        load_config(f)


def test_top_level_must_be_mapping(tmp_path: Path):
    f = tmp_path / "cluster.yaml"
    f.write_text(textwrap.dedent("""
        - just
        - a list
    """))
    with pytest.raises(ConfigurationInvalid, match="mapping"):
        load_config(f)


def test_duplicate_member_hosts_rejected(tmp_path: Path):
    data = config_dict()
    members = data["topology"]["shards"][0]["members"]
    members[1]["host"] = members[0]["host"]
    with pytest.raises(ConfigurationInvalid, match="unique"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_host_shared_between_groups_rejected(tmp_path: Path):
    data = config_dict()
    data["topology"]["shards"][1]["members"][0]["host"] = "shard1-1:27017"
    with pytest.raises(ConfigurationInvalid, match="shard1-1:27017"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_config_group_needs_config_role(tmp_path: Path):
    data = config_dict()
    data["topology"]["config_group"]["config_role"] = False
    with pytest.raises(ConfigurationInvalid, match="config_role"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_endpoint_requires_port(tmp_path: Path):
    data = config_dict()
    data["topology"]["routers"][0]["host"] = "router1"
    with pytest.raises(ConfigurationInvalid, match="host:port"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_shard_key_field_must_be_required_or_indexed_optional(tmp_path: Path):
    data = config_dict()
    data["schema"][0]["collections"][1]["indexed_optional"] = []
    with pytest.raises(ConfigurationInvalid, match="indexed_optional"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_unknown_principal_target_rejected(tmp_path: Path):
    data = config_dict()
    data["principal"]["targets"] = ["cfgrs", "shard9rs"]
    with pytest.raises(ConfigurationInvalid, match="shard9rs"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_unknown_keys_are_rejected(tmp_path: Path):
    data = config_dict()
    data["settings"]["retries"] = 3
    with pytest.raises(ConfigurationInvalid):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_per_family_retry_override(tmp_path: Path):
    data = config_dict(steps={"routing": {"max_attempts": 50, "interval_seconds": 10}})
    cfg = load_config(_write(tmp_path / "cluster.yaml", data))
    assert cfg.settings.retry_for("routing").max_attempts == 50
    assert cfg.settings.retry_for("schema").max_attempts == 5


def test_unset_env_var_secret_is_rejected(tmp_path: Path, monkeypatch):
    monkeypatch.delenv("TEST_UNSET_PASSWORD", raising=False)
    data = config_dict()
    data["principal"]["secret"] = "${TEST_UNSET_PASSWORD}"
    with pytest.raises(ConfigurationInvalid, match="unset environment variable"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_shipped_example_config_is_valid(monkeypatch):
    monkeypatch.setenv("SHARDSTRAP_ADMIN_PASSWORD", "example")
    path = Path(__file__).resolve().parents[2] / "cloud-config" / "cluster.yaml"
    cfg = load_config(path)
    assert cfg.principal.targets == ["cfgrs", "shard2rs"]
    assert cfg.settings.retry_for("shard-group").max_attempts == 50
    assert len(cfg.collections) == 3


def test_duplicate_member_ids_rejected(tmp_path: Path):
    data = config_dict()
    data["topology"]["shards"][0]["members"][2]["id"] = 0
    with pytest.raises(ConfigurationInvalid, match="member ids must be unique"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_duplicate_group_ids_rejected(tmp_path: Path):
    data = config_dict()
    data["topology"]["shards"][1]["id"] = "shard1rs"
    with pytest.raises(ConfigurationInvalid, match="replica group ids must be unique"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_shard_key_hashing_two_fields_rejected(tmp_path: Path):
    data = config_dict()
    data["schema"][0]["collections"][0]["shard_key"] = [
        {"field": "industry", "direction": "hashed"},
        {"field": "country", "direction": "hashed"},
    ]
    with pytest.raises(ConfigurationInvalid, match="hash at most one field"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_required_field_without_property_rejected(tmp_path: Path):
    data = config_dict()
    data["schema"][0]["collections"][0]["required"].append("ticker")
    with pytest.raises(ConfigurationInvalid, match="required fields without a type"):
        load_config(_write(tmp_path / "cluster.yaml", data))


def test_duplicate_collection_names_rejected(tmp_path: Path):
    data = config_dict()
    colls = data["schema"][0]["collections"]
    colls.append(dict(colls[0]))
    with pytest.raises(ConfigurationInvalid, match="duplicate collections"):
        load_config(_write(tmp_path / "cluster.yaml", data))


@pytest.mark.parametrize("flag", ["hidden", "arbiter_only"])
def test_non_electable_member_needs_priority_zero(tmp_path: Path, flag):
    data = config_dict()
    data["topology"]["shards"][0]["members"][1][flag] = True
    with pytest.raises(ConfigurationInvalid, match=f"{flag} requires priority 0"):
        load_config(_write(tmp_path / "cluster.yaml", data))

    data["topology"]["shards"][0]["members"][1]["priority"] = 0
    cfg = load_config(_write(tmp_path / "cluster.yaml", data))
    assert cfg.topology.shards[0].seed.host == "shard1-1:27017"
