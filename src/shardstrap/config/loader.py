# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/shardstrap/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from shardstrap.errors import ConfigurationInvalid
from .models import BootstrapConfig

log = logging.getLogger("shardstrap")


def _deep_merge(base: dict, override: dict) -> dict:
    """
    Recursively merge *override* into *base* (mutates base).
    Only overwrites when the override value is non-empty.
    """
    for key, value in override.items():
        if (
            key in base
            and isinstance(base[key], dict)
            and isinstance(value, dict)
        ):
            _deep_merge(base[key], value)
        else:
            if value not in (None, ""):
                base[key] = value
    return base


def _find_secrets_file(config_path: Path) -> Path | None:
    """
    Locate secrets.yaml using this priority:

    1. SHARDSTRAP_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the cluster config
    """
    env = os.environ.get("SHARDSTRAP_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("SHARDSTRAP_SECRETS_FILE=%s does not exist, skipping", env)
        return None

    p = config_path.parent / "secrets.yaml"
    if p.is_file():
        return p

    return None


def _load_yaml(path: Path) -> dict:
    """Load a YAML file, expanding ${ENV_VAR} references."""
    raw = path.read_text()
    expanded = os.path.expandvars(raw)
    data = yaml.safe_load(expanded) or {}
    if not isinstance(data, dict):
        raise ConfigurationInvalid(f"{path}: top level must be a mapping")
    return data


def load_config(path: str | Path) -> BootstrapConfig:
    """
    Load and validate a bootstrap config.

    Credentials never live in code. They reach the config in two ways
    (both can be used together):

    **secrets.yaml** mirroring the config structure, deep-merged before
    validation. Discovery order:
      1. ``SHARDSTRAP_SECRETS_FILE`` env var
      2. ``secrets.yaml`` next to the config file

    **environment variables** referenced as ``${ENV_VAR}`` anywhere in
    either file.

    Any read, parse or validation problem raises ConfigurationInvalid.
    """
    path = Path(path)
    try:
        data = _load_yaml(path)

        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))
        else:
            log.debug("No secrets.yaml found, proceeding without secrets merge")

        return BootstrapConfig.model_validate(data)
    except OSError as exc:
        raise ConfigurationInvalid(f"cannot read {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise ConfigurationInvalid(f"{path}: invalid YAML: {exc}") from exc
    except ValidationError as exc:
        raise ConfigurationInvalid(f"{path}: {exc}") from exc
