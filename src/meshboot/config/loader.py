# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/config/loader.py

import logging
import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from meshboot.errors import ConfigError
from .models import BootstrapConfig

log = logging.getLogger("meshboot")

# env var -> path inside the config dict
ENV_OVERRIDES = {
    "MESHBOOT_HOSTNAME": ("hostname",),
    "MESHBOOT_MESH_AUTH_KEY": ("mesh", "auth_key"),
    "MESHBOOT_DNS_EMAIL": ("dns", "email"),
    "MESHBOOT_DNS_API_TOKEN": ("dns", "api_token"),
    "MESHBOOT_DNS_FQDN": ("dns", "fqdn"),
}


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

    1. MESHBOOT_SECRETS_FILE environment variable (explicit override)
    2. secrets.yaml in the same directory as the bootstrap config
    """
    env = os.environ.get("MESHBOOT_SECRETS_FILE")
    if env:
        p = Path(env)
        if p.is_file():
            return p
        log.warning("MESHBOOT_SECRETS_FILE=%s does not exist, skipping", env)
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
        raise ConfigError(f"{path}: top level must be a mapping")
    return data


def _apply_env_overrides(data: dict) -> dict:
    for env, keys in ENV_OVERRIDES.items():
        value = os.environ.get(env)
        if not value:
            continue
        node = data
        for key in keys[:-1]:
            if not isinstance(node.get(key), dict):
                node[key] = {}
            node = node[key]
        node[keys[-1]] = value
    return data


def load_config(path: str | Path) -> BootstrapConfig:
    """
    Load and validate a bootstrap YAML config.

    Secrets may be injected three ways (all can be combined):

    **secrets.yaml** mirroring the config structure, deep-merged before
    validation. Discovery order:
      1. ``MESHBOOT_SECRETS_FILE`` env var -> explicit path
      2. ``secrets.yaml`` next to the config file

    **${ENV_VAR} references** anywhere in either file, resolved by
    ``os.path.expandvars``. Unset variables stay literal and are rejected
    later by the placeholder guard.

    **MESHBOOT_* overrides** (auth key, hostname, DNS credentials).
    """
    path = Path(path)
    if not path.is_file():
        raise ConfigError(f"Config file not found: {path}")

    try:
        data = _load_yaml(path)
        secrets_path = _find_secrets_file(path)
        if secrets_path:
            log.debug("Merging secrets from %s", secrets_path)
            _deep_merge(data, _load_yaml(secrets_path))
        else:
            log.debug("No secrets.yaml found, proceeding without secrets merge")
    except yaml.YAMLError as exc:
        raise ConfigError(f"Invalid YAML in {path}: {exc}") from exc

    _apply_env_overrides(data)

    try:
        return BootstrapConfig.model_validate(data)
    except ValidationError as exc:
        raise ConfigError(f"Invalid config {path}:\n{exc}") from exc


def save_config(cfg: BootstrapConfig, path: str | Path) -> Path:
    """Write the validated config as YAML, readable by root only."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    data = cfg.model_dump(mode="json", exclude_none=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)
    os.chmod(path, 0o600)
    return path
