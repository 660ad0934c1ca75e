import stat
import textwrap
from pathlib import Path

import pytest

from meshboot.config.loader import load_config, save_config
from meshboot.errors import ConfigError


def _write(path: Path, text: str) -> Path:
    path.write_text(textwrap.dedent(text))
    return path


def test_load_config_minimal_ok(tmp_path: Path):
    f = _write(tmp_path / "bootstrap.yaml", """
        hostname: ats
    """)
    cfg = load_config(f)
    assert cfg.hostname == "ats"
    assert [n.name for n in cfg.networks.networks] == ["fks-network", "ats-network", "nginx-network"]
    assert cfg.mesh.strategies == ["full", "basic"]
    assert cfg.dns is None
    assert cfg.advertised_routes() == ["172.20.0.0/16", "172.21.0.0/16", "172.22.0.0/16"]


def test_secrets_file_is_deep_merged(tmp_path: Path):
    f = _write(tmp_path / "bootstrap.yaml", """
        hostname: ats
        mesh:
          strategies: [full]
        dns:
          fqdn: ats.example.com
    """)
    _write(tmp_path / "secrets.yaml", """
        mesh:
          auth_key: tskey-from-secrets
        dns:
          email: ops@example.com
          api_token: cf-token
    """)
    cfg = load_config(f)
    assert cfg.mesh.auth_key == "tskey-from-secrets"
    assert cfg.mesh.strategies == ["full"]
    assert cfg.dns.configured


def test_env_expansion_and_overrides(tmp_path: Path, monkeypatch):
    monkeypatch.setenv("NODE_NAME", "fks")
    monkeypatch.setenv("MESHBOOT_MESH_AUTH_KEY", "tskey-env")
    monkeypatch.delenv("MESHBOOT_SECRETS_FILE", raising=False)
    f = _write(tmp_path / "bootstrap.yaml", """
        hostname: ${NODE_NAME}
    """)
    cfg = load_config(f)
    assert cfg.hostname == "fks"
    assert cfg.mesh.auth_key == "tskey-env"


def test_secrets_file_from_env(tmp_path: Path, monkeypatch):
    secrets = _write(tmp_path / "elsewhere.yaml", "hostname: from-secrets\n")
    monkeypatch.setenv("MESHBOOT_SECRETS_FILE", str(secrets))
    f = _write(tmp_path / "bootstrap.yaml", "hostname: ats\n")
    assert load_config(f).hostname == "from-secrets"


@pytest.mark.parametrize(
    "text, match",
    [
        ("hostname: [unclosed\n", "Invalid YAML"),
        ("- just\n- a list\n", "mapping"),
        ("mesh: {}\n", "hostname"),
        ("hostname: a\nmesh:\n  strategies: [warp]\n", "unknown mesh strategies"),
    ],
)
def test_invalid_configs_raise_config_error(tmp_path: Path, text, match):
    f = _write(tmp_path / "bootstrap.yaml", text)
    with pytest.raises(ConfigError, match=match):
        load_config(f)


def test_overlapping_subnets_rejected(tmp_path: Path):
    f = _write(tmp_path / "bootstrap.yaml", """
        hostname: ats
        networks:
          networks:
            - {name: a-network, subnet: 172.20.0.0/16, gateway: 172.20.0.1, ip_range: 172.20.1.0/24}
            - {name: b-network, subnet: 172.20.128.0/17, gateway: 172.20.128.1, ip_range: 172.20.129.0/24}
    """)
    with pytest.raises(ConfigError, match="overlap"):
        load_config(f)


def test_gateway_outside_subnet_rejected(tmp_path: Path):
    f = _write(tmp_path / "bootstrap.yaml", """
        hostname: ats
        networks:
          networks:
            - {name: a-network, subnet: 172.20.0.0/16, gateway: 10.0.0.1, ip_range: 172.20.1.0/24}
    """)
    with pytest.raises(ConfigError, match="gateway"):
        load_config(f)


def test_missing_file():
    with pytest.raises(ConfigError, match="not found"):
        load_config("/nonexistent/bootstrap.yaml")


def test_save_config_round_trips_with_root_only_mode(tmp_path: Path, cfg):
    path = save_config(cfg, tmp_path / "persisted" / "bootstrap.yaml")
    assert stat.S_IMODE(path.stat().st_mode) == 0o600
    again = load_config(path)
    assert again.mesh.auth_key == cfg.mesh.auth_key
    assert again.networks.networks == cfg.networks.networks
    assert again.paths.state_dir == cfg.paths.state_dir
