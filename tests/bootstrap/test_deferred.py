import stat

import pytest

from meshboot.bootstrap.deferred import DeferredTaskRegistrar, phase2_command
from meshboot.bootstrap.systemd import Systemd
from meshboot.errors import MeshbootError


def _registrar(runner, tmp_path):
    return DeferredTaskRegistrar(Systemd(runner), unit_dir=tmp_path, unit_name="meshboot-phase2.service")


def test_register_writes_and_enables_unit(runner, tmp_path):
    reg = _registrar(runner, tmp_path)

    unit = reg.register(tmp_path / "bootstrap.yaml", python="/usr/bin/python3")

    text = unit.read_text()
    assert "Type=oneshot" in text
    assert "RemainAfterExit=yes" in text
    assert "After=network-online.target" in text
    assert "WantedBy=multi-user.target" in text
    assert f"ExecStart=/usr/bin/python3 -m meshboot phase2 --config {tmp_path / 'bootstrap.yaml'}" in text
    assert stat.S_IMODE(unit.stat().st_mode) == 0o644

    assert runner.calls[:3] == [
        ["systemctl", "daemon-reload"],
        ["systemctl", "enable", "meshboot-phase2.service"],
        ["systemctl", "is-enabled", "--quiet", "meshboot-phase2.service"],
    ]
    assert reg.is_registered()


def test_register_fails_loudly_when_unit_not_enabled(runner, tmp_path):
    runner.on("systemctl", "is-enabled", rc=1)
    with pytest.raises(MeshbootError, match="Phase2 would never run"):
        _registrar(runner, tmp_path).register(tmp_path / "bootstrap.yaml")


def test_phase2_command_quotes_paths(tmp_path):
    cmd = phase2_command(tmp_path / "my config.yaml", python="/opt/py/bin/python")
    assert cmd.startswith("/opt/py/bin/python -m meshboot phase2 --config ")
    assert cmd.endswith("'")


def test_disable(runner, tmp_path):
    assert _registrar(runner, tmp_path).disable()
    assert runner.calls == [["systemctl", "disable", "meshboot-phase2.service"]]
