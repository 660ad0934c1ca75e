# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

from meshboot.execution.runner import CommandRunner


class Systemd:
    """Thin wrapper over systemctl; every call reports success as a bool."""

    def __init__(self, runner: CommandRunner):
        self.runner = runner.with_label("systemctl")

    def _ctl(self, *args: str, timeout: float | None = 120) -> bool:
        return self.runner.ok(["systemctl", *args], timeout=timeout)

    def daemon_reload(self) -> bool:
        return self._ctl("daemon-reload")

    def enable(self, unit: str) -> bool:
        return self._ctl("enable", unit)

    def disable(self, unit: str) -> bool:
        return self._ctl("disable", unit)

    def start(self, unit: str) -> bool:
        return self._ctl("start", unit)

    def stop(self, unit: str) -> bool:
        return self._ctl("stop", unit)

    def restart(self, unit: str) -> bool:
        return self._ctl("restart", unit)

    def is_enabled(self, unit: str) -> bool:
        return self._ctl("is-enabled", "--quiet", unit, timeout=30)
