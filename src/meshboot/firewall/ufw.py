# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/firewall/ufw.py

from __future__ import annotations

from typing import Sequence

from meshboot.execution.runner import CommandRunner


class Ufw:
    """
    Host firewall policy. Commands are checked: a firewall that cannot be
    configured is an unexpected failure and surfaces as CommandError.
    """

    def __init__(self, runner: CommandRunner, *, binary: str = "ufw"):
        self.runner = runner.with_label("ufw")
        self.binary = binary

    def _ufw(self, *args: str) -> None:
        self.runner.run([self.binary, *args], check=True, timeout=120)

    def baseline(self, allow: Sequence[str] = ("ssh",)) -> None:
        """Default-deny inbound, allow outbound, plus the listed services."""
        self._ufw("--force", "reset")
        self._ufw("default", "deny", "incoming")
        self._ufw("default", "allow", "outgoing")
        for service in allow:
            self._ufw("allow", service)

    def finalize(self, mesh_interface: str) -> None:
        self._ufw("allow", "in", "on", mesh_interface)
        self._ufw("--force", "enable")
