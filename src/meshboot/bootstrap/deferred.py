# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/deferred.py

from __future__ import annotations

import logging
import shlex
import sys
from pathlib import Path
from typing import Optional

from meshboot.bootstrap.systemd import Systemd
from meshboot.bootstrap.template_renderer import TemplateRenderer
from meshboot.errors import MeshbootError

log = logging.getLogger("meshboot")


def phase2_command(config_path: Path, python: Optional[str] = None) -> str:
    argv = [python or sys.executable, "-m", "meshboot", "phase2", "--config", str(config_path)]
    return shlex.join(argv)


class DeferredTaskRegistrar:
    """
    Installs the one-shot unit that resumes the bootstrap at next boot.

    The unit waits only for network-online.target and runs Phase2 once; the
    persisted phase record plus idempotent Phase2 steps stand in for any
    in-memory continuation state. Rebooting is the caller's job.
    """

    def __init__(self, systemd: Systemd, *, unit_dir: Path, unit_name: str):
        self.systemd = systemd
        self.unit_dir = unit_dir
        self.unit_name = unit_name

    @property
    def unit_path(self) -> Path:
        return self.unit_dir / self.unit_name

    def render(self, exec_start: str) -> str:
        return TemplateRenderer().render(
            "phase2.service.j2",
            {"description": "meshboot Phase2 post-reboot setup", "exec_start": exec_start},
        )

    def register(self, config_path: Path, python: Optional[str] = None) -> Path:
        content = self.render(phase2_command(config_path, python))
        self.unit_dir.mkdir(parents=True, exist_ok=True)
        self.unit_path.write_text(content, encoding="utf-8")
        self.unit_path.chmod(0o644)
        log.debug("wrote %s", self.unit_path)

        self.systemd.daemon_reload()
        if not self.systemd.enable(self.unit_name) or not self.systemd.is_enabled(self.unit_name):
            raise MeshbootError(f"Could not enable {self.unit_name}; Phase2 would never run")
        return self.unit_path

    def disable(self) -> bool:
        return self.systemd.disable(self.unit_name)

    def is_registered(self) -> bool:
        return self.unit_path.is_file() and self.systemd.is_enabled(self.unit_name)
