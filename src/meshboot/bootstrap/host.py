# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations

import logging
import re
from pathlib import Path

from meshboot.execution.runner import CommandRunner

log = logging.getLogger("meshboot")

_PASSWORD_AUTH_RE = re.compile(r"^\s*#?\s*PasswordAuthentication\s+\S+\s*$", re.MULTILINE)


def set_hostname(runner: CommandRunner, hostname: str) -> bool:
    return runner.with_label("hostname").ok(["hostnamectl", "set-hostname", hostname])


def enable_password_auth(config_path: Path) -> bool:
    """
    Ensure ``PasswordAuthentication yes`` in sshd_config.
    Returns True when the file changed.
    """
    text = config_path.read_text(encoding="utf-8")
    wanted = "PasswordAuthentication yes"
    if _PASSWORD_AUTH_RE.search(text):
        updated = _PASSWORD_AUTH_RE.sub(wanted, text, count=1)
    else:
        updated = text.rstrip("\n") + f"\n{wanted}\n"
    if updated == text:
        return False
    config_path.write_text(updated, encoding="utf-8")
    log.warning("sshd password authentication enabled in %s", config_path)
    return True
