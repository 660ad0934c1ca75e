# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/accounts.py

from __future__ import annotations

import logging
from pathlib import Path
from typing import List, Optional, Sequence

from meshboot.config.models import ServiceAccount
from meshboot.execution.runner import CommandRunner

log = logging.getLogger("meshboot")


class AccountManager:
    """
    Idempotent OS account provisioning: an existing user is not an error.
    Passwords go to chpasswd on stdin so they never reach the command log.
    """

    def __init__(
        self,
        runner: CommandRunner,
        *,
        home_root: Path = Path("/home"),
        dry_run: Optional[bool] = None,
    ):
        self.runner = runner.with_label("accounts")
        self.home_root = home_root
        self.dry_run = runner.dry_run if dry_run is None else dry_run

    def exists(self, username: str) -> bool:
        return self.runner.ok(["id", "-u", username])

    def group_exists(self, group: str) -> bool:
        return self.runner.ok(["getent", "group", group])

    def ensure(self, account: ServiceAccount) -> List[str]:
        """Returns a list of warnings (empty when fully applied)."""
        warnings: List[str] = []
        name = account.username

        if self.exists(name):
            log.debug("user %s already exists", name)
        elif not self.runner.ok(["useradd", "-m", "-s", account.shell, name]):
            warnings.append(f"useradd {name} failed")
            return warnings

        groups = [g for g in account.groups if self.group_exists(g)]
        missing = sorted(set(account.groups) - set(groups))
        if missing:
            warnings.append(f"{name}: groups not present: {', '.join(missing)}")
        if groups and not self.runner.ok(["usermod", "-aG", ",".join(groups), name]):
            warnings.append(f"usermod -aG {','.join(groups)} {name} failed")

        if account.password:
            if not self.runner.ok(["chpasswd"], input=f"{name}:{account.password}\n"):
                warnings.append(f"chpasswd for {name} failed")

        warnings += self._ensure_ssh_dir(account)
        return warnings

    def _ensure_ssh_dir(self, account: ServiceAccount) -> List[str]:
        name = account.username
        ssh_dir = self.home_root / name / ".ssh"
        warnings: List[str] = []

        if not self.runner.ok(["install", "-d", "-m", "700", "-o", name, "-g", name, str(ssh_dir)]):
            return [f"could not create {ssh_dir}"]
        if not account.authorized_keys:
            return warnings

        keys_file = ssh_dir / "authorized_keys"
        existing = self._read_keys(keys_file)
        wanted = [k.strip() for k in account.authorized_keys if k.strip()]
        merged = existing + [k for k in wanted if k not in existing]
        if merged != existing:
            if self.dry_run:
                log.info("dry-run: would write %d key(s) to %s", len(merged), keys_file)
                return warnings
            ssh_dir.mkdir(parents=True, exist_ok=True)
            keys_file.write_text("\n".join(merged) + "\n", encoding="utf-8")
            log.debug("authorized_keys for %s: %d key(s)", name, len(merged))
        if not self.runner.ok(["chmod", "600", str(keys_file)]) or not self.runner.ok(
            ["chown", f"{name}:{name}", str(keys_file)]
        ):
            warnings.append(f"could not secure {keys_file}")
        return warnings

    @staticmethod
    def _read_keys(path: Path) -> List[str]:
        try:
            return [ln.strip() for ln in path.read_text(encoding="utf-8").splitlines() if ln.strip()]
        except FileNotFoundError:
            return []

    def ensure_all(self, accounts: Sequence[ServiceAccount]) -> List[str]:
        warnings: List[str] = []
        for account in accounts:
            warnings += self.ensure(account)
        return warnings
