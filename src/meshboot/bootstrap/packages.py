# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/packages.py

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Type

from meshboot.config.models import PackageSettings
from meshboot.errors import CommandError
from meshboot.execution.runner import CommandRunner
from meshboot.utils.retry import RetryError, retry

log = logging.getLogger("meshboot")


class PackageManager:
    name = ""
    lock_files: Sequence[Path] = ()

    def __init__(self, runner: CommandRunner):
        self.runner = runner.with_label(self.name)

    def refresh_argv(self) -> List[str]:
        raise NotImplementedError

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        raise NotImplementedError

    def remove_argv(self, package: str) -> List[str]:
        raise NotImplementedError

    def refresh(self) -> bool:
        return self.runner.ok(self.refresh_argv(), timeout=300)

    def install(self, packages: Sequence[str], *, timeout: float) -> None:
        self.runner.run(self.install_argv(packages), timeout=timeout, check=True)

    def remove(self, package: str) -> bool:
        return self.runner.ok(self.remove_argv(package), timeout=120)

    def clear_lock(self) -> None:
        for lock in self.lock_files:
            try:
                lock.unlink()
                log.info("removed package manager lock %s", lock)
            except FileNotFoundError:
                pass
            except OSError as exc:
                log.warning("could not remove %s: %s", lock, exc)


class Pacman(PackageManager):
    name = "pacman"
    lock_files = (Path("/var/lib/pacman/db.lck"),)

    def refresh_argv(self) -> List[str]:
        return ["pacman", "-Sy", "--noconfirm"]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return ["pacman", "-S", "--noconfirm", "--needed", *packages]

    def remove_argv(self, package: str) -> List[str]:
        # -dd: skip dependency checks so a provider swap (iptables -> iptables-nft) can proceed
        return ["pacman", "-Rdd", "--noconfirm", package]


class Apt(PackageManager):
    name = "apt"
    lock_files = (
        Path("/var/lib/dpkg/lock-frontend"),
        Path("/var/lib/dpkg/lock"),
        Path("/var/lib/apt/lists/lock"),
    )

    def refresh_argv(self) -> List[str]:
        return ["apt-get", "update", "-y"]

    def install_argv(self, packages: Sequence[str]) -> List[str]:
        return ["apt-get", "install", "-y", "--no-install-recommends", *packages]

    def remove_argv(self, package: str) -> List[str]:
        return ["apt-get", "remove", "-y", package]

    def install(self, packages: Sequence[str], *, timeout: float) -> None:
        self.runner.run(
            self.install_argv(packages),
            timeout=timeout,
            check=True,
            env={**os.environ, "DEBIAN_FRONTEND": "noninteractive"},
        )


PACKAGE_MANAGERS: Dict[str, Type[PackageManager]] = {
    "pacman": Pacman,
    "apt": Apt,
}


@dataclass
class InstallReport:
    installed: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    degraded: bool = False

    @property
    def ok(self) -> bool:
        return not self.failed


class PackageInstaller:
    """
    Installs a package set with bounded retry.

    Each batch attempt clears the package manager lock before the next one;
    once attempts run out, packages are installed one by one and individual
    failures are recorded instead of aborting the run.
    """

    def __init__(self, manager: PackageManager, settings: PackageSettings):
        self.manager = manager
        self.settings = settings

    @classmethod
    def for_settings(cls, runner: CommandRunner, settings: PackageSettings) -> "PackageInstaller":
        return cls(PACKAGE_MANAGERS[settings.manager](runner), settings)

    def _on_retry(self, attempt: int, exc: Exception) -> None:
        rc = getattr(exc, "returncode", exc)
        if attempt >= self.settings.attempts:
            log.warning("package install attempt %d/%d failed (%s)", attempt, self.settings.attempts, rc)
            return
        log.warning(
            "package install attempt %d/%d failed (%s), clearing lock", attempt, self.settings.attempts, rc
        )
        self.manager.clear_lock()

    def install(self, packages: Sequence[str]) -> InstallReport:
        report = InstallReport()
        packages = list(packages)
        if not packages:
            return report

        batch = retry(
            retries=self.settings.attempts,
            delay=self.settings.retry_delay,
            retry_on=(CommandError,),
            on_retry=self._on_retry,
        )(self.manager.install)

        try:
            batch(packages, timeout=self.settings.install_timeout)
            report.installed = packages
            return report
        except RetryError:
            log.warning(
                "batch install failed after %d attempts, installing packages individually",
                self.settings.attempts,
            )

        report.degraded = True
        for pkg in packages:
            try:
                self.manager.install([pkg], timeout=self.settings.single_timeout)
                report.installed.append(pkg)
            except CommandError as exc:
                log.warning("failed to install %s (rc=%s), continuing", pkg, exc.returncode)
                report.failed.append(pkg)
        return report

    def remove_conflicts(self, packages: Sequence[str]) -> List[str]:
        """Best-effort removal; returns the packages actually removed."""
        removed = []
        for pkg in packages:
            if self.manager.remove(pkg):
                removed.append(pkg)
            else:
                log.debug("%s not removed (likely not installed)", pkg)
        return removed
