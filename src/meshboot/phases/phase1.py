# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/phases/phase1.py

from __future__ import annotations

import logging
from typing import Optional

from meshboot.bootstrap.accounts import AccountManager
from meshboot.bootstrap.deferred import DeferredTaskRegistrar
from meshboot.bootstrap.host import enable_password_auth, set_hostname
from meshboot.bootstrap.packages import PackageInstaller
from meshboot.bootstrap.state import BootstrapPhase, write_secret
from meshboot.bootstrap.systemd import Systemd
from meshboot.config.loader import save_config
from meshboot.network.docker import DockerNetworks
from meshboot.network.iptables import IptablesReconciler

from .base import PhaseExecutor

log = logging.getLogger("meshboot")


class Phase1(PhaseExecutor):
    """
    Pre-reboot provisioning: packages, runtime plumbing, accounts and the
    hostname, then the checkpoint (persisted config, deferred unit, status
    marker). Ends with the host asking for a reboot.
    """

    name = "phase1"

    def __init__(self, cfg, *, python: Optional[str] = None, **kwargs):
        super().__init__(cfg, **kwargs)
        self.python = python
        self.systemd = Systemd(self.runner)
        self.packages = PackageInstaller.for_settings(self.runner, cfg.packages)
        self.iptables = IptablesReconciler(self.runner)
        self.docker = DockerNetworks(self.runner)
        self.accounts = AccountManager(self.runner, dry_run=self.ctx.dry_run)
        self.registrar = DeferredTaskRegistrar(
            self.systemd, unit_dir=cfg.paths.unit_dir, unit_name=cfg.paths.unit_name
        )

    def steps(self) -> None:
        self.guard()
        if self.already_done(BootstrapPhase.PHASE1_COMPLETE):
            log.info("phase record is %s, nothing to do (use --force to re-run)", self.state.phase().value)
            self.report.skipped = True
            return

        with self.locked():
            self.advance(BootstrapPhase.PHASE1_PENDING)
            self.install_packages()
            self.enable_units()
            self.prepare_runtime()
            self.stop_runtime()
            self.create_accounts()
            self.configure_host()
            self.checkpoint()

    # ------------------ steps ------------------

    def install_packages(self) -> None:
        pkgs = self.cfg.packages.base
        self.start("packages", f"installing {len(pkgs)} base packages")
        if not self.packages.manager.refresh():
            self.warn("packages", "package database refresh failed")
        result = self.packages.install(pkgs)
        if result.failed:
            self.warn("packages", f"not installed: {', '.join(result.failed)}")
        else:
            self.ok("packages", f"{len(result.installed)} installed" + (" (per package)" if result.degraded else ""))

    def enable_units(self) -> None:
        for unit in (self.cfg.docker.service, self.cfg.mesh.service):
            if self.systemd.enable(unit):
                self.ok("units", f"{unit} enabled")
            else:
                self.warn("units", f"could not enable {unit}")

    def prepare_runtime(self) -> None:
        docker = self.cfg.docker
        self.start("docker", "starting container runtime")
        if not self.systemd.start(docker.service):
            self.warn("docker", f"systemctl start {docker.service} failed")
        self.docker.wait_ready(attempts=docker.ready_attempts, interval=docker.ready_interval)
        self.ok("docker", "ready")

        chains = self.iptables.reconcile()
        self._report_iptables("iptables", chains)

        specs = self.cfg.networks.networks
        failed = self.docker.ensure(specs)
        self.report.networks = [s.name for s in specs if s.name not in failed]
        if failed:
            self.warn("networks", f"could not create {', '.join(failed)}")
        else:
            self.ok("networks", ", ".join(f"{s.name}={s.subnet}" for s in specs))

        self._report_iptables("acl", self.iptables.reconcile_acl(specs))

    def _report_iptables(self, step: str, report) -> None:
        if report.failed:
            self.warn(step, report.summary())
        else:
            self.ok(step, report.summary())

    def stop_runtime(self) -> None:
        # network activation happens after the reboot
        docker = self.cfg.docker
        stopped = self.systemd.stop(docker.service)
        self.systemd.stop(docker.socket_unit)
        if stopped:
            self.ok("docker", "stopped until reboot")
        else:
            self.warn("docker", f"could not stop {docker.service}")

    def create_accounts(self) -> None:
        if not self.cfg.accounts:
            self.skip("accounts", "none configured")
            return
        warnings = self.accounts.ensure_all(self.cfg.accounts)
        for w in warnings:
            self.warn("accounts", w)
        if not warnings:
            self.ok("accounts", ", ".join(a.username for a in self.cfg.accounts))

    def configure_host(self) -> None:
        hostname = self.cfg.mesh_hostname
        if set_hostname(self.runner, hostname):
            self.ok("hostname", hostname)
        else:
            self.warn("hostname", f"could not set hostname to {hostname}")

        ssh = self.cfg.ssh
        if not ssh.password_authentication:
            self.skip("sshd", "password authentication left unchanged")
        elif self.ctx.dry_run:
            self.skip("sshd", f"dry-run: would enable password authentication in {ssh.config_path}")
        else:
            try:
                changed = enable_password_auth(ssh.config_path)
            except OSError as exc:
                self.warn("sshd", f"could not edit {ssh.config_path}: {exc}")
            else:
                self.ok("sshd", "password authentication enabled" if changed else "already enabled")

    def checkpoint(self) -> None:
        paths = self.cfg.paths
        if self.ctx.dry_run:
            self.skip("checkpoint", f"dry-run: would persist config and register {paths.unit_name}")
            return

        save_config(self.cfg, paths.persisted_config)
        if self.cfg.mesh.auth_key:
            write_secret(paths.credential_file, self.cfg.mesh.auth_key + "\n")
        else:
            self.warn("checkpoint", "no mesh auth key; Phase2 will need MESHBOOT_MESH_AUTH_KEY")
        self.ok("checkpoint", f"config persisted to {paths.persisted_config}")

        unit = self.registrar.register(paths.persisted_config, self.python)
        self.ok("deferred", f"{unit.name} enabled for next boot")

        # the marker is only written once the unit is in place
        self.state.advance(BootstrapPhase.PHASE1_COMPLETE)
        self.state.mark_reboot_needed()
        self.ok("checkpoint", f"status {self.state.status()} written to {paths.status_marker}")
