# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/phases/phase2.py

from __future__ import annotations

import logging
import os
from typing import Optional

from meshboot.bootstrap.accounts import AccountManager
from meshboot.bootstrap.deferred import DeferredTaskRegistrar
from meshboot.bootstrap.host import enable_password_auth
from meshboot.bootstrap.packages import PackageInstaller
from meshboot.bootstrap.state import PENDING_ADDRESS, BootstrapPhase
from meshboot.bootstrap.systemd import Systemd
from meshboot.config.models import BootstrapConfig
from meshboot.dns.cloudflare import DnsOutcome, DnsReconciler
from meshboot.errors import CommandError, MeshbootError
from meshboot.firewall.ufw import Ufw
from meshboot.mesh.connector import MeshConnector
from meshboot.mesh.tailscale import TailscaleCli
from meshboot.network.docker import DockerNetworks, write_description
from meshboot.network.iptables import IptablesReconciler
from meshboot.utils.retry import wait_until

from .base import PhaseExecutor

log = logging.getLogger("meshboot")

AUTH_KEY_ENV = "MESHBOOT_MESH_AUTH_KEY"


def resolve_auth_key(cfg: BootstrapConfig) -> str:
    """Config value, then the environment, then the credential file from Phase1."""
    if cfg.mesh.auth_key:
        return cfg.mesh.auth_key
    if os.environ.get(AUTH_KEY_ENV):
        return os.environ[AUTH_KEY_ENV]
    try:
        key = cfg.paths.credential_file.read_text(encoding="utf-8").strip()
    except OSError:
        key = ""
    if not key:
        raise MeshbootError(
            f"No mesh auth key: set mesh.auth_key, {AUTH_KEY_ENV} or {cfg.paths.credential_file}"
        )
    return key


class Phase2(PhaseExecutor):
    """
    Post-reboot activation. Every step reconciles towards the declared state,
    so the unit can re-run after a partial failure. Only the placeholder
    guard, Docker readiness, network creation and a missing auth key abort
    the run; everything else degrades to a warning.
    """

    name = "phase2"

    def __init__(self, cfg, **kwargs):
        super().__init__(cfg, **kwargs)
        self.systemd = Systemd(self.runner)
        self.packages = PackageInstaller.for_settings(self.runner, cfg.packages)
        self.ufw = Ufw(self.runner)
        self.iptables = IptablesReconciler(self.runner)
        self.docker = DockerNetworks(self.runner)
        self.tailscale = TailscaleCli(self.runner, binary=cfg.mesh.binary)
        self.accounts = AccountManager(self.runner, dry_run=self.ctx.dry_run)
        self.registrar = DeferredTaskRegistrar(
            self.systemd, unit_dir=cfg.paths.unit_dir, unit_name=cfg.paths.unit_name
        )
        self.dns: Optional[DnsReconciler] = DnsReconciler(cfg.dns) if cfg.dns else None

    def steps(self) -> None:
        self.guard()
        if self.already_done(BootstrapPhase.PHASE2_COMPLETE):
            log.info("Phase2 already complete, nothing to do (use --force to re-run)")
            self.report.skipped = True
            return

        with self.locked():
            previous = self.state.phase()
            if previous is not BootstrapPhase.PHASE1_COMPLETE and previous is not BootstrapPhase.PHASE2_PENDING:
                log.warning("phase record is %s, expected phase1_complete", previous.value if previous else "missing")
            self.advance(BootstrapPhase.PHASE2_PENDING)

            self.install_packages()
            self.firewall_baseline()
            self._report_iptables("iptables", self.iptables.reconcile())
            self.start_runtime()
            self.activate_networks()
            self._report_iptables("acl", self.iptables.reconcile_acl(self.cfg.networks.networks))
            self.start_mesh_daemon()
            auth_key = self.auth_key()
            self.join_mesh(auth_key)
            self.update_dns()
            self.firewall_finalize()
            self.configure_sshd()
            self.verify_accounts()
            self.log_summary()
            self.complete()

    # ------------------ steps ------------------

    def install_packages(self) -> None:
        pkgs = self.cfg.packages
        removed = self.packages.remove_conflicts(pkgs.conflicts)
        if removed:
            self.ok("packages", f"removed {', '.join(removed)}")
        result = self.packages.install(pkgs.phase2)
        if result.failed:
            self.warn("packages", f"not installed: {', '.join(result.failed)}")
        else:
            self.ok("packages", ", ".join(result.installed))

    def firewall_baseline(self) -> None:
        try:
            self.ufw.baseline(self.cfg.firewall.allow)
        except CommandError as exc:
            self.warn("firewall", f"baseline not applied: {exc}")
            return
        self.ok("firewall", f"deny incoming, allow outgoing, allow {', '.join(self.cfg.firewall.allow)}")

    def _report_iptables(self, step: str, report) -> None:
        if report.failed:
            self.warn(step, report.summary())
        else:
            self.ok(step, report.summary())

    def start_runtime(self) -> None:
        docker = self.cfg.docker
        self.start("docker", "starting container runtime")
        if not self.systemd.start(docker.service):
            self.warn("docker", f"systemctl start {docker.service} failed")
        self.docker.wait_ready(attempts=docker.ready_attempts, interval=docker.ready_interval)
        self.ok("docker", "ready")

    def activate_networks(self) -> None:
        net = self.cfg.networks
        self.docker.recreate(net.networks)
        self.report.networks = [n.name for n in net.networks]
        self.ok("networks", ", ".join(f"{n.name}={n.subnet}" for n in net.networks))

        if self.ctx.dry_run:
            self.skip("networks", f"dry-run: would write {net.description_file}")
            return
        try:
            write_description(net.networks, net.description_file, net.extra_subnets)
        except OSError as exc:
            self.warn("networks", f"could not write {net.description_file}: {exc}")
        else:
            self.ok("networks", f"description written to {net.description_file}")

    def start_mesh_daemon(self) -> None:
        mesh = self.cfg.mesh
        self.systemd.enable(mesh.service)
        if not self.systemd.start(mesh.service):
            self.warn("mesh", f"systemctl start {mesh.service} failed")

        def _waiting(attempt: int) -> None:
            log.info("Attempt %d/%d: waiting for %s...", attempt, mesh.daemon_poll_attempts, mesh.service)

        if wait_until(
            self.tailscale.daemon_responding,
            attempts=mesh.daemon_poll_attempts,
            interval=mesh.daemon_poll_interval,
            on_wait=_waiting,
        ):
            self.ok("mesh", f"{mesh.service} responding")
        else:
            self.warn("mesh", f"{mesh.service} not responding, trying to join anyway")

    def auth_key(self) -> str:
        try:
            return resolve_auth_key(self.cfg)
        except MeshbootError as exc:
            self.fail("mesh", str(exc))
            raise

    def join_mesh(self, auth_key: str) -> None:
        connector = MeshConnector(
            self.tailscale,
            self.cfg.mesh,
            routes=self.cfg.advertised_routes(),
            bus=self.bus,
        )
        hostname = self.cfg.mesh_hostname
        if self.ctx.dry_run:
            mesh = connector.connect(auth_key=auth_key, hostname=hostname)
        else:
            mesh = connector.run(auth_key=auth_key, hostname=hostname)
        self.report.mesh = mesh

        if mesh.connected:
            routes = "with routes" if mesh.with_routes else "without routes"
            self.ok("mesh", f"connected via '{mesh.strategy}' {routes}")
            if mesh.secondary_attempted and not mesh.secondary_ok:
                self.warn("mesh", "route advertisement after join failed")
        else:
            self.warn("mesh", "could not join the mesh")

        address = mesh.address if mesh.connected else PENDING_ADDRESS
        if self.ctx.dry_run:
            self.report.address = address
        else:
            self.report.address = self.state.write_address(address)
        if self.report.address == PENDING_ADDRESS:
            self.warn("mesh", "address pending")
        else:
            self.ok("mesh", f"address {self.report.address}")

    def update_dns(self) -> None:
        address = self.report.address
        if self.dns is None or not self.dns.settings.configured:
            self.skip("dns", "not configured")
            return
        if address in (None, PENDING_ADDRESS):
            self.skip("dns", "mesh address pending")
            return
        outcome = self.dns.reconcile(address)
        self.report.dns = outcome
        if outcome is DnsOutcome.FAILED:
            self.warn("dns", f"{self.dns.settings.fqdn} not updated")
        else:
            self.ok("dns", f"{self.dns.settings.fqdn} -> {address} ({outcome.value})")

        for fqdn, peer in self.dns.reconcile_peers(self.tailscale.peer_ipv4).items():
            if peer is DnsOutcome.FAILED:
                self.warn("dns", f"{fqdn} not updated")
            elif peer is DnsOutcome.SKIPPED:
                self.warn("dns", f"{fqdn} left alone, peer address unknown")
            else:
                self.ok("dns", f"{fqdn} {peer.value}")

        for fqdn, content in self.dns.summary().items():
            log.info("  %-25s -> %s", fqdn, content)

    def firewall_finalize(self) -> None:
        try:
            self.ufw.finalize(self.cfg.mesh.interface)
        except CommandError as exc:
            self.warn("firewall", f"not enabled: {exc}")
            return
        self.ok("firewall", f"enabled, {self.cfg.mesh.interface} allowed")

    def configure_sshd(self) -> None:
        ssh = self.cfg.ssh
        if ssh.password_authentication and not self.ctx.dry_run:
            try:
                enable_password_auth(ssh.config_path)
            except OSError as exc:
                self.warn("sshd", f"could not edit {ssh.config_path}: {exc}")
        if self.systemd.restart(ssh.service):
            self.ok("sshd", f"{ssh.service} restarted")
        else:
            self.warn("sshd", f"could not restart {ssh.service}")

    def verify_accounts(self) -> None:
        missing = [a.username for a in self.cfg.accounts if not self.accounts.exists(a.username)]
        if missing:
            self.warn("accounts", f"missing: {', '.join(missing)}")
        elif self.cfg.accounts:
            self.ok("accounts", "all present")

    def log_summary(self) -> None:
        log.info("Phase2 summary: %s", self.report.summary())
        mesh = self.report.mesh
        if mesh is not None and mesh.connected:
            summary = self.tailscale.self_summary()
            if summary:
                log.info("tailscale status:\n%s", summary)

    def complete(self) -> None:
        self.advance(BootstrapPhase.PHASE2_COMPLETE)
        if self.registrar.disable():
            self.ok("deferred", f"{self.cfg.paths.unit_name} disabled")
        else:
            self.warn("deferred", f"could not disable {self.cfg.paths.unit_name}")
