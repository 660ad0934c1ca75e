# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/cli/app.py
from __future__ import annotations

from pathlib import Path
from typing import Optional, Tuple

import typer

from meshboot.bootstrap.deferred import DeferredTaskRegistrar
from meshboot.bootstrap.state import StateStore
from meshboot.bootstrap.systemd import Systemd
from meshboot.config.loader import load_config
from meshboot.config.models import BootstrapConfig, PathSettings
from meshboot.config.placeholders import ensure_no_placeholders
from meshboot.dns.cloudflare import DnsOutcome, DnsReconciler
from meshboot.errors import (
    ConfigError,
    DockerNotReadyError,
    MeshbootError,
    RunLockError,
    UnresolvedPlaceholderError,
)
from meshboot.execution.context import ExecutionContext
from meshboot.execution.runner import CommandRunner
from meshboot.logging.log import init_logging
from meshboot.network.iptables import IptablesReconciler
from meshboot.observers.dispatcher import EventBus
from meshboot.observers.jsonfile import JsonFileObserver
from meshboot.observers.logger import LoggerObserver
from meshboot.phases.phase1 import Phase1
from meshboot.phases.phase2 import Phase2

# ------------------------------------------------------------------------------
# CLI setup
# ------------------------------------------------------------------------------

app = typer.Typer(help="meshboot: two-phase mesh host bootstrap")

# most specific first
EXIT_CODES: Tuple[Tuple[type, int], ...] = (
    (UnresolvedPlaceholderError, 3),
    (ConfigError, 2),
    (DockerNotReadyError, 4),
    (RunLockError, 5),
    (MeshbootError, 1),
)


def exit_code_for(exc: BaseException) -> int:
    for exc_type, code in EXIT_CODES:
        if isinstance(exc, exc_type):
            return code
    return 1


# ------------------------------------------------------------------------------
# Helpers
# ------------------------------------------------------------------------------

def _load(config: Path) -> BootstrapConfig:
    try:
        return load_config(config)
    except ConfigError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(exit_code_for(exc))


def _session(cfg: BootstrapConfig, label: str, *, debug: bool, dry_run: bool):
    logger, run_id, log_path = init_logging(
        base_dir=cfg.logging.dir,
        verbose=debug or cfg.logging.verbose,
        label=label,
    )
    observers = [
        LoggerObserver(logger),
        JsonFileObserver(log_path.with_suffix(".jsonl")),
    ]
    bus = EventBus(observers=observers, run_id=run_id, phase=label)
    runner = CommandRunner(logger=logger, dry_run=dry_run)

    typer.echo("")
    typer.secho(f"meshboot {label}", bold=True)
    typer.echo(f"  Run ID   : {run_id}")
    typer.echo(f"  Logs     : {log_path}")
    if dry_run:
        typer.echo("  Mode     : dry-run")
    typer.echo("")
    return logger, runner, bus


def _run_phase(executor) -> None:
    try:
        report = executor.run()
    except MeshbootError as exc:
        typer.secho(f"[{executor.name}] failed: {exc}", fg=typer.colors.RED, err=True)
        raise typer.Exit(exit_code_for(exc))
    typer.echo(f"[{executor.name}] done: {report.summary()}")


# ------------------------------------------------------------------------------
# Commands
# ------------------------------------------------------------------------------

@app.command()
def phase1(
    config: Path = typer.Argument(..., help="Bootstrap config YAML"),
    dry_run: bool = typer.Option(False, "--dry-run", help="Log commands without executing them"),
    debug: bool = typer.Option(False, "--debug"),
    force: bool = typer.Option(False, "--force", help="Re-run even if the phase record says done"),
):
    """Provision the host and schedule Phase2 for the next boot."""
    cfg = _load(config)
    _, runner, bus = _session(cfg, "phase1", debug=debug, dry_run=dry_run)
    _run_phase(Phase1(cfg, runner=runner, bus=bus, ctx=ExecutionContext(dry_run=dry_run, force=force)))
    if not dry_run:
        typer.secho("Reboot required to continue with Phase2.", bold=True)


@app.command()
def phase2(
    config: Path = typer.Option(
        PathSettings().persisted_config, "--config", help="Config persisted by Phase1"
    ),
    dry_run: bool = typer.Option(False, "--dry-run"),
    debug: bool = typer.Option(False, "--debug"),
    force: bool = typer.Option(False, "--force"),
):
    """Activate networking, join the mesh and publish DNS (runs at boot)."""
    cfg = _load(config)
    _, runner, bus = _session(cfg, "phase2", debug=debug, dry_run=dry_run)
    _run_phase(Phase2(cfg, runner=runner, bus=bus, ctx=ExecutionContext(dry_run=dry_run, force=force)))


@app.command()
def reconcile(
    config: Path = typer.Argument(..., help="Bootstrap config YAML"),
    dry_run: bool = typer.Option(False, "--dry-run"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Re-apply the Docker iptables chains and the inter-network ACL."""
    cfg = _load(config)
    _, runner, _ = _session(cfg, "reconcile", debug=debug, dry_run=dry_run)
    iptables = IptablesReconciler(runner)
    report = iptables.reconcile().merge(iptables.reconcile_acl(cfg.networks.networks))
    typer.echo(f"[reconcile] {report.summary()}")
    if report.failed:
        for item in report.failed:
            typer.secho(f"  failed: {item}", fg=typer.colors.YELLOW)
        raise typer.Exit(1)


@app.command()
def dns(
    config: Path = typer.Argument(..., help="Bootstrap config YAML"),
    address: str = typer.Option(..., "--address", help="IPv4 to publish"),
    debug: bool = typer.Option(False, "--debug"),
):
    """Point the configured FQDN(s) at ADDRESS."""
    cfg = _load(config)
    try:
        ensure_no_placeholders(cfg)
    except UnresolvedPlaceholderError as exc:
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(exit_code_for(exc))
    if cfg.dns is None or not cfg.dns.configured:
        typer.secho("DNS is not configured (dns.email, dns.api_token, dns.fqdn)", fg=typer.colors.RED, err=True)
        raise typer.Exit(2)

    _session(cfg, "dns", debug=debug, dry_run=False)
    outcome = DnsReconciler(cfg.dns).reconcile(address)
    typer.echo(f"[dns] {cfg.dns.fqdn}: {outcome.value}")
    if outcome is DnsOutcome.FAILED:
        raise typer.Exit(1)


@app.command()
def status(
    config: Optional[Path] = typer.Option(None, "--config", help="Read artifact paths from this config"),
):
    """Show the phase record, status marker, mesh address and unit state."""
    paths = _load(config).paths if config else PathSettings()
    store = StateStore(paths.state_dir, status_marker=paths.status_marker, address_file=paths.mesh_address_file)
    phase = store.phase()
    registrar = DeferredTaskRegistrar(Systemd(CommandRunner()), unit_dir=paths.unit_dir, unit_name=paths.unit_name)
    unit = "registered" if registrar.is_registered() else "not registered"

    typer.echo(f"phase   : {phase.value if phase else 'none'}")
    typer.echo(f"marker  : {store.status() or 'none'}")
    typer.echo(f"address : {store.address() or 'none'}")
    typer.echo(f"unit    : {paths.unit_name} ({unit})")
