# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/phases/base.py

from __future__ import annotations

import contextlib
import logging
import socket
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Iterator, List, Optional

from meshboot.bootstrap.state import BootstrapPhase, RunLock, StateStore
from meshboot.config.models import BootstrapConfig
from meshboot.config.placeholders import ensure_no_placeholders
from meshboot.errors import MeshbootError, UnresolvedPlaceholderError
from meshboot.execution.context import ExecutionContext
from meshboot.execution.runner import CommandRunner
from meshboot.observers.dispatcher import EventBus
from meshboot.observers.events import PhaseCompleted, PhaseStarted, StepStatus, now_ts

if TYPE_CHECKING:
    from meshboot.dns.cloudflare import DnsOutcome
    from meshboot.mesh.connector import MeshResult

log = logging.getLogger("meshboot")


@dataclass
class PhaseReport:
    phase: str
    skipped: bool = False
    warnings: List[str] = field(default_factory=list)
    networks: List[str] = field(default_factory=list)
    mesh: Optional["MeshResult"] = None
    address: Optional[str] = None
    dns: Optional["DnsOutcome"] = None

    @property
    def degraded(self) -> bool:
        return bool(self.warnings)

    def summary(self) -> str:
        if self.skipped:
            return "skipped (already complete)"
        parts = [f"warnings={len(self.warnings)}"]
        if self.networks:
            parts.append(f"networks={','.join(self.networks)}")
        if self.mesh is not None:
            parts.append(f"mesh={self.mesh.state.value}")
        if self.address is not None:
            parts.append(f"address={self.address}")
        if self.dns is not None:
            parts.append(f"dns={self.dns.value}")
        return " ".join(parts)


class PhaseExecutor:
    """
    Shared plumbing for the two bootstrap phases: placeholder guard, host
    run lock, phase record and step events. Subclasses implement ``steps``.
    """

    name = ""

    def __init__(
        self,
        cfg: BootstrapConfig,
        *,
        runner: CommandRunner,
        bus: Optional[EventBus] = None,
        ctx: Optional[ExecutionContext] = None,
    ):
        self.cfg = cfg
        self.runner = runner
        self.ctx = ctx or ExecutionContext(dry_run=runner.dry_run)
        self.bus = bus or EventBus(phase=self.name)
        if not self.bus.phase:
            self.bus.phase = self.name
        self.state = StateStore(
            cfg.paths.state_dir,
            status_marker=cfg.paths.status_marker,
            address_file=cfg.paths.mesh_address_file,
        )
        self.lock = RunLock(cfg.paths.lock_file)
        self.report = PhaseReport(phase=self.name)

    # ------------------ step helpers ------------------

    def ok(self, step: str, message: str) -> None:
        self.bus.step(step, StepStatus.OK, message)

    def start(self, step: str, message: str) -> None:
        self.bus.step(step, StepStatus.START, message)

    def skip(self, step: str, message: str) -> None:
        self.bus.step(step, StepStatus.SKIP, message)

    def warn(self, step: str, message: str) -> None:
        self.report.warnings.append(f"{step}: {message}")
        self.bus.step(step, StepStatus.WARN, message)

    def fail(self, step: str, message: str) -> None:
        self.bus.step(step, StepStatus.FAIL, message)

    # ------------------ checkpoint ------------------

    def guard(self) -> None:
        try:
            ensure_no_placeholders(self.cfg)
        except UnresolvedPlaceholderError as exc:
            self.fail("guard", str(exc))
            raise
        self.ok("guard", "no unresolved placeholders")

    @contextlib.contextmanager
    def locked(self) -> Iterator[None]:
        if self.ctx.dry_run:
            yield
            return
        with self.lock:
            yield

    def advance(self, target: BootstrapPhase) -> None:
        if self.ctx.dry_run:
            log.debug("dry-run: phase record stays at %s", self.state.phase())
            return
        self.state.advance(target)

    def already_done(self, marker: BootstrapPhase) -> bool:
        """True when the record is at/after ``marker`` and the run is not forced."""
        current = self.state.phase()
        if current is None or current.order < marker.order:
            return False
        if self.ctx.force:
            log.warning("--force: re-running %s over phase record %s", self.name, current.value)
            if not self.ctx.dry_run:
                self.state.reset()
            return False
        return True

    # ------------------ lifecycle ------------------

    def steps(self) -> None:
        raise NotImplementedError

    def run(self) -> PhaseReport:
        self.bus.emit(
            PhaseStarted(ts=now_ts(), run_id=self.bus.run_id, phase=self.name, hostname=socket.gethostname())
        )
        try:
            self.steps()
        except MeshbootError as exc:
            self.bus.emit(
                PhaseCompleted(ts=now_ts(), run_id=self.bus.run_id, phase=self.name, ok=False, summary=str(exc))
            )
            raise
        self.bus.emit(
            PhaseCompleted(ts=now_ts(), run_id=self.bus.run_id, phase=self.name, ok=True, summary=self.report.summary())
        )
        return self.report
