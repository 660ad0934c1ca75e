# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/mesh/connector.py

from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence

from meshboot.bootstrap.state import PENDING_ADDRESS
from meshboot.config.models import MeshSettings
from meshboot.mesh.tailscale import TailscaleCli
from meshboot.observers.dispatcher import EventBus
from meshboot.observers.events import MeshTransition, StepStatus, now_ts
from meshboot.utils.retry import wait_until

log = logging.getLogger("meshboot")


class MeshState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING_FULL = "connecting_full"
    CONNECTING_BASIC = "connecting_basic"
    CONNECTED = "connected"
    FAILED = "failed"


class Outcome(str, Enum):
    SUCCESS = "success"
    RETRY = "retry"
    FALLBACK = "fallback"
    FAIL = "fail"


@dataclass(frozen=True)
class StepResult:
    outcome: Outcome
    data: Any = None


@dataclass(frozen=True)
class Strategy:
    name: str
    state: MeshState
    advertise_routes: bool
    accept_routes: bool = True
    set_hostname: bool = True
    reset: bool = False
    # one best-effort route advertisement after joining without routes
    secondary_advertise: bool = False


STRATEGIES: Dict[str, Strategy] = {
    s.name: s
    for s in (
        Strategy("full-with-reset", MeshState.CONNECTING_FULL, advertise_routes=True, reset=True),
        Strategy("full", MeshState.CONNECTING_FULL, advertise_routes=True),
        Strategy("basic-with-reset", MeshState.CONNECTING_BASIC, advertise_routes=False, reset=True, secondary_advertise=True),
        Strategy("basic", MeshState.CONNECTING_BASIC, advertise_routes=False, secondary_advertise=True),
        Strategy(
            "minimal", MeshState.CONNECTING_BASIC,
            advertise_routes=False, accept_routes=False, set_hostname=False,
        ),
    )
}


@dataclass
class MeshResult:
    state: MeshState
    with_routes: bool = False
    strategy: Optional[str] = None
    address: str = PENDING_ADDRESS
    secondary_attempted: bool = False
    secondary_ok: Optional[bool] = None
    attempts: int = 0

    @property
    def connected(self) -> bool:
        return self.state is MeshState.CONNECTED

    @property
    def resolved(self) -> bool:
        return self.address != PENDING_ADDRESS


class MeshConnector:
    """
    Joins the mesh by walking a table of strategies.

    Each strategy attempt yields a StepResult: SUCCESS moves to CONNECTED,
    RETRY repeats the strategy while attempts remain, FALLBACK moves to the
    next table entry and FAIL ends in FAILED. FAILED is terminal but never
    raises; the caller records the node as pending.
    """

    def __init__(
        self,
        cli: TailscaleCli,
        settings: MeshSettings,
        *,
        routes: Sequence[str],
        bus: Optional[EventBus] = None,
    ):
        self.cli = cli
        self.settings = settings
        self.routes = list(routes)
        self.bus = bus
        self.table: List[Strategy] = [STRATEGIES[name] for name in settings.strategies]
        self.state = MeshState.DISCONNECTED

    # ------------------ transitions ------------------

    def _move(self, target: MeshState, strategy: Optional[str] = None) -> None:
        if target is self.state:
            return
        log.debug("mesh %s -> %s (%s)", self.state.value, target.value, strategy)
        if self.bus:
            self.bus.emit(
                MeshTransition(
                    ts=now_ts(),
                    run_id=self.bus.run_id,
                    phase=self.bus.phase,
                    source=self.state.value,
                    target=target.value,
                    strategy=strategy,
                )
            )
        self.state = target

    def _step(self, message: str) -> None:
        log.info("mesh: %s", message)
        if self.bus:
            self.bus.step("mesh", StepStatus.START, message)

    def attempt(self, strategy: Strategy, *, auth_key: str, hostname: str, attempt: int, index: int) -> StepResult:
        ok = self.cli.up(
            auth_key=auth_key,
            hostname=hostname if strategy.set_hostname else None,
            accept_routes=strategy.accept_routes and self.settings.accept_routes,
            advertise_routes=self.routes if strategy.advertise_routes else (),
            reset=strategy.reset,
            timeout=self.settings.up_timeout,
        )
        if ok:
            return StepResult(Outcome.SUCCESS, data=strategy.advertise_routes and bool(self.routes))
        if attempt < self.settings.attempts_per_strategy:
            return StepResult(Outcome.RETRY)
        if index + 1 < len(self.table):
            return StepResult(Outcome.FALLBACK)
        return StepResult(Outcome.FAIL)

    # ------------------ public API ------------------

    def connect(self, *, auth_key: str, hostname: str) -> MeshResult:
        index, attempt, total = 0, 1, 0
        while True:
            strategy = self.table[index]
            if strategy.state is self.state:
                self._step(f"trying strategy '{strategy.name}' (attempt {attempt})")
            else:
                self._move(strategy.state, strategy.name)
                log.info("mesh: trying strategy '%s' (attempt %d)", strategy.name, attempt)
            total += 1
            result = self.attempt(strategy, auth_key=auth_key, hostname=hostname, attempt=attempt, index=index)

            if result.outcome is Outcome.SUCCESS:
                self._move(MeshState.CONNECTED, strategy.name)
                mesh = MeshResult(
                    state=MeshState.CONNECTED,
                    with_routes=bool(result.data),
                    strategy=strategy.name,
                    attempts=total,
                )
                if not mesh.with_routes and strategy.secondary_advertise and self.routes:
                    self._advertise_after_join(mesh)
                return mesh

            if result.outcome is Outcome.FAIL:
                log.warning("mesh: all strategies failed")
                self._move(MeshState.FAILED)
                return MeshResult(state=MeshState.FAILED, attempts=total)

            if result.outcome is Outcome.RETRY:
                attempt += 1
            else:
                log.warning("mesh: strategy '%s' failed, falling back", strategy.name)
                index, attempt = index + 1, 1
            time.sleep(self.settings.strategy_delay)

    def _advertise_after_join(self, mesh: MeshResult) -> None:
        time.sleep(self.settings.settle_delay)
        mesh.secondary_attempted = True
        mesh.secondary_ok = self.cli.advertise(self.routes, timeout=self.settings.secondary_timeout)
        if mesh.secondary_ok:
            log.info("mesh: route advertisement added after join")
        else:
            log.warning("mesh: could not advertise routes, connection kept without them")

    def resolve_address(self) -> str:
        """Poll for a logged-in node with an IPv4; ``pending`` on exhaustion."""
        found: Dict[str, str] = {}

        def _assigned() -> bool:
            if not self.cli.logged_in():
                return False
            ip = self.cli.ipv4()
            if ip:
                found["ip"] = ip
                return True
            return False

        def _waiting(attempt: int) -> None:
            log.info(
                "Attempt %d/%d: waiting for mesh address assignment...",
                attempt, self.settings.address_poll_attempts,
            )

        wait_until(
            _assigned,
            attempts=self.settings.address_poll_attempts,
            interval=self.settings.address_poll_interval,
            on_wait=_waiting,
        )
        return found.get("ip", PENDING_ADDRESS)

    def run(self, *, auth_key: str, hostname: str) -> MeshResult:
        mesh = self.connect(auth_key=auth_key, hostname=hostname)
        if mesh.connected:
            mesh.address = self.resolve_address()
        return mesh
