# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

from __future__ import annotations
import logging
from .events import BaseEvent, MeshTransition, PhaseCompleted, PhaseStarted, StepEvent, StepStatus

_TAGS = {
    StepStatus.START: "[ .. ]",
    StepStatus.OK: "[ OK ]",
    StepStatus.WARN: "[WARN]",
    StepStatus.FAIL: "[FAIL]",
    StepStatus.SKIP: "[SKIP]",
}

_LEVELS = {
    StepStatus.WARN: logging.WARNING,
    StepStatus.FAIL: logging.ERROR,
}


class LoggerObserver:
    """Renders events as tagged progress lines."""

    def __init__(self, logger: logging.Logger):
        self.logger = logger

    def notify(self, event: BaseEvent) -> None:
        if isinstance(event, StepEvent):
            level = _LEVELS.get(event.status, logging.INFO)
            self.logger.log(level, f"[{event.phase}] {_TAGS[event.status]} {event.step}: {event.message}")
        elif isinstance(event, MeshTransition):
            via = f" ({event.strategy})" if event.strategy else ""
            self.logger.info(f"[{event.phase}] [MESH] {event.source} -> {event.target}{via}")
        elif isinstance(event, PhaseStarted):
            self.logger.info(f"[{event.phase}] === starting on {event.hostname} ===")
        elif isinstance(event, PhaseCompleted):
            tag = _TAGS[StepStatus.OK] if event.ok else _TAGS[StepStatus.FAIL]
            self.logger.info(f"[{event.phase}] {tag} === finished === {event.summary}")
        else:
            d = event.dict()
            msg = ", ".join(f"{k}={v}" for k, v in d.items() if k not in ("ts",))
            self.logger.info(f"[EVENT] {event.__class__.__name__}: {msg}")
