# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/observers/dispatcher.py
from __future__ import annotations

import logging
from typing import List, Optional

from .events import BaseEvent, StepEvent, StepStatus, now_ts

log = logging.getLogger("meshboot")


class EventBus:
    def __init__(self, observers: Optional[List] = None, *, run_id: str = "", phase: str = ""):
        self._observers = observers or []
        self.run_id = run_id
        self.phase = phase

    def emit(self, event: BaseEvent) -> None:
        for ob in self._observers:
            try:
                ob.notify(event)
            except Exception as exc:
                # observers must not break a bootstrap run
                log.debug("observer %s failed: %s", type(ob).__name__, exc)

    def step(self, step: str, status: StepStatus, message: str) -> None:
        self.emit(
            StepEvent(
                ts=now_ts(),
                run_id=self.run_id,
                phase=self.phase,
                step=step,
                status=status,
                message=message,
            )
        )
