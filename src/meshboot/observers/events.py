# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/observers/events.py

from __future__ import annotations
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Any, Optional
from datetime import datetime, timezone


class StepStatus(str, Enum):
    START = "START"
    OK = "OK"
    WARN = "WARN"
    FAIL = "FAIL"
    SKIP = "SKIP"


# ---------------------------------------------------------------------
# Base context and helper
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class BaseEvent:
    ts: str           # ISO timestamp
    run_id: str       # correlates all events in a single bootstrap invocation
    phase: str        # phase1 / phase2 / reconcile / dns

    def dict(self) -> Dict[str, Any]:
        d = asdict(self)
        for k, v in d.items():
            if isinstance(v, Enum):
                d[k] = v.value
        return d


def now_ts() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="seconds").replace("+00:00", "Z")


# ---------------------------------------------------------------------
# Phase lifecycle
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class PhaseStarted(BaseEvent):
    hostname: str

@dataclass(frozen=True)
class PhaseCompleted(BaseEvent):
    ok: bool
    summary: str = ""


# ---------------------------------------------------------------------
# Steps (tagged progress lines)
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class StepEvent(BaseEvent):
    step: str
    status: StepStatus
    message: str


# ---------------------------------------------------------------------
# Mesh state machine
# ---------------------------------------------------------------------
@dataclass(frozen=True)
class MeshTransition(BaseEvent):
    source: str
    target: str
    strategy: Optional[str] = None
