# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/bootstrap/state.py

from __future__ import annotations

import errno
import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from meshboot.errors import InvalidPhaseTransition, RunLockError

log = logging.getLogger("meshboot")

REBOOT_SENTINEL = "NEEDS_REBOOT"
PENDING_ADDRESS = "pending"


class BootstrapPhase(str, Enum):
    PHASE1_PENDING = "phase1_pending"
    PHASE1_COMPLETE = "phase1_complete"
    PHASE2_PENDING = "phase2_pending"
    PHASE2_COMPLETE = "phase2_complete"

    @property
    def order(self) -> int:
        return list(BootstrapPhase).index(self)


def _write_atomic(path: Path, content: str, mode: int = 0o644) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(f".{path.name}.tmp")
    tmp.write_text(content, encoding="utf-8")
    os.chmod(tmp, mode)
    os.replace(tmp, path)


class StateStore:
    """
    The persisted half of the reboot-spanning checkpoint.

    ``phase`` lives in the state directory and only ever moves forward. The
    status marker is the orchestrator-facing signal that a reboot is due.
    """

    def __init__(self, state_dir: Path, *, status_marker: Path, address_file: Path):
        self.state_dir = state_dir
        self.phase_file = state_dir / "phase"
        self.status_marker = status_marker
        self.address_file = address_file

    # ------------------ phase record ------------------

    def phase(self) -> Optional[BootstrapPhase]:
        try:
            raw = self.phase_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        try:
            return BootstrapPhase(raw)
        except ValueError:
            log.warning("ignoring unknown phase record %r in %s", raw, self.phase_file)
            return None

    def advance(self, target: BootstrapPhase) -> None:
        current = self.phase()
        if current is not None and target.order < current.order:
            raise InvalidPhaseTransition(f"{current.value} -> {target.value} is backwards")
        if current is target:
            return
        _write_atomic(self.phase_file, target.value + "\n")
        log.debug("phase %s -> %s", current.value if current else "none", target.value)

    def reset(self) -> None:
        """Forget the phase record (explicit operator --force only)."""
        self.phase_file.unlink(missing_ok=True)

    # ------------------ artifacts ------------------

    def mark_reboot_needed(self) -> None:
        _write_atomic(self.status_marker, REBOOT_SENTINEL + "\n")

    def status(self) -> Optional[str]:
        try:
            return self.status_marker.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None

    def write_address(self, address: Optional[str]) -> str:
        value = address or PENDING_ADDRESS
        _write_atomic(self.address_file, value + "\n")
        return value

    def address(self) -> Optional[str]:
        try:
            return self.address_file.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None


def write_secret(path: Path, content: str) -> Path:
    """Write a root-only (0600) file, never exposing it with wider permissions."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w") as f:
        f.write(content)
    os.chmod(path, 0o600)
    return path


def _pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except OSError as exc:
        return exc.errno == errno.EPERM
    return True


class RunLock:
    """
    Single-writer-per-host guard: a lock file holding the holder's PID.

    A lock whose PID is no longer alive is stale and is taken over.
    """

    def __init__(self, path: Path):
        self.path = path
        self._held = False

    def holder(self) -> Optional[int]:
        try:
            return int(self.path.read_text(encoding="utf-8").strip())
        except (FileNotFoundError, ValueError):
            return None

    def acquire(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        for _ in range(2):
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o644)
            except FileExistsError:
                pid = self.holder()
                if pid is not None and pid != os.getpid() and _pid_alive(pid):
                    raise RunLockError(f"Another bootstrap run holds {self.path} (pid {pid})")
                log.warning("removing stale lock %s (pid %s)", self.path, pid)
                self.path.unlink(missing_ok=True)
                continue
            with os.fdopen(fd, "w") as f:
                f.write(f"{os.getpid()}\n")
            self._held = True
            return
        raise RunLockError(f"Could not acquire {self.path}")

    def release(self) -> None:
        if self._held:
            self.path.unlink(missing_ok=True)
            self._held = False

    def __enter__(self) -> "RunLock":
        self.acquire()
        return self

    def __exit__(self, *exc) -> None:
        self.release()
