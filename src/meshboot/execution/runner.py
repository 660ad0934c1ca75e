# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/execution/runner.py

from __future__ import annotations

import logging
import os
import subprocess
import time
from dataclasses import dataclass, field
from typing import Optional, Sequence, Union

from meshboot.errors import CommandError

Cmd = Sequence[Union[str, "os.PathLike[str]"]]

# Return codes used by coreutils `timeout` and the shell for a missing binary.
RC_TIMEOUT = 124
RC_NOT_FOUND = 127


@dataclass
class CommandRunner:
    """
    Runs host commands with full logging.

    Every call returns a CompletedProcess. A missing binary and a timeout are
    reported as return codes (127 / 124) instead of exceptions so that
    best-effort call sites only ever look at ``returncode``.
    """

    logger: logging.Logger = field(default_factory=lambda: logging.getLogger("meshboot"))
    dry_run: bool = False
    label: Optional[str] = None

    def with_label(self, label: str) -> "CommandRunner":
        return CommandRunner(logger=self.logger, dry_run=self.dry_run, label=label)

    def run(
        self,
        cmd: Cmd,
        *,
        check: bool = False,
        timeout: Optional[float] = None,
        input: Optional[str] = None,
        env: Optional[dict[str, str]] = None,
        secrets: Sequence[str] = (),
    ) -> subprocess.CompletedProcess:
        label = self.label or "cmd"
        argv = [str(c) for c in cmd]
        cmd_str = " ".join(argv)
        for secret in secrets:
            if secret:
                cmd_str = cmd_str.replace(secret, "***")

        self.logger.debug(f"[{label}] $ {cmd_str}")

        if self.dry_run:
            self.logger.debug(f"[{label}] dry-run: skipped execution")
            return subprocess.CompletedProcess(args=argv, returncode=0, stdout="", stderr="")

        start = time.time()
        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                check=False,
                text=True,
                timeout=timeout,
                input=input,
                env=env,
            )
        except FileNotFoundError as exc:
            self.logger.debug(f"[{label}] not found: {exc}")
            result = subprocess.CompletedProcess(
                args=argv, returncode=RC_NOT_FOUND, stdout="", stderr=str(exc)
            )
        except subprocess.TimeoutExpired:
            self.logger.debug(f"[{label}] timed out after {timeout}s")
            result = subprocess.CompletedProcess(
                args=argv, returncode=RC_TIMEOUT, stdout="", stderr=f"timed out after {timeout}s"
            )

        duration = time.time() - start

        if result.stdout:
            self.logger.debug(f"[{label}][stdout]\n{result.stdout.rstrip()}")
        if result.stderr:
            self.logger.debug(f"[{label}][stderr]\n{result.stderr.rstrip()}")
        self.logger.debug(f"[{label}][exit {result.returncode}] ({duration:.2f}s)")

        if check and result.returncode != 0:
            raise CommandError(argv, result.returncode, result.stderr or "")

        return result

    def ok(self, cmd: Cmd, **kwargs) -> bool:
        """Run and report success as a bool."""
        return self.run(cmd, **kwargs).returncode == 0
