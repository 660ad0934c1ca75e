# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

#src/meshboot/logging/log.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from datetime import datetime, timezone
import uuid

DEFAULT_LOG_DIR = Path("/var/log/meshboot")


def _writable_dir(base_dir: Path | None) -> Path:
    candidates = [base_dir] if base_dir else [DEFAULT_LOG_DIR]
    candidates.append(Path.home() / ".meshboot" / "logs")
    for candidate in candidates:
        try:
            candidate.mkdir(parents=True, exist_ok=True)
        except OSError:
            continue
        if os.access(candidate, os.W_OK):
            return candidate
    raise OSError(f"No writable log directory among: {', '.join(map(str, candidates))}")


def init_logging(
    *,
    base_dir: Path | None = None,
    name: str = "meshboot",
    verbose: bool = False,
    label: str = "run",
) -> tuple[logging.Logger, str, Path]:
    """
    Initializes:
      - a full-trace log file per run (every command, stdout and stderr)
      - a console handler carrying the tagged progress lines
      - returns run_id so observers can reuse it
    """
    run_id = str(uuid.uuid4())
    log_dir = _writable_dir(base_dir)

    ts = datetime.now(timezone.utc).strftime("%Y%m%d-%H%M%S")
    log_path = log_dir / f"{name}-{label}-{ts}-{run_id[:8]}.log"

    logger = logging.getLogger(name)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()
    logger.propagate = False

    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)-7s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    # File = FULL TRACE
    fh = logging.FileHandler(log_path)
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(formatter)

    # Console = INFO by default, DEBUG when --debug is passed
    ch = logging.StreamHandler()
    ch.setLevel(logging.DEBUG if verbose else logging.INFO)
    ch.setFormatter(formatter)

    logger.addHandler(fh)
    logger.addHandler(ch)

    logger.info(f"=== meshboot {label} started ===")
    logger.info(f"run_id={run_id}")
    logger.info(f"log_file={log_path}")

    return logger, run_id, log_path
