# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/errors.py

from __future__ import annotations

from typing import Sequence


class MeshbootError(RuntimeError):
    """Base class for bootstrap failures."""


class ConfigError(MeshbootError):
    """Raised when the bootstrap config cannot be loaded or validated."""


class UnresolvedPlaceholderError(ConfigError):
    """Raised when a caller-supplied value still holds a template placeholder."""

    def __init__(self, fields: Sequence[str]):
        self.fields = list(fields)
        super().__init__(
            "Unresolved placeholders in config: " + ", ".join(self.fields)
        )


class CommandError(MeshbootError):
    def __init__(self, argv: Sequence[str], returncode: int, stderr: str = ""):
        self.argv = list(argv)
        self.returncode = returncode
        self.stderr = stderr
        msg = f"Command failed (rc={returncode}): {' '.join(self.argv)}"
        if stderr.strip():
            msg += f"\n{stderr.strip()}"
        super().__init__(msg)


class DockerNotReadyError(MeshbootError):
    """Raised when the container runtime never answers within its poll bound."""


class DockerNetworkError(MeshbootError):
    """Raised when a Docker network cannot be created with fixed addressing."""


class InvalidPhaseTransition(MeshbootError):
    pass


class RunLockError(MeshbootError):
    """Raised when another bootstrap run holds the host lock."""


class DnsApiError(MeshbootError):
    """DNS provider call failed. Never escapes the DNS reconciler."""
