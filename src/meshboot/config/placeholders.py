# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

"""
Guard against running a template whose values were never substituted.

The orchestrator rewrites ``*_PLACEHOLDER`` literals before a run; any that
survive (or any ``${VAR}`` left behind by an unset environment variable) must
stop the bootstrap before the first side effect.
"""

from __future__ import annotations

import re
from typing import Any, Iterator, List, Tuple

from meshboot.errors import UnresolvedPlaceholderError
from .models import BootstrapConfig

KNOWN_PLACEHOLDERS = (
    "TAILSCALE_AUTH_KEY_PLACEHOLDER",
    "SERVICE_NAME_PLACEHOLDER",
    "JORDAN_PASSWORD_PLACEHOLDER",
    "ACTIONS_USER_PASSWORD_PLACEHOLDER",
    "CLOUDFLARE_EMAIL_PLACEHOLDER",
    "CLOUDFLARE_API_TOKEN_PLACEHOLDER",
    "DOMAIN_NAME_PLACEHOLDER",
)

_PLACEHOLDER_RE = re.compile(r"[A-Z][A-Z0-9_]*_PLACEHOLDER")
_UNEXPANDED_RE = re.compile(r"\$\{[A-Za-z_][A-Za-z0-9_]*\}")


def is_placeholder(value: str) -> bool:
    if any(p in value for p in KNOWN_PLACEHOLDERS):
        return True
    return bool(_PLACEHOLDER_RE.search(value) or _UNEXPANDED_RE.search(value))


def _walk(node: Any, path: str) -> Iterator[Tuple[str, str]]:
    if isinstance(node, dict):
        for key, value in node.items():
            yield from _walk(value, f"{path}.{key}" if path else str(key))
    elif isinstance(node, list):
        for i, value in enumerate(node):
            yield from _walk(value, f"{path}[{i}]")
    elif isinstance(node, str):
        yield path, node


def find_placeholders(cfg: BootstrapConfig) -> List[str]:
    data = cfg.model_dump(mode="json")
    return [path for path, value in _walk(data, "") if is_placeholder(value)]


def ensure_no_placeholders(cfg: BootstrapConfig) -> None:
    found = find_placeholders(cfg)
    if found:
        raise UnresolvedPlaceholderError(found)
