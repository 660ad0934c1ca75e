# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/network/docker.py

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import List, Sequence

from meshboot.bootstrap.template_renderer import TemplateRenderer
from meshboot.config.models import NetworkSpec
from meshboot.errors import DockerNetworkError, DockerNotReadyError
from meshboot.execution.runner import CommandRunner
from meshboot.network.iptables import Presence
from meshboot.utils.retry import wait_until

log = logging.getLogger("meshboot")


class DockerNetworks:
    """Container runtime readiness and fixed-address bridge networks."""

    def __init__(self, runner: CommandRunner, *, binary: str = "docker"):
        self.runner = runner.with_label("docker")
        self.binary = binary

    # ------------------ runtime readiness ------------------

    def is_ready(self) -> bool:
        return self.runner.ok([self.binary, "info"], timeout=30)

    def wait_ready(self, *, attempts: int, interval: float) -> None:
        """Bounded poll of ``docker info``; exhaustion is fatal for the caller."""

        def _waiting(attempt: int) -> None:
            log.info("Attempt %d/%d: waiting for Docker...", attempt, attempts)

        if not wait_until(self.is_ready, attempts=attempts, interval=interval, on_wait=_waiting):
            raise DockerNotReadyError(
                f"Docker daemon not ready after {attempts} attempts ({interval}s apart)"
            )

    # ------------------ networks ------------------

    def presence(self, name: str) -> Presence:
        ok = self.runner.ok([self.binary, "network", "inspect", name])
        return Presence.PRESENT if ok else Presence.ABSENT

    def create(self, spec: NetworkSpec) -> bool:
        return self.runner.ok(
            [
                self.binary, "network", "create",
                "--driver", "bridge",
                f"--subnet={spec.subnet}",
                f"--ip-range={spec.ip_range}",
                f"--gateway={spec.gateway}",
                spec.name,
            ]
        )

    def remove(self, name: str) -> bool:
        return self.runner.ok([self.binary, "network", "rm", name])

    def ensure(self, specs: Sequence[NetworkSpec]) -> List[str]:
        """Create absent networks. Returns the names that could not be created."""
        failed: List[str] = []
        for spec in specs:
            if self.presence(spec.name) is Presence.PRESENT:
                log.debug("network %s already present", spec.name)
                continue
            if not self.create(spec):
                log.warning("could not create network %s", spec.name)
                failed.append(spec.name)
        return failed

    def recreate(self, specs: Sequence[NetworkSpec]) -> None:
        """
        Tear down and recreate each network so addressing always matches the
        declared CIDRs. Removal is best effort; creation must succeed.
        """
        for spec in specs:
            if self.presence(spec.name) is Presence.PRESENT and not self.remove(spec.name):
                log.warning("could not remove network %s (containers attached?)", spec.name)
        for spec in specs:
            if self.presence(spec.name) is Presence.PRESENT:
                continue
            if not self.create(spec):
                raise DockerNetworkError(
                    f"Failed to create network {spec.name} ({spec.subnet}, gw {spec.gateway})"
                )


def render_description(specs: Sequence[NetworkSpec], extra_subnets: Sequence = ()) -> str:
    all_subnets = [str(s) for s in extra_subnets] + [str(n.subnet) for n in specs]
    return TemplateRenderer().render(
        "docker-networks.conf.j2",
        {"networks": list(specs), "all_subnets": all_subnets},
    )


def write_description(specs: Sequence[NetworkSpec], path: Path, extra_subnets: Sequence = ()) -> Path:
    """Write the network-description file read by service deployment tooling."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(render_description(specs, extra_subnets), encoding="utf-8")
    os.chmod(path, 0o644)
    return path
