# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/mesh/tailscale.py

from __future__ import annotations

import ipaddress
import json
import logging
from typing import Optional, Sequence

from meshboot.execution.runner import CommandRunner

log = logging.getLogger("meshboot")


class TailscaleCli:
    """The mesh VPN command line. Every call is bounded and reports a bool."""

    def __init__(self, runner: CommandRunner, *, binary: str = "tailscale"):
        self.runner = runner.with_label("tailscale")
        self.binary = binary

    def up(
        self,
        *,
        auth_key: str,
        hostname: Optional[str] = None,
        accept_routes: bool = False,
        advertise_routes: Sequence[str] = (),
        reset: bool = False,
        timeout: float = 300,
    ) -> bool:
        argv = [self.binary, "up", f"--authkey={auth_key}"]
        if hostname:
            argv.append(f"--hostname={hostname}")
        if accept_routes:
            argv.append("--accept-routes")
        if advertise_routes:
            argv.append(f"--advertise-routes={','.join(advertise_routes)}")
        if reset:
            argv.append("--reset")
        return self.runner.ok(argv, timeout=timeout, secrets=[auth_key])

    def advertise(self, routes: Sequence[str], *, timeout: float = 60) -> bool:
        """Add route advertisement to an already-running node."""
        return self.runner.ok(
            [self.binary, "set", f"--advertise-routes={','.join(routes)}"], timeout=timeout
        )

    def status_json(self) -> Optional[dict]:
        result = self.runner.run([self.binary, "status", "--json"], timeout=30)
        if result.returncode != 0:
            return None
        try:
            return json.loads(result.stdout or "")
        except json.JSONDecodeError:
            log.debug("unparseable tailscale status output")
            return None

    def daemon_responding(self) -> bool:
        """True once tailscaled answers on its control socket."""
        return self.status_json() is not None

    def logged_in(self) -> bool:
        status = self.status_json()
        return isinstance(status, dict) and status.get("BackendState") == "Running"

    def ipv4(self) -> Optional[str]:
        result = self.runner.run([self.binary, "ip", "-4"], timeout=30)
        if result.returncode != 0:
            return None
        for line in (result.stdout or "").splitlines():
            line = line.strip()
            try:
                return str(ipaddress.IPv4Address(line))
            except ValueError:
                continue
        return None

    def peer_ipv4(self, hostname: str) -> Optional[str]:
        """First IPv4 of the peer whose HostName matches, if it is in the netmap."""
        status = self.status_json() or {}
        peers = status.get("Peer") if isinstance(status, dict) else None
        if not isinstance(peers, dict):
            return None
        for peer in peers.values():
            if not isinstance(peer, dict) or peer.get("HostName") != hostname:
                continue
            for addr in peer.get("TailscaleIPs") or []:
                try:
                    return str(ipaddress.IPv4Address(addr))
                except ValueError:
                    continue
        return None

    def self_summary(self) -> str:
        result = self.runner.run([self.binary, "status", "--self", "--peers=false"], timeout=30)
        return (result.stdout or result.stderr or "").strip()
