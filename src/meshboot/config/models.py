# Copyright 2026 Kezie Iwueke
# SPDX-License-Identifier: Apache-2.0

# src/meshboot/config/models.py

from __future__ import annotations

from ipaddress import IPv4Address, IPv4Network
from itertools import combinations
from pathlib import Path
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator


class NetworkSpec(BaseModel):
    """A Docker bridge network with fixed addressing."""

    name: str
    subnet: IPv4Network
    gateway: IPv4Address
    ip_range: IPv4Network

    @model_validator(mode="after")
    def _addresses_inside_subnet(self) -> "NetworkSpec":
        if self.gateway not in self.subnet:
            raise ValueError(f"{self.name}: gateway {self.gateway} not in {self.subnet}")
        if not self.ip_range.subnet_of(self.subnet):
            raise ValueError(f"{self.name}: ip_range {self.ip_range} not in {self.subnet}")
        return self

    @property
    def env_prefix(self) -> str:
        """fks-network -> FKS, my-app-network -> MY_APP"""
        base = self.name[: -len("-network")] if self.name.endswith("-network") else self.name
        return base.upper().replace("-", "_")


DEFAULT_NETWORKS = [
    NetworkSpec(name="fks-network", subnet="172.20.0.0/16", gateway="172.20.0.1", ip_range="172.20.1.0/24"),
    NetworkSpec(name="ats-network", subnet="172.21.0.0/16", gateway="172.21.0.1", ip_range="172.21.1.0/24"),
    NetworkSpec(name="nginx-network", subnet="172.22.0.0/16", gateway="172.22.0.1", ip_range="172.22.1.0/24"),
]


class NetworkSettings(BaseModel):
    networks: List[NetworkSpec] = Field(default_factory=lambda: [n.model_copy() for n in DEFAULT_NETWORKS])
    # Subnets outside our control (e.g. the default docker0 bridge) that are
    # still advertised and listed in the description file.
    extra_subnets: List[IPv4Network] = Field(default_factory=list)
    description_file: Path = Path("/opt/docker-networks.conf")

    @model_validator(mode="after")
    def _disjoint(self) -> "NetworkSettings":
        names = [n.name for n in self.networks]
        if len(set(names)) != len(names):
            raise ValueError(f"duplicate network names: {names}")
        for a, b in combinations(self.networks, 2):
            if a.subnet.overlaps(b.subnet):
                raise ValueError(f"subnets overlap: {a.name} {a.subnet} / {b.name} {b.subnet}")
        return self


class ServiceAccount(BaseModel):
    username: str
    groups: List[str] = Field(default_factory=list)
    authorized_keys: List[str] = Field(default_factory=list)
    password: Optional[str] = None
    shell: str = "/bin/bash"


MESH_STRATEGIES = ("full-with-reset", "full", "basic-with-reset", "basic", "minimal")


class MeshSettings(BaseModel):
    auth_key: str = ""
    hostname: Optional[str] = None          # defaults to BootstrapConfig.hostname
    accept_routes: bool = True
    extra_routes: List[IPv4Network] = Field(default_factory=list)
    strategies: List[str] = Field(default_factory=lambda: ["full", "basic"])
    attempts_per_strategy: int = Field(1, ge=1)
    up_timeout: int = 300
    strategy_delay: float = 10
    settle_delay: float = 10
    secondary_timeout: int = 60
    address_poll_attempts: int = Field(30, ge=1)
    address_poll_interval: float = 10
    daemon_poll_attempts: int = Field(15, ge=1)
    daemon_poll_interval: float = 3
    interface: str = "tailscale0"
    service: str = "tailscaled"
    binary: str = "tailscale"

    @field_validator("strategies")
    @classmethod
    def _known_strategies(cls, v: List[str]) -> List[str]:
        unknown = [s for s in v if s not in MESH_STRATEGIES]
        if unknown:
            raise ValueError(f"unknown mesh strategies {unknown}; valid: {', '.join(MESH_STRATEGIES)}")
        if not v:
            raise ValueError("at least one mesh strategy is required")
        return v


class DnsSettings(BaseModel):
    email: str = ""
    api_token: str = ""
    fqdn: str = ""
    ttl: int = 120
    extra_records: List[str] = Field(default_factory=list)
    # mesh hostnames whose <host>.<zone> record must match the peer's mesh IPv4
    peer_records: List[str] = Field(default_factory=list)
    peer_fallback: Dict[str, str] = Field(default_factory=dict)
    api_base: str = "https://api.cloudflare.com/client/v4"
    timeout: float = 30
    rate_limit_delay: float = 1

    @property
    def configured(self) -> bool:
        return bool(self.email and self.api_token and self.fqdn)


class PackageSettings(BaseModel):
    manager: Literal["pacman", "apt"] = "pacman"
    base: List[str] = Field(
        default_factory=lambda: [
            "curl", "wget", "git", "openssh", "docker", "docker-compose", "tailscale", "base-devel",
        ]
    )
    phase2: List[str] = Field(default_factory=lambda: ["iptables-nft", "ufw", "jq"])
    conflicts: List[str] = Field(default_factory=lambda: ["iptables"])
    attempts: int = Field(3, ge=1)
    retry_delay: float = 10
    install_timeout: int = 300
    single_timeout: int = 120


class DockerSettings(BaseModel):
    service: str = "docker"
    socket_unit: str = "docker.socket"
    ready_attempts: int = Field(10, ge=1)
    ready_interval: float = 5


class FirewallSettings(BaseModel):
    allow: List[str] = Field(default_factory=lambda: ["ssh"])


class SshSettings(BaseModel):
    # Left untouched unless explicitly enabled.
    password_authentication: bool = False
    service: str = "sshd"
    config_path: Path = Path("/etc/ssh/sshd_config")


class PathSettings(BaseModel):
    state_dir: Path = Path("/var/lib/meshboot")
    status_marker: Path = Path("/tmp/meshboot-status")
    mesh_address_file: Path = Path("/var/lib/meshboot/mesh-address")
    credential_file: Path = Path("/etc/meshboot/mesh-auth-key")
    persisted_config: Path = Path("/etc/meshboot/bootstrap.yaml")
    unit_dir: Path = Path("/etc/systemd/system")
    unit_name: str = "meshboot-phase2.service"
    lock_file: Path = Path("/run/meshboot.lock")


class LoggingSettings(BaseModel):
    dir: Optional[Path] = None
    verbose: bool = False


class BootstrapConfig(BaseModel):
    hostname: str
    accounts: List[ServiceAccount] = Field(default_factory=list)
    networks: NetworkSettings = Field(default_factory=NetworkSettings)
    mesh: MeshSettings = Field(default_factory=MeshSettings)
    dns: Optional[DnsSettings] = None
    packages: PackageSettings = Field(default_factory=PackageSettings)
    docker: DockerSettings = Field(default_factory=DockerSettings)
    firewall: FirewallSettings = Field(default_factory=FirewallSettings)
    ssh: SshSettings = Field(default_factory=SshSettings)
    paths: PathSettings = Field(default_factory=PathSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @property
    def mesh_hostname(self) -> str:
        return self.mesh.hostname or self.hostname

    def advertised_routes(self) -> List[str]:
        """Extra routes first, then every managed subnet, without duplicates."""
        routes: List[str] = []
        for net in [*self.mesh.extra_routes, *self.networks.extra_subnets, *(n.subnet for n in self.networks.networks)]:
            if str(net) not in routes:
                routes.append(str(net))
        return routes
