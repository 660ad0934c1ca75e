import json
import subprocess
import time
from pathlib import Path
from types import SimpleNamespace

import pytest

from meshboot.config.models import BootstrapConfig, PathSettings
from meshboot.errors import CommandError
from meshboot.execution.runner import CommandRunner


# ----------------- Fake command runner -----------------

class FakeRunner(CommandRunner):
    """
    Scripted stand-in for CommandRunner.

    Rules are matched newest first on an argv prefix. A rule answers with a
    fixed (rc, stdout) or with a handler(argv) returning rc or (rc, stdout).
    ``times`` limits how often a rule fires before it falls through.
    """

    def __init__(self, default_rc=0):
        super().__init__()
        self.default_rc = default_rc
        self.calls = []
        self.inputs = []
        self._rules = []

    def on(self, *prefix, rc=0, stdout="", handler=None, times=None):
        self._rules.insert(0, {"prefix": list(prefix), "rc": rc, "stdout": stdout, "handler": handler, "times": times})
        return self

    def with_label(self, label):
        return self

    def _respond(self, argv):
        for rule in self._rules:
            if argv[: len(rule["prefix"])] != rule["prefix"]:
                continue
            if rule["times"] is not None:
                if rule["times"] <= 0:
                    continue
                rule["times"] -= 1
            if rule["handler"] is not None:
                out = rule["handler"](argv)
                return out if isinstance(out, tuple) else (out, "")
            return rule["rc"], rule["stdout"]
        return self.default_rc, ""

    def run(self, cmd, *, check=False, timeout=None, input=None, env=None, secrets=()):
        argv = [str(c) for c in cmd]
        self.calls.append(argv)
        if input is not None:
            self.inputs.append((argv, input))
        rc, out = self._respond(argv)
        if check and rc != 0:
            raise CommandError(argv, rc, "scripted failure")
        return subprocess.CompletedProcess(argv, rc, out, "")

    def called(self, *prefix):
        return [c for c in self.calls if c[: len(prefix)] == list(prefix)]


# ----------------- In-memory iptables -----------------

class FakeIptables:
    """Just enough of iptables for -L/-N/-C/-I/-A."""

    BUILTIN = {
        "nat": ["PREROUTING", "INPUT", "OUTPUT", "POSTROUTING"],
        "filter": ["INPUT", "FORWARD", "OUTPUT"],
    }

    def __init__(self):
        self.chains = {(t, c): [] for t, names in self.BUILTIN.items() for c in names}
        self.mutations = 0

    def rules(self, table, chain):
        return self.chains.get((table, chain), [])

    def __call__(self, argv):
        args = argv[1:]
        table = "filter"
        if args[:1] == ["-t"]:
            table, args = args[1], args[2:]
        if args[:2] == ["-n", "-L"]:
            return 0 if (table, args[2]) in self.chains else 1
        op, chain, spec = args[0], args[1], tuple(args[2:])
        if op == "-N":
            if (table, chain) in self.chains:
                return 1
            self.chains[(table, chain)] = []
            self.mutations += 1
            return 0
        if (table, chain) not in self.chains:
            return 1
        rules = self.chains[(table, chain)]
        if op == "-C":
            return 0 if spec in rules else 1
        if op == "-I":
            rules.insert(0, spec)
        elif op == "-A":
            rules.append(spec)
        else:
            return 2
        self.mutations += 1
        return 0


class FakeDockerNetworks:
    """docker network inspect/rm/create against an in-memory set."""

    def __init__(self):
        self.networks = set()

    def __call__(self, argv):
        verb, name = argv[2], argv[-1]
        if verb == "inspect":
            return 0 if name in self.networks else 1
        if verb == "rm":
            self.networks.discard(name)
            return 0
        if verb == "create":
            self.networks.add(name)
            return 0
        return 1


def tailscale_status(state="Running"):
    return json.dumps({"BackendState": state, "Self": {"HostName": "ats"}})


# ----------------- Fixtures -----------------

@pytest.fixture(autouse=True)
def sleeps(monkeypatch):
    """No test ever really sleeps; the requested delays are recorded."""
    recorded = []
    monkeypatch.setattr(time, "sleep", lambda s: recorded.append(s))
    return recorded


@pytest.fixture
def runner():
    return FakeRunner()


@pytest.fixture
def iptables_model():
    return FakeIptables()


@pytest.fixture
def status_json():
    return tailscale_status


@pytest.fixture
def paths(tmp_path: Path) -> PathSettings:
    return PathSettings(
        state_dir=tmp_path / "state",
        status_marker=tmp_path / "meshboot-status",
        mesh_address_file=tmp_path / "state" / "mesh-address",
        credential_file=tmp_path / "etc" / "mesh-auth-key",
        persisted_config=tmp_path / "etc" / "bootstrap.yaml",
        unit_dir=tmp_path / "systemd",
        lock_file=tmp_path / "meshboot.lock",
    )


@pytest.fixture
def cfg(paths, tmp_path: Path) -> BootstrapConfig:
    return BootstrapConfig.model_validate(
        {
            "hostname": "ats",
            "accounts": [{"username": "jordan", "groups": ["wheel", "docker"], "password": "s3cret"}],
            "networks": {"description_file": str(tmp_path / "docker-networks.conf")},
            "mesh": {"auth_key": "tskey-auth-123", "address_poll_attempts": 3, "daemon_poll_attempts": 2},
            "dns": {"email": "ops@example.com", "api_token": "cf-token", "fqdn": "ats.example.com"},
            "ssh": {"config_path": str(tmp_path / "sshd_config")},
            "paths": paths.model_dump(),
        }
    )


@pytest.fixture
def host(runner, iptables_model):
    """A healthy host: every command succeeds and the mesh hands out an address."""
    docker = FakeDockerNetworks()
    runner.on("iptables", handler=iptables_model)
    runner.on("docker", "network", handler=docker)
    runner.on("tailscale", "status", "--json", stdout=tailscale_status())
    runner.on("tailscale", "ip", "-4", stdout="100.64.0.7\n")
    return SimpleNamespace(runner=runner, iptables=iptables_model, docker=docker)
