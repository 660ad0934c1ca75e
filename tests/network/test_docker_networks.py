import stat
from ipaddress import IPv4Network

import pytest

from meshboot.config.models import DEFAULT_NETWORKS
from meshboot.errors import DockerNetworkError, DockerNotReadyError
from meshboot.network.docker import DockerNetworks, render_description, write_description


def test_wait_ready_polls_until_docker_answers(runner, sleeps):
    runner.on("docker", "info", rc=1, times=2)
    DockerNetworks(runner).wait_ready(attempts=5, interval=5)
    assert len(runner.called("docker", "info")) == 3
    assert sleeps == [5, 5]


def test_wait_ready_exhaustion_is_fatal(runner):
    runner.on("docker", "info", rc=1)
    with pytest.raises(DockerNotReadyError):
        DockerNetworks(runner).wait_ready(attempts=3, interval=1)
    assert len(runner.called("docker", "info")) == 3


def test_ensure_creates_only_absent_networks(runner):
    runner.on("docker", "network", "inspect", rc=1)
    runner.on("docker", "network", "inspect", "fks-network", rc=0)

    failed = DockerNetworks(runner).ensure(DEFAULT_NETWORKS)

    assert failed == []
    created = runner.called("docker", "network", "create")
    assert [c[-1] for c in created] == ["ats-network", "nginx-network"]
    assert created[0] == [
        "docker", "network", "create", "--driver", "bridge",
        "--subnet=172.21.0.0/16", "--ip-range=172.21.1.0/24", "--gateway=172.21.0.1",
        "ats-network",
    ]


def test_ensure_returns_failures_instead_of_raising(runner):
    runner.on("docker", "network", "inspect", rc=1)
    runner.on("docker", "network", "create", rc=1)
    assert DockerNetworks(runner).ensure(DEFAULT_NETWORKS[:2]) == ["fks-network", "ats-network"]


def test_recreate_removes_then_creates(runner):
    present = {n.name for n in DEFAULT_NETWORKS}

    def inspect(argv):
        return 0 if argv[-1] in present else 1

    def rm(argv):
        present.discard(argv[-1])
        return 0

    runner.on("docker", "network", "inspect", handler=inspect)
    runner.on("docker", "network", "rm", handler=rm)

    DockerNetworks(runner).recreate(DEFAULT_NETWORKS)

    assert len(runner.called("docker", "network", "rm")) == 3
    assert len(runner.called("docker", "network", "create")) == 3


def test_recreate_raises_when_create_fails(runner):
    runner.on("docker", "network", "inspect", rc=1)
    runner.on("docker", "network", "create", rc=1)
    with pytest.raises(DockerNetworkError, match="fks-network"):
        DockerNetworks(runner).recreate(DEFAULT_NETWORKS)


def test_description_lists_networks_and_all_subnets(tmp_path):
    text = render_description(DEFAULT_NETWORKS, [IPv4Network("172.17.0.0/16")])
    assert 'FKS_NETWORK_NAME="fks-network"' in text
    assert 'NGINX_NETWORK_SUBNET="172.22.0.0/16"' in text
    assert 'ALL_DOCKER_SUBNETS="172.17.0.0/16,172.20.0.0/16,172.21.0.0/16,172.22.0.0/16"' in text

    path = write_description(DEFAULT_NETWORKS, tmp_path / "opt" / "docker-networks.conf")
    assert stat.S_IMODE(path.stat().st_mode) == 0o644
    assert 'ATS_NETWORK_SUBNET="172.21.0.0/16"' in path.read_text()
