from meshboot.config.models import MeshSettings
from meshboot.mesh.connector import MeshConnector, MeshState
from meshboot.mesh.tailscale import TailscaleCli
from meshboot.observers.dispatcher import EventBus
from meshboot.observers.events import MeshTransition, StepEvent

ROUTES = ["172.17.0.0/16", "172.20.0.0/16", "172.21.0.0/16", "172.22.0.0/16"]


class Capture:
    def __init__(self): self.events = []
    def notify(self, ev): self.events.append(ev)


def _connector(runner, bus=None, **settings):
    settings.setdefault("address_poll_attempts", 3)
    return MeshConnector(TailscaleCli(runner), MeshSettings(**settings), routes=ROUTES, bus=bus)


def _ups(runner):
    return runner.called("tailscale", "up")


def test_full_strategy_connects_with_routes(runner, status_json):
    runner.on("tailscale", "status", "--json", stdout=status_json())
    runner.on("tailscale", "ip", "-4", stdout="100.64.0.7\n")

    result = _connector(runner).run(auth_key="tskey-1", hostname="ats")

    assert result.state is MeshState.CONNECTED
    assert result.with_routes and result.strategy == "full"
    assert result.address == "100.64.0.7"
    assert not result.secondary_attempted
    assert _ups(runner) == [[
        "tailscale", "up", "--authkey=tskey-1", "--hostname=ats", "--accept-routes",
        "--advertise-routes=" + ",".join(ROUTES),
    ]]


def test_full_fails_basic_succeeds_with_one_secondary_attempt(runner, sleeps, status_json):
    runner.on("tailscale", "up", rc=1, times=1)
    runner.on("tailscale", "status", "--json", stdout=status_json())
    runner.on("tailscale", "ip", "-4", stdout="100.64.0.7\n")

    result = _connector(runner, strategy_delay=10, settle_delay=7).run(auth_key="k", hostname="ats")

    assert result.state is MeshState.CONNECTED
    assert result.strategy == "basic"
    assert result.with_routes is False
    assert result.secondary_attempted and result.secondary_ok
    assert len(runner.called("tailscale", "set", "--advertise-routes=" + ",".join(ROUTES))) == 1
    assert not any(a.startswith("--advertise-routes") for a in _ups(runner)[1])
    assert sleeps[:2] == [10, 7]


def test_secondary_failure_does_not_change_state(runner):
    runner.on("tailscale", "up", rc=1, times=1)
    runner.on("tailscale", "set", rc=1)

    result = _connector(runner).connect(auth_key="k", hostname="ats")

    assert result.state is MeshState.CONNECTED
    assert result.secondary_attempted and result.secondary_ok is False
    assert len(runner.called("tailscale", "set")) == 1


def test_all_strategies_fail_is_terminal_not_raised(runner):
    runner.on("tailscale", "up", rc=124)
    cap = Capture()
    bus = EventBus([cap], run_id="r1", phase="phase2")

    result = _connector(runner, bus=bus).run(auth_key="k", hostname="ats")

    assert result.state is MeshState.FAILED
    assert result.address == "pending"
    assert not runner.called("tailscale", "ip")
    targets = [e.target for e in cap.events if isinstance(e, MeshTransition)]
    assert targets == ["connecting_full", "connecting_basic", "failed"]


def test_retry_repeats_strategy_before_fallback(runner):
    runner.on("tailscale", "up", rc=1, times=2)

    result = _connector(runner, attempts_per_strategy=2).connect(auth_key="k", hostname="ats")

    assert result.strategy == "basic"
    assert result.attempts == 3
    ups = _ups(runner)
    assert any(a.startswith("--advertise-routes") for a in ups[0])
    assert any(a.startswith("--advertise-routes") for a in ups[1])


def test_address_poll_exhaustion_yields_pending(runner, sleeps, status_json):
    runner.on("tailscale", "status", "--json", stdout=status_json("NeedsLogin"))

    result = _connector(runner, address_poll_attempts=4, address_poll_interval=10).run(
        auth_key="k", hostname="ats"
    )

    assert result.connected and not result.resolved
    assert result.address == "pending"
    assert sleeps == [10, 10, 10]


def test_reset_and_minimal_strategies(runner):
    runner.on("tailscale", "up", rc=1, times=2)

    result = _connector(runner, strategies=["full-with-reset", "basic-with-reset", "minimal"]).connect(
        auth_key="k", hostname="ats"
    )

    ups = _ups(runner)
    assert "--reset" in ups[0] and "--reset" in ups[1]
    assert ups[2] == ["tailscale", "up", "--authkey=k"]
    assert result.strategy == "minimal"
    assert not result.secondary_attempted



def test_retries_are_steps_not_transitions(runner):
    runner.on("tailscale", "up", rc=1, times=2)
    cap = Capture()
    bus = EventBus([cap], run_id="r1", phase="phase2")

    _connector(runner, bus=bus, attempts_per_strategy=2).connect(auth_key="k", hostname="ats")

    transitions = [(e.source, e.target) for e in cap.events if isinstance(e, MeshTransition)]
    assert transitions == [
        ("disconnected", "connecting_full"),
        ("connecting_full", "connecting_basic"),
        ("connecting_basic", "connected"),
    ]
    steps = [e.message for e in cap.events if isinstance(e, StepEvent)]
    assert steps == ["trying strategy 'full' (attempt 2)"]
