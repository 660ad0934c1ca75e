import json
import logging

from meshboot.observers.dispatcher import EventBus
from meshboot.observers.events import MeshTransition, StepEvent, StepStatus, now_ts
from meshboot.observers.jsonfile import JsonFileObserver
from meshboot.observers.logger import LoggerObserver


class Records(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)


def _logger():
    lg = logging.getLogger("meshboot.test-observers")
    lg.setLevel(logging.DEBUG)
    lg.handlers.clear()
    handler = Records()
    lg.addHandler(handler)
    return lg, handler.records


def test_step_events_render_as_tagged_lines():
    lg, records = _logger()
    bus = EventBus([LoggerObserver(lg)], run_id="r1", phase="phase2")

    bus.step("docker", StepStatus.OK, "ready")
    bus.step("dns", StepStatus.WARN, "not updated")
    bus.step("guard", StepStatus.FAIL, "placeholders")

    assert [r.getMessage() for r in records] == [
        "[phase2] [ OK ] docker: ready",
        "[phase2] [WARN] dns: not updated",
        "[phase2] [FAIL] guard: placeholders",
    ]
    assert [r.levelno for r in records] == [logging.INFO, logging.WARNING, logging.ERROR]


def test_json_observer_appends_lines(tmp_path):
    path = tmp_path / "trace" / "run.jsonl"
    bus = EventBus([JsonFileObserver(path)], run_id="r1", phase="phase2")

    bus.step("mesh", StepStatus.SKIP, "dry-run")
    bus.emit(MeshTransition(ts=now_ts(), run_id="r1", phase="phase2", source="disconnected", target="connecting_full"))

    lines = [json.loads(ln) for ln in path.read_text().splitlines()]
    assert lines[0]["type"] == "StepEvent"
    assert lines[0]["status"] == "SKIP"
    assert lines[1]["target"] == "connecting_full"
    assert lines[1]["strategy"] is None


def test_broken_observer_does_not_break_the_run():
    class Broken:
        def notify(self, ev):
            raise RuntimeError("disk full")

    seen = []

    class Ok:
        def notify(self, ev):
            seen.append(ev)

    bus = EventBus([Broken(), Ok()], phase="phase1")
    bus.step("packages", StepStatus.START, "installing")
    assert len(seen) == 1 and isinstance(seen[0], StepEvent)
