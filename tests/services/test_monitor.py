import threading

from rich.console import Console

from deskfleet.errors import ContainerRuntimeError, CommandError, ExternalServiceError
from deskfleet.models import BasePorts, FleetSpec, MonitorSnapshot, ProjectLayout, RuntimeObservation
from deskfleet.services.desired_state import DesiredStateBuilder
from deskfleet.services.monitor import MonitorService, render_snapshot


class DummyLogger:
    def __init__(self):
        self.exceptions = []

    def exception(self, message, *_args, **_kwargs):
        self.exceptions.append(message)


class FakeLifecycle:
    def __init__(self, observations, error=None):
        self.observations = observations
        self.error = error
        builder = DesiredStateBuilder(ProjectLayout("/opt/deskfleet"), admin_ports=(22,))
        spec = FleetSpec(size=2, base_ports=BasePorts(desktop=54040, shell=52520))
        self._desired = builder.build(spec, {1: {}, 2: {}})

    def status(self, target=None):
        if self.error:
            raise self.error
        return self.observations

    def desired_state(self):
        return self._desired


class FakeProber:
    def is_open(self, port):
        return port != 52521


class FakeEventLog:
    def last(self):
        return {"timestamp": "2024-05-01T12:00:00+00:00", "action": "unchanged", "address": "203.0.113.7"}


def make_monitor(lifecycle, discover=lambda: "203.0.113.7"):
    return MonitorService(
        lifecycle=lifecycle,
        prober=FakeProber(),
        event_log=FakeEventLog(),
        logger=DummyLogger(),
        discover=discover,
    )


def test_snapshot_probes_running_workers_only():
    lifecycle = FakeLifecycle(
        [RuntimeObservation(name="worker1", running=True), RuntimeObservation(name="worker2", running=False)]
    )

    snapshot = make_monitor(lifecycle).snapshot()

    assert snapshot.public_address == "203.0.113.7"
    assert snapshot.ports == (("worker1", 54041, True), ("worker1", 52521, False))
    assert snapshot.last_ddns_event["action"] == "unchanged"
    assert snapshot.errors == ()


def test_snapshot_collects_errors_instead_of_raising():
    error = ContainerRuntimeError("ps", None, CommandError("docker down"))

    def failing_discover():
        raise ExternalServiceError("address discovery", "discover", "offline")

    snapshot = make_monitor(FakeLifecycle([], error=error), discover=failing_discover).snapshot()

    assert snapshot.observations == ()
    assert snapshot.public_address is None
    assert len(snapshot.errors) == 2


def test_watch_continues_after_render_errors():
    monitor = make_monitor(FakeLifecycle([]))
    rendered = []

    def render(snapshot):
        rendered.append(snapshot)
        if len(rendered) == 1:
            raise RuntimeError("terminal gone")

    count = monitor.watch(render, interval=0, iterations=3)

    assert count == 3
    assert len(rendered) == 3
    assert monitor.logger.exceptions == ["Monitor cycle failed"]


def test_watch_stops_on_event():
    stop_event = threading.Event()
    stop_event.set()

    count = make_monitor(FakeLifecycle([])).watch(lambda _snapshot: None, stop_event=stop_event)

    assert count == 0


def test_render_snapshot_draws_tables():
    console = Console(record=True, width=120)
    snapshot = MonitorSnapshot(
        taken_at="2024-05-01 12:00:00",
        public_address="203.0.113.7",
        observations=(RuntimeObservation(name="worker1", running=True, ports=frozenset({54041}), cpu="2%"),),
        ports=(("worker1", 54041, True),),
        errors=("status: something odd",),
    )

    render_snapshot(console, snapshot, "f.example.com")

    text = console.export_text()
    assert "worker1" in text
    assert "203.0.113.7" in text
    assert "f.example.com" in text
    assert "something odd" in text
