import threading
from contextlib import contextmanager

from deskfleet.errors import ContainerRuntimeError, CommandError
from deskfleet.models import BasePorts, FleetSpec, ProjectLayout, RuntimeObservation
from deskfleet.services.desired_state import DesiredStateBuilder
from deskfleet.services.verification import VerificationService


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, message, *args, **_kwargs):
        self.warnings.append(message % args)


class FakeRuntime:
    def __init__(self, reachable=True):
        self.reachable = reachable
        self.mutations = []

    def ping(self):
        return self.reachable

    def up(self, services=()):
        self.mutations.append(("up", tuple(services)))

    def down(self, services=()):
        self.mutations.append(("down", tuple(services)))


class FakeLifecycle:
    def __init__(self, running, error=None):
        self.running = running
        self.error = error
        self.mutations = []

    def status(self, target=None):
        if self.error:
            raise self.error
        return [RuntimeObservation(name=name, running=True) for name in self.running]

    def up(self, target=None):
        self.mutations.append(("up", target))

    def down(self, target=None):
        self.mutations.append(("down", target))

    def restart(self, target=None):
        self.mutations.append(("restart", target))


class FakeProber:
    def __init__(self, closed=()):
        self.closed = set(closed)
        self.probed = []

    def is_open(self, port):
        self.probed.append(port)
        return port not in self.closed


class FakeFirewall:
    def __init__(self, active=True):
        self.active = active
        self.lock = threading.RLock()
        self.held_during_checks = []
        self.mutations = []

    @contextmanager
    def exclusive(self):
        with self.lock:
            yield

    def sync(self, desired):
        self.mutations.append(("sync", desired.firewall_rules))

    def is_active(self):
        # RLock has no public owner check; a non-blocking acquire from another thread fails while held
        acquired = []

        def try_acquire():
            if self.lock.acquire(blocking=False):
                acquired.append(True)
                self.lock.release()

        other = threading.Thread(target=try_acquire)
        other.start()
        other.join()
        self.held_during_checks.append(not acquired)
        return self.active


def desired(size=3):
    builder = DesiredStateBuilder(ProjectLayout("/opt/deskfleet"), admin_ports=(22,))
    spec = FleetSpec(size=size, base_ports=BasePorts(desktop=54040, shell=52520))
    return builder.build(spec, {index: {} for index in range(1, size + 1)})


def make_service(running, closed=(), ddns=True, firewall_active=True, runtime_up=True, lifecycle=None):
    firewall = FakeFirewall(firewall_active)
    service = VerificationService(
        runtime=FakeRuntime(runtime_up),
        lifecycle=lifecycle or FakeLifecycle(running),
        prober=FakeProber(closed),
        firewall=firewall,
        ddns_active=lambda: ddns,
        logger=DummyLogger(),
    )
    return service, firewall


def test_all_checks_pass():
    service, firewall = make_service(["worker1", "worker2", "worker3"])

    report = service.verify(desired())

    assert report.passed is True
    assert report.workers_running == 3
    assert report.ports_open == report.ports_expected
    assert len(report.ports_expected) == 6
    assert firewall.held_during_checks == [True]


def test_two_of_three_running_fails_and_names_missing_worker():
    service, _ = make_service(["worker1", "worker3"])

    report = service.verify(desired())

    assert report.passed is False
    assert report.workers_running == 2
    assert report.workers_expected == 3
    assert report.missing_workers == ("worker2",)
    workers_check = [check for check in report.checks if check.name == "workers"][0]
    assert "worker2" in workers_check.detail


def test_closed_port_is_named_with_worker():
    service, _ = make_service(["worker1", "worker2", "worker3"], closed={52522})

    report = service.verify(desired())

    assert report.passed is False
    assert 52522 not in report.ports_open
    ports_check = [check for check in report.checks if check.name == "ports"][0]
    assert "worker2:52522" in ports_check.detail


def test_inactive_ddns_and_firewall_fail():
    service, _ = make_service(["worker1", "worker2", "worker3"], ddns=False, firewall_active=False)

    report = service.verify(desired())

    assert {check.name for check in report.failures} == {"ddns", "firewall"}


def test_runtime_down_reports_zero_running():
    service, _ = make_service(["worker1"], runtime_up=False)

    report = service.verify(desired())

    assert report.runtime_up is False
    assert report.workers_running == 0
    assert report.missing_workers == ("worker1", "worker2", "worker3")


def test_status_failure_becomes_failed_check():
    error = ContainerRuntimeError("ps", None, CommandError("boom"))
    service, _ = make_service([], lifecycle=FakeLifecycle([], error=error))

    report = service.verify(desired())

    assert "status" in {check.name for check in report.failures}
    assert report.passed is False


def test_empty_fleet_passes_when_host_is_healthy():
    service, _ = make_service([])

    report = service.verify(desired(0))

    assert report.passed is True
    assert report.workers_expected == 0


def test_verification_never_mutates_the_host():
    runtime = FakeRuntime()
    lifecycle = FakeLifecycle(["worker1"])
    firewall = FakeFirewall(active=False)
    service = VerificationService(
        runtime=runtime,
        lifecycle=lifecycle,
        prober=FakeProber(closed={54042}),
        firewall=firewall,
        ddns_active=lambda: False,
        logger=DummyLogger(),
    )

    report = service.verify(desired())

    assert report.passed is False
    assert runtime.mutations == []
    assert lifecycle.mutations == []
    assert firewall.mutations == []
