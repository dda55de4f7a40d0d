"""Post-convergence health checks."""

from typing import Callable, List

from deskfleet.errors import FleetError
from deskfleet.models import CheckResult, DesiredState, VerificationReport


class VerificationService:
    """Read-only checks aggregated into a VerificationReport.

    The firewall lock is held for the whole pass so a concurrent sync cannot
    reset the firewall between the individual checks.
    """

    def __init__(
        self,
        runtime,
        lifecycle,
        prober,
        firewall,
        ddns_active: Callable[[], bool],
        logger,
    ):
        self.runtime = runtime
        self.lifecycle = lifecycle
        self.prober = prober
        self.firewall = firewall
        self.ddns_active = ddns_active
        self.logger = logger

    def verify(self, desired: DesiredState) -> VerificationReport:
        with self.firewall.exclusive():
            checks: List[CheckResult] = []

            runtime_up = self.runtime.ping()
            checks.append(
                CheckResult(
                    "runtime",
                    runtime_up,
                    "container runtime reachable" if runtime_up else "container runtime is not reachable",
                )
            )

            running_names = set()
            if runtime_up:
                try:
                    running_names = {obs.name for obs in self.lifecycle.status() if obs.running}
                except FleetError as exc:
                    checks.append(CheckResult("status", False, f"could not read worker status: {exc}"))

            missing = tuple(name for name in desired.names if name not in running_names)
            expected = len(desired.workers)
            workers_detail = f"{len(running_names)}/{expected} workers running"
            if missing:
                workers_detail = f"{workers_detail}; not running: {', '.join(missing)}"
            checks.append(CheckResult("workers", len(running_names) >= expected and not missing, workers_detail))

            expected_ports = set()
            open_ports = set()
            closed = []
            for worker in desired.workers:
                for port in worker.ports:
                    expected_ports.add(port)
                    if self.prober.is_open(port):
                        open_ports.add(port)
                    else:
                        closed.append(f"{worker.name}:{port}")
            ports_detail = f"{len(open_ports)}/{len(expected_ports)} ports reachable"
            if closed:
                ports_detail = f"{ports_detail}; closed: {', '.join(closed)}"
            checks.append(CheckResult("ports", not closed, ports_detail))

            ddns_active = bool(self.ddns_active())
            checks.append(
                CheckResult(
                    "ddns",
                    ddns_active,
                    "DDNS daemon active" if ddns_active else "DDNS daemon is not running",
                )
            )

            firewall_active = self.firewall.is_active()
            checks.append(
                CheckResult(
                    "firewall",
                    firewall_active,
                    "firewall active" if firewall_active else "firewall is inactive",
                )
            )

        report = VerificationReport(
            runtime_up=runtime_up,
            workers_expected=expected,
            workers_running=len(running_names),
            missing_workers=missing,
            ports_expected=frozenset(expected_ports),
            ports_open=frozenset(open_ports),
            ddns_active=ddns_active,
            firewall_active=firewall_active,
            checks=tuple(checks),
        )
        for check in report.failures:
            self.logger.warning("Verification check '%s' failed: %s", check.name, check.detail)
        return report
