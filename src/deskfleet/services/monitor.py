"""Read-only periodic fleet snapshot for human observation."""

import threading
from datetime import datetime
from typing import Callable, List, Optional

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table

from deskfleet.errors import ExternalServiceError, FleetError
from deskfleet.models import MonitorSnapshot


class MonitorService:
    def __init__(
        self,
        lifecycle,
        prober,
        event_log,
        logger,
        discover: Optional[Callable[[], str]] = None,
        now: Callable[[], datetime] = datetime.now,
    ):
        self.lifecycle = lifecycle
        self.prober = prober
        self.event_log = event_log
        self.logger = logger
        self.discover = discover
        self.now = now

    def snapshot(self) -> MonitorSnapshot:
        errors: List[str] = []

        try:
            observations = tuple(self.lifecycle.status())
        except FleetError as exc:
            errors.append(f"status: {exc}")
            observations = ()

        ports = []
        running = {obs.name for obs in observations if obs.running}
        if running:
            try:
                desired = self.lifecycle.desired_state()
            except FleetError as exc:
                errors.append(f"desired state: {exc}")
            else:
                for worker in desired.workers:
                    if worker.name in running:
                        for port in worker.ports:
                            ports.append((worker.name, port, self.prober.is_open(port)))

        public_address = None
        if self.discover is not None:
            try:
                public_address = self.discover()
            except ExternalServiceError as exc:
                errors.append(str(exc))

        return MonitorSnapshot(
            taken_at=self.now().strftime("%Y-%m-%d %H:%M:%S"),
            public_address=public_address,
            observations=observations,
            ports=tuple(ports),
            last_ddns_event=self.event_log.last() if self.event_log else None,
            errors=tuple(errors),
        )

    def watch(
        self,
        render: Callable[[MonitorSnapshot], None],
        interval: float = 5.0,
        iterations: Optional[int] = None,
        stop_event: Optional[threading.Event] = None,
    ) -> int:
        stop_event = stop_event or threading.Event()
        count = 0
        while not stop_event.is_set():
            try:
                render(self.snapshot())
            except Exception:
                self.logger.exception("Monitor cycle failed")
            count += 1
            if iterations is not None and count >= iterations:
                break
            stop_event.wait(interval)
        return count


def render_snapshot(console: Console, snapshot: MonitorSnapshot, domain: str):
    containers = Table(title="Containers", expand=True)
    containers.add_column("Worker")
    containers.add_column("Status")
    containers.add_column("Ports")
    containers.add_column("CPU", justify="right")
    containers.add_column("Memory", justify="right")
    for obs in snapshot.observations:
        status_style = "green" if obs.running else "red"
        containers.add_row(
            obs.name,
            f"[{status_style}]{obs.status or ('running' if obs.running else 'stopped')}[/{status_style}]",
            ", ".join(str(port) for port in sorted(obs.ports)) or "-",
            obs.cpu or "-",
            obs.memory or "-",
        )

    reachability = Table(title="Connection test", expand=True)
    reachability.add_column("Worker")
    reachability.add_column("Port", justify="right")
    reachability.add_column("State")
    for name, port, is_open in snapshot.ports:
        reachability.add_row(name, str(port), "[green]open[/green]" if is_open else "[red]closed[/red]")

    event = snapshot.last_ddns_event
    if event:
        ddns_line = f"{event.get('timestamp', '?')} {event.get('action', '?')} {event.get('address') or event.get('error') or ''}"
    else:
        ddns_line = "no DDNS events recorded"

    header = (
        f"[bold]DeskFleet[/bold]  {snapshot.taken_at}\n"
        f"Domain: {domain}\n"
        f"Public IP: {snapshot.public_address or 'unknown'}\n"
        f"Last DDNS update: {ddns_line}"
    )
    parts = [Panel.fit(header, title="Network"), containers, reachability]
    for error in snapshot.errors:
        parts.append(f"[yellow]{error}[/yellow]")

    console.clear()
    console.print(Group(*parts))
