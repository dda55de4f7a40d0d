"""Operator and worker connection guides."""

import os
import socket
from typing import List, Optional

from deskfleet.constants import FILE_MODE
from deskfleet.models import DesiredState, ProjectLayout, WorkerConnection, WorkerDesc

ROUTER_GUIDE = "ROUTER_SETUP.md"
WORKER_GUIDE = "WORKER_GUIDE.md"
CONNECTIONS_DIR = "connections"


def detect_local_ip(socket_module=socket) -> Optional[str]:
    """Returns the address of the interface that routes to the internet, if any."""
    probe = socket_module.socket(socket_module.AF_INET, socket_module.SOCK_DGRAM)
    try:
        # UDP connect sends nothing; it only selects a source address
        probe.connect(("192.0.2.1", 80))
        return probe.getsockname()[0]
    except OSError:
        return None
    finally:
        probe.close()


class GuideWriter:
    def __init__(self, layout: ProjectLayout, logger):
        self.layout = layout
        self.logger = logger

    @property
    def connections_dir(self) -> str:
        return os.path.join(self.layout.root, CONNECTIONS_DIR)

    @staticmethod
    def connection(worker: WorkerDesc, domain: str) -> WorkerConnection:
        return WorkerConnection(
            name=worker.name,
            host=domain,
            desktop_port=worker.desktop_port,
            shell_port=worker.shell_port,
        )

    def router_setup(
        self,
        desired: DesiredState,
        domain: str,
        local_ip: Optional[str],
        public_ip: Optional[str] = None,
    ) -> str:
        internal = local_ip or "<server LAN address>"
        lines = [
            "# Router Port Forwarding",
            "",
            "Workers are only reachable from outside once these ports are forwarded to the server.",
            "",
            "## Server",
            "",
            f"- Local IP address: {internal}",
            f"- Public IP address: {public_ip or 'unknown'}",
            f"- Domain: {domain}",
            "",
            "## Remote desktop",
            "",
            "| External Port | Internal Port | Protocol | Internal IP | Worker |",
            "|---------------|---------------|----------|-------------|--------|",
        ]
        for worker in desired.workers:
            lines.append(f"| {worker.desktop_port} | {worker.desktop_port} | TCP | {internal} | {worker.name} |")
        lines.extend(
            [
                "",
                "## Shell (optional)",
                "",
                "| External Port | Internal Port | Protocol | Internal IP | Worker |",
                "|---------------|---------------|----------|-------------|--------|",
            ]
        )
        for worker in desired.workers:
            lines.append(f"| {worker.shell_port} | {worker.shell_port} | TCP | {internal} | {worker.name} |")
        lines.extend(
            [
                "",
                "## Checks",
                "",
                "- Firewall on the server: `sudo ufw status`",
                "- Workers running: `deskfleet status`",
                f"- Port reachable locally: `nc -zv localhost {desired.workers[0].desktop_port if desired.workers else 'PORT'}`",
                "",
            ]
        )
        return "\n".join(lines)

    def worker_guide(self, desired: DesiredState, domain: str) -> str:
        lines = [
            "# Worker Connection Guide",
            "",
            "1. Install the remote desktop client.",
            "2. Create a new connection using the host and port from the table below.",
            "3. Log in with the credentials handed out by the operator.",
            "",
            "| Worker | Host | Desktop Port | Shell Port |",
            "|--------|------|--------------|------------|",
        ]
        for worker in desired.workers:
            lines.append(f"| {worker.name} | {domain} | {worker.desktop_port} | {worker.shell_port} |")
        lines.append("")
        return "\n".join(lines)

    @staticmethod
    def connection_card(connection: WorkerConnection) -> str:
        return "\n".join(
            [
                f"Connection details for {connection.name}",
                "",
                f"Host: {connection.host}",
                f"Remote desktop port: {connection.desktop_port}",
                f"SSH: ssh -p {connection.shell_port} worker@{connection.host}",
                "",
            ]
        )

    def write(
        self,
        desired: DesiredState,
        domain: str,
        local_ip: Optional[str],
        public_ip: Optional[str] = None,
    ) -> List[str]:
        written = [
            self._write(os.path.join(self.layout.root, ROUTER_GUIDE), self.router_setup(desired, domain, local_ip, public_ip)),
            self._write(os.path.join(self.layout.root, WORKER_GUIDE), self.worker_guide(desired, domain)),
        ]
        for worker in desired.workers:
            card = self.connection_card(self.connection(worker, domain))
            written.append(self._write(os.path.join(self.connections_dir, f"{worker.name}.txt"), card))
        self.logger.info("Wrote %s guide files under %s", len(written), self.layout.root)
        return written

    @staticmethod
    def _write(path: str, content: str) -> str:
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(content)
        os.chmod(path, FILE_MODE)
        return path
