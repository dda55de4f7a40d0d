"""Docker Compose runtime adapter for DeskFleet."""

import json
import os
import re
import subprocess
from typing import Any, Callable, Dict, List, Optional, Sequence

import yaml

from deskfleet.constants import PROJECT_LABEL, WORKER_LABEL
from deskfleet.errors import CommandError, HostEnvironmentError
from deskfleet.errors_catalog import description, remediation
from deskfleet.models import DesiredState

PUBLISHED_PORT_RE = re.compile(r":(\d+)->")

DEFAULT_DOCKERFILE = """FROM ubuntu:22.04
ENV DEBIAN_FRONTEND=noninteractive
RUN apt-get update && apt-get install -y --no-install-recommends \\
        xfce4 xfce4-terminal dbus-x11 openssh-server sudo curl ca-certificates \\
    && rm -rf /var/lib/apt/lists/*
RUN useradd -m -s /bin/bash worker && mkdir -p /var/run/sshd /var/log/worker
EXPOSE 22
CMD ["/usr/sbin/sshd", "-D"]
"""


class ComposeRuntime:
    """Implements the container runtime contract on top of `docker compose`."""

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        compose_file: str,
        project_name: str,
        image: str,
        build_context: str,
        desktop_container_port: int,
        shell_container_port: int,
        build_timeout: Optional[float] = None,
        subprocess_module=subprocess,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.compose_file = compose_file
        self.project_name = project_name
        self.image = image
        self.build_context = build_context
        self.desktop_container_port = desktop_container_port
        self.shell_container_port = shell_container_port
        self.build_timeout = build_timeout
        self.subprocess = subprocess_module
        self._compose_cmd: Optional[List[str]] = None

    def get_docker_compose_cmd(self) -> List[str]:
        try:
            self.subprocess.run(["docker", "compose", "version"], check=True, capture_output=True)
            return ["docker", "compose"]
        except (self.subprocess.CalledProcessError, FileNotFoundError):
            try:
                self.subprocess.run(["docker-compose", "--version"], check=True, capture_output=True)
                return ["docker-compose"]
            except (self.subprocess.CalledProcessError, FileNotFoundError):
                raise HostEnvironmentError(
                    description("compose_unavailable"),
                    hint=remediation("compose_unavailable"),
                )

    @property
    def compose_cmd(self) -> List[str]:
        if self._compose_cmd is None:
            self._compose_cmd = self.get_docker_compose_cmd()
        return self._compose_cmd

    def _compose(self, *args: str) -> List[str]:
        return self.compose_cmd + ["-p", self.project_name, "-f", self.compose_file, *args]

    def build_definition(self, desired: DesiredState) -> Dict[str, Any]:
        services: Dict[str, Any] = {}
        for worker in desired.workers:
            services[worker.name] = {
                "image": self.image,
                "build": {"context": self.build_context, "dockerfile": "Dockerfile"},
                "container_name": worker.name,
                "hostname": worker.name,
                "environment": worker.env_dict(),
                "volumes": [volume.to_compose() for volume in worker.volumes] + ["/dev/shm:/dev/shm"],
                "ports": [
                    f"{worker.desktop_port}:{self.desktop_container_port}",
                    f"{worker.shell_port}:{self.shell_container_port}",
                ],
                "labels": {PROJECT_LABEL: self.project_name, WORKER_LABEL: worker.name},
                "cap_add": ["SYS_ADMIN", "NET_ADMIN"],
                "shm_size": "2gb",
                "stdin_open": True,
                "tty": True,
                "restart": "unless-stopped",
            }
        return {
            "name": self.project_name,
            "services": services,
            "networks": {"default": {"driver": "bridge"}},
        }

    def write_definition(self, desired: DesiredState) -> str:
        definition = self.build_definition(desired)
        os.makedirs(os.path.dirname(self.compose_file) or ".", exist_ok=True)
        with open(self.compose_file, "w", encoding="utf-8", newline="\n") as file_obj:
            yaml.safe_dump(definition, file_obj, sort_keys=False, default_flow_style=False)
        self.logger.debug("Wrote compose definition for %s workers to %s", len(desired.workers), self.compose_file)
        return self.compose_file

    def ensure_build_context(self) -> str:
        """Writes the stock worker Dockerfile unless the operator supplied one."""
        dockerfile = os.path.join(self.build_context, "Dockerfile")
        if not os.path.exists(dockerfile):
            os.makedirs(self.build_context, exist_ok=True)
            with open(dockerfile, "w", encoding="utf-8", newline="\n") as file_obj:
                file_obj.write(DEFAULT_DOCKERFILE)
            self.logger.info("Wrote default worker Dockerfile to %s", dockerfile)
        return dockerfile

    def build(self, services: Sequence[str] = ()):
        self.run_cmd(self._compose("build", *services), timeout=self.build_timeout)

    def up(self, services: Sequence[str] = ()):
        self.run_cmd(self._compose("up", "-d", *services), capture_output=True)

    def down(self, services: Sequence[str] = ()):
        if services:
            self.run_cmd(self._compose("rm", "--stop", "--force", *services), capture_output=True)
        else:
            self.run_cmd(self._compose("down", "--remove-orphans"), capture_output=True)

    def stop(self, services: Sequence[str] = ()):
        self.run_cmd(self._compose("stop", *services), capture_output=True)

    def start(self, services: Sequence[str] = ()):
        self.run_cmd(self._compose("start", *services), capture_output=True)

    def restart(self, services: Sequence[str] = ()):
        self.run_cmd(self._compose("restart", *services), capture_output=True)

    def logs(self, services: Sequence[str] = (), follow: bool = False, tail: Optional[int] = None):
        args = ["logs"]
        if follow:
            args.append("--follow")
        if tail is not None:
            args.extend(["--tail", str(tail)])
        self.run_cmd(self._compose(*args, *services), timeout=0 if follow else None)

    def exec(self, service: str, command: Sequence[str], interactive: bool = True):
        args = ["exec"]
        if not interactive:
            args.append("-T")
        result = self.run_cmd(
            self._compose(*args, service, *command),
            capture_output=not interactive,
            timeout=0 if interactive else None,
        )
        return result

    def ps(self) -> List[Dict[str, Any]]:
        """Lists this project's containers without needing the compose file."""
        result = self.run_cmd(
            [
                "docker",
                "ps",
                "--all",
                "--filter",
                f"label={PROJECT_LABEL}={self.project_name}",
                "--format",
                "{{json .}}",
            ],
            capture_output=True,
        )
        return [self._normalize_ps_entry(entry) for entry in self._parse_json_output(result.stdout)]

    def stats(self, names: Sequence[str]) -> List[Dict[str, str]]:
        if not names:
            return []
        result = self.run_cmd(
            ["docker", "stats", "--no-stream", "--format", "{{json .}}", *names],
            check=False,
            capture_output=True,
        )
        if result.returncode != 0:
            self.logger.debug("docker stats returned %s", result.returncode)
            return []
        return [
            {
                "name": entry.get("Name", ""),
                "cpu": entry.get("CPUPerc", ""),
                "mem": entry.get("MemUsage", ""),
            }
            for entry in self._parse_json_output(result.stdout)
        ]

    def ping(self) -> bool:
        try:
            result = self.run_cmd(["docker", "info"], check=False, capture_output=True)
        except (CommandError, HostEnvironmentError) as exc:
            self.logger.debug("Docker is not reachable: %s", exc)
            return False
        return result.returncode == 0

    def teardown(self) -> List[str]:
        """Removes everything labelled with this project. Absent resources are not an error."""
        try:
            return self._remove_project()
        except HostEnvironmentError as exc:
            # no docker on this host yet means no containers to remove
            self.logger.info("Nothing to tear down: %s", exc)
            return []

    def _remove_project(self) -> List[str]:
        removed: List[str] = []

        if os.path.exists(self.compose_file):
            self.run_cmd(
                self._compose("down", "--remove-orphans", "--volumes", "--rmi", "local"),
                check=False,
                capture_output=True,
            )

        listing = self.run_cmd(
            ["docker", "ps", "-aq", "--filter", f"label={PROJECT_LABEL}={self.project_name}"],
            check=False,
            capture_output=True,
        )
        container_ids = [line.strip() for line in (listing.stdout or "").splitlines() if line.strip()]
        if container_ids:
            self.run_cmd(["docker", "rm", "-f", *container_ids], check=False, capture_output=True)
            removed.extend(container_ids)
        return removed

    @staticmethod
    def _parse_json_output(output: Optional[str]) -> List[Dict[str, Any]]:
        text = (output or "").strip()
        if not text:
            return []
        if text.startswith("["):
            parsed = json.loads(text)
            return [item for item in parsed if isinstance(item, dict)]
        entries = []
        for line in text.splitlines():
            line = line.strip()
            if line:
                entries.append(json.loads(line))
        return entries

    @staticmethod
    def _normalize_ps_entry(entry: Dict[str, Any]) -> Dict[str, Any]:
        labels = {}
        for item in (entry.get("Labels") or "").split(","):
            key, _, value = item.partition("=")
            if key:
                labels[key.strip()] = value.strip()
        ports = {int(port) for port in PUBLISHED_PORT_RE.findall(entry.get("Ports") or "")}
        container = entry.get("Names", "")
        return {
            "name": labels.get(WORKER_LABEL) or container,
            "container": container,
            "state": (entry.get("State") or "").lower(),
            "status": entry.get("Status", ""),
            "ports": ports,
        }
