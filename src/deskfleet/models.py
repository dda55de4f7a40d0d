"""Shared domain models for DeskFleet."""

import json
import os
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, FrozenSet, Optional, Tuple

from .constants import (
    DEFAULT_ADDRESS_SOURCES,
    DEFAULT_ADMIN_PORTS,
    DEFAULT_ADMIN_SSH_PORT,
    DEFAULT_BUILD_TIMEOUT,
    DEFAULT_COMMAND_TIMEOUT,
    DEFAULT_COMPOSE_PROJECT,
    DEFAULT_DDNS_INTERVAL_SECONDS,
    DEFAULT_DDNS_JITTER_SECONDS,
    DEFAULT_DDNS_TTL,
    DEFAULT_DESKTOP_BASE_PORT,
    DEFAULT_DESKTOP_CONTAINER_PORT,
    DEFAULT_DOMAIN,
    DEFAULT_FLEET_SIZE,
    DEFAULT_HOST_PACKAGES,
    DEFAULT_HTTP_TIMEOUT,
    DEFAULT_IMAGE,
    DEFAULT_PROBE_TIMEOUT,
    DEFAULT_PROJECT_DIR,
    DEFAULT_SHELL_BASE_PORT,
    DEFAULT_SHELL_CONTAINER_PORT,
    DEFAULT_WORKER_PREFIX,
)


@dataclass(frozen=True)
class BasePorts:
    desktop: int
    shell: int


@dataclass(frozen=True)
class FleetSpec:
    """Immutable input to one reconciliation run."""

    size: int
    base_ports: BasePorts
    reserved_ports: FrozenSet[int] = frozenset()
    domain: str = ""


@dataclass(frozen=True)
class VolumeBinding:
    host_path: str
    container_path: str
    mode: str = "rw"

    def to_compose(self) -> str:
        return f"{self.host_path}:{self.container_path}:{self.mode}"


@dataclass(frozen=True)
class WorkerDesc:
    """One worker of the desired fleet, derived from FleetSpec and its index."""

    index: int
    name: str
    desktop_port: int
    shell_port: int
    volumes: Tuple[VolumeBinding, ...]
    env: Tuple[Tuple[str, str], ...]
    config: str

    @property
    def ports(self) -> Tuple[int, int]:
        return (self.desktop_port, self.shell_port)

    def env_dict(self) -> Dict[str, str]:
        return dict(self.env)

    def config_blob(self) -> Dict[str, Any]:
        return json.loads(self.config)


@dataclass(frozen=True, order=True)
class FirewallRule:
    port: int
    protocol: str = "tcp"
    direction: str = "in"

    def ufw_spec(self) -> str:
        return f"{self.port}/{self.protocol}"


@dataclass(frozen=True)
class DesiredState:
    workers: Tuple[WorkerDesc, ...]
    firewall_rules: Tuple[FirewallRule, ...]

    @property
    def names(self) -> Tuple[str, ...]:
        return tuple(worker.name for worker in self.workers)

    @property
    def worker_ports(self) -> Tuple[int, ...]:
        return tuple(sorted(port for worker in self.workers for port in worker.ports))

    def worker(self, name: str) -> Optional[WorkerDesc]:
        for worker in self.workers:
            if worker.name == name:
                return worker
        return None

    def to_json(self) -> str:
        return json.dumps(asdict(self), sort_keys=True, separators=(",", ":"))


@dataclass(frozen=True)
class RuntimeObservation:
    """Point-in-time view of one worker as reported by the container runtime."""

    name: str
    running: bool
    ports: FrozenSet[int] = frozenset()
    cpu: str = ""
    memory: str = ""
    status: str = ""


@dataclass(frozen=True)
class DnsRecord:
    name: str
    content: str
    id: Optional[str] = None
    proxied: bool = False
    ttl: int = DEFAULT_DDNS_TTL
    type: str = "A"

    def payload(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "content": self.content,
            "ttl": self.ttl,
            "proxied": self.proxied,
        }


@dataclass(frozen=True)
class DdnsTickOutcome:
    action: str
    name: str
    address: Optional[str] = None
    previous: Optional[str] = None
    record_id: Optional[str] = None
    error: Optional[str] = None

    @property
    def changed(self) -> bool:
        return self.action in {"created", "updated"}


@dataclass(frozen=True)
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass(frozen=True)
class VerificationReport:
    runtime_up: bool
    workers_expected: int
    workers_running: int
    missing_workers: Tuple[str, ...]
    ports_expected: FrozenSet[int]
    ports_open: FrozenSet[int]
    ddns_active: bool
    firewall_active: bool
    checks: Tuple[CheckResult, ...] = ()

    @property
    def passed(self) -> bool:
        return bool(self.checks) and all(check.passed for check in self.checks)

    @property
    def failures(self) -> Tuple[CheckResult, ...]:
        return tuple(check for check in self.checks if not check.passed)


@dataclass(frozen=True)
class LifecycleResult:
    operation: str
    target: Optional[str]
    services: Tuple[str, ...]
    detail: str = ""


@dataclass(frozen=True)
class BackupResult:
    path: str
    copied: Tuple[str, ...]


@dataclass(frozen=True)
class SyncResult:
    rules: Tuple[FirewallRule, ...]
    commands: Tuple[Tuple[str, ...], ...]


@dataclass(frozen=True)
class WorkerConnection:
    name: str
    host: str
    desktop_port: int
    shell_port: int


@dataclass(frozen=True)
class MonitorSnapshot:
    taken_at: str
    public_address: Optional[str]
    observations: Tuple[RuntimeObservation, ...]
    ports: Tuple[Tuple[str, int, bool], ...]
    last_ddns_event: Optional[Dict[str, Any]] = None
    errors: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ProjectLayout:
    """Host paths owned by one fleet installation."""

    root: str

    @property
    def data_dir(self) -> str:
        return os.path.join(self.root, "data")

    @property
    def scripts_dir(self) -> str:
        return os.path.join(self.root, "scripts")

    @property
    def configs_dir(self) -> str:
        return os.path.join(self.root, "configs")

    @property
    def logs_dir(self) -> str:
        return os.path.join(self.root, "logs")

    @property
    def backups_dir(self) -> str:
        return os.path.join(self.root, "backups")

    @property
    def dockerfiles_dir(self) -> str:
        return os.path.join(self.root, "dockerfiles")

    @property
    def run_dir(self) -> str:
        return os.path.join(self.root, "run")

    @property
    def compose_file(self) -> str:
        return os.path.join(self.root, "docker-compose.yml")

    def worker_data_dir(self, name: str) -> str:
        return os.path.join(self.data_dir, name)

    def worker_log_dir(self, name: str) -> str:
        return os.path.join(self.logs_dir, name)

    def worker_config_file(self, name: str) -> str:
        return os.path.join(self.configs_dir, f"{name}.json")


@dataclass(frozen=True)
class FleetSettings:
    """Resolved configuration for one invocation."""

    project_dir: str = DEFAULT_PROJECT_DIR
    size: int = DEFAULT_FLEET_SIZE
    domain: str = DEFAULT_DOMAIN
    desktop_base_port: int = DEFAULT_DESKTOP_BASE_PORT
    shell_base_port: int = DEFAULT_SHELL_BASE_PORT
    admin_ssh_port: int = DEFAULT_ADMIN_SSH_PORT
    admin_ports: Tuple[int, ...] = DEFAULT_ADMIN_PORTS
    reserved_ports: Tuple[int, ...] = ()
    worker_prefix: str = DEFAULT_WORKER_PREFIX
    compose_project: str = DEFAULT_COMPOSE_PROJECT
    image: str = DEFAULT_IMAGE
    desktop_container_port: int = DEFAULT_DESKTOP_CONTAINER_PORT
    shell_container_port: int = DEFAULT_SHELL_CONTAINER_PORT
    cf_api_token: Optional[str] = None
    cf_zone_id: Optional[str] = None
    ddns_ttl: int = DEFAULT_DDNS_TTL
    ddns_proxied: bool = False
    ddns_interval_seconds: float = DEFAULT_DDNS_INTERVAL_SECONDS
    ddns_jitter_seconds: float = DEFAULT_DDNS_JITTER_SECONDS
    address_sources: Tuple[str, ...] = DEFAULT_ADDRESS_SOURCES
    http_timeout: float = DEFAULT_HTTP_TIMEOUT
    probe_timeout: float = DEFAULT_PROBE_TIMEOUT
    command_timeout: float = DEFAULT_COMMAND_TIMEOUT
    build_timeout: float = DEFAULT_BUILD_TIMEOUT
    install_dependencies: bool = True
    host_packages: Tuple[str, ...] = field(default=DEFAULT_HOST_PACKAGES)
    server_local_ip: Optional[str] = None

    @property
    def ddns_configured(self) -> bool:
        return bool(self.cf_api_token and self.cf_zone_id)

    @property
    def administrative_ports(self) -> Tuple[int, ...]:
        return tuple(sorted(set(self.admin_ports) | {self.admin_ssh_port}))

    def layout(self) -> ProjectLayout:
        return ProjectLayout(root=os.path.abspath(self.project_dir))

    def fleet_spec(self) -> FleetSpec:
        return FleetSpec(
            size=self.size,
            base_ports=BasePorts(desktop=self.desktop_base_port, shell=self.shell_base_port),
            reserved_ports=frozenset(self.administrative_ports) | frozenset(self.reserved_ports),
            domain=self.domain,
        )
