"""Desired-state computation for a fleet."""

import json
from typing import Any, Iterable, Mapping

from deskfleet.constants import (
    CONTAINER_CONFIGS_DIR,
    CONTAINER_DATA_DIR,
    CONTAINER_LOG_DIR,
    CONTAINER_SCRIPTS_DIR,
    DEFAULT_WORKER_PREFIX,
    DISPLAY_OFFSET,
)
from deskfleet.errors import ConfigError
from deskfleet.errors_catalog import actionable_error
from deskfleet.models import (
    DesiredState,
    FirewallRule,
    FleetSpec,
    ProjectLayout,
    VolumeBinding,
    WorkerDesc,
)
from deskfleet.services.ports import allocate_fleet, worker_name


class DesiredStateBuilder:
    """Turns a FleetSpec plus per-worker config blobs into a DesiredState."""

    def __init__(
        self,
        layout: ProjectLayout,
        admin_ports: Iterable[int],
        worker_prefix: str = DEFAULT_WORKER_PREFIX,
    ):
        self.layout = layout
        self.admin_ports = tuple(sorted(set(admin_ports)))
        self.worker_prefix = worker_prefix

    def build(self, spec: FleetSpec, per_worker_config: Mapping[int, Mapping[str, Any]]) -> DesiredState:
        if spec.size < 0:
            raise ConfigError(f"Fleet size must be >= 0, got {spec.size}.")

        pairs = allocate_fleet(spec.size, spec.base_ports, spec.reserved_ports, self.worker_prefix)

        workers = []
        for index, (desktop_port, shell_port) in enumerate(pairs, start=1):
            name = worker_name(index, self.worker_prefix)
            if index not in per_worker_config:
                raise ConfigError(
                    actionable_error(
                        "missing_worker_config",
                        worker=name,
                        path=self.layout.worker_config_file(name),
                    )
                )
            workers.append(
                WorkerDesc(
                    index=index,
                    name=name,
                    desktop_port=desktop_port,
                    shell_port=shell_port,
                    volumes=self._volumes(name),
                    env=(
                        ("WORKER_ID", name),
                        ("DISPLAY", f":{DISPLAY_OFFSET + index}"),
                    ),
                    config=json.dumps(per_worker_config[index], sort_keys=True, separators=(",", ":")),
                )
            )

        ports = {port for worker in workers for port in worker.ports}
        ports.update(self.admin_ports)
        rules = tuple(sorted(FirewallRule(port=port) for port in ports))
        return DesiredState(workers=tuple(workers), firewall_rules=rules)

    def _volumes(self, name: str):
        config_file = f"{name}.json"
        return (
            VolumeBinding(self.layout.worker_data_dir(name), CONTAINER_DATA_DIR, "rw"),
            VolumeBinding(self.layout.scripts_dir, CONTAINER_SCRIPTS_DIR, "ro"),
            VolumeBinding(
                self.layout.worker_config_file(name),
                f"{CONTAINER_CONFIGS_DIR}/{config_file}",
                "ro",
            ),
            VolumeBinding(self.layout.worker_log_dir(name), CONTAINER_LOG_DIR, "rw"),
        )
