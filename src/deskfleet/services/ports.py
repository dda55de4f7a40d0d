"""Port allocation for fleet workers."""

from typing import AbstractSet, Dict, List, Tuple

from deskfleet.constants import DEFAULT_WORKER_PREFIX, MAX_PORT
from deskfleet.errors import ConfigError
from deskfleet.errors_catalog import actionable_error
from deskfleet.models import BasePorts


def worker_name(index: int, prefix: str = DEFAULT_WORKER_PREFIX) -> str:
    return f"{prefix}{index}"


def allocate(
    index: int,
    base_ports: BasePorts,
    reserved_ports: AbstractSet[int] = frozenset(),
    prefix: str = DEFAULT_WORKER_PREFIX,
) -> Tuple[int, int]:
    """Map a 1-based worker index to its (desktop, shell) port pair."""
    if index < 1:
        raise ConfigError(f"Worker index must be >= 1, got {index}.")

    desktop_port = base_ports.desktop + index
    shell_port = base_ports.shell + index
    name = worker_name(index, prefix)

    for namespace, port in (("desktop", desktop_port), ("shell", shell_port)):
        if port < 1 or port > MAX_PORT:
            raise ConfigError(
                actionable_error("port_out_of_range", port=str(port), worker=name, namespace=namespace)
            )
        if port in reserved_ports:
            raise ConfigError(
                actionable_error("port_reserved", port=str(port), worker=name, namespace=namespace)
            )

    return desktop_port, shell_port


def allocate_fleet(
    size: int,
    base_ports: BasePorts,
    reserved_ports: AbstractSet[int] = frozenset(),
    prefix: str = DEFAULT_WORKER_PREFIX,
) -> List[Tuple[int, int]]:
    """Allocate ports for workers 1..size and reject any cross-worker collision."""
    if size < 0:
        raise ConfigError(f"Fleet size must be >= 0, got {size}.")

    owners: Dict[int, str] = {}
    pairs = []
    for index in range(1, size + 1):
        name = worker_name(index, prefix)
        pair = allocate(index, base_ports, reserved_ports, prefix)
        for port in pair:
            if port in owners:
                raise ConfigError(
                    actionable_error("port_collision", port=str(port), first=owners[port], second=name)
                )
            owners[port] = name
        pairs.append(pair)
    return pairs
