import pytest

from deskfleet.errors import ConfigError
from deskfleet.models import BasePorts
from deskfleet.services.ports import allocate, allocate_fleet, worker_name

BASE = BasePorts(desktop=54040, shell=52520)


def test_allocate_adds_index_to_both_bases():
    assert allocate(2, BASE) == (54042, 52522)


def test_allocate_rejects_index_below_one():
    with pytest.raises(ConfigError, match="index"):
        allocate(0, BASE)


def test_allocate_rejects_port_above_range():
    with pytest.raises(ConfigError, match="outside the valid range"):
        allocate(1, BasePorts(desktop=65535, shell=52520))


def test_allocate_rejects_reserved_port():
    with pytest.raises(ConfigError, match="reserved"):
        allocate(1, BasePorts(desktop=21, shell=52520), reserved_ports=frozenset({22}))


def test_allocate_fleet_is_pairwise_disjoint():
    pairs = allocate_fleet(10, BASE, frozenset({22, 80, 443, 58085}))

    ports = [port for pair in pairs for port in pair]
    assert len(ports) == len(set(ports)) == 20
    assert pairs[0] == (54041, 52521)


def test_allocate_fleet_detects_cross_namespace_collision():
    with pytest.raises(ConfigError) as excinfo:
        allocate_fleet(3, BasePorts(desktop=100, shell=101))

    message = str(excinfo.value)
    assert "worker1" in message
    assert "worker2" in message


def test_allocate_fleet_empty_and_negative_size():
    assert allocate_fleet(0, BASE) == []
    with pytest.raises(ConfigError):
        allocate_fleet(-1, BASE)


def test_worker_name_uses_prefix():
    assert worker_name(3) == "worker3"
    assert worker_name(3, "desk") == "desk3"
