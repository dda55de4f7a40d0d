import pytest

from deskfleet.errors import ConfigError
from deskfleet.models import BasePorts, FirewallRule, FleetSpec, ProjectLayout
from deskfleet.services.desired_state import DesiredStateBuilder

ADMIN_PORTS = (22, 80, 443, 58085)


def build(size, configs=None, root="/opt/deskfleet"):
    builder = DesiredStateBuilder(ProjectLayout(root), admin_ports=ADMIN_PORTS)
    spec = FleetSpec(
        size=size,
        base_ports=BasePorts(desktop=54040, shell=52520),
        reserved_ports=frozenset(ADMIN_PORTS),
    )
    if configs is None:
        configs = {index: {"targetSiteUrl": f"https://site/{index}"} for index in range(1, size + 1)}
    return builder.build(spec, configs)


def test_build_three_workers_rules_are_worker_and_admin_ports():
    desired = build(3)

    assert desired.names == ("worker1", "worker2", "worker3")
    assert desired.worker("worker2").ports == (54042, 52522)
    expected_ports = {54041, 54042, 54043, 52521, 52522, 52523, *ADMIN_PORTS}
    assert {rule.port for rule in desired.firewall_rules} == expected_ports
    assert len(desired.firewall_rules) == len(expected_ports)
    assert list(desired.firewall_rules) == sorted(desired.firewall_rules)
    assert all(rule == FirewallRule(port=rule.port) for rule in desired.firewall_rules)


def test_build_is_deterministic():
    assert build(4).to_json() == build(4).to_json()


def test_growing_fleet_keeps_existing_workers():
    small = build(2)
    large = build(5)

    assert large.workers[:2] == small.workers


def test_worker_volumes_and_env():
    worker = build(2).worker("worker2")

    assert [volume.to_compose() for volume in worker.volumes] == [
        "/opt/deskfleet/data/worker2:/home/worker/data:rw",
        "/opt/deskfleet/scripts:/scripts:ro",
        "/opt/deskfleet/configs/worker2.json:/configs/worker2.json:ro",
        "/opt/deskfleet/logs/worker2:/var/log/worker:rw",
    ]
    assert worker.env_dict() == {"WORKER_ID": "worker2", "DISPLAY": ":12"}
    assert worker.config_blob() == {"targetSiteUrl": "https://site/2"}


def test_config_is_canonical_json():
    desired = build(1, configs={1: {"b": 1, "a": {"d": 2, "c": 3}}})

    assert desired.workers[0].config == '{"a":{"c":3,"d":2},"b":1}'


def test_missing_worker_config_is_config_error():
    with pytest.raises(ConfigError, match="worker2"):
        build(2, configs={1: {}})


def test_negative_size_is_config_error():
    with pytest.raises(ConfigError):
        build(-1, configs={})


def test_empty_fleet_keeps_admin_rules_only():
    desired = build(0)

    assert desired.workers == ()
    assert tuple(rule.port for rule in desired.firewall_rules) == ADMIN_PORTS
