import json
import subprocess

import pytest
import yaml

from deskfleet.errors import CommandError, HostEnvironmentError
from deskfleet.models import BasePorts, FleetSpec, ProjectLayout
from deskfleet.services.desired_state import DesiredStateBuilder
from deskfleet.services.docker_runtime import ComposeRuntime


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def info(self, *_args, **_kwargs):
        return None


class FakeSubprocess:
    CalledProcessError = subprocess.CalledProcessError

    def __init__(self, available=("docker compose",)):
        self.available = available

    def run(self, cmd, check=False, capture_output=False):
        if " ".join(cmd[:2]) in self.available or cmd[0] in self.available:
            return subprocess.CompletedProcess(cmd, 0)
        raise FileNotFoundError(cmd[0])


class ScriptedRunner:
    def __init__(self, outputs=None):
        self.calls = []
        self.outputs = outputs or {}

    def __call__(self, cmd, check=True, capture_output=False, **kwargs):
        self.calls.append((list(cmd), kwargs))
        for key, (returncode, stdout) in self.outputs.items():
            if key in " ".join(cmd):
                return subprocess.CompletedProcess(cmd, returncode, stdout=stdout, stderr="")
        return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


def make_runtime(tmp_path, runner=None, available=("docker compose",)):
    return ComposeRuntime(
        run_cmd=runner or ScriptedRunner(),
        logger=DummyLogger(),
        compose_file=str(tmp_path / "docker-compose.yml"),
        project_name="deskfleet",
        image="deskfleet-worker:latest",
        build_context=str(tmp_path / "dockerfiles"),
        desktop_container_port=54040,
        shell_container_port=22,
        subprocess_module=FakeSubprocess(available),
    )


def desired_state(tmp_path, size=2):
    builder = DesiredStateBuilder(ProjectLayout(str(tmp_path)), admin_ports=(22,))
    spec = FleetSpec(size=size, base_ports=BasePorts(desktop=54040, shell=52520))
    return builder.build(spec, {index: {"n": index} for index in range(1, size + 1)})


def test_compose_detection_falls_back_to_v1(tmp_path):
    runtime = make_runtime(tmp_path, available=("docker-compose",))

    assert runtime.compose_cmd == ["docker-compose"]


def test_compose_detection_fails_with_hint(tmp_path):
    runtime = make_runtime(tmp_path, available=())

    with pytest.raises(HostEnvironmentError, match="Docker Compose"):
        runtime.get_docker_compose_cmd()


def test_write_definition_maps_ports_volumes_and_labels(tmp_path):
    runtime = make_runtime(tmp_path)

    path = runtime.write_definition(desired_state(tmp_path))

    definition = yaml.safe_load(open(path, encoding="utf-8").read())
    worker2 = definition["services"]["worker2"]
    assert worker2["ports"] == ["54042:54040", "52522:22"]
    assert worker2["labels"] == {"deskfleet.project": "deskfleet", "deskfleet.worker": "worker2"}
    assert worker2["environment"] == {"WORKER_ID": "worker2", "DISPLAY": ":12"}
    assert f"{tmp_path}/configs/worker2.json:/configs/worker2.json:ro" in worker2["volumes"]
    assert set(definition["services"]) == {"worker1", "worker2"}


def test_up_and_down_target_services(tmp_path):
    runner = ScriptedRunner()
    runtime = make_runtime(tmp_path, runner)

    runtime.up(["worker1"])
    runtime.down(["worker1"])
    runtime.down()

    commands = [cmd for cmd, _ in runner.calls]
    prefix = ["docker", "compose", "-p", "deskfleet", "-f", str(tmp_path / "docker-compose.yml")]
    assert commands[0] == prefix + ["up", "-d", "worker1"]
    assert commands[1] == prefix + ["rm", "--stop", "--force", "worker1"]
    assert commands[2] == prefix + ["down", "--remove-orphans"]


def test_ps_parses_json_lines_and_labels(tmp_path):
    lines = "\n".join(
        [
            json.dumps(
                {
                    "Names": "worker1",
                    "State": "running",
                    "Status": "Up 2 minutes",
                    "Labels": "deskfleet.project=deskfleet,deskfleet.worker=worker1",
                    "Ports": "0.0.0.0:54041->54040/tcp, 0.0.0.0:52521->22/tcp",
                }
            ),
            json.dumps(
                {
                    "Names": "worker2",
                    "State": "exited",
                    "Status": "Exited (0)",
                    "Labels": "deskfleet.worker=worker2",
                    "Ports": "",
                }
            ),
        ]
    )
    runtime = make_runtime(tmp_path, ScriptedRunner({"docker ps": (0, lines)}))

    entries = runtime.ps()

    assert entries[0] == {
        "name": "worker1",
        "container": "worker1",
        "state": "running",
        "status": "Up 2 minutes",
        "ports": {54041, 52521},
    }
    assert entries[1]["state"] == "exited"
    assert entries[1]["ports"] == set()


def test_stats_returns_empty_on_failure(tmp_path):
    runtime = make_runtime(tmp_path, ScriptedRunner({"docker stats": (1, "")}))

    assert runtime.stats(["worker1"]) == []
    assert runtime.stats([]) == []


def test_ping_handles_runner_errors(tmp_path):
    def failing(cmd, **_kwargs):
        raise CommandError("docker unreachable", cmd=cmd)

    runtime = make_runtime(tmp_path, failing)

    assert runtime.ping() is False


def test_teardown_is_scoped_to_project_label(tmp_path):
    runner = ScriptedRunner({"ps -aq": (0, "abc123\ndef456\n")})
    runtime = make_runtime(tmp_path, runner)

    removed = runtime.teardown()

    commands = [cmd for cmd, _ in runner.calls]
    assert removed == ["abc123", "def456"]
    assert ["docker", "ps", "-aq", "--filter", "label=deskfleet.project=deskfleet"] in commands
    assert ["docker", "rm", "-f", "abc123", "def456"] in commands
    # no compose file yet, so compose down is not attempted
    assert not any("down" in cmd for cmd in commands)


def test_teardown_with_nothing_left_is_success(tmp_path):
    runtime = make_runtime(tmp_path)

    assert runtime.teardown() == []


def test_ensure_build_context_keeps_custom_dockerfile(tmp_path):
    runtime = make_runtime(tmp_path)
    dockerfile = tmp_path / "dockerfiles" / "Dockerfile"

    runtime.ensure_build_context()
    assert dockerfile.read_text(encoding="utf-8").startswith("FROM ")

    dockerfile.write_text("FROM custom\n", encoding="utf-8")
    runtime.ensure_build_context()
    assert dockerfile.read_text(encoding="utf-8") == "FROM custom\n"


def test_teardown_without_docker_has_nothing_to_remove(tmp_path):
    def missing_docker(cmd, **_kwargs):
        raise HostEnvironmentError(f"Required command not found: {cmd[0]}.", hint="Install it.")

    (tmp_path / "docker-compose.yml").write_text("services: {}\n", encoding="utf-8")

    assert make_runtime(tmp_path, missing_docker, available=()).teardown() == []
    assert make_runtime(tmp_path, missing_docker).teardown() == []
