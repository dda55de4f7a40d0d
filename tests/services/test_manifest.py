import json

from deskfleet.models import CheckResult, VerificationReport
from deskfleet.services.manifest import ManifestService


class DummyLogger:
    def __init__(self):
        self.warnings = []

    def warning(self, message, *args, **_kwargs):
        self.warnings.append(message % args)


def test_manifest_service_records_stages_and_verification(tmp_path):
    manifest_file = tmp_path / "logs" / "rebuild-manifest.json"
    service = ManifestService(str(manifest_file), logger=DummyLogger())

    service.start_run("run-123", {"size": 3, "domain": "f.example.com"})
    service.stage_started("sync_firewall")
    service.stage_finished("sync_firewall", "success")
    service.stage_started("build_images")
    service.stage_finished("build_images", "failed", error="docker build failed")
    service.record_verification(
        VerificationReport(
            runtime_up=True,
            workers_expected=3,
            workers_running=2,
            missing_workers=("worker2",),
            ports_expected=frozenset({54041, 54042}),
            ports_open=frozenset({54041}),
            ddns_active=False,
            firewall_active=True,
            checks=(CheckResult("workers", False, "2/3 workers running"),),
        )
    )
    service.finalize("failed", error="build_images: docker build failed")

    data = json.loads(manifest_file.read_text(encoding="utf-8"))

    assert data["run_id"] == "run-123"
    assert data["status"] == "failed"
    assert data["fleet"]["size"] == 3
    assert [stage["name"] for stage in data["stages"]] == ["sync_firewall", "build_images"]
    assert data["stages"][1]["error"] == "docker build failed"
    assert data["stages"][0]["duration_seconds"] is not None
    assert data["verification"]["passed"] is False
    assert data["verification"]["missing_workers"] == ["worker2"]
    assert data["verification"]["ports_closed"] == [54042]
    assert data["error"] == "build_images: docker build failed"


def test_manifest_write_failure_is_logged(tmp_path):
    blocker = tmp_path / "logs"
    blocker.write_text("not a directory", encoding="utf-8")
    logger = DummyLogger()
    service = ManifestService(str(blocker / "rebuild-manifest.json"), logger=logger)

    service.start_run("run-1", {})

    assert logger.warnings
