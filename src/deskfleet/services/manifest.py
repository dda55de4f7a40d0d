"""Rebuild manifest service."""

import json
import os
import tempfile
from datetime import datetime, timezone
from typing import Any, Dict, Optional


class ManifestService:
    """Records each rebuild stage and the final verification into a JSON file."""

    def __init__(self, manifest_file: str, logger):
        self.manifest_file = manifest_file
        self.logger = logger
        self.manifest: Dict[str, Any] = {
            "run_id": None,
            "status": "running",
            "started_at": None,
            "finished_at": None,
            "duration_seconds": None,
            "fleet": {},
            "stages": [],
            "verification": None,
            "error": None,
        }

    def start_run(self, run_id: str, fleet: Dict[str, Any]):
        self.manifest["run_id"] = run_id
        self.manifest["status"] = "running"
        self.manifest["started_at"] = self._now()
        self.manifest["fleet"] = fleet
        self.write()

    def stage_started(self, name: str):
        self.manifest["stages"].append(
            {
                "name": name,
                "status": "running",
                "started_at": self._now(),
                "finished_at": None,
                "duration_seconds": None,
                "details": {},
                "error": None,
            }
        )
        self.write()

    def stage_finished(
        self,
        name: str,
        status: str,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        for stage in reversed(self.manifest["stages"]):
            if stage["name"] == name and stage["status"] == "running":
                stage["status"] = status
                stage["finished_at"] = self._now()
                stage["error"] = error
                if details:
                    stage["details"].update(details)
                stage["duration_seconds"] = self._elapsed(stage["started_at"], stage["finished_at"])
                break
        self.write()

    def record_verification(self, report):
        self.manifest["verification"] = {
            "passed": report.passed,
            "workers_expected": report.workers_expected,
            "workers_running": report.workers_running,
            "missing_workers": list(report.missing_workers),
            "ports_closed": sorted(report.ports_expected - report.ports_open),
            "ddns_active": report.ddns_active,
            "firewall_active": report.firewall_active,
            "checks": [
                {"name": check.name, "passed": check.passed, "detail": check.detail} for check in report.checks
            ],
        }
        self.write()

    def finalize(self, status: str, error: Optional[str] = None):
        self.manifest["status"] = status
        self.manifest["finished_at"] = self._now()
        if self.manifest.get("started_at"):
            self.manifest["duration_seconds"] = self._elapsed(
                self.manifest["started_at"],
                self.manifest["finished_at"],
            )
        self.manifest["error"] = error
        self.write()

    def write(self):
        directory = os.path.dirname(self.manifest_file) or "."
        try:
            os.makedirs(directory, exist_ok=True)
            fd, temp_path = tempfile.mkstemp(prefix=".rebuild-manifest-", suffix=".json", dir=directory)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            return

        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(self.manifest, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.replace(temp_path, self.manifest_file)
        except OSError as exc:
            self.logger.warning("Could not write manifest file '%s': %s", self.manifest_file, exc)
            try:
                os.remove(temp_path)
            except OSError:
                pass

    @staticmethod
    def _elapsed(started: str, finished: str) -> float:
        return (datetime.fromisoformat(finished) - datetime.fromisoformat(started)).total_seconds()

    @staticmethod
    def _now() -> str:
        return datetime.now(timezone.utc).isoformat()
