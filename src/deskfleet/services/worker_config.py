"""Per-worker configuration blobs consumed by the in-guest automation."""

import json
import os
import tempfile
from typing import Any, Dict, List

from deskfleet.constants import DEFAULT_WORKER_PREFIX, SECRET_MODE, WORKER_CONFIG_KEYS
from deskfleet.errors import ConfigError
from deskfleet.errors_catalog import actionable_error
from deskfleet.models import ProjectLayout
from deskfleet.services.ports import worker_name


class WorkerConfigStore:
    """Reads, validates and writes `configs/<worker>.json`."""

    def __init__(self, layout: ProjectLayout, logger, worker_prefix: str = DEFAULT_WORKER_PREFIX):
        self.layout = layout
        self.logger = logger
        self.worker_prefix = worker_prefix

    @staticmethod
    def template(name: str) -> Dict[str, Any]:
        return {
            "targetSiteUrl": "https://worksite.example.com/login",
            "credentials": {
                "username": f"{name}@example.com",
                "password": "CHANGE_THIS_PASSWORD",
            },
            "fieldSelectors": {
                "username": "input[name='email']",
                "password": "input[type='password']",
                "submit": "button[type='submit']",
            },
            "trackerUrl": "https://tracker.example.com",
            "trackerCredentials": {
                "username": name,
                "password": "CHANGE_TRACKER_PASSWORD",
            },
        }

    def validate(self, name: str, blob: Any) -> Dict[str, Any]:
        path = self.layout.worker_config_file(name)
        if not isinstance(blob, dict):
            raise ConfigError(
                actionable_error("invalid_worker_config", worker=name, reason="not a JSON object", path=path)
            )
        missing = [key for key in WORKER_CONFIG_KEYS if key not in blob]
        if missing:
            raise ConfigError(
                actionable_error(
                    "invalid_worker_config",
                    worker=name,
                    reason=f"missing keys {', '.join(missing)}",
                    path=path,
                )
            )
        return blob

    def load(self, name: str) -> Dict[str, Any]:
        path = self.layout.worker_config_file(name)
        if not os.path.exists(path):
            raise ConfigError(actionable_error("missing_worker_config", worker=name, path=path))
        try:
            with open(path, "r", encoding="utf-8") as file_obj:
                blob = json.load(file_obj)
        except (OSError, json.JSONDecodeError) as exc:
            raise ConfigError(
                actionable_error("invalid_worker_config", worker=name, reason=str(exc), path=path)
            ) from exc
        return self.validate(name, blob)

    def load_all(self, size: int) -> Dict[int, Dict[str, Any]]:
        """Loads blobs for workers 1..size; indexes without a file are left out."""
        blobs = {}
        for index in range(1, size + 1):
            name = worker_name(index, self.worker_prefix)
            if os.path.exists(self.layout.worker_config_file(name)):
                blobs[index] = self.load(name)
        return blobs

    def ensure_templates(self, size: int) -> List[str]:
        created = []
        for index in range(1, size + 1):
            name = worker_name(index, self.worker_prefix)
            if not os.path.exists(self.layout.worker_config_file(name)):
                self.save(name, self.template(name))
                created.append(name)
                self.logger.info("Created configuration template for %s", name)
        return created

    def save(self, name: str, blob: Dict[str, Any]) -> str:
        self.validate(name, blob)
        path = self.layout.worker_config_file(name)
        directory = os.path.dirname(path)
        os.makedirs(directory, exist_ok=True)

        fd, temp_path = tempfile.mkstemp(prefix=f".{name}-", suffix=".json", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                json.dump(blob, file_obj, indent=2, sort_keys=True)
                file_obj.write("\n")
            os.chmod(temp_path, SECRET_MODE)
            os.replace(temp_path, path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        return path
