"""Persistent DDNS daemon managed by systemd."""

import os
import shutil
import sys
import tempfile
from dataclasses import asdict
from typing import Any, Callable, Dict, Optional

import yaml

from deskfleet.constants import SECRET_MODE, SYSTEMD_UNIT_DIR
from deskfleet.errors import CommandError, HostEnvironmentError
from deskfleet.errors_catalog import description, remediation
from deskfleet.models import FleetSettings

UNIT_TEMPLATE = """[Unit]
Description=DeskFleet DDNS reconciler for {domain}
After=network-online.target
Wants=network-online.target

[Service]
Type=simple
ExecStart={python} -m deskfleet.cli --config {settings_file} ddns
Restart=always
RestartSec=30
User=root

[Install]
WantedBy=multi-user.target
"""


class DdnsServiceInstaller:
    """Installs `deskfleet ddns` as a systemd unit that outlives the rebuild.

    The daemon reads a resolved settings snapshot (mode 0600, it holds the
    Cloudflare token) so it does not depend on the environment of the shell
    that ran the rebuild.
    """

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        unit_name: str = "deskfleet-ddns.service",
        unit_dir: str = SYSTEMD_UNIT_DIR,
        python: str = sys.executable,
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.unit_name = unit_name
        self.unit_dir = unit_dir
        self.python = python
        self.which = which

    @property
    def unit_file(self) -> str:
        return os.path.join(self.unit_dir, self.unit_name)

    def ensure_available(self):
        if self.which("systemctl") is None:
            raise HostEnvironmentError(
                description("service_manager_unavailable"),
                hint=remediation("service_manager_unavailable"),
            )

    @staticmethod
    def settings_snapshot(settings: FleetSettings) -> Dict[str, Any]:
        snapshot = {}
        for key, value in asdict(settings).items():
            snapshot[key] = list(value) if isinstance(value, tuple) else value
        return snapshot

    def write_settings(self, settings: FleetSettings, path: str) -> str:
        directory = os.path.dirname(path) or "."
        os.makedirs(directory, exist_ok=True)
        fd, temp_path = tempfile.mkstemp(prefix=".ddns-settings-", suffix=".yml", dir=directory)
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as file_obj:
                yaml.safe_dump(self.settings_snapshot(settings), file_obj, sort_keys=True, default_flow_style=False)
            os.chmod(temp_path, SECRET_MODE)
            os.replace(temp_path, path)
        finally:
            if os.path.exists(temp_path):
                os.remove(temp_path)
        return path

    def render_unit(self, settings: FleetSettings, settings_file: str) -> str:
        return UNIT_TEMPLATE.format(domain=settings.domain, python=self.python, settings_file=settings_file)

    def install(self, settings: FleetSettings, settings_file: str) -> str:
        self.ensure_available()
        self.write_settings(settings, settings_file)

        os.makedirs(self.unit_dir, exist_ok=True)
        with open(self.unit_file, "w", encoding="utf-8", newline="\n") as file_obj:
            file_obj.write(self.render_unit(settings, settings_file))

        self.run_cmd(["systemctl", "daemon-reload"], capture_output=True)
        self.run_cmd(["systemctl", "enable", self.unit_name], capture_output=True)
        self.run_cmd(["systemctl", "restart", self.unit_name], capture_output=True)
        self.logger.info("DDNS daemon installed as %s", self.unit_name)
        return self.unit_file

    def stop(self) -> bool:
        """Stops the unit if it was installed. Absent unit or systemd is not an error."""
        if not os.path.exists(self.unit_file) or self.which("systemctl") is None:
            return False
        try:
            self.run_cmd(["systemctl", "stop", self.unit_name], check=False, capture_output=True)
        except (CommandError, HostEnvironmentError) as exc:
            self.logger.warning("Could not stop %s: %s", self.unit_name, exc)
            return False
        return True

    def is_active(self) -> bool:
        if self.which("systemctl") is None:
            return False
        try:
            result = self.run_cmd(
                ["systemctl", "is-active", "--quiet", self.unit_name],
                check=False,
                capture_output=True,
            )
        except (CommandError, HostEnvironmentError) as exc:
            self.logger.debug("Could not query %s: %s", self.unit_name, exc)
            return False
        return result.returncode == 0
