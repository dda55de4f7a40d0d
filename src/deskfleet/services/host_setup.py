"""Host dependency installation for DeskFleet."""

import os
from typing import Callable, Sequence

from deskfleet.errors import HostEnvironmentError
from deskfleet.errors_catalog import description, remediation


class HostSetupService:
    """Installs the packages the fleet needs on a Debian/Ubuntu host."""

    APT_RETRY_COUNT = 2
    APT_RETRY_BACKOFF_SECONDS = 5.0

    def __init__(self, run_cmd: Callable, logger, console, geteuid: Callable[[], int] = os.geteuid):
        self.run_cmd = run_cmd
        self.logger = logger
        self.console = console
        self.geteuid = geteuid

    def ensure_root(self):
        if self.geteuid() != 0:
            raise HostEnvironmentError(description("not_root"), hint=remediation("not_root"))

    def install(self, packages: Sequence[str]):
        self.ensure_root()

        self.console.print("[blue]Updating package lists...[/blue]")
        self.run_cmd(
            ["apt-get", "update", "-y"],
            capture_output=True,
            retry_count=self.APT_RETRY_COUNT,
            retry_backoff_seconds=self.APT_RETRY_BACKOFF_SECONDS,
        )

        if packages:
            self.console.print(f"[blue]Installing {len(packages)} host packages...[/blue]")
            self.logger.info("Installing host packages: %s", ", ".join(packages))
            self.run_cmd(
                ["apt-get", "install", "-y", *packages],
                capture_output=True,
                retry_count=self.APT_RETRY_COUNT,
                retry_backoff_seconds=self.APT_RETRY_BACKOFF_SECONDS,
            )

        self.run_cmd(["systemctl", "enable", "--now", "docker"], capture_output=True)
        self.console.print("[green]Host dependencies installed.[/green]")
