"""Host firewall synchronization through ufw."""

import shutil
import threading
from contextlib import contextmanager
from typing import Callable, List, Optional

from deskfleet.errors import CommandError, HostEnvironmentError
from deskfleet.errors_catalog import description, remediation
from deskfleet.models import DesiredState, SyncResult


class FirewallSynchronizer:
    """Replaces the managed ufw rule set with the one a DesiredState requires.

    Every sync is a full reset followed by a fresh apply, so rules left over by
    a previous, larger fleet never survive. The firewall is briefly disabled
    during the reset; all access goes through a single re-entrant lock which the
    verification pass also holds.
    """

    def __init__(
        self,
        run_cmd: Callable,
        logger,
        ufw_binary: str = "ufw",
        which: Callable[[str], Optional[str]] = shutil.which,
    ):
        self.run_cmd = run_cmd
        self.logger = logger
        self.ufw_binary = ufw_binary
        self.which = which
        self._lock = threading.RLock()

    @contextmanager
    def exclusive(self):
        with self._lock:
            yield

    def ensure_available(self):
        if self.which(self.ufw_binary) is None:
            raise HostEnvironmentError(
                description("firewall_unavailable"),
                hint=remediation("firewall_unavailable"),
            )

    def plan(self, desired: DesiredState) -> List[List[str]]:
        ufw = self.ufw_binary
        commands = [
            [ufw, "--force", "disable"],
            [ufw, "--force", "reset"],
            [ufw, "default", "deny", "incoming"],
            [ufw, "default", "allow", "outgoing"],
        ]
        for rule in desired.firewall_rules:
            commands.append([ufw, "allow", rule.ufw_spec()])
        commands.append([ufw, "--force", "enable"])
        return commands

    def sync(self, desired: DesiredState) -> SyncResult:
        self.ensure_available()
        commands = self.plan(desired)

        with self.exclusive():
            self.logger.info("Resetting firewall and applying %s rules.", len(desired.firewall_rules))
            for cmd in commands:
                try:
                    self.run_cmd(cmd, capture_output=True)
                except CommandError as exc:
                    raise HostEnvironmentError(
                        f"Firewall command failed: {' '.join(cmd)}. {exc}",
                        hint="Inspect `ufw status verbose` and re-run the sync.",
                    ) from exc

        for rule in desired.firewall_rules:
            self.logger.debug("Allowed port %s", rule.ufw_spec())

        return SyncResult(rules=desired.firewall_rules, commands=tuple(tuple(cmd) for cmd in commands))

    def is_active(self) -> bool:
        if self.which(self.ufw_binary) is None:
            return False
        with self.exclusive():
            try:
                result = self.run_cmd([self.ufw_binary, "status"], check=False, capture_output=True)
            except (CommandError, HostEnvironmentError) as exc:
                self.logger.warning("Could not read firewall status: %s", exc)
                return False
        return result.returncode == 0 and "Status: active" in (result.stdout or "")
