"""Fleet lifecycle operations against the container runtime."""

import os
from contextlib import contextmanager
from datetime import datetime
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from deskfleet.constants import BACKUP_TREES
from deskfleet.errors import CommandError, ContainerRuntimeError, HostEnvironmentError, NotFoundError
from deskfleet.models import (
    BackupResult,
    DesiredState,
    LifecycleResult,
    ProjectLayout,
    RuntimeObservation,
)


class FleetLifecycleManager:
    """Start/stop/status/shell/backup/teardown for the whole fleet or one worker.

    Desired state is recomputed through `desired_state` on every call, and the
    compose definition is rewritten from it before the runtime is touched.
    None of the operations retry; runtime failures surface as
    ContainerRuntimeError carrying the operation and the target.
    """

    def __init__(
        self,
        runtime,
        layout: ProjectLayout,
        filesystem,
        logger,
        desired_state: Callable[[], DesiredState],
        now: Callable[[], datetime] = datetime.now,
    ):
        self.runtime = runtime
        self.layout = layout
        self.filesystem = filesystem
        self.logger = logger
        self.desired_state = desired_state
        self.now = now

    def _call(self, operation: str, target: Optional[str], func: Callable, *args, **kwargs):
        try:
            return func(*args, **kwargs)
        except (CommandError, HostEnvironmentError) as exc:
            raise ContainerRuntimeError(operation, target, exc) from exc

    def _resolve(self, target: Optional[str]) -> Tuple[DesiredState, Tuple[str, ...]]:
        desired = self.desired_state()
        if target is None:
            return desired, desired.names
        if desired.worker(target) is None:
            known = ", ".join(desired.names) or "<none>"
            raise NotFoundError(f"Unknown worker '{target}'. Known workers: {known}.")
        return desired, (target,)

    def _prepare(self, target: Optional[str]) -> Tuple[DesiredState, Tuple[str, ...]]:
        desired, services = self._resolve(target)
        self.runtime.write_definition(desired)
        return desired, services

    def build(self) -> LifecycleResult:
        _, services = self._prepare(None)
        self.logger.info("Building worker image for %s workers.", len(services))
        self._call("build", None, self.runtime.build)
        return LifecycleResult("build", None, services)

    def up(self, target: Optional[str] = None) -> LifecycleResult:
        _, services = self._prepare(target)
        self.logger.info("Starting %s", target or "all workers")
        self._call("up", target, self.runtime.up, services if target else ())
        return LifecycleResult("up", target, services)

    def down(self, target: Optional[str] = None) -> LifecycleResult:
        _, services = self._prepare(target)
        self.logger.info("Stopping %s", target or "all workers")
        self._call("down", target, self.runtime.down, services if target else ())
        return LifecycleResult("down", target, services)

    def restart(self, target: Optional[str] = None) -> LifecycleResult:
        _, services = self._prepare(target)
        self.logger.info("Restarting %s", target or "all workers")
        self._call("restart", target, self.runtime.restart, services if target else ())
        return LifecycleResult("restart", target, services)

    def status(self, target: Optional[str] = None) -> List[RuntimeObservation]:
        _, services = self._resolve(target)
        entries = self._call("ps", target, self.runtime.ps)
        by_name: Dict[str, dict] = {entry["name"]: entry for entry in entries}

        running_names = [name for name in services if by_name.get(name, {}).get("state") == "running"]
        usage = {item["name"]: item for item in self._call("stats", target, self.runtime.stats, running_names)}

        observations = []
        for name in services:
            entry = by_name.get(name)
            if entry is None:
                observations.append(RuntimeObservation(name=name, running=False, status="missing"))
                continue
            stats = usage.get(entry.get("container") or name) or usage.get(name, {})
            observations.append(
                RuntimeObservation(
                    name=name,
                    running=entry.get("state") == "running",
                    ports=frozenset(entry.get("ports") or ()),
                    cpu=stats.get("cpu", ""),
                    memory=stats.get("mem", ""),
                    status=entry.get("status") or entry.get("state", ""),
                )
            )
        return observations

    def shell(self, target: str, command: Sequence[str] = ("bash",)) -> LifecycleResult:
        observation = self.status(target)[0]
        if not observation.running:
            raise NotFoundError(f"Worker '{target}' is not running ({observation.status or 'stopped'}).")
        self._call("exec", target, self.runtime.exec, target, list(command), interactive=True)
        return LifecycleResult("shell", target, (target,))

    def logs(self, target: Optional[str] = None, follow: bool = False, tail: Optional[int] = None) -> LifecycleResult:
        _, services = self._prepare(target)
        self._call("logs", target, self.runtime.logs, services if target else (), follow=follow, tail=tail)
        return LifecycleResult("logs", target, services)

    def _resume(self, failure: Optional[BaseException] = None):
        self.logger.info("Restarting fleet after backup.")
        try:
            self._call("start", None, self.runtime.start)
        except ContainerRuntimeError as exc:
            if failure is None:
                raise
            # the earlier failure is the one reported
            self.logger.error("Restarting the fleet also failed: %s", exc)

    @contextmanager
    def _fleet_paused(self):
        try:
            self._call("stop", None, self.runtime.stop)
        except ContainerRuntimeError as exc:
            # some workers may already be stopped
            self._resume(failure=exc)
            raise
        try:
            yield
        except BaseException as exc:
            self._resume(failure=exc)
            raise
        self._resume()

    def _backup_destination(self) -> str:
        stamp = self.now().strftime("%Y%m%d_%H%M%S")
        destination = os.path.join(self.layout.backups_dir, stamp)
        counter = 1
        while os.path.exists(destination):
            destination = os.path.join(self.layout.backups_dir, f"{stamp}_{counter}")
            counter += 1
        return destination

    def backup(self) -> BackupResult:
        self._prepare(None)
        destination = self._backup_destination()
        self.logger.info("Backing up fleet data to %s", destination)

        with self._fleet_paused():
            copied = self.filesystem.copy_trees(self.layout.root, BACKUP_TREES, destination)

        return BackupResult(path=destination, copied=copied)

    def teardown(self) -> LifecycleResult:
        removed = self._call("teardown", None, self.runtime.teardown)
        detail = f"removed {len(removed)} leftover containers" if removed else "nothing left to remove"
        return LifecycleResult("teardown", None, tuple(removed), detail=detail)
