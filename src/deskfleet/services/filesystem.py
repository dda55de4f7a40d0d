"""Filesystem helpers for DeskFleet."""

import logging
import os
import shutil
import sys
from typing import Iterable, List, Tuple

from rich.console import Console

from deskfleet.constants import DIR_MODE
from deskfleet.errors import FleetError
from deskfleet.models import ProjectLayout


class FileSystemService:
    """Encapsulates file and directory side effects."""

    def __init__(self, logger: logging.Logger, console: Console):
        self.logger = logger
        self.console = console

    def set_permissions(self, path: str, mode: int):
        if sys.platform == "win32":
            return

        try:
            os.chmod(path, mode)
        except Exception as exc:
            self.logger.warning("Could not set permissions on %s: %s", path, exc)

    def ensure_directories(self, paths: Iterable[str], mode: int = DIR_MODE) -> List[str]:
        created = []
        for path in paths:
            if not os.path.isdir(path):
                os.makedirs(path, exist_ok=True)
                self.set_permissions(path, mode)
                created.append(path)
                self.logger.debug("Created directory: %s", path)
        return created

    def prepare_layout(self, layout: ProjectLayout, worker_names: Iterable[str]) -> List[str]:
        paths = [
            layout.root,
            layout.data_dir,
            layout.scripts_dir,
            layout.configs_dir,
            layout.logs_dir,
            layout.backups_dir,
            layout.dockerfiles_dir,
            layout.run_dir,
        ]
        for name in worker_names:
            paths.append(layout.worker_data_dir(name))
            paths.append(layout.worker_log_dir(name))
        return self.ensure_directories(paths)

    def copy_trees(self, source_root: str, names: Iterable[str], destination: str) -> Tuple[str, ...]:
        os.makedirs(destination, exist_ok=True)
        copied = []
        for name in names:
            source = os.path.join(source_root, name)
            if not os.path.exists(source):
                message = f"Skipping missing directory in backup: {source}"
                self.console.print(f"[yellow]{message}[/yellow]")
                self.logger.warning(message)
                continue
            try:
                shutil.copytree(source, os.path.join(destination, name), symlinks=True)
            except (shutil.Error, OSError) as exc:
                raise FleetError(f"Failed to copy {source} to {destination}: {exc}") from exc
            copied.append(name)
        return tuple(copied)

