import os

import pytest

from deskfleet.errors import FleetError
from deskfleet.models import ProjectLayout
from deskfleet.services.filesystem import FileSystemService


class DummyLogger:
    def debug(self, *_args, **_kwargs):
        return None

    def warning(self, *_args, **_kwargs):
        return None


class DummyConsole:
    def print(self, *_args, **_kwargs):
        return None


def test_prepare_layout_creates_worker_directories(tmp_path):
    service = FileSystemService(DummyLogger(), DummyConsole())
    layout = ProjectLayout(str(tmp_path / "fleet"))

    created = service.prepare_layout(layout, ["worker1", "worker2"])

    assert os.path.isdir(layout.worker_data_dir("worker2"))
    assert os.path.isdir(layout.worker_log_dir("worker1"))
    assert os.path.isdir(layout.run_dir)
    assert service.prepare_layout(layout, ["worker1", "worker2"]) == []
    assert layout.root in created


def test_copy_trees_skips_missing_sources(tmp_path):
    service = FileSystemService(DummyLogger(), DummyConsole())
    (tmp_path / "data" / "worker1").mkdir(parents=True)
    (tmp_path / "data" / "worker1" / "notes.txt").write_text("hello", encoding="utf-8")

    copied = service.copy_trees(str(tmp_path), ["data", "configs"], str(tmp_path / "backup"))

    assert copied == ("data",)
    assert (tmp_path / "backup" / "data" / "worker1" / "notes.txt").read_text(encoding="utf-8") == "hello"


def test_copy_trees_failure_is_fleet_error(tmp_path):
    service = FileSystemService(DummyLogger(), DummyConsole())
    (tmp_path / "data").mkdir()
    (tmp_path / "backup" / "data").mkdir(parents=True)

    with pytest.raises(FleetError, match="Failed to copy"):
        service.copy_trees(str(tmp_path), ["data"], str(tmp_path / "backup"))
