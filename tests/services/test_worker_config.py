import json
import os
import stat

import pytest

from deskfleet.errors import ConfigError
from deskfleet.models import ProjectLayout
from deskfleet.services.worker_config import WorkerConfigStore


class DummyLogger:
    def info(self, *_args, **_kwargs):
        return None


def make_store(tmp_path):
    return WorkerConfigStore(ProjectLayout(str(tmp_path)), DummyLogger())


def test_save_writes_private_json(tmp_path):
    store = make_store(tmp_path)

    path = store.save("worker1", store.template("worker1"))

    assert path == str(tmp_path / "configs" / "worker1.json")
    assert json.loads(open(path, encoding="utf-8").read())["credentials"]["username"] == "worker1@example.com"
    if os.name == "posix":
        assert stat.S_IMODE(os.stat(path).st_mode) == 0o600
    assert [name for name in os.listdir(tmp_path / "configs") if name.startswith(".")] == []


def test_validate_rejects_missing_keys(tmp_path):
    store = make_store(tmp_path)

    with pytest.raises(ConfigError, match="trackerUrl"):
        store.validate("worker1", {"targetSiteUrl": "x", "credentials": {}, "fieldSelectors": {}})
    with pytest.raises(ConfigError, match="not a JSON object"):
        store.validate("worker1", ["not", "a", "mapping"])


def test_load_missing_and_corrupt_files(tmp_path):
    store = make_store(tmp_path)

    with pytest.raises(ConfigError, match="deskfleet config worker1"):
        store.load("worker1")

    (tmp_path / "configs").mkdir()
    (tmp_path / "configs" / "worker1.json").write_text("{broken", encoding="utf-8")
    with pytest.raises(ConfigError, match="invalid"):
        store.load("worker1")


def test_ensure_templates_only_fills_gaps(tmp_path):
    store = make_store(tmp_path)
    custom = dict(store.template("worker2"), targetSiteUrl="https://custom")
    store.save("worker2", custom)

    created = store.ensure_templates(3)

    assert created == ["worker1", "worker3"]
    assert store.load("worker2")["targetSiteUrl"] == "https://custom"
    assert sorted(store.load_all(3)) == [1, 2, 3]


def test_load_all_skips_absent_workers(tmp_path):
    store = make_store(tmp_path)
    store.save("worker2", store.template("worker2"))

    assert list(store.load_all(3)) == [2]
