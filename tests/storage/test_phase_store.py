"""
Tests for the phase checkpoint stores.
"""

import json

import pytest

from core.exceptions import StorageError
from storage.phase_store import (
    FilesystemPhaseStore,
    InMemoryPhaseStore,
    checkpoint_key,
    lineage_key,
    metrics_key,
)
from storage.sql_phase_store import SqlPhaseStore, _document_kind


@pytest.fixture(params=["memory", "filesystem", "sql"])
def store(request, tmp_path):
    if request.param == "memory":
        return InMemoryPhaseStore()
    if request.param == "filesystem":
        return FilesystemPhaseStore(str(tmp_path / "state"))
    return SqlPhaseStore(f"sqlite:///{tmp_path / 'pipeline.db'}")


class TestKeys:

    def test_key_helpers(self):
        assert checkpoint_key("phase3") == "phase3-result"
        assert metrics_key("2026-01-15") == "metrics-2026-01-15"
        assert lineage_key("2026-01-15") == "lineage-2026-01-15"

    @pytest.mark.parametrize("key,kind", [
        ("phase3-result", "checkpoint"),
        ("lineage-2026-01-15", "lineage"),
        ("metrics-2026-01-15", "metrics"),
    ])
    def test_document_kind(self, key, kind):
        assert _document_kind(key) == kind


class TestPhaseStore:

    def test_save_and_load_checkpoint(self, store):
        document = {"phase": "phase1", "date": "2026-01-15", "marketData": {"SP500": 5200.5}}

        store.save_checkpoint("phase1", document)

        assert store.load_checkpoint("phase1") == document
        assert store.exists("phase1-result")

    def test_missing_document_is_none(self, store):
        assert store.load_checkpoint("phase4") is None
        assert store.exists("phase4-result") is False

    def test_save_replaces(self, store):
        store.save("metrics-2026-01-15", {"aborted": False})
        store.save("metrics-2026-01-15", {"aborted": True})

        assert store.load("metrics-2026-01-15") == {"aborted": True}
        assert store.keys() == ["metrics-2026-01-15"]

    def test_delete(self, store):
        store.save("lineage-2026-01-15", {"records": []})

        assert store.delete("lineage-2026-01-15") is True
        assert store.delete("lineage-2026-01-15") is False
        assert store.keys() == []

    def test_invalid_key_rejected(self, store):
        with pytest.raises(StorageError):
            store.save("../escape", {})


class TestInMemoryPhaseStore:

    def test_documents_are_copied(self):
        store = InMemoryPhaseStore()
        document = {"marketData": {"TAIEX": 22458}}
        store.save("phase2-result", document)

        document["marketData"]["TAIEX"] = 0
        loaded = store.load("phase2-result")
        loaded["marketData"]["TAIEX"] = 1

        assert store.load("phase2-result")["marketData"]["TAIEX"] == 22458


class TestFilesystemPhaseStore:

    def test_writes_pretty_json(self, tmp_path):
        store = FilesystemPhaseStore(str(tmp_path))

        store.save("phase3-result", {"hasErrors": False})

        path = tmp_path / "phase3-result.json"
        assert json.loads(path.read_text(encoding="utf-8")) == {"hasErrors": False}
        assert list(tmp_path.glob("*.tmp")) == []

    def test_unserializable_document_raises_storage_error(self, tmp_path):
        store = FilesystemPhaseStore(str(tmp_path))

        with pytest.raises(StorageError):
            store.save("phase3-result", {"bad": object()})

        assert list(tmp_path.glob("*.tmp")) == []

    def test_corrupt_file_raises_storage_error(self, tmp_path):
        store = FilesystemPhaseStore(str(tmp_path))
        (tmp_path / "phase1-result.json").write_text("{oops", encoding="utf-8")

        with pytest.raises(StorageError):
            store.load_checkpoint("phase1")


class TestSqlPhaseStore:

    def test_requires_url_or_engine(self):
        with pytest.raises(StorageError):
            SqlPhaseStore()

    def test_documents_survive_new_store_instance(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'pipeline.db'}"
        SqlPhaseStore(url).save("phase2-result", {"marketData": {"TAIEX": 22458}})

        reopened = SqlPhaseStore(url)

        assert reopened.load("phase2-result") == {"marketData": {"TAIEX": 22458}}
