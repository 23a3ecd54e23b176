"""
Tests for JsonStore.

Covers live queries, optimistic transactions with conflict retry, atomic
batches and the config/view-state files.
"""
import json

import pytest

from trellis.exceptions import StorageError, TransientStoreError, ValidationError
from trellis.managers.storage_manager import JsonStore, Transaction, to_record
from trellis.models.catalog import CatalogPhase
from trellis.models.files import ConfigFile, ViewStateFile


def _doc(doc_id, **fields):
    return {"id": doc_id, "deleted_at": None, **fields}


class TestJsonStoreInitialization:
    """Test JsonStore initialization."""

    def test_creates_data_dir(self, temp_dir):
        nested = temp_dir / "nested" / ".trellis"
        JsonStore(nested)
        assert nested.exists()

    def test_default_path(self, monkeypatch, tmp_path):
        monkeypatch.chdir(tmp_path)
        store = JsonStore()
        assert str(store.data_dir) == ".trellis"
        assert (tmp_path / ".trellis").exists()

    def test_unknown_collection_rejected(self, store):
        with pytest.raises(ValueError, match="Unknown collection"):
            store.query_live("widgets")


class TestQueryLive:
    """Test filtered live queries."""

    def test_empty_collection(self, store):
        assert store.query_live("phases") == []

    def test_excludes_soft_deleted(self, store):
        store.batch_write([
            ("phases", "p-1", _doc("p-1", parent_group_id="pg-1")),
            ("phases", "p-2", {**_doc("p-2", parent_group_id="pg-1"), "deleted_at": "2024-04-01T09:00:00"}),
        ])
        assert [d["id"] for d in store.query_live("phases")] == ["p-1"]

    def test_empty_string_deleted_at_counts_as_live(self, store):
        store.batch_write([("phases", "p-1", {**_doc("p-1"), "deleted_at": ""})])
        assert len(store.query_live("phases")) == 1

    def test_equality_filters(self, store):
        store.batch_write([
            ("phases", "p-1", _doc("p-1", parent_group_id="pg-1")),
            ("phases", "p-2", _doc("p-2", parent_group_id="pg-2")),
        ])
        result = store.query_live("phases", {"parent_group_id": "pg-2"})
        assert [d["id"] for d in result] == ["p-2"]

    def test_ordered_by_updated_at(self, store):
        store.batch_write([
            ("phases", "p-late", _doc("p-late", updated_at="2024-04-02T00:00:00")),
            ("phases", "p-early", _doc("p-early", updated_at="2024-04-01T00:00:00")),
        ])
        assert [d["id"] for d in store.query_live("phases")] == ["p-early", "p-late"]

    def test_results_are_copies(self, store):
        store.batch_write([("phases", "p-1", _doc("p-1", name="Original"))])
        store.query_live("phases")[0]["name"] = "Changed"
        assert store.get("phases", "p-1")["name"] == "Original"


class TestGet:
    """Test single document reads."""

    def test_missing_returns_none(self, store):
        assert store.get("projects", "nope") is None

    def test_returns_deleted_documents(self, store):
        store.batch_write([("projects", "x", {**_doc("x"), "deleted_at": "2024-04-01T09:00:00"})])
        assert store.get("projects", "x")["id"] == "x"


class TestTransact:
    """Test optimistic transactions."""

    def test_commits_writes_and_returns_result(self, store):
        def fn(txn: Transaction):
            txn.set("phases", "p-1", _doc("p-1"))
            return "done"

        assert store.transact(fn) == "done"
        assert store.get("phases", "p-1") is not None

    def test_exception_aborts_without_writing(self, store):
        def fn(txn: Transaction):
            txn.set("phases", "p-1", _doc("p-1"))
            raise ValidationError("nope")

        with pytest.raises(ValidationError):
            store.transact(fn)
        assert store.get("phases", "p-1") is None

    def test_reads_see_own_writes(self, store):
        def fn(txn: Transaction):
            txn.set("phases", "p-1", _doc("p-1", name="Mine"))
            return txn.get("phases", "p-1")["name"]

        assert store.transact(fn) == "Mine"

    def test_conflicting_write_reruns_function(self, store, data_dir):
        store.batch_write([("projects", "x", _doc("x", counter=0))])
        other = JsonStore(data_dir)
        calls = []

        def fn(txn: Transaction):
            doc = txn.get("projects", "x")
            calls.append(doc["counter"])
            if len(calls) == 1:
                # Another session writes between our read and commit.
                other.batch_write([("projects", "x", {**doc, "counter": 10})])
            txn.set("projects", "x", {**doc, "counter": doc["counter"] + 1})

        store.transact(fn)

        assert calls == [0, 10]
        assert store.get("projects", "x")["counter"] == 11

    def test_gives_up_after_max_attempts(self, data_dir):
        store = JsonStore(data_dir, max_attempts=3)
        other = JsonStore(data_dir)
        store.batch_write([("projects", "x", _doc("x", counter=0))])
        calls = []

        def fn(txn: Transaction):
            doc = txn.get("projects", "x")
            calls.append(1)
            other.batch_write([("projects", "x", {**doc, "counter": doc["counter"] + 100})])
            txn.set("projects", "x", doc)

        with pytest.raises(TransientStoreError, match="3 attempts"):
            store.transact(fn)
        assert len(calls) == 3

    def test_unrelated_write_does_not_conflict(self, store, data_dir):
        store.batch_write([
            ("projects", "x", _doc("x")),
            ("projects", "y", _doc("y")),
        ])
        other = JsonStore(data_dir)
        calls = []

        def fn(txn: Transaction):
            doc = txn.get("projects", "x")
            calls.append(1)
            if len(calls) == 1:
                other.batch_write([("projects", "y", _doc("y", name="changed"))])
            txn.set("projects", "x", {**doc, "name": "mine"})

        store.transact(fn)
        assert len(calls) == 1


class TestBatchWrite:
    """Test atomic batches."""

    def test_writes_across_collections(self, store):
        store.batch_write([
            ("phase_groups", "pg-1", _doc("pg-1")),
            ("phases", "p-1", _doc("p-1")),
            ("task_masters", "tm-1", _doc("tm-1")),
        ])
        assert store.get("phase_groups", "pg-1")
        assert store.get("phases", "p-1")
        assert store.get("task_masters", "tm-1")

    def test_empty_batch_is_noop(self, store, data_dir):
        store.batch_write([])
        assert list(data_dir.glob("*.json")) == []

    def test_bumps_versions(self, store, data_dir):
        store.batch_write([("phases", "p-1", _doc("p-1"))])
        store.batch_write([("phases", "p-1", _doc("p-1", name="again"))])
        data = json.loads((data_dir / "phases.json").read_text())
        assert data["versions"]["p-1"] == 2

    def test_leaves_no_temp_files(self, store, data_dir):
        store.batch_write([("phases", "p-1", _doc("p-1"))])
        assert list(data_dir.glob(".tmp_trellis_*")) == []


class TestCorruptFiles:
    """Test unreadable collection files."""

    def test_invalid_json_raises_storage_error(self, store, data_dir):
        (data_dir / "phases.json").write_text("{not json")
        with pytest.raises(StorageError, match="phases.json"):
            store.query_live("phases")

    def test_storage_error_is_transient(self):
        assert issubclass(StorageError, TransientStoreError)

    def test_to_record_rejects_malformed_document(self):
        with pytest.raises(StorageError, match="malformed"):
            to_record(CatalogPhase, {"id": "p-1", "name": "No parent"})


class TestConfigAndViewState:
    """Test the side files."""

    def test_load_config_defaults(self, store):
        config = store.load_config()
        assert isinstance(config, ConfigFile)
        assert config.lock_stale_minutes == 10
        assert config.transaction_attempts == 5

    def test_save_and_load_config(self, store):
        store.save_config(ConfigFile(lock_stale_minutes=3, user_names={"u1": "Alice"}))
        config = store.load_config()
        assert config.lock_stale_minutes == 3
        assert config.user_names == {"u1": "Alice"}

    def test_save_and_load_view_state(self, store):
        assert store.load_view_state().expanded_ids == []
        store.save_view_state(ViewStateFile(expanded_ids=["root", "pg-1"]))
        assert store.load_view_state().expanded_ids == ["root", "pg-1"]
