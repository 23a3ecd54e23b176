"""
Tests for CascadeManager.

Covers subtree completeness, per-level batches, partial failure and
idempotent retry.
"""
import pytest

from trellis.exceptions import PartialCascadeFailure, StorageError, ValidationError
from trellis.managers.cascade_manager import CascadeManager
from trellis.managers.catalog_manager import CatalogManager
from trellis.managers.state import Action, ActionType


@pytest.fixture
def loaded_state(sample_catalog, state, clock):
    CatalogManager(sample_catalog, state, clock=clock).fetch_all()
    return state


@pytest.fixture
def cascade(sample_catalog, loaded_state, clock):
    return CascadeManager(sample_catalog, loaded_state, user_id="u1", clock=clock)


def _live_ids(store, collection):
    return {d["id"] for d in store.query_live(collection)}


class TestDeleteGroup:
    """Test group cascades."""

    def test_deletes_whole_subtree(self, cascade, store, loaded_state):
        group = loaded_state.find_group("pg-1")
        result = cascade.delete_group(group)

        assert set(result.group_ids) == {"pg-1", "pg-2"}
        assert set(result.phase_ids) == {"p-1", "p-2"}
        assert set(result.task_master_ids) == {"tm-1", "tm-2", "tm-3"}
        assert _live_ids(store, "phase_groups") == {"pg-3"}
        assert _live_ids(store, "phases") == {"p-3"}
        assert _live_ids(store, "task_masters") == {"tm-4"}

    def test_records_are_soft_deleted(self, cascade, store, loaded_state, clock):
        cascade.delete_group(loaded_state.find_group("pg-1"))

        doc = store.get("task_masters", "tm-3")
        assert doc is not None
        assert doc["deleted_by"] == "u1"
        assert doc["deleted_at"] == clock().isoformat()
        assert doc["name"] == "Lay pipes"

    def test_cache_and_tree_updated(self, cascade, loaded_state):
        cascade.delete_group(loaded_state.find_group("pg-1"))

        assert [g.id for g in loaded_state.state.phase_groups] == ["pg-3"]
        assert [p.id for p in loaded_state.state.phases] == ["p-3"]
        assert [t.id for t in loaded_state.state.task_masters] == ["tm-4"]

    def test_single_chain_scenario(self, store, state, clock, mock_data, add_records):
        add_records(
            mock_data.create_group("pg-1"),
            mock_data.create_phase("p-1", parent_group_id="pg-1"),
            mock_data.create_task_master("tm-1", phase_id="p-1"),
            mock_data.create_task_master("tm-2", phase_id="p-1"),
        )
        cascade = CascadeManager(store, state, "u1", clock)
        cascade.delete_group(mock_data.create_group("pg-1"))

        assert store.query_live("phase_groups") == []
        assert store.query_live("phases") == []
        assert store.query_live("task_masters") == []

    def test_one_batch_per_level(self, cascade, store, loaded_state, monkeypatch):
        batches = []
        original = store.batch_write

        def recording_batch_write(writes):
            batches.append(sorted(doc_id for _, doc_id, _ in writes))
            original(writes)

        monkeypatch.setattr(store, "batch_write", recording_batch_write)
        cascade.delete_group(loaded_state.find_group("pg-1"))

        # The nested group commits first, then the level holding it.
        assert batches == [
            ["p-2", "pg-2", "tm-3"],
            ["p-1", "pg-1", "tm-1", "tm-2"],
        ]

    def test_nested_chain_commits_deepest_first(self, store, state, clock, mock_data, add_records, monkeypatch):
        depth = 25
        add_records(
            mock_data.create_group("pg-0"),
            *[mock_data.create_group(f"pg-{i}", parent_group_id=f"pg-{i - 1}") for i in range(1, depth)],
            mock_data.create_phase("p-1", parent_group_id=f"pg-{depth - 1}"),
            mock_data.create_task_master("tm-1", phase_id="p-1"),
        )
        batches = []
        original = store.batch_write

        def recording_batch_write(writes):
            batches.append([doc_id for collection, doc_id, _ in writes if collection == "phase_groups"])
            original(writes)

        monkeypatch.setattr(store, "batch_write", recording_batch_write)
        result = CascadeManager(store, state, "u1", clock).delete_group(mock_data.create_group("pg-0"))

        assert batches == [[f"pg-{i}"] for i in reversed(range(depth))]
        assert len(result.group_ids) == depth
        assert result.task_master_ids == ["tm-1"]
        assert store.query_live("phase_groups") == []

    def test_already_deleted_group_rejected(self, cascade, loaded_state):
        group = loaded_state.find_group("pg-3")
        cascade.delete_group(group)
        with pytest.raises(ValidationError, match="already been deleted"):
            cascade.delete_group(group)

    def test_missing_group_rejected(self, cascade, mock_data):
        with pytest.raises(ValidationError):
            cascade.delete_group(mock_data.create_group("pg-nope"))


class TestPartialFailure:
    """Test failure after some levels committed."""

    def _fail_on_call(self, store, monkeypatch, failing_call):
        original = store.batch_write
        calls = []

        def flaky(writes):
            calls.append(1)
            if len(calls) == failing_call:
                raise StorageError("disk full")
            original(writes)

        monkeypatch.setattr(store, "batch_write", flaky)

    def test_failure_after_nested_commit_is_partial(self, cascade, store, loaded_state, monkeypatch):
        self._fail_on_call(store, monkeypatch, failing_call=2)

        with pytest.raises(PartialCascadeFailure) as exc_info:
            cascade.delete_group(loaded_state.find_group("pg-1"))

        error = exc_info.value
        assert set(error.committed_ids) == {"pg-2", "p-2", "tm-3"}
        assert isinstance(error.cause, StorageError)
        assert _live_ids(store, "phase_groups") == {"pg-1", "pg-3"}
        # Only the committed level left the cache.
        assert {g.id for g in loaded_state.state.phase_groups} == {"pg-1", "pg-3"}
        assert loaded_state.state.error is not None

    def test_failure_before_any_commit_is_plain(self, cascade, store, loaded_state, monkeypatch):
        self._fail_on_call(store, monkeypatch, failing_call=1)

        with pytest.raises(StorageError):
            cascade.delete_group(loaded_state.find_group("pg-1"))
        assert len(_live_ids(store, "phase_groups")) == 3

    def test_rerun_after_partial_failure_finishes(self, cascade, store, loaded_state, monkeypatch):
        self._fail_on_call(store, monkeypatch, failing_call=2)
        with pytest.raises(PartialCascadeFailure):
            cascade.delete_group(loaded_state.find_group("pg-1"))

        monkeypatch.undo()
        result = cascade.delete_group(loaded_state.find_group("pg-1"))

        assert set(result.group_ids) == {"pg-1"}
        assert set(result.task_master_ids) == {"tm-1", "tm-2"}
        assert _live_ids(store, "phase_groups") == {"pg-3"}
        assert _live_ids(store, "task_masters") == {"tm-4"}


class TestDeletePhase:
    """Test phase cascades."""

    def test_deletes_phase_and_task_masters_in_one_batch(self, cascade, store, loaded_state, monkeypatch):
        batches = []
        original = store.batch_write
        monkeypatch.setattr(store, "batch_write", lambda w: (batches.append(len(w)), original(w)))

        result = cascade.delete_phase(loaded_state.find_phase("p-1"))

        assert batches == [3]
        assert result.phase_ids == ["p-1"]
        assert set(result.task_master_ids) == {"tm-1", "tm-2"}
        assert _live_ids(store, "phases") == {"p-2", "p-3"}
        assert loaded_state.find_phase("p-1") is None

    def test_group_stays(self, cascade, store, loaded_state):
        cascade.delete_phase(loaded_state.find_phase("p-3"))
        assert "pg-3" in _live_ids(store, "phase_groups")


class TestDeleteTaskMaster:
    """Test single task master deletes."""

    def test_deletes_one(self, cascade, store, loaded_state):
        result = cascade.delete_task_master(loaded_state.find_task_master("tm-4"))
        assert result.task_master_ids == ["tm-4"]
        assert result.task_master_names == {"tm-4": "Paint walls"}
        assert "tm-4" not in _live_ids(store, "task_masters")

    def test_second_delete_is_noop(self, cascade, store, loaded_state, monkeypatch, data_dir):
        tm = loaded_state.find_task_master("tm-4")
        cascade.delete_task_master(tm)
        first = store.get("task_masters", "tm-4")

        writes = []
        original = store.batch_write
        monkeypatch.setattr(store, "batch_write", lambda w: (writes.append(w), original(w)))
        result = cascade.delete_task_master(tm)

        assert result.is_empty
        assert writes == []
        assert store.get("task_masters", "tm-4") == first

    def test_reports_orphaned_project_tasks(self, cascade, loaded_state, mock_data):
        project = mock_data.create_project(tasks=[
            mock_data.create_task(suffix="a", task_master_id="tm-4"),
            mock_data.create_task(suffix="b", task_master_id="tm-1"),
        ])
        loaded_state.dispatch(Action(ActionType.SET_PROJECTS, [project]))

        result = cascade.delete_task_master(loaded_state.find_task_master("tm-4"))
        assert result.orphaned_task_ids == ["proj1-a"]
