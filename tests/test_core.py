"""
Tests for TrellisCore wiring.
"""
import pytest

from trellis.core import TrellisCore
from trellis.exceptions import NotFoundError, PartialCascadeFailure, StorageError, ValidationError


@pytest.fixture
def core(sample_catalog, data_dir, clock):
    session = TrellisCore(data_dir=data_dir, user_id="u1", clock=clock)
    session.load()
    return session


class TestCoreCatalog:
    """Test catalog operations through the core."""

    def test_load_fills_caches(self, core):
        assert len(core.state.state.phase_groups) == 3
        assert core.state.state.projects == ()

    def test_delete_catalog_entry_dispatches_by_kind(self, core):
        assert core.delete_catalog_entry("p-3").phase_ids == ["p-3"]
        assert core.delete_catalog_entry("tm-1").task_master_ids == ["tm-1"]
        assert set(core.delete_catalog_entry("pg-1").group_ids) == {"pg-1", "pg-2"}

    def test_delete_unknown_entry(self, core):
        with pytest.raises(NotFoundError):
            core.delete_catalog_entry("pg-nope")

    def test_expanded_state_persists(self, core, data_dir, clock):
        core.set_expanded("pg-1")
        core.set_expanded("pg-3")
        core.set_expanded("pg-1", expanded=False)

        other = TrellisCore(data_dir=data_dir, clock=clock)
        other.load()
        tree = other.get_tree()
        assert other.get_expanded_ids(tree) == ["pg-3"]

    def test_search_overrides_saved_expansion(self, core):
        core.set_expanded("pg-3")
        tree = core.get_tree("pipes")
        assert "pg-3" not in core.get_expanded_ids(tree, "pipes")


class TestCoreProjects:
    """Test project operations through the core."""

    def test_create_project_builds_tasks(self, core):
        project = core.create_project("House", task_master_ids=["tm-1", "tm-3"], task_names=["Visit"])
        assert [t.task_master_id for t in project.tasks] == ["tm-1", "tm-3", ""]
        assert all(t.id.startswith(f"{project.id}-") for t in project.tasks)

    def test_create_project_rejects_unknown_task_master(self, core):
        with pytest.raises(ValidationError):
            core.create_project("House", task_master_ids=["tm-nope"])

    def test_orphans_detached_by_default(self, core):
        project = core.create_project("House", task_master_ids=["tm-3"])
        core.delete_catalog_entry("pg-2")

        task = core.get_project(project.id).tasks[0]
        assert task.is_ad_hoc
        assert task.task_name == "Lay pipes"

    def test_orphans_kept_when_detach_disabled(self, sample_catalog, data_dir, clock):
        session = TrellisCore(data_dir=data_dir, user_id="u1", clock=clock, detach_orphaned_tasks=False)
        session.load()
        project = session.create_project("House", task_master_ids=["tm-3"])

        result = session.delete_catalog_entry("tm-3")

        assert result.orphaned_task_ids == [project.tasks[0].id]
        assert session.get_project(project.id).tasks[0].task_master_id == "tm-3"

    def test_acquire_defaults_to_session_user(self, core):
        project = core.create_project("House")
        assert core.acquire_lock(project).holder_id == "u1"
        core.release_lock(project, "u1")
        assert core.get_project(project.id).lock is None


class TestInterruptedDeletes:
    """Test that project tasks never stay tied to deleted task masters."""

    def _fail_batch(self, core, monkeypatch, failing_call):
        original = core.store.batch_write
        calls = []

        def flaky(writes):
            calls.append(1)
            if len(calls) == failing_call:
                raise StorageError("disk full")
            original(writes)

        monkeypatch.setattr(core.store, "batch_write", flaky)

    def test_partial_cascade_detaches_committed_levels(self, core, monkeypatch):
        project = core.create_project("House", task_master_ids=["tm-3", "tm-1"])
        self._fail_batch(core, monkeypatch, failing_call=2)

        with pytest.raises(PartialCascadeFailure):
            core.delete_catalog_entry("pg-1")

        tasks = core.get_project(project.id).tasks
        assert (tasks[0].task_master_id, tasks[0].task_name) == ("", "Lay pipes")
        assert tasks[1].task_master_id == "tm-1"

        monkeypatch.undo()
        core.delete_catalog_entry("pg-1")

        tasks = core.get_project(project.id).tasks
        assert [t.task_master_id for t in tasks] == ["", ""]
        assert [t.task_name for t in tasks] == ["Lay pipes", "Pour concrete"]

    def test_failed_detach_is_repaired_on_load(self, core, data_dir, clock, monkeypatch):
        project = core.create_project("House", task_master_ids=["tm-4"])

        def broken(names_by_id):
            raise StorageError("disk full")

        monkeypatch.setattr(core.projects, "detach_task_masters", broken)
        with pytest.raises(StorageError):
            core.delete_catalog_entry("tm-4")
        assert core.get_project(project.id).tasks[0].task_master_id == "tm-4"

        fresh = TrellisCore(data_dir=data_dir, user_id="u1", clock=clock)
        fresh.load()

        task = fresh.get_project(project.id).tasks[0]
        assert (task.task_master_id, task.task_name) == ("", "Paint walls")

    def test_repeat_delete_after_failed_detach(self, core, monkeypatch):
        project = core.create_project("House", task_master_ids=["tm-4"])
        task_master = core.state.find_task_master("tm-4")
        calls = []

        original = core.projects.detach_task_masters

        def fail_once(names_by_id):
            calls.append(1)
            if len(calls) == 1:
                raise StorageError("disk full")
            return original(names_by_id)

        monkeypatch.setattr(core.projects, "detach_task_masters", fail_once)
        with pytest.raises(StorageError):
            core.delete_task_master(task_master)

        result = core.delete_task_master(task_master)

        assert result.is_empty
        assert core.get_project(project.id).tasks[0].task_name == "Paint walls"
