"""
TrellisCore - one client session of the Trellis tracker.

Wires the document store, the session state and the manager classes
together. Callers (the CLI, tests) talk to this class only.
"""

import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from trellis.exceptions import NotFoundError, PartialCascadeFailure, ValidationError
from trellis.managers import (
    CascadeManager,
    CascadeResult,
    CatalogManager,
    JsonStore,
    LockCoordinator,
    ProjectManager,
    StateStore,
    StoreAdapter,
    expanded_ids,
)
from trellis.managers.catalog_manager import CatalogEntry
from trellis.managers.lock_coordinator import default_name_resolver
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.models.files import ViewStateFile
from trellis.models.project import EditLock, Project
from trellis.models.tree import TreeNode
from trellis.utils import Clock, generate_uid

logger = logging.getLogger(__name__)


class TrellisCore:
    """
    Core class for one client session.

    Orchestrates manager classes:
    - JsonStore: Persistence to the .trellis/ folder
    - StateStore: Session caches
    - CatalogManager: Catalog fetch/add/update/resolve
    - CascadeManager: Catalog deletes
    - LockCoordinator: Project edit locks
    - ProjectManager: Projects and tasks
    """

    def __init__(
        self,
        data_dir: Optional[Path] = None,
        user_id: str = "",
        clock: Clock = datetime.now,
        store: Optional[StoreAdapter] = None,
        stale_after: Optional[timedelta] = None,
        resolve_name: Callable[[str], str] = default_name_resolver,
        detach_orphaned_tasks: bool = True,
    ):
        """
        Initialize the TrellisCore with a .trellis/ directory.

        Args:
            data_dir: Path to .trellis/ directory. Defaults to .trellis/ in current directory.
            user_id: Id of the session user, stamped into audit fields.
            clock: Source of the current time.
            store: Document store to use instead of a JsonStore over data_dir.
            stale_after: Edit lock staleness threshold. Defaults to config.
            resolve_name: Maps user ids to display names.
            detach_orphaned_tasks: Turn tasks of deleted task masters into ad-hoc tasks.
        """
        self.store = store if store is not None else JsonStore(data_dir)
        self.state = StateStore()
        self.user_id = user_id
        self.clock = clock
        self.detach_orphaned_tasks = detach_orphaned_tasks
        self.resolve_name = resolve_name

        self.catalog = CatalogManager(self.store, self.state, user_id, clock)
        self.cascade = CascadeManager(self.store, self.state, user_id, clock)
        self.locks = LockCoordinator(self.store, self.state, clock, stale_after, resolve_name)
        self.projects = ProjectManager(self.store, self.state, self.locks, user_id, clock)

    def load(self) -> None:
        """Fill the session caches from the store.

        With detach_orphaned_tasks set, project tasks still pointing at
        deleted task masters (left by an interrupted delete) are detached.
        """
        self.catalog.fetch_all()
        self.projects.fetch_projects()
        if self.detach_orphaned_tasks:
            self.projects.detach_deleted_task_masters()

    # =========================================================================
    # Catalog
    # =========================================================================

    def get_tree(self, search_text: str = "") -> List[TreeNode]:
        """Build the catalog tree from the session cache."""
        return self.catalog.get_tree(search_text)

    def get_expanded_ids(self, tree: List[TreeNode], search_text: str = "") -> List[str]:
        """Node ids to show expanded: all matches while searching, else the saved set."""
        saved = self._view_state().expanded_ids
        return expanded_ids(tree, search_text, saved)

    def set_expanded(self, node_id: str, expanded: bool = True) -> List[str]:
        """Remember that the user expanded or collapsed a tree node."""
        view = self._view_state()
        ids = [i for i in view.expanded_ids if i != node_id]
        if expanded:
            ids.append(node_id)
        if isinstance(self.store, JsonStore):
            self.store.save_view_state(ViewStateFile(expanded_ids=ids))
        return ids

    def _view_state(self) -> ViewStateFile:
        if isinstance(self.store, JsonStore):
            return self.store.load_view_state()
        return ViewStateFile()

    def resolve(self, record_id: str) -> Tuple[str, Optional[CatalogEntry]]:
        return self.catalog.resolve(record_id)

    def add_group(self, name: str, memo: str = "", parent_group_id: Optional[str] = None) -> CatalogGroup:
        return self.catalog.add_group(name, memo, parent_group_id)

    def add_phase(self, name: str, parent_group_id: str, memo: str = "") -> CatalogPhase:
        return self.catalog.add_phase(name, parent_group_id, memo)

    def add_task_master(
        self,
        name: str,
        phase_id: str,
        description: str = "",
        memo: str = "",
        primary_assignee: Optional[str] = None,
    ) -> CatalogTaskMaster:
        return self.catalog.add_task_master(name, phase_id, description, memo, primary_assignee)

    def delete_catalog_entry(self, record_id: str) -> CascadeResult:
        """Delete any catalog record by id, cascading to its subtree.

        Raises:
            NotFoundError: If the id does not resolve to a cached record.
        """
        kind, record = self.resolve(record_id)
        if kind == "phase_group":
            return self.delete_group(record)
        if kind == "phase":
            return self.delete_phase(record)
        if kind == "task_master":
            return self.delete_task_master(record)
        raise NotFoundError(f"Catalog entry '{record_id}' not found.")

    def delete_group(self, group: CatalogGroup) -> CascadeResult:
        try:
            result = self.cascade.delete_group(group)
        except PartialCascadeFailure:
            # Levels that committed may already have orphaned project tasks.
            if self.detach_orphaned_tasks:
                self.projects.detach_deleted_task_masters()
            raise
        return self._after_delete(result)

    def delete_phase(self, phase: CatalogPhase) -> CascadeResult:
        return self._after_delete(self.cascade.delete_phase(phase))

    def delete_task_master(self, task_master: CatalogTaskMaster) -> CascadeResult:
        return self._after_delete(self.cascade.delete_task_master(task_master))

    def _after_delete(self, result: CascadeResult) -> CascadeResult:
        if self.detach_orphaned_tasks:
            self.projects.detach_deleted_task_masters()
        elif result.orphaned_task_ids:
            logger.warning(
                "%d project task(s) still reference deleted task masters",
                len(result.orphaned_task_ids),
            )
        return result

    # =========================================================================
    # Projects
    # =========================================================================

    def get_project(self, project_id: str) -> Project:
        return self.projects.get_project(project_id)

    def create_project(
        self,
        name: str,
        project_type: str = "general",
        task_master_ids: Optional[List[str]] = None,
        task_names: Optional[List[str]] = None,
        memo: str = "",
        external_ref_id: Optional[str] = None,
    ) -> Project:
        """Create a project with tasks from catalog task masters and ad-hoc names.

        Raises:
            ValidationError: If a task master id is unknown or deleted.
        """
        project_id = generate_uid()
        tasks = []
        for tm_id in task_master_ids or []:
            if self.state.find_task_master(tm_id) is None:
                raise ValidationError(f"Task master '{tm_id}' does not exist or has been deleted.")
            tasks.append(self.projects.new_task(project_id, task_master_id=tm_id))
        for name_ in task_names or []:
            tasks.append(self.projects.new_task(project_id, task_name=name_))
        return self.projects.add_project(name, project_type, tasks, memo, external_ref_id, project_id)

    def acquire_lock(self, project: Project, requester_id: Optional[str] = None) -> EditLock:
        return self.locks.acquire_lock(project, requester_id or self.user_id)

    def release_lock(self, project: Project, releaser_id: Optional[str] = None) -> None:
        self.locks.release_lock(project, releaser_id)
