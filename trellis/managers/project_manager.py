"""
ProjectManager for Trellis.

Project and task lifecycle. Tasks are embedded in their project document,
so every task change is a write of the whole project.
"""

import logging
from datetime import date, datetime
from typing import Dict, List, Optional, Sequence, Tuple

from trellis.constants import COLLECTION_PROJECTS, COLLECTION_TASK_MASTERS, TASK_STATUS_NOT_STARTED
from trellis.exceptions import LockLostError, NotFoundError, ValidationError
from trellis.managers.lock_coordinator import LockCoordinator
from trellis.managers.state import Action, ActionType, StateStore
from trellis.managers.storage_manager import StoreAdapter, Transaction, to_record
from trellis.models.project import Project, Task
from trellis.utils import Clock, generate_uid

logger = logging.getLogger(__name__)


class ProjectManager:
    """
    Manages projects and their embedded tasks.

    Handles:
    - Fetching live, incomplete projects into the session cache
    - Creating projects with their initial tasks
    - Lock-checked project and task updates
    - Completing and soft-deleting projects
    - Turning tasks of deleted task masters into ad-hoc tasks
    """

    def __init__(
        self,
        store: StoreAdapter,
        state: StateStore,
        locks: LockCoordinator,
        user_id: str = "",
        clock: Clock = datetime.now,
    ) -> None:
        self.store = store
        self.state = state
        self.locks = locks
        self.user_id = user_id
        self.clock = clock

    def _read_live(self, txn: Transaction, project_id: str) -> Project:
        doc = txn.get(COLLECTION_PROJECTS, project_id)
        if doc is None or doc.get("deleted_at"):
            raise ValidationError(f"Project '{project_id}' does not exist or has been deleted.")
        return to_record(Project, doc)

    def _write(self, txn: Transaction, project: Project) -> None:
        txn.set(COLLECTION_PROJECTS, project.id, project.model_dump(mode="json"))

    @staticmethod
    def _check_holder(current: Project, editor_id: str) -> None:
        """Fail if the lock changed hands after verify_lock."""
        if current.lock is None or current.lock.holder_id != editor_id:
            raise LockLostError(editor_id)

    # =========================================================================
    # Fetch
    # =========================================================================

    def fetch_projects(self) -> List[Project]:
        """Load live, incomplete projects into the cache, oldest update first."""
        with self.state.operation():
            docs = self.store.query_live(COLLECTION_PROJECTS, {"is_completed": False})
            projects = [to_record(Project, doc) for doc in docs]
            self.state.dispatch(Action(ActionType.SET_PROJECTS, projects))
        logger.info("Loaded %d project(s)", len(projects))
        return projects

    def get_project(self, project_id: str) -> Project:
        """Read one live project straight from the store.

        Raises:
            NotFoundError: If the project is missing or deleted.
        """
        doc = self.store.get(COLLECTION_PROJECTS, project_id)
        if doc is None or doc.get("deleted_at"):
            raise NotFoundError(f"Project '{project_id}' not found.")
        return to_record(Project, doc)

    # =========================================================================
    # Create
    # =========================================================================

    def new_task(
        self,
        project_id: str,
        task_master_id: str = "",
        task_name: str = "",
        assignee_id: str = "",
        due_date: Optional[date] = None,
        memo: str = "",
        status: str = TASK_STATUS_NOT_STARTED,
    ) -> Task:
        """Build (but do not save) a task for a project.

        Exactly one of task_master_id and task_name must be given.

        Raises:
            ValidationError: If both or neither source is given, or a field is invalid.
        """
        if bool(task_master_id) == bool(task_name):
            raise ValidationError("Give either a task master id or an ad-hoc task name, not both.")
        try:
            task = Task(
                id=f"{project_id}-{generate_uid()}",
                project_id=project_id,
                task_master_id=task_master_id,
                task_name=task_name,
                status=status,
                assignee_id=assignee_id,
                due_date=due_date,
                memo=memo,
            )
        except ValueError as e:
            raise ValidationError(str(e))
        task.stamp_created(self.user_id, self.clock())
        return task

    def add_project(
        self,
        name: str,
        project_type: str = "general",
        tasks: Optional[Sequence[Task]] = None,
        memo: str = "",
        external_ref_id: Optional[str] = None,
        project_id: Optional[str] = None,
    ) -> Project:
        """Create a project with its initial tasks.

        Args:
            name: Project name.
            project_type: 'construction' or 'general'.
            tasks: Tasks built with new_task() for this project's id.
            memo: Free text.
            external_ref_id: Id in an outside system, if any.
            project_id: Id to use; tasks built beforehand must carry it.

        Raises:
            ValidationError: If a field is invalid, the id is taken, or a
                task belongs to another project.
        """
        project_id = project_id or generate_uid()
        tasks = list(tasks or [])
        for task in tasks:
            if task.project_id != project_id:
                raise ValidationError(f"Task '{task.id}' belongs to project '{task.project_id}', not '{project_id}'.")

        with self.state.operation():
            try:
                project = Project(
                    id=project_id,
                    name=name,
                    project_type=project_type,
                    memo=memo,
                    external_ref_id=external_ref_id,
                    tasks=tasks,
                )
            except ValueError as e:
                raise ValidationError(str(e))
            project.stamp_created(self.user_id, self.clock())

            def _create(txn: Transaction) -> None:
                if txn.get(COLLECTION_PROJECTS, project.id) is not None:
                    raise ValidationError(f"Project '{project.id}' already exists.")
                self._write(txn, project)

            self.store.transact(_create)
            self.state.dispatch(Action(ActionType.ADD_PROJECT, project))
        logger.info("Created project %s (%s) with %d task(s)", project.id, project.name, len(tasks))
        return project

    # =========================================================================
    # Update
    # =========================================================================

    def update_project(self, project: Project, editor_id: str) -> Project:
        """Save a project edited by the current lock holder.

        The lock field and creation stamps are kept as stored.

        Raises:
            ContentionError: If the editor does not hold the edit lock.
            ValidationError: If the project was deleted meanwhile.
        """
        with self.state.operation():
            self.locks.verify_lock(project, editor_id)
            now = self.clock()

            def _save(txn: Transaction) -> Project:
                current = self._read_live(txn, project.id)
                self._check_holder(current, editor_id)
                updated = project.model_copy(
                    update={
                        "lock": current.lock,
                        "created_by": current.created_by,
                        "created_at": current.created_at,
                    }
                )
                updated.stamp_updated(editor_id, now)
                self._write(txn, updated)
                return updated

            saved = self.store.transact(_save)
            self.state.dispatch(Action(ActionType.UPDATE_PROJECT, saved))
        return saved

    def update_task(self, project_id: str, task: Task, editor_id: str) -> Task:
        """Replace one embedded task, checking the editor holds the project lock.

        Raises:
            NotFoundError: If the project has no task with that id.
            ContentionError: If the editor does not hold the edit lock.
        """
        with self.state.operation():
            project = self.get_project(project_id)
            self.locks.verify_lock(project, editor_id)
            now = self.clock()

            def _save(txn: Transaction) -> Project:
                current = self._read_live(txn, project_id)
                self._check_holder(current, editor_id)
                updated = task.model_copy()
                updated.stamp_updated(editor_id, now)
                try:
                    current.replace_task(updated)
                except KeyError:
                    raise NotFoundError(f"Task '{task.id}' not found in project '{project_id}'.")
                current.stamp_updated(editor_id, now)
                self._write(txn, current)
                return current

            saved = self.store.transact(_save)
            self.state.dispatch(Action(ActionType.UPDATE_PROJECT, saved))
            self.state.dispatch(Action(ActionType.UPDATE_TASK, saved.get_task(task.id)))
        return saved.get_task(task.id)

    def complete_project(self, project: Project) -> Project:
        """Mark a project completed; completed projects leave the cache."""
        with self.state.operation():
            now = self.clock()

            def _complete(txn: Transaction) -> Project:
                current = self._read_live(txn, project.id)
                current.is_completed = True
                current.lock = None
                current.stamp_updated(self.user_id, now)
                self._write(txn, current)
                return current

            completed = self.store.transact(_complete)
            self.state.dispatch(Action(ActionType.UPDATE_PROJECT, completed))
        logger.info("Completed project %s", project.id)
        return completed

    def delete_project(self, project: Project) -> Project:
        """Soft-delete a project and every task embedded in it."""
        with self.state.operation():
            now = self.clock()

            def _delete(txn: Transaction) -> Project:
                current = self._read_live(txn, project.id)
                for task in current.tasks:
                    if not task.is_deleted:
                        task.soft_delete(self.user_id, now)
                current.lock = None
                current.soft_delete(self.user_id, now)
                self._write(txn, current)
                return current

            deleted = self.store.transact(_delete)
            self.state.dispatch(Action(ActionType.DELETE_PROJECT, deleted.id))
        logger.info("Deleted project %s with %d task(s)", project.id, len(deleted.tasks))
        return deleted

    def detach_task_masters(self, names_by_id: Dict[str, str]) -> List[str]:
        """Turn tasks of the given task masters into ad-hoc tasks.

        Each affected task keeps its place and data, takes the master's name
        as its own, and loses the master reference. Projects are updated one
        transaction each.

        Args:
            names_by_id: Task master id -> name to copy into the tasks.

        Returns:
            Ids of the tasks that were detached.
        """
        if not names_by_id:
            return []

        detached: List[str] = []
        with self.state.operation():
            now = self.clock()
            for doc in self.store.query_live(COLLECTION_PROJECTS):
                if not any(t.get("task_master_id") in names_by_id for t in doc.get("tasks", [])):
                    continue

                def _detach(txn: Transaction, project_id: str = doc["id"]) -> Tuple[Project, List[str]]:
                    current = self._read_live(txn, project_id)
                    changed = []
                    for task in current.tasks:
                        if task.task_master_id in names_by_id:
                            task.task_name = task.task_name or names_by_id[task.task_master_id]
                            task.task_master_id = ""
                            task.stamp_updated(self.user_id, now)
                            changed.append(task.id)
                    if changed:
                        self._write(txn, current)
                    return current, changed

                current, changed = self.store.transact(_detach)
                if changed:
                    detached.extend(changed)
                    self.state.dispatch(Action(ActionType.UPDATE_PROJECT, current))
        if detached:
            logger.info("Detached %d task(s) from deleted task masters", len(detached))
        return detached

    def detach_deleted_task_masters(self) -> List[str]:
        """Detach every live project task whose task master is gone.

        Looks the referenced task masters up in the store rather than relying
        on what a delete reported, so tasks left behind by an interrupted
        delete are picked up too. A task master missing from the store lends
        its id as the task name.

        Returns:
            Ids of the tasks that were detached.
        """
        referenced = {
            task.get("task_master_id")
            for doc in self.store.query_live(COLLECTION_PROJECTS)
            for task in doc.get("tasks", [])
            if task.get("task_master_id") and not task.get("deleted_at")
        }

        names_by_id: Dict[str, str] = {}
        for tm_id in sorted(referenced):
            tm_doc = self.store.get(COLLECTION_TASK_MASTERS, tm_id)
            if tm_doc is None or tm_doc.get("deleted_at"):
                names_by_id[tm_id] = (tm_doc or {}).get("name") or tm_id
        return self.detach_task_masters(names_by_id)
