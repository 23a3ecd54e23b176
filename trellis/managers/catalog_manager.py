"""
CatalogManager for Trellis.

Loads, adds and updates catalog records (phase groups, phases, task masters)
and keeps the session cache in step with what was committed.
Deletion lives in CascadeManager.
"""

import logging
from datetime import datetime
from typing import List, Optional, Tuple, Union

from trellis.constants import (
    COLLECTION_PHASE_GROUPS,
    COLLECTION_PHASES,
    COLLECTION_TASK_MASTERS,
    GROUP_ID_PREFIX,
    PHASE_ID_PREFIX,
    TASK_MASTER_ID_PREFIX,
)
from trellis.exceptions import NotFoundError, ValidationError
from trellis.managers.state import Action, ActionType, StateStore
from trellis.managers.storage_manager import StoreAdapter, Transaction, to_record
from trellis.managers.tree_builder import build_tree
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.models.tree import TreeNode
from trellis.utils import Clock, generate_uid

logger = logging.getLogger(__name__)

CatalogEntry = Union[CatalogGroup, CatalogPhase, CatalogTaskMaster]

# Marker for "argument not given" where None is a meaningful value.
_UNSET = object()


def _build(model_cls, **fields):
    """Construct a catalog record, reporting bad fields as ValidationError."""
    try:
        return model_cls(**fields)
    except ValueError as e:
        raise ValidationError(str(e))


def _require_live(txn: Transaction, collection: str, record_id: str, label: str) -> dict:
    doc = txn.get(collection, record_id)
    if doc is None:
        raise ValidationError(f"{label} '{record_id}' does not exist.")
    if doc.get("deleted_at"):
        raise ValidationError(f"{label} '{record_id}' has been deleted.")
    return doc


class CatalogManager:
    """
    Manages catalog records.

    Handles:
    - Fetching the live catalog into the session cache
    - Adding groups, phases and task masters under live parents
    - Updating names, memos and parents (no group cycles)
    - Resolving an id to its kind and cached record
    - Building the catalog tree from the cache
    """

    def __init__(
        self,
        store: StoreAdapter,
        state: StateStore,
        user_id: str = "",
        clock: Clock = datetime.now,
    ) -> None:
        """
        Initialize CatalogManager.

        Args:
            store: Document store holding the catalog collections.
            state: Session state to keep in step.
            user_id: Id stamped into audit fields.
            clock: Source of the current time.
        """
        self.store = store
        self.state = state
        self.user_id = user_id
        self.clock = clock

    # =========================================================================
    # Fetch
    # =========================================================================

    def fetch_all(self) -> None:
        """Load all live catalog records, ordered by last update, into the cache."""
        with self.state.operation():
            groups = [to_record(CatalogGroup, d) for d in self.store.query_live(COLLECTION_PHASE_GROUPS)]
            phases = [to_record(CatalogPhase, d) for d in self.store.query_live(COLLECTION_PHASES)]
            task_masters = [
                to_record(CatalogTaskMaster, d) for d in self.store.query_live(COLLECTION_TASK_MASTERS)
            ]

            self.state.dispatch(Action(ActionType.SET_PHASE_GROUPS, groups))
            self.state.dispatch(Action(ActionType.SET_PHASES, phases))
            self.state.dispatch(Action(ActionType.SET_TASK_MASTERS, task_masters))
        logger.info(
            "Loaded catalog: %d group(s), %d phase(s), %d task master(s)",
            len(groups), len(phases), len(task_masters),
        )

    # =========================================================================
    # Add
    # =========================================================================

    def add_group(self, name: str, memo: str = "", parent_group_id: Optional[str] = None) -> CatalogGroup:
        """Add a phase group, optionally nested under another group.

        Raises:
            ValidationError: If the parent group is missing or deleted.
        """
        with self.state.operation():
            group = _build(
                CatalogGroup,
                id=f"{GROUP_ID_PREFIX}{generate_uid()}",
                name=name,
                memo=memo,
                parent_group_id=parent_group_id,
            )
            group.stamp_created(self.user_id, self.clock())

            def _write(txn: Transaction) -> None:
                if group.parent_group_id:
                    _require_live(txn, COLLECTION_PHASE_GROUPS, group.parent_group_id, "Parent group")
                txn.set(COLLECTION_PHASE_GROUPS, group.id, group.model_dump(mode="json"))

            self.store.transact(_write)
            self.state.dispatch(Action(ActionType.ADD_PHASE_GROUP, group))
        logger.info("Added phase group %s (%s)", group.id, group.name)
        return group

    def add_phase(self, name: str, parent_group_id: str, memo: str = "") -> CatalogPhase:
        """Add a phase under a live group.

        Raises:
            ValidationError: If the parent group is missing or deleted.
        """
        with self.state.operation():
            phase = _build(
                CatalogPhase,
                id=f"{PHASE_ID_PREFIX}{generate_uid()}",
                name=name,
                memo=memo,
                parent_group_id=parent_group_id,
            )
            phase.stamp_created(self.user_id, self.clock())

            def _write(txn: Transaction) -> None:
                _require_live(txn, COLLECTION_PHASE_GROUPS, parent_group_id, "Parent group")
                txn.set(COLLECTION_PHASES, phase.id, phase.model_dump(mode="json"))

            self.store.transact(_write)
            self.state.dispatch(Action(ActionType.ADD_PHASE, phase))
        logger.info("Added phase %s (%s) under %s", phase.id, phase.name, parent_group_id)
        return phase

    def add_task_master(
        self,
        name: str,
        phase_id: str,
        description: str = "",
        memo: str = "",
        primary_assignee: Optional[str] = None,
    ) -> CatalogTaskMaster:
        """Add a task master under a live phase.

        Raises:
            ValidationError: If the phase is missing or deleted.
        """
        with self.state.operation():
            task_master = _build(
                CatalogTaskMaster,
                id=f"{TASK_MASTER_ID_PREFIX}{generate_uid()}",
                name=name,
                phase_id=phase_id,
                description=description,
                memo=memo,
                primary_assignee=primary_assignee,
            )
            task_master.stamp_created(self.user_id, self.clock())

            def _write(txn: Transaction) -> None:
                _require_live(txn, COLLECTION_PHASES, phase_id, "Phase")
                txn.set(COLLECTION_TASK_MASTERS, task_master.id, task_master.model_dump(mode="json"))

            self.store.transact(_write)
            self.state.dispatch(Action(ActionType.ADD_TASK_MASTER, task_master))
        logger.info("Added task master %s (%s) under %s", task_master.id, task_master.name, phase_id)
        return task_master

    # =========================================================================
    # Update
    # =========================================================================

    def update_group(
        self,
        group_id: str,
        name: Optional[str] = None,
        memo: Optional[str] = None,
        parent_group_id=_UNSET,
    ) -> CatalogGroup:
        """Update a group's fields.

        Pass parent_group_id=None to move the group to the top level.

        Raises:
            ValidationError: If the group or new parent is missing/deleted,
                nothing would change, or the move would create a cycle.
        """
        if name is None and memo is None and parent_group_id is _UNSET:
            raise ValidationError("No update parameters provided for phase group.")

        with self.state.operation():
            now = self.clock()

            def _write(txn: Transaction) -> CatalogGroup:
                doc = _require_live(txn, COLLECTION_PHASE_GROUPS, group_id, "Phase group")
                group = to_record(CatalogGroup, doc)
                if name is not None:
                    group.name = name
                if memo is not None:
                    group.memo = memo
                if parent_group_id is not _UNSET:
                    if parent_group_id:
                        self._check_group_move(txn, group_id, parent_group_id)
                    group.parent_group_id = parent_group_id or None
                group.stamp_updated(self.user_id, now)
                group = _build(CatalogGroup, **group.model_dump())
                txn.set(COLLECTION_PHASE_GROUPS, group.id, group.model_dump(mode="json"))
                return group

            group = self.store.transact(_write)
            self.state.dispatch(Action(ActionType.UPDATE_PHASE_GROUP, group))
        return group

    def _check_group_move(self, txn: Transaction, group_id: str, new_parent_id: str) -> None:
        """Reject moving a group under itself or one of its descendants."""
        _require_live(txn, COLLECTION_PHASE_GROUPS, new_parent_id, "Parent group")
        seen = set()
        current: Optional[str] = new_parent_id
        while current:
            if current == group_id:
                raise ValidationError(
                    f"Cannot move phase group '{group_id}' under '{new_parent_id}': "
                    "a group cannot be nested inside itself or its own descendants."
                )
            if current in seen:
                break
            seen.add(current)
            doc = txn.get(COLLECTION_PHASE_GROUPS, current)
            current = doc.get("parent_group_id") if doc else None

    def update_phase(
        self,
        phase_id: str,
        name: Optional[str] = None,
        memo: Optional[str] = None,
        parent_group_id: Optional[str] = None,
    ) -> CatalogPhase:
        """Update a phase's fields, optionally moving it to another live group."""
        if name is None and memo is None and parent_group_id is None:
            raise ValidationError("No update parameters provided for phase.")

        with self.state.operation():
            now = self.clock()

            def _write(txn: Transaction) -> CatalogPhase:
                phase = to_record(CatalogPhase, _require_live(txn, COLLECTION_PHASES, phase_id, "Phase"))
                if name is not None:
                    phase.name = name
                if memo is not None:
                    phase.memo = memo
                if parent_group_id is not None:
                    _require_live(txn, COLLECTION_PHASE_GROUPS, parent_group_id, "Parent group")
                    phase.parent_group_id = parent_group_id
                phase.stamp_updated(self.user_id, now)
                phase = _build(CatalogPhase, **phase.model_dump())
                txn.set(COLLECTION_PHASES, phase.id, phase.model_dump(mode="json"))
                return phase

            phase = self.store.transact(_write)
            self.state.dispatch(Action(ActionType.UPDATE_PHASE, phase))
        return phase

    def update_task_master(
        self,
        task_master_id: str,
        name: Optional[str] = None,
        description: Optional[str] = None,
        memo: Optional[str] = None,
        primary_assignee: Optional[str] = None,
        phase_id: Optional[str] = None,
    ) -> CatalogTaskMaster:
        """Update a task master's fields, optionally moving it to another live phase."""
        if all(v is None for v in (name, description, memo, primary_assignee, phase_id)):
            raise ValidationError("No update parameters provided for task master.")

        with self.state.operation():
            now = self.clock()

            def _write(txn: Transaction) -> CatalogTaskMaster:
                doc = _require_live(txn, COLLECTION_TASK_MASTERS, task_master_id, "Task master")
                task_master = to_record(CatalogTaskMaster, doc)
                if name is not None:
                    task_master.name = name
                if description is not None:
                    task_master.description = description
                if memo is not None:
                    task_master.memo = memo
                if primary_assignee is not None:
                    task_master.primary_assignee = primary_assignee or None
                if phase_id is not None:
                    _require_live(txn, COLLECTION_PHASES, phase_id, "Phase")
                    task_master.phase_id = phase_id
                task_master.stamp_updated(self.user_id, now)
                task_master = _build(CatalogTaskMaster, **task_master.model_dump())
                txn.set(COLLECTION_TASK_MASTERS, task_master.id, task_master.model_dump(mode="json"))
                return task_master

            task_master = self.store.transact(_write)
            self.state.dispatch(Action(ActionType.UPDATE_TASK_MASTER, task_master))
        return task_master

    # =========================================================================
    # Lookup
    # =========================================================================

    def resolve(self, record_id: str) -> Tuple[str, Optional[CatalogEntry]]:
        """Find a cached catalog record by id, using the id prefix to pick the collection.

        Returns:
            (kind, record) where kind is 'phase_group', 'phase', 'task_master',
            or ('none', None) when nothing matches.
        """
        if record_id.startswith(GROUP_ID_PREFIX):
            group = self.state.find_group(record_id)
            return ("phase_group", group) if group else ("none", None)
        if record_id.startswith(PHASE_ID_PREFIX):
            phase = self.state.find_phase(record_id)
            return ("phase", phase) if phase else ("none", None)
        if record_id.startswith(TASK_MASTER_ID_PREFIX):
            task_master = self.state.find_task_master(record_id)
            return ("task_master", task_master) if task_master else ("none", None)
        return ("none", None)

    def get(self, record_id: str) -> CatalogEntry:
        """Like resolve(), but raise when nothing matches.

        Raises:
            NotFoundError: If no cached record has that id.
        """
        _, record = self.resolve(record_id)
        if record is None:
            raise NotFoundError(f"Catalog entry '{record_id}' not found.")
        return record

    def get_tree(self, search_text: str = "") -> List[TreeNode]:
        """Build the catalog tree from the session cache."""
        state = self.state.state
        return build_tree(state.phase_groups, state.phases, state.task_masters, search_text)
