"""
CascadeManager for Trellis.

Soft-deletes catalog records together with everything beneath them.
Each level of a group subtree is committed as one atomic batch; the
session cache is only updated for levels that committed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Dict, List, Set

from trellis.constants import COLLECTION_PHASE_GROUPS, COLLECTION_PHASES, COLLECTION_TASK_MASTERS
from trellis.exceptions import PartialCascadeFailure, TrellisError, ValidationError
from trellis.managers.state import Action, ActionType, StateStore
from trellis.managers.storage_manager import StoreAdapter, Write, to_record
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.utils import Clock

logger = logging.getLogger(__name__)


@dataclass
class CascadeResult:
    """Ids removed by a cascade delete."""
    group_ids: List[str] = field(default_factory=list)
    phase_ids: List[str] = field(default_factory=list)
    task_master_ids: List[str] = field(default_factory=list)
    task_master_names: Dict[str, str] = field(default_factory=dict)
    orphaned_task_ids: List[str] = field(default_factory=list)

    @property
    def all_ids(self) -> List[str]:
        return self.group_ids + self.phase_ids + self.task_master_ids

    @property
    def is_empty(self) -> bool:
        return not self.all_ids

    def merge(self, other: "CascadeResult") -> None:
        self.group_ids.extend(other.group_ids)
        self.phase_ids.extend(other.phase_ids)
        self.task_master_ids.extend(other.task_master_ids)
        self.task_master_names.update(other.task_master_names)
        self.orphaned_task_ids.extend(other.orphaned_task_ids)


class CascadeManager:
    """
    Manages catalog deletion.

    Handles:
    - Deleting a group with all nested phases, task masters and groups
    - Deleting a phase with its task masters
    - Deleting a single task master (idempotent)
    - Reporting project tasks left pointing at deleted task masters
    """

    def __init__(
        self,
        store: StoreAdapter,
        state: StateStore,
        user_id: str = "",
        clock: Clock = datetime.now,
    ) -> None:
        self.store = store
        self.state = state
        self.user_id = user_id
        self.clock = clock

    def _stage_delete(self, collection: str, doc: dict, when: datetime) -> Write:
        doc = dict(doc)
        doc["deleted_by"] = self.user_id
        doc["deleted_at"] = when.isoformat()
        doc["updated_by"] = self.user_id
        doc["updated_at"] = when.isoformat()
        return (collection, doc["id"], doc)

    def _stage_phase(self, phase_doc: dict, when: datetime, writes: List[Write], result: CascadeResult) -> None:
        """Stage the phase and its live task masters, task masters first."""
        for tm_doc in self.store.query_live(COLLECTION_TASK_MASTERS, {"phase_id": phase_doc["id"]}):
            writes.append(self._stage_delete(COLLECTION_TASK_MASTERS, tm_doc, when))
            result.task_master_ids.append(tm_doc["id"])
            result.task_master_names[tm_doc["id"]] = tm_doc.get("name", "")
        writes.append(self._stage_delete(COLLECTION_PHASES, phase_doc, when))
        result.phase_ids.append(phase_doc["id"])

    def _require_live(self, collection: str, record_id: str, label: str) -> dict:
        doc = self.store.get(collection, record_id)
        if doc is None or doc.get("deleted_at"):
            raise ValidationError(f"{label} '{record_id}' does not exist or has already been deleted.")
        return doc

    def _drop_from_cache(self, result: CascadeResult) -> None:
        if result.task_master_ids:
            self.state.dispatch(Action(ActionType.DELETE_TASK_MASTERS, list(result.task_master_ids)))
        if result.phase_ids:
            self.state.dispatch(Action(ActionType.DELETE_PHASES, list(result.phase_ids)))
        for group_id in result.group_ids:
            self.state.dispatch(Action(ActionType.DELETE_PHASE_GROUP, group_id))

    def _collect_orphans(self, result: CascadeResult) -> None:
        tasks = self.state.tasks_by_master()
        for tm_id in result.task_master_ids:
            result.orphaned_task_ids.extend(task.id for task in tasks.get(tm_id, []))

    # =========================================================================
    # Group
    # =========================================================================

    def delete_group(self, group: CatalogGroup) -> CascadeResult:
        """Soft-delete a group and its whole subtree.

        Args:
            group: Live group to delete.

        Returns:
            CascadeResult with every deleted id.

        Raises:
            ValidationError: If the group is missing or already deleted.
            PartialCascadeFailure: If a nested level failed after another
                level had committed. Re-running the delete finishes the job.
        """
        with self.state.operation():
            result = CascadeResult()
            committed: List[str] = []
            for group_doc in reversed(self._subtree_groups(group.id)):
                try:
                    level = self._commit_group_level(group_doc)
                except TrellisError as e:
                    if not committed:
                        raise
                    raise PartialCascadeFailure(group.id, committed, e) from e
                committed.extend(level.all_ids)
                result.merge(level)
                self._drop_from_cache(level)
            self._collect_orphans(result)
        logger.info("Deleted phase group %s and %d nested record(s)", group.id, len(result.all_ids) - 1)
        return result

    def _subtree_groups(self, root_id: str) -> List[dict]:
        """Live group documents under root_id (inclusive), parents before children."""
        ordered: List[dict] = []
        seen: Set[str] = set()
        stack = [self._require_live(COLLECTION_PHASE_GROUPS, root_id, "Phase group")]
        while stack:
            doc = stack.pop()
            if doc["id"] in seen:
                continue
            seen.add(doc["id"])
            ordered.append(doc)
            stack.extend(self.store.query_live(COLLECTION_PHASE_GROUPS, {"parent_group_id": doc["id"]}))
        return ordered

    def _commit_group_level(self, group_doc: dict) -> CascadeResult:
        """Soft-delete one group with its phases and their task masters in one batch."""
        when = self.clock()
        level = CascadeResult()
        writes: List[Write] = []
        for phase_doc in self.store.query_live(COLLECTION_PHASES, {"parent_group_id": group_doc["id"]}):
            self._stage_phase(phase_doc, when, writes, level)
        writes.append(self._stage_delete(COLLECTION_PHASE_GROUPS, group_doc, when))
        level.group_ids.append(group_doc["id"])

        self.store.batch_write(writes)
        logger.debug("Committed delete batch for group %s (%d record(s))", group_doc["id"], len(writes))
        return level

    # =========================================================================
    # Phase
    # =========================================================================

    def delete_phase(self, phase: CatalogPhase) -> CascadeResult:
        """Soft-delete a phase and its task masters in one batch.

        Raises:
            ValidationError: If the phase is missing or already deleted.
        """
        with self.state.operation():
            phase_doc = self._require_live(COLLECTION_PHASES, phase.id, "Phase")
            result = CascadeResult()
            writes: List[Write] = []
            self._stage_phase(phase_doc, self.clock(), writes, result)

            self.store.batch_write(writes)
            self._collect_orphans(result)
            self._drop_from_cache(result)
        logger.info("Deleted phase %s and %d task master(s)", phase.id, len(result.task_master_ids))
        return result

    # =========================================================================
    # Task master
    # =========================================================================

    def delete_task_master(self, task_master: CatalogTaskMaster) -> CascadeResult:
        """Soft-delete one task master.

        Deleting a task master that is already deleted (or gone) is a no-op
        returning an empty result.
        """
        with self.state.operation():
            doc = self.store.get(COLLECTION_TASK_MASTERS, task_master.id)
            if doc is None or doc.get("deleted_at"):
                logger.debug("Task master %s already deleted, nothing to do", task_master.id)
                self.state.dispatch(Action(ActionType.DELETE_TASK_MASTERS, [task_master.id]))
                return CascadeResult()

            current = to_record(CatalogTaskMaster, doc)
            result = CascadeResult(
                task_master_ids=[current.id],
                task_master_names={current.id: current.name},
            )
            self.store.batch_write([self._stage_delete(COLLECTION_TASK_MASTERS, doc, self.clock())])
            self._collect_orphans(result)
            self._drop_from_cache(result)
        logger.info("Deleted task master %s", task_master.id)
        return result
