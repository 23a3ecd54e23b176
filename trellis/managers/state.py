"""
Session state for Trellis.

Holds the in-memory caches (catalog collections, projects, tasks) shown to
callers. The state is only changed by dispatching an Action, which runs the
pure reduce() function; listeners are told about every dispatched action.

Each client session owns its own StateStore; nothing here is global.
"""
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple

from trellis.exceptions import TrellisError
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.models.project import Project, Task

logger = logging.getLogger(__name__)


class ActionType(str, Enum):
    """Types of state action."""
    SET_LOADING = "set_loading"
    SET_ERROR = "set_error"
    SET_PHASE_GROUPS = "set_phase_groups"
    ADD_PHASE_GROUP = "add_phase_group"
    UPDATE_PHASE_GROUP = "update_phase_group"
    DELETE_PHASE_GROUP = "delete_phase_group"
    SET_PHASES = "set_phases"
    ADD_PHASE = "add_phase"
    UPDATE_PHASE = "update_phase"
    DELETE_PHASES = "delete_phases"
    SET_TASK_MASTERS = "set_task_masters"
    ADD_TASK_MASTER = "add_task_master"
    UPDATE_TASK_MASTER = "update_task_master"
    DELETE_TASK_MASTERS = "delete_task_masters"
    SET_PROJECTS = "set_projects"
    ADD_PROJECT = "add_project"
    UPDATE_PROJECT = "update_project"
    DELETE_PROJECT = "delete_project"
    UPDATE_TASK = "update_task"


@dataclass(frozen=True)
class Action:
    """A state change request."""
    type: ActionType
    payload: Any = None
    timestamp: datetime = field(default_factory=datetime.now)


@dataclass(frozen=True)
class AppState:
    """Snapshot of the session caches. Replaced, never mutated."""
    phase_groups: Tuple[CatalogGroup, ...] = ()
    phases: Tuple[CatalogPhase, ...] = ()
    task_masters: Tuple[CatalogTaskMaster, ...] = ()
    projects: Tuple[Project, ...] = ()
    tasks: Tuple[Task, ...] = ()
    loading: bool = False
    error: Optional[str] = None


def _upsert(items: Tuple[Any, ...], item: Any) -> Tuple[Any, ...]:
    if any(existing.id == item.id for existing in items):
        return tuple(item if existing.id == item.id else existing for existing in items)
    return items + (item,)


def _without(items: Tuple[Any, ...], ids) -> Tuple[Any, ...]:
    drop = set(ids)
    return tuple(item for item in items if item.id not in drop)


def _sync_project_tasks(tasks: Tuple[Task, ...], project: Project) -> Tuple[Task, ...]:
    """Replace one project's entries in the flat task cache."""
    others = tuple(task for task in tasks if task.project_id != project.id)
    if project.is_deleted or project.is_completed:
        return others
    return others + tuple(project.live_tasks)


def reduce(state: AppState, action: Action) -> AppState:
    """Return the state that results from applying action to state.

    Pure: never mutates its arguments. Unknown action types return the
    state unchanged.
    """
    kind = action.type
    payload = action.payload

    if kind == ActionType.SET_LOADING:
        return replace(state, loading=bool(payload))
    if kind == ActionType.SET_ERROR:
        return replace(state, error=payload)

    if kind == ActionType.SET_PHASE_GROUPS:
        return replace(state, phase_groups=tuple(payload))
    if kind in (ActionType.ADD_PHASE_GROUP, ActionType.UPDATE_PHASE_GROUP):
        return replace(state, phase_groups=_upsert(state.phase_groups, payload))
    if kind == ActionType.DELETE_PHASE_GROUP:
        return replace(state, phase_groups=_without(state.phase_groups, [payload]))

    if kind == ActionType.SET_PHASES:
        return replace(state, phases=tuple(payload))
    if kind in (ActionType.ADD_PHASE, ActionType.UPDATE_PHASE):
        return replace(state, phases=_upsert(state.phases, payload))
    if kind == ActionType.DELETE_PHASES:
        return replace(state, phases=_without(state.phases, payload))

    if kind == ActionType.SET_TASK_MASTERS:
        return replace(state, task_masters=tuple(payload))
    if kind in (ActionType.ADD_TASK_MASTER, ActionType.UPDATE_TASK_MASTER):
        return replace(state, task_masters=_upsert(state.task_masters, payload))
    if kind == ActionType.DELETE_TASK_MASTERS:
        return replace(state, task_masters=_without(state.task_masters, payload))

    if kind == ActionType.SET_PROJECTS:
        projects = tuple(payload)
        tasks = tuple(task for project in projects for task in project.live_tasks)
        return replace(state, projects=projects, tasks=tasks)
    if kind in (ActionType.ADD_PROJECT, ActionType.UPDATE_PROJECT):
        project: Project = payload
        if project.is_deleted or project.is_completed:
            projects = _without(state.projects, [project.id])
        else:
            projects = _upsert(state.projects, project)
        return replace(state, projects=projects, tasks=_sync_project_tasks(state.tasks, project))
    if kind == ActionType.DELETE_PROJECT:
        return replace(
            state,
            projects=_without(state.projects, [payload]),
            tasks=tuple(task for task in state.tasks if task.project_id != payload),
        )
    if kind == ActionType.UPDATE_TASK:
        task: Task = payload
        if task.is_deleted:
            return replace(state, tasks=_without(state.tasks, [task.id]))
        return replace(state, tasks=_upsert(state.tasks, task))

    return state


class StateListener(ABC):
    """Base class for state listeners."""

    @abstractmethod
    def handle(self, action: Action, state: AppState) -> None:
        """Handle an action after it has been applied.

        Args:
            action: The action that was dispatched.
            state: The state after the action.
        """
        pass

    @property
    def subscribed_actions(self) -> Optional[List[ActionType]]:
        """Action types to receive, or None for all of them."""
        return None


class StateStore:
    """
    Injectable holder of one session's AppState.

    Usage:
        store = StateStore()
        store.dispatch(Action(ActionType.SET_LOADING, True))
        store.state.loading  # True
    """

    def __init__(self, initial: Optional[AppState] = None) -> None:
        self._state = initial or AppState()
        self._listeners: List[StateListener] = []

    @property
    def state(self) -> AppState:
        return self._state

    def dispatch(self, action: Action) -> AppState:
        """Apply an action and notify listeners.

        Args:
            action: The action to apply.

        Returns:
            The new state.
        """
        self._state = reduce(self._state, action)
        for listener in list(self._listeners):
            wanted = listener.subscribed_actions
            if wanted is not None and action.type not in wanted:
                continue
            try:
                listener.handle(action, self._state)
            except Exception:
                # The write behind this action has already committed.
                logger.exception("State listener %s failed", listener.__class__.__name__)
        return self._state

    def subscribe(self, listener: StateListener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: StateListener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def record_error(self, error: Exception) -> None:
        """Store a failed operation's message for display."""
        self.dispatch(Action(ActionType.SET_ERROR, str(error)))

    def clear_error(self) -> None:
        self.dispatch(Action(ActionType.SET_ERROR, None))

    @contextmanager
    def operation(self) -> Iterator[None]:
        """Bracket a store operation with the loading flag and error capture.

        Errors are recorded in state.error and re-raised unchanged.
        """
        self.dispatch(Action(ActionType.SET_LOADING, True))
        self.clear_error()
        try:
            yield
        except TrellisError as e:
            self.record_error(e)
            raise
        finally:
            self.dispatch(Action(ActionType.SET_LOADING, False))

    # Lookups used by managers; the store remains the source of truth.

    def find_group(self, group_id: str) -> Optional[CatalogGroup]:
        return _find(self._state.phase_groups, group_id)

    def find_phase(self, phase_id: str) -> Optional[CatalogPhase]:
        return _find(self._state.phases, phase_id)

    def find_task_master(self, task_master_id: str) -> Optional[CatalogTaskMaster]:
        return _find(self._state.task_masters, task_master_id)

    def find_project(self, project_id: str) -> Optional[Project]:
        return _find(self._state.projects, project_id)

    def tasks_by_master(self) -> Dict[str, List[Task]]:
        """Index cached live tasks by the task master they reference."""
        index: Dict[str, List[Task]] = {}
        for task in self._state.tasks:
            if task.task_master_id:
                index.setdefault(task.task_master_id, []).append(task)
        return index


def _find(items, item_id: str):
    for item in items:
        if item.id == item_id:
            return item
    return None
