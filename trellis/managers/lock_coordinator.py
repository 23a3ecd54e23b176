"""
LockCoordinator for Trellis.

Advisory edit locks on projects. A lock is a field on the project
document and is only ever changed inside a store transaction, so two
sessions racing for the same project cannot both win.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from trellis.constants import COLLECTION_PROJECTS, get_lock_stale_minutes, get_user_names
from trellis.exceptions import ContentionError, LockLostError, ValidationError
from trellis.managers.state import Action, ActionType, StateStore
from trellis.managers.storage_manager import StoreAdapter, Transaction, to_record
from trellis.models.project import EditLock, Project
from trellis.utils import Clock, format_age

logger = logging.getLogger(__name__)


def default_name_resolver(user_id: str) -> str:
    """Look a user id up in the configured user directory."""
    return get_user_names().get(user_id, user_id)


class LockCoordinator:
    """
    Coordinates edit locks on projects.

    A project is either unlocked or locked by one holder. A lock older than
    stale_after is considered abandoned and may be taken over.
    """

    def __init__(
        self,
        store: StoreAdapter,
        state: StateStore,
        clock: Clock = datetime.now,
        stale_after: Optional[timedelta] = None,
        resolve_name: Callable[[str], str] = default_name_resolver,
    ) -> None:
        """
        Initialize LockCoordinator.

        Args:
            store: Document store holding the projects collection.
            state: Session state to keep in step.
            clock: Source of the current time.
            stale_after: Age at which a lock counts as abandoned. Defaults to config.
            resolve_name: Maps a holder id to a display name for error messages.
        """
        self.store = store
        self.state = state
        self.clock = clock
        self.stale_after = stale_after if stale_after is not None else timedelta(minutes=get_lock_stale_minutes())
        self.resolve_name = resolve_name

    def _read_project(self, txn: Transaction, project_id: str) -> Project:
        doc = txn.get(COLLECTION_PROJECTS, project_id)
        if doc is None or doc.get("deleted_at"):
            raise ValidationError(f"Project '{project_id}' does not exist or has been deleted.")
        return to_record(Project, doc)

    def _contention(self, lock: EditLock) -> ContentionError:
        return ContentionError(lock.holder_id, self.resolve_name(lock.holder_id))

    def _publish(self, project: Project) -> None:
        self.state.dispatch(Action(ActionType.UPDATE_PROJECT, project))

    def acquire_lock(self, project: Project, requester_id: str) -> EditLock:
        """Take the edit lock on a project.

        Re-acquiring a lock already held by the requester refreshes it.
        The caller's project copy is updated with the new lock.

        Args:
            project: Project to lock.
            requester_id: User asking for the lock.

        Returns:
            The lock now stored on the project.

        Raises:
            ValidationError: If the project is missing or deleted.
            ContentionError: If someone else holds a fresh lock.
            TransientStoreError: If the transaction could not commit.
        """
        with self.state.operation():

            def _acquire(txn: Transaction) -> Project:
                now = self.clock()
                current = self._read_project(txn, project.id)
                lock = current.lock
                if lock is not None and lock.holder_id != requester_id:
                    if not lock.is_stale(now, self.stale_after):
                        raise self._contention(lock)
                    logger.info(
                        "Reclaiming stale lock on %s held by %s for %s",
                        project.id, lock.holder_id, format_age(lock.age(now)),
                    )

                current.lock = EditLock(holder_id=requester_id, acquired_at=now)
                txn.set(COLLECTION_PROJECTS, current.id, current.model_dump(mode="json"))
                return current

            locked = self.store.transact(_acquire)
            project.lock = locked.lock
            self._publish(locked)
        logger.debug("Lock on %s acquired by %s", project.id, requester_id)
        return locked.lock

    def verify_lock(self, project: Project, requester_id: str) -> EditLock:
        """Confirm the requester still holds the edit lock.

        The lock on the caller's copy of ``project`` tells a lost lock apart
        from one the requester never had.

        Raises:
            ValidationError: If the project is missing or deleted.
            ContentionError: If another editor holds a fresh lock the
                requester never held.
            LockLostError: If the requester holds no lock (expired and cleared,
                or taken over after going stale). Carries the new holder
                when there is one.
        """
        held_before = project.lock is not None and project.lock.holder_id == requester_id

        def _verify(txn: Transaction) -> EditLock:
            current = self._read_project(txn, project.id)
            lock = current.lock
            if lock is None:
                raise LockLostError(requester_id)
            if lock.holder_id != requester_id:
                if lock.is_stale(self.clock(), self.stale_after):
                    raise LockLostError(requester_id)
                if held_before:
                    raise LockLostError(requester_id, lock.holder_id, self.resolve_name(lock.holder_id))
                raise self._contention(lock)
            return lock

        return self.store.transact(_verify)

    def release_lock(self, project: Project, releaser_id: Optional[str] = None) -> None:
        """Clear the edit lock on a project.

        Args:
            project: Project to unlock.
            releaser_id: When None the lock is cleared whoever holds it.
                Otherwise the release only goes through if the lock is
                absent, stale, or held by releaser_id.

        Raises:
            ValidationError: If the project is missing or deleted.
            ContentionError: If releaser_id is given and someone else holds
                a fresh lock.
        """
        with self.state.operation():

            def _release(txn: Transaction) -> Project:
                current = self._read_project(txn, project.id)
                lock = current.lock
                if lock is None:
                    return current
                if (
                    releaser_id is not None
                    and lock.holder_id != releaser_id
                    and not lock.is_stale(self.clock(), self.stale_after)
                ):
                    raise self._contention(lock)

                current.lock = None
                txn.set(COLLECTION_PROJECTS, current.id, current.model_dump(mode="json"))
                return current

            released = self.store.transact(_release)
            self._publish(released)
        logger.debug("Lock on %s released", project.id)
