"""
Custom exceptions for the Trellis application.
"""

from typing import List, Optional


class TrellisError(Exception):
    """Base exception for all Trellis-related errors."""
    pass


class ValidationError(TrellisError):
    """Raised when a request is inconsistent with the stored state."""
    pass


class NotFoundError(TrellisError):
    """Raised when a requested record is not found."""
    pass


class ConfigurationError(TrellisError):
    """Raised when there's a configuration or setup issue."""
    pass


class CatalogStructureError(TrellisError):
    """Raised when the catalog hierarchy is malformed (e.g. a group cycle)."""
    pass


class TransientStoreError(TrellisError):
    """Raised when the document store fails for a transient reason.

    Covers I/O failures and transactions that kept conflicting after the
    configured number of attempts. The core never retries these itself.
    """
    pass


class StorageError(TransientStoreError):
    """Raised when a collection file cannot be read or written."""
    pass


class ContentionError(TrellisError):
    """Raised when a project's edit lock is held by someone else."""

    def __init__(self, holder_id: str, holder_name: Optional[str] = None, message: Optional[str] = None):
        self.holder_id = holder_id
        self.holder_name = holder_name or holder_id
        super().__init__(message or f"Project is being edited by {self.holder_name}.")


# Name used by callers that think in terms of locks rather than contention.
LockHeldError = ContentionError


class LockLostError(ContentionError):
    """Raised when an editor no longer holds the lock it expects to hold."""

    def __init__(self, requester_id: str, holder_id: str = "", holder_name: Optional[str] = None):
        taken_by = f" It is now held by {holder_name or holder_id}." if holder_id else ""
        super().__init__(
            holder_id=holder_id,
            holder_name=holder_name,
            message=(
                f"Edit lock for '{requester_id}' is no longer held.{taken_by} "
                "Re-open the project to continue editing."
            ),
        )
        self.requester_id = requester_id


class PartialCascadeFailure(TrellisError):
    """Raised when a cascade delete failed after some levels were committed.

    Soft deletes are idempotent, so the caller can re-run the delete on the
    same root to finish the job.
    """

    def __init__(self, root_id: str, committed_ids: List[str], cause: Exception):
        self.root_id = root_id
        self.committed_ids = list(committed_ids)
        self.cause = cause
        super().__init__(
            f"Delete of '{root_id}' stopped part way: {len(self.committed_ids)} "
            f"record(s) were already deleted before the failure ({cause}). "
            "Run the delete again to finish it."
        )
