"""
Base record model for Trellis.

Common audit fields and soft-delete handling for every persisted record.
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class AuditedRecord(BaseModel):
    """
    Base model for all persisted Trellis records (catalog entries, projects, tasks).

    Common fields:
    - id: Document key
    - created_by / created_at: Who created the record and when
    - updated_by / updated_at: Last writer and time
    - deleted_by / deleted_at: Soft-delete stamp ("" / None while alive)

    Records are never physically removed. A soft-deleted record keeps all
    of its data and is filtered out by live queries.
    """

    id: str
    created_by: str = ""
    created_at: datetime = Field(default_factory=datetime.now)
    updated_by: str = ""
    updated_at: datetime = Field(default_factory=datetime.now)
    deleted_by: str = ""
    deleted_at: Optional[datetime] = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        """Ids must be non-empty and free of whitespace."""
        if not v or any(ch.isspace() for ch in v):
            raise ValueError("Id must be a non-empty string without whitespace")
        return v

    @property
    def is_deleted(self) -> bool:
        """True once the record has been soft-deleted."""
        return self.deleted_at is not None

    def stamp_created(self, user_id: str, when: datetime) -> None:
        """Set creation and update audit fields."""
        self.created_by = user_id
        self.created_at = when
        self.stamp_updated(user_id, when)

    def stamp_updated(self, user_id: str, when: datetime) -> None:
        """Set update audit fields."""
        self.updated_by = user_id
        self.updated_at = when

    def soft_delete(self, user_id: str, when: datetime) -> None:
        """Mark the record deleted without removing it.

        Args:
            user_id: Id of the user performing the delete.
            when: Deletion time.
        """
        self.deleted_by = user_id
        self.deleted_at = when
        self.stamp_updated(user_id, when)
