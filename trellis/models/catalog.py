"""
Catalog models for Trellis.

Flat structure with id references for parent-child relationships:
phase group (may nest) -> phase -> task master.
"""

from typing import Optional

from pydantic import field_validator

from trellis.constants import VALIDATION_NAME_REQUIRED
from trellis.models.base import AuditedRecord


class CatalogRecord(AuditedRecord):
    """Common base for the three catalog record types."""

    name: str
    memo: str = ""

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if not v or not v.strip():
            raise ValueError(VALIDATION_NAME_REQUIRED)
        return v


class CatalogGroup(CatalogRecord):
    """Phase group - may nest under another group via parent_group_id.

    Valid children: CatalogGroup, CatalogPhase
    """

    parent_group_id: Optional[str] = None

    @field_validator("parent_group_id")
    @classmethod
    def normalize_parent(cls, v: Optional[str]) -> Optional[str]:
        # Documents written by older clients use "" for "no parent".
        return v or None


class CatalogPhase(CatalogRecord):
    """Phase - always the leaf of the group tree, exactly one parent group.

    Valid children: CatalogTaskMaster
    """

    parent_group_id: str


class CatalogTaskMaster(CatalogRecord):
    """Task master - reusable task template within a phase.

    Task masters cannot have children.
    """

    phase_id: str
    description: str = ""
    primary_assignee: Optional[str] = None
