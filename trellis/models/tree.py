"""
Tree node model for the catalog tree view.

Derived from the flat catalog collections on every build; never persisted.
"""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field


class NodeKind(str, Enum):
    """Kinds of node in the catalog tree."""

    ROOT = "root"
    GROUP = "group"
    PHASE = "phase"
    TASK = "task"


class TreeNode(BaseModel):
    """A node of the rendered catalog tree."""

    id: str
    label: str
    description: Optional[str] = None
    kind: NodeKind
    children: List["TreeNode"] = Field(default_factory=list)

    @property
    def has_children(self) -> bool:
        return bool(self.children)
