"""
Data models for Trellis.

Flat records keyed by id, stored as documents in the collection files.

Import models explicitly from their modules to avoid circular imports:
    from trellis.models.base import AuditedRecord
    from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
    from trellis.models.project import Project, Task, EditLock
    from trellis.models.tree import TreeNode, NodeKind
    from trellis.models.files import CollectionFile, ConfigFile, ViewStateFile
"""

from .catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from .project import EditLock, Project, Task
from .tree import NodeKind, TreeNode

TreeNode.model_rebuild()
