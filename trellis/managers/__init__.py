"""
Managers for Trellis.

This package contains focused manager classes that handle specific aspects of Trellis functionality:
- JsonStore / StoreAdapter: Transactional document store over the .trellis/ folder
- StateStore: Session caches changed only through the reduce() function
- CatalogManager: Fetch, add, update and resolve catalog records
- CascadeManager: Soft-delete catalog subtrees
- LockCoordinator: Advisory edit locks on projects
- ProjectManager: Project and embedded task lifecycle
- tree_builder: Catalog tree construction and search
"""

from trellis.managers.storage_manager import JsonStore, StoreAdapter, Transaction
from trellis.managers.state import (
    Action,
    ActionType,
    AppState,
    StateListener,
    StateStore,
    reduce,
)
from trellis.managers.catalog_manager import CatalogManager
from trellis.managers.cascade_manager import CascadeManager, CascadeResult
from trellis.managers.lock_coordinator import LockCoordinator
from trellis.managers.project_manager import ProjectManager
from trellis.managers.tree_builder import build_tree, expanded_ids, find_node

__all__ = [
    "JsonStore",
    "StoreAdapter",
    "Transaction",
    "Action",
    "ActionType",
    "AppState",
    "StateListener",
    "StateStore",
    "reduce",
    "CatalogManager",
    "CascadeManager",
    "CascadeResult",
    "LockCoordinator",
    "ProjectManager",
    "build_tree",
    "expanded_ids",
    "find_node",
]
