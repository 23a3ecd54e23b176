"""
Tree builder for the catalog tree view.

Turns the flat catalog collections into a nested TreeNode tree with
search filtering. Everything here is pure: no I/O, no state.
"""

from typing import Dict, Iterable, Iterator, List, Optional, Sequence, Set

from trellis.constants import TREE_ROOT_ID, get_tree_root_label
from trellis.exceptions import CatalogStructureError
from trellis.models.catalog import CatalogGroup, CatalogPhase, CatalogTaskMaster
from trellis.models.tree import NodeKind, TreeNode


def matches_search(label: str, search_text: str) -> bool:
    """Case-insensitive substring match; an empty search matches everything."""
    if not search_text:
        return True
    return search_text.lower() in label.lower()


def check_group_cycles(groups: Iterable[CatalogGroup]) -> None:
    """Fail if any chain of parent_group_id references loops back on itself.

    Args:
        groups: Catalog groups to check.

    Raises:
        CatalogStructureError: Naming the groups on the first cycle found.
    """
    by_id = {g.id: g for g in groups}
    acyclic: Set[str] = set()

    for start in by_id:
        chain: List[str] = []
        seen: Set[str] = set()
        current: Optional[str] = start
        while current is not None and current in by_id and current not in acyclic:
            if current in seen:
                loop = chain[chain.index(current):] + [current]
                raise CatalogStructureError(
                    f"Phase groups form a cycle: {' -> '.join(loop)}. "
                    "Fix the parent of one of these groups."
                )
            seen.add(current)
            chain.append(current)
            current = by_id[current].parent_group_id
        acyclic.update(chain)


def build_tree(
    groups: Sequence[CatalogGroup],
    phases: Sequence[CatalogPhase],
    task_masters: Sequence[CatalogTaskMaster],
    search_text: str = "",
    root_label: Optional[str] = None,
) -> List[TreeNode]:
    """Build the catalog tree from flat, live collections.

    A task master is kept if it matches the search. A phase is kept if it
    matches or kept at least one task master. A group is kept if it matches
    or kept at least one phase or child group. With no search everything is
    kept. Nodes whose parent is not among the inputs are left out.

    Args:
        groups: Live phase groups.
        phases: Live phases.
        task_masters: Live task masters.
        search_text: Case-insensitive substring to filter by.
        root_label: Label of the synthetic root. Defaults to config.

    Returns:
        A one-element list holding the root node.

    Raises:
        CatalogStructureError: If group parents form a cycle.
    """
    check_group_cycles(groups)

    group_ids = {g.id for g in groups}

    task_masters_by_phase: Dict[str, List[CatalogTaskMaster]] = {}
    for tm in task_masters:
        task_masters_by_phase.setdefault(tm.phase_id, []).append(tm)

    phase_nodes_by_group: Dict[str, List[TreeNode]] = {}
    for phase in phases:
        if phase.parent_group_id not in group_ids:
            continue
        task_nodes = [
            TreeNode(id=tm.id, label=tm.name, description=tm.description or None, kind=NodeKind.TASK)
            for tm in task_masters_by_phase.get(phase.id, [])
            if matches_search(tm.name, search_text)
        ]
        if search_text and not task_nodes and not matches_search(phase.name, search_text):
            continue
        phase_nodes_by_group.setdefault(phase.parent_group_id, []).append(
            TreeNode(id=phase.id, label=phase.name, kind=NodeKind.PHASE, children=task_nodes)
        )

    child_groups: Dict[Optional[str], List[CatalogGroup]] = {}
    for group in groups:
        child_groups.setdefault(group.parent_group_id, []).append(group)

    # Groups reachable from the top level, parents before children.
    ordered: List[CatalogGroup] = []
    stack = list(reversed(child_groups.get(None, [])))
    while stack:
        group = stack.pop()
        ordered.append(group)
        stack.extend(reversed(child_groups.get(group.id, [])))

    # Build bottom-up so every child node exists before its parent.
    built: Dict[str, Optional[TreeNode]] = {}
    for group in reversed(ordered):
        children = list(phase_nodes_by_group.get(group.id, []))
        children.extend(
            built[child.id] for child in child_groups.get(group.id, []) if built[child.id] is not None
        )
        if search_text and not children and not matches_search(group.name, search_text):
            built[group.id] = None
        else:
            built[group.id] = TreeNode(id=group.id, label=group.name, kind=NodeKind.GROUP, children=children)

    root = TreeNode(
        id=TREE_ROOT_ID,
        label=root_label if root_label is not None else get_tree_root_label(),
        kind=NodeKind.ROOT,
    )
    root.children.extend(
        built[group.id] for group in child_groups.get(None, []) if built[group.id] is not None
    )
    return [root]


def iter_nodes(nodes: Iterable[TreeNode]) -> Iterator[TreeNode]:
    """Yield every node depth-first, parents before children."""
    stack = list(reversed(list(nodes)))
    while stack:
        node = stack.pop()
        yield node
        stack.extend(reversed(node.children))


def find_node(nodes: Iterable[TreeNode], node_id: str) -> Optional[TreeNode]:
    for node in iter_nodes(nodes):
        if node.id == node_id:
            return node
    return None


def expanded_ids(
    tree: Sequence[TreeNode],
    search_text: str,
    saved_expanded: Sequence[str],
) -> List[str]:
    """Return the node ids to show expanded.

    While searching, the root and every node that kept children are
    expanded. Without a search, the user's own saved choice is returned.
    """
    if not search_text:
        return list(saved_expanded)

    ids = [TREE_ROOT_ID]
    for node in iter_nodes(tree):
        if node.has_children and node.id not in ids:
            ids.append(node.id)
    return ids
