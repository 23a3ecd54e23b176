"""
Catalog commands for the Trellis CLI.

Browse, add, edit and delete phase groups, phases and task masters.
"""
import json
from typing import List, Optional, Set

import click

from trellis.commands import get_core, to_click_error
from trellis.constants import TREE_ROOT_ID
from trellis.exceptions import NotFoundError, TrellisError
from trellis.models.tree import TreeNode
from trellis.utils import format_timestamp


@click.group()
def catalog():
    """Manage the task catalog (phase groups, phases, task masters)."""
    pass


def _highlight(label: str, search_text: str) -> str:
    """Style the first case-insensitive occurrence of search_text in label."""
    if not search_text:
        return label
    start = label.lower().find(search_text.lower())
    if start < 0:
        return label
    end = start + len(search_text)
    return label[:start] + click.style(label[start:end], fg="yellow", bold=True) + label[end:]


def _echo_tree(nodes: List[TreeNode], expanded: Set[str], search_text: str, show_all: bool):
    stack = [(node, 0) for node in reversed(nodes)]
    while stack:
        node, depth = stack.pop()
        is_open = show_all or node.id in expanded
        if node.has_children:
            marker = "- " if is_open else "+ "
        else:
            marker = "  "
        label = _highlight(node.label, search_text)
        if node.id == TREE_ROOT_ID:
            click.echo(f"{marker}{label}")
        else:
            click.echo(f"{'  ' * depth}{marker}{label} ({node.id})")
        if node.has_children and is_open:
            stack.extend((child, depth + 1) for child in reversed(node.children))


@catalog.command(name="tree")
@click.option("-s", "--search", "search_text", default="", help="Case-insensitive filter.")
@click.option("-a", "--all", "show_all", is_flag=True, help="Expand every node.")
@click.option("-j", "--json", "json_output", is_flag=True, help="Output in JSON format.")
@click.pass_context
def tree(ctx: click.Context, search_text: str, show_all: bool, json_output: bool):
    """Show the catalog tree.

    Without a search, nodes you expanded (see 'catalog expand') are shown
    open. With a search, every node holding a match is opened.
    """
    try:
        core = get_core(ctx)
        nodes = core.get_tree(search_text)
        if json_output:
            click.echo(json.dumps([n.model_dump(mode="json") for n in nodes], indent=2))
            return
        expanded = set(core.get_expanded_ids(nodes, search_text)) | {TREE_ROOT_ID}
        _echo_tree(nodes, expanded, search_text, show_all)
    except TrellisError as e:
        raise to_click_error(e)


@catalog.command(name="expand")
@click.argument("node_id")
@click.pass_context
def expand(ctx: click.Context, node_id: str):
    """Remember NODE_ID as expanded in the tree view."""
    try:
        core = get_core(ctx, load=False)
        core.set_expanded(node_id, True)
    except TrellisError as e:
        raise to_click_error(e)


@catalog.command(name="collapse")
@click.argument("node_id")
@click.pass_context
def collapse(ctx: click.Context, node_id: str):
    """Remember NODE_ID as collapsed in the tree view."""
    try:
        core = get_core(ctx, load=False)
        core.set_expanded(node_id, False)
    except TrellisError as e:
        raise to_click_error(e)


# =============================================================================
# Add
# =============================================================================

@catalog.group(name="add")
def add():
    """Add a catalog entry."""
    pass


@add.command(name="group")
@click.option("-n", "--name", required=True, help="Group name.")
@click.option("-m", "--memo", default="", help="Memo.")
@click.option("-p", "--parent", "parent_group_id", help="Parent group id (top level if omitted).")
@click.pass_context
def add_group(ctx: click.Context, name: str, memo: str, parent_group_id: Optional[str]):
    """Add a phase group."""
    try:
        group = get_core(ctx).add_group(name, memo, parent_group_id)
        click.echo(f"Phase group '{group.name}' created ({group.id}).")
    except TrellisError as e:
        raise to_click_error(e)


@add.command(name="phase")
@click.option("-n", "--name", required=True, help="Phase name.")
@click.option("-g", "--group", "group_id", required=True, help="Parent group id.")
@click.option("-m", "--memo", default="", help="Memo.")
@click.pass_context
def add_phase(ctx: click.Context, name: str, group_id: str, memo: str):
    """Add a phase under a phase group."""
    try:
        phase = get_core(ctx).add_phase(name, group_id, memo)
        click.echo(f"Phase '{phase.name}' created ({phase.id}).")
    except TrellisError as e:
        raise to_click_error(e)


@add.command(name="task")
@click.option("-n", "--name", required=True, help="Task master name.")
@click.option("-p", "--phase", "phase_id", required=True, help="Parent phase id.")
@click.option("-d", "--desc", "description", default="", help="Description.")
@click.option("-m", "--memo", default="", help="Memo.")
@click.option("-a", "--assignee", help="Primary assignee id.")
@click.pass_context
def add_task(ctx: click.Context, name: str, phase_id: str, description: str, memo: str, assignee: Optional[str]):
    """Add a task master under a phase."""
    try:
        tm = get_core(ctx).add_task_master(name, phase_id, description, memo, assignee)
        click.echo(f"Task master '{tm.name}' created ({tm.id}).")
    except TrellisError as e:
        raise to_click_error(e)


# =============================================================================
# Show / edit / delete
# =============================================================================

@catalog.command(name="show")
@click.argument("record_id")
@click.option("-j", "--json", "json_output", is_flag=True, help="Output in JSON format.")
@click.pass_context
def show(ctx: click.Context, record_id: str, json_output: bool):
    """Show one catalog entry."""
    try:
        core = get_core(ctx)
        kind, record = core.resolve(record_id)
        if record is None:
            raise NotFoundError(f"Catalog entry '{record_id}' not found.")
    except TrellisError as e:
        raise to_click_error(e)

    if json_output:
        click.echo(json.dumps({"kind": kind, **record.model_dump(mode="json")}, indent=2))
        return

    click.echo(f"Name: {record.name}")
    click.echo(f"Kind: {kind}")
    click.echo(f"Id: {record.id}")
    if kind == "task_master":
        click.echo(f"Phase: {record.phase_id}")
        click.echo(f"Description: {record.description}")
        click.echo(f"Primary assignee: {record.primary_assignee or ''}")
    else:
        click.echo(f"Parent group: {record.parent_group_id or ''}")
    click.echo(f"Memo: {record.memo}")
    click.echo(f"Updated: {format_timestamp(record.updated_at)} by {record.updated_by}")

    state = core.state.state
    if kind == "phase_group":
        children = [p for p in state.phases if p.parent_group_id == record.id]
        children += [g for g in state.phase_groups if g.parent_group_id == record.id]
    elif kind == "phase":
        children = [tm for tm in state.task_masters if tm.phase_id == record.id]
    else:
        return
    if children:
        click.echo("\nChildren:")
        for i, child in enumerate(children, 1):
            click.echo(f"  {i}. {child.name} ({child.id})")
    else:
        click.echo("\nNo children.")


@catalog.command(name="edit")
@click.argument("record_id")
@click.option("-n", "--name", help="New name.")
@click.option("-m", "--memo", help="New memo.")
@click.option("-d", "--desc", "description", help="New description (task masters).")
@click.option("-a", "--assignee", help="New primary assignee (task masters).")
@click.option("-p", "--parent", "parent_id", help="New parent group (groups, phases) or phase (task masters).")
@click.option("--top-level", is_flag=True, help="Move a group to the top level.")
@click.pass_context
def edit(
    ctx: click.Context,
    record_id: str,
    name: Optional[str],
    memo: Optional[str],
    description: Optional[str],
    assignee: Optional[str],
    parent_id: Optional[str],
    top_level: bool,
):
    """Edit a catalog entry. Only given fields change."""
    try:
        core = get_core(ctx)
        kind, record = core.resolve(record_id)
        if kind == "phase_group":
            if description is not None or assignee is not None:
                raise click.ClickException("Groups have no description or assignee.")
            changes = {"name": name, "memo": memo}
            if top_level:
                changes["parent_group_id"] = None
            elif parent_id is not None:
                changes["parent_group_id"] = parent_id
            updated = core.catalog.update_group(record_id, **changes)
        elif kind == "phase":
            if description is not None or assignee is not None or top_level:
                raise click.ClickException("Phases only take --name, --memo and --parent.")
            updated = core.catalog.update_phase(record_id, name, memo, parent_id)
        elif kind == "task_master":
            if top_level:
                raise click.ClickException("Task masters always belong to a phase.")
            updated = core.catalog.update_task_master(
                record_id, name, description, memo, assignee, parent_id
            )
        else:
            raise NotFoundError(f"Catalog entry '{record_id}' not found.")
        click.echo(f"'{updated.name}' updated successfully.")
    except TrellisError as e:
        raise to_click_error(e)


@catalog.command(name="delete")
@click.argument("record_id")
@click.confirmation_option(prompt="Are you sure you want to delete this entry and everything under it?")
@click.pass_context
def delete(ctx: click.Context, record_id: str):
    """Delete a catalog entry.

    WARNING: Deleting a group or phase deletes everything under it.
    Project tasks that used a deleted task master become ad-hoc tasks.
    """
    try:
        result = get_core(ctx).delete_catalog_entry(record_id)
    except TrellisError as e:
        raise to_click_error(e)

    if result.is_empty:
        click.echo(f"'{record_id}' was already deleted.")
        return
    click.echo(
        f"Deleted {len(result.group_ids)} group(s), {len(result.phase_ids)} phase(s), "
        f"{len(result.task_master_ids)} task master(s)."
    )
    if result.orphaned_task_ids:
        click.echo(f"{len(result.orphaned_task_ids)} project task(s) now stand on their own.")
