"""
Project commands for the Trellis CLI.

Create projects from catalog task masters, edit them under an edit lock,
and complete or delete them.
"""
import json
from contextlib import contextmanager
from datetime import date
from typing import Optional, Tuple

import click

from trellis.commands import get_core, to_click_error
from trellis.constants import VALID_PROJECT_TYPES, VALID_TASK_STATUSES
from trellis.core import TrellisCore
from trellis.exceptions import NotFoundError, TrellisError
from trellis.models.project import Project
from trellis.utils import format_age, format_timestamp


@click.group()
def project():
    """Manage projects and their tasks."""
    pass


@contextmanager
def _holding_lock(core: TrellisCore, proj: Project):
    """Hold the project's edit lock around one change.

    A lock the user already held (see 'project lock') stays held afterwards.
    """
    held_before = proj.lock is not None and proj.lock.holder_id == core.user_id
    core.acquire_lock(proj)
    try:
        yield
    finally:
        if not held_before:
            core.release_lock(proj, core.user_id)


def _task_label(core: TrellisCore, task) -> str:
    if task.is_ad_hoc:
        return f"{task.task_name} (ad-hoc)"
    tm = core.state.find_task_master(task.task_master_id)
    return tm.name if tm else task.task_master_id


def _display_project(core: TrellisCore, proj: Project):
    click.echo(f"Name: {proj.name}")
    click.echo(f"Id: {proj.id}")
    click.echo(f"Type: {proj.project_type}")
    if proj.external_ref_id:
        click.echo(f"External ref: {proj.external_ref_id}")
    click.echo(f"Memo: {proj.memo}")
    click.echo(f"Completed: {'yes' if proj.is_completed else 'no'}")
    if proj.lock:
        age = format_age(proj.lock.age(core.clock()))
        click.echo(f"Locked by: {core.resolve_name(proj.lock.holder_id)} ({age})")

    tasks = proj.live_tasks
    if not tasks:
        click.echo("\nNo tasks.")
        return
    click.echo("\nTasks:")
    for i, task in enumerate(tasks, 1):
        due = f", due {task.due_date.isoformat()}" if task.due_date else ""
        who = f", {task.assignee_id}" if task.assignee_id else ""
        click.echo(f"  {i}. [{task.status}] {_task_label(core, task)}{who}{due} ({task.id})")


@project.command(name="list")
@click.option("-j", "--json", "json_output", is_flag=True, help="Output in JSON format.")
@click.pass_context
def list_projects(ctx: click.Context, json_output: bool):
    """List open projects."""
    try:
        core = get_core(ctx)
    except TrellisError as e:
        raise to_click_error(e)

    projects = core.state.state.projects
    if json_output:
        click.echo(json.dumps([p.model_dump(mode="json") for p in projects], indent=2))
        return
    if not projects:
        click.echo("No open projects.")
        return
    for proj in projects:
        done = sum(1 for t in proj.live_tasks if t.status == "completed")
        lock = " [locked]" if proj.lock else ""
        click.echo(
            f"{proj.name} ({proj.id}) - {done}/{len(proj.live_tasks)} tasks done, "
            f"updated {format_timestamp(proj.updated_at)}{lock}"
        )


@project.command(name="show")
@click.argument("project_id")
@click.option("-j", "--json", "json_output", is_flag=True, help="Output in JSON format.")
@click.pass_context
def show(ctx: click.Context, project_id: str, json_output: bool):
    """Show a project and its tasks."""
    try:
        core = get_core(ctx)
        proj = core.get_project(project_id)
    except TrellisError as e:
        raise to_click_error(e)

    if json_output:
        click.echo(json.dumps(proj.model_dump(mode="json"), indent=2))
    else:
        _display_project(core, proj)


@project.command(name="create")
@click.option("-n", "--name", required=True, help="Project name.")
@click.option("-t", "--type", "project_type", type=click.Choice(VALID_PROJECT_TYPES), default="general",
              show_default=True, help="Project type.")
@click.option("-T", "--task-master", "task_master_ids", multiple=True, help="Task master id (repeatable).")
@click.option("--task", "task_names", multiple=True, help="Ad-hoc task name (repeatable).")
@click.option("-m", "--memo", default="", help="Memo.")
@click.option("-r", "--ref", "external_ref_id", help="External reference id.")
@click.pass_context
def create(
    ctx: click.Context,
    name: str,
    project_type: str,
    task_master_ids: Tuple[str, ...],
    task_names: Tuple[str, ...],
    memo: str,
    external_ref_id: Optional[str],
):
    """Create a project from catalog task masters and ad-hoc tasks."""
    try:
        proj = get_core(ctx).create_project(
            name, project_type, list(task_master_ids), list(task_names), memo, external_ref_id
        )
        click.echo(f"Project '{proj.name}' created ({proj.id}) with {len(proj.tasks)} task(s).")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="add-task")
@click.argument("project_id")
@click.option("-T", "--task-master", "task_master_id", default="", help="Task master id.")
@click.option("-n", "--name", "task_name", default="", help="Ad-hoc task name.")
@click.option("-a", "--assignee", default="", help="Assignee id.")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), help="Due date (YYYY-MM-DD).")
@click.option("-m", "--memo", default="", help="Memo.")
@click.pass_context
def add_task(
    ctx: click.Context,
    project_id: str,
    task_master_id: str,
    task_name: str,
    assignee: str,
    due,
    memo: str,
):
    """Add a task to a project.

    Takes the project's edit lock for the duration of the change. A lock
    you already hold with 'project lock' is kept.
    """
    try:
        core = get_core(ctx)
        proj = core.get_project(project_id)
        if task_master_id and core.state.find_task_master(task_master_id) is None:
            raise NotFoundError(f"Task master '{task_master_id}' not found.")
        due_date: Optional[date] = due.date() if due else None
        task = core.projects.new_task(
            proj.id, task_master_id, task_name, assignee_id=assignee, due_date=due_date, memo=memo
        )

        with _holding_lock(core, proj):
            proj = core.get_project(project_id)
            proj.tasks.append(task)
            core.projects.update_project(proj, core.user_id)
        click.echo(f"Task '{_task_label(core, task)}' added to '{proj.name}' ({task.id}).")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="update-task")
@click.argument("project_id")
@click.argument("task_id")
@click.option("-s", "--status", type=click.Choice(VALID_TASK_STATUSES), help="New status.")
@click.option("-a", "--assignee", help="New assignee id.")
@click.option("--due", type=click.DateTime(formats=["%Y-%m-%d"]), help="New due date (YYYY-MM-DD).")
@click.option("-m", "--memo", help="New memo.")
@click.pass_context
def update_task(
    ctx: click.Context,
    project_id: str,
    task_id: str,
    status: Optional[str],
    assignee: Optional[str],
    due,
    memo: Optional[str],
):
    """Change a task's status, assignee, due date or memo."""
    if status is None and assignee is None and due is None and memo is None:
        raise click.ClickException(
            "No update parameters provided. "
            "Specify at least one of: -s/--status, -a/--assignee, --due, -m/--memo."
        )
    try:
        core = get_core(ctx)
        proj = core.get_project(project_id)
        task = proj.get_task(task_id)
        if task is None or task.is_deleted:
            raise NotFoundError(f"Task '{task_id}' not found in project '{project_id}'.")

        changes = {}
        if status is not None:
            changes["status"] = status
        if assignee is not None:
            changes["assignee_id"] = assignee
        if due is not None:
            changes["due_date"] = due.date()
        if memo is not None:
            changes["memo"] = memo

        with _holding_lock(core, proj):
            updated = core.projects.update_task(proj.id, task.model_copy(update=changes), core.user_id)
        click.echo(f"Task '{_task_label(core, updated)}' updated successfully.")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="lock")
@click.argument("project_id")
@click.pass_context
def lock(ctx: click.Context, project_id: str):
    """Take the edit lock on a project."""
    try:
        core = get_core(ctx)
        held = core.acquire_lock(core.get_project(project_id))
        click.echo(f"Lock on '{project_id}' held by {core.resolve_name(held.holder_id)}.")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="unlock")
@click.argument("project_id")
@click.option("-f", "--force", is_flag=True, help="Release even if someone else holds the lock.")
@click.pass_context
def unlock(ctx: click.Context, project_id: str, force: bool):
    """Release the edit lock on a project."""
    try:
        core = get_core(ctx)
        core.release_lock(core.get_project(project_id), None if force else core.user_id)
        click.echo(f"Lock on '{project_id}' released.")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="complete")
@click.argument("project_id")
@click.pass_context
def complete(ctx: click.Context, project_id: str):
    """Mark a project as completed."""
    try:
        core = get_core(ctx)
        proj = core.projects.complete_project(core.get_project(project_id))
        click.echo(f"Project '{proj.name}' completed.")
    except TrellisError as e:
        raise to_click_error(e)


@project.command(name="delete")
@click.argument("project_id")
@click.confirmation_option(prompt="Are you sure you want to delete this project and its tasks?")
@click.pass_context
def delete(ctx: click.Context, project_id: str):
    """Delete a project with all of its tasks."""
    try:
        core = get_core(ctx)
        proj = core.projects.delete_project(core.get_project(project_id))
        click.echo(f"Project '{proj.name}' deleted.")
    except TrellisError as e:
        raise to_click_error(e)
