"""
Command groups for the Trellis CLI.

Shared helpers for building a session core from the click context and
turning Trellis errors into click errors.
"""
import click

from trellis.core import TrellisCore
from trellis.exceptions import (
    ContentionError,
    NotFoundError,
    PartialCascadeFailure,
    TrellisError,
    ValidationError,
)


def get_core(ctx: click.Context, load: bool = True) -> TrellisCore:
    """Build a TrellisCore for the options given to the root command.

    Args:
        ctx: Current click context.
        load: Fill the session caches before returning.
    """
    options = ctx.find_root().obj or {}
    core = TrellisCore(data_dir=options.get("data_dir"), user_id=options.get("user_id", ""))
    if load:
        core.load()
    return core


def to_click_error(error: TrellisError) -> click.ClickException:
    """Map a Trellis error to the message shown to the user."""
    if isinstance(error, NotFoundError):
        return click.ClickException(str(error))
    if isinstance(error, ContentionError):
        return click.ClickException(f"Locked: {error}")
    if isinstance(error, ValidationError):
        return click.ClickException(f"Validation Error: {error}")
    if isinstance(error, PartialCascadeFailure):
        return click.ClickException(f"Partial delete: {error}")
    return click.ClickException(f"Error: {error}")
