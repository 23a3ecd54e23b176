"""
Command-line interface for Trellis.

Uses TrellisCore and managers exclusively.
"""
import logging
from pathlib import Path
from typing import Optional

import click

from trellis.commands.catalog import catalog
from trellis.commands.config import config
from trellis.commands.project import project
from trellis.constants import ConfigManager, reset_config_manager, set_config_manager
from trellis.utils import setup_logging


@click.group()
@click.option(
    "--data-dir",
    type=click.Path(file_okay=False, path_type=Path),
    default=None,
    help="Path to the .trellis/ data directory (default: ./.trellis).",
)
@click.option(
    "-u", "--user",
    "user_id",
    envvar="TRELLIS_USER",
    default="local",
    show_default=True,
    help="Id of the acting user (env: TRELLIS_USER).",
)
@click.option("-v", "--verbose", is_flag=True, help="Enable debug logging.")
@click.pass_context
def cli(ctx: click.Context, data_dir: Optional[Path], user_id: str, verbose: bool):
    """Track projects built from a reusable phase/task catalog."""
    setup_logging(logging.DEBUG if verbose else logging.WARNING)
    if data_dir is not None:
        set_config_manager(ConfigManager(data_dir=data_dir))
    else:
        reset_config_manager()
    ctx.ensure_object(dict)
    ctx.obj["data_dir"] = data_dir
    ctx.obj["user_id"] = user_id


cli.add_command(catalog)
cli.add_command(project)
cli.add_command(config)


if __name__ == '__main__':
    cli()
