"""
Config command group for the Trellis CLI.

Commands for viewing and editing the settings in .trellis/config.json.
"""
import json

import click
from pydantic import ValidationError as PydanticValidationError

from trellis.commands import get_core, to_click_error
from trellis.exceptions import ConfigurationError, TrellisError
from trellis.managers.storage_manager import JsonStore
from trellis.models.files import ConfigFile


def _store(ctx: click.Context) -> JsonStore:
    store = get_core(ctx, load=False).store
    if not isinstance(store, JsonStore):
        raise ConfigurationError("This store keeps no config file.")
    return store


def _read_key(data: dict, key: str):
    """Look up a top-level key, or 'user_names.<id>' for one user's display name."""
    if key.startswith("user_names."):
        user_id = key.split(".", 1)[1]
        if user_id not in data["user_names"]:
            raise ConfigurationError(f"No display name set for user '{user_id}'.")
        return data["user_names"][user_id]
    if key not in data:
        raise ConfigurationError(
            f"Unknown config key '{key}'. Known keys: {', '.join(sorted(data))}."
        )
    return data[key]


@click.group()
def config():
    """View and edit project configuration.

    Configuration is stored in .trellis/config.json.
    """
    pass


@config.command(name="show")
@click.pass_context
def show_config(ctx: click.Context):
    """Show current configuration."""
    try:
        data = _store(ctx).load_config().model_dump(mode="json")
    except TrellisError as e:
        raise to_click_error(e)
    click.echo(json.dumps(data, indent=2))


@config.command(name="get")
@click.argument("key")
@click.pass_context
def get_config(ctx: click.Context, key: str):
    """Get a configuration value."""
    try:
        data = _store(ctx).load_config().model_dump(mode="json")
        value = _read_key(data, key)
    except TrellisError as e:
        raise to_click_error(e)
    click.echo(json.dumps(value) if isinstance(value, dict) else value)


@config.command(name="set")
@click.argument("key")
@click.argument("value")
@click.pass_context
def set_config(ctx: click.Context, key: str, value: str):
    """Set a configuration value.

    Use 'user_names.<id>' to set the display name shown for a user.
    """
    try:
        store = _store(ctx)
        data = store.load_config().model_dump(mode="json")
        if key.startswith("user_names."):
            data["user_names"][key.split(".", 1)[1]] = value
        else:
            _read_key(data, key)
            if key in ("schema_version", "user_names"):
                raise ConfigurationError(f"'{key}' cannot be set directly.")
            data[key] = value
        try:
            updated = ConfigFile.model_validate(data)
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid value for '{key}': {e.errors()[0]['msg']}")
        store.save_config(updated)
    except TrellisError as e:
        raise to_click_error(e)
    click.echo(f"Set {key} = {value}")
