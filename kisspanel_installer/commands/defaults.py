"""Persisted defaults commands."""

import sys

import click
import yaml

from kisspanel_installer.config import (
    builtin_defaults,
    load_defaults,
    render_command,
    save_defaults,
)
from kisspanel_installer.errors import InstallerError
from kisspanel_installer.paths import get_defaults_path
from kisspanel_installer.request import validate_flags, validate_port

from .utils import fail, pop_request_args, request_options


@click.group()
def defaults():
    """Manage the defaults used by the next install."""
    pass


@defaults.command(name="show")
@click.option("--all", "show_all", is_flag=True, help="Include built-in defaults")
def defaults_show(show_all: bool):
    """Print the saved defaults."""
    path = get_defaults_path()
    try:
        saved = load_defaults(path)
    except InstallerError as e:
        fail(e)

    values = {**builtin_defaults(), **saved} if show_all else saved
    if not values:
        click.echo(f"No saved defaults ({path})")
        return
    click.echo(f"# {path}")
    click.echo(yaml.safe_dump(values, default_flow_style=False, sort_keys=False).rstrip())


@defaults.command(name="save")
@request_options(include_password=False)
def defaults_save(**kwargs):
    """Save option values as defaults for the next install.

    Values are merged into any defaults already saved.
    """
    args = {k: v for k, v in pop_request_args(kwargs).items() if v is not None}
    path = get_defaults_path(create=True)
    try:
        validate_flags(args)
        if "port" in args:
            args["port"] = validate_port(args["port"])
        merged = {**load_defaults(path), **args}
    except InstallerError as e:
        fail(e)

    save_defaults(path, merged)
    click.echo(f"✅ Saved {len(args)} value(s) to {path}")


@defaults.command(name="reset")
def defaults_reset():
    """Forget the saved defaults (a backup is kept)."""
    path = get_defaults_path()
    if not path.exists():
        click.echo(f"No saved defaults ({path})")
        sys.exit(0)

    backup_path = path.with_suffix(".yaml.bak")
    path.rename(backup_path)
    click.echo(f"✅ Defaults reset (backup: {backup_path})")


@defaults.command(name="command")
def defaults_command():
    """Print the install command reproducing the saved defaults."""
    try:
        saved = load_defaults(get_defaults_path())
    except InstallerError as e:
        fail(e)
    click.echo(render_command(saved))


__all__ = ["defaults"]
