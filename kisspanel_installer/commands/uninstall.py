"""Uninstall command implementation."""

import asyncio
import sys
from pathlib import Path

import click

from kisspanel_installer import setup_logging
from kisspanel_installer.bundle import BundleRef
from kisspanel_installer.config import load_defaults
from kisspanel_installer.errors import InstallerError, ValidationError
from kisspanel_installer.installer import (
    StepContext,
    StepStatus,
    build_plan,
    remove_installation,
)
from kisspanel_installer.lock import run_lock
from kisspanel_installer.paths import TargetLayout, get_defaults_path
from kisspanel_installer.prompts import has_terminal
from kisspanel_installer.request import resolve
from kisspanel_installer.system import Host

from .utils import EXIT_CANCELLED, echo_record, fail, load_profile, target_options


@click.command("uninstall")
@target_options
@click.option(
    "--remove-packages", is_flag=True, help="Also remove the packages of installed services"
)
@click.option("--yes", "-y", "assume_yes", is_flag=True, help="Do not ask for confirmation")
@click.pass_context
def uninstall_command(ctx, root: Path, os_release: Path, remove_packages: bool, assume_yes: bool):
    """Remove KissPanel from this server.

    Services of the components in the saved defaults are stopped and
    disabled, the panel's links, user and group are removed, and the
    installation root is deleted.
    """
    setup_logging(ctx.obj.get("debug", False))
    try:
        if not assume_yes and not has_terminal():
            raise ValidationError("yes", "Refusing to uninstall without a terminal; pass --yes")
        asyncio.run(run_uninstall(root, os_release, remove_packages, assume_yes))
    except InstallerError as e:
        fail(e)


async def run_uninstall(
    root: Path, os_release: Path, remove_packages: bool, assume_yes: bool
) -> None:
    persisted = load_defaults(get_defaults_path())
    profile = load_profile(os_release)
    request = resolve({}, persisted, interactive_allowed=False)
    plan = build_plan(request, profile)
    layout = TargetLayout(root)

    click.secho("WARNING: This will remove KissPanel and its configuration", fg="red")
    click.echo(f"  Root:       {layout.root}")
    click.echo(f"  Services:   {', '.join(c.name for c in plan.components)}")
    click.echo(f"  Packages:   {'removed' if remove_packages else 'kept'}")
    if not assume_yes and not click.confirm("\nContinue with uninstallation?", default=False):
        click.echo("Uninstallation cancelled.")
        sys.exit(EXIT_CANCELLED)

    step_ctx = StepContext(
        request=request,
        profile=profile,
        host=Host(),
        layout=layout,
        bundle=BundleRef.default(),
    )
    with run_lock(layout.lock_path):
        records = await remove_installation(
            plan, step_ctx, purge_packages=remove_packages, on_record=echo_record
        )

    click.echo("")
    warned = [r for r in records if r.status != StepStatus.OK]
    if warned:
        click.secho(f"⚠️  KissPanel removed with {len(warned)} warning(s)", fg="yellow")
    else:
        click.secho("✅ KissPanel removed", fg="green", bold=True)


__all__ = ["uninstall_command", "run_uninstall"]
