"""CLI command definitions for kisspanel-install."""

import click

from kisspanel_installer import __version__
from kisspanel_installer.commands.defaults import defaults
from kisspanel_installer.commands.install import install, plan_command
from kisspanel_installer.commands.uninstall import uninstall_command
from kisspanel_installer.commands.verify import verify_command


@click.group(context_settings=dict(help_option_names=["-h", "--help"]))
@click.version_option(__version__, prog_name="kisspanel-install")
@click.option("--debug", is_flag=True, help="Enable debug output for troubleshooting")
@click.pass_context
def cli(ctx, debug):
    """Provision a KissPanel server."""
    ctx.ensure_object(dict)
    ctx.obj["debug"] = debug


# Register all commands
cli.add_command(install)
cli.add_command(plan_command, name="plan")
cli.add_command(verify_command, name="verify")
cli.add_command(uninstall_command, name="uninstall")
cli.add_command(defaults)

__all__ = ["cli"]


if __name__ == "__main__":
    cli()
