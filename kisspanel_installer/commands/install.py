"""Install and plan command implementations."""

import asyncio
import dataclasses
import logging
import sys
from pathlib import Path

import click

from kisspanel_installer import add_log_file, setup_logging
from kisspanel_installer.bundle import BundleRef
from kisspanel_installer.config import load_defaults, save_defaults
from kisspanel_installer.errors import DeployError, ExecutionError, InstallerError
from kisspanel_installer.installer import (
    StepContext,
    StepStatus,
    VerificationReport,
    apply_plan,
    build_plan,
    confirm_installation,
    render_plan,
    verify,
    write_report,
)
from kisspanel_installer.installer.actions import admin_password_exists
from kisspanel_installer.lock import run_lock
from kisspanel_installer.paths import TargetLayout, get_defaults_path
from kisspanel_installer.prompts import ask_field, has_terminal
from kisspanel_installer.request import resolve
from kisspanel_installer.system import Host

from .utils import (
    EXIT_CANCELLED,
    EXIT_STEP_FAILED,
    bundle_options,
    echo_record,
    fail,
    load_profile,
    pop_request_args,
    request_options,
    target_options,
)

_logging = logging.getLogger(__name__)


@click.command()
@request_options()
@target_options
@bundle_options
@click.option("--dry-run", is_flag=True, help="Show what would run without changing anything")
@click.pass_context
def install(ctx, root: Path, os_release: Path, bundle_url, bundle_version, dry_run, **kwargs):
    """Install KissPanel and the selected services."""
    debug = ctx.obj.get("debug", False)
    args = pop_request_args(kwargs)
    try:
        asyncio.run(
            run_install(args, root, os_release, bundle_url, bundle_version, dry_run, debug)
        )
    except InstallerError as e:
        fail(e)


async def run_install(
    args: dict,
    root: Path,
    os_release: Path,
    bundle_url: str | None,
    bundle_version: str,
    dry_run: bool,
    debug: bool,
) -> None:
    setup_logging(debug)
    layout = TargetLayout(root)
    defaults_path = get_defaults_path()

    persisted = load_defaults(defaults_path)
    profile = load_profile(os_release)
    interactive_allowed = has_terminal()
    request = resolve(args, persisted, interactive_allowed=interactive_allowed, ask=ask_field)
    plan = build_plan(request, profile)

    if request.password_generated and admin_password_exists(layout.database_path):
        request = dataclasses.replace(request, admin_password="", password_generated=False)
        click.echo("An admin password is already set; keeping it.")
    elif request.password_generated and not dry_run:
        click.echo(f"Generated admin password: {request.admin_password}")
        click.echo("Save it now, it will not be shown again.")

    if not confirm_installation(plan, request, skip_confirmation=dry_run or not interactive_allowed):
        click.echo("Installation cancelled.")
        sys.exit(EXIT_CANCELLED)

    step_ctx = StepContext(
        request=request,
        profile=profile,
        host=Host(),
        layout=layout,
        bundle=BundleRef.default(bundle_version, bundle_url),
    )

    if dry_run:
        click.echo("")
        click.echo(render_plan(plan))
        click.echo("")
        for record in await apply_plan(plan, step_ctx, dry_run=True):
            echo_record(record)
        click.echo("\nDry run: no changes were made.")
        return

    try:
        with run_lock(layout.lock_path):
            add_log_file(layout.log_file, debug)
            _logging.info(f"Installing on {plan.platform} into {layout.root}")
            try:
                records = await apply_plan(plan, step_ctx, on_record=echo_record)
            except (ExecutionError, DeployError) as e:
                write_report(VerificationReport(execution=e.records, checks=[]), layout.report_file)
                click.echo(f"\nPartial report written to {layout.report_file}", err=True)
                raise

            click.echo("\nVerifying installation...")
            report = await verify(plan, step_ctx, records)
            for record in report.checks:
                if record.status != StepStatus.OK:
                    echo_record(record)
            write_report(report, layout.report_file)
    except OSError as e:
        click.echo(f"Error: cannot write to {layout.root}: {e}", err=True)
        sys.exit(EXIT_STEP_FAILED)

    save_defaults(get_defaults_path(create=True), request.to_defaults())

    click.echo("")
    click.secho("✅ KissPanel installation completed", fg="green", bold=True)
    click.echo(f"   Panel URL:  {request.panel_url}")
    click.echo("   Username:   admin")
    if request.password_generated:
        click.echo("   Password:   (shown above)")
    elif not request.admin_password:
        click.echo("   Password:   unchanged")
    click.echo(f"   Report:     {layout.report_file}")
    if not report.passed:
        click.secho(
            f"   {len(report.warnings)} warning(s); see the report for details", fg="yellow"
        )


@click.command("plan")
@request_options(include_password=False)
@target_options
@click.pass_context
def plan_command(ctx, root: Path, os_release: Path, **kwargs):
    """Show the installation plan without changing anything."""
    setup_logging(ctx.obj.get("debug", False))
    args = pop_request_args(kwargs)
    try:
        persisted = load_defaults(get_defaults_path())
        profile = load_profile(os_release)
        request = resolve(args, persisted, interactive_allowed=False)
        plan = build_plan(request, profile)
    except InstallerError as e:
        fail(e)

    click.echo(render_plan(plan))
    click.echo("")
    click.echo(f"Target root: {root}")
    click.echo(f"Panel URL:   {request.panel_url}")


__all__ = [
    "install",
    "plan_command",
    "run_install",
]
