"""Verify command implementation."""

import asyncio
from pathlib import Path

import click

from kisspanel_installer import setup_logging
from kisspanel_installer.bundle import BundleRef
from kisspanel_installer.config import load_defaults
from kisspanel_installer.errors import InstallerError
from kisspanel_installer.installer import StepContext, StepStatus, build_plan, verify
from kisspanel_installer.paths import TargetLayout, get_defaults_path
from kisspanel_installer.request import resolve
from kisspanel_installer.system import Host

from .utils import echo_record, fail, load_profile, target_options


@click.command("verify")
@target_options
@click.option("--port", default=None, metavar="N", help="Panel port to probe")
@click.pass_context
def verify_command(ctx, root: Path, os_release: Path, port: str | None):
    """Check an existing installation.

    Components are taken from the saved defaults of the last run.
    """
    setup_logging(ctx.obj.get("debug", False))
    try:
        asyncio.run(run_verify(root, os_release, port))
    except InstallerError as e:
        fail(e)


async def run_verify(root: Path, os_release: Path, port: str | None) -> None:
    persisted = load_defaults(get_defaults_path())
    profile = load_profile(os_release)
    request = resolve({"port": port}, persisted, interactive_allowed=False)
    plan = build_plan(request, profile)

    step_ctx = StepContext(
        request=request,
        profile=profile,
        host=Host(),
        layout=TargetLayout(root),
        bundle=BundleRef.default(),
    )

    click.echo(f"Verifying KissPanel installation in {root}...")
    report = await verify(plan, step_ctx)
    for record in report.checks:
        echo_record(record)

    click.echo("")
    passed = sum(1 for r in report.checks if r.status == StepStatus.OK)
    summary = f"{passed}/{len(report.checks)} checks passed"
    if report.passed:
        click.secho(f"✅ {summary}", fg="green")
    else:
        click.secho(f"⚠️  {summary}", fg="yellow")


__all__ = ["verify_command", "run_verify"]
