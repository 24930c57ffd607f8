"""Removal of a KissPanel installation.

Removal is best effort: every stage runs even when an earlier one failed,
and a failing stage is recorded as warned. Nothing outside the target root
is deleted except the links the installer itself created; the files those
links replaced are restored from their backups.
"""

import logging
import shutil
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Awaitable, Callable

from kisspanel_installer import bundle
from kisspanel_installer.errors import ExecutionError
from kisspanel_installer.execution import INSTALL_TIMEOUT, SERVICE_TIMEOUT

from .actions import (
    PANEL_GROUP,
    PANEL_SERVICE_FILE,
    PANEL_SITE_FILE,
    PANEL_USER,
    PHPFPM_POOL_FILE,
    _outcome,
    _run,
)
from .installation import RecordCallback
from .models import ExecutionRecord, Plan, StepContext, StepOutcome, StepStatus

# The firewall stays up after removal.
KEEP_RUNNING = ("iptables",)

_logging = logging.getLogger(__name__)

Stage = Callable[[], Awaitable[StepOutcome]]


def managed_links(ctx: StepContext) -> list[Path]:
    """System paths that may hold links into the target's conf tree."""
    profile = ctx.profile
    links = []
    if profile.has_component("nginx"):
        links.append(Path(profile.config_dir("nginx")) / "nginx.conf")
        links.append(
            Path(profile.include_dir("nginx") or profile.config_dir("nginx")) / PANEL_SITE_FILE
        )
    if profile.has_component("phpfpm") and profile.include_dir("phpfpm"):
        pool_dir = Path(profile.include_dir("phpfpm"))
        links.extend([pool_dir / PHPFPM_POOL_FILE, pool_dir / PANEL_SITE_FILE])
    if profile.has_component("panel"):
        links.append(Path(profile.config_dir("panel")) / PANEL_SERVICE_FILE)
    return links


async def stop_services(plan: Plan, ctx: StepContext) -> StepOutcome:
    """Stop and disable the services of every planned component, panel first."""
    profile = ctx.profile
    actions = []
    for component in reversed(plan.components):
        unit = profile.service(component.name)
        if not unit or component.name in KEEP_RUNNING:
            continue
        if await ctx.host.succeeds(profile.service_command("is_active", unit)):
            await _run(ctx, "services:remove", profile.service_command("stop", unit), SERVICE_TIMEOUT)
            actions.append(f"stopped {unit}")
        if await ctx.host.succeeds(profile.service_command("is_enabled", unit)):
            await _run(
                ctx, "services:remove", profile.service_command("disable", unit), SERVICE_TIMEOUT
            )
            actions.append(f"disabled {unit}")
    return _outcome(actions, "no services running")


async def remove_packages(plan: Plan, ctx: StepContext) -> StepOutcome:
    """Remove the packages of every planned component except the base tools."""
    packages = []
    for component in plan.components:
        if component.name == "base":
            continue
        for package in ctx.profile.packages(component.name):
            if package not in packages:
                packages.append(package)
    if not packages:
        return StepOutcome("no packages to remove")

    _logging.info(f"Removing packages: {' '.join(packages)}")
    await _run(ctx, "packages:remove", ctx.profile.remove_command(packages), INSTALL_TIMEOUT)
    return StepOutcome(f"removed: {' '.join(packages)}", changed=True)


async def remove_links(ctx: StepContext) -> StepOutcome:
    actions = []
    unit_removed = False
    for link in managed_links(ctx):
        if bundle.unlink_managed_file(link, ctx.layout.conf_dir):
            actions.append(f"removed {link}")
            unit_removed = unit_removed or link.name == PANEL_SERVICE_FILE
    if unit_removed:
        await _run(
            ctx, "links:remove", ctx.profile.service_command("daemon_reload"), SERVICE_TIMEOUT
        )
    return _outcome(actions, "no managed links found")


async def remove_accounts(ctx: StepContext) -> StepOutcome:
    actions = []
    if ctx.host.user_exists(PANEL_USER):
        await _run(ctx, "accounts:remove", f"userdel {PANEL_USER}")
        actions.append(f"removed user {PANEL_USER}")
    if ctx.host.group_exists(PANEL_GROUP):
        await _run(ctx, "accounts:remove", f"groupdel {PANEL_GROUP}")
        actions.append(f"removed group {PANEL_GROUP}")
    return _outcome(actions, "no panel accounts found")


async def remove_files(ctx: StepContext) -> StepOutcome:
    root = ctx.layout.root
    if not root.exists():
        return StepOutcome(f"{root} already absent")
    shutil.rmtree(root)
    return StepOutcome(f"removed {root}", changed=True)


async def remove_installation(
    plan: Plan,
    ctx: StepContext,
    purge_packages: bool = False,
    on_record: RecordCallback | None = None,
) -> list[ExecutionRecord]:
    """Undo an installation, one recorded stage at a time.

    Returns:
        One record per stage. Failed stages are warned, never raised.
    """
    stages: list[tuple[str, Stage]] = [
        ("services:remove", lambda: stop_services(plan, ctx)),
    ]
    if purge_packages:
        stages.append(("packages:remove", lambda: remove_packages(plan, ctx)))
    stages.extend(
        [
            ("links:remove", lambda: remove_links(ctx)),
            ("accounts:remove", lambda: remove_accounts(ctx)),
            ("files:remove", lambda: remove_files(ctx)),
        ]
    )

    records = []
    for name, stage in stages:
        started = datetime.now(timezone.utc)
        t0 = time.monotonic()
        _logging.info(f"Running {name}")
        try:
            outcome = await stage()
        except (ExecutionError, OSError) as e:
            _logging.warning(f"{name} failed: {e}")
            record = ExecutionRecord(
                name, StepStatus.WARNED, str(e), started, time.monotonic() - t0
            )
        else:
            record = ExecutionRecord(
                name,
                StepStatus.OK,
                outcome.detail,
                started,
                time.monotonic() - t0,
                outcome.changed,
            )
        records.append(record)
        if on_record:
            on_record(record)
    return records


__all__ = [
    "managed_links",
    "stop_services",
    "remove_packages",
    "remove_links",
    "remove_accounts",
    "remove_files",
    "remove_installation",
]
