"""Installation execution and confirmation."""

import logging
import sqlite3
import time
from datetime import datetime, timezone
from typing import Callable

import click

from kisspanel_installer.errors import DeployError, ExecutionError
from kisspanel_installer.request import InstallationRequest

from .models import ExecutionRecord, Plan, PlanStep, StepContext, StepStatus

_logging = logging.getLogger(__name__)

RecordCallback = Callable[[ExecutionRecord], None]


def confirm_installation(
    plan: Plan,
    request: InstallationRequest,
    skip_confirmation: bool = False,
) -> bool:
    click.echo("")
    click.echo("=" * 60)
    click.echo(f"KissPanel Installation: {plan.platform}")
    click.echo("=" * 60)
    click.echo("")
    click.echo(f"  Hostname:     {request.hostname}")
    click.echo(f"  Panel port:   {request.port}")
    click.echo(f"  Admin email:  {request.admin_email}")
    click.echo(f"  Language:     {request.language}")
    click.echo(f"  Components:   {', '.join(c.name for c in plan.components)}")
    click.echo(f"  Steps:        {len(plan.steps)}")
    if request.force:
        click.echo("")
        click.secho("  ⚠️  --force: existing control panels will be ignored", fg="yellow")
    click.echo("")
    click.echo("=" * 60)

    if skip_confirmation or not request.interactive:
        return True
    return click.confirm("\nContinue with installation?", default=False)


def _record(
    step: PlanStep,
    status: StepStatus,
    detail: str,
    started: datetime,
    t0: float,
    changed: bool = False,
) -> ExecutionRecord:
    step.status = status
    return ExecutionRecord(
        step=step.name,
        status=status,
        detail=detail,
        timestamp=started,
        duration=time.monotonic() - t0,
        changed=changed,
    )


async def apply_plan(
    plan: Plan,
    ctx: StepContext,
    dry_run: bool = False,
    on_record: RecordCallback | None = None,
) -> list[ExecutionRecord]:
    """Run every step of the plan in order.

    Optional steps that fail are recorded as warned and the remaining steps
    of that component are skipped. A failing required step stops the run.

    Raises:
        ExecutionError: A required step failed. Carries all records so far.
        DeployError: The config bundle could not be deployed by a required
            step. Carries all records so far.
    """
    records: list[ExecutionRecord] = []
    failed_components: set[str] = set()

    def emit(record: ExecutionRecord) -> None:
        records.append(record)
        if on_record:
            on_record(record)

    for step in plan.steps:
        started = datetime.now(timezone.utc)
        t0 = time.monotonic()

        if dry_run:
            emit(_record(step, StepStatus.SKIPPED, "dry run", started, t0))
            continue
        if step.component.name in failed_components:
            emit(_record(step, StepStatus.SKIPPED, "install failed", started, t0))
            continue

        step.status = StepStatus.RUNNING
        _logging.info(f"Running {step.name}")
        try:
            outcome = await step.run(ctx, step.component)
        except (ExecutionError, DeployError, OSError, sqlite3.Error) as e:
            detail = str(e)
            if not step.required:
                _logging.warning(f"Optional step {step.name} failed: {detail}")
                failed_components.add(step.component.name)
                emit(_record(step, StepStatus.WARNED, detail, started, t0))
                continue

            _logging.error(f"Required step {step.name} failed: {detail}")
            emit(_record(step, StepStatus.FAILED, detail, started, t0))
            if isinstance(e, (ExecutionError, DeployError)):
                e.records = records
                raise
            raise ExecutionError(step.name, detail, records=records) from e

        if outcome.warnings:
            detail = "; ".join(filter(None, [outcome.detail, *outcome.warnings]))
            emit(_record(step, StepStatus.WARNED, detail, started, t0, outcome.changed))
        else:
            emit(_record(step, StepStatus.OK, outcome.detail, started, t0, outcome.changed))
        _logging.debug(f"{step.name}: {outcome.detail}")

    return records


__all__ = [
    "confirm_installation",
    "apply_plan",
]
