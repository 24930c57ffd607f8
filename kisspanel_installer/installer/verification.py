"""Post-install verification and the final report.

Nothing in here is fatal: every finding becomes a warned record in the
report and the installer's exit code is left alone.
"""

import logging
import sqlite3
import time
import warnings
from datetime import datetime, timezone
from pathlib import Path

import yaml

from kisspanel_installer.bundle import BUNDLE_SUBTREES
from kisspanel_installer.errors import VerificationWarning
from kisspanel_installer.paths import ROOT_SUBDIRS, TargetLayout

from .models import (
    CheckResult,
    ExecutionRecord,
    Plan,
    StepContext,
    StepStatus,
    VerificationReport,
)

_logging = logging.getLogger(__name__)


def check_layout(layout: TargetLayout) -> list[CheckResult]:
    results = []
    for name in ROOT_SUBDIRS:
        path = layout.root / name
        results.append(
            CheckResult(
                f"directory {name}",
                path.is_dir(),
                f"Directory exists: {path}" if path.is_dir() else f"Directory missing: {path}",
            )
        )

    for name in BUNDLE_SUBTREES:
        link = layout.conf_dir / name
        active = link.is_symlink() and link.resolve().is_dir()
        results.append(
            CheckResult(
                f"config {name}",
                active,
                f"Active configuration: {link.resolve()}"
                if active
                else f"Configuration not deployed: {link}",
            )
        )
    return results


def verified_components(plan: Plan, records: list[ExecutionRecord] | None) -> list[str]:
    """Components whose steps all ran. Without records, every planned component."""
    names = [c.name for c in plan.components]
    if records is None:
        return names

    ran = {r.component for r in records}
    skipped = {r.component for r in records if r.status == StepStatus.SKIPPED}
    return [name for name in names if name in ran and name not in skipped]


def _to_record(step: str, result: CheckResult, started: datetime, t0: float) -> ExecutionRecord:
    if not result.passed:
        warnings.warn(f"{step}: {result.detail}", VerificationWarning, stacklevel=2)
    return ExecutionRecord(
        step=step,
        status=StepStatus.OK if result.passed else StepStatus.WARNED,
        detail=result.detail,
        timestamp=started,
        duration=time.monotonic() - t0,
    )


async def verify(
    plan: Plan,
    ctx: StepContext,
    records: list[ExecutionRecord] | None = None,
) -> VerificationReport:
    """Check the state of every executed component and of the layout."""
    checks: list[ExecutionRecord] = []
    included = set(verified_components(plan, records))

    with warnings.catch_warnings(record=True) as findings:
        warnings.simplefilter("always", VerificationWarning)

        started = datetime.now(timezone.utc)
        t0 = time.monotonic()
        for result in check_layout(ctx.layout):
            checks.append(_to_record("layout:verify", result, started, t0))

        for component in plan.components:
            if component.verify is None or component.name not in included:
                continue
            started = datetime.now(timezone.utc)
            t0 = time.monotonic()
            try:
                results = await component.verify(ctx, component)
            except (OSError, sqlite3.Error) as e:
                results = [CheckResult(component.name, False, f"Check could not run: {e}")]
            for result in results:
                checks.append(_to_record(f"{component.name}:verify", result, started, t0))

    for finding in findings:
        if issubclass(finding.category, VerificationWarning):
            _logging.warning(str(finding.message))

    return VerificationReport(execution=list(records or []), checks=checks)


def write_report(report: VerificationReport, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(report.to_dict(), f, default_flow_style=False, sort_keys=False)


__all__ = [
    "check_layout",
    "verified_components",
    "verify",
    "write_report",
]
