import asyncio
from datetime import datetime, timezone

import yaml

from kisspanel_installer.installer import (
    ExecutionRecord,
    StepStatus,
    VerificationReport,
    apply_plan,
    build_plan,
    check_layout,
    verify,
    write_report,
)
from kisspanel_installer.installer.verification import verified_components


def _install(ctx):
    plan = build_plan(ctx.request, ctx.profile)
    records = asyncio.run(apply_plan(plan, ctx))
    return plan, records


def _record(step, status):
    return ExecutionRecord(step, status, "", datetime.now(timezone.utc))


def test_clean_install_verifies(step_context):
    plan, records = _install(step_context)
    report = asyncio.run(verify(plan, step_context, records))

    assert report.passed, [(r.step, r.detail) for r in report.warnings]
    steps = {r.step for r in report.checks}
    assert {"layout:verify", "nginx:verify", "system-database:verify", "panel:verify"} <= steps
    assert report.execution == records


def test_stopped_service_is_a_warning(step_context, fake_host):
    plan, records = _install(step_context)
    fake_host.active.discard("mariadb")

    report = asyncio.run(verify(plan, step_context, records))

    assert not report.passed
    warned = [r for r in report.checks if r.status == StepStatus.WARNED]
    assert [r.step for r in warned] == ["mariadb:verify"]
    assert "Service not running: mariadb" in warned[0].detail


def test_unreachable_panel_is_a_warning(step_context, fake_host):
    plan, records = _install(step_context)
    fake_host.reachable = False

    report = asyncio.run(verify(plan, step_context, records))

    panel = [r for r in report.checks if r.step == "panel:verify" and r.status == StepStatus.WARNED]
    assert len(panel) == 1
    assert "not accessible on port 2006" in panel[0].detail


def test_failed_config_test_is_a_warning(step_context, fake_host):
    plan, records = _install(step_context)
    fake_host.failing.append("nginx -t")

    report = asyncio.run(verify(plan, step_context, records))

    nginx = [r for r in report.checks if r.step == "nginx:verify"]
    assert [r.status for r in nginx] == [StepStatus.OK, StepStatus.WARNED]


def test_missing_database_is_a_warning(step_context):
    plan, records = _install(step_context)
    step_context.layout.database_path.unlink()

    report = asyncio.run(verify(plan, step_context, records))

    db = [r for r in report.checks if r.step == "system-database:verify"]
    assert db[0].status == StepStatus.WARNED
    assert "Database file missing" in db[0].detail


def test_layout_checks_on_empty_root(step_context):
    results = check_layout(step_context.layout)
    assert results
    assert not any(r.passed for r in results)


def test_skipped_components_are_not_verified(step_context):
    plan = build_plan(step_context.request, step_context.profile)
    records = [
        _record("nginx:install", StepStatus.OK),
        _record("nginx:configure", StepStatus.OK),
        _record("mariadb:install", StepStatus.WARNED),
        _record("mariadb:configure", StepStatus.SKIPPED),
    ]
    assert verified_components(plan, records) == ["nginx"]
    assert "mariadb" in verified_components(plan, None)


def test_write_report(temp_dir):
    report = VerificationReport(
        execution=[_record("base:install", StepStatus.OK)],
        checks=[_record("nginx:verify", StepStatus.WARNED)],
    )
    path = temp_dir / "logs" / "install-report.yaml"
    write_report(report, path)

    data = yaml.safe_load(path.read_text())
    assert data["passed"] is False
    assert data["execution"][0]["step"] == "base:install"
    assert data["execution"][0]["status"] == "ok"
    assert data["checks"][0]["status"] == "warned"
