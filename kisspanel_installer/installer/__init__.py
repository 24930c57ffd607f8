"""Installer engine: component catalog, planning, execution and verification."""

from .components import get_all_components, get_component
from .installation import apply_plan, confirm_installation
from .models import (
    CheckResult,
    Component,
    ExecutionRecord,
    Plan,
    PlanStep,
    StepContext,
    StepOutcome,
    StepStatus,
    VerificationReport,
)
from .planning import build_plan, order_components, render_plan
from .removal import remove_installation
from .verification import check_layout, verify, write_report

__all__ = [
    "StepStatus",
    "StepOutcome",
    "CheckResult",
    "StepContext",
    "Component",
    "PlanStep",
    "Plan",
    "ExecutionRecord",
    "VerificationReport",
    "get_all_components",
    "get_component",
    "order_components",
    "build_plan",
    "render_plan",
    "confirm_installation",
    "apply_plan",
    "remove_installation",
    "check_layout",
    "verify",
    "write_report",
]
