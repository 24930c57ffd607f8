"""Data models for the installation engine."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Awaitable, Callable

if TYPE_CHECKING:
    from kisspanel_installer.bundle import BundleRef
    from kisspanel_installer.paths import TargetLayout
    from kisspanel_installer.profiles import OSProfile
    from kisspanel_installer.request import InstallationRequest
    from kisspanel_installer.system import Host


class StepStatus(Enum):
    PENDING = "pending"
    RUNNING = "running"
    OK = "ok"
    SKIPPED = "skipped"
    WARNED = "warned"
    FAILED = "failed"


@dataclass
class StepOutcome:
    detail: str = ""
    changed: bool = False
    warnings: list[str] = field(default_factory=list)


@dataclass
class CheckResult:
    name: str
    passed: bool
    detail: str = ""


@dataclass
class StepContext:
    """Everything a component action may read. Passed to every action."""

    request: "InstallationRequest"
    profile: "OSProfile"
    host: "Host"
    layout: "TargetLayout"
    bundle: "BundleRef"

    @property
    def bundle_dir(self) -> Path:
        return self.layout.bundles_dir / self.bundle.version


Action = Callable[[StepContext, "Component"], Awaitable[StepOutcome]]
VerifyAction = Callable[[StepContext, "Component"], Awaitable[list[CheckResult]]]


@dataclass(frozen=True)
class Component:
    name: str
    description: str
    required: bool
    install: Action
    configure: Action | None = None
    verify: VerifyAction | None = None
    dependencies: tuple[str, ...] = ()


@dataclass
class PlanStep:
    component: Component
    action: str
    run: Action
    status: StepStatus = StepStatus.PENDING

    @property
    def name(self) -> str:
        return f"{self.component.name}:{self.action}"

    @property
    def required(self) -> bool:
        return self.component.required


@dataclass
class Plan:
    platform: str
    steps: list[PlanStep]

    @property
    def components(self) -> list[Component]:
        seen: dict[str, Component] = {}
        for step in self.steps:
            seen.setdefault(step.component.name, step.component)
        return list(seen.values())

    @property
    def step_names(self) -> list[str]:
        return [step.name for step in self.steps]


@dataclass
class ExecutionRecord:
    step: str
    status: StepStatus
    detail: str
    timestamp: datetime
    duration: float = 0.0
    changed: bool = False

    @property
    def component(self) -> str:
        return self.step.split(":", 1)[0]

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step,
            "status": self.status.value,
            "detail": self.detail,
            "timestamp": self.timestamp.isoformat(),
            "duration": round(self.duration, 3),
            "changed": self.changed,
        }


@dataclass
class VerificationReport:
    execution: list[ExecutionRecord]
    checks: list[ExecutionRecord]

    @property
    def warnings(self) -> list[ExecutionRecord]:
        return [
            r
            for r in self.execution + self.checks
            if r.status in (StepStatus.WARNED, StepStatus.FAILED)
        ]

    @property
    def passed(self) -> bool:
        return not self.warnings

    def to_dict(self) -> dict[str, Any]:
        return {
            "passed": self.passed,
            "execution": [r.to_dict() for r in self.execution],
            "checks": [r.to_dict() for r in self.checks],
        }


__all__ = [
    "StepStatus",
    "StepOutcome",
    "CheckResult",
    "StepContext",
    "Action",
    "VerifyAction",
    "Component",
    "PlanStep",
    "Plan",
    "ExecutionRecord",
    "VerificationReport",
]
