"""Installation planning and rendering."""

from typing import Iterable

from kisspanel_installer.errors import PlanError
from kisspanel_installer.profiles import OSProfile
from kisspanel_installer.request import InstallationRequest

from .components import get_all_components
from .models import Component, Plan, PlanStep, StepContext, StepOutcome

_VISITING = 1
_DONE = 2


async def nothing_to_configure(ctx: StepContext, component: Component) -> StepOutcome:
    return StepOutcome("nothing to configure")


def _index(catalog: tuple[Component, ...]) -> dict[str, Component]:
    by_name: dict[str, Component] = {}
    for component in catalog:
        if component.name in by_name:
            raise PlanError(f"Component '{component.name}' is declared twice")
        by_name[component.name] = component

    for component in catalog:
        for dep in component.dependencies:
            if dep not in by_name:
                raise PlanError(
                    f"Component '{component.name}' depends on undeclared component '{dep}'"
                )
    return by_name


def order_components(catalog: Iterable[Component]) -> list[Component]:
    """Topologically order the catalog.

    Components are visited in catalog order and each is emitted after its
    dependencies, so the result only depends on the catalog itself.

    Raises:
        PlanError: On an undeclared dependency or a dependency cycle
    """
    catalog = tuple(catalog)
    by_name = _index(catalog)
    state: dict[str, int] = {}
    ordered: list[Component] = []

    def visit(name: str, trail: list[str]) -> None:
        mark = state.get(name)
        if mark == _DONE:
            return
        if mark == _VISITING:
            cycle = trail[trail.index(name):] + [name]
            raise PlanError(f"Dependency cycle: {' -> '.join(cycle)}")

        state[name] = _VISITING
        for dep in by_name[name].dependencies:
            visit(dep, trail + [name])
        state[name] = _DONE
        ordered.append(by_name[name])

    for component in catalog:
        visit(component.name, [])
    return ordered


def build_plan(
    request: InstallationRequest,
    profile: OSProfile,
    catalog: Iterable[Component] | None = None,
) -> Plan:
    """Select and order the components for a request.

    Raises:
        PlanError: If the catalog is inconsistent, the profile lacks an entry
            for a catalog component, or an enabled component needs a
            disabled one
    """
    catalog = tuple(catalog if catalog is not None else get_all_components())
    ordered = order_components(catalog)

    for component in catalog:
        if not profile.has_component(component.name):
            raise PlanError(
                f"{profile.display_name} {profile.version} profile has no entry "
                f"for component '{component.name}'"
            )

    selected = {c.name for c in catalog if c.required or request.is_enabled(c.name)}
    for component in ordered:
        if component.name not in selected:
            continue
        for dep in component.dependencies:
            if dep not in selected:
                raise PlanError(
                    f"Component '{component.name}' requires '{dep}', which is disabled"
                )

    steps = []
    for component in ordered:
        if component.name not in selected:
            continue
        steps.append(PlanStep(component, "install", component.install))
        steps.append(
            PlanStep(component, "configure", component.configure or nothing_to_configure)
        )

    return Plan(platform=f"{profile.display_name} {profile.version}", steps=steps)


def render_plan(plan: Plan) -> str:
    lines = [f"Installation Plan: {plan.platform}", ""]
    lines.append(f"Components: {', '.join(c.name for c in plan.components)}")
    lines.append("")
    lines.append("Steps:")
    for i, step in enumerate(plan.steps, 1):
        marker = "required" if step.required else "optional"
        lines.append(f"  {i:>2}. {step.name:<28} ({marker})")
    return "\n".join(lines)


__all__ = [
    "order_components",
    "build_plan",
    "render_plan",
]
