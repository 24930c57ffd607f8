import pytest

from kisspanel_installer.errors import PlanError
from kisspanel_installer.installer import (
    Component,
    StepOutcome,
    build_plan,
    get_all_components,
    order_components,
    render_plan,
)
from kisspanel_installer.profiles import build_profile, resolve_profile
from kisspanel_installer.request import InstallationRequest

from .conftest import make_profile_data


async def _noop(ctx, component):
    return StepOutcome("noop")


def _component(name, required=False, dependencies=()):
    return Component(
        name=name,
        description=name,
        required=required,
        install=_noop,
        configure=_noop,
        dependencies=tuple(dependencies),
    )


def _request(**components):
    return InstallationRequest(
        port=2006,
        hostname="panel.test",
        admin_email="root@panel.test",
        admin_password="Secret123",
        language="en",
        components=components,
    )


@pytest.fixture
def ubuntu():
    return resolve_profile("ubuntu", "22.04")


def test_end_to_end_plan(request_factory, ubuntu):
    request = request_factory(port="2006", apache="no", mariadb="yes", bind="no")
    plan = build_plan(request, ubuntu)
    names = plan.step_names

    for component in ("nginx", "sqlite", "system-database", "mariadb", "panel"):
        assert f"{component}:install" in names
        assert f"{component}:configure" in names
    assert not any(n.startswith("apache:") for n in names)
    assert not any(n.startswith("bind:") for n in names)

    assert names[:8] == [
        "base:install",
        "base:configure",
        "nginx:install",
        "nginx:configure",
        "sqlite:install",
        "sqlite:configure",
        "system-database:install",
        "system-database:configure",
    ]
    assert names[-2:] == ["panel:install", "panel:configure"]
    assert plan.platform == "Ubuntu 22.04"


def test_plan_is_deterministic(request_factory, ubuntu):
    request = request_factory(exim="no", postgresql="yes")
    first = build_plan(request, ubuntu).step_names
    for _ in range(5):
        assert build_plan(request, ubuntu).step_names == first


def test_every_dependency_comes_first(request_factory, ubuntu):
    request = request_factory(multiphp="yes", sieve="yes", quota="yes", proftpd="yes")
    plan = build_plan(request, ubuntu)
    position = {c.name: i for i, c in enumerate(plan.components)}
    for component in plan.components:
        for dep in component.dependencies:
            assert position[dep] < position[component.name]


def test_required_components_always_planned(request_factory, ubuntu):
    flags = {name: "no" for name in ("apache", "phpfpm", "mariadb", "exim", "dovecot",
                                     "clamav", "spamassassin", "bind", "vsftpd",
                                     "iptables", "fail2ban")}
    plan = build_plan(request_factory(**flags), ubuntu)
    assert [c.name for c in plan.components] == [
        "base", "nginx", "sqlite", "system-database", "panel"
    ]


def test_disabled_dependency_is_a_plan_error(request_factory, ubuntu):
    request = request_factory(multiphp="yes", phpfpm="no")
    with pytest.raises(PlanError, match="'multiphp' requires 'phpfpm', which is disabled"):
        build_plan(request, ubuntu)


def test_cycle_detected(temp_dir):
    catalog = [
        _component("a", required=True, dependencies=["c"]),
        _component("b", required=True, dependencies=["a"]),
        _component("c", required=True, dependencies=["b"]),
    ]
    profile = build_profile("testos", "1", make_profile_data(temp_dir, ["a", "b", "c"]))
    with pytest.raises(PlanError, match="Dependency cycle: a -> c -> b -> a"):
        build_plan(_request(), profile, catalog)


def test_undeclared_dependency(temp_dir):
    catalog = [_component("a", required=True, dependencies=["ghost"])]
    profile = build_profile("testos", "1", make_profile_data(temp_dir, ["a"]))
    with pytest.raises(PlanError, match="undeclared component 'ghost'"):
        build_plan(_request(), profile, catalog)


def test_duplicate_component(temp_dir):
    catalog = [_component("a"), _component("a")]
    with pytest.raises(PlanError, match="declared twice"):
        order_components(catalog)


def test_missing_profile_entry(temp_dir):
    catalog = [_component("a", required=True), _component("b")]
    profile = build_profile("testos", "1", make_profile_data(temp_dir, ["a"]))
    with pytest.raises(PlanError, match="no entry for component 'b'"):
        build_plan(_request(), profile, catalog)


def test_optional_after_dependencies_regardless_of_catalog_order(temp_dir):
    catalog = [
        _component("late", dependencies=["core"]),
        _component("core", required=True),
        _component("off"),
    ]
    profile = build_profile("testos", "1", make_profile_data(temp_dir, ["late", "core", "off"]))
    plan = build_plan(_request(late=True, off=False), profile, catalog)
    assert plan.step_names == ["core:install", "core:configure", "late:install", "late:configure"]


def test_component_without_configure_gets_noop_step(test_profile, request_factory):
    plan = build_plan(request_factory(), test_profile)
    base_configure = next(s for s in plan.steps if s.name == "base:configure")
    assert base_configure.run is not None


def test_render_plan(request_factory, ubuntu):
    plan = build_plan(request_factory(apache="no"), ubuntu)
    output = render_plan(plan)

    assert "Installation Plan: Ubuntu 22.04" in output
    assert "base:install" in output
    assert "(required)" in output
    assert "(optional)" in output
    assert "apache" not in output


def test_catalog_matches_request_components():
    from kisspanel_installer.request import CORE_COMPONENTS, OPTIONAL_COMPONENTS

    catalog = {c.name: c for c in get_all_components()}
    for name in OPTIONAL_COMPONENTS:
        assert catalog[name].required is False
    for name in CORE_COMPONENTS:
        assert catalog[name].required is True
