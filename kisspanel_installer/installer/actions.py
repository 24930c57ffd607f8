"""Install, configure and verify actions for each component.

Every action is idempotent: anything it creates is checked for first, so
running the whole plan again against a provisioned host reports no changes.
"""

import hashlib
import logging
import os
import secrets
import sqlite3
from contextlib import closing
from pathlib import Path

from kisspanel_installer import bundle
from kisspanel_installer.errors import ExecutionError
from kisspanel_installer.execution import DEFAULT_TIMEOUT, INSTALL_TIMEOUT, SERVICE_TIMEOUT
from kisspanel_installer.preflight import run_preflight
from kisspanel_installer.system import CommandResult

from .models import CheckResult, Component, StepContext, StepOutcome

PANEL_USER = "kisspanel"
PANEL_GROUP = "kisspanel"
PANEL_SERVICE_FILE = "kisspanel.service"
PANEL_SITE_FILE = "panel.conf"
PHPFPM_POOL_FILE = "kisspanel-www.conf"
SCHEMA_FILE = "schema.sql"
REPOSITORIES_MARKER = ".repositories"
LOCALE_MARKER = ".locale"
PASSWORD_ITERATIONS = 200_000

SSH_PORT = 22
WEB_PORTS = (80, 443)
MAIL_PORTS = (25, 110, 143, 993, 995)
FTP_PORT = 21
DNS_PORT = 53

_logging = logging.getLogger(__name__)


async def _run(
    ctx: StepContext, step: str, command: str, timeout: int = DEFAULT_TIMEOUT
) -> CommandResult:
    result = await ctx.host.run(command, timeout=timeout)
    if not result.ok:
        raise ExecutionError(
            step,
            f"command exited with status {result.returncode}",
            command=command,
            output=result.output,
        )
    return result


def _ensure_dir(path: Path, mode: int = 0o755) -> bool:
    if path.is_dir():
        return False
    path.mkdir(parents=True, exist_ok=True)
    os.chmod(path, mode)
    return True


def _managed(ctx: StepContext, *parts: str) -> Path:
    return ctx.layout.conf_dir.joinpath(*parts)


async def missing_packages(ctx: StepContext, packages: tuple[str, ...]) -> list[str]:
    missing = []
    for package in packages:
        if not await ctx.host.succeeds(ctx.profile.query_command([package])):
            missing.append(package)
    return missing


async def install_packages(ctx: StepContext, component: Component) -> StepOutcome:
    packages = ctx.profile.packages(component.name)
    if not packages:
        return StepOutcome("no packages to install")

    missing = await missing_packages(ctx, packages)
    if not missing:
        return StepOutcome(f"already installed: {' '.join(packages)}")

    _logging.info(f"Installing {component.description}: {' '.join(missing)}")
    await _run(
        ctx,
        f"{component.name}:install",
        ctx.profile.install_command(missing),
        timeout=INSTALL_TIMEOUT,
    )
    return StepOutcome(f"installed: {' '.join(missing)}", changed=True)


async def ensure_service(
    ctx: StepContext, component: Component, restart: bool = False
) -> list[str]:
    """Enable and start the component's service. Returns the actions taken."""
    unit = ctx.profile.service(component.name)
    if not unit:
        return []

    step = f"{component.name}:configure"
    profile = ctx.profile
    taken = []
    if not await ctx.host.succeeds(profile.service_command("is_enabled", unit)):
        await _run(ctx, step, profile.service_command("enable", unit), SERVICE_TIMEOUT)
        taken.append(f"enabled {unit}")
    if not await ctx.host.succeeds(profile.service_command("is_active", unit)):
        await _run(ctx, step, profile.service_command("start", unit), SERVICE_TIMEOUT)
        taken.append(f"started {unit}")
    elif restart:
        await _run(ctx, step, profile.service_command("restart", unit), SERVICE_TIMEOUT)
        taken.append(f"restarted {unit}")
    return taken


def _outcome(actions: list[str], idle: str = "already configured") -> StepOutcome:
    if not actions:
        return StepOutcome(idle)
    return StepOutcome("; ".join(actions), changed=True)


async def _ensure_panel_group(ctx: StepContext, step: str) -> list[str]:
    if ctx.host.group_exists(PANEL_GROUP):
        return []
    await _run(ctx, step, f"groupadd {PANEL_GROUP}")
    return [f"created group {PANEL_GROUP}"]


async def configure_service(ctx: StepContext, component: Component) -> StepOutcome:
    actions = []
    conf_dir = ctx.layout.component_conf_dir(component.name)
    if not conf_dir.exists() and _ensure_dir(conf_dir):
        actions.append(f"created {conf_dir}")
    actions.extend(await ensure_service(ctx, component))
    return _outcome(actions)


# base


async def prepare_system(ctx: StepContext, component: Component) -> StepOutcome:
    step = f"{component.name}:install"
    warnings = await run_preflight(ctx, step)

    actions = []
    created = [d for d in ctx.layout.required_dirs() if not d.exists() and _ensure_dir(d)]
    if created:
        actions.append(f"created {len(created)} directories under {ctx.layout.root}")

    marker = ctx.layout.data_dir / REPOSITORIES_MARKER
    if not marker.exists():
        for command in ctx.profile.repository_commands():
            await _run(ctx, step, command, INSTALL_TIMEOUT)
        await _run(ctx, step, ctx.profile.update_command(), INSTALL_TIMEOUT)
        marker.write_text(f"{ctx.profile.family} {ctx.profile.version}\n")
        actions.append("configured package repositories")

    installed = await install_packages(ctx, component)
    if installed.changed:
        actions.append(installed.detail)
    actions.extend(await _ensure_panel_group(ctx, step))

    locale_marker = ctx.layout.data_dir / LOCALE_MARKER
    locale_commands = ctx.profile.locale_commands()
    if locale_commands and not locale_marker.exists():
        for command in locale_commands:
            await _run(ctx, step, command)
        locale_marker.write_text("en_US.UTF-8\n")
        actions.append("generated locale en_US.UTF-8")

    outcome = _outcome(actions, "system already prepared")
    outcome.warnings = warnings
    return outcome


# web server


async def install_nginx(ctx: StepContext, component: Component) -> StepOutcome:
    outcome = await install_packages(ctx, component)
    user = ctx.profile.web_user
    if not ctx.host.user_exists(user):
        await _run(
            ctx,
            f"{component.name}:install",
            f"useradd -r -d /var/www -s /sbin/nologin -c 'Nginx user' {user}",
        )
        outcome.detail += f"; created user {user}"
        outcome.changed = True
    return outcome


async def configure_nginx(ctx: StepContext, component: Component) -> StepOutcome:
    report = bundle.deploy(ctx.bundle, ctx.layout)
    actions = []
    if report.changed:
        ctx.host.set_owner(report.installed_dir, None, PANEL_GROUP, recursive=True)
        actions.append(f"deployed config bundle {report.version}")

    source = _managed(ctx, "nginx", "nginx.conf")
    if not source.is_file():
        raise ExecutionError(
            f"{component.name}:configure",
            "Nginx configuration files not found after download",
        )
    dest = Path(ctx.profile.config_dir(component.name)) / "nginx.conf"
    linked = bundle.link_managed_file(source, dest)
    if linked:
        actions.append(f"linked {dest}")

    actions.extend(await ensure_service(ctx, component, restart=report.changed or linked))
    return _outcome(actions)


# embedded database


async def install_sqlite(ctx: StepContext, component: Component) -> StepOutcome:
    outcome = await install_packages(ctx, component)
    if _ensure_dir(ctx.layout.data_dir, 0o750):
        outcome.detail += f"; created {ctx.layout.data_dir}"
        outcome.changed = True
    return outcome


def _connect(path: Path) -> sqlite3.Connection:
    conn = sqlite3.connect(path)
    conn.execute(
        "CREATE TABLE IF NOT EXISTS installer_meta (key TEXT PRIMARY KEY, value TEXT NOT NULL)"
    )
    conn.commit()
    return conn


def _meta(conn: sqlite3.Connection, key: str) -> str | None:
    row = conn.execute("SELECT value FROM installer_meta WHERE key = ?", (key,)).fetchone()
    return row[0] if row else None


def _sql_literal(value: str) -> str:
    return value.replace("'", "''")


def hash_password(password: str, salt: str | None = None) -> str:
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode(), salt.encode(), PASSWORD_ITERATIONS
    ).hex()
    return f"pbkdf2_sha256${PASSWORD_ITERATIONS}${salt}${digest}"


def check_password(password: str, encoded: str) -> bool:
    try:
        _, _, salt, _ = encoded.split("$")
    except ValueError:
        return False
    return secrets.compare_digest(hash_password(password, salt), encoded)


async def create_system_database(ctx: StepContext, component: Component) -> StepOutcome:
    _ensure_dir(ctx.layout.data_dir, 0o750)
    db_path = ctx.layout.database_path
    schema_path = _managed(ctx, "panel", SCHEMA_FILE)

    with closing(_connect(db_path)) as conn:
        applied = _meta(conn, "schema_version")
        if applied is not None:
            return StepOutcome(f"schema already applied (bundle {applied})")

        if not schema_path.is_file():
            raise ExecutionError(
                f"{component.name}:install", f"Panel schema not found: {schema_path}"
            )
        schema = schema_path.read_text(encoding="utf-8")
        try:
            conn.executescript(
                "BEGIN;\n"
                f"{schema}\n"
                "INSERT OR REPLACE INTO installer_meta (key, value) "
                f"VALUES ('schema_version', '{_sql_literal(ctx.bundle.version)}');\n"
                "COMMIT;"
            )
        except sqlite3.Error as e:
            conn.rollback()
            raise ExecutionError(
                f"{component.name}:install", f"Failed to apply panel schema: {e}"
            ) from e

    os.chmod(db_path, 0o640)
    return StepOutcome(f"initialized {db_path}", changed=True)


async def seed_system_database(ctx: StepContext, component: Component) -> StepOutcome:
    request = ctx.request
    settings = {
        "hostname": request.hostname,
        "port": str(request.port),
        "admin_email": request.admin_email,
        "language": request.language,
        "api": "yes" if request.api else "no",
    }

    actions = []
    warnings = []
    with closing(_connect(ctx.layout.database_path)) as conn:
        for key, value in settings.items():
            if _meta(conn, key) != value:
                conn.execute(
                    "INSERT OR REPLACE INTO installer_meta (key, value) VALUES (?, ?)",
                    (key, value),
                )
                actions.append(f"set {key}")

        current = _meta(conn, "admin_password")
        if not request.admin_password:
            if current is None:
                raise ExecutionError(
                    f"{component.name}:configure", "no admin password to store"
                )
        elif current is None or (
            not request.password_generated
            and not check_password(request.admin_password, current)
        ):
            conn.execute(
                "INSERT OR REPLACE INTO installer_meta (key, value) VALUES (?, ?)",
                ("admin_password", hash_password(request.admin_password)),
            )
            actions.append("set admin password")
        elif request.password_generated:
            warnings.append(
                "Existing admin password kept; the generated password was not applied"
            )
        conn.commit()

    outcome = _outcome(actions, "settings unchanged")
    outcome.warnings = warnings
    return outcome


def admin_password_exists(db_path: Path) -> bool:
    """True when a previous run already stored an admin password hash."""
    if not db_path.is_file():
        return False
    try:
        with closing(sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)) as conn:
            row = conn.execute(
                "SELECT 1 FROM installer_meta WHERE key = 'admin_password'"
            ).fetchone()
    except sqlite3.Error:
        return False
    return row is not None


async def verify_database(ctx: StepContext, component: Component) -> list[CheckResult]:
    db_path = ctx.layout.database_path
    if not db_path.is_file():
        return [CheckResult("database", False, f"Database file missing: {db_path}")]
    try:
        with closing(sqlite3.connect(f"file:{db_path}?mode=ro", uri=True)) as conn:
            conn.execute("SELECT 1").fetchone()
    except sqlite3.Error as e:
        return [CheckResult("database", False, f"Database is not accessible: {e}")]
    return [CheckResult("database", True, "Database is accessible")]


# PHP


async def configure_phpfpm(ctx: StepContext, component: Component) -> StepOutcome:
    actions = []
    pool = _managed(ctx, "php", "fpm", "pool.d", "www.conf")
    include_dir = ctx.profile.include_dir(component.name)
    restart = False
    if pool.is_file() and include_dir:
        dest = Path(include_dir) / PHPFPM_POOL_FILE
        if bundle.link_managed_file(pool, dest):
            actions.append(f"linked {dest}")
            restart = True
    actions.extend(await ensure_service(ctx, component, restart=restart))
    return _outcome(actions)


# firewall


def firewall_ports(ctx: StepContext) -> list[int]:
    request = ctx.request
    ports = [SSH_PORT, *WEB_PORTS, request.port]
    if request.is_enabled("exim") or request.is_enabled("dovecot"):
        ports.extend(MAIL_PORTS)
    if request.is_enabled("vsftpd") or request.is_enabled("proftpd"):
        ports.append(FTP_PORT)
    if request.is_enabled("bind"):
        ports.append(DNS_PORT)
    return sorted(set(ports))


async def configure_firewall(ctx: StepContext, component: Component) -> StepOutcome:
    step = f"{component.name}:configure"
    actions = await ensure_service(ctx, component)
    ports = firewall_ports(ctx)
    for port in ports:
        command = ctx.profile.firewall_command("allow", port)
        if command:
            await _run(ctx, step, command)
    enable = ctx.profile.firewall_command("enable")
    if enable:
        await _run(ctx, step, enable)

    # allow/enable are idempotent on every supported firewall
    outcome = _outcome(actions, "firewall already running")
    outcome.detail += f"; open ports: {', '.join(str(p) for p in ports)}"
    return outcome


# panel


async def install_panel(ctx: StepContext, component: Component) -> StepOutcome:
    step = f"{component.name}:install"
    actions = await _ensure_panel_group(ctx, step)
    if not ctx.host.user_exists(PANEL_USER):
        await _run(
            ctx,
            step,
            f"useradd -r -g {PANEL_GROUP} -d {ctx.layout.root} -s /sbin/nologin {PANEL_USER}",
        )
        actions.append(f"created user {PANEL_USER}")
    return _outcome(actions, f"user {PANEL_USER} already present")


async def configure_panel(ctx: StepContext, component: Component) -> StepOutcome:
    step = f"{component.name}:configure"
    profile = ctx.profile
    actions = []

    links = [
        (
            _managed(ctx, "panel", "nginx.conf"),
            Path(profile.include_dir("nginx") or profile.config_dir("nginx")) / PANEL_SITE_FILE,
            "nginx",
        ),
        (
            _managed(ctx, "panel", "systemd.conf"),
            Path(profile.config_dir(component.name)) / PANEL_SERVICE_FILE,
            None,
        ),
    ]
    php_conf = _managed(ctx, "panel", "php-fpm.conf")
    if ctx.request.is_enabled("phpfpm") and php_conf.is_file() and profile.include_dir("phpfpm"):
        links.append((php_conf, Path(profile.include_dir("phpfpm")) / PANEL_SITE_FILE, "phpfpm"))

    reload_components = set()
    unit_changed = False
    for source, dest, owner in links:
        if not source.is_file():
            raise ExecutionError(step, f"Panel configuration file missing from bundle: {source}")
        if bundle.link_managed_file(source, dest):
            actions.append(f"linked {dest}")
            if owner:
                reload_components.add(owner)
            else:
                unit_changed = True

    ctx.host.set_owner(ctx.layout.data_dir, PANEL_USER, PANEL_GROUP, recursive=True)
    ctx.host.set_owner(ctx.bundle_dir, None, PANEL_GROUP, recursive=True)

    if unit_changed:
        await _run(ctx, step, profile.service_command("daemon_reload"), SERVICE_TIMEOUT)
    for name in sorted(reload_components):
        unit = profile.service(name)
        if unit:
            await _run(ctx, step, profile.service_command("reload", unit), SERVICE_TIMEOUT)
            actions.append(f"reloaded {unit}")

    actions.extend(await ensure_service(ctx, component, restart=unit_changed))
    return _outcome(actions)


# verification


async def verify_service(ctx: StepContext, component: Component) -> list[CheckResult]:
    results = []
    unit = ctx.profile.service(component.name)
    if unit:
        active = await ctx.host.succeeds(ctx.profile.service_command("is_active", unit))
        results.append(
            CheckResult(
                f"{component.name} service",
                active,
                f"Service running: {unit}" if active else f"Service not running: {unit}",
            )
        )

    config_test = ctx.profile.config_test(component.name)
    if config_test:
        result = await ctx.host.run(config_test)
        detail = result.output.splitlines()[-1] if result.output else config_test
        results.append(CheckResult(f"{component.name} config", result.ok, detail))
    return results


async def verify_panel(ctx: StepContext, component: Component) -> list[CheckResult]:
    results = await verify_service(ctx, component)
    url = f"https://localhost:{ctx.request.port}"
    reachable, detail = ctx.host.https_reachable(url)
    results.append(
        CheckResult(
            "panel web access",
            reachable,
            f"Panel is accessible on port {ctx.request.port}"
            if reachable
            else f"Panel is not accessible on port {ctx.request.port}: {detail}",
        )
    )
    return results


__all__ = [
    "PANEL_USER",
    "PANEL_GROUP",
    "PANEL_SERVICE_FILE",
    "PANEL_SITE_FILE",
    "PHPFPM_POOL_FILE",
    "missing_packages",
    "install_packages",
    "ensure_service",
    "configure_service",
    "prepare_system",
    "install_nginx",
    "configure_nginx",
    "install_sqlite",
    "hash_password",
    "check_password",
    "create_system_database",
    "seed_system_database",
    "admin_password_exists",
    "verify_database",
    "configure_phpfpm",
    "firewall_ports",
    "configure_firewall",
    "install_panel",
    "configure_panel",
    "verify_service",
    "verify_panel",
]
