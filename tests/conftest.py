"""Pytest fixtures and utilities for kisspanel_installer tests."""

import logging
import tarfile
import tempfile
from pathlib import Path
from typing import Generator
from unittest.mock import patch

import pytest

from kisspanel_installer.bundle import BundleRef
from kisspanel_installer.installer import StepContext, get_all_components
from kisspanel_installer.paths import TargetLayout
from kisspanel_installer.profiles import OSProfile, build_profile
from kisspanel_installer.request import InstallationRequest, resolve
from kisspanel_installer.system import CommandResult

SERVICES = {
    "nginx": "nginx",
    "apache": "httpd",
    "phpfpm": "php-fpm",
    "mariadb": "mariadb",
    "mysql8": "mysqld",
    "postgresql": "postgresql",
    "exim": "exim",
    "dovecot": "dovecot",
    "spamassassin": "spamd",
    "clamav": "clamd",
    "bind": "named",
    "vsftpd": "vsftpd",
    "proftpd": "proftpd",
    "iptables": "firewall",
    "fail2ban": "fail2ban",
    "panel": "kisspanel",
}

UBUNTU_OS_RELEASE = 'NAME="Ubuntu"\nID=ubuntu\nVERSION_ID="22.04"\nPRETTY_NAME="Ubuntu 22.04.3 LTS"\n'

SCHEMA_SQL = """
CREATE TABLE users (id INTEGER PRIMARY KEY, username TEXT NOT NULL UNIQUE);
CREATE TABLE domains (id INTEGER PRIMARY KEY, name TEXT NOT NULL UNIQUE);
"""


class FakeHost:
    """Recording stand-in for system.Host.

    Understands the command templates of `make_profile_data` well enough to
    keep package, service, user and group state across calls.
    """

    def __init__(
        self,
        installed=(),
        failing=(),
        root=True,
        port_busy=False,
        memory=4096,
        disk=50_000,
        cpus=4,
        existing_paths=(),
        reachable=True,
        gateway=True,
        resolves=True,
    ):
        self.commands: list[str] = []
        self.owners: list[tuple[Path, str | None, str | None]] = []
        self.installed = set(installed)
        self.failing = list(failing)
        self.enabled: set[str] = set()
        self.active: set[str] = set()
        self.users: set[str] = set()
        self.groups: set[str] = set()
        self.root = root
        self.port_busy = port_busy
        self.memory = memory
        self.disk = disk
        self.cpus = cpus
        self.existing_paths = {str(p) for p in existing_paths}
        self.reachable = reachable
        self.gateway = gateway
        self.resolves = resolves

    async def run(self, command: str, timeout: int = 30) -> CommandResult:
        self.commands.append(command)
        if any(pattern in command for pattern in self.failing):
            return CommandResult(command, "simulated failure", 1)
        return CommandResult(command, "", self._simulate(command.split()))

    async def succeeds(self, command: str, timeout: int = 30) -> bool:
        return (await self.run(command, timeout)).ok

    def _simulate(self, words: list[str]) -> int:
        head, args = words[:2], words[2:]
        if head == ["pkg", "query"]:
            return 0 if all(a in self.installed for a in args) else 1
        if head == ["pkg", "install"]:
            self.installed.update(args)
        elif head == ["svc", "is-enabled"]:
            return 0 if args[0] in self.enabled else 1
        elif head == ["svc", "is-active"]:
            return 0 if args[0] in self.active else 1
        elif head == ["svc", "enable"]:
            self.enabled.add(args[0])
        elif head == ["svc", "start"]:
            self.active.add(args[0])
        elif head == ["svc", "stop"]:
            self.active.discard(args[0])
        elif head == ["svc", "disable"]:
            self.enabled.discard(args[0])
        elif words[0] == "groupadd":
            self.groups.add(words[-1])
        elif words[0] == "useradd":
            self.users.add(words[-1])
        elif words[0] == "groupdel":
            self.groups.discard(words[-1])
        elif words[0] == "userdel":
            self.users.discard(words[-1])
        return 0

    def commands_matching(self, text: str) -> list[str]:
        return [c for c in self.commands if text in c]

    def is_root(self) -> bool:
        return self.root

    def user_exists(self, name: str) -> bool:
        return name in self.users

    def group_exists(self, name: str) -> bool:
        return name in self.groups

    def port_in_use(self, port: int, host: str = "127.0.0.1") -> bool:
        return self.port_busy

    def memory_mb(self) -> int | None:
        return self.memory

    def free_disk_mb(self, path: Path) -> int:
        return self.disk

    def cpu_count(self) -> int:
        return self.cpus

    def which(self, binary: str) -> str | None:
        return None

    def path_exists(self, path) -> bool:
        return str(path) in self.existing_paths

    def has_default_route(self) -> bool:
        return self.gateway

    def hostname_resolves(self, name: str) -> bool:
        return self.resolves

    def set_owner(self, path: Path, user, group, recursive: bool = False) -> None:
        self.owners.append((path, user, group))

    def https_reachable(self, url: str, timeout: int = 5) -> tuple[bool, str]:
        return (True, "HTTP 200") if self.reachable else (False, "connection refused")


def make_profile_data(etc: Path, names=None) -> dict:
    """Profile table data whose config directories live under `etc`."""
    names = names or [c.name for c in get_all_components()]
    components = {}
    for name in names:
        entry = {
            "packages": [] if name in ("panel", "system-database") else [f"{name}-pkg"],
            "config_dir": str(etc / name),
        }
        if name in SERVICES:
            entry["service"] = SERVICES[name]
        if name == "nginx":
            entry["config_test"] = "nginx -t"
            entry["include_dir"] = str(etc / "nginx" / "conf.d")
        if name == "phpfpm":
            entry["include_dir"] = str(etc / "phpfpm" / "pool.d")
        components[name] = entry

    return {
        "display_name": "TestOS",
        "versions": ["1"],
        "package_manager": {
            "install": "pkg install",
            "update": "pkg update",
            "remove": "pkg remove",
            "query": "pkg query",
        },
        "service_manager": {
            "start": "svc start",
            "stop": "svc stop",
            "restart": "svc restart",
            "reload": "svc reload",
            "enable": "svc enable",
            "disable": "svc disable",
            "is_active": "svc is-active",
            "is_enabled": "svc is-enabled",
            "daemon_reload": "svc daemon-reload",
        },
        "repositories": ["repo add testing-{version}"],
        "firewall": {"allow": "fw allow {port}", "enable": "fw enable"},
        "web_user": "www-test",
        "locale": ["locale-gen en_US.UTF-8"],
        "components": components,
    }


def make_bundle(dest: Path, version: str = "0.1.3", subtrees=("nginx", "php", "panel", "system")) -> Path:
    """Build a release-style tarball: kisspanel-<version>/configs/<subtree>/..."""
    files = {
        "nginx": {"nginx.conf": "worker_processes auto;\n"},
        "php": {"fpm/pool.d/www.conf": "[www]\nuser = nginx\n"},
        "panel": {
            "nginx.conf": "server { listen 2006 ssl; }\n",
            "systemd.conf": "[Unit]\nDescription=KissPanel\n",
            "php-fpm.conf": "[kisspanel]\n",
            "schema.sql": SCHEMA_SQL,
        },
        "system": {"limits.conf": "* soft nofile 65535\n"},
    }
    src = dest / f"src-{version}"
    for subtree in subtrees:
        for rel, content in files[subtree].items():
            path = src / f"kisspanel-{version}" / "configs" / subtree / rel
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(content)

    archive = dest / f"kisspanel-{version}.tar.gz"
    with tarfile.open(archive, "w:gz") as tar:
        tar.add(src / f"kisspanel-{version}", arcname=f"kisspanel-{version}")
    return archive


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture(autouse=True)
def reset_package_logger() -> Generator[None, None, None]:
    """Drop handlers installed by setup_logging so they do not leak between tests."""
    yield
    logger = logging.getLogger("kisspanel_installer")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True


@pytest.fixture
def defaults_file(temp_dir: Path, monkeypatch) -> Path:
    """Point the persisted defaults at a temporary file."""
    path = temp_dir / "config" / "defaults.yaml"
    monkeypatch.setenv("KISSPANEL_DEFAULTS", str(path))
    return path


@pytest.fixture
def ubuntu_os_release(temp_dir: Path) -> Path:
    path = temp_dir / "os-release"
    path.write_text(UBUNTU_OS_RELEASE)
    return path


@pytest.fixture
def test_profile(temp_dir: Path) -> OSProfile:
    return build_profile("testos", "1", make_profile_data(temp_dir / "etc"))


@pytest.fixture
def request_factory():
    """Resolve a request from flags without touching the real hostname."""

    def _create(**flags) -> InstallationRequest:
        args = {
            "hostname": "panel.test",
            "email": "root@panel.test",
            "password": "Secret123",
            "interactive": "no",
        }
        args.update(flags)
        return resolve(args, system_hostname=lambda: "panel.test")

    return _create


@pytest.fixture
def bundle_ref(temp_dir: Path) -> BundleRef:
    archive = make_bundle(temp_dir / "bundles")
    return BundleRef(version="0.1.3", source=str(archive))


@pytest.fixture
def fake_host() -> FakeHost:
    return FakeHost()


@pytest.fixture
def step_context(temp_dir, test_profile, request_factory, fake_host, bundle_ref) -> StepContext:
    return StepContext(
        request=request_factory(),
        profile=test_profile,
        host=fake_host,
        layout=TargetLayout(temp_dir / "root"),
        bundle=bundle_ref,
    )


@pytest.fixture
def mock_no_tty() -> Generator[None, None, None]:
    """Mock sys.stdin.isatty to return False."""
    with patch("sys.stdin.isatty", return_value=False):
        yield
