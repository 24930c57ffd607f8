"""Access to the host being provisioned.

Every query or command the installer issues against the machine goes
through a Host, so that tests can substitute a recording fake.
"""

import grp
import logging
import os
import pwd
import shutil
import socket
import warnings
from dataclasses import dataclass
from pathlib import Path

import requests

from kisspanel_installer.execution import DEFAULT_TIMEOUT, run_command_async

PROBE_TIMEOUT = 5

_logging = logging.getLogger(__name__)


@dataclass
class CommandResult:
    command: str
    output: str
    returncode: int

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class Host:
    async def run(self, command: str, timeout: int = DEFAULT_TIMEOUT) -> CommandResult:
        output, returncode = await run_command_async(command, timeout=timeout)
        return CommandResult(command, output, returncode)

    async def succeeds(self, command: str, timeout: int = DEFAULT_TIMEOUT) -> bool:
        return (await self.run(command, timeout=timeout)).ok

    def is_root(self) -> bool:
        return os.geteuid() == 0

    def user_exists(self, name: str) -> bool:
        try:
            pwd.getpwnam(name)
            return True
        except KeyError:
            return False

    def group_exists(self, name: str) -> bool:
        try:
            grp.getgrnam(name)
            return True
        except KeyError:
            return False

    def port_in_use(self, port: int, host: str = "127.0.0.1") -> bool:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.settimeout(1)
            return sock.connect_ex((host, port)) == 0

    def memory_mb(self) -> int | None:
        try:
            text = Path("/proc/meminfo").read_text()
        except OSError:
            return None
        for line in text.splitlines():
            if line.startswith("MemTotal:"):
                return int(line.split()[1]) // 1024
        return None

    def free_disk_mb(self, path: Path) -> int:
        while not path.exists() and path != path.parent:
            path = path.parent
        return shutil.disk_usage(path).free // (1024 * 1024)

    def cpu_count(self) -> int:
        return os.cpu_count() or 1

    def which(self, binary: str) -> str | None:
        return shutil.which(binary)

    def path_exists(self, path: str | Path) -> bool:
        return Path(path).exists()

    def has_default_route(self) -> bool:
        """True when the IPv4 routing table has a default route."""
        try:
            text = Path("/proc/net/route").read_text()
        except OSError:
            return False
        for line in text.splitlines()[1:]:
            fields = line.split()
            if len(fields) > 1 and fields[1] == "00000000":
                return True
        return False

    def hostname_resolves(self, name: str) -> bool:
        try:
            socket.getaddrinfo(name, None)
        except (socket.gaierror, UnicodeError):
            return False
        return True

    def set_owner(
        self, path: Path, user: str | None, group: str | None, recursive: bool = False
    ) -> None:
        """chown a path, and everything below it when recursive."""
        if not path.exists():
            return
        targets = [path]
        if recursive and path.is_dir():
            targets.extend(p for p in path.rglob("*") if not p.is_symlink())
        for target in targets:
            shutil.chown(target, user=user, group=group)

    def https_reachable(self, url: str, timeout: int = PROBE_TIMEOUT) -> tuple[bool, str]:
        """Probe a local HTTPS endpoint. Any HTTP response counts as reachable."""
        try:
            with warnings.catch_warnings():
                warnings.simplefilter("ignore")
                response = requests.get(url, verify=False, timeout=timeout)
        except requests.RequestException as e:
            _logging.debug(f"HTTPS probe of {url} failed: {e}")
            return False, str(e)
        return True, f"HTTP {response.status_code}"


__all__ = [
    "CommandResult",
    "Host",
]
