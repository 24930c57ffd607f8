"""OS capability profiles.

A profile maps the generic operations the installer needs ("install these
packages", "enable this service", "where does this component keep its
config") onto the commands and paths of one supported distribution.
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Iterable, Mapping

from packaging.version import InvalidVersion, Version

from kisspanel_installer.errors import UnsupportedPlatformError

OS_RELEASE_PATH = Path("/etc/os-release")

_logging = logging.getLogger(__name__)


@dataclass(frozen=True)
class ComponentPlatform:
    packages: tuple[str, ...]
    config_dir: str
    service: str | None = None
    config_test: str | None = None
    include_dir: str | None = None


@dataclass(frozen=True)
class OSProfile:
    family: str
    version: str
    display_name: str
    package_manager: Mapping[str, str]
    service_manager: Mapping[str, str]
    components: Mapping[str, ComponentPlatform]
    repositories: tuple[str, ...] = ()
    firewall: Mapping[str, str] = field(default_factory=dict)
    web_user: str = "root"
    locale: tuple[str, ...] = ()

    def has_component(self, name: str) -> bool:
        return name in self.components

    def component(self, name: str) -> ComponentPlatform:
        try:
            return self.components[name]
        except KeyError:
            raise KeyError(
                f"{self.display_name} {self.version} has no entry for component '{name}'"
            ) from None

    def packages(self, name: str) -> tuple[str, ...]:
        return self.component(name).packages

    def config_dir(self, name: str) -> str:
        return self.component(name).config_dir

    def service(self, name: str) -> str | None:
        return self.component(name).service

    def config_test(self, name: str) -> str | None:
        return self.component(name).config_test

    def include_dir(self, name: str) -> str | None:
        return self.component(name).include_dir

    def install_command(self, packages: Iterable[str]) -> str:
        return _join(self.package_manager["install"], packages)

    def remove_command(self, packages: Iterable[str]) -> str:
        return _join(self.package_manager["remove"], packages)

    def query_command(self, packages: Iterable[str]) -> str:
        return _join(self.package_manager["query"], packages)

    def update_command(self) -> str:
        return self.package_manager["update"]

    def service_command(self, verb: str, unit: str | None = None) -> str:
        base = self.service_manager[verb]
        return f"{base} {shlex.quote(unit)}" if unit else base

    def repository_commands(self) -> list[str]:
        return [cmd.replace("{version}", self.version) for cmd in self.repositories]

    def locale_commands(self) -> list[str]:
        return list(self.locale)

    def firewall_command(self, verb: str, port: int | None = None) -> str | None:
        template = self.firewall.get(verb)
        if template is None:
            return None
        return template.replace("{port}", str(port)) if port is not None else template


def _join(base: str, packages: Iterable[str]) -> str:
    return " ".join([base, *(shlex.quote(p) for p in packages)])


def parse_os_release(text: str) -> dict[str, str]:
    """Parse the KEY=value lines of an os-release file."""
    values = {}
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, raw = line.partition("=")
        try:
            parts = shlex.split(raw)
        except ValueError:
            parts = [raw.strip("\"'")]
        values[key.strip()] = parts[0] if parts else ""
    return values


def detect_os(path: Path = OS_RELEASE_PATH) -> tuple[str, str]:
    """Return the (ID, VERSION_ID) pair of the running host.

    Raises:
        UnsupportedPlatformError: If the identity file is missing or incomplete
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError:
        raise UnsupportedPlatformError(f"Cannot determine OS version: {path} is unreadable")

    values = parse_os_release(text)
    os_id = values.get("ID", "").lower()
    version = values.get("VERSION_ID", "")
    if not os_id or not version:
        raise UnsupportedPlatformError(f"Cannot determine OS version from {path}")
    return os_id, version


def normalize_version(version: str, allowed: Iterable[str]) -> str | None:
    """Match a detected version against an allow-list.

    Trailing components beyond the allow-list's granularity are dropped, so
    "8.10" matches "8" and "22.04.3" matches "22.04". Returns the allow-list
    spelling, or None when nothing matches.
    """
    try:
        release = Version(version).release
    except InvalidVersion:
        return None

    for candidate in allowed:
        try:
            wanted = Version(candidate).release
        except InvalidVersion:
            continue
        if release[: len(wanted)] == wanted:
            return candidate
    return None


def supported_platforms(families: Mapping[str, dict] | None = None) -> dict[str, list[str]]:
    if families is None:
        from kisspanel_installer.data_loader import get_platform_data

        families = get_platform_data()["families"]
    return {name: list(data["versions"]) for name, data in families.items()}


def build_profile(family: str, version: str, data: dict) -> OSProfile:
    """Build a profile from one family's validated table data."""
    merged = dict(data)
    merged.update((data.get("overrides") or {}).get(version, {}))

    components = {
        name: ComponentPlatform(
            packages=tuple(entry["packages"]),
            config_dir=entry["config_dir"],
            service=entry.get("service"),
            config_test=entry.get("config_test"),
            include_dir=entry.get("include_dir"),
        )
        for name, entry in merged["components"].items()
    }
    return OSProfile(
        family=family,
        version=version,
        display_name=merged["display_name"],
        package_manager=MappingProxyType(dict(merged["package_manager"])),
        service_manager=MappingProxyType(dict(merged["service_manager"])),
        components=MappingProxyType(components),
        repositories=tuple(merged["repositories"]),
        firewall=MappingProxyType(dict(merged["firewall"])),
        web_user=merged["web_user"],
        locale=tuple(merged.get("locale") or ()),
    )


def resolve_profile(
    detected_os: str,
    detected_version: str,
    families: Mapping[str, dict] | None = None,
) -> OSProfile:
    """Select the capability profile for a detected OS and version.

    Raises:
        UnsupportedPlatformError: If the family or version is not supported
    """
    if families is None:
        from kisspanel_installer.data_loader import get_platform_data

        families = get_platform_data()["families"]

    os_id = detected_os.lower()
    data = families.get(os_id)
    if data is None:
        supported = ", ".join(f["display_name"] for f in families.values())
        raise UnsupportedPlatformError(
            f"Unsupported operating system: {detected_os}. Currently supporting: {supported}"
        )

    version = normalize_version(detected_version, data["versions"])
    if version is None:
        raise UnsupportedPlatformError(
            f"Unsupported {data['display_name']} version: {detected_version} "
            f"(supported: {', '.join(data['versions'])})"
        )

    _logging.info(f"Detected OS: {os_id} {version}")
    return build_profile(os_id, version, data)


__all__ = [
    "ComponentPlatform",
    "OSProfile",
    "parse_os_release",
    "detect_os",
    "normalize_version",
    "supported_platforms",
    "build_profile",
    "resolve_profile",
]
