"""Filesystem layout helpers for the installer."""

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_ROOT = Path("/usr/local/kisspanel")

# Top-level directories under the target root. Verification and uninstall
# tooling rely on these names.
ROOT_SUBDIRS = ("bin", "conf", "data", "logs", "panel", "scripts", "tmp", "backups")
CONF_SUBDIRS = ("nginx", "apache", "php", "mysql", "postgresql", "mail", "dns")


@dataclass(frozen=True)
class TargetLayout:
    """Fixed directory layout rooted at the install directory."""

    root: Path = DEFAULT_ROOT

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def conf_dir(self) -> Path:
        return self.root / "conf"

    @property
    def data_dir(self) -> Path:
        return self.root / "data"

    @property
    def logs_dir(self) -> Path:
        return self.root / "logs"

    @property
    def panel_dir(self) -> Path:
        return self.root / "panel"

    @property
    def tmp_dir(self) -> Path:
        return self.root / "tmp"

    @property
    def backups_dir(self) -> Path:
        return self.root / "backups"

    @property
    def bundles_dir(self) -> Path:
        return self.conf_dir / "bundles"

    @property
    def database_path(self) -> Path:
        return self.data_dir / "kisspanel.db"

    @property
    def lock_path(self) -> Path:
        return self.root / ".install.lock"

    @property
    def log_file(self) -> Path:
        return self.logs_dir / "install.log"

    @property
    def report_file(self) -> Path:
        return self.logs_dir / "install-report.yaml"

    @property
    def ssl_dir(self) -> Path:
        return self.data_dir / "ssl"

    def component_conf_dir(self, name: str) -> Path:
        return self.conf_dir / name

    def required_dirs(self) -> list[Path]:
        """Every directory the layout guarantees after the base step."""
        dirs = [self.root]
        dirs.extend(self.root / name for name in ROOT_SUBDIRS)
        dirs.extend(self.conf_dir / name for name in CONF_SUBDIRS)
        dirs.append(self.ssl_dir)
        return dirs


def get_config_dir() -> Path:
    """Return XDG-compliant config directory: ~/.config/kisspanel"""
    return Path.home() / ".config" / "kisspanel"


def get_defaults_path(create: bool = False) -> Path:
    """Return path to the persisted defaults file.

    Priority:
    1. KISSPANEL_DEFAULTS environment variable (if set)
    2. ~/.config/kisspanel/defaults.yaml (default XDG location)

    Args:
        create: If True, create the parent directory when missing

    Returns:
        Path to defaults file
    """
    if "KISSPANEL_DEFAULTS" in os.environ:
        path = Path(os.environ["KISSPANEL_DEFAULTS"])
    else:
        path = get_config_dir() / "defaults.yaml"
    if create:
        path.parent.mkdir(parents=True, exist_ok=True)
    return path
