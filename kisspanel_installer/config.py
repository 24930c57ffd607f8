"""Persisted defaults and command-line rendering.

The defaults file is a flat YAML mapping of flag name to value, holding the
last configuration an operator chose. It pre-populates the next resolution
and feeds `render_command`, which turns a snapshot back into the shortest
invocation that reproduces it.
"""

from pathlib import Path
from typing import Any

import yaml

from kisspanel_installer.errors import ConfigError
from kisspanel_installer.request import (
    CORE_COMPONENTS,
    DEFAULT_COMPONENTS,
    DEFAULT_MODES,
    DEFAULT_PORT,
    FLAG_SETTERS,
    LANGUAGES,
)

COMMAND_PREFIX = "kisspanel-install install"

# Never written to disk.
SECRET_KEYS = {"password"}


def _to_token(value: Any) -> Any:
    if isinstance(value, bool):
        return "yes" if value else "no"
    return value


def load_defaults(path: Path) -> dict[str, Any]:
    """Load a defaults snapshot. A missing file is an empty snapshot.

    Raises:
        ConfigError: If the file is unreadable, not YAML, or names unknown keys
    """
    if not path.exists():
        return {}

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Defaults file {path} is not valid YAML: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading defaults file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Defaults file {path} must contain a mapping")

    unknown = sorted(k for k in data if k not in FLAG_SETTERS)
    if unknown:
        raise ConfigError(f"Defaults file {path} has unknown keys: {', '.join(unknown)}")

    return {k: _to_token(v) for k, v in data.items() if k not in SECRET_KEYS}


def save_defaults(path: Path, snapshot: dict[str, Any]) -> None:
    """Save a defaults snapshot, dropping secrets."""
    data = {k: _to_token(v) for k, v in snapshot.items() if k not in SECRET_KEYS}
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        yaml.safe_dump(data, f, default_flow_style=False, sort_keys=False)


def builtin_defaults() -> dict[str, Any]:
    defaults: dict[str, Any] = {"port": DEFAULT_PORT, "lang": LANGUAGES[0]}
    defaults.update({name: "yes" for name in CORE_COMPONENTS})
    defaults.update({k: _to_token(v) for k, v in DEFAULT_COMPONENTS.items()})
    defaults.update({k: _to_token(v) for k, v in DEFAULT_MODES.items()})
    return defaults


def render_command(snapshot: dict[str, Any], prefix: str = COMMAND_PREFIX) -> str:
    """Render the invocation reproducing a snapshot.

    Only values that differ from the built-in defaults become flags, so a
    snapshot equal to the defaults renders as the bare command.
    """
    defaults = builtin_defaults()
    params = []
    for flag in FLAG_SETTERS:
        if flag not in snapshot or flag in SECRET_KEYS:
            continue
        value = _to_token(snapshot[flag])
        if value in (None, ""):
            continue
        if flag in defaults and str(defaults[flag]) == str(value):
            continue
        params.append(f"--{flag} {value}")
    return " ".join([prefix, *params])


__all__ = [
    "load_defaults",
    "save_defaults",
    "builtin_defaults",
    "render_command",
]
