"""Data loader for the bundled platform capability tables.

This module provides cached access to the OS family data loaded from YAML
files in the bundled data directory.

Caching Strategy:
- Data is loaded once on first access and cached in a module-level variable
- Use clear_cache() to force a reload

Testing:
- Tests use clear_cache() to prevent state pollution between tests
"""

from pathlib import Path

import yaml

from kisspanel_installer.errors import ConfigError

SERVICE_VERBS = {
    "start",
    "stop",
    "restart",
    "reload",
    "enable",
    "disable",
    "is_active",
    "is_enabled",
    "daemon_reload",
}
PACKAGE_VERBS = {"install", "update", "remove", "query"}

# Module-level cache
_platforms_cache: dict | None = None


def _get_data_dir() -> Path:
    """Get path to bundled data directory."""
    return Path(__file__).parent / "data"


def _load_yaml_file(path: Path) -> dict:
    """Load and parse a YAML file with error handling.

    Raises:
        ConfigError: If file cannot be read or contains invalid YAML
    """
    if not path.exists():
        raise ConfigError(f"Data file not found: {path}")

    if not path.is_file():
        raise ConfigError(f"Data path is not a file: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to load data file {path}: {e}") from e
    except OSError as e:
        raise ConfigError(f"Error reading data file {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Data file {path} must contain a mapping")
    return data


def _require_str_field(data: dict, field: str, entity_name: str) -> None:
    """Validate required string field.

    Raises:
        ConfigError: If field missing, not str, or empty
    """
    if field not in data:
        raise ConfigError(f"{entity_name} missing required field: {field}")
    if not isinstance(data[field], str) or not data[field].strip():
        raise ConfigError(f"{entity_name} field '{field}' must be a non-empty string")


def _optional_field(data: dict, field: str, entity_name: str, field_type: type) -> None:
    """Validate optional field with type check.

    Raises:
        ConfigError: If field present, not None, and wrong type
    """
    if field in data and data[field] is not None:
        if not isinstance(data[field], field_type):
            type_name = field_type.__name__
            raise ConfigError(
                f"{entity_name} field '{field}' must be a {type_name} or null"
            )


def _require_dict_field(data: dict, field: str, entity_name: str) -> None:
    """Validate required dict field.

    Raises:
        ConfigError: If field missing or not a dict
    """
    if field not in data:
        raise ConfigError(f"{entity_name} missing required field: {field}")
    if not isinstance(data[field], dict):
        raise ConfigError(f"{entity_name} field '{field}' must be a mapping")


def _require_list_field(data: dict, field: str, entity_name: str) -> None:
    """Validate required list field.

    Raises:
        ConfigError: If field missing or not a list
    """
    if field not in data:
        raise ConfigError(f"{entity_name} missing required field: {field}")
    if not isinstance(data[field], list):
        raise ConfigError(f"{entity_name} field '{field}' must be a list")


def _require_verbs(data: dict, field: str, entity_name: str, verbs: set[str]) -> None:
    _require_dict_field(data, field, entity_name)
    missing = sorted(verbs - set(data[field]))
    if missing:
        raise ConfigError(
            f"{entity_name} field '{field}' is missing verbs: {', '.join(missing)}"
        )


def _validate_component(data: dict, entity_name: str) -> None:
    if not isinstance(data, dict):
        raise ConfigError(f"{entity_name} must be a mapping")
    _require_list_field(data, "packages", entity_name)
    if not all(isinstance(p, str) and p for p in data["packages"]):
        raise ConfigError(f"{entity_name} field 'packages' must contain package names")
    if "config_dir" not in data or not isinstance(data["config_dir"], str):
        raise ConfigError(f"{entity_name} field 'config_dir' must be a string")
    _optional_field(data, "service", entity_name, str)
    _optional_field(data, "config_test", entity_name, str)
    _optional_field(data, "include_dir", entity_name, str)


def _validate_family(name: str, data: dict) -> None:
    entity = f"Platform '{name}'"
    if not isinstance(data, dict):
        raise ConfigError(f"{entity} must be a mapping")
    _require_str_field(data, "display_name", entity)
    _require_list_field(data, "versions", entity)
    if not data["versions"] or not all(isinstance(v, str) for v in data["versions"]):
        raise ConfigError(f"{entity} field 'versions' must list quoted version strings")
    _require_verbs(data, "package_manager", entity, PACKAGE_VERBS)
    _require_list_field(data, "repositories", entity)
    _require_dict_field(data, "firewall", entity)
    _require_str_field(data, "web_user", entity)
    _optional_field(data, "locale", entity, list)
    _require_dict_field(data, "components", entity)
    for component_name, component in data["components"].items():
        _validate_component(component, f"{entity} component '{component_name}'")
    _optional_field(data, "overrides", entity, dict)
    if "service_manager" in data:
        _require_verbs(data, "service_manager", entity, SERVICE_VERBS)


def validate_platform_data(data: dict) -> dict:
    """Validate the raw platform tables.

    Returns:
        The same dict, with each family's service manager filled from the
        shared default when the family does not define its own.

    Raises:
        ConfigError: If any table is missing or malformed
    """
    _require_verbs(data, "service_manager", "Platform data", SERVICE_VERBS)
    _require_dict_field(data, "families", "Platform data")
    for name, family in data["families"].items():
        _validate_family(name, family)
        family.setdefault("service_manager", dict(data["service_manager"]))
    return data


def get_platform_data() -> dict:
    """Return the validated platform tables, loading them on first use."""
    global _platforms_cache
    if _platforms_cache is None:
        raw = _load_yaml_file(_get_data_dir() / "profiles.yaml")
        _platforms_cache = validate_platform_data(raw)
    return _platforms_cache


def clear_cache() -> None:
    global _platforms_cache
    _platforms_cache = None


__all__ = [
    "get_platform_data",
    "validate_platform_data",
    "clear_cache",
]
