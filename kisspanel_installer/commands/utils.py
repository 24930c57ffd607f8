"""Shared options, exit codes and helpers for commands."""

import sys
from pathlib import Path
from typing import Any, Callable, NoReturn

import click

from kisspanel_installer.bundle import DEFAULT_BUNDLE_URL, DEFAULT_BUNDLE_VERSION
from kisspanel_installer.errors import (
    ConcurrentRunError,
    ConfigError,
    DeployError,
    ExecutionError,
    InstallerError,
    PlanError,
    UnsupportedPlatformError,
    ValidationError,
    format_error,
)
from kisspanel_installer.installer.models import ExecutionRecord, StepStatus
from kisspanel_installer.paths import DEFAULT_ROOT
from kisspanel_installer.profiles import OS_RELEASE_PATH, OSProfile, detect_os, resolve_profile
from kisspanel_installer.request import CORE_COMPONENTS, FLAG_SETTERS

EXIT_SUCCESS = 0
EXIT_CANCELLED = 1
EXIT_INVALID_INPUT = 2
EXIT_UNSUPPORTED_PLATFORM = 3
EXIT_PLAN_ERROR = 4
EXIT_STEP_FAILED = 5
EXIT_DEPLOY_ERROR = 6
EXIT_CONCURRENT_RUN = 7

_EXIT_CODES: tuple[tuple[type[InstallerError], int], ...] = (
    (ValidationError, EXIT_INVALID_INPUT),
    (ConfigError, EXIT_INVALID_INPUT),
    (UnsupportedPlatformError, EXIT_UNSUPPORTED_PLATFORM),
    (PlanError, EXIT_PLAN_ERROR),
    (ExecutionError, EXIT_STEP_FAILED),
    (DeployError, EXIT_DEPLOY_ERROR),
    (ConcurrentRunError, EXIT_CONCURRENT_RUN),
)

STATUS_ICONS = {
    StepStatus.OK: "✅",
    StepStatus.WARNED: "⚠️ ",
    StepStatus.FAILED: "❌",
    StepStatus.SKIPPED: "⏭️ ",
}

# Flags exposed on the command line. Core components are always installed.
REQUEST_FLAGS = tuple(flag for flag in FLAG_SETTERS if flag not in CORE_COMPONENTS)

_FLAG_HELP = {
    "port": ("N", "Panel port (2000-9999, default: 2006)"),
    "lang": ("L", "Panel language: en or es (default: en)"),
    "hostname": ("HOST", "Server hostname (default: this machine's FQDN)"),
    "email": ("EMAIL", "Admin email (default: root@<hostname>)"),
    "password": ("PASS", "Admin password (generated when omitted)"),
    "interactive": ("yes|no", "Ask for missing values and confirmation"),
    "force": ("yes|no", "Install even if another control panel is present"),
    "api": ("yes|no", "Enable the panel API"),
}


def exit_code_for(error: InstallerError) -> int:
    for error_type, code in _EXIT_CODES:
        if isinstance(error, error_type):
            return code
    return EXIT_CANCELLED


def fail(error: InstallerError) -> NoReturn:
    click.echo(format_error(str(error)), err=True)
    sys.exit(exit_code_for(error))


def request_options(include_password: bool = True) -> Callable:
    """Add one option per request flag. Values are validated by the resolver."""

    def decorator(func: Callable) -> Callable:
        for flag in reversed(REQUEST_FLAGS):
            if flag == "password" and not include_password:
                continue
            metavar, help_text = _FLAG_HELP.get(flag, ("yes|no", f"Install {flag}"))
            func = click.option(
                f"--{flag}", flag, default=None, metavar=metavar, help=help_text
            )(func)
        return func

    return decorator


def target_options(func: Callable) -> Callable:
    func = click.option(
        "--os-release",
        type=click.Path(dir_okay=False, path_type=Path),
        default=OS_RELEASE_PATH,
        show_default=True,
        help="OS identity file used for platform detection",
    )(func)
    func = click.option(
        "--root",
        type=click.Path(file_okay=False, path_type=Path),
        default=DEFAULT_ROOT,
        show_default=True,
        help="Installation root",
    )(func)
    return func


def bundle_options(func: Callable) -> Callable:
    func = click.option(
        "--bundle-version",
        default=DEFAULT_BUNDLE_VERSION,
        show_default=True,
        help="Configuration bundle version",
    )(func)
    func = click.option(
        "--bundle-url",
        default=None,
        help=f"Bundle URL or local path; '{{version}}' is substituted (default: {DEFAULT_BUNDLE_URL})",
    )(func)
    return func


def pop_request_args(kwargs: dict[str, Any]) -> dict[str, Any]:
    return {flag: kwargs.pop(flag) for flag in REQUEST_FLAGS if flag in kwargs}


def load_profile(os_release: Path) -> OSProfile:
    os_id, version = detect_os(os_release)
    return resolve_profile(os_id, version)


def echo_record(record: ExecutionRecord) -> None:
    icon = STATUS_ICONS.get(record.status, " ")
    line = f"{icon} {record.step}"
    if record.detail:
        line += f": {record.detail}"
    if record.status == StepStatus.FAILED:
        click.secho(line, fg="red", err=True)
    elif record.status == StepStatus.WARNED:
        click.secho(line, fg="yellow")
    else:
        click.echo(line)


__all__ = [
    "EXIT_SUCCESS",
    "EXIT_CANCELLED",
    "EXIT_INVALID_INPUT",
    "EXIT_UNSUPPORTED_PLATFORM",
    "EXIT_PLAN_ERROR",
    "EXIT_STEP_FAILED",
    "EXIT_DEPLOY_ERROR",
    "EXIT_CONCURRENT_RUN",
    "REQUEST_FLAGS",
    "exit_code_for",
    "fail",
    "request_options",
    "target_options",
    "bundle_options",
    "pop_request_args",
    "load_profile",
    "echo_record",
]
