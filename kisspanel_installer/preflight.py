"""Pre-installation host checks.

Blocking findings raise ExecutionError before anything is changed;
advisories come back as warnings on the step's outcome.
"""

import logging

from kisspanel_installer.errors import ExecutionError
from kisspanel_installer.installer.models import StepContext

MIN_MEMORY_MB = 1024
MIN_DISK_MB = 10240
MIN_CPU_CORES = 2

OTHER_PANELS = (
    "/usr/local/cpanel",
    "/usr/local/directadmin",
    "/usr/local/plesk",
    "/usr/local/hestia",
    "/usr/local/vestacp",
    "/usr/local/cyberpanel",
)

_logging = logging.getLogger(__name__)


async def run_preflight(ctx: StepContext, step: str = "base:install") -> list[str]:
    """Run every host check.

    Returns:
        Advisory warnings

    Raises:
        ExecutionError: On the first blocking finding
    """
    host = ctx.host
    request = ctx.request
    _logging.info("Starting pre-installation checks...")

    if not host.is_root():
        raise ExecutionError(step, "This installer must be run as root")

    if not host.has_default_route():
        raise ExecutionError(
            step, "No default gateway found. Hint: check the network configuration"
        )

    if not request.force:
        for panel in OTHER_PANELS:
            if host.path_exists(panel):
                raise ExecutionError(
                    step,
                    f"Found existing control panel installation at {panel}. "
                    "Hint: pass --force yes to install anyway",
                )

    if host.port_in_use(request.port):
        panel_service = ctx.profile.service("panel")
        panel_running = panel_service and await host.succeeds(
            ctx.profile.service_command("is_active", panel_service)
        )
        if not panel_running:
            raise ExecutionError(
                step,
                f"Port {request.port} is already in use. Hint: pass --port with a free port",
            )

    warnings = []
    if not host.hostname_resolves(request.hostname):
        warnings.append(
            f"Hostname {request.hostname} does not resolve. "
            "The panel URL may not work until DNS is configured."
        )

    memory = host.memory_mb()
    if memory is not None and memory < MIN_MEMORY_MB:
        warnings.append(
            f"Only {memory}MB RAM detected. Minimum recommended is {MIN_MEMORY_MB}MB"
        )

    free = host.free_disk_mb(ctx.layout.root)
    if free < MIN_DISK_MB:
        warnings.append("Less than 10GB of free disk space. This might not be sufficient.")

    cores = host.cpu_count()
    if cores < MIN_CPU_CORES:
        warnings.append(
            f"Only {cores} CPU core(s) detected. Minimum recommended is {MIN_CPU_CORES} cores"
        )

    if host.which("getenforce"):
        result = await host.run("getenforce")
        if result.ok and result.output.strip() == "Enforcing":
            warnings.append("SELinux is enabled. This might affect panel functionality.")

    for warning in warnings:
        _logging.warning(warning)
    return warnings


__all__ = ["run_preflight"]
