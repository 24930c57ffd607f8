"""Async shell execution against the local machine."""

import asyncio
import logging
import os

DEFAULT_TIMEOUT = 30
SERVICE_TIMEOUT = 120
INSTALL_TIMEOUT = 1800

# Package managers and systemctl are parsed in English.
COMMAND_ENV = {"LC_ALL": "C", "LANG": "C"}

_logging = logging.getLogger(__name__)


def _command_env() -> dict[str, str]:
    return {**os.environ, **COMMAND_ENV}


async def run_command_async(
    command: str, timeout: int = DEFAULT_TIMEOUT
) -> tuple[str, int]:
    """Run a shell command and return its combined output and return code.

    stderr is folded into the output so that a failing package transaction
    can be reported with the package manager's own message. A timeout or a
    command that cannot be spawned comes back as return code 1.
    """
    _logging.debug(f"Running command: {command}")
    try:
        process = await asyncio.create_subprocess_shell(
            command,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.STDOUT,
            env=_command_env(),
        )
    except OSError as e:
        _logging.error(f"Cannot start command: {type(e).__name__}: {e} | Command: {command}")
        return f"Error: {e}", 1

    try:
        stdout, _ = await asyncio.wait_for(process.communicate(), timeout=timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        _logging.error(f"Command timed out after {timeout} seconds: {command}")
        return f"Command timed out after {timeout} seconds", 1

    output = stdout.decode(errors="replace").strip()
    returncode = process.returncode if process.returncode is not None else 1
    if returncode != 0:
        _logging.debug(f"Exit {returncode}: {output[-500:]}")
    return output, returncode


__all__ = [
    "DEFAULT_TIMEOUT",
    "SERVICE_TIMEOUT",
    "INSTALL_TIMEOUT",
    "run_command_async",
]
