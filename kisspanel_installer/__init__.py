"""KissPanel provisioning orchestrator."""

import logging
from pathlib import Path

__version__ = "0.1.3"

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_logger = logging.getLogger(__name__)


def setup_logging(debug: bool = False, log_file: Path | None = None) -> None:
    """Configure the package logger.

    Console output stays at WARNING unless debug is on, since progress is
    reported through click. The log file, when given, records INFO and up.
    """
    level = logging.DEBUG if debug else logging.WARNING
    _logger.setLevel(logging.DEBUG)
    _logger.propagate = False
    for handler in list(_logger.handlers):
        _logger.removeHandler(handler)
        handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter("%(levelname)s: %(message)s"))
    _logger.addHandler(console_handler)

    if log_file is not None:
        add_log_file(log_file, debug)


def add_log_file(path: Path, debug: bool = False) -> None:
    """Also write log records to a file. The file is appended to."""
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path)
    file_handler.setLevel(logging.DEBUG if debug else logging.INFO)
    file_handler.setFormatter(logging.Formatter(LOG_FORMAT))
    _logger.addHandler(file_handler)


__all__ = [
    "__version__",
    "setup_logging",
    "add_log_file",
]
