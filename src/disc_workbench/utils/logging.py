"""
Logging configuration for Disc Workbench.

Provides structured logging with system information capture for debugging
and troubleshooting. Library modules only create module loggers; this
setup is performed once by the command line entry point.
"""

import logging
import platform
import sys
from pathlib import Path
from typing import Optional


LOG_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'

_console_handler: Optional[logging.Handler] = None


def setup_logging(log_file: Optional[str] = None, level: int = logging.DEBUG,
                  console_level: int = logging.INFO) -> None:
    """
    Configure structured logging for the application.

    Sets up file-based logging when a log file is given, plus a console
    handler on stderr, and captures system information on startup.

    Args:
        log_file: Path to log file, or None for console output only
        level: Root logging level (default: logging.DEBUG)
        console_level: Level of the console handler (default: logging.INFO)

    Example:
        >>> setup_logging("disc_workbench.log")
        >>> logging.info("Application started")
    """
    if log_file:
        # Create logs directory if it doesn't exist
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        logging.basicConfig(
            filename=log_file,
            level=level,
            format=LOG_FORMAT,
            datefmt=DATE_FORMAT,
        )
    else:
        logging.getLogger().setLevel(level)

    global _console_handler
    root = logging.getLogger()
    if _console_handler is not None:
        root.removeHandler(_console_handler)

    # Console output stays off stdout, which carries command output
    _console_handler = logging.StreamHandler(sys.stderr)
    _console_handler.setLevel(console_level)
    _console_handler.setFormatter(logging.Formatter('%(levelname)s - %(message)s'))
    root.addHandler(_console_handler)

    # Log system information on startup
    log_system_info()


def log_system_info() -> None:
    """
    Log system information for debugging purposes.

    Captures platform, Python version and the versions of the numeric and
    validation libraries the readers depend on.
    """
    import numpy
    import pydantic

    logger = logging.getLogger(__name__)
    logger.debug("=" * 60)
    logger.debug("Disc Workbench - System Information")
    logger.debug("=" * 60)
    logger.debug("Platform: %s %s", platform.system(), platform.release())
    logger.debug("Machine: %s", platform.machine())
    logger.debug("Python version: %s", sys.version)
    logger.debug("Python executable: %s", sys.executable)
    logger.debug("numpy %s, pydantic %s", numpy.__version__, pydantic.VERSION)
    logger.debug("=" * 60)


def log_operation(operation: str, details: str, level: int = logging.INFO) -> None:
    """
    Log an image operation with details.

    Args:
        operation: Name of the operation (e.g., "mount", "extract")
        details: Additional details about the operation
        level: Logging level (default: logging.INFO)

    Example:
        >>> log_operation("mount", "game.cue: ISO 9660 'MYGAME'")
        >>> log_operation("read_file", "/DATA.BIN 10240000 bytes", logging.DEBUG)
    """
    logging.getLogger(__name__).log(level, "%s: %s", operation, details)


def log_error(operation: str, error: BaseException) -> None:
    """
    Log an error with operation context.

    Args:
        operation: Name of the operation that failed
        error: The exception raised

    Example:
        >>> log_error("list_directory", DiscCorruptError("Node 7 keys out of order"))
    """
    kind = getattr(error, 'kind', None)
    label = kind.name if kind is not None else type(error).__name__
    logging.getLogger(__name__).error("%s failed - %s: %s", operation, label, error)


def log_performance(operation: str, duration: float, **metrics) -> None:
    """
    Log performance metrics for an operation.

    Args:
        operation: Name of the operation
        duration: Duration in seconds
        **metrics: Additional performance metrics (e.g., bytes_per_second)

    Example:
        >>> log_performance("extract", 2.5, files=120, bytes=52428800)
    """
    metrics_str = ", ".join(f"{k}={v}" for k, v in metrics.items())
    logging.getLogger(__name__).info("Performance - %s: %.2fs, %s",
                                     operation, duration, metrics_str)
