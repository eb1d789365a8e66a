"""
Utility functions for Disc Workbench.

This module provides error classification, logging setup and the session
context manager used by the command line.
"""

from disc_workbench.utils.error_handler import (
    EXIT_CODES,
    describe_error,
    error_kind,
    get_error_severity,
    get_exit_code,
    is_fatal_error,
    is_recoverable_error,
)

from disc_workbench.utils.logging import (
    setup_logging,
    log_system_info,
    log_operation,
    log_error,
    log_performance,
)

from disc_workbench.utils.context_managers import (
    DiscSession,
)

__all__ = [
    # Error handling
    "EXIT_CODES",
    "describe_error",
    "error_kind",
    "get_error_severity",
    "get_exit_code",
    "is_fatal_error",
    "is_recoverable_error",

    # Logging
    "setup_logging",
    "log_system_info",
    "log_operation",
    "log_error",
    "log_performance",

    # Context managers
    "DiscSession",
]
