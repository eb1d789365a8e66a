"""
Error handling utilities for Disc Workbench.

Classifies engine exceptions by their ErrorKind and turns them into
user-facing messages and process exit codes.
"""

from typing import Dict

from disc_workbench.imaging.image_formats import DiscError, ErrorKind


EXIT_SUCCESS = 0
EXIT_USAGE = 1

EXIT_CODES: Dict[ErrorKind, int] = {
    ErrorKind.IO: 2,
    ErrorKind.CORRUPT: 3,
    ErrorKind.UNSUPPORTED: 4,
    ErrorKind.NOT_FOUND: 5,
}

_HINTS: Dict[ErrorKind, str] = {
    ErrorKind.IO: "The image could not be read. Check that the file exists, "
                  "is readable and is not truncated.",
    ErrorKind.CORRUPT: "The image contains inconsistent structures and cannot "
                       "be browsed safely.",
    ErrorKind.UNSUPPORTED: "The image uses a format or feature this tool does "
                           "not implement.",
    ErrorKind.NOT_FOUND: "The requested file or directory does not exist on "
                         "the volume.",
}


def error_kind(error: BaseException) -> ErrorKind:
    """
    Get the ErrorKind of an exception.

    OSError is classified as IO; other non-engine exceptions as CORRUPT.
    """
    if isinstance(error, DiscError):
        return error.kind
    if isinstance(error, OSError):
        return ErrorKind.IO
    return ErrorKind.CORRUPT


def is_fatal_error(error: BaseException) -> bool:
    """
    Determine if an error should abort the whole session.

    Corrupt structures and failing storage end the session; unsupported
    features and missing entries only fail the current operation.

    Example:
        >>> if is_fatal_error(exc):
        ...     session.close()
    """
    return error_kind(error) in (ErrorKind.IO, ErrorKind.CORRUPT)


def is_recoverable_error(error: BaseException) -> bool:
    """
    Determine if an error is an expected navigation outcome.

    NotFound is distinguishable from Corrupt so callers can fall back,
    e.g. try another path.
    """
    return error_kind(error) == ErrorKind.NOT_FOUND


def get_error_severity(error: BaseException) -> str:
    """
    Get the severity level of an error.

    Returns:
        Severity level: "critical", "error" or "warning"

    Example:
        >>> severity = get_error_severity(DiscNotFoundError("missing"))
        'warning'
    """
    kind = error_kind(error)
    if kind == ErrorKind.CORRUPT:
        return "critical"
    if kind == ErrorKind.NOT_FOUND:
        return "warning"
    return "error"


def get_exit_code(error: BaseException) -> int:
    """Process exit code for an error."""
    return EXIT_CODES[error_kind(error)]


def describe_error(error: BaseException, operation: str = "operation") -> str:
    """
    Format an error with context-aware guidance.

    Example:
        >>> print(describe_error(exc, "extract"))
        extract failed: Extent 9000+10 outside volume
        The image contains inconsistent structures and cannot be browsed safely.
    """
    kind = error_kind(error)
    return f"{operation} failed: {error}\n{_HINTS[kind]}"
