"""
Disc image container detection and the shared error taxonomy.

This module provides container detection for optical disc images and the
exception hierarchy raised by every layer of the engine, from sector
readers up to filesystem implementations.

Supported Containers:
    - ISO/TOAST: Plain 2048-byte sector images
    - BIN/CUE: Raw multi-track images described by a CUE sheet
    - CHD: MAME Compressed Hunks of Data (version 5)
    - MDS/MDF: Recognized, not readable (raises DiscUnsupportedError)

Error Kinds:
    - IO: The underlying image could not be read
    - CORRUPT: A structural invariant of the image was violated
    - UNSUPPORTED: A recognized feature that is not implemented
    - NOT_FOUND: Navigation target is absent
"""

import logging
from enum import Enum, auto
from pathlib import Path
from typing import Dict, List, Optional

logger = logging.getLogger(__name__)


# =============================================================================
# Error Kinds
# =============================================================================

class ErrorKind(Enum):
    """Classification of every failure surfaced by the engine."""
    IO = auto()           # Storage read failure, truncated image
    CORRUPT = auto()      # Structural invariant violated
    UNSUPPORTED = auto()  # Recognized but not implemented
    NOT_FOUND = auto()    # Missing entry, unknown CNID


# =============================================================================
# Custom Exceptions
# =============================================================================

class DiscError(Exception):
    """Base exception for disc image errors."""

    kind: ErrorKind = ErrorKind.CORRUPT

    def __init__(self, message: str, filepath: Optional[str] = None):
        self.message = message
        self.filepath = filepath
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        if self.filepath:
            return f"{self.message} [File: {self.filepath}]"
        return self.message


class DiscReadError(DiscError):
    """Raised when the underlying image cannot be read."""

    kind = ErrorKind.IO

    def __init__(self, message: str, filepath: Optional[str] = None,
                 offset: Optional[int] = None,
                 length: Optional[int] = None):
        self.offset = offset
        self.length = length
        super().__init__(message, filepath)

    def _format_message(self) -> str:
        base = super()._format_message()
        if self.offset is not None:
            return f"{base} [Offset: {self.offset}, Length: {self.length}]"
        return base


class DiscCorruptError(DiscError):
    """Raised when on-disc structures violate their invariants."""

    kind = ErrorKind.CORRUPT

    def __init__(self, message: str, filepath: Optional[str] = None,
                 expected: Optional[object] = None,
                 actual: Optional[object] = None):
        self.expected = expected
        self.actual = actual
        super().__init__(message, filepath)

    def _format_message(self) -> str:
        base = super()._format_message()
        if self.expected is not None and self.actual is not None:
            return f"{base} [Expected: {self.expected}, Actual: {self.actual}]"
        return base


class DiscUnsupportedError(DiscError):
    """Raised for recognized features that are intentionally not implemented."""

    kind = ErrorKind.UNSUPPORTED

    def __init__(self, message: str, filepath: Optional[str] = None,
                 feature: Optional[str] = None):
        self.feature = feature
        super().__init__(message, filepath)

    def _format_message(self) -> str:
        base = super()._format_message()
        if self.feature:
            return f"{base} [Feature: {self.feature}]"
        return base


class DiscNotFoundError(DiscError):
    """Raised when a directory, file or catalog node does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, message: str, filepath: Optional[str] = None,
                 identifier: Optional[object] = None):
        self.identifier = identifier
        super().__init__(message, filepath)

    def _format_message(self) -> str:
        base = super()._format_message()
        if self.identifier is not None:
            return f"{base} [Id: {self.identifier}]"
        return base


# =============================================================================
# Enums and Constants
# =============================================================================

class DiscFormat(Enum):
    """Supported disc image containers."""
    ISO = auto()      # Plain 2048-byte sectors
    BIN_CUE = auto()  # Raw sectors described by a CUE sheet
    CHD = auto()      # MAME compressed hunks
    MDS_MDF = auto()  # Alcohol 120% (recognized only)
    UNKNOWN = auto()  # Unrecognized container


class FilesystemType(Enum):
    """On-disc filesystems the engine can mount."""
    ISO9660 = "iso9660"
    JOLIET = "joliet"
    UDF = "udf"
    HFS = "hfs"
    HFS_PLUS = "hfsplus"
    UNKNOWN = "unknown"

    @property
    def display_name(self) -> str:
        """Human readable filesystem name."""
        return _FILESYSTEM_NAMES[self]


_FILESYSTEM_NAMES: Dict[FilesystemType, str] = {
    FilesystemType.ISO9660: "ISO 9660",
    FilesystemType.JOLIET: "Joliet",
    FilesystemType.UDF: "UDF",
    FilesystemType.HFS: "HFS",
    FilesystemType.HFS_PLUS: "HFS+",
    FilesystemType.UNKNOWN: "Unknown",
}


class TrackMode(Enum):
    """CD track modes with their stored sector size and user data offset."""
    AUDIO = ("AUDIO", 2352, None)
    CDG = ("CDG", 2448, None)
    MODE1_2048 = ("MODE1/2048", 2048, 0)
    MODE1_2352 = ("MODE1/2352", 2352, 16)
    MODE2_2048 = ("MODE2/2048", 2048, 0)
    MODE2_2336 = ("MODE2/2336", 2336, 8)
    MODE2_2352 = ("MODE2/2352", 2352, 24)
    CDI_2336 = ("CDI/2336", 2336, 8)
    CDI_2352 = ("CDI/2352", 2352, 24)

    def __init__(self, label: str, sector_size: int, data_offset: Optional[int]):
        self.label = label
        self.sector_size = sector_size
        self.data_offset = data_offset

    @property
    def is_data(self) -> bool:
        """True if the track carries 2048-byte user data sectors."""
        return self.data_offset is not None

    @classmethod
    def from_label(cls, label: str) -> "TrackMode":
        """Look up a mode by its CUE sheet spelling."""
        for mode in cls:
            if mode.label == label.upper():
                return mode
        raise KeyError(label)


# Normalized logical sector size for ISO9660/HFS browsing
LOGICAL_SECTOR_SIZE = 2048

# Raw CD frame size and the sync pattern that starts every data frame
RAW_SECTOR_SIZE = 2352
CD_SYNC_PATTERN = b'\x00' + b'\xff' * 10 + b'\x00'

# Magic bytes for container detection
CHD_MAGIC = b'MComprHD'
ISO_STANDARD_ID = b'CD001'
ISO_PVD_OFFSET = 16 * LOGICAL_SECTOR_SIZE

# File extension mappings
EXTENSION_MAP: Dict[str, DiscFormat] = {
    '.iso': DiscFormat.ISO,
    '.toast': DiscFormat.ISO,
    '.bin': DiscFormat.BIN_CUE,
    '.cue': DiscFormat.BIN_CUE,
    '.chd': DiscFormat.CHD,
    '.mds': DiscFormat.MDS_MDF,
    '.mdf': DiscFormat.MDS_MDF,
}


# =============================================================================
# Format Detection
# =============================================================================

def detect_format(filepath: str) -> DiscFormat:
    """
    Detect the container format of a disc image.

    Checks for container magic bytes first, then falls back to
    extension-based detection.

    Args:
        filepath: Path to the image file

    Returns:
        Detected DiscFormat enum value

    Raises:
        DiscReadError: If the file does not exist or cannot be read
    """
    path = Path(filepath)

    if not path.exists():
        raise DiscReadError("File does not exist", str(filepath))

    if not path.is_file():
        raise DiscReadError("Path is not a file", str(filepath))

    logger.debug("Detecting format for: %s", filepath)

    # Text CUE sheets never carry magic bytes
    if path.suffix.lower() == '.cue':
        return DiscFormat.BIN_CUE

    try:
        with open(path, 'rb') as f:
            header = f.read(len(CHD_MAGIC))
            f.seek(ISO_PVD_OFFSET + 1)
            iso_id = f.read(len(ISO_STANDARD_ID))
    except OSError as e:
        raise DiscReadError(f"Failed to read file: {e}", str(filepath)) from e

    if header == CHD_MAGIC:
        logger.debug("Detected CHD format by magic bytes")
        return DiscFormat.CHD

    if iso_id == ISO_STANDARD_ID:
        logger.debug("Detected ISO format by volume descriptor")
        return DiscFormat.ISO

    return _detect_by_extension(filepath)


def _detect_by_extension(filepath: str) -> DiscFormat:
    """Detect format based on file extension."""
    ext = Path(filepath).suffix.lower()
    fmt = EXTENSION_MAP.get(ext, DiscFormat.UNKNOWN)
    logger.debug("Detected %s format by extension '%s'", fmt.name, ext)
    return fmt


def get_supported_extensions() -> List[str]:
    """Get list of extensions that can be opened for reading."""
    return [ext for ext, fmt in EXTENSION_MAP.items()
            if fmt is not DiscFormat.MDS_MDF]


def get_format_for_extension(extension: str) -> DiscFormat:
    """
    Get DiscFormat for a file extension.

    Args:
        extension: File extension (with or without leading dot)

    Returns:
        Corresponding DiscFormat
    """
    if not extension.startswith('.'):
        extension = '.' + extension
    return EXTENSION_MAP.get(extension.lower(), DiscFormat.UNKNOWN)
