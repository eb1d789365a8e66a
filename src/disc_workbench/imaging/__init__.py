"""
Disc image container module.

This module provides uniform 2048-byte logical sector access over the
container formats optical disc images are distributed in.

Supported Formats:
    - ISO/TOAST: Plain sector images
    - BIN/CUE: Raw multi-track images (MODE1/MODE2/CDI, audio tracks)
    - CHD: MAME compressed hunks, version 5

Key Features:
    - Container detection by magic bytes and extension
    - CUE sheet parsing with track layout
    - Raw frame stripping to user data
    - CHD hunk map decoding with a single-hunk cache

Example Usage:
    from disc_workbench.imaging import open_image
    with open_image("game.cue") as reader:
        pvd = reader.read(16)
"""

from .image_formats import (
    # Exceptions
    ErrorKind,
    DiscError,
    DiscReadError,
    DiscCorruptError,
    DiscUnsupportedError,
    DiscNotFoundError,
    # Enums
    DiscFormat,
    FilesystemType,
    TrackMode,
    # Constants
    LOGICAL_SECTOR_SIZE,
    EXTENSION_MAP,
    # Functions
    detect_format,
    get_supported_extensions,
    get_format_for_extension,
)

from .sector_reader import (
    SectorReader,
    PlainSectorReader,
    MemorySectorReader,
)

from .cue_sheet import (
    CueSheet,
    Track,
    parse_cue,
    parse_cue_text,
    resolve_binary_path,
)

from .bincue_reader import (
    BinCueReader,
    open_bincue,
)

from .chd_reader import (
    ChdHeader,
    ChdReader,
    ChdTrack,
)

from .format_registry import (
    ContainerRegistry,
    get_container_registry,
    open_image,
)

__all__ = [
    # Exceptions
    'ErrorKind',
    'DiscError',
    'DiscReadError',
    'DiscCorruptError',
    'DiscUnsupportedError',
    'DiscNotFoundError',
    # Enums
    'DiscFormat',
    'FilesystemType',
    'TrackMode',
    # Constants
    'LOGICAL_SECTOR_SIZE',
    'EXTENSION_MAP',
    # Format detection
    'detect_format',
    'get_supported_extensions',
    'get_format_for_extension',
    # Readers
    'SectorReader',
    'PlainSectorReader',
    'MemorySectorReader',
    'BinCueReader',
    'open_bincue',
    'ChdHeader',
    'ChdReader',
    'ChdTrack',
    # CUE sheets
    'CueSheet',
    'Track',
    'parse_cue',
    'parse_cue_text',
    'resolve_binary_path',
    # Registry
    'ContainerRegistry',
    'get_container_registry',
    'open_image',
]
