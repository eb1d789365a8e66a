"""
Uniform random access to logical sectors of a disc image.

This module provides the SectorReader base class shared by every container
adapter and the PlainSectorReader used for ISO/TOAST images whose file
offsets map directly onto 2048-byte sectors.

Key Features:
    - Constant sector size for the lifetime of a reader
    - Multi-sector reads returning exactly count * sector_size bytes
    - Unaligned byte-range reads built on sector reads
    - Context manager support for handle ownership
"""

import logging
import os
from pathlib import Path
from typing import BinaryIO, Optional

from .image_formats import (
    DiscReadError,
    DiscFormat,
    LOGICAL_SECTOR_SIZE,
)

logger = logging.getLogger(__name__)


# =============================================================================
# SectorReader Base Class
# =============================================================================

class SectorReader:
    """
    Random-access reader of fixed-size logical sectors.

    Subclasses implement _read_sectors(); range checking, byte-range reads
    and handle lifetime live here.

    Attributes:
        sector_size: Logical sector size in bytes (constant)
        total_sectors: Number of addressable logical sectors
        filepath: Path of the image backing this reader

    Example:
        with PlainSectorReader("game.iso") as reader:
            pvd = reader.read(16, 1)
    """

    format: DiscFormat = DiscFormat.UNKNOWN

    def __init__(self, filepath: Optional[str] = None,
                 sector_size: int = LOGICAL_SECTOR_SIZE):
        self._filepath = filepath
        self._sector_size = sector_size
        self._total_sectors = 0
        self._closed = False

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def sector_size(self) -> int:
        """Logical sector size in bytes."""
        return self._sector_size

    @property
    def total_sectors(self) -> int:
        """Number of addressable logical sectors."""
        return self._total_sectors

    @property
    def filepath(self) -> Optional[str]:
        """Path of the backing image, if any."""
        return self._filepath

    @property
    def closed(self) -> bool:
        """True once close() has been called."""
        return self._closed

    # =========================================================================
    # Reading
    # =========================================================================

    def read(self, sector_index: int, count: int = 1) -> bytes:
        """
        Read consecutive logical sectors.

        Args:
            sector_index: First logical sector
            count: Number of sectors to read

        Returns:
            Exactly count * sector_size bytes

        Raises:
            DiscReadError: On a closed handle, out-of-range index or short read
        """
        if self._closed:
            raise DiscReadError("Read on closed image", self._filepath)
        if count < 0 or sector_index < 0:
            raise DiscReadError(
                f"Invalid sector range {sector_index}+{count}", self._filepath)
        if count == 0:
            return b''
        if sector_index + count > self._total_sectors:
            raise DiscReadError(
                f"Sector range {sector_index}+{count} beyond end of image "
                f"({self._total_sectors} sectors)",
                self._filepath,
                offset=sector_index * self._sector_size,
                length=count * self._sector_size,
            )

        data = self._read_sectors(sector_index, count)
        expected = count * self._sector_size
        if len(data) != expected:
            raise DiscReadError(
                "Short read", self._filepath,
                offset=sector_index * self._sector_size, length=expected)
        return data

    def read_bytes(self, offset: int, length: int) -> bytes:
        """
        Read an arbitrary byte range of the logical sector space.

        Args:
            offset: Byte offset from the start of sector 0
            length: Number of bytes

        Returns:
            Exactly length bytes
        """
        if length <= 0:
            return b''
        if offset < 0:
            raise DiscReadError("Negative byte offset", self._filepath,
                                offset=offset, length=length)
        first = offset // self._sector_size
        last = (offset + length - 1) // self._sector_size
        data = self.read(first, last - first + 1)
        start = offset - first * self._sector_size
        return data[start:start + length]

    def _read_sectors(self, sector_index: int, count: int) -> bytes:
        raise NotImplementedError

    # =========================================================================
    # Lifetime
    # =========================================================================

    def close(self) -> None:
        """Release the underlying file handle."""
        self._closed = True

    def __enter__(self) -> "SectorReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def __repr__(self) -> str:
        return (f"{self.__class__.__name__}({self._filepath!r}, "
                f"sectors={self._total_sectors})")


# =============================================================================
# Plain Images
# =============================================================================

def open_binary(filepath: str) -> BinaryIO:
    """Open an image file for reading, translating OSError to DiscReadError."""
    try:
        return open(filepath, 'rb')
    except OSError as e:
        raise DiscReadError(f"Cannot open image: {e}", str(filepath)) from e


def read_at(handle: BinaryIO, offset: int, length: int,
            filepath: Optional[str] = None) -> bytes:
    """Read length bytes at offset, raising DiscReadError on failure."""
    try:
        handle.seek(offset)
        data = handle.read(length)
    except OSError as e:
        raise DiscReadError(f"Read failed: {e}", filepath,
                            offset=offset, length=length) from e
    if len(data) != length:
        raise DiscReadError("Short read", filepath, offset=offset, length=length)
    return data


class PlainSectorReader(SectorReader):
    """
    Reader for images whose file offset equals sector_index * sector_size.

    Used for ISO and TOAST images, and for any 2048-byte sector dump.
    """

    format = DiscFormat.ISO

    def __init__(self, filepath: str, sector_size: int = LOGICAL_SECTOR_SIZE):
        super().__init__(str(filepath), sector_size)
        self._handle = open_binary(filepath)
        try:
            size = os.fstat(self._handle.fileno()).st_size
        except OSError as e:
            self._handle.close()
            raise DiscReadError(f"Cannot stat image: {e}", str(filepath)) from e

        self._total_sectors = size // sector_size
        if size % sector_size:
            logger.warning("Image %s has %d trailing bytes past the last sector",
                           Path(filepath).name, size % sector_size)
        logger.info("Opened plain image %s (%d sectors)",
                    Path(filepath).name, self._total_sectors)

    def _read_sectors(self, sector_index: int, count: int) -> bytes:
        return read_at(self._handle, sector_index * self._sector_size,
                       count * self._sector_size, self._filepath)

    def close(self) -> None:
        if not self._closed:
            self._handle.close()
        super().close()


class MemorySectorReader(SectorReader):
    """Reader over an in-memory byte buffer."""

    def __init__(self, data: bytes, sector_size: int = LOGICAL_SECTOR_SIZE,
                 name: Optional[str] = None):
        super().__init__(name, sector_size)
        self._data = bytes(data)
        self._total_sectors = len(self._data) // sector_size

    def _read_sectors(self, sector_index: int, count: int) -> bytes:
        start = sector_index * self._sector_size
        return self._data[start:start + count * self._sector_size]
