"""
Container registry mapping disc image formats to sector readers.

Each supported DiscFormat has an opener returning a SectorReader; formats
that are recognized but not readable raise DiscUnsupportedError.
"""

import logging
from pathlib import Path
from typing import Callable, Dict, List, Optional

from .bincue_reader import open_bincue
from .chd_reader import ChdReader
from .image_formats import (
    DiscFormat,
    DiscUnsupportedError,
    detect_format,
)
from .sector_reader import PlainSectorReader, SectorReader

logger = logging.getLogger(__name__)

Opener = Callable[..., SectorReader]


def _open_plain(filepath: str, **options) -> SectorReader:
    return PlainSectorReader(filepath)


def _open_bincue(filepath: str, **options) -> SectorReader:
    return open_bincue(filepath)


def _open_chd(filepath: str, **options) -> SectorReader:
    return ChdReader(filepath, verify_map_crc=options.get('verify_chd_map_crc', True))


class ContainerRegistry:
    """
    Registry of container openers.

    Provides lookup of the opener for a DiscFormat and opening of an image
    path after format detection.
    """

    def __init__(self):
        """Initialize the container registry."""
        self._openers: Dict[DiscFormat, Opener] = {
            DiscFormat.ISO: _open_plain,
            DiscFormat.BIN_CUE: _open_bincue,
            DiscFormat.CHD: _open_chd,
        }

    def get_supported_formats(self) -> List[DiscFormat]:
        """Formats that can be opened for reading."""
        return list(self._openers.keys())

    def is_format_supported(self, disc_format: DiscFormat) -> bool:
        """True if an opener exists for disc_format."""
        return disc_format in self._openers

    def open(self, filepath: str, disc_format: Optional[DiscFormat] = None,
             **options) -> SectorReader:
        """
        Open an image with the reader for its container.

        Args:
            filepath: Path to the image (CUE sheet, BIN, ISO, CHD)
            disc_format: Skip detection and use this format
            **options: Reader options (verify_chd_map_crc)

        Returns:
            SectorReader owning the opened file

        Raises:
            DiscUnsupportedError: For unrecognized or unreadable containers
            DiscReadError: If the file cannot be read
        """
        filepath = str(filepath)
        if disc_format is None:
            disc_format = detect_format(filepath)

        opener = self._openers.get(disc_format)
        if opener is None:
            raise DiscUnsupportedError(
                f"Cannot read {disc_format.name} images", filepath,
                feature=f"{disc_format.name} container")

        logger.info("Opening %s as %s", Path(filepath).name, disc_format.name)
        return opener(filepath, **options)


# =============================================================================
# Module-level singleton
# =============================================================================

_registry: Optional[ContainerRegistry] = None


def get_container_registry() -> ContainerRegistry:
    """
    Get the global container registry singleton.

    Returns:
        ContainerRegistry instance
    """
    global _registry
    if _registry is None:
        _registry = ContainerRegistry()
    return _registry


def open_image(filepath: str, **options) -> SectorReader:
    """
    Open any supported disc image.

    Auto-detects the container and returns the matching SectorReader.

    Example:
        with open_image("game.cue") as reader:
            pvd = reader.read(16)
    """
    return get_container_registry().open(filepath, **options)
