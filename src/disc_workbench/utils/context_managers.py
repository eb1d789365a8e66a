"""
Context managers for Disc Workbench.

Provides the DiscSession handle: one open sector reader plus the
filesystem mounted on it, released together when the session ends.
"""

import logging
from typing import Optional, Sequence

from disc_workbench.filesystems.entry import Filesystem
from disc_workbench.filesystems.mount import mount
from disc_workbench.imaging.format_registry import open_image
from disc_workbench.imaging.image_formats import FilesystemType
from disc_workbench.imaging.sector_reader import SectorReader

logger = logging.getLogger(__name__)


class DiscSession:
    """
    Context manager owning one browsing session of a disc image.

    The session exclusively owns its sector reader; everything derived from
    it (volume headers, catalog nodes, entries) is computed on demand.

    Attributes:
        image_path: Path of the image (CUE, BIN, ISO or CHD)
        priority: Filesystem detection order, None for the default
        reader: Open sector reader (set during context)
        filesystem: Mounted filesystem (set during context)

    Example:
        >>> with DiscSession("game.cue") as session:
        ...     entries = session.filesystem.list_directory()
        >>> # Image file automatically closed
    """

    def __init__(self, image_path: str,
                 priority: Optional[Sequence[FilesystemType]] = None,
                 max_volume_descriptors: int = 64,
                 **reader_options):
        """
        Initialize the session.

        Args:
            image_path: Path of the image
            priority: Filesystem detection order
            max_volume_descriptors: Bound on descriptor sequences scanned
            **reader_options: Options for open_image (verify_chd_map_crc)
        """
        self.image_path = str(image_path)
        self.priority = priority
        self.max_volume_descriptors = max_volume_descriptors
        self.reader_options = reader_options
        self.reader: Optional[SectorReader] = None
        self.filesystem: Optional[Filesystem] = None

    def open_reader(self) -> SectorReader:
        """Open only the sector reader, without mounting a filesystem."""
        if self.reader is None:
            self.reader = open_image(self.image_path, **self.reader_options)
        return self.reader

    def __enter__(self) -> "DiscSession":
        """
        Enter context - open the image and mount its filesystem.

        Raises:
            DiscError: If the image cannot be opened or mounted
        """
        logger.debug("Opening session for %s", self.image_path)
        reader = self.open_reader()
        try:
            self.filesystem = mount(reader, self.priority, self.max_volume_descriptors)
        except Exception:
            self.close()
            raise
        logger.info("Mounted %s volume '%s' from %s",
                    self.filesystem.filesystem_type.display_name,
                    self.filesystem.volume_name, self.image_path)
        return self

    def close(self) -> None:
        """Release the reader."""
        if self.reader is not None:
            self.reader.close()
            logger.debug("Closed %s", self.image_path)
        self.reader = None
        self.filesystem = None

    def __exit__(self, exc_type, exc_val, exc_tb):
        """
        Exit context - close the reader.

        Returns:
            False to not suppress exceptions
        """
        self.close()
        return False
