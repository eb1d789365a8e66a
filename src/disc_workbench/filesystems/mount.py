"""
Mounting: detected volume -> filesystem implementation.

The set of implementations is closed; each detected FilesystemType maps
to exactly one constructor.
"""

import logging
from typing import Callable, Dict, Optional, Sequence

from disc_workbench.imaging.image_formats import DiscUnsupportedError, FilesystemType
from disc_workbench.imaging.sector_reader import SectorReader

from .detector import DetectedVolume, detect_volume
from .entry import Filesystem
from .hfs import HfsFilesystem
from .hfsplus import HfsPlusFilesystem
from .iso9660 import Iso9660Filesystem
from .udf import UdfFilesystem

logger = logging.getLogger(__name__)


def _mount_iso9660(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    return Iso9660Filesystem(reader, volume.descriptor_sector, joliet=False)


def _mount_joliet(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    return Iso9660Filesystem(reader, volume.descriptor_sector, joliet=True)


def _mount_udf(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    return UdfFilesystem(reader)


def _mount_hfsplus(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    return HfsPlusFilesystem(reader, volume.base_offset)


def _mount_hfs(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    return HfsFilesystem(reader, volume.base_offset)


FILESYSTEMS: Dict[FilesystemType, Callable[[SectorReader, DetectedVolume], Filesystem]] = {
    FilesystemType.ISO9660: _mount_iso9660,
    FilesystemType.JOLIET: _mount_joliet,
    FilesystemType.UDF: _mount_udf,
    FilesystemType.HFS_PLUS: _mount_hfsplus,
    FilesystemType.HFS: _mount_hfs,
}


def mount_volume(reader: SectorReader, volume: DetectedVolume) -> Filesystem:
    """Construct the filesystem for an already detected volume."""
    constructor = FILESYSTEMS.get(volume.filesystem_type)
    if constructor is None:
        raise DiscUnsupportedError("Filesystem not supported", reader.filepath,
                                   feature=volume.filesystem_type.display_name)
    return constructor(reader, volume)


def mount(reader: SectorReader, priority: Optional[Sequence[FilesystemType]] = None,
          max_volume_descriptors: int = 64) -> Filesystem:
    """
    Detect and mount the filesystem of an image.

    Args:
        reader: Sector reader owning the image
        priority: Filesystem types to try, in order
        max_volume_descriptors: Bound on descriptor sequences scanned

    Returns:
        Mounted filesystem exposing list_directory() and read_file()

    Example:
        with open_image("game.cue") as reader:
            fs = mount(reader)
            entry = find_entry(fs, "/SYSTEM.CNF")
            data = fs.read_file(entry)
    """
    volume = detect_volume(reader, priority, max_volume_descriptors)
    return mount_volume(reader, volume)
