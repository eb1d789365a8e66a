"""
Volume detection over a sector reader.

Each filesystem type has a probe that looks for its signature at the
fixed locations it is defined at. Probes run in a configurable priority
order and the first match wins.

Detection Rules:
    - Joliet / ISO 9660: volume descriptor set at sector 16
    - UDF: NSR02/NSR03 in the recognition sequence, anchor at sector 256
    - HFS+ / HFS: Apple Partition Map entry of type Apple_HFS, or a
      signature at byte 1024 of the image
    - A signature that is announced but malformed raises DiscCorruptError
    - No match at all raises DiscUnsupportedError
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Sequence

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscUnsupportedError,
    FilesystemType,
)
from disc_workbench.imaging.sector_reader import SectorReader

from .apm import find_hfs_partition, has_partition_map
from .hfs import MDB_OFFSET, MDB_SIZE, MasterDirectoryBlock, SIGNATURE_HFS
from .hfsplus import SIGNATURE_HFS_PLUS, SIGNATURE_HFSX
from .iso9660 import find_descriptor, scan_volume_descriptors
from .udf import read_udf_volume

logger = logging.getLogger(__name__)


DEFAULT_PRIORITY = (
    FilesystemType.JOLIET,
    FilesystemType.ISO9660,
    FilesystemType.UDF,
    FilesystemType.HFS_PLUS,
    FilesystemType.HFS,
)


@dataclass(frozen=True)
class DetectedVolume:
    """
    Result of volume detection.

    Attributes:
        filesystem_type: Detected filesystem
        volume_name: Label found by the probe (empty for HFS+, whose name
            lives in the catalog)
        base_offset: Byte offset of the volume (partition or embedded volume)
        descriptor_sector: Volume descriptor sector for ISO 9660 and Joliet
    """
    filesystem_type: FilesystemType
    volume_name: str = ""
    base_offset: int = 0
    descriptor_sector: Optional[int] = None


# =============================================================================
# Probes
# =============================================================================

def _probe_iso(reader: SectorReader, max_descriptors: int,
               joliet: bool) -> Optional[DetectedVolume]:
    descriptors = scan_volume_descriptors(reader, max_descriptors)
    if not descriptors:
        return None
    descriptor = find_descriptor(descriptors, joliet)
    if descriptor is None:
        if not joliet:
            raise DiscCorruptError("Volume descriptor set has no primary descriptor")
        return None

    raw = descriptor.data[40:72]
    if joliet:
        name = raw.decode('utf-16-be', errors='replace')
    else:
        name = raw.decode('latin-1')
    fs_type = FilesystemType.JOLIET if joliet else FilesystemType.ISO9660
    return DetectedVolume(fs_type, name.rstrip('\0 '), 0, descriptor.sector)


def probe_joliet(reader: SectorReader, max_descriptors: int = 64) -> Optional[DetectedVolume]:
    """Joliet supplementary descriptor."""
    return _probe_iso(reader, max_descriptors, joliet=True)


def probe_iso9660(reader: SectorReader, max_descriptors: int = 64) -> Optional[DetectedVolume]:
    """ISO 9660 primary descriptor."""
    return _probe_iso(reader, max_descriptors, joliet=False)


def probe_udf(reader: SectorReader, max_descriptors: int = 64) -> Optional[DetectedVolume]:
    """UDF recognition sequence and anchor."""
    volume = read_udf_volume(reader, max_descriptors)
    if volume is None:
        return None
    return DetectedVolume(FilesystemType.UDF, volume.volume_name)


def locate_hfs_volume(reader: SectorReader) -> Optional[int]:
    """
    Byte offset of an HFS-family volume, or None.

    Uses the first Apple_HFS partition when the image has a partition map,
    otherwise the start of the image if a signature is present at byte 1024.

    Raises:
        DiscCorruptError: If a partitioned HFS volume has no valid signature
    """
    total_bytes = reader.total_sectors * reader.sector_size
    if total_bytes < MDB_OFFSET + 512:
        return None

    if has_partition_map(reader):
        partition = find_hfs_partition(reader)
        if partition is None:
            return None
        signature = reader.read_bytes(partition.offset + MDB_OFFSET, 2)
        if signature not in (SIGNATURE_HFS, SIGNATURE_HFS_PLUS, SIGNATURE_HFSX):
            raise DiscCorruptError(f"HFS partition '{partition.name}' has no volume signature",
                                   expected=SIGNATURE_HFS, actual=signature)
        return partition.offset

    signature = reader.read_bytes(MDB_OFFSET, 2)
    if signature in (SIGNATURE_HFS, SIGNATURE_HFS_PLUS, SIGNATURE_HFSX):
        logger.debug("No partition map, HFS signature at byte %d", MDB_OFFSET)
        return 0
    return None


def probe_hfsplus(reader: SectorReader, max_descriptors: int = 64) -> Optional[DetectedVolume]:
    """HFS+ / HFSX volume header, directly or inside an HFS wrapper."""
    base = locate_hfs_volume(reader)
    if base is None:
        return None
    signature = reader.read_bytes(base + MDB_OFFSET, 2)
    if signature in (SIGNATURE_HFS_PLUS, SIGNATURE_HFSX):
        return DetectedVolume(FilesystemType.HFS_PLUS, "", base)

    mdb = MasterDirectoryBlock.parse(reader.read_bytes(base + MDB_OFFSET, MDB_SIZE))
    if not mdb.wraps_hfs_plus:
        return None
    embedded = base + mdb.embedded_offset()
    if reader.read_bytes(embedded + MDB_OFFSET, 2) not in (SIGNATURE_HFS_PLUS, SIGNATURE_HFSX):
        raise DiscCorruptError("HFS wrapper does not contain an HFS+ volume")
    logger.debug("HFS wrapper '%s' embeds HFS+ at byte %d", mdb.volume_name, embedded)
    return DetectedVolume(FilesystemType.HFS_PLUS, "", embedded)


def probe_hfs(reader: SectorReader, max_descriptors: int = 64) -> Optional[DetectedVolume]:
    """HFS master directory block."""
    base = locate_hfs_volume(reader)
    if base is None:
        return None
    data = reader.read_bytes(base + MDB_OFFSET, MDB_SIZE)
    if data[0:2] != SIGNATURE_HFS:
        return None
    return DetectedVolume(FilesystemType.HFS, MasterDirectoryBlock.parse(data).volume_name, base)


Probe = Callable[[SectorReader, int], Optional[DetectedVolume]]

PROBES: Dict[FilesystemType, Probe] = {
    FilesystemType.JOLIET: probe_joliet,
    FilesystemType.ISO9660: probe_iso9660,
    FilesystemType.UDF: probe_udf,
    FilesystemType.HFS_PLUS: probe_hfsplus,
    FilesystemType.HFS: probe_hfs,
}


# =============================================================================
# Detection
# =============================================================================

def detect_volume(reader: SectorReader,
                  priority: Optional[Sequence[FilesystemType]] = None,
                  max_volume_descriptors: int = 64) -> DetectedVolume:
    """
    Detect the filesystem of an image.

    Args:
        reader: Sector reader of the image
        priority: Filesystem types to try, in order
        max_volume_descriptors: Bound on descriptor sequences scanned

    Returns:
        DetectedVolume of the first matching probe

    Raises:
        DiscCorruptError: If a probe finds a malformed signature
        DiscUnsupportedError: If no probe matches
    """
    for fs_type in priority or DEFAULT_PRIORITY:
        probe = PROBES.get(fs_type)
        if probe is None:
            raise DiscUnsupportedError("No detector for filesystem",
                                       feature=fs_type.display_name)
        volume = probe(reader, max_volume_descriptors)
        if volume is not None:
            logger.info("Detected %s volume '%s'", fs_type.display_name, volume.volume_name)
            return volume
        logger.debug("No %s volume", fs_type.display_name)

    raise DiscUnsupportedError("No recognizable filesystem", reader.filepath,
                               feature="filesystem detection")
