"""
Apple Partition Map parsing.

Mac CD-ROMs and hybrid discs place a Driver Descriptor Map ("ER") in the
first 512-byte block and partition map entries ("PM") in the blocks that
follow. The start of the first Apple_HFS partition is the base offset of
the HFS or HFS+ volume.
"""

import logging
import struct
from dataclasses import dataclass
from typing import List, Optional

from disc_workbench.imaging.image_formats import DiscCorruptError
from disc_workbench.imaging.sector_reader import SectorReader

logger = logging.getLogger(__name__)


APM_BLOCK_SIZE = 512
DDM_SIGNATURE = b'ER'
PM_SIGNATURE = b'PM'
MAX_PARTITION_ENTRIES = 256


@dataclass(frozen=True)
class PartitionEntry:
    """
    One partition map entry.

    Attributes:
        index: Entry number (1-based block index in the map)
        map_entries: Total entries in the map, as recorded by this entry
        start_block: First 512-byte block of the partition
        block_count: Partition length in 512-byte blocks
        name: Partition name
        partition_type: Partition type (e.g. "Apple_HFS", "Apple_Driver43")
    """
    index: int
    map_entries: int
    start_block: int
    block_count: int
    name: str
    partition_type: str

    @property
    def offset(self) -> int:
        """Byte offset of the partition."""
        return self.start_block * APM_BLOCK_SIZE

    @property
    def is_hfs(self) -> bool:
        """True for HFS, HFS+ and HFSX partitions."""
        return self.partition_type.startswith("Apple_HFS")


def _c_string(raw: bytes) -> str:
    return raw.split(b'\0', 1)[0].decode('mac_roman').strip()


def parse_entry(data: bytes, index: int) -> Optional[PartitionEntry]:
    """Parse one 512-byte map block; None if it is not a "PM" entry."""
    if data[:2] != PM_SIGNATURE:
        return None
    map_entries, start_block, block_count = struct.unpack_from('>LLL', data, 4)
    return PartitionEntry(index, map_entries, start_block, block_count,
                          _c_string(data[16:48]), _c_string(data[48:80]))


def has_partition_map(reader: SectorReader) -> bool:
    """True if block 0 holds a Driver Descriptor Map."""
    return reader.read_bytes(0, 2) == DDM_SIGNATURE


def parse_partition_map(reader: SectorReader) -> List[PartitionEntry]:
    """
    Read every partition map entry.

    Returns:
        Entries in map order; empty if the image has no partition map

    Raises:
        DiscCorruptError: If a map is announced but its entries are invalid
    """
    if not has_partition_map(reader):
        return []

    first = parse_entry(reader.read_bytes(APM_BLOCK_SIZE, APM_BLOCK_SIZE), 1)
    if first is None:
        raise DiscCorruptError("Driver descriptor map without partition map",
                               expected=PM_SIGNATURE,
                               actual=reader.read_bytes(APM_BLOCK_SIZE, 2))
    if not 1 <= first.map_entries <= MAX_PARTITION_ENTRIES:
        raise DiscCorruptError("Invalid partition map entry count",
                               actual=first.map_entries)

    entries = [first]
    for index in range(2, first.map_entries + 1):
        entry = parse_entry(reader.read_bytes(index * APM_BLOCK_SIZE, APM_BLOCK_SIZE), index)
        if entry is None:
            logger.warning("Partition map entry %d has no signature, map truncated", index)
            break
        entries.append(entry)

    for entry in entries:
        logger.debug("Partition %d: '%s' type='%s' blocks=%d+%d", entry.index,
                     entry.name, entry.partition_type, entry.start_block, entry.block_count)
    return entries


def find_hfs_partition(reader: SectorReader) -> Optional[PartitionEntry]:
    """First HFS-family partition of the map, or None."""
    for entry in parse_partition_map(reader):
        if entry.is_hfs:
            logger.info("Found HFS partition '%s' at byte offset %d", entry.name, entry.offset)
            return entry
    return None
