"""
UDF filesystem (ECMA-167 / OSTA UDF 1.02-2.01 read-only subset).

Covers the structures found on DVD-ROM and UDF bridge discs: the volume
recognition sequence, the anchor at sector 256, the main volume descriptor
sequence, type 1 partition maps, the file set descriptor and (extended)
file entries with short, long or embedded allocation descriptors.

Key Features:
    - Descriptor tag checksum verification
    - OSTA compressed unicode (8-bit and 16-bit) names
    - Directory listing through file identifier descriptors
    - File reads through the shared extent resolver

Not Supported:
    - Virtual, sparable and metadata partition maps
    - Allocation descriptor continuation extents, sparse extents
"""

import logging
import struct
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
    DiscUnsupportedError,
    FilesystemType,
    LOGICAL_SECTOR_SIZE,
)
from disc_workbench.imaging.sector_reader import SectorReader

from .entry import EntryType, FileEntry, child_path, listing_target
from .extents import ExtentDescriptor, ExtentResolver, ForkData

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

VRS_START_SECTOR = 16
ANCHOR_SECTOR = 256

VRS_IDENTIFIERS = (b'BEA01', b'NSR02', b'NSR03', b'TEA01', b'CD001', b'BOOT2', b'CDW02')
NSR_IDENTIFIERS = (b'NSR02', b'NSR03')

TAG_ANCHOR = 2
TAG_PARTITION = 5
TAG_LOGICAL_VOLUME = 6
TAG_TERMINATING = 8
TAG_FILE_SET = 256
TAG_FILE_IDENTIFIER = 257
TAG_FILE_ENTRY = 261
TAG_EXTENDED_FILE_ENTRY = 266

FILE_TYPE_DIRECTORY = 4

AD_SHORT = 0
AD_LONG = 1
AD_EXTENDED = 2
AD_EMBEDDED = 3

FID_DIRECTORY = 0x02
FID_DELETED = 0x04
FID_PARENT = 0x08

EXTENT_RECORDED = 0


# =============================================================================
# Descriptor Helpers
# =============================================================================

def tag_checksum(data: bytes) -> int:
    """Sum of the 16 tag bytes excluding the checksum byte itself, mod 256."""
    return (sum(data[0:4]) + sum(data[5:16])) & 0xFF


def check_tag(data: bytes, expected: Optional[int] = None, where: str = "") -> int:
    """
    Validate a descriptor tag.

    Returns:
        The tag identifier

    Raises:
        DiscCorruptError: On checksum mismatch or unexpected identifier
    """
    if len(data) < 16:
        raise DiscCorruptError(f"Descriptor tag truncated {where}".strip())
    tag_id = struct.unpack_from('<H', data, 0)[0]
    if tag_checksum(data) != data[4]:
        raise DiscCorruptError(f"Descriptor tag checksum mismatch {where}".strip(),
                               expected=data[4], actual=tag_checksum(data))
    if expected is not None and tag_id != expected:
        raise DiscCorruptError(f"Unexpected descriptor {where}".strip(),
                               expected=expected, actual=tag_id)
    return tag_id


def decode_osta(raw: bytes) -> str:
    """Decode OSTA compressed unicode (compression ID 8 or 16)."""
    if not raw:
        return ""
    compression = raw[0]
    if compression in (8, 254):
        return raw[1:].decode('latin-1')
    if compression in (16, 255):
        body = raw[1:]
        return body[:len(body) & ~1].decode('utf-16-be', errors='replace')
    raise DiscCorruptError("Unknown OSTA compression ID", actual=compression)


def decode_dstring(raw: bytes) -> str:
    """Decode a fixed-size dstring whose last byte holds the used length."""
    length = raw[-1]
    if length == 0:
        return ""
    return decode_osta(raw[:min(length, len(raw) - 1)]).rstrip('\0 ')


@dataclass(frozen=True)
class LongAd:
    """long_ad: extent inside a given partition reference."""
    length: int
    block: int
    partition: int

    @classmethod
    def parse(cls, data: bytes, offset: int) -> "LongAd":
        length, block, partition = struct.unpack_from('<LLH', data, offset)
        return cls(length & 0x3FFFFFFF, block, partition)


# =============================================================================
# Volume Structures
# =============================================================================

@dataclass
class UdfVolume:
    """
    Parsed volume-level structures.

    Attributes:
        volume_name: Logical volume identifier
        block_size: Logical block size
        partition_starts: Partition reference -> first sector
        file_set: Location of the file set descriptor
    """
    volume_name: str
    block_size: int
    partition_starts: Dict[int, int] = field(default_factory=dict)
    file_set: Optional[LongAd] = None

    def sector_of(self, partition: int, block: int) -> int:
        """Absolute sector of a partition-relative block."""
        if partition not in self.partition_starts:
            raise DiscCorruptError("Unknown partition reference", actual=partition)
        return self.partition_starts[partition] + block


def has_nsr_descriptor(reader: SectorReader, max_descriptors: int = 64) -> bool:
    """True if the volume recognition sequence announces UDF."""
    found = False
    for sector in range(VRS_START_SECTOR, VRS_START_SECTOR + max_descriptors):
        if sector >= reader.total_sectors:
            break
        identifier = reader.read_bytes(sector * LOGICAL_SECTOR_SIZE + 1, 5)
        if identifier not in VRS_IDENTIFIERS:
            break
        found = found or identifier in NSR_IDENTIFIERS
    return found


def read_udf_volume(reader: SectorReader, max_descriptors: int = 64) -> Optional[UdfVolume]:
    """
    Locate and parse the UDF volume structures.

    Returns:
        UdfVolume, or None if the image carries no UDF recognition sequence

    Raises:
        DiscCorruptError: If UDF is announced but its descriptors are invalid
        DiscUnsupportedError: For partition maps other than type 1
    """
    if reader.total_sectors <= ANCHOR_SECTOR or not has_nsr_descriptor(reader, max_descriptors):
        return None

    anchor = reader.read(ANCHOR_SECTOR)
    check_tag(anchor, TAG_ANCHOR, "at anchor sector 256")
    sequence_length, sequence_start = struct.unpack_from('<LL', anchor, 16)
    sequence_sectors = min(sequence_length // LOGICAL_SECTOR_SIZE, max_descriptors)

    partitions: Dict[int, int] = {}
    logical_volume: Optional[bytes] = None
    for sector in range(sequence_start, sequence_start + sequence_sectors):
        data = reader.read(sector)
        tag_id = struct.unpack_from('<H', data, 0)[0]
        if tag_id in (0, TAG_TERMINATING):
            break
        check_tag(data, where=f"at sector {sector}")
        if tag_id == TAG_PARTITION:
            number, = struct.unpack_from('<H', data, 22)
            start, length = struct.unpack_from('<LL', data, 188)
            partitions[number] = start
            logger.debug("UDF partition %d at sector %d (%d sectors)", number, start, length)
        elif tag_id == TAG_LOGICAL_VOLUME and logical_volume is None:
            logical_volume = data

    if logical_volume is None:
        raise DiscCorruptError("UDF volume without logical volume descriptor")

    block_size = struct.unpack_from('<L', logical_volume, 212)[0]
    if block_size != reader.sector_size:
        raise DiscUnsupportedError("UDF block size differs from sector size",
                                   feature=f"{block_size}-byte UDF blocks")
    volume = UdfVolume(decode_dstring(logical_volume[84:212]), block_size,
                       file_set=LongAd.parse(logical_volume, 248))

    map_count = struct.unpack_from('<L', logical_volume, 268)[0]
    offset = 440
    for reference in range(map_count):
        if offset + 2 > len(logical_volume):
            raise DiscCorruptError("UDF partition maps overrun descriptor")
        map_type, map_length = logical_volume[offset], logical_volume[offset + 1]
        if map_type != 1:
            raise DiscUnsupportedError("UDF partition map type not supported",
                                       feature=f"type {map_type} partition map")
        number = struct.unpack_from('<H', logical_volume, offset + 4)[0]
        if number not in partitions:
            raise DiscCorruptError("Partition map references missing partition",
                                   actual=number)
        volume.partition_starts[reference] = partitions[number]
        offset += max(map_length, 6)

    logger.debug("UDF volume '%s': %d partition maps", volume.volume_name, map_count)
    return volume


# =============================================================================
# File Entries
# =============================================================================

@dataclass
class UdfFileEntry:
    """Parsed (extended) file entry."""
    is_directory: bool
    size: int
    ad_type: int
    allocation: bytes
    partition: int


def parse_file_entry(data: bytes, partition: int) -> UdfFileEntry:
    """Parse a File Entry or Extended File Entry block."""
    tag_id = check_tag(data, where="for file entry")
    if tag_id == TAG_FILE_ENTRY:
        ea_length, ad_length = struct.unpack_from('<LL', data, 168)
        start = 176
    elif tag_id == TAG_EXTENDED_FILE_ENTRY:
        ea_length, ad_length = struct.unpack_from('<LL', data, 208)
        start = 216
    else:
        raise DiscCorruptError("ICB is not a file entry",
                               expected=TAG_FILE_ENTRY, actual=tag_id)

    begin = start + ea_length
    if begin + ad_length > len(data):
        raise DiscCorruptError("File entry allocation descriptors overrun block",
                               expected=len(data), actual=begin + ad_length)
    flags = struct.unpack_from('<H', data, 34)[0]
    size = struct.unpack_from('<Q', data, 56)[0]
    return UdfFileEntry(data[27] == FILE_TYPE_DIRECTORY, size, flags & 0x07,
                        data[begin:begin + ad_length], partition)


class UdfFilesystem:
    """
    UDF filesystem.

    Entry identifiers are (partition reference, block) pairs locating the
    file entry of each file or directory.
    """

    filesystem_type = FilesystemType.UDF

    def __init__(self, reader: SectorReader, volume: Optional[UdfVolume] = None,
                 max_descriptors: int = 64):
        self._reader = reader
        self._volume = volume or read_udf_volume(reader, max_descriptors)
        if self._volume is None:
            raise DiscCorruptError("No UDF volume recognition sequence")
        self._resolver = ExtentResolver(reader, self._volume.block_size,
                                        total_blocks=reader.total_sectors)

        file_set = self._volume.file_set
        data = self._read_block(file_set.partition, file_set.block)
        check_tag(data, TAG_FILE_SET, "for file set descriptor")
        root = LongAd.parse(data, 400)
        self._root_id = (root.partition, root.block)
        logger.info("Mounted UDF volume '%s'", self._volume.volume_name)

    @property
    def volume_name(self) -> str:
        """Logical volume identifier."""
        return self._volume.volume_name

    def _read_block(self, partition: int, block: int) -> bytes:
        return self._reader.read(self._volume.sector_of(partition, block))

    def _file_entry(self, identifier: Any) -> UdfFileEntry:
        if not (isinstance(identifier, tuple) and len(identifier) == 2):
            raise DiscNotFoundError("Not a UDF entry identifier", identifier=identifier)
        partition, block = identifier
        return parse_file_entry(self._read_block(partition, block), partition)

    def _extents(self, entry: UdfFileEntry) -> List[ExtentDescriptor]:
        extents = []
        data = entry.allocation
        step = 8 if entry.ad_type == AD_SHORT else 16
        for offset in range(0, len(data) - step + 1, step):
            if entry.ad_type == AD_SHORT:
                raw_length, block = struct.unpack_from('<LL', data, offset)
                partition = entry.partition
            else:
                raw_length, block, partition = struct.unpack_from('<LLH', data, offset)
            length, kind = raw_length & 0x3FFFFFFF, raw_length >> 30
            if length == 0:
                break
            if kind != EXTENT_RECORDED:
                raise DiscUnsupportedError("Unrecorded or continuation UDF extent",
                                           feature=f"extent type {kind}")
            blocks = -(-length // self._volume.block_size)
            extents.append(ExtentDescriptor(self._volume.sector_of(partition, block), blocks))
        return extents

    def _read_entry_data(self, entry: UdfFileEntry, offset: int = 0,
                         length: Optional[int] = None) -> bytes:
        if entry.ad_type == AD_EMBEDDED:
            end = entry.size if length is None else min(entry.size, offset + length)
            return entry.allocation[offset:end]
        if entry.ad_type not in (AD_SHORT, AD_LONG):
            raise DiscUnsupportedError("UDF allocation descriptor type not supported",
                                       feature=f"allocation type {entry.ad_type}")
        fork = ForkData(entry.size, tuple(self._extents(entry)))
        return self._resolver.read(fork, offset, length)

    def root(self) -> FileEntry:
        return FileEntry("/", EntryType.DIRECTORY, 0, self._root_id, None, "/")

    def list_directory(self, parent: Any = None) -> List[FileEntry]:
        """
        List a directory in file identifier order.

        Raises:
            DiscNotFoundError: If parent is not a directory
        """
        parent_id, parent_path = listing_target(parent, self.root())
        directory = self._file_entry(parent_id)
        if not directory.is_directory:
            raise DiscNotFoundError("UDF entry is not a directory", identifier=parent_id)
        data = self._read_entry_data(directory)

        entries: List[FileEntry] = []
        seen = set()
        offset = 0
        while offset + 38 <= len(data):
            check_tag(data[offset:offset + 16], TAG_FILE_IDENTIFIER,
                      f"in directory {parent_id}")
            characteristics, name_length = data[offset + 18], data[offset + 19]
            icb = LongAd.parse(data, offset + 20)
            use_length = struct.unpack_from('<H', data, offset + 36)[0]
            name_start = offset + 38 + use_length
            raw_name = data[name_start:name_start + name_length]
            offset += (38 + use_length + name_length + 3) & ~3

            if characteristics & (FID_PARENT | FID_DELETED):
                continue
            name = decode_osta(raw_name)
            if name in seen:
                logger.warning("Duplicate entry '%s' in %s skipped", name,
                               parent_path or parent_id)
                continue
            seen.add(name)

            identifier = (icb.partition, icb.block)
            child = self._file_entry(identifier)
            path = child_path(parent_path, name)
            entries.append(FileEntry(name,
                                     EntryType.DIRECTORY if child.is_directory else EntryType.FILE,
                                     child.size, identifier, parent_id, path))

        logger.debug("Listed %d UDF entries in %s", len(entries), parent_path or parent_id)
        return entries

    def read_file(self, entry: FileEntry) -> bytes:
        """Read a whole file; returns exactly entry.size bytes."""
        return self.read_file_range(entry, 0, None)

    def read_file_range(self, entry: FileEntry, offset: int, length: Optional[int]) -> bytes:
        """Read part of a file, clamped to its size."""
        file_entry = self._file_entry(entry.identifier)
        if file_entry.is_directory:
            raise DiscNotFoundError(f"{entry.path} is not a file", identifier=entry.identifier)
        return self._read_entry_data(file_entry, max(0, offset), length)
