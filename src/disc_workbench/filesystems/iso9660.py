"""
ISO 9660 and Joliet filesystems.

Directory records are read straight from the directory extents described
by the Primary (or Joliet Supplementary) Volume Descriptor. Files with the
multi-extent flag are merged into one entry whose sections are read in
order through the extent resolver.

Key Features:
    - Volume descriptor set scan up to the set terminator
    - Logical block size taken from the descriptor
    - Extended attribute records skipped at the start of each extent
    - Version suffixes (";1") and trailing dots stripped from file names
    - Joliet UTF-16BE names and volume identifier
"""

import logging
import struct
from dataclasses import dataclass
from typing import Any, List, Optional, Tuple

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
    FilesystemType,
    ISO_STANDARD_ID,
    LOGICAL_SECTOR_SIZE,
)
from disc_workbench.imaging.sector_reader import SectorReader

from .entry import EntryType, FileEntry, child_path, listing_target
from .extents import ExtentDescriptor, ExtentResolver, ForkData

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

DESCRIPTOR_START_SECTOR = 16

VD_BOOT = 0
VD_PRIMARY = 1
VD_SUPPLEMENTARY = 2
VD_PARTITION = 3
VD_TERMINATOR = 255

JOLIET_ESCAPES = (b'%/@', b'%/C', b'%/E')

FLAG_DIRECTORY = 0x02
FLAG_MULTI_EXTENT = 0x80

DIRECTORY_RECORD_MIN = 34
ROOT_RECORD_OFFSET = 156


@dataclass(frozen=True)
class VolumeDescriptor:
    """One entry of the volume descriptor set."""
    sector: int
    descriptor_type: int
    data: bytes

    @property
    def is_joliet(self) -> bool:
        """True for a Supplementary descriptor carrying a Joliet escape."""
        return (self.descriptor_type == VD_SUPPLEMENTARY
                and self.data[88:91] in JOLIET_ESCAPES)


def scan_volume_descriptors(reader: SectorReader,
                            max_descriptors: int = 64) -> List[VolumeDescriptor]:
    """
    Read the volume descriptor set starting at sector 16.

    Returns:
        Descriptors up to (not including) the terminator; empty if sector 16
        is not an ISO 9660 descriptor

    Raises:
        DiscCorruptError: If the set is not terminated within max_descriptors
    """
    descriptors: List[VolumeDescriptor] = []
    if reader.total_sectors <= DESCRIPTOR_START_SECTOR:
        return descriptors

    sector = DESCRIPTOR_START_SECTOR
    while True:
        if sector >= reader.total_sectors or len(descriptors) >= max_descriptors:
            if not descriptors:
                return descriptors
            raise DiscCorruptError("Volume descriptor set not terminated",
                                   expected=f"<= {max_descriptors}",
                                   actual=len(descriptors))
        data = reader.read_bytes(sector * LOGICAL_SECTOR_SIZE, LOGICAL_SECTOR_SIZE)
        if data[1:6] != ISO_STANDARD_ID:
            if not descriptors:
                return descriptors
            raise DiscCorruptError(f"Invalid volume descriptor at sector {sector}",
                                   expected=ISO_STANDARD_ID, actual=data[1:6])
        if data[0] == VD_TERMINATOR:
            return descriptors
        descriptors.append(VolumeDescriptor(sector, data[0], data))
        logger.debug("Volume descriptor type %d at sector %d", data[0], sector)
        sector += 1


def _strip_padding(text: str) -> str:
    return text.rstrip('\0 ').strip()


# =============================================================================
# Directory Records
# =============================================================================

@dataclass
class DirectoryRecord:
    """Decoded directory record."""
    extent: int
    data_length: int
    flags: int
    raw_name: bytes
    ext_attr_length: int = 0

    @property
    def is_directory(self) -> bool:
        return bool(self.flags & FLAG_DIRECTORY)

    @property
    def is_special(self) -> bool:
        """True for the "." and ".." records."""
        return self.raw_name in (b'\x00', b'\x01')


def parse_directory_record(data: bytes, offset: int = 0) -> DirectoryRecord:
    """Parse the directory record at offset."""
    length = data[offset]
    if length < DIRECTORY_RECORD_MIN or offset + length > len(data):
        raise DiscCorruptError("Directory record length out of range",
                               actual=length)
    ext_attr, extent = struct.unpack_from('<BL', data, offset + 1)
    data_length = struct.unpack_from('<L', data, offset + 10)[0]
    flags = data[offset + 25]
    name_length = data[offset + 32]
    if 33 + name_length > length:
        raise DiscCorruptError("Directory record name overruns record",
                               expected=length, actual=33 + name_length)
    return DirectoryRecord(extent, data_length, flags,
                           bytes(data[offset + 33:offset + 33 + name_length]), ext_attr)


# =============================================================================
# Filesystem
# =============================================================================

class Iso9660Filesystem:
    """
    ISO 9660 filesystem, optionally through a Joliet descriptor.

    Directory identifiers are the logical block of the directory extent;
    file identifiers are tuples of (block, length) sections.

    Example:
        fs = Iso9660Filesystem(reader)
        for entry in fs.list_directory():
            print(entry.name, entry.size)
    """

    def __init__(self, reader: SectorReader, descriptor_sector: int = DESCRIPTOR_START_SECTOR,
                 joliet: bool = False):
        self._reader = reader
        self._joliet = joliet
        self.filesystem_type = FilesystemType.JOLIET if joliet else FilesystemType.ISO9660

        data = reader.read_bytes(descriptor_sector * LOGICAL_SECTOR_SIZE, LOGICAL_SECTOR_SIZE)
        expected_type = VD_SUPPLEMENTARY if joliet else VD_PRIMARY
        if data[1:6] != ISO_STANDARD_ID or data[0] != expected_type:
            raise DiscCorruptError(f"No volume descriptor at sector {descriptor_sector}",
                                   expected=expected_type, actual=data[0])

        self._volume_name = _strip_padding(self._decode_name(data[40:72]))
        self._volume_blocks = struct.unpack_from('<L', data, 80)[0]
        self._block_size = struct.unpack_from('<H', data, 128)[0]
        if self._block_size not in (512, 1024, 2048):
            raise DiscCorruptError("Invalid logical block size", actual=self._block_size)

        root = parse_directory_record(data, ROOT_RECORD_OFFSET)
        self._root_block = root.extent + root.ext_attr_length
        self._resolver = ExtentResolver(reader, self._block_size,
                                        total_blocks=self._volume_blocks or None)
        logger.info("Mounted %s volume '%s' (block size %d)",
                    self.filesystem_type.display_name, self._volume_name, self._block_size)

    @property
    def volume_name(self) -> str:
        """Volume identifier from the descriptor."""
        return self._volume_name

    @property
    def block_size(self) -> int:
        """Logical block size in bytes."""
        return self._block_size

    def _decode_name(self, raw: bytes) -> str:
        if self._joliet:
            return raw[:len(raw) & ~1].decode('utf-16-be', errors='replace')
        return raw.decode('latin-1')

    def _clean_name(self, record: DirectoryRecord) -> str:
        name = self._decode_name(record.raw_name)
        if not record.is_directory:
            name = name.split(';', 1)[0].rstrip('.')
        return name

    def root(self) -> FileEntry:
        return FileEntry("/", EntryType.DIRECTORY, 0, self._root_block, None, "/")

    def _read_directory(self, block: Any) -> bytes:
        if not isinstance(block, int) or block < 0:
            raise DiscNotFoundError("Not a directory identifier", identifier=block)
        first = self._reader.read_bytes(block * self._block_size, self._block_size)
        if first[0] < DIRECTORY_RECORD_MIN:
            raise DiscNotFoundError("No directory at block", identifier=block)
        record = parse_directory_record(first, 0)
        if (record.raw_name != b'\x00' or not record.is_directory
                or record.extent + record.ext_attr_length != block):
            raise DiscNotFoundError("No directory at block", identifier=block)
        return self._reader.read_bytes(block * self._block_size, record.data_length)

    def list_directory(self, parent: Any = None) -> List[FileEntry]:
        """
        List a directory in on-disc record order.

        Args:
            parent: Directory entry or its block; None for the root

        Raises:
            DiscNotFoundError: If parent does not identify a directory
            DiscCorruptError: On malformed directory records
        """
        block, parent_path = listing_target(parent, self.root())
        data = self._read_directory(block)

        entries: List[FileEntry] = []
        seen = set()
        sections: List[Tuple[int, int]] = []
        offset = 0
        while offset < len(data):
            if data[offset] == 0:
                offset = (offset // self._block_size + 1) * self._block_size
                continue
            record = parse_directory_record(data, offset)
            offset += data[offset]
            if record.is_special:
                continue

            sections.append((record.extent + record.ext_attr_length, record.data_length))
            if record.flags & FLAG_MULTI_EXTENT:
                if record.data_length % self._block_size:
                    raise DiscCorruptError("Multi-extent section not block aligned",
                                           actual=record.data_length)
                continue
            entry_sections, sections = tuple(sections), []

            name = self._clean_name(record)
            if name in seen:
                logger.warning("Duplicate entry '%s' in %s skipped", name, parent_path or block)
                continue
            seen.add(name)

            path = child_path(parent_path, name)
            if record.is_directory:
                child_block = entry_sections[0][0]
                entries.append(FileEntry(name, EntryType.DIRECTORY, record.data_length,
                                         child_block, block, path))
            else:
                size = sum(length for _, length in entry_sections)
                entries.append(FileEntry(name, EntryType.FILE, size,
                                         entry_sections, block, path))

        if sections:
            raise DiscCorruptError("Multi-extent file without final section",
                                   actual=len(sections))
        logger.debug("Listed %d entries in directory block %d", len(entries), block)
        return entries

    def _fork(self, entry: FileEntry) -> ForkData:
        if not entry.is_file or not isinstance(entry.identifier, tuple):
            raise DiscNotFoundError(f"{entry.path} is not a file", identifier=entry.identifier)
        extents = tuple(ExtentDescriptor(block, -(-length // self._block_size))
                        for block, length in entry.identifier)
        return ForkData(entry.size, extents)

    def read_file(self, entry: FileEntry) -> bytes:
        """Read a whole file; returns exactly entry.size bytes."""
        return self._resolver.read(self._fork(entry))

    def read_file_range(self, entry: FileEntry, offset: int, length: int) -> bytes:
        """Read part of a file, clamped to its size."""
        return self._resolver.read(self._fork(entry), offset, length)


def find_descriptor(descriptors: List[VolumeDescriptor], joliet: bool) -> Optional[VolumeDescriptor]:
    """First Primary (or Joliet Supplementary) descriptor of the set."""
    for descriptor in descriptors:
        if joliet and descriptor.is_joliet:
            return descriptor
        if not joliet and descriptor.descriptor_type == VD_PRIMARY:
            return descriptor
    return None
