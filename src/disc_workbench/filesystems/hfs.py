"""
HFS (Mac OS Standard) filesystem.

The Master Directory Block at byte 1024 of the volume gives the
allocation block geometry and the first three extents of the catalog and
extents-overflow files. Catalog keys hold MacRoman names ordered by the
classic Mac OS collation; file records carry three inline extents per
fork, with later extents in the overflow tree.

An HFS volume may be a wrapper around an embedded HFS+ volume; the
wrapper's MDB records where that volume starts.
"""

import logging
import struct
from dataclasses import dataclass
from typing import Optional

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    FilesystemType,
)
from disc_workbench.imaging.sector_reader import SectorReader

from .catalog import (
    CATALOG_FILE_ID,
    EXTENTS_FILE_ID,
    compare_hfs_keys,
    decode_hfs_catalog_key,
    decode_hfs_catalog_record,
    decode_hfs_extent_key,
    decode_hfs_extent_record,
    decode_macroman,
    parse_hfs_extents,
)
from .extents import ExtentDescriptor, ExtentResolver, ForkData
from .hfs_common import CatalogFilesystem, CatalogFormat

logger = logging.getLogger(__name__)


MDB_OFFSET = 1024
MDB_SIZE = 162
SIGNATURE_HFS = b'BD'
EMBEDDED_SIGNATURE_HFS_PLUS = b'H+'

HFS_FORMAT = CatalogFormat(
    catalog_key=decode_hfs_catalog_key,
    catalog_record=decode_hfs_catalog_record,
    catalog_compare=compare_hfs_keys,
    extent_key=decode_hfs_extent_key,
    extent_record=decode_hfs_extent_record,
    macroman=True,
)


@dataclass(frozen=True)
class MasterDirectoryBlock:
    """
    Fields of the HFS Master Directory Block used for browsing.

    Attributes:
        volume_name: drVN, decoded from MacRoman
        allocation_blocks: drNmAlBlks
        block_size: drAlBlkSiz
        first_block: drAlBlSt, in 512-byte sectors from the volume start
        extents_file: Extents-overflow file fork
        catalog_file: Catalog file fork
        embedded_signature: drEmbedSigWord (b'H+' for a wrapper)
        embedded_extent: drEmbedExtent of the embedded volume
    """
    volume_name: str
    allocation_blocks: int
    block_size: int
    first_block: int
    extents_file: ForkData
    catalog_file: ForkData
    embedded_signature: bytes = b''
    embedded_extent: Optional[ExtentDescriptor] = None

    @property
    def allocation_offset(self) -> int:
        """Byte offset of allocation block 0 from the volume start."""
        return self.first_block * 512

    @property
    def wraps_hfs_plus(self) -> bool:
        """True if the volume is a wrapper around an HFS+ volume."""
        return self.embedded_signature == EMBEDDED_SIGNATURE_HFS_PLUS

    def embedded_offset(self) -> int:
        """Byte offset of the embedded HFS+ volume from the wrapper start."""
        return self.allocation_offset + self.embedded_extent.start_block * self.block_size

    @classmethod
    def parse(cls, data: bytes) -> "MasterDirectoryBlock":
        """
        Parse an MDB.

        Raises:
            DiscCorruptError: On a bad signature or block size
        """
        signature = bytes(data[0:2])
        if signature != SIGNATURE_HFS:
            raise DiscCorruptError("Invalid HFS master directory block signature",
                                   expected=SIGNATURE_HFS, actual=signature)
        allocation_blocks, block_size = struct.unpack_from('>HL', data, 18)
        first_block = struct.unpack_from('>H', data, 28)[0]
        if block_size == 0 or block_size % 512:
            raise DiscCorruptError("Invalid HFS allocation block size", actual=block_size)

        name_length = min(data[36], 27)
        embedded_signature = bytes(data[124:126])
        embedded_extent = ExtentDescriptor(*struct.unpack_from('>HH', data, 126))
        extents_size = struct.unpack_from('>L', data, 130)[0]
        catalog_size = struct.unpack_from('>L', data, 146)[0]
        return cls(decode_macroman(data[37:37 + name_length]),
                   allocation_blocks, block_size, first_block,
                   ForkData(extents_size, parse_hfs_extents(data, 134), EXTENTS_FILE_ID),
                   ForkData(catalog_size, parse_hfs_extents(data, 150), CATALOG_FILE_ID),
                   embedded_signature, embedded_extent)


class HfsFilesystem(CatalogFilesystem):
    """
    HFS volume.

    Args:
        reader: Sector reader of the whole image
        base_offset: Byte offset of the volume (partition start)
    """

    filesystem_type = FilesystemType.HFS

    def __init__(self, reader: SectorReader, base_offset: int = 0):
        super().__init__()
        self._base_offset = base_offset
        self._mdb = MasterDirectoryBlock.parse(
            reader.read_bytes(base_offset + MDB_OFFSET, MDB_SIZE))
        mdb = self._mdb
        logger.debug("HFS MDB: block_size=%d blocks=%d first_block=%d",
                     mdb.block_size, mdb.allocation_blocks, mdb.first_block)

        origin = base_offset + mdb.allocation_offset
        resolver = ExtentResolver(reader, mdb.block_size, origin, mdb.allocation_blocks)
        plain = ExtentResolver(reader, mdb.block_size, origin, mdb.allocation_blocks)
        self._open_trees(resolver, plain, mdb.catalog_file, mdb.extents_file, HFS_FORMAT)

        self._volume_name = mdb.volume_name
        logger.info("Mounted HFS volume '%s'", self._volume_name)

    @property
    def mdb(self) -> MasterDirectoryBlock:
        """Parsed master directory block."""
        return self._mdb
