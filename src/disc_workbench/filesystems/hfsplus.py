"""
HFS+ and HFSX filesystems.

The volume header sits 1024 bytes into the volume (after any partition
map offset, or inside an HFS wrapper). It locates the extents-overflow
and catalog B-tree files through their fork data; both trees are walked
with the shared B-tree engine.

Key Features:
    - Case-folding (HFS+) or binary (HFSX) catalog ordering
    - Volume name from the root folder thread record
    - Eight inline extents per fork with extents-overflow lookups
    - Data and resource fork reads truncated to the logical size
"""

import logging
import struct
from dataclasses import dataclass

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    FilesystemType,
)
from disc_workbench.imaging.sector_reader import SectorReader

from .catalog import (
    CATALOG_FILE_ID,
    EXTENTS_FILE_ID,
    KEY_COMPARE_BINARY,
    ROOT_FOLDER_ID,
    compare_hfsplus_keys,
    compare_hfsx_keys,
    decode_hfsplus_catalog_key,
    decode_hfsplus_catalog_record,
    decode_hfsplus_extent_key,
    decode_hfsplus_extent_record,
    parse_hfsplus_fork,
)
from .extents import ExtentResolver, ForkData
from .hfs_common import CatalogFilesystem, CatalogFormat, read_tree_header

logger = logging.getLogger(__name__)


VOLUME_HEADER_OFFSET = 1024
VOLUME_HEADER_SIZE = 512
SIGNATURE_HFS_PLUS = b'H+'
SIGNATURE_HFSX = b'HX'

HFS_PLUS_FORMAT = CatalogFormat(
    catalog_key=decode_hfsplus_catalog_key,
    catalog_record=decode_hfsplus_catalog_record,
    catalog_compare=compare_hfsplus_keys,
    extent_key=decode_hfsplus_extent_key,
    extent_record=decode_hfsplus_extent_record,
)


@dataclass(frozen=True)
class HfsPlusVolumeHeader:
    """
    Fields of the HFS+ volume header used for browsing.

    Attributes:
        signature: b'H+' or b'HX'
        version: 4 for HFS+, 5 for HFSX
        block_size: Allocation block size
        total_blocks: Allocation blocks in the volume
        extents_file: Extents-overflow file fork
        catalog_file: Catalog file fork
    """
    signature: bytes
    version: int
    block_size: int
    total_blocks: int
    extents_file: ForkData
    catalog_file: ForkData

    @property
    def is_hfsx(self) -> bool:
        return self.signature == SIGNATURE_HFSX

    @classmethod
    def parse(cls, data: bytes) -> "HfsPlusVolumeHeader":
        """
        Parse a 512-byte volume header.

        Raises:
            DiscCorruptError: On a bad signature or block size
        """
        signature = bytes(data[0:2])
        if signature not in (SIGNATURE_HFS_PLUS, SIGNATURE_HFSX):
            raise DiscCorruptError("Invalid HFS+ volume header signature",
                                   expected=SIGNATURE_HFS_PLUS, actual=signature)
        version = struct.unpack_from('>H', data, 2)[0]
        block_size, total_blocks = struct.unpack_from('>LL', data, 40)
        if block_size < 512 or block_size & (block_size - 1):
            raise DiscCorruptError("Invalid HFS+ allocation block size", actual=block_size)
        return cls(signature, version, block_size, total_blocks,
                   parse_hfsplus_fork(data, 192, EXTENTS_FILE_ID),
                   parse_hfsplus_fork(data, 272, CATALOG_FILE_ID))


class HfsPlusFilesystem(CatalogFilesystem):
    """
    HFS+ / HFSX volume.

    Args:
        reader: Sector reader of the whole image
        base_offset: Byte offset of the volume (partition start or the
            embedded volume inside an HFS wrapper)

    Example:
        fs = HfsPlusFilesystem(reader, base_offset=partition.offset)
        for entry in fs.list_directory():
            print(entry.path)
    """

    filesystem_type = FilesystemType.HFS_PLUS

    def __init__(self, reader: SectorReader, base_offset: int = 0):
        super().__init__()
        self._base_offset = base_offset
        self._header = HfsPlusVolumeHeader.parse(
            reader.read_bytes(base_offset + VOLUME_HEADER_OFFSET, VOLUME_HEADER_SIZE))
        header = self._header
        logger.debug("HFS+ volume header: block_size=%d total_blocks=%d catalog=%d bytes",
                     header.block_size, header.total_blocks, header.catalog_file.logical_size)

        resolver = ExtentResolver(reader, header.block_size, base_offset, header.total_blocks)
        plain = ExtentResolver(reader, header.block_size, base_offset, header.total_blocks)

        compare = compare_hfsplus_keys
        if header.is_hfsx:
            tree_header = read_tree_header(resolver, header.catalog_file)
            if tree_header.key_compare_type == KEY_COMPARE_BINARY:
                compare = compare_hfsx_keys
        self._open_trees(resolver, plain, header.catalog_file, header.extents_file,
                         HFS_PLUS_FORMAT, compare)

        self._volume_name = self._thread(ROOT_FOLDER_ID).name
        logger.info("Mounted %s volume '%s'", "HFSX" if header.is_hfsx else "HFS+",
                    self._volume_name)

    @property
    def header(self) -> HfsPlusVolumeHeader:
        """Parsed volume header."""
        return self._header

    @property
    def base_offset(self) -> int:
        """Byte offset of the volume within the image."""
        return self._base_offset
