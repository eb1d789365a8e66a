"""
Catalog and extents-overflow record formats for HFS and HFS+.

Provides the key decoders, key comparators and record decoders that
parameterize the generic B-tree engine for each filesystem variant.

Key Formats:
    - HFS+ catalog: parentID u32, name length u16, UTF-16BE name
    - HFS catalog: reserved u8, parID u32, Pascal MacRoman name
    - HFS+ extents: forkType u8, pad u8, fileID u32, startBlock u32
    - HFS extents: forkType u8, fileID u32, startBlock u16

Ordering:
    - HFS+: parent ID, then case-folded UTF-16 code units
    - HFSX: parent ID, then binary UTF-16 code units
    - HFS: parent ID, then MacRoman collation weights (case-insensitive)
    - Extents: file ID, fork type, start block
"""

import logging
import struct
import unicodedata
from dataclasses import dataclass
from typing import List, Tuple, Union

from disc_workbench.imaging.image_formats import DiscCorruptError

from .extents import ExtentDescriptor, ForkData, FORK_DATA, FORK_RESOURCE

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

# Catalog record types (same values for HFS and HFS+)
RECORD_FOLDER = 1
RECORD_FILE = 2
RECORD_FOLDER_THREAD = 3
RECORD_FILE_THREAD = 4

# Well-known CNIDs
ROOT_PARENT_ID = 1
ROOT_FOLDER_ID = 2
EXTENTS_FILE_ID = 3
CATALOG_FILE_ID = 4

HFS_PLUS_INLINE_EXTENTS = 8
HFS_INLINE_EXTENTS = 3

# Key comparison types from the HFSX catalog header
KEY_COMPARE_CASE_FOLDING = 0xCF
KEY_COMPARE_BINARY = 0xBC

# Code points Apple's case folding table ignores
_IGNORABLE_UNITS = frozenset(
    list(range(0x200C, 0x2010)) + list(range(0x202A, 0x202F))
    + list(range(0x206A, 0x2070)) + [0xFEFF])

# Classic Mac OS catalog collation weights, indexed by MacRoman byte
MACROMAN_COLLATION = bytes([
    0x00, 0x01, 0x02, 0x03, 0x04, 0x05, 0x06, 0x07,
    0x08, 0x09, 0x0a, 0x0b, 0x0c, 0x0d, 0x0e, 0x0f,
    0x10, 0x11, 0x12, 0x13, 0x14, 0x15, 0x16, 0x17,
    0x18, 0x19, 0x1a, 0x1b, 0x1c, 0x1d, 0x1e, 0x1f,

    0x20, 0x22, 0x23, 0x28, 0x29, 0x2a, 0x2b, 0x2c,
    0x2f, 0x30, 0x31, 0x32, 0x33, 0x34, 0x35, 0x36,
    0x37, 0x38, 0x39, 0x3a, 0x3b, 0x3c, 0x3d, 0x3e,
    0x3f, 0x40, 0x41, 0x42, 0x43, 0x44, 0x45, 0x46,

    0x47, 0x48, 0x58, 0x5a, 0x5e, 0x60, 0x67, 0x69,
    0x6b, 0x6d, 0x73, 0x75, 0x77, 0x79, 0x7b, 0x7f,
    0x8d, 0x8f, 0x91, 0x93, 0x96, 0x98, 0x9f, 0xa1,
    0xa3, 0xa5, 0xa8, 0xaa, 0xab, 0xac, 0xad, 0xae,

    0x54, 0x48, 0x58, 0x5a, 0x5e, 0x60, 0x67, 0x69,
    0x6b, 0x6d, 0x73, 0x75, 0x77, 0x79, 0x7b, 0x7f,
    0x8d, 0x8f, 0x91, 0x93, 0x96, 0x98, 0x9f, 0xa1,
    0xa3, 0xa5, 0xa8, 0xaf, 0xb0, 0xb1, 0xb2, 0xb3,

    0x4c, 0x50, 0x5c, 0x62, 0x7d, 0x81, 0x9a, 0x55,
    0x4a, 0x56, 0x4c, 0x4e, 0x50, 0x5c, 0x62, 0x64,
    0x65, 0x66, 0x6f, 0x70, 0x71, 0x72, 0x7d, 0x89,
    0x8a, 0x8b, 0x81, 0x83, 0x9c, 0x9d, 0x9e, 0x9a,

    0xb4, 0xb5, 0xb6, 0xb7, 0xb8, 0xb9, 0xba, 0x95,
    0xbb, 0xbc, 0xbd, 0xbe, 0xbf, 0xc0, 0x52, 0x85,
    0xc1, 0xc2, 0xc3, 0xc4, 0xc5, 0xc6, 0xc7, 0xc8,
    0xc9, 0xca, 0xcb, 0x57, 0x8c, 0xcc, 0x52, 0x85,

    0xcd, 0xce, 0xcf, 0xd0, 0xd1, 0xd2, 0xd3, 0x26,
    0x27, 0xd4, 0x20, 0x4a, 0x4e, 0x83, 0x87, 0x87,
    0xd5, 0xd6, 0x24, 0x25, 0x2d, 0x2e, 0xd7, 0xd8,
    0xa7, 0xd9, 0xda, 0xdb, 0xdc, 0xdd, 0xde, 0xdf,

    0xe0, 0xe1, 0xe2, 0xe3, 0xe4, 0xe5, 0xe6, 0xe7,
    0xe8, 0xe9, 0xea, 0xeb, 0xec, 0xed, 0xee, 0xef,
    0xf0, 0xf1, 0xf2, 0xf3, 0xf4, 0xf5, 0xf6, 0xf7,
    0xf8, 0xf9, 0xfa, 0xfb, 0xfc, 0xfd, 0xfe, 0xff,
])


# =============================================================================
# Keys and Records
# =============================================================================

@dataclass(frozen=True)
class CatalogKey:
    """
    Catalog B-tree key.

    Attributes:
        parent_id: CNID of the parent folder
        name: Decoded, NFC-normalized name
        units: Raw name units (UTF-16 code units or MacRoman bytes)
    """
    parent_id: int
    name: str = ""
    units: Tuple[int, ...] = ()


@dataclass(frozen=True)
class ExtentKey:
    """Extents-overflow B-tree key."""
    file_id: int
    fork_type: int
    start_block: int


@dataclass(frozen=True)
class FolderRecord:
    """Catalog folder record."""
    cnid: int
    valence: int


@dataclass(frozen=True)
class FileRecord:
    """Catalog file record with both forks."""
    cnid: int
    data_fork: ForkData
    resource_fork: ForkData


@dataclass(frozen=True)
class ThreadRecord:
    """Catalog thread record linking a CNID to its parent and name."""
    parent_id: int
    name: str
    is_folder: bool


CatalogRecord = Union[FolderRecord, FileRecord, ThreadRecord]


def catalog_key_for(parent_id: int, name: str = "", macroman: bool = False) -> CatalogKey:
    """Build a search key from a parent CNID and a name."""
    if macroman:
        units = tuple(name.encode('mac_roman', errors='replace'))
    else:
        encoded = unicodedata.normalize('NFD', name).encode('utf-16-be')
        units = struct.unpack(f'>{len(encoded) // 2}H', encoded)
    return CatalogKey(parent_id, name, units)


# =============================================================================
# Comparators
# =============================================================================

def _cmp(a, b) -> int:
    return (a > b) - (a < b)


def _fold_units(units: Tuple[int, ...]) -> Tuple[int, ...]:
    folded = []
    for unit in units:
        if unit in _IGNORABLE_UNITS:
            continue
        if unit == 0:
            folded.append(0xFFFF)
            continue
        lower = chr(unit).lower()
        folded.append(ord(lower) if len(lower) == 1 else unit)
    return tuple(folded)


def compare_hfsplus_keys(a: CatalogKey, b: CatalogKey) -> int:
    """Case-folding HFS+ catalog order."""
    if a.parent_id != b.parent_id:
        return _cmp(a.parent_id, b.parent_id)
    return _cmp(_fold_units(a.units), _fold_units(b.units))


def compare_hfsx_keys(a: CatalogKey, b: CatalogKey) -> int:
    """Binary HFSX catalog order."""
    return _cmp((a.parent_id, a.units), (b.parent_id, b.units))


def compare_hfs_keys(a: CatalogKey, b: CatalogKey) -> int:
    """Classic HFS catalog order over MacRoman collation weights."""
    if a.parent_id != b.parent_id:
        return _cmp(a.parent_id, b.parent_id)
    return _cmp(bytes(MACROMAN_COLLATION[u] for u in a.units),
                bytes(MACROMAN_COLLATION[u] for u in b.units))


def compare_extent_keys(a: ExtentKey, b: ExtentKey) -> int:
    """Extents-overflow order."""
    return _cmp((a.file_id, a.fork_type, a.start_block),
                (b.file_id, b.fork_type, b.start_block))


# =============================================================================
# HFS+ Decoders
# =============================================================================

def decode_hfsplus_catalog_key(raw: bytes) -> CatalogKey:
    """Decode an HFS+ catalog key (bytes after keyLength)."""
    if len(raw) < 6:
        raise DiscCorruptError("HFS+ catalog key too short", actual=len(raw))
    parent_id, length = struct.unpack_from('>LH', raw, 0)
    if 6 + 2 * length > len(raw):
        raise DiscCorruptError("HFS+ catalog name overruns key",
                               expected=len(raw), actual=6 + 2 * length)
    units = struct.unpack_from(f'>{length}H', raw, 6)
    return CatalogKey(parent_id, decode_utf16_name(raw[6:6 + 2 * length]), units)


def decode_utf16_name(raw: bytes) -> str:
    """Decode a UTF-16BE name to NFC text, replacing invalid units."""
    name = raw.decode('utf-16-be', errors='replace')
    if '\ufffd' in name:
        logger.warning("Name contains invalid UTF-16, decoded as %r", name)
    return unicodedata.normalize('NFC', name)


def parse_hfsplus_fork(data: bytes, offset: int, file_id: int,
                       fork_type: int = FORK_DATA) -> ForkData:
    """Parse an 80-byte HFSPlusForkData structure."""
    if offset + 80 > len(data):
        raise DiscCorruptError("HFS+ fork data truncated")
    logical_size = struct.unpack_from('>Q', data, offset)[0]
    pairs = struct.unpack_from('>16L', data, offset + 16)
    extents = tuple(ExtentDescriptor(pairs[i], pairs[i + 1])
                    for i in range(0, 2 * HFS_PLUS_INLINE_EXTENTS, 2))
    return ForkData(logical_size, extents, file_id, fork_type)


def decode_hfsplus_catalog_record(key: CatalogKey, data: bytes) -> CatalogRecord:
    """Decode an HFS+ catalog leaf payload."""
    if len(data) < 2:
        raise DiscCorruptError("HFS+ catalog record truncated")
    record_type = struct.unpack_from('>h', data, 0)[0]

    if record_type == RECORD_FOLDER:
        if len(data) < 88:
            raise DiscCorruptError("HFS+ folder record truncated", actual=len(data))
        valence, cnid = struct.unpack_from('>LL', data, 4)
        return FolderRecord(cnid, valence)

    if record_type == RECORD_FILE:
        if len(data) < 248:
            raise DiscCorruptError("HFS+ file record truncated", actual=len(data))
        cnid = struct.unpack_from('>L', data, 8)[0]
        return FileRecord(cnid,
                          parse_hfsplus_fork(data, 88, cnid, FORK_DATA),
                          parse_hfsplus_fork(data, 168, cnid, FORK_RESOURCE))

    if record_type in (RECORD_FOLDER_THREAD, RECORD_FILE_THREAD):
        if len(data) < 10:
            raise DiscCorruptError("HFS+ thread record truncated", actual=len(data))
        parent_id, length = struct.unpack_from('>LH', data, 4)
        return ThreadRecord(parent_id, decode_utf16_name(data[10:10 + 2 * length]),
                            record_type == RECORD_FOLDER_THREAD)

    raise DiscCorruptError("Unknown HFS+ catalog record type", actual=record_type)


def decode_hfsplus_extent_key(raw: bytes) -> ExtentKey:
    """Decode an HFS+ extents-overflow key (bytes after keyLength)."""
    if len(raw) < 10:
        raise DiscCorruptError("HFS+ extent key too short", actual=len(raw))
    fork_type, _, file_id, start_block = struct.unpack_from('>BBLL', raw, 0)
    return ExtentKey(file_id, fork_type, start_block)


def decode_hfsplus_extent_record(key: ExtentKey, data: bytes) -> List[ExtentDescriptor]:
    """Decode an HFS+ extent record (eight start/count pairs)."""
    if len(data) < 64:
        raise DiscCorruptError("HFS+ extent record truncated", actual=len(data))
    pairs = struct.unpack_from('>16L', data, 0)
    return [ExtentDescriptor(pairs[i], pairs[i + 1]) for i in range(0, 16, 2)]


# =============================================================================
# HFS Decoders
# =============================================================================

def decode_macroman(raw: bytes) -> str:
    """Decode a MacRoman name."""
    return raw.decode('mac_roman', errors='replace')


def decode_hfs_catalog_key(raw: bytes) -> CatalogKey:
    """Decode an HFS catalog key (bytes after keyLen)."""
    if len(raw) < 6:
        # Deleted index keys may be shorter
        raise DiscCorruptError("HFS catalog key too short", actual=len(raw))
    parent_id = struct.unpack_from('>L', raw, 1)[0]
    length = raw[5]
    name = raw[6:6 + length]
    if len(name) != length:
        raise DiscCorruptError("HFS catalog name overruns key",
                               expected=length, actual=len(name))
    return CatalogKey(parent_id, decode_macroman(name), tuple(name))


def parse_hfs_extents(data: bytes, offset: int) -> Tuple[ExtentDescriptor, ...]:
    """Parse a 12-byte HFS extent record."""
    values = struct.unpack_from('>6H', data, offset)
    return tuple(ExtentDescriptor(values[i], values[i + 1]) for i in range(0, 6, 2))


def decode_hfs_catalog_record(key: CatalogKey, data: bytes) -> CatalogRecord:
    """Decode an HFS catalog leaf payload."""
    if len(data) < 2:
        raise DiscCorruptError("HFS catalog record truncated")
    record_type = data[0]

    if record_type == RECORD_FOLDER:
        if len(data) < 70:
            raise DiscCorruptError("HFS folder record truncated", actual=len(data))
        valence, cnid = struct.unpack_from('>HL', data, 4)
        return FolderRecord(cnid, valence)

    if record_type == RECORD_FILE:
        if len(data) < 102:
            raise DiscCorruptError("HFS file record truncated", actual=len(data))
        cnid = struct.unpack_from('>L', data, 20)[0]
        data_size = struct.unpack_from('>L', data, 26)[0]
        resource_size = struct.unpack_from('>L', data, 36)[0]
        return FileRecord(
            cnid,
            ForkData(data_size, parse_hfs_extents(data, 74), cnid, FORK_DATA),
            ForkData(resource_size, parse_hfs_extents(data, 86), cnid, FORK_RESOURCE))

    if record_type in (RECORD_FOLDER_THREAD, RECORD_FILE_THREAD):
        if len(data) < 15:
            raise DiscCorruptError("HFS thread record truncated", actual=len(data))
        parent_id = struct.unpack_from('>L', data, 10)[0]
        length = data[14]
        return ThreadRecord(parent_id, decode_macroman(data[15:15 + length]),
                            record_type == RECORD_FOLDER_THREAD)

    raise DiscCorruptError("Unknown HFS catalog record type", actual=record_type)


def decode_hfs_extent_key(raw: bytes) -> ExtentKey:
    """Decode an HFS extents-overflow key (bytes after keyLen)."""
    if len(raw) < 7:
        raise DiscCorruptError("HFS extent key too short", actual=len(raw))
    fork_type, file_id, start_block = struct.unpack_from('>BLH', raw, 0)
    return ExtentKey(file_id, fork_type, start_block)


def decode_hfs_extent_record(key: ExtentKey, data: bytes) -> List[ExtentDescriptor]:
    """Decode an HFS extent record (three start/count pairs)."""
    if len(data) < 12:
        raise DiscCorruptError("HFS extent record truncated", actual=len(data))
    return list(parse_hfs_extents(data, 0))
