"""
Disc filesystem module.

This module provides volume detection and read-only browsing of the
filesystems found on optical disc images.

Supported Filesystems:
    - ISO 9660 and Joliet
    - UDF (type 1 partitions)
    - HFS+ / HFSX, including HFS-wrapped volumes
    - HFS (Mac OS Standard)

Key Features:
    - Apple Partition Map handling
    - Generic B-tree engine for HFS and HFS+ catalogs
    - Extent resolution with extents-overflow lookups
    - Path navigation helpers over list_directory()

Example Usage:
    from disc_workbench.imaging import open_image
    from disc_workbench.filesystems import mount, walk

    with open_image("game.iso") as reader:
        fs = mount(reader)
        for directory, children in walk(fs):
            print(directory.path, len(children))
"""

from .entry import (
    EntryType,
    FileEntry,
    Filesystem,
    find_entry,
    walk,
)

from .apm import (
    PartitionEntry,
    find_hfs_partition,
    parse_partition_map,
)

from .btree import (
    BTree,
    BTreeHeader,
    NodeKind,
)

from .extents import (
    ExtentDescriptor,
    ExtentResolver,
    ForkData,
)

from .detector import (
    DetectedVolume,
    DEFAULT_PRIORITY,
    detect_volume,
)

from .iso9660 import Iso9660Filesystem
from .udf import UdfFilesystem
from .hfsplus import HfsPlusFilesystem
from .hfs import HfsFilesystem

from .mount import (
    mount,
    mount_volume,
)

__all__ = [
    # Entries
    'EntryType',
    'FileEntry',
    'Filesystem',
    'find_entry',
    'walk',
    # Partitions and detection
    'PartitionEntry',
    'find_hfs_partition',
    'parse_partition_map',
    'DetectedVolume',
    'DEFAULT_PRIORITY',
    'detect_volume',
    # Engine
    'BTree',
    'BTreeHeader',
    'NodeKind',
    'ExtentDescriptor',
    'ExtentResolver',
    'ForkData',
    # Filesystems
    'Iso9660Filesystem',
    'UdfFilesystem',
    'HfsPlusFilesystem',
    'HfsFilesystem',
    # Mounting
    'mount',
    'mount_volume',
]
