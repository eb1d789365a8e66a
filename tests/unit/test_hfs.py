"""
Unit tests for the HFS (Mac OS Standard) filesystem.

Tests the Master Directory Block, MacRoman catalog order, three-extent
forks with overflow records, and HFS wrappers around HFS+ volumes.
"""

import pytest

from disc_workbench.filesystems.entry import find_entry
from disc_workbench.filesystems.hfs import HfsFilesystem, MasterDirectoryBlock
from disc_workbench.filesystems.hfsplus import HfsPlusFilesystem
from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
    FilesystemType,
)
from disc_workbench.imaging.sector_reader import MemorySectorReader
from tests.fixtures import (
    CAFE_TEXT,
    FINDER_DATA,
    NOTES_TEXT,
    README_TEXT,
    SECTOR,
    HfsFile,
    build_hfs_volume,
    build_hfs_wrapper,
    build_hfsplus_volume,
    hfs_sample_tree,
    scattered_data,
)


@pytest.fixture
def fs():
    return HfsFilesystem(MemorySectorReader(build_hfs_volume(hfs_sample_tree())))


class TestMasterDirectoryBlock:
    """Test MDB parsing."""

    def test_fields(self, fs):
        """Test geometry and volume name."""
        mdb = fs.mdb

        assert mdb.volume_name == "Classic"
        assert mdb.block_size == 1024
        assert mdb.first_block == 4
        assert mdb.allocation_offset == 2048
        assert not mdb.wraps_hfs_plus
        assert fs.volume_name == "Classic"
        assert fs.filesystem_type == FilesystemType.HFS

    def test_bad_signature(self):
        """Test that a missing signature is corrupt."""
        with pytest.raises(DiscCorruptError):
            MasterDirectoryBlock.parse(bytes(162))

    def test_bad_block_size(self):
        """Test that block sizes not a multiple of 512 are corrupt."""
        data = bytearray(162)
        data[0:2] = b'BD'
        data[20:24] = (1000).to_bytes(4, 'big')

        with pytest.raises(DiscCorruptError):
            MasterDirectoryBlock.parse(bytes(data))


class TestHfsCatalog:
    """Test listing and reads through the HFS catalog."""

    def test_root_in_collation_order(self, fs):
        """Test that the root is listed in MacRoman collation order."""
        names = [e.name for e in fs.list_directory()]

        assert names == ["Café", "Read Me", "Scattered", "System Folder"]

    def test_read_files(self, fs):
        """Test reading data forks, including a MacRoman name."""
        assert fs.read_file(find_entry(fs, "/Read Me")) == README_TEXT
        assert fs.read_file(find_entry(fs, "/Café")) == CAFE_TEXT
        assert fs.read_file(find_entry(fs, "/System Folder/Finder")) == FINDER_DATA

    def test_resource_fork(self, fs):
        """Test reading a resource fork."""
        assert fs.read_resource_fork(find_entry(fs, "/System Folder/Finder")) == b"CODE" * 64

    def test_overflow_extents(self, fs):
        """Test that five extents need one overflow lookup with three inline."""
        entry = find_entry(fs, "/Scattered")

        assert fs.read_file(entry) == scattered_data()
        assert fs.overflow_lookups == 1

    def test_child_paths(self, fs):
        """Test that children carry paths under their folder."""
        folder = find_entry(fs, "/System Folder")

        assert [e.path for e in fs.list_directory(folder.identifier)] == ["/System Folder/Finder"]

    def test_missing_entry(self, fs):
        """Test that unknown names raise NotFound."""
        with pytest.raises(DiscNotFoundError):
            find_entry(fs, "/System Folder/Nope")

    def test_custom_volume(self):
        """Test a volume with a single file."""
        volume = build_hfs_volume([HfsFile("Notes", NOTES_TEXT)], volume_name="Disk")
        fs = HfsFilesystem(MemorySectorReader(volume))

        assert fs.volume_name == "Disk"
        assert fs.read_file(find_entry(fs, "/Notes")) == NOTES_TEXT


class TestHfsWrapper:
    """Test HFS wrappers embedding an HFS+ volume."""

    def test_embedded_offset(self):
        """Test locating and mounting the embedded volume."""
        embedded = build_hfsplus_volume([HfsFile("Inside", b"wrapped data")])
        image = build_hfs_wrapper(embedded)
        reader = MemorySectorReader(image)

        mdb = MasterDirectoryBlock.parse(reader.read_bytes(1024, 162))
        assert mdb.wraps_hfs_plus
        assert mdb.embedded_offset() == 2048 + 4096

        fs = HfsPlusFilesystem(reader, mdb.embedded_offset())
        assert fs.read_file(find_entry(fs, "/Inside")) == b"wrapped data"
        assert len(image) % SECTOR == 0
