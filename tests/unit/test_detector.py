"""
Unit tests for partition maps, volume detection and mounting.

Tests each probe against the synthetic images, the priority order,
Apple Partition Map handling and the errors raised when nothing matches.
"""

import pytest

from disc_workbench.filesystems.apm import (
    find_hfs_partition,
    has_partition_map,
    parse_entry,
    parse_partition_map,
)
from disc_workbench.filesystems.detector import (
    DEFAULT_PRIORITY,
    DetectedVolume,
    detect_volume,
    locate_hfs_volume,
)
from disc_workbench.filesystems.hfs import HfsFilesystem
from disc_workbench.filesystems.hfsplus import HfsPlusFilesystem
from disc_workbench.filesystems.iso9660 import Iso9660Filesystem
from disc_workbench.filesystems.mount import mount, mount_volume
from disc_workbench.filesystems.udf import UdfFilesystem
from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscUnsupportedError,
    FilesystemType,
)
from disc_workbench.imaging.sector_reader import MemorySectorReader
from tests.fixtures import (
    SECTOR,
    build_apm_image,
    build_hfs_volume,
    build_hfs_wrapper,
    build_hfsplus_volume,
    create_game_iso_bytes,
    create_udf_image,
    hfs_sample_tree,
    hfsplus_sample_tree,
)


@pytest.fixture(scope="module")
def hfsplus_volume():
    return build_hfsplus_volume(hfsplus_sample_tree())


class TestApplePartitionMap:
    """Test partition map parsing."""

    def test_entries(self, hfsplus_volume):
        """Test that every entry of the map is returned in order."""
        reader = MemorySectorReader(build_apm_image(hfsplus_volume))
        entries = parse_partition_map(reader)

        assert has_partition_map(reader)
        assert [e.partition_type for e in entries] == [
            "Apple_partition_map", "Apple_Driver43", "Apple_HFS"]
        assert entries[0].map_entries == 3

    def test_find_hfs_partition(self, hfsplus_volume):
        """Test locating the HFS partition and its byte offset."""
        reader = MemorySectorReader(build_apm_image(hfsplus_volume, partition_start=64))
        partition = find_hfs_partition(reader)

        assert partition.name == "MacOS"
        assert partition.start_block == 64
        assert partition.offset == 64 * 512
        assert partition.is_hfs

    def test_no_partition_map(self):
        """Test images without a driver descriptor map."""
        reader = MemorySectorReader(create_game_iso_bytes())

        assert not has_partition_map(reader)
        assert parse_partition_map(reader) == []

    def test_ddm_without_entries(self):
        """Test that a DDM followed by no partition entries is corrupt."""
        image = bytearray(4 * SECTOR)
        image[0:2] = b'ER'

        with pytest.raises(DiscCorruptError):
            parse_partition_map(MemorySectorReader(bytes(image)))

    def test_parse_entry_signature(self):
        """Test that blocks without a PM signature are not entries."""
        assert parse_entry(bytes(512), 1) is None


class TestDetection:
    """Test probes and priority."""

    def test_iso9660(self):
        """Test that a Primary-only ISO falls through Joliet to ISO 9660."""
        volume = detect_volume(MemorySectorReader(create_game_iso_bytes()))

        assert volume.filesystem_type == FilesystemType.ISO9660
        assert volume.volume_name == "MYGAME"
        assert volume.descriptor_sector == 16

    def test_joliet_preferred(self):
        """Test that Joliet wins over ISO 9660 by default."""
        volume = detect_volume(MemorySectorReader(create_game_iso_bytes(joliet=True)))

        assert volume.filesystem_type == FilesystemType.JOLIET
        assert volume.descriptor_sector == 17

    def test_custom_priority(self):
        """Test that a priority list without Joliet selects the Primary descriptor."""
        reader = MemorySectorReader(create_game_iso_bytes(joliet=True))
        volume = detect_volume(reader, priority=[FilesystemType.ISO9660])

        assert volume.filesystem_type == FilesystemType.ISO9660

    def test_udf(self):
        """Test detecting a UDF volume."""
        volume = detect_volume(MemorySectorReader(create_udf_image()))

        assert volume == DetectedVolume(FilesystemType.UDF, "UDFDISC")

    def test_bare_hfsplus(self, hfsplus_volume):
        """Test an HFS+ volume at the start of the image."""
        volume = detect_volume(MemorySectorReader(hfsplus_volume))

        assert volume.filesystem_type == FilesystemType.HFS_PLUS
        assert volume.base_offset == 0

    def test_bare_hfs(self):
        """Test an HFS volume found after the HFS+ probe declines."""
        volume = detect_volume(MemorySectorReader(build_hfs_volume(hfs_sample_tree())))

        assert volume.filesystem_type == FilesystemType.HFS
        assert volume.volume_name == "Classic"

    def test_partitioned_hfsplus(self, hfsplus_volume):
        """Test an HFS+ volume inside an Apple Partition Map."""
        reader = MemorySectorReader(build_apm_image(hfsplus_volume))

        assert locate_hfs_volume(reader) == 64 * 512
        volume = detect_volume(reader)
        assert volume.filesystem_type == FilesystemType.HFS_PLUS
        assert volume.base_offset == 64 * 512

    def test_partitioned_hfs(self):
        """Test an HFS volume inside an Apple Partition Map."""
        reader = MemorySectorReader(build_apm_image(build_hfs_volume(hfs_sample_tree()),
                                                    partition_start=96))
        volume = detect_volume(reader)

        assert volume.filesystem_type == FilesystemType.HFS
        assert volume.base_offset == 96 * 512

    def test_hfs_wrapper(self):
        """Test that an HFS wrapper resolves to its embedded HFS+ volume."""
        image = build_hfs_wrapper(build_hfsplus_volume(hfsplus_sample_tree()))
        volume = detect_volume(MemorySectorReader(image))

        assert volume.filesystem_type == FilesystemType.HFS_PLUS
        assert volume.base_offset == 2048 + 4096

    def test_partition_without_signature(self):
        """Test that an HFS partition holding no volume is corrupt."""
        reader = MemorySectorReader(build_apm_image(bytes(8 * SECTOR)))

        with pytest.raises(DiscCorruptError):
            detect_volume(reader)

    def test_no_hfs_partition(self):
        """Test that a map without an HFS partition matches nothing."""
        reader = MemorySectorReader(build_apm_image(bytes(8 * SECTOR), partition_type="Apple_Free"))

        with pytest.raises(DiscUnsupportedError):
            detect_volume(reader)

    def test_unrecognized(self):
        """Test that a blank image is unsupported."""
        with pytest.raises(DiscUnsupportedError):
            detect_volume(MemorySectorReader(bytes(300 * SECTOR)))

    def test_priority_excludes_match(self, hfsplus_volume):
        """Test that probes outside the priority list are not run."""
        with pytest.raises(DiscUnsupportedError):
            detect_volume(MemorySectorReader(hfsplus_volume), priority=[FilesystemType.HFS])

    def test_default_priority(self):
        """Test the default probe order."""
        assert DEFAULT_PRIORITY[:2] == (FilesystemType.JOLIET, FilesystemType.ISO9660)
        assert DEFAULT_PRIORITY.index(FilesystemType.HFS_PLUS) < DEFAULT_PRIORITY.index(
            FilesystemType.HFS)


class TestMount:
    """Test mounting detected volumes."""

    def test_mount_types(self, hfsplus_volume):
        """Test that each image mounts the matching implementation."""
        cases = [
            (create_game_iso_bytes(), Iso9660Filesystem),
            (create_udf_image(), UdfFilesystem),
            (hfsplus_volume, HfsPlusFilesystem),
            (build_hfs_volume(hfs_sample_tree()), HfsFilesystem),
        ]
        for image, expected in cases:
            assert isinstance(mount(MemorySectorReader(image)), expected)

    def test_mount_joliet(self):
        """Test that a Joliet volume lists UTF-16 names."""
        fs = mount(MemorySectorReader(create_game_iso_bytes(joliet=True)))

        assert fs.filesystem_type == FilesystemType.JOLIET
        assert "SYSTEM.CNF" in [e.name for e in fs.list_directory()]

    def test_mount_unknown_type(self):
        """Test that an unknown filesystem type cannot be mounted."""
        reader = MemorySectorReader(create_game_iso_bytes())

        with pytest.raises(DiscUnsupportedError):
            mount_volume(reader, DetectedVolume(FilesystemType.UNKNOWN))
