"""
Unit tests for sector readers and container detection.

Tests range checking, byte-range reads, handle lifetime and format
detection by magic bytes and extension.
"""

import pytest

from disc_workbench.imaging.image_formats import (
    DiscFormat,
    DiscReadError,
    DiscUnsupportedError,
    ErrorKind,
    TrackMode,
    detect_format,
    get_format_for_extension,
    get_supported_extensions,
)
from disc_workbench.imaging.format_registry import get_container_registry, open_image
from disc_workbench.imaging.sector_reader import MemorySectorReader, PlainSectorReader
from tests.fixtures import SECTOR, create_game_iso_bytes, pattern


class TestMemorySectorReader:
    """Test the in-memory reader and the shared SectorReader contract."""

    def test_read_returns_exact_size(self):
        """Test that multi-sector reads return count * sector_size bytes."""
        reader = MemorySectorReader(pattern(8 * SECTOR))

        assert len(reader.read(2, 3)) == 3 * SECTOR
        assert reader.read(0, 0) == b''

    def test_read_past_end(self):
        """Test that reads beyond the last sector raise an IO error."""
        reader = MemorySectorReader(bytes(4 * SECTOR))

        with pytest.raises(DiscReadError) as exc_info:
            reader.read(3, 2)
        assert exc_info.value.kind == ErrorKind.IO

    def test_negative_index(self):
        """Test that negative sector indices are rejected."""
        reader = MemorySectorReader(bytes(4 * SECTOR))

        with pytest.raises(DiscReadError):
            reader.read(-1)

    def test_read_bytes_unaligned(self):
        """Test byte-range reads that straddle sector boundaries."""
        data = pattern(4 * SECTOR)
        reader = MemorySectorReader(data)

        assert reader.read_bytes(SECTOR - 10, 20) == data[SECTOR - 10:SECTOR + 10]
        assert reader.read_bytes(5, 0) == b''

    def test_read_after_close(self):
        """Test that reads on a closed reader fail."""
        reader = MemorySectorReader(bytes(SECTOR))
        reader.close()

        assert reader.closed
        with pytest.raises(DiscReadError):
            reader.read(0)

    def test_trailing_partial_sector_ignored(self):
        """Test that a partial trailing sector is not addressable."""
        reader = MemorySectorReader(bytes(2 * SECTOR + 100))

        assert reader.total_sectors == 2


class TestPlainSectorReader:
    """Test the file-backed reader used for ISO images."""

    def test_open_and_read(self, tmp_path):
        """Test reading sectors from an ISO file."""
        image = create_game_iso_bytes()
        path = tmp_path / "game.iso"
        path.write_bytes(image)

        with PlainSectorReader(str(path)) as reader:
            assert reader.total_sectors == len(image) // SECTOR
            assert reader.read(16)[1:6] == b'CD001'
        assert reader.closed

    def test_missing_file(self, tmp_path):
        """Test that a missing image raises an IO error."""
        with pytest.raises(DiscReadError):
            PlainSectorReader(str(tmp_path / "missing.iso"))


class TestFormatDetection:
    """Test container detection."""

    def test_detect_iso_by_descriptor(self, tmp_path):
        """Test that an ISO is recognized by CD001 regardless of extension."""
        path = tmp_path / "disc.img"
        path.write_bytes(create_game_iso_bytes())

        assert detect_format(str(path)) == DiscFormat.ISO

    def test_detect_chd_by_magic(self, tmp_path):
        """Test that CHD files are recognized by their magic."""
        path = tmp_path / "disc.bin"
        path.write_bytes(b'MComprHD' + bytes(200))

        assert detect_format(str(path)) == DiscFormat.CHD

    def test_detect_cue_by_extension(self, tmp_path):
        """Test that CUE sheets are recognized by extension."""
        path = tmp_path / "disc.cue"
        path.write_text('FILE "disc.bin" BINARY\n')

        assert detect_format(str(path)) == DiscFormat.BIN_CUE

    def test_detect_unknown(self, tmp_path):
        """Test that unrecognized files are reported as UNKNOWN."""
        path = tmp_path / "notes.txt"
        path.write_bytes(b"hello")

        assert detect_format(str(path)) == DiscFormat.UNKNOWN

    def test_detect_missing_file(self, tmp_path):
        """Test that detecting a missing file raises an IO error."""
        with pytest.raises(DiscReadError):
            detect_format(str(tmp_path / "nope.iso"))

    def test_extension_helpers(self):
        """Test extension lookups."""
        assert get_format_for_extension("chd") == DiscFormat.CHD
        assert get_format_for_extension(".TOAST") == DiscFormat.ISO
        assert ".mds" not in get_supported_extensions()

    def test_track_mode_labels(self):
        """Test CUE mode label lookup."""
        assert TrackMode.from_label("mode2/2352") == TrackMode.MODE2_2352
        assert TrackMode.MODE1_2352.data_offset == 16
        assert not TrackMode.AUDIO.is_data
        with pytest.raises(KeyError):
            TrackMode.from_label("MODE3/2352")


class TestContainerRegistry:
    """Test the container registry."""

    def test_singleton(self):
        """Test that the registry is a singleton."""
        assert get_container_registry() is get_container_registry()

    def test_mds_unsupported(self, tmp_path):
        """Test that MDS images are recognized but not opened."""
        path = tmp_path / "disc.mds"
        path.write_bytes(b"MEDIA DESCRIPTOR" + bytes(64))

        with pytest.raises(DiscUnsupportedError):
            open_image(str(path))

    def test_open_iso(self, tmp_path):
        """Test opening an ISO through the registry."""
        path = tmp_path / "game.iso"
        path.write_bytes(create_game_iso_bytes())

        with open_image(str(path)) as reader:
            assert reader.format == DiscFormat.ISO
