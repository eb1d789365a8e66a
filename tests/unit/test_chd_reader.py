"""
Unit tests for the CHD reader and its bit-level decoders.

Tests header validation, Huffman-coded hunk maps, codec decoding with
CRC checks, CD track metadata and LBA addressing.
"""

import struct

import pytest

from disc_workbench.imaging.chd_reader import (
    ChdHeader,
    ChdReader,
    crc16,
    inflate,
    parse_track_metadata,
)
from disc_workbench.imaging.huffman import BitReader, HuffmanDecoder
from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscFormat,
    DiscReadError,
    DiscUnsupportedError,
    TrackMode,
)
from tests.fixtures import (
    CHD_AUDIO_FRAMES,
    CHD_AUDIO_PREGAP,
    SECTOR,
    BitWriter,
    create_game_iso_bytes,
    write_cd_chd,
    write_compressed_chd,
    write_two_symbol_tree,
)


class TestBitReader:
    """Test MSB-first bit reads."""

    def test_read_fields(self):
        """Test reading fields that straddle byte boundaries."""
        bits = BitReader(bytes([0b10110011, 0b01010101]))

        assert bits.read(3) == 0b101
        assert bits.read(7) == 0b1001101
        assert bits.read(6) == 0b010101
        assert not bits.overflowed

    def test_overflow(self):
        """Test that reads past the end return zeros and set overflowed."""
        bits = BitReader(b'\xff')

        assert bits.read(8) == 0xFF
        assert bits.read(4) == 0
        assert bits.overflowed


class TestHuffmanDecoder:
    """Test RLE tree import and symbol decoding."""

    def test_two_symbol_tree(self):
        """Test a tree with two one-bit codes."""
        writer = BitWriter()
        write_two_symbol_tree(writer)
        writer.write(0b0110, 4)
        bits = BitReader(writer.getvalue())

        decoder = HuffmanDecoder(16, 8)
        decoder.import_tree_rle(bits)

        assert [decoder.decode(bits) for _ in range(4)] == [0, 4, 4, 0]

    def test_mixed_length_tree(self):
        """Test canonical code assignment with one 1-bit and two 2-bit codes."""
        writer = BitWriter()
        writer.write(1, 4)
        writer.write(1, 4)
        writer.write(2, 4)
        writer.write(2, 4)
        writer.write(1, 4)
        writer.write(0, 4)
        writer.write(13 - 3, 4)
        writer.write(0b1_00_01, 5)
        bits = BitReader(writer.getvalue())

        decoder = HuffmanDecoder(16, 8)
        decoder.import_tree_rle(bits)

        assert [decoder.decode(bits) for _ in range(3)] == [0, 1, 2]

    def test_run_overflows_alphabet(self):
        """Test that a zero run past the alphabet is corrupt."""
        writer = BitWriter()
        writer.write(1, 4)
        writer.write(0, 4)
        writer.write(15, 4)
        bits = BitReader(writer.getvalue())

        with pytest.raises(DiscCorruptError):
            HuffmanDecoder(16, 8).import_tree_rle(bits)

    def test_inconsistent_lengths(self):
        """Test that code lengths that cannot form a tree are corrupt."""
        writer = BitWriter()
        for length in [2, 2, 2] + [0] * 13:
            writer.write(length, 4)
        bits = BitReader(writer.getvalue())

        with pytest.raises(DiscCorruptError):
            HuffmanDecoder(16, 8).import_tree_rle(bits)


class TestChdHeader:
    """Test header parsing."""

    def _header(self, version=5, length=124, hunk_bytes=4096, unit_bytes=2048, parent=bytes(20)):
        return struct.pack('>8sLL4L3QLL20s20s20s', b'MComprHD', length, version,
                           0, 0, 0, 0, 8192, 124, 0, hunk_bytes, unit_bytes,
                           bytes(20), bytes(20), parent)

    def test_parse(self):
        """Test parsing a valid v5 header."""
        header = ChdHeader.parse(self._header())

        assert header.hunk_count == 2
        assert not header.is_compressed
        assert not header.has_parent

    def test_parent_sha1(self):
        """Test that a nonzero parent SHA-1 marks a delta CHD."""
        assert ChdHeader.parse(self._header(parent=b'\x01' * 20)).has_parent

    def test_old_version_unsupported(self):
        """Test that headers before version 5 are unsupported."""
        with pytest.raises(DiscUnsupportedError):
            ChdHeader.parse(self._header(version=4))

    def test_bad_magic(self):
        """Test that a missing signature is corrupt."""
        with pytest.raises(DiscCorruptError):
            ChdHeader.parse(b'NotACHD!' + bytes(116))

    def test_unaligned_hunks(self):
        """Test that hunks must hold whole units."""
        with pytest.raises(DiscCorruptError):
            ChdHeader.parse(self._header(hunk_bytes=5000))

    def test_truncated(self):
        """Test that a short header is an IO error."""
        with pytest.raises(DiscReadError):
            ChdHeader.parse(self._header()[:60])


class TestTrackMetadata:
    """Test CHT2 metadata parsing."""

    def test_mode1_raw(self):
        """Test a data track without pregap."""
        track = parse_track_metadata(
            "TRACK:1 TYPE:MODE1_RAW SUBTYPE:NONE FRAMES:1000 PREGAP:0 PGTYPE:MODE1 PGSUB:RW")

        assert track.mode == TrackMode.MODE1_2352
        assert track.frames == 1000
        assert track.sector_count == 1000

    def test_stored_pregap(self):
        """Test that a V pregap type means the pregap frames are stored."""
        track = parse_track_metadata(
            "TRACK:2 TYPE:AUDIO SUBTYPE:NONE FRAMES:225 PREGAP:150 PGTYPE:VAUDIO PGSUB:RW")

        assert track.stored_pregap == 150
        assert track.sector_count == 75
        assert not track.is_data

    def test_malformed(self):
        """Test that metadata without FRAMES is corrupt."""
        with pytest.raises(DiscCorruptError):
            parse_track_metadata("TRACK:1 TYPE:MODE1")


class TestCompressedChd:
    """Test CHDs with a Huffman-coded hunk map."""

    @pytest.mark.parametrize("codec", [b'zlib', b'lzma'])
    def test_read_sectors(self, tmp_path, codec):
        """Test that every logical sector matches the source image."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image, codec=codec)

        with ChdReader(str(path)) as reader:
            assert reader.format == DiscFormat.CHD
            assert reader.total_sectors == len(image) // SECTOR
            assert not reader.tracks
            assert reader.read(0, reader.total_sectors) == image

    def test_map_entries(self, tmp_path):
        """Test decoded map entries point at consecutive hunks."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image)

        with ChdReader(str(path)) as reader:
            entries = reader.map_entries
            assert len(entries) == reader.header.hunk_count
            for previous, entry in zip(entries, entries[1:]):
                assert entry.offset == previous.offset + previous.length
            assert all(entry.compression == 0 for entry in entries)

    def test_map_crc_mismatch(self, tmp_path):
        """Test that a bad map CRC is corrupt unless verification is off."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image, corrupt_map_crc=True)

        with pytest.raises(DiscCorruptError):
            ChdReader(str(path))
        with ChdReader(str(path), verify_map_crc=False) as reader:
            assert reader.read(16)[1:6] == b'CD001'

    def test_hunk_crc_mismatch(self, tmp_path):
        """Test that a hunk whose data fails its CRC is corrupt."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image, corrupt_hunk=1)

        with ChdReader(str(path)) as reader:
            reader.read(0)
            with pytest.raises(DiscCorruptError):
                reader.read(2)

    def test_unsupported_codec(self, tmp_path):
        """Test that hunks compressed with FLAC are unsupported when read."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "audio.chd", image, codec=b'flac')

        with ChdReader(str(path)) as reader:
            assert reader.header.compressors[0] == b'flac'
            with pytest.raises(DiscUnsupportedError):
                reader.read(0)

    def test_unused_codec_slots(self, tmp_path):
        """Test that listing CD codecs in unused header slots does not block reads."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image,
                                    extra_codecs=(b'cdzl', b'cdfl'))

        with ChdReader(str(path)) as reader:
            assert reader.header.compressors == [b'zlib', b'cdzl', b'cdfl', b'']
            assert all(entry.compression == 0 for entry in reader.map_entries)
            assert reader.read(0, reader.total_sectors) == image

    def test_read_beyond_logical_size(self, tmp_path):
        """Test that logical reads past the data are IO errors."""
        image = create_game_iso_bytes()
        path = write_compressed_chd(tmp_path / "game.chd", image)

        with ChdReader(str(path)) as reader:
            with pytest.raises(DiscReadError):
                reader.read_logical(len(image) - 10, 20)


class TestCdChd:
    """Test CHDs carrying CD track metadata."""

    def test_tracks(self, tmp_path):
        """Test track LBAs, frame offsets and padding."""
        image = create_game_iso_bytes()
        data_frames = len(image) // SECTOR
        path = write_cd_chd(tmp_path / "game.chd", image)

        with ChdReader(str(path)) as reader:
            data, audio = reader.tracks
            assert data.start_lba == 0
            assert data.frame_offset == 0
            assert audio.start_lba == data_frames + CHD_AUDIO_PREGAP
            assert audio.frame_offset == -(-data_frames // 4) * 4 + CHD_AUDIO_PREGAP
            assert reader.total_sectors == data_frames + CHD_AUDIO_PREGAP + CHD_AUDIO_FRAMES

    def test_read_data_sectors(self, tmp_path):
        """Test that MODE1_RAW frames yield the original sectors."""
        image = create_game_iso_bytes()
        path = write_cd_chd(tmp_path / "game.chd", image)

        with ChdReader(str(path)) as reader:
            count = len(image) // SECTOR
            assert reader.read(0, count) == image

    def test_audio_sector_unsupported(self, tmp_path):
        """Test that audio sectors cannot be read as data."""
        image = create_game_iso_bytes()
        path = write_cd_chd(tmp_path / "game.chd", image)

        with ChdReader(str(path)) as reader:
            with pytest.raises(DiscUnsupportedError):
                reader.read(reader.tracks[1].start_lba)


class TestCodecs:
    """Test codec helpers."""

    def test_inflate_short(self):
        """Test that a deflate stream shorter than the hunk is corrupt."""
        import zlib
        compressor = zlib.compressobj(9, zlib.DEFLATED, -zlib.MAX_WBITS)
        data = compressor.compress(b'abc') + compressor.flush()

        with pytest.raises(DiscCorruptError):
            inflate(data, 4096)

    def test_crc16(self):
        """Test the CHD CRC-16 variant."""
        assert crc16(b"123456789") == 0x29B1
