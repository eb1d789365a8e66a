"""
CHD (Compressed Hunks of Data) version 5 reader.

This module decodes the CHD v5 header, metadata chain and hunk map, and
serves 2048-byte logical sectors by decompressing the hunk that covers
them. The most recently decompressed hunk is cached per reader.

Supported Codecs:
    - zlib: raw deflate
    - lzma: raw LZMA1 (lc=3, lp=0, pb=2)
    - cdzl / cdlz: CD frames, deflate or LZMA for sector data and deflate
      for subcode

Unsupported (raise DiscUnsupportedError):
    - flac, cdfl, huff, zstd, cdzs codecs
    - Parent (delta) CHDs
    - CHD versions before 5, GD-ROM track layouts
"""

import binascii
import logging
import lzma
import struct
import zlib
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, NamedTuple, Optional

from .huffman import BitReader, HuffmanDecoder
from .image_formats import (
    CD_SYNC_PATTERN,
    CHD_MAGIC,
    DiscCorruptError,
    DiscFormat,
    DiscReadError,
    DiscUnsupportedError,
    LOGICAL_SECTOR_SIZE,
    TrackMode,
)
from .sector_reader import SectorReader, open_binary, read_at

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CHD_V5_HEADER_SIZE = 124
CHD_V5_HEADER_FORMAT = '>8sLL4L3QLL20s20s20s'

# CD frame layout inside a CHD
CD_FRAME_SIZE = 2448
CD_SECTOR_DATA = 2352
CD_SUBCODE_DATA = 96
CD_TRACK_PADDING = 4

# Metadata tags
META_CD_TRACK = b'CHTR'
META_CD_TRACK2 = b'CHT2'
META_GDROM_TRACK = b'CHGD'
META_DVD = b'DVD '
META_HEADER_SIZE = 16

# Hunk map entry types
COMPRESSION_TYPE_0 = 0
COMPRESSION_TYPE_3 = 3
COMPRESSION_NONE = 4
COMPRESSION_SELF = 5
COMPRESSION_PARENT = 6
COMPRESSION_RLE_SMALL = 7
COMPRESSION_RLE_LARGE = 8
COMPRESSION_SELF_0 = 9
COMPRESSION_SELF_1 = 10
COMPRESSION_PARENT_SELF = 11
COMPRESSION_PARENT_0 = 12
COMPRESSION_PARENT_1 = 13

MAP_HEADER_FORMAT = '>L6sHBBBx'

# Codecs covered by a CRC we can reproduce (CD codecs drop ECC)
CRC_CHECKED_CODECS = {b'zlib', b'lzma'}

# CHT2 TYPE values and their logical track modes
CHD_TRACK_TYPES: Dict[str, TrackMode] = {
    'MODE1': TrackMode.MODE1_2048,
    'MODE1_RAW': TrackMode.MODE1_2352,
    'MODE2': TrackMode.MODE2_2336,
    'MODE2_FORM1': TrackMode.MODE2_2048,
    'MODE2_FORM_MIX': TrackMode.MODE2_2336,
    'MODE2_RAW': TrackMode.MODE2_2352,
    'AUDIO': TrackMode.AUDIO,
}


def crc16(data: bytes) -> int:
    """CRC-16/CCITT with initial value 0xFFFF as used by CHD."""
    return binascii.crc_hqx(data, 0xFFFF)


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class ChdHeader:
    """
    CHD version 5 header.

    Attributes:
        version: Header version (always 5)
        compressors: Four codec tags, empty bytes for unused slots
        logical_bytes: Size of the uncompressed logical data
        map_offset: File offset of the hunk map
        meta_offset: File offset of the first metadata entry
        hunk_bytes: Bytes per hunk
        unit_bytes: Bytes per unit (2448 for CD frames)
        has_parent: True if the CHD is a delta against a parent
    """
    version: int
    compressors: List[bytes]
    logical_bytes: int
    map_offset: int
    meta_offset: int
    hunk_bytes: int
    unit_bytes: int
    has_parent: bool

    @property
    def hunk_count(self) -> int:
        """Number of hunks covering the logical data."""
        return (self.logical_bytes + self.hunk_bytes - 1) // self.hunk_bytes

    @property
    def is_compressed(self) -> bool:
        """True if the hunk map is Huffman coded."""
        return bool(self.compressors[0])

    @classmethod
    def parse(cls, data: bytes, filepath: Optional[str] = None) -> "ChdHeader":
        """Parse and validate a header block."""
        if len(data) < 16 or data[:8] != CHD_MAGIC:
            raise DiscCorruptError("Missing CHD signature", filepath)
        version = struct.unpack_from('>L', data, 12)[0]
        if version != 5:
            raise DiscUnsupportedError(f"CHD version {version}", filepath,
                                       feature="CHD versions before 5")
        if len(data) < CHD_V5_HEADER_SIZE:
            raise DiscReadError("Truncated CHD header", filepath,
                                offset=0, length=CHD_V5_HEADER_SIZE)

        (_, length, _, c0, c1, c2, c3, logical_bytes, map_offset, meta_offset,
         hunk_bytes, unit_bytes, _, _, parent_sha1) = struct.unpack_from(
            CHD_V5_HEADER_FORMAT, data, 0)

        if length != CHD_V5_HEADER_SIZE:
            raise DiscCorruptError("Bad CHD header length", filepath,
                                   expected=CHD_V5_HEADER_SIZE, actual=length)
        if hunk_bytes == 0 or unit_bytes == 0 or hunk_bytes % unit_bytes:
            raise DiscCorruptError("Invalid CHD hunk geometry", filepath,
                                   expected="unit-aligned hunks",
                                   actual=f"{hunk_bytes}/{unit_bytes}")

        compressors = [struct.pack('>L', c) if c else b'' for c in (c0, c1, c2, c3)]
        return cls(
            version=version,
            compressors=compressors,
            logical_bytes=logical_bytes,
            map_offset=map_offset,
            meta_offset=meta_offset,
            hunk_bytes=hunk_bytes,
            unit_bytes=unit_bytes,
            has_parent=any(parent_sha1),
        )


class MapEntry(NamedTuple):
    """Location of one hunk."""
    compression: int
    length: int
    offset: int
    crc: int


@dataclass
class ChdTrack:
    """
    CD track described by CHD metadata.

    Attributes:
        number: Track number
        type_name: TYPE value from the metadata
        mode: Logical track mode, None for types without 2048-byte data
        frames: Frames stored for the track (pregap included when stored)
        stored_pregap: Pregap frames stored in the CHD
        pregap: Total pregap frames
        start_lba: Absolute LBA of the first non-pregap frame
        frame_offset: CHD frame index of start_lba
    """
    number: int
    type_name: str
    mode: Optional[TrackMode]
    frames: int
    stored_pregap: int = 0
    pregap: int = 0
    start_lba: int = 0
    frame_offset: int = 0

    @property
    def sector_count(self) -> int:
        """Sectors after the pregap."""
        return self.frames - self.stored_pregap

    @property
    def end_lba(self) -> int:
        """First LBA after this track."""
        return self.start_lba + self.sector_count

    @property
    def is_data(self) -> bool:
        """True if sectors carry 2048-byte user data."""
        return self.mode is not None and self.mode.is_data

    def contains(self, lba: int) -> bool:
        """True if lba is stored as part of this track."""
        return self.start_lba - self.stored_pregap <= lba < self.end_lba


def parse_track_metadata(text: str, filepath: Optional[str] = None) -> ChdTrack:
    """Parse a CHTR/CHT2 metadata string."""
    fields = {}
    for pair in text.split():
        if ':' in pair:
            key, value = pair.split(':', 1)
            fields[key] = value
    try:
        number = int(fields['TRACK'])
        frames = int(fields['FRAMES'])
        pregap = int(fields.get('PREGAP', 0))
        type_name = fields['TYPE']
    except (KeyError, ValueError):
        raise DiscCorruptError(f"Malformed CD track metadata '{text}'", filepath) from None
    pregap_type = fields.get('PGTYPE', '')
    stored = pregap if pregap_type.startswith('V') else 0
    return ChdTrack(number=number, type_name=type_name,
                    mode=CHD_TRACK_TYPES.get(type_name),
                    frames=frames, stored_pregap=stored, pregap=pregap)


# =============================================================================
# Hunk Codecs
# =============================================================================

def _lzma_dictionary_size(hunk_bytes: int) -> int:
    for i in range(11, 31):
        if hunk_bytes <= 2 << i:
            return 2 << i
        if hunk_bytes <= 3 << i:
            return 3 << i
    return 1 << 26


def inflate(data: bytes, size: int) -> bytes:
    """Decompress raw deflate data to exactly size bytes."""
    try:
        out = zlib.decompressobj(-zlib.MAX_WBITS).decompress(data, size)
    except zlib.error as e:
        raise DiscCorruptError(f"Deflate stream error: {e}") from None
    if len(out) != size:
        raise DiscCorruptError("Short deflate hunk", expected=size, actual=len(out))
    return out


def unlzma(data: bytes, size: int, hunk_bytes: int) -> bytes:
    """Decompress raw LZMA1 data to exactly size bytes."""
    decoder = lzma.LZMADecompressor(
        format=lzma.FORMAT_RAW,
        filters=[{
            'id': lzma.FILTER_LZMA1,
            'dict_size': _lzma_dictionary_size(hunk_bytes),
            'lc': 3, 'lp': 0, 'pb': 2,
        }])
    try:
        out = decoder.decompress(data, size)
    except lzma.LZMAError as e:
        raise DiscCorruptError(f"LZMA stream error: {e}") from None
    if len(out) != size:
        raise DiscCorruptError("Short LZMA hunk", expected=size, actual=len(out))
    return out


def decompress_cd_hunk(data: bytes, hunk_bytes: int, base_codec: bytes) -> bytes:
    """
    Decode a cdzl/cdlz hunk into 2448-byte frames.

    The hunk carries an ECC bitmap, the compressed length of the sector
    data, the sector data (deflate or LZMA) and the subcode (deflate).
    Frames flagged in the bitmap get their sync header restored.
    """
    frames = hunk_bytes // CD_FRAME_SIZE
    ecc_bytes = (frames + 7) // 8
    length_bytes = 2 if hunk_bytes < 65536 else 3
    header_bytes = ecc_bytes + length_bytes
    if len(data) < header_bytes:
        raise DiscCorruptError("Truncated CD hunk header")
    base_length = int.from_bytes(data[ecc_bytes:header_bytes], 'big')
    base_data = data[header_bytes:header_bytes + base_length]
    sub_data = data[header_bytes + base_length:]

    if base_codec == b'cdlz':
        sectors = unlzma(base_data, frames * CD_SECTOR_DATA, hunk_bytes)
    else:
        sectors = inflate(base_data, frames * CD_SECTOR_DATA)
    subcode = inflate(sub_data, frames * CD_SUBCODE_DATA)

    out = bytearray(hunk_bytes)
    for frame in range(frames):
        dst = frame * CD_FRAME_SIZE
        out[dst:dst + CD_SECTOR_DATA] = sectors[frame * CD_SECTOR_DATA:(frame + 1) * CD_SECTOR_DATA]
        out[dst + CD_SECTOR_DATA:dst + CD_FRAME_SIZE] = \
            subcode[frame * CD_SUBCODE_DATA:(frame + 1) * CD_SUBCODE_DATA]
        if data[frame >> 3] & (1 << (frame & 7)):
            out[dst:dst + len(CD_SYNC_PATTERN)] = CD_SYNC_PATTERN
    return bytes(out)


# =============================================================================
# ChdReader Class
# =============================================================================

class ChdReader(SectorReader):
    """
    Sector reader over a CHD v5 file.

    CD images are addressed by absolute LBA across their tracks; images
    without CD track metadata (DVD, raw) are addressed linearly in
    2048-byte sectors.

    Attributes:
        header: Parsed CHD header
        tracks: CD tracks (empty for linear images)
        map_entries: Decoded hunk map
    """

    format = DiscFormat.CHD

    def __init__(self, filepath: str, verify_map_crc: bool = True):
        super().__init__(str(filepath), LOGICAL_SECTOR_SIZE)
        self._handle = open_binary(str(filepath))
        self._cached_index: Optional[int] = None
        self._cached_hunk: bytes = b''
        try:
            self._header = ChdHeader.parse(
                read_at(self._handle, 0, CHD_V5_HEADER_SIZE, self._filepath),
                self._filepath)
            self._tracks = self._read_tracks()
            if self._header.is_compressed:
                self._map = self._decode_compressed_map(verify_map_crc)
            else:
                self._map = self._decode_uncompressed_map()
        except Exception:
            self._handle.close()
            raise

        if self._tracks:
            self._total_sectors = self._tracks[-1].end_lba
        else:
            self._total_sectors = self._header.logical_bytes // LOGICAL_SECTOR_SIZE

        logger.info("Opened CHD %s (%d hunks of %d bytes, %d tracks, %d sectors)",
                    Path(filepath).name, self._header.hunk_count,
                    self._header.hunk_bytes, len(self._tracks), self._total_sectors)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def header(self) -> ChdHeader:
        """Parsed CHD header."""
        return self._header

    @property
    def tracks(self) -> List[ChdTrack]:
        """CD tracks in order (empty for linear images)."""
        return self._tracks

    @property
    def map_entries(self) -> List[MapEntry]:
        """Decoded hunk map."""
        return self._map

    # =========================================================================
    # Header Structures
    # =========================================================================

    def _iter_metadata(self):
        offset = self._header.meta_offset
        visited = set()
        while offset:
            if offset in visited:
                raise DiscCorruptError("CHD metadata chain loops", self._filepath)
            visited.add(offset)
            raw = read_at(self._handle, offset, META_HEADER_SIZE, self._filepath)
            tag = raw[:4]
            length = struct.unpack_from('>L', raw, 4)[0] & 0x00FFFFFF
            next_offset = struct.unpack_from('>Q', raw, 8)[0]
            data = read_at(self._handle, offset + META_HEADER_SIZE, length, self._filepath)
            yield tag, data
            offset = next_offset

    def _read_tracks(self) -> List[ChdTrack]:
        tracks = []
        for tag, data in self._iter_metadata():
            if tag in (META_CD_TRACK, META_CD_TRACK2):
                text = data.rstrip(b'\x00').decode('ascii', errors='replace')
                tracks.append(parse_track_metadata(text, self._filepath))
            elif tag == META_GDROM_TRACK:
                raise DiscUnsupportedError("GD-ROM CHD", self._filepath,
                                           feature="GD-ROM track layout")
            elif tag == META_DVD:
                logger.debug("CHD carries DVD metadata, using linear addressing")

        if not tracks:
            return tracks
        if self._header.unit_bytes != CD_FRAME_SIZE:
            raise DiscCorruptError("CD CHD with non-CD unit size", self._filepath,
                                   expected=CD_FRAME_SIZE, actual=self._header.unit_bytes)

        tracks.sort(key=lambda t: t.number)
        lba = 0
        frame = 0
        for index, track in enumerate(tracks):
            if index > 0:
                lba += track.pregap - track.stored_pregap
            track.start_lba = lba + track.stored_pregap
            track.frame_offset = frame + track.stored_pregap
            lba = track.end_lba
            frame += (track.frames + CD_TRACK_PADDING - 1) // CD_TRACK_PADDING * CD_TRACK_PADDING
            logger.debug("CHD track %02d %s: lba=%d frame=%d sectors=%d",
                         track.number, track.type_name, track.start_lba,
                         track.frame_offset, track.sector_count)
        return tracks

    # =========================================================================
    # Hunk Map
    # =========================================================================

    def _decode_uncompressed_map(self) -> List[MapEntry]:
        count = self._header.hunk_count
        raw = read_at(self._handle, self._header.map_offset, count * 4, self._filepath)
        entries = []
        for (block,) in struct.iter_unpack('>L', raw):
            entries.append(MapEntry(COMPRESSION_NONE, self._header.hunk_bytes,
                                    block * self._header.hunk_bytes, 0))
        return entries

    def _decode_compressed_map(self, verify_crc: bool) -> List[MapEntry]:
        header = self._header
        raw_header = read_at(self._handle, header.map_offset, 16, self._filepath)
        map_bytes, first_offset, map_crc, length_bits, self_bits, parent_bits = \
            struct.unpack(MAP_HEADER_FORMAT, raw_header)
        first_offset = int.from_bytes(first_offset, 'big')
        bits = BitReader(read_at(self._handle, header.map_offset + 16, map_bytes,
                                 self._filepath))

        decoder = HuffmanDecoder(16, 8)
        decoder.import_tree_rle(bits)

        count = header.hunk_count
        kinds = [0] * count
        repeat = 0
        last = 0
        for hunk in range(count):
            if repeat > 0:
                kinds[hunk] = last
                repeat -= 1
                continue
            value = decoder.decode(bits)
            if value == COMPRESSION_RLE_SMALL:
                kinds[hunk] = last
                repeat = 2 + decoder.decode(bits)
            elif value == COMPRESSION_RLE_LARGE:
                kinds[hunk] = last
                repeat = 2 + 16 + (decoder.decode(bits) << 4)
                repeat += decoder.decode(bits)
            else:
                kinds[hunk] = last = value

        units_per_hunk = header.hunk_bytes // header.unit_bytes
        entries = []
        raw_map = bytearray()
        offset = first_offset
        last_self = 0
        last_parent = 0
        for hunk, kind in enumerate(kinds):
            length = 0
            crc = 0
            if COMPRESSION_TYPE_0 <= kind <= COMPRESSION_TYPE_3 or kind == COMPRESSION_NONE:
                length = bits.read(length_bits) if kind != COMPRESSION_NONE else header.hunk_bytes
                location = offset
                offset += length
                crc = bits.read(16)
            elif kind == COMPRESSION_SELF:
                location = last_self = bits.read(self_bits)
            elif kind == COMPRESSION_PARENT:
                location = last_parent = bits.read(parent_bits)
            elif kind in (COMPRESSION_SELF_0, COMPRESSION_SELF_1):
                if kind == COMPRESSION_SELF_1:
                    last_self += 1
                kind = COMPRESSION_SELF
                location = last_self
            elif kind == COMPRESSION_PARENT_SELF:
                kind = COMPRESSION_PARENT
                location = last_parent = hunk * units_per_hunk
            elif kind in (COMPRESSION_PARENT_0, COMPRESSION_PARENT_1):
                if kind == COMPRESSION_PARENT_1:
                    last_parent += units_per_hunk
                kind = COMPRESSION_PARENT
                location = last_parent
            else:
                raise DiscCorruptError(f"Unknown hunk map type {kind}", self._filepath)

            entries.append(MapEntry(kind, length, location, crc))
            raw_map += bytes([kind]) + length.to_bytes(3, 'big') \
                + location.to_bytes(6, 'big') + crc.to_bytes(2, 'big')

        if bits.overflowed:
            raise DiscCorruptError("CHD hunk map truncated", self._filepath)
        if verify_crc and crc16(bytes(raw_map)) != map_crc:
            raise DiscCorruptError("CHD hunk map CRC mismatch", self._filepath,
                                   expected=map_crc, actual=crc16(bytes(raw_map)))
        return entries

    # =========================================================================
    # Hunk Access
    # =========================================================================

    def read_hunk(self, index: int) -> bytes:
        """Return the decompressed contents of one hunk."""
        if index == self._cached_index:
            return self._cached_hunk
        if not 0 <= index < len(self._map):
            raise DiscReadError(f"Hunk {index} out of range", self._filepath)

        data = self._decompress_hunk(index)
        self._cached_index = index
        self._cached_hunk = data
        return data

    def _decompress_hunk(self, index: int) -> bytes:
        entry = self._map[index]
        hunk_bytes = self._header.hunk_bytes
        logger.debug("Decompressing hunk %d (type %d)", index, entry.compression)

        if entry.compression == COMPRESSION_SELF:
            if entry.offset >= index:
                raise DiscCorruptError(f"Hunk {index} has invalid self reference",
                                       self._filepath, actual=entry.offset)
            return self._decompress_hunk(entry.offset)

        if entry.compression == COMPRESSION_PARENT:
            raise DiscUnsupportedError("Hunk stored in parent CHD", self._filepath,
                                       feature="parent CHD")

        if entry.compression == COMPRESSION_NONE:
            if entry.offset == 0 and not self._header.is_compressed:
                return bytes(hunk_bytes)
            data = read_at(self._handle, entry.offset, hunk_bytes, self._filepath)
            codec = None
        else:
            codec = self._header.compressors[entry.compression]
            if not codec:
                raise DiscCorruptError(f"Hunk {index} uses empty codec slot", self._filepath)
            compressed = read_at(self._handle, entry.offset, entry.length, self._filepath)
            data = self._decode(codec, compressed)

        if self._header.is_compressed and (codec is None or codec in CRC_CHECKED_CODECS):
            if crc16(data) != entry.crc:
                raise DiscCorruptError(f"Hunk {index} CRC mismatch", self._filepath,
                                       expected=entry.crc, actual=crc16(data))
        return data

    def _decode(self, codec: bytes, data: bytes) -> bytes:
        hunk_bytes = self._header.hunk_bytes
        if codec == b'zlib':
            return inflate(data, hunk_bytes)
        if codec == b'lzma':
            return unlzma(data, hunk_bytes, hunk_bytes)
        if codec in (b'cdzl', b'cdlz'):
            return decompress_cd_hunk(data, hunk_bytes, codec)
        raise DiscUnsupportedError(f"CHD codec '{codec.decode('ascii', 'replace')}'",
                                   self._filepath, feature="CHD codec")

    def read_logical(self, offset: int, length: int) -> bytes:
        """Read bytes from the uncompressed logical data."""
        if offset + length > self._header.logical_bytes:
            raise DiscReadError("Read beyond CHD logical size", self._filepath,
                                offset=offset, length=length)
        hunk_bytes = self._header.hunk_bytes
        chunks = []
        while length > 0:
            index, within = divmod(offset, hunk_bytes)
            take = min(length, hunk_bytes - within)
            chunks.append(self.read_hunk(index)[within:within + take])
            offset += take
            length -= take
        return b''.join(chunks)

    # =========================================================================
    # Sector Access
    # =========================================================================

    def _track_for(self, lba: int) -> ChdTrack:
        for track in self._tracks:
            if track.contains(lba):
                if not track.is_data:
                    raise DiscUnsupportedError(
                        f"Sector {lba} belongs to {track.type_name} track {track.number}",
                        self._filepath, feature="audio sectors as data")
                return track
        raise DiscReadError(f"Sector {lba} is not stored in the CHD", self._filepath)

    def _read_sectors(self, sector_index: int, count: int) -> bytes:
        if not self._tracks:
            return self.read_logical(sector_index * LOGICAL_SECTOR_SIZE,
                                     count * LOGICAL_SECTOR_SIZE)
        chunks = []
        for lba in range(sector_index, sector_index + count):
            track = self._track_for(lba)
            frame = track.frame_offset + (lba - track.start_lba)
            offset = frame * CD_FRAME_SIZE + track.mode.data_offset
            chunks.append(self.read_logical(offset, LOGICAL_SECTOR_SIZE))
        return b''.join(chunks)

    def close(self) -> None:
        if not self._closed:
            self._handle.close()
            self._cached_hunk = b''
            self._cached_index = None
        super().close()
