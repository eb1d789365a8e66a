"""
Multi-track BIN image reader.

Presents the 2048-byte logical sector contract over a raw binary laid out
by a CUE sheet. Raw 2352-byte frames are stripped down to their user data
region (sync, header and subheader before it; EDC/ECC after it).
"""

import logging
import os
from pathlib import Path
from typing import List

import numpy as np

from .cue_sheet import (
    CueSheet,
    Track,
    parse_cue,
    resolve_binary_path,
)
from .image_formats import (
    CD_SYNC_PATTERN,
    DiscFormat,
    DiscReadError,
    DiscUnsupportedError,
    LOGICAL_SECTOR_SIZE,
    TrackMode,
)
from .sector_reader import SectorReader, open_binary, read_at

logger = logging.getLogger(__name__)


def strip_frames(raw: bytes, frame_size: int, data_offset: int,
                 data_size: int = LOGICAL_SECTOR_SIZE) -> bytes:
    """
    Extract the user data region from consecutive stored frames.

    Args:
        raw: Concatenated frames
        frame_size: Stored bytes per frame
        data_offset: Offset of user data within a frame
        data_size: User data bytes per frame

    Returns:
        Concatenated user data
    """
    if frame_size == data_size and data_offset == 0:
        return raw
    frames = np.frombuffer(raw, dtype=np.uint8).reshape(-1, frame_size)
    return frames[:, data_offset:data_offset + data_size].tobytes()


class BinCueReader(SectorReader):
    """
    Sector reader over a CUE-described binary.

    Logical sector N is the absolute disc LBA N; the owning track is found
    by LBA range and its stored frames are stripped to 2048 bytes.

    Attributes:
        sheet: Parsed and laid-out CUE sheet
        binary_path: Path of the referenced binary
        tracks: Tracks in order
    """

    format = DiscFormat.BIN_CUE

    def __init__(self, sheet: CueSheet, binary_path: Path):
        super().__init__(str(binary_path), LOGICAL_SECTOR_SIZE)
        self._sheet = sheet
        self._binary_path = Path(binary_path)
        self._handle = open_binary(str(binary_path))
        try:
            size = os.fstat(self._handle.fileno()).st_size
        except OSError as e:
            self._handle.close()
            raise DiscReadError(f"Cannot stat binary: {e}", str(binary_path)) from e

        try:
            sheet.layout(size)
        except Exception:
            self._handle.close()
            raise
        self._total_sectors = sheet.total_sectors
        logger.info("Opened BIN image %s (%d tracks, %d sectors)",
                    self._binary_path.name, len(sheet.tracks), self._total_sectors)

    # =========================================================================
    # Construction
    # =========================================================================

    @classmethod
    def from_cue(cls, cue_path: Path) -> "BinCueReader":
        """Parse a CUE sheet and open the binary it references."""
        sheet = parse_cue(Path(cue_path))
        binary = resolve_binary_path(Path(cue_path), sheet.binary_name)
        return cls(sheet, binary)

    @classmethod
    def from_raw_binary(cls, binary_path: Path) -> "BinCueReader":
        """
        Open a binary that has no CUE sheet.

        A sibling CUE sheet is used when present; otherwise the first frame
        is sniffed for the raw sync pattern and a single track is assumed.
        """
        binary_path = Path(binary_path)
        sibling = binary_path.with_suffix('.cue')
        if sibling.is_file():
            return cls.from_cue(sibling)

        with open_binary(str(binary_path)) as handle:
            try:
                head = handle.read(16)
            except OSError as e:
                raise DiscReadError(f"Read failed: {e}", str(binary_path)) from e

        if head[:len(CD_SYNC_PATTERN)] == CD_SYNC_PATTERN and len(head) == 16:
            mode = TrackMode.MODE2_2352 if head[15] == 2 else TrackMode.MODE1_2352
        else:
            mode = TrackMode.MODE1_2048
        logger.info("No CUE sheet for %s, assuming single %s track",
                    binary_path.name, mode.label)
        sheet = CueSheet(path=None, binary_name=binary_path.name, file_type='BINARY',
                         tracks=[Track(number=1, mode=mode, index1=0)])
        return cls(sheet, binary_path)

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def sheet(self) -> CueSheet:
        """Parsed CUE sheet."""
        return self._sheet

    @property
    def binary_path(self) -> Path:
        """Path of the referenced binary."""
        return self._binary_path

    @property
    def tracks(self) -> List[Track]:
        """Tracks in order."""
        return self._sheet.tracks

    # =========================================================================
    # Reading
    # =========================================================================

    def _track_for(self, lba: int) -> Track:
        track = self._sheet.track_for_lba(lba)
        if track is None:
            raise DiscReadError(f"Sector {lba} is not stored in the binary",
                                self._filepath)
        if not track.is_data:
            raise DiscUnsupportedError(
                f"Sector {lba} belongs to {track.mode.label} track {track.number}",
                self._filepath, feature="audio sectors as data")
        return track

    def _read_sectors(self, sector_index: int, count: int) -> bytes:
        chunks = []
        lba = sector_index
        end = sector_index + count
        while lba < end:
            track = self._track_for(lba)
            run = min(end, track.end_lba) - lba
            offset = track.file_offset + (lba - track.start_lba) * track.sector_size
            raw = read_at(self._handle, offset, run * track.sector_size, self._filepath)
            chunks.append(strip_frames(raw, track.sector_size, track.mode.data_offset))
            lba += run
        return b''.join(chunks)

    def close(self) -> None:
        if not self._closed:
            self._handle.close()
        super().close()


def open_bincue(filepath: str) -> BinCueReader:
    """Open either a CUE sheet or a bare binary."""
    path = Path(filepath)
    if path.suffix.lower() == '.cue':
        return BinCueReader.from_cue(path)
    return BinCueReader.from_raw_binary(path)
