"""
CUE sheet parsing for consolidated multi-track BIN images.

Parses the textual FILE / TRACK / INDEX grammar into ordered Track records
and lays the tracks out over the referenced binary: each track receives an
absolute starting LBA, the byte offset of its INDEX 01 frame in the binary
and its sector count.

Supported Directives:
    - FILE "name" BINARY|MOTOROLA (exactly one per sheet)
    - TRACK nn MODE (AUDIO, CDG, MODE1/2048, MODE1/2352, MODE2/2048,
      MODE2/2336, MODE2/2352, CDI/2336, CDI/2352)
    - INDEX 00 / INDEX 01 mm:ss:ff
    - PREGAP / POSTGAP mm:ss:ff (not stored in the binary)
    - CATALOG, REM, TITLE, PERFORMER, SONGWRITER, FLAGS, ISRC, CDTEXTFILE
      (ignored)
"""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from .image_formats import (
    DiscCorruptError,
    DiscReadError,
    DiscUnsupportedError,
    TrackMode,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

FRAMES_PER_SECOND = 75
SECONDS_PER_MINUTE = 60

# Directives carrying metadata only
IGNORED_DIRECTIVES = {
    'CATALOG', 'REM', 'TITLE', 'PERFORMER', 'SONGWRITER',
    'FLAGS', 'ISRC', 'CDTEXTFILE',
}

# FILE types whose payload is raw sector data
BINARY_FILE_TYPES = {'BINARY', 'MOTOROLA'}

# Extensions tried when the referenced binary is missing
BINARY_EXTENSIONS = ('bin', 'BIN', 'img', 'IMG')


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class Track:
    """
    One track of a CUE sheet.

    Index values are frame positions inside the binary file; the layout
    fields are filled in by CueSheet.layout().

    Attributes:
        number: Track number (1-99)
        mode: Track mode (sector size and user data offset)
        index1: Frame of INDEX 01 within the binary
        index0: Frame of INDEX 00 within the binary, if present
        pregap: Frames of PREGAP not stored in the binary
        postgap: Frames of POSTGAP not stored in the binary
        start_lba: Absolute LBA of INDEX 01
        file_offset: Byte offset of INDEX 01 within the binary
        sector_count: Sectors from INDEX 01 to the end of the track
    """
    number: int
    mode: TrackMode
    index1: Optional[int] = None
    index0: Optional[int] = None
    pregap: int = 0
    postgap: int = 0
    start_lba: int = 0
    file_offset: int = 0
    sector_count: int = 0

    @property
    def sector_size(self) -> int:
        """Stored bytes per sector."""
        return self.mode.sector_size

    @property
    def is_data(self) -> bool:
        """True if the track carries user data sectors."""
        return self.mode.is_data

    @property
    def first_index(self) -> int:
        """First frame of this track stored in the binary."""
        return self.index0 if self.index0 is not None else self.index1

    @property
    def stored_pregap(self) -> int:
        """Pregap frames stored in the binary (INDEX 00 to INDEX 01)."""
        return self.index1 - self.first_index

    @property
    def total_pregap(self) -> int:
        """All pregap frames, stored or not."""
        return self.pregap + self.stored_pregap

    @property
    def end_lba(self) -> int:
        """First LBA after this track."""
        return self.start_lba + self.sector_count

    def contains(self, lba: int) -> bool:
        """True if lba is stored in the binary as part of this track."""
        return self.start_lba - self.stored_pregap <= lba < self.end_lba


@dataclass
class CueSheet:
    """
    Parsed CUE sheet.

    Attributes:
        path: Path of the CUE file
        binary_name: FILE name exactly as written in the sheet
        file_type: FILE type keyword (BINARY or MOTOROLA)
        tracks: Tracks in ascending number order
    """
    path: Optional[Path]
    binary_name: str
    file_type: str
    tracks: List[Track] = field(default_factory=list)

    @property
    def data_tracks(self) -> List[Track]:
        """Tracks carrying user data."""
        return [t for t in self.tracks if t.is_data]

    @property
    def total_sectors(self) -> int:
        """LBA one past the end of the last track."""
        return self.tracks[-1].end_lba if self.tracks else 0

    def layout(self, file_size: int) -> None:
        """
        Compute LBAs, binary offsets and sector counts for every track.

        Args:
            file_size: Size in bytes of the referenced binary

        Raises:
            DiscCorruptError: If an index lies beyond the end of the binary
        """
        lba_shift = 0
        previous: Optional[Track] = None
        region_offset = 0

        for track in self.tracks:
            lba_shift += track.pregap
            if previous is None:
                region_offset = track.first_index * track.sector_size
            else:
                region_offset += (track.first_index - previous.first_index) * previous.sector_size
                previous.sector_count = track.first_index - previous.index1
                lba_shift += previous.postgap

            track.start_lba = track.index1 + lba_shift
            track.file_offset = region_offset + track.stored_pregap * track.sector_size
            previous = track

        if previous is None:
            return

        remaining = file_size - previous.file_offset
        if remaining < 0:
            raise DiscCorruptError(
                f"Track {previous.number} starts beyond the end of the binary",
                str(self.path) if self.path else None,
                expected=previous.file_offset, actual=file_size)
        previous.sector_count = remaining // previous.sector_size
        if remaining % previous.sector_size:
            logger.warning("Binary ends with %d bytes of a partial sector",
                           remaining % previous.sector_size)

        for track in self.tracks:
            logger.debug("Track %02d %s: lba=%d offset=%d sectors=%d",
                         track.number, track.mode.label, track.start_lba,
                         track.file_offset, track.sector_count)

    def track_for_lba(self, lba: int) -> Optional[Track]:
        """Return the track storing lba, or None if it is not stored."""
        for track in self.tracks:
            if track.contains(lba):
                return track
        return None


# =============================================================================
# Parsing
# =============================================================================

def parse_msf(value: str, filepath: Optional[str] = None) -> int:
    """
    Convert an mm:ss:ff timestamp to a frame count.

    Raises:
        DiscCorruptError: If the timestamp is malformed
    """
    parts = value.split(':')
    try:
        minutes, seconds, frames = (int(p) for p in parts)
    except ValueError:
        raise DiscCorruptError(f"Invalid timestamp '{value}'", filepath) from None
    if minutes < 0 or not 0 <= seconds < SECONDS_PER_MINUTE or not 0 <= frames < FRAMES_PER_SECOND:
        raise DiscCorruptError(f"Timestamp out of range '{value}'", filepath)
    return (minutes * SECONDS_PER_MINUTE + seconds) * FRAMES_PER_SECOND + frames


def _tokenize(line: str, filepath: Optional[str]) -> List[str]:
    lexer = shlex.shlex(line, posix=True)
    lexer.whitespace_split = True
    lexer.escape = ''
    lexer.commenters = ''
    try:
        return list(lexer)
    except ValueError as e:
        raise DiscCorruptError(f"Unparsable line '{line}': {e}", filepath) from None


def parse_cue_text(text: str, path: Optional[Path] = None) -> CueSheet:
    """
    Parse CUE sheet text.

    Args:
        text: Decoded sheet contents
        path: Path of the sheet, used for error context

    Returns:
        CueSheet with tracks in order (layout not yet computed)

    Raises:
        DiscCorruptError: On unparsable directives, out-of-order tracks
            or non-monotonic INDEX 01 offsets
        DiscUnsupportedError: On multi-file sheets or non-binary files
    """
    filepath = str(path) if path else None
    sheet: Optional[CueSheet] = None
    current: Optional[Track] = None

    for line_number, raw_line in enumerate(text.splitlines(), 1):
        line = raw_line.strip()
        if not line:
            continue
        tokens = _tokenize(line, filepath)
        keyword = tokens[0].upper()

        if keyword in IGNORED_DIRECTIVES:
            continue

        if keyword == 'FILE':
            if len(tokens) != 3:
                raise DiscCorruptError(f"Line {line_number}: malformed FILE", filepath)
            if sheet is not None:
                raise DiscUnsupportedError(
                    "CUE sheets referencing more than one file", filepath,
                    feature="multi-file CUE")
            file_type = tokens[2].upper()
            if file_type not in BINARY_FILE_TYPES:
                raise DiscUnsupportedError(
                    f"FILE type {file_type}", filepath, feature="audio file tracks")
            sheet = CueSheet(path=path, binary_name=tokens[1], file_type=file_type)

        elif keyword == 'TRACK':
            if sheet is None:
                raise DiscCorruptError(f"Line {line_number}: TRACK before FILE", filepath)
            if len(tokens) != 3:
                raise DiscCorruptError(f"Line {line_number}: malformed TRACK", filepath)
            try:
                number = int(tokens[1])
                mode = TrackMode.from_label(tokens[2])
            except (ValueError, KeyError):
                raise DiscCorruptError(
                    f"Line {line_number}: unparsable TRACK '{line}'", filepath) from None
            if sheet.tracks and number <= sheet.tracks[-1].number:
                raise DiscCorruptError(
                    f"Track {number} out of order", filepath,
                    expected=f"> {sheet.tracks[-1].number}", actual=number)
            current = Track(number=number, mode=mode)
            sheet.tracks.append(current)

        elif keyword in ('INDEX', 'PREGAP', 'POSTGAP'):
            if current is None:
                raise DiscCorruptError(f"Line {line_number}: {keyword} outside TRACK", filepath)
            if keyword == 'INDEX':
                if len(tokens) != 3 or not tokens[1].isdigit():
                    raise DiscCorruptError(f"Line {line_number}: malformed INDEX", filepath)
                index_number = int(tokens[1])
                frame = parse_msf(tokens[2], filepath)
                if index_number == 0:
                    current.index0 = frame
                elif index_number == 1:
                    current.index1 = frame
                # Indices above 1 subdivide a track without moving it
            else:
                if len(tokens) != 2:
                    raise DiscCorruptError(f"Line {line_number}: malformed {keyword}", filepath)
                frames = parse_msf(tokens[1], filepath)
                if keyword == 'PREGAP':
                    current.pregap = frames
                else:
                    current.postgap = frames

        else:
            raise DiscCorruptError(
                f"Line {line_number}: unknown directive '{tokens[0]}'", filepath)

    if sheet is None or not sheet.tracks:
        raise DiscCorruptError("CUE sheet has no FILE or TRACK entries", filepath)

    _validate_indices(sheet, filepath)
    return sheet


def _validate_indices(sheet: CueSheet, filepath: Optional[str]) -> None:
    previous: Optional[Track] = None
    for track in sheet.tracks:
        if track.index1 is None:
            raise DiscCorruptError(f"Track {track.number} has no INDEX 01", filepath)
        if track.index0 is not None and track.index0 > track.index1:
            raise DiscCorruptError(
                f"Track {track.number} INDEX 00 after INDEX 01", filepath,
                expected=f"<= {track.index1}", actual=track.index0)
        if previous is not None and track.first_index <= previous.index1:
            raise DiscCorruptError(
                f"Track {track.number} INDEX offsets not increasing", filepath,
                expected=f"> {previous.index1}", actual=track.first_index)
        previous = track


def read_cue_file(cue_path: Path) -> str:
    """Read a CUE sheet as UTF-8, falling back to a lossy decode."""
    try:
        raw = Path(cue_path).read_bytes()
    except OSError as e:
        raise DiscReadError(f"Cannot read CUE sheet: {e}", str(cue_path)) from e
    try:
        return raw.decode('utf-8-sig')
    except UnicodeDecodeError:
        logger.warning("CUE sheet %s is not valid UTF-8, decoding lossily", cue_path)
        return raw.decode('utf-8', errors='replace')


def parse_cue(cue_path: Path) -> CueSheet:
    """Read and parse a CUE sheet from disk."""
    cue_path = Path(cue_path)
    sheet = parse_cue_text(read_cue_file(cue_path), cue_path)
    logger.info("Parsed CUE sheet %s: %d tracks", cue_path.name, len(sheet.tracks))
    return sheet


def resolve_binary_path(cue_path: Path, binary_name: str) -> Path:
    """
    Locate the binary referenced by a CUE sheet.

    Tries the name relative to the sheet, then its basename, then its stem
    with common binary extensions, then the sheet's own stem.

    Raises:
        DiscReadError: If no candidate exists
    """
    cue_path = Path(cue_path)
    cue_dir = cue_path.parent
    referenced = Path(binary_name.replace('\\', '/'))

    candidates = [cue_dir / binary_name, cue_dir / referenced.name]
    for stem in (referenced.stem, cue_path.stem):
        candidates.extend(cue_dir / f"{stem}.{ext}" for ext in BINARY_EXTENSIONS)

    for candidate in candidates:
        if candidate.is_file():
            logger.debug("Resolved binary %s -> %s", binary_name, candidate)
            return candidate

    raise DiscReadError(f"Binary '{binary_name}' referenced by CUE sheet not found",
                        str(cue_path))
