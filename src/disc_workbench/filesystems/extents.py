"""
Extent resolution for fork and file reads.

Maps a fork's logical byte range onto allocation blocks by walking its
inline extents in order and, once those are exhausted, asking an overflow
lookup for the next extent run keyed by the number of blocks already
covered. Output is truncated to the fork's logical size.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Iterator, Optional, Sequence, Tuple

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
)
from disc_workbench.imaging.sector_reader import SectorReader

logger = logging.getLogger(__name__)


# Fork types used as overflow keys
FORK_DATA = 0x00
FORK_RESOURCE = 0xFF


@dataclass(frozen=True)
class ExtentDescriptor:
    """
    Contiguous run of allocation blocks.

    Attributes:
        start_block: First allocation block
        block_count: Number of blocks (0 marks an unused slot)
    """
    start_block: int
    block_count: int

    @property
    def end_block(self) -> int:
        """First block after the run."""
        return self.start_block + self.block_count


@dataclass(frozen=True)
class ForkData:
    """
    Location of one fork of a file.

    Attributes:
        logical_size: Bytes of data in the fork
        extents: Inline extents in file order
        file_id: Owner CNID, used as the overflow key
        fork_type: FORK_DATA or FORK_RESOURCE
    """
    logical_size: int
    extents: Tuple[ExtentDescriptor, ...]
    file_id: int = 0
    fork_type: int = FORK_DATA


# (file_id, fork_type, start_block) -> next extent run
OverflowLookup = Callable[[int, int, int], Sequence[ExtentDescriptor]]


class ExtentResolver:
    """
    Reads fork byte ranges through the sector reader.

    Block N of the volume lives at byte base_offset + N * block_size of
    the logical sector space.

    Attributes:
        block_size: Allocation block size in bytes
        base_offset: Byte offset of allocation block 0
        total_blocks: Blocks in the volume, for bounds checks
        overflow_lookups: Number of overflow lookups issued so far
    """

    def __init__(self, reader: SectorReader, block_size: int, base_offset: int = 0,
                 total_blocks: Optional[int] = None,
                 overflow: Optional[OverflowLookup] = None):
        if block_size <= 0:
            raise DiscCorruptError("Invalid allocation block size", actual=block_size)
        self._reader = reader
        self.block_size = block_size
        self.base_offset = base_offset
        self.total_blocks = total_blocks
        self._overflow = overflow
        self.overflow_lookups = 0

    def set_overflow(self, overflow: Optional[OverflowLookup]) -> None:
        """Install the overflow lookup used past the inline extents."""
        self._overflow = overflow

    def _check(self, extent: ExtentDescriptor) -> ExtentDescriptor:
        if self.total_blocks is not None and extent.end_block > self.total_blocks:
            raise DiscCorruptError(
                f"Extent {extent.start_block}+{extent.block_count} outside volume",
                expected=f"<= {self.total_blocks}", actual=extent.end_block)
        return extent

    def iter_extents(self, fork: ForkData, needed_bytes: int) -> Iterator[ExtentDescriptor]:
        """
        Yield the extents covering the first needed_bytes of a fork.

        Raises:
            DiscCorruptError: If the extents end before needed_bytes
        """
        needed_blocks = -(-needed_bytes // self.block_size)
        covered = 0

        for extent in fork.extents:
            if covered >= needed_blocks or extent.block_count == 0:
                break
            yield self._check(extent)
            covered += extent.block_count

        while covered < needed_blocks:
            if self._overflow is None:
                raise DiscCorruptError(
                    f"Extents of file {fork.file_id} end before its logical size",
                    expected=needed_blocks, actual=covered)
            self.overflow_lookups += 1
            logger.debug("Overflow lookup file=%d fork=%#x start=%d",
                         fork.file_id, fork.fork_type, covered)
            try:
                run = self._overflow(fork.file_id, fork.fork_type, covered)
            except DiscNotFoundError as e:
                raise DiscCorruptError(
                    f"Missing overflow extents for file {fork.file_id} at block {covered}") from e

            progressed = False
            for extent in run:
                if covered >= needed_blocks or extent.block_count == 0:
                    break
                yield self._check(extent)
                covered += extent.block_count
                progressed = True
            if not progressed:
                raise DiscCorruptError(
                    f"Empty overflow extent record for file {fork.file_id}")

    def read(self, fork: ForkData, offset: int = 0, length: Optional[int] = None) -> bytes:
        """
        Read a byte range of a fork.

        Args:
            fork: Fork to read
            offset: First byte, clamped to the logical size
            length: Byte count, None for everything after offset

        Returns:
            Bytes of the range, never extending past the logical size
        """
        size = fork.logical_size
        offset = max(0, min(offset, size))
        end = size if length is None else min(size, offset + max(0, length))
        if end <= offset:
            return b''

        chunks = []
        position = 0
        for extent in self.iter_extents(fork, end):
            extent_end = position + extent.block_count * self.block_size
            if extent_end > offset:
                low = max(offset, position)
                high = min(end, extent_end)
                physical = (self.base_offset + extent.start_block * self.block_size
                            + (low - position))
                chunks.append(self._reader.read_bytes(physical, high - low))
            position = extent_end
            if position >= end:
                break

        data = b''.join(chunks)
        if len(data) != end - offset:
            raise DiscCorruptError("Fork extents do not cover requested range",
                                   expected=end - offset, actual=len(data))
        return data
