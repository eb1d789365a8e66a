"""
Bit-level decoding primitives for CHD v5 hunk maps.

The compressed hunk map is an MSB-first bitstream: a canonical Huffman
tree stored with run-length encoded code lengths, followed by the coded
compression type of every hunk and the per-hunk length/offset/CRC fields.
"""

import logging
from typing import Dict, List, Tuple

from .image_formats import DiscCorruptError

logger = logging.getLogger(__name__)


class BitReader:
    """
    MSB-first bit reader over a byte buffer.

    Reads past the end of the buffer return zero bits; overflowed reports
    whether that happened so callers can reject truncated streams.
    """

    def __init__(self, data: bytes):
        self._data = bytes(data)
        self._bitpos = 0

    @property
    def overflowed(self) -> bool:
        """True if more bits were consumed than the buffer holds."""
        return self._bitpos > len(self._data) * 8

    def read(self, numbits: int) -> int:
        """Read numbits bits as an unsigned integer."""
        if numbits == 0:
            return 0
        start = self._bitpos
        end = start + numbits
        first_byte = start >> 3
        last_byte = (end + 7) >> 3
        chunk = self._data[first_byte:last_byte]
        chunk += b'\x00' * (last_byte - first_byte - len(chunk))
        value = int.from_bytes(chunk, 'big')
        value >>= (last_byte << 3) - end
        self._bitpos = end
        return value & ((1 << numbits) - 1)


class HuffmanDecoder:
    """
    Canonical Huffman decoder with a code length limit.

    Attributes:
        num_codes: Size of the symbol alphabet
        max_bits: Longest permitted code
    """

    def __init__(self, num_codes: int, max_bits: int):
        self.num_codes = num_codes
        self.max_bits = max_bits
        self._lengths: List[int] = [0] * num_codes
        self._codes: Dict[Tuple[int, int], int] = {}

    def import_tree_rle(self, bits: BitReader) -> None:
        """
        Read RLE-encoded code lengths and build the code table.

        A length value of 1 is an escape: a following 1 is a literal 1,
        otherwise the following value repeats (next value + 3) times.
        """
        if self.max_bits >= 16:
            field_bits = 5
        elif self.max_bits >= 8:
            field_bits = 4
        else:
            field_bits = 3

        node = 0
        while node < self.num_codes:
            length = bits.read(field_bits)
            if length != 1:
                self._lengths[node] = length
                node += 1
                continue
            length = bits.read(field_bits)
            if length == 1:
                self._lengths[node] = length
                node += 1
                continue
            repeat = bits.read(field_bits) + 3
            if node + repeat > self.num_codes:
                raise DiscCorruptError("Huffman tree run overflows alphabet",
                                       expected=self.num_codes, actual=node + repeat)
            for _ in range(repeat):
                self._lengths[node] = length
                node += 1

        self._assign_canonical_codes()

    def _assign_canonical_codes(self) -> None:
        histogram = [0] * 33
        for length in self._lengths:
            if length > self.max_bits:
                raise DiscCorruptError("Huffman code longer than limit",
                                       expected=self.max_bits, actual=length)
            histogram[length] += 1

        start = 0
        for length in range(32, 0, -1):
            total = start + histogram[length]
            next_start = total >> 1
            if length != 1 and next_start * 2 != total:
                raise DiscCorruptError("Inconsistent Huffman code lengths")
            histogram[length] = start
            start = next_start

        self._codes = {}
        for symbol, length in enumerate(self._lengths):
            if length > 0:
                self._codes[(length, histogram[length])] = symbol
                histogram[length] += 1

    def decode(self, bits: BitReader) -> int:
        """Decode one symbol."""
        code = 0
        for length in range(1, self.max_bits + 1):
            code = (code << 1) | bits.read(1)
            symbol = self._codes.get((length, code))
            if symbol is not None:
                return symbol
        raise DiscCorruptError("Invalid Huffman code in bitstream")
