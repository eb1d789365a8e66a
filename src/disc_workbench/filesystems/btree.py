"""
Generic B-tree engine for HFS and HFS+ catalog and extents files.

The node layout (descriptor, records, backwards offset table) and the
header record are shared by both filesystems; key encoding, key ordering
and record payloads differ and are injected as callables.

Key Features:
    - Point lookup by exact key
    - Forward range scan across sibling leaf links
    - Node index bounds checks and per-traversal cycle detection
    - Key order verification while scanning
"""

import logging
import struct
from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Callable, Iterator, List, Optional, Set, Tuple

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
)

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

NODE_DESCRIPTOR_SIZE = 14
NODE_DESCRIPTOR_FORMAT = '>LLbBHH'
HEADER_RECORD_FORMAT = '>HLLLLHHLLHLBBL'
HEADER_RECORD_SIZE = struct.calcsize(HEADER_RECORD_FORMAT)
MIN_NODE_SIZE = 512

# Header attribute bits
ATTR_BIG_KEYS = 0x00000002
ATTR_VARIABLE_INDEX_KEYS = 0x00000004


class NodeKind(IntEnum):
    """B-tree node kinds."""
    LEAF = -1
    INDEX = 0
    HEADER = 1
    MAP = 2


# =============================================================================
# Data Classes
# =============================================================================

@dataclass(frozen=True)
class NodeDescriptor:
    """First 14 bytes of every node."""
    forward_link: int
    backward_link: int
    kind: int
    height: int
    num_records: int


@dataclass(frozen=True)
class BTreeHeader:
    """
    Header record of node 0.

    Attributes:
        depth: Tree depth (0 for an empty tree)
        root_node: Index of the root node
        leaf_records: Total records in leaf nodes
        first_leaf: Index of the first leaf
        last_leaf: Index of the last leaf
        node_size: Bytes per node
        max_key_length: Largest key length
        total_nodes: Nodes in the tree file
        free_nodes: Unused nodes
        key_compare_type: HFSX key comparison type (0xCF folding, 0xBC binary)
        attributes: Header attribute bits
    """
    depth: int
    root_node: int
    leaf_records: int
    first_leaf: int
    last_leaf: int
    node_size: int
    max_key_length: int
    total_nodes: int
    free_nodes: int
    key_compare_type: int = 0
    attributes: int = 0

    @property
    def big_keys(self) -> bool:
        """True if key lengths are 16-bit."""
        return bool(self.attributes & ATTR_BIG_KEYS)

    @property
    def variable_index_keys(self) -> bool:
        """True if index node keys are stored at their actual length."""
        return bool(self.attributes & ATTR_VARIABLE_INDEX_KEYS)


@dataclass
class BTreeNode:
    """
    One parsed node.

    Leaf records hold (key, payload bytes); index records hold
    (key, child node index).
    """
    index: int
    descriptor: NodeDescriptor
    records: List[Tuple[Any, Any]]

    @property
    def kind(self) -> int:
        return self.descriptor.kind

    @property
    def forward_link(self) -> int:
        return self.descriptor.forward_link


def parse_header_node(data: bytes) -> BTreeHeader:
    """Parse node 0 of a B-tree file."""
    if len(data) < NODE_DESCRIPTOR_SIZE + HEADER_RECORD_SIZE:
        raise DiscCorruptError("B-tree header node truncated")
    descriptor = NodeDescriptor(*struct.unpack_from(NODE_DESCRIPTOR_FORMAT, data, 0)[:5])
    if descriptor.kind != NodeKind.HEADER:
        raise DiscCorruptError("B-tree node 0 is not a header node",
                               expected=int(NodeKind.HEADER), actual=descriptor.kind)
    (depth, root, leaf_records, first_leaf, last_leaf, node_size, max_key_length,
     total_nodes, free_nodes, _, _, _, compare_type, attributes) = struct.unpack_from(
        HEADER_RECORD_FORMAT, data, NODE_DESCRIPTOR_SIZE)
    if node_size < MIN_NODE_SIZE or node_size & (node_size - 1):
        raise DiscCorruptError("Invalid B-tree node size", actual=node_size)
    return BTreeHeader(depth, root, leaf_records, first_leaf, last_leaf, node_size,
                       max_key_length, total_nodes, free_nodes, compare_type, attributes)


# =============================================================================
# BTree Class
# =============================================================================

KeyDecoder = Callable[[bytes], Any]
KeyComparator = Callable[[Any, Any], int]
RecordDecoder = Callable[[Any, bytes], Any]


class BTree:
    """
    Signature-driven B-tree walker.

    Args:
        read_bytes: Reads (offset, length) from the B-tree file
        key_decoder: Decodes key bytes (after the length field)
        comparator: Orders two decoded keys (negative, zero, positive)
        record_decoder: Decodes a leaf payload given its key
        big_keys: Force 16-bit key lengths; None uses the header attribute

    Example:
        tree = BTree(fork_reader, decode_key, compare_keys, decode_record)
        record = tree.search(key)
        for key, record in tree.scan(start_key, lambda k: k.parent_id == 2):
            ...
    """

    def __init__(self, read_bytes: Callable[[int, int], bytes],
                 key_decoder: KeyDecoder, comparator: KeyComparator,
                 record_decoder: Optional[RecordDecoder] = None,
                 big_keys: Optional[bool] = None):
        self._read_bytes = read_bytes
        self._key_decoder = key_decoder
        self._compare = comparator
        self._record_decoder = record_decoder or (lambda key, data: data)
        self._header = parse_header_node(read_bytes(0, MIN_NODE_SIZE))
        self._big_keys = self._header.big_keys if big_keys is None else big_keys
        logger.debug("B-tree: depth=%d root=%d nodes=%d node_size=%d",
                     self._header.depth, self._header.root_node,
                     self._header.total_nodes, self._header.node_size)

    @property
    def header(self) -> BTreeHeader:
        """Parsed header record."""
        return self._header

    # =========================================================================
    # Node Parsing
    # =========================================================================

    def read_node(self, index: int, visited: Optional[Set[int]] = None) -> BTreeNode:
        """
        Read and parse one node.

        Args:
            index: Node index
            visited: Nodes already visited by the current traversal

        Raises:
            DiscCorruptError: On out-of-range indices, revisits or
                malformed record tables
        """
        header = self._header
        if not 0 <= index < header.total_nodes:
            raise DiscCorruptError("B-tree node index out of range",
                                   expected=f"< {header.total_nodes}", actual=index)
        if visited is not None:
            if index in visited:
                raise DiscCorruptError(f"B-tree traversal revisits node {index}")
            visited.add(index)

        size = header.node_size
        data = self._read_bytes(index * size, size)
        descriptor = NodeDescriptor(*struct.unpack_from(NODE_DESCRIPTOR_FORMAT, data, 0)[:5])
        logger.debug("Node %d: kind=%d height=%d records=%d",
                     index, descriptor.kind, descriptor.height, descriptor.num_records)

        count = descriptor.num_records
        table_start = size - 2 * (count + 1)
        if table_start < NODE_DESCRIPTOR_SIZE:
            raise DiscCorruptError(f"Node {index} record count too large", actual=count)
        offsets = [struct.unpack_from('>H', data, size - 2 * (i + 1))[0]
                   for i in range(count + 1)]
        bounds = [NODE_DESCRIPTOR_SIZE] + offsets
        if any(b > a for a, b in zip(bounds[1:], bounds)) or offsets[-1] > table_start:
            raise DiscCorruptError(f"Node {index} record offsets out of order")

        records = []
        if descriptor.kind in (NodeKind.LEAF, NodeKind.INDEX):
            is_index = descriptor.kind == NodeKind.INDEX
            for i in range(count):
                records.append(self._split_record(data[offsets[i]:offsets[i + 1]],
                                                  is_index, index))
        return BTreeNode(index, descriptor, records)

    def _split_record(self, record: bytes, is_index: bool, node: int) -> Tuple[Any, Any]:
        if self._big_keys:
            field = 2
            key_length = struct.unpack_from('>H', record, 0)[0] if len(record) >= 2 else None
        else:
            field = 1
            key_length = record[0] if record else None
        if key_length is None:
            raise DiscCorruptError(f"Empty record in node {node}")
        if is_index and not self._header.variable_index_keys:
            key_length = self._header.max_key_length

        data_offset = field + key_length
        data_offset += data_offset & 1
        if data_offset > len(record):
            raise DiscCorruptError(f"Record key overruns node {node}",
                                   expected=f"<= {len(record)}", actual=data_offset)
        key = self._key_decoder(record[field:field + key_length])
        payload = record[data_offset:]
        if is_index:
            if len(payload) < 4:
                raise DiscCorruptError(f"Index record without child pointer in node {node}")
            return key, struct.unpack_from('>L', payload, 0)[0]
        return key, payload

    # =========================================================================
    # Traversal
    # =========================================================================

    def _descend(self, key: Any, visited: Set[int]) -> BTreeNode:
        index = self._header.root_node
        if self._header.depth == 0 or index == 0:
            raise DiscNotFoundError("B-tree is empty", identifier=key)

        height: Optional[int] = None
        while True:
            node = self.read_node(index, visited)
            if height is not None and node.descriptor.height != height:
                raise DiscCorruptError(f"Node {index} has wrong height",
                                       expected=height, actual=node.descriptor.height)
            if node.kind == NodeKind.LEAF:
                return node
            if node.kind != NodeKind.INDEX:
                raise DiscCorruptError(f"Unexpected node kind {node.kind} in descent")
            if not node.records:
                raise DiscCorruptError(f"Index node {index} has no records")

            child = node.records[0][1]
            previous = None
            for record_key, pointer in node.records:
                if previous is not None and self._compare(record_key, previous) <= 0:
                    raise DiscCorruptError(f"Index node {index} keys out of order")
                previous = record_key
                if self._compare(record_key, key) > 0:
                    break
                child = pointer
            index = child
            height = node.descriptor.height - 1
            if height < 1:
                raise DiscCorruptError(f"Index node {node.index} below leaf level")

    def search(self, key: Any) -> Any:
        """
        Point lookup.

        Returns:
            Decoded record whose key equals key

        Raises:
            DiscNotFoundError: If no record has the key
        """
        visited: Set[int] = set()
        leaf = self._descend(key, visited)
        for record_key, payload in leaf.records:
            order = self._compare(record_key, key)
            if order == 0:
                return self._record_decoder(record_key, payload)
            if order > 0:
                break
        raise DiscNotFoundError("Key not in B-tree", identifier=key)

    def scan(self, start_key: Any,
             predicate: Callable[[Any], bool]) -> Iterator[Tuple[Any, Any]]:
        """
        Forward range scan.

        Yields (key, record) for every leaf record at or after start_key,
        following sibling links, until predicate rejects a key.
        """
        visited: Set[int] = set()
        try:
            leaf = self._descend(start_key, visited)
        except DiscNotFoundError:
            return
        previous = None
        while True:
            for record_key, payload in leaf.records:
                if previous is not None and self._compare(record_key, previous) <= 0:
                    raise DiscCorruptError(f"Leaf node {leaf.index} keys out of order")
                previous = record_key
                if self._compare(record_key, start_key) < 0:
                    continue
                if not predicate(record_key):
                    return
                yield record_key, self._record_decoder(record_key, payload)

            if leaf.forward_link == 0:
                return
            leaf = self.read_node(leaf.forward_link, visited)
            if leaf.kind != NodeKind.LEAF:
                raise DiscCorruptError(f"Leaf sibling {leaf.index} is not a leaf",
                                       expected=int(NodeKind.LEAF), actual=leaf.kind)
