"""
Unit tests for the generic B-tree engine.

Uses synthetic trees keyed by 32-bit integers so the engine is tested
independently of the HFS and HFS+ key formats.
"""

import struct

import pytest

from disc_workbench.filesystems.btree import BTree, NodeKind, parse_header_node
from disc_workbench.imaging.image_formats import DiscCorruptError, DiscNotFoundError
from tests.fixtures import build_btree


def int_key(value):
    return struct.pack('>L', value)


def decode_int_key(data):
    return int.from_bytes(data[:4], 'big')


def compare_ints(a, b):
    return (a > b) - (a < b)


def payload_for(value):
    return struct.pack('>L', value) * 25


def make_tree(data):
    return BTree(lambda offset, length: data[offset:offset + length],
                 decode_int_key, compare_ints)


def three_level_tree_bytes(**kwargs):
    """200 even keys with 100-byte payloads: four records per leaf."""
    entries = [(int_key(k), payload_for(k)) for k in range(0, 400, 2)]
    return build_btree(entries, big_keys=False, **kwargs)


class TestHeaderNode:
    """Test header node parsing."""

    def test_header_fields(self):
        """Test depth, root and record counts of a three-level tree."""
        tree = make_tree(three_level_tree_bytes())

        assert tree.header.depth == 3
        assert tree.header.leaf_records == 200
        assert tree.header.first_leaf == 1
        assert tree.header.node_size == 512
        assert not tree.header.big_keys

    def test_not_a_header_node(self):
        """Test that node 0 must be a header node."""
        with pytest.raises(DiscCorruptError):
            parse_header_node(bytes(512))

    def test_bad_node_size(self):
        """Test that non power-of-two node sizes are corrupt."""
        data = bytearray(three_level_tree_bytes())
        struct.pack_into('>H', data, 14 + 18, 1000)

        with pytest.raises(DiscCorruptError):
            make_tree(bytes(data))


class TestSearch:
    """Test point lookups."""

    def test_find_every_key(self):
        """Test that every stored key is found with its payload."""
        tree = make_tree(three_level_tree_bytes())

        for key in (0, 2, 100, 250, 398):
            assert tree.search(key) == payload_for(key)

    def test_missing_keys(self):
        """Test that absent keys raise NotFound."""
        tree = make_tree(three_level_tree_bytes())

        for key in (1, 151, 399, 1000):
            with pytest.raises(DiscNotFoundError):
                tree.search(key)

    def test_fixed_length_index_keys(self):
        """Test index records padded to the maximum key length."""
        tree = make_tree(three_level_tree_bytes(variable_index_keys=False, max_key_length=10))

        assert not tree.header.variable_index_keys
        assert tree.search(222) == payload_for(222)

    def test_empty_tree(self):
        """Test that lookups in an empty tree raise NotFound."""
        tree = make_tree(build_btree([], big_keys=False))

        assert tree.header.depth == 0
        with pytest.raises(DiscNotFoundError):
            tree.search(0)


class TestScan:
    """Test forward range scans."""

    def test_range_across_leaves(self):
        """Test a range that spans several sibling leaves."""
        tree = make_tree(three_level_tree_bytes())

        keys = [key for key, _ in tree.scan(101, lambda k: k < 150)]
        assert keys == list(range(102, 150, 2))

    def test_full_scan_in_order(self):
        """Test that a full scan yields every record in key order."""
        tree = make_tree(three_level_tree_bytes())

        records = list(tree.scan(0, lambda k: True))
        assert [key for key, _ in records] == list(range(0, 400, 2))
        assert records[5][1] == payload_for(10)

    def test_scan_empty_tree(self):
        """Test that scanning an empty tree yields nothing."""
        tree = make_tree(build_btree([], big_keys=False))

        assert list(tree.scan(0, lambda k: True)) == []

    def test_leaf_keys_out_of_order(self):
        """Test that descending keys within a leaf are corrupt."""
        entries = [(int_key(5), b'five'), (int_key(3), b'three')]
        tree = make_tree(build_btree(entries, big_keys=False))

        with pytest.raises(DiscCorruptError):
            list(tree.scan(0, lambda k: True))

    def test_sibling_cycle(self):
        """Test that a leaf chain looping back is detected."""
        data = bytearray(three_level_tree_bytes())
        tree = make_tree(bytes(data))
        last_leaf = tree.header.last_leaf
        struct.pack_into('>L', data, last_leaf * 512, 1)
        tree = make_tree(bytes(data))

        with pytest.raises(DiscCorruptError):
            list(tree.scan(0, lambda k: True))


class TestReadNode:
    """Test node-level validation."""

    def test_leaf_node(self):
        """Test parsing the first leaf."""
        tree = make_tree(three_level_tree_bytes())
        node = tree.read_node(1)

        assert node.kind == NodeKind.LEAF
        assert node.records[0][0] == 0
        assert node.forward_link == 2

    def test_index_out_of_range(self):
        """Test that node indices past the file are corrupt."""
        tree = make_tree(three_level_tree_bytes())

        with pytest.raises(DiscCorruptError):
            tree.read_node(tree.header.total_nodes)

    def test_revisit(self):
        """Test that a traversal may not read a node twice."""
        tree = make_tree(three_level_tree_bytes())
        visited = set()
        tree.read_node(3, visited)

        with pytest.raises(DiscCorruptError):
            tree.read_node(3, visited)

    def test_offset_table_out_of_order(self):
        """Test that a record offset table that runs backwards is corrupt."""
        data = bytearray(three_level_tree_bytes())
        struct.pack_into('>H', data, 2 * 512 - 4, 8)

        with pytest.raises(DiscCorruptError):
            make_tree(bytes(data)).read_node(1)
