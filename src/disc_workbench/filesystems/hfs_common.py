"""
Catalog-driven browsing shared by HFS and HFS+.

Both filesystems keep every file and folder in a catalog B-tree keyed by
(parent CNID, name) and spill fork extents that do not fit inline into an
extents-overflow B-tree. Only the on-disc encodings differ; they arrive
here bundled in a CatalogFormat.
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from disc_workbench.imaging.image_formats import (
    DiscCorruptError,
    DiscNotFoundError,
    FilesystemType,
)

from .btree import BTree, KeyComparator, KeyDecoder, RecordDecoder, parse_header_node
from .catalog import (
    EXTENTS_FILE_ID,
    ROOT_FOLDER_ID,
    CatalogKey,
    ExtentKey,
    FileRecord,
    FolderRecord,
    ThreadRecord,
    compare_extent_keys,
)
from .entry import EntryType, FileEntry, child_path, listing_target
from .extents import ExtentDescriptor, ExtentResolver, ForkData

logger = logging.getLogger(__name__)


MAX_FOLDER_DEPTH = 256


@dataclass(frozen=True)
class CatalogFormat:
    """
    On-disc encodings of one HFS variant.

    Attributes:
        catalog_key: Catalog key decoder
        catalog_record: Catalog record decoder
        catalog_compare: Catalog key comparator
        extent_key: Extents-overflow key decoder
        extent_record: Extents-overflow record decoder
        macroman: True if names are MacRoman bytes
    """
    catalog_key: KeyDecoder
    catalog_record: RecordDecoder
    catalog_compare: KeyComparator
    extent_key: KeyDecoder
    extent_record: RecordDecoder
    macroman: bool = False


def fork_reader(resolver: ExtentResolver, fork: ForkData) -> Callable[[int, int], bytes]:
    """Byte reader over a fork that fails on reads past its logical size."""
    def read(offset: int, length: int) -> bytes:
        data = resolver.read(fork, offset, length)
        if len(data) != length:
            raise DiscCorruptError(f"B-tree file {fork.file_id} read past its end",
                                   expected=length, actual=len(data))
        return data
    return read


def read_tree_header(resolver: ExtentResolver, fork: ForkData):
    """Parse the header node of a B-tree file without building the tree."""
    return parse_header_node(fork_reader(resolver, fork)(0, 512))


class CatalogFilesystem:
    """
    Directory listing and file reads over a catalog B-tree.

    Subclasses parse their volume header, then call _open_trees() with the
    resolver, the special-file forks and the variant's CatalogFormat.
    """

    filesystem_type = FilesystemType.UNKNOWN

    def __init__(self):
        self._volume_name = ""
        self._resolver: Optional[ExtentResolver] = None
        self._catalog: Optional[BTree] = None
        self._extents: Optional[BTree] = None
        self._format: Optional[CatalogFormat] = None

    def _open_trees(self, resolver: ExtentResolver, plain_resolver: ExtentResolver,
                    catalog_fork: ForkData, extents_fork: ForkData,
                    catalog_format: CatalogFormat,
                    catalog_compare: Optional[KeyComparator] = None) -> None:
        """
        Build the extents-overflow and catalog trees.

        Args:
            resolver: Resolver used for catalog and file reads; its overflow
                lookup is pointed at the extents tree
            plain_resolver: Resolver without overflow, for the extents file
            catalog_fork: Catalog file fork
            extents_fork: Extents-overflow file fork
            catalog_format: Variant encodings
            catalog_compare: Override for the catalog comparator
        """
        self._resolver = resolver
        self._format = catalog_format
        if extents_fork.logical_size:
            self._extents = BTree(fork_reader(plain_resolver, extents_fork),
                                  catalog_format.extent_key, compare_extent_keys,
                                  catalog_format.extent_record)
        resolver.set_overflow(self._overflow_lookup)
        self._catalog = BTree(fork_reader(resolver, catalog_fork),
                              catalog_format.catalog_key,
                              catalog_compare or catalog_format.catalog_compare,
                              catalog_format.catalog_record)

    @property
    def volume_name(self) -> str:
        """Volume name."""
        return self._volume_name

    @property
    def overflow_lookups(self) -> int:
        """Extents-overflow lookups issued by file reads so far."""
        return self._resolver.overflow_lookups

    # =========================================================================
    # Catalog Access
    # =========================================================================

    def _overflow_lookup(self, file_id: int, fork_type: int,
                         start_block: int) -> List[ExtentDescriptor]:
        if file_id == EXTENTS_FILE_ID:
            raise DiscCorruptError("Extents file needs overflow extents")
        if self._extents is None:
            raise DiscNotFoundError("Volume has no extents overflow file",
                                    identifier=(file_id, fork_type, start_block))
        return self._extents.search(ExtentKey(file_id, fork_type, start_block))

    def _thread(self, cnid: int) -> ThreadRecord:
        record = self._catalog.search(CatalogKey(cnid))
        if not isinstance(record, ThreadRecord):
            raise DiscCorruptError(f"Catalog thread key of {cnid} holds a non-thread record")
        return record

    def path_of(self, cnid: int) -> str:
        """Absolute path of a folder or file by walking thread records."""
        parts = []
        visited = set()
        while cnid != ROOT_FOLDER_ID:
            if cnid in visited or len(visited) > MAX_FOLDER_DEPTH:
                raise DiscCorruptError(f"Catalog thread chain loops at CNID {cnid}")
            visited.add(cnid)
            thread = self._thread(cnid)
            parts.append(thread.name)
            cnid = thread.parent_id
        return "/" + "/".join(reversed(parts))

    def root(self) -> FileEntry:
        return FileEntry("/", EntryType.DIRECTORY, 0, ROOT_FOLDER_ID, None, "/")

    def list_directory(self, parent: Any = None) -> List[FileEntry]:
        """
        List a folder in catalog key order.

        Paths always come from the folder's thread records, so a bare
        CNID lists with absolute paths too.

        Args:
            parent: Folder entry or CNID; None for the root folder

        Raises:
            DiscNotFoundError: If no folder has the CNID
            DiscCorruptError: On malformed catalog nodes
        """
        parent_id, _ = listing_target(parent, self.root())
        if not isinstance(parent_id, int):
            raise DiscNotFoundError("Not a catalog node ID", identifier=parent_id)
        thread = self._thread(parent_id)
        if not thread.is_folder:
            raise DiscNotFoundError(f"CNID {parent_id} is not a folder", identifier=parent_id)
        parent_path = self.path_of(parent_id)

        entries = []
        for key, record in self._catalog.scan(CatalogKey(parent_id),
                                              lambda k: k.parent_id == parent_id):
            path = child_path(parent_path, key.name)
            if isinstance(record, FolderRecord):
                entries.append(FileEntry(key.name, EntryType.DIRECTORY, 0,
                                         record.cnid, parent_id, path))
            elif isinstance(record, FileRecord):
                # The display name is lossy; reads search with the on-disc units
                entries.append(FileEntry(key.name, EntryType.FILE,
                                         record.data_fork.logical_size,
                                         (record.cnid, key.units), parent_id, path))
        logger.debug("Listed %d entries in folder %d", len(entries), parent_id)
        return entries

    def _file_record(self, entry: FileEntry) -> FileRecord:
        identifier = entry.identifier
        if not (isinstance(identifier, tuple) and len(identifier) == 2
                and isinstance(entry.parent_id, int)):
            raise DiscNotFoundError(f"Not a catalog file: {entry.path}", identifier=identifier)
        cnid, units = identifier
        record = self._catalog.search(CatalogKey(entry.parent_id, entry.name, tuple(units)))
        if not isinstance(record, FileRecord) or record.cnid != cnid:
            raise DiscNotFoundError(f"No file with CNID {cnid} at {entry.path}",
                                    identifier=entry.identifier)
        return record

    # =========================================================================
    # File Reads
    # =========================================================================

    def read_file(self, entry: FileEntry) -> bytes:
        """Read a file's data fork; returns exactly its logical size."""
        return self._resolver.read(self._file_record(entry).data_fork)

    def read_file_range(self, entry: FileEntry, offset: int, length: int) -> bytes:
        """Read part of a data fork, clamped to its logical size."""
        return self._resolver.read(self._file_record(entry).data_fork, offset, length)

    def read_resource_fork(self, entry: FileEntry) -> bytes:
        """Read a file's resource fork."""
        return self._resolver.read(self._file_record(entry).resource_fork)

