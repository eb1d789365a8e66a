"""
Filesystem capability interface and directory entries.

Every mounted filesystem exposes the same small capability set: list the
children of a directory and read the bytes of a file. Entries are
immutable values created per listing; their identifier is opaque to
callers and re-locates the on-disc record for a later read.

Example Usage:
    fs = mount(reader)
    for entry in fs.list_directory():
        if entry.is_file:
            data = fs.read_file(entry)
"""

import logging
from dataclasses import dataclass
from enum import Enum, auto
from typing import Any, Iterator, List, Optional, Protocol, Tuple, runtime_checkable

from disc_workbench.imaging.image_formats import DiscNotFoundError, FilesystemType

logger = logging.getLogger(__name__)


class EntryType(Enum):
    """Kind of a directory entry."""
    FILE = auto()
    DIRECTORY = auto()


@dataclass(frozen=True)
class FileEntry:
    """
    One directory entry.

    Attributes:
        name: Display name (decoded, normalized)
        entry_type: FILE or DIRECTORY
        size: Logical size in bytes (0 for directories on HFS)
        identifier: Opaque, hashable locator used by read_file and
            list_directory (a CNID, a CNID with its catalog name units, or
            an extent tuple)
        parent_id: Identifier of the containing directory
        path: Absolute path from the volume root, or relative to the
            listed directory when it was listed by bare identifier
    """
    name: str
    entry_type: EntryType
    size: int
    identifier: Any
    parent_id: Any = None
    path: str = "/"

    @property
    def is_directory(self) -> bool:
        return self.entry_type == EntryType.DIRECTORY

    @property
    def is_file(self) -> bool:
        return self.entry_type == EntryType.FILE

    def size_string(self) -> str:
        """Size formatted for display (e.g. '9.8 MB')."""
        if self.size < 1024:
            return f"{self.size} bytes"
        size = self.size / 1024
        for unit in ('KB', 'MB'):
            if size < 1024:
                return f"{size:.1f} {unit}"
            size /= 1024
        return f"{size:.1f} GB"


def child_path(parent_path: str, name: str) -> str:
    """Join a directory path and a child name; an empty parent path keeps name relative."""
    if not parent_path:
        return name
    return parent_path.rstrip('/') + '/' + name


def listing_target(parent: Any, root: FileEntry) -> Tuple[Any, str]:
    """
    Split a list_directory argument into (identifier, path).

    A FileEntry brings its own path. A bare identifier is only known to
    sit at the root when it is the root's; any other gets an empty path
    so its children are named relative to it.
    """
    if parent is None:
        return root.identifier, root.path
    if isinstance(parent, FileEntry):
        return parent.identifier, parent.path
    return parent, root.path if parent == root.identifier else ""


@runtime_checkable
class Filesystem(Protocol):
    """Capability contract of every mounted filesystem."""

    filesystem_type: FilesystemType

    @property
    def volume_name(self) -> str:
        ...

    def root(self) -> FileEntry:
        ...

    def list_directory(self, parent: Any = None) -> List[FileEntry]:
        ...

    def read_file(self, entry: FileEntry) -> bytes:
        ...

    def read_file_range(self, entry: FileEntry, offset: int, length: int) -> bytes:
        ...


# =============================================================================
# Navigation Helpers
# =============================================================================

def find_entry(fs: Filesystem, path: str) -> FileEntry:
    """
    Resolve an absolute path by listing each component's parent.

    Args:
        fs: Mounted filesystem
        path: Path such as "/DIR/FILE.BIN"; "/" is the root

    Raises:
        DiscNotFoundError: If a component is missing or is not a directory
    """
    entry = fs.root()
    for component in [part for part in path.split('/') if part]:
        if not entry.is_directory:
            raise DiscNotFoundError(f"{entry.path} is not a directory", identifier=path)
        for child in fs.list_directory(entry):
            if child.name == component:
                entry = child
                break
        else:
            raise DiscNotFoundError(f"No entry named '{component}' in {entry.path}",
                                    identifier=path)
    return entry


def walk(fs: Filesystem, top: Optional[FileEntry] = None
         ) -> Iterator[Tuple[FileEntry, List[FileEntry]]]:
    """
    Depth-first walk yielding (directory, children) pairs.

    Directories already visited are not entered again.
    """
    top = top or fs.root()
    stack = [top]
    seen = set()
    while stack:
        directory = stack.pop()
        if directory.identifier in seen:
            logger.warning("Directory %s visited twice, skipping", directory.path)
            continue
        seen.add(directory.identifier)
        children = fs.list_directory(directory)
        yield directory, children
        stack.extend(reversed([child for child in children if child.is_directory]))
