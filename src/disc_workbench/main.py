"""
Main entry point for Disc Workbench.

This module provides the main() function of the disc-workbench command
line: inspect disc images, list and extract their files, and print their
track layout.

Commands:
    - info: Container, filesystem and volume name
    - ls: Directory listing
    - tree: Recursive directory tree
    - extract: Copy a file or directory out of the image
    - tracks: Table of contents of multi-track images
"""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import List, Optional

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from disc_workbench import __version__
from disc_workbench.core.settings import get_settings
from disc_workbench.filesystems.entry import FileEntry, Filesystem, find_entry, walk
from disc_workbench.imaging.image_formats import DiscError, FilesystemType
from disc_workbench.utils.context_managers import DiscSession
from disc_workbench.utils.error_handler import (
    EXIT_SUCCESS,
    EXIT_USAGE,
    describe_error,
    get_exit_code,
)
from disc_workbench.utils.logging import log_error, log_operation, log_performance, setup_logging

logger = logging.getLogger(__name__)

console = Console()
error_console = Console(stderr=True)


# =============================================================================
# Argument Parsing
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    """Build the command line parser."""
    parser = argparse.ArgumentParser(
        prog="disc-workbench",
        description="Browse and extract files from optical disc images "
                    "(ISO, BIN/CUE, CHD; ISO 9660, Joliet, UDF, HFS, HFS+).",
    )
    parser.add_argument('--version', action='version', version=f"%(prog)s {__version__}")
    parser.add_argument('-v', '--verbose', action='store_true',
                        help="Show informational log messages")
    parser.add_argument('--log-file', help="Write a debug log to this file")
    parser.add_argument('--filesystem', action='append', dest='filesystems',
                        choices=[fs_type.value for fs_type in FilesystemType
                                 if fs_type is not FilesystemType.UNKNOWN],
                        help="Filesystem to try (repeat to set the detection order)")
    parser.add_argument('--no-crc', action='store_true',
                        help="Skip CHD map CRC verification")

    commands = parser.add_subparsers(dest='command', required=True)

    info = commands.add_parser('info', help="Show container and volume information")
    info.add_argument('image')

    ls = commands.add_parser('ls', help="List a directory")
    ls.add_argument('image')
    ls.add_argument('path', nargs='?', default='/')

    tree = commands.add_parser('tree', help="Show the directory tree")
    tree.add_argument('image')
    tree.add_argument('path', nargs='?', default='/')

    extract = commands.add_parser('extract', help="Extract a file or directory")
    extract.add_argument('image')
    extract.add_argument('path')
    extract.add_argument('-o', '--output', default='.',
                         help="Destination directory (default: current directory)")

    tracks = commands.add_parser('tracks', help="Show the track layout")
    tracks.add_argument('image')

    return parser


def _session(args: argparse.Namespace) -> DiscSession:
    settings = get_settings()
    if args.filesystems:
        priority = [FilesystemType(name) for name in args.filesystems]
    else:
        priority = settings.detection.priority_types()
    options = settings.reader_options()
    if args.no_crc:
        options['verify_chd_map_crc'] = False
    return DiscSession(args.image, priority,
                       settings.detection.max_volume_descriptors, **options)


# =============================================================================
# Commands
# =============================================================================

def cmd_info(args: argparse.Namespace) -> int:
    with _session(args) as session:
        reader, fs = session.reader, session.filesystem
        table = Table(show_header=False, box=None)
        table.add_row("[bold]Image[/]", str(args.image))
        table.add_row("[bold]Container[/]", reader.format.name)
        table.add_row("[bold]Sectors[/]", f"{reader.total_sectors} x {reader.sector_size} bytes")
        table.add_row("[bold]Filesystem[/]", fs.filesystem_type.display_name)
        table.add_row("[bold]Volume[/]", fs.volume_name or "[dim](unnamed)[/]")
        tracks = getattr(reader, 'tracks', None)
        if tracks:
            table.add_row("[bold]Tracks[/]", str(len(tracks)))
        console.print(table)
    return EXIT_SUCCESS


def cmd_ls(args: argparse.Namespace) -> int:
    with _session(args) as session:
        fs = session.filesystem
        directory = find_entry(fs, args.path)
        if not directory.is_directory:
            entries = [directory]
        else:
            entries = fs.list_directory(directory)

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Name")
        table.add_column("Type")
        table.add_column("Size", justify="right")
        for entry in entries:
            if entry.is_directory:
                table.add_row(f"[bold blue]{entry.name}/[/]", "dir", "")
            else:
                table.add_row(entry.name, "file", entry.size_string())
        console.print(table)
        console.print(f"[dim]{len(entries)} entries[/]")
    return EXIT_SUCCESS


def cmd_tree(args: argparse.Namespace) -> int:
    with _session(args) as session:
        fs = session.filesystem
        top = find_entry(fs, args.path)
        root = Tree(f"[bold]{fs.volume_name or top.path}[/] ({fs.filesystem_type.display_name})")
        branches = {top.identifier: root}
        for directory, children in walk(fs, top):
            branch = branches[directory.identifier]
            for child in children:
                if child.is_directory:
                    branches[child.identifier] = branch.add(f"[bold blue]{child.name}/[/]")
                else:
                    branch.add(f"{child.name} [dim]({child.size_string()})[/]")
        console.print(root)
    return EXIT_SUCCESS


def _safe_name(name: str) -> str:
    name = name.replace('/', '_').replace('\\', '_').replace('\0', '')
    return name if name not in ('', '.', '..') else '_'


def _extract_file(fs: Filesystem, entry: FileEntry, destination: Path) -> int:
    data = fs.read_file(entry)
    destination.write_bytes(data)
    log_operation("extract", f"{entry.path} -> {destination} ({len(data)} bytes)", logging.DEBUG)
    return len(data)


def cmd_extract(args: argparse.Namespace) -> int:
    output = Path(args.output)
    output.mkdir(parents=True, exist_ok=True)
    started = time.monotonic()
    files = 0
    total = 0

    with _session(args) as session:
        fs = session.filesystem
        top = find_entry(fs, args.path)
        if top.is_file:
            total += _extract_file(fs, top, output / _safe_name(top.name))
            files += 1
        else:
            targets = {top.identifier: output / _safe_name(top.name) if top.path != "/" else output}
            for directory, children in walk(fs, top):
                target = targets[directory.identifier]
                target.mkdir(parents=True, exist_ok=True)
                for child in children:
                    destination = target / _safe_name(child.name)
                    if child.is_directory:
                        targets[child.identifier] = destination
                    else:
                        total += _extract_file(fs, child, destination)
                        files += 1

    log_performance("extract", time.monotonic() - started, files=files, bytes=total)
    console.print(f"[bold green]Extracted {files} file(s), {total} bytes to {output}[/]")
    return EXIT_SUCCESS


def cmd_tracks(args: argparse.Namespace) -> int:
    session = _session(args)
    try:
        reader = session.open_reader()
        tracks = getattr(reader, 'tracks', None) or []
        if not tracks:
            console.print("[bold yellow]Image has a single data track.[/]")
            return EXIT_SUCCESS

        table = Table(show_header=True, header_style="bold magenta")
        table.add_column("Track", justify="right")
        table.add_column("Mode")
        table.add_column("Start LBA", justify="right")
        table.add_column("Sectors", justify="right")
        table.add_column("Pregap", justify="right")
        for track in tracks:
            mode = track.mode.label if track.mode is not None else getattr(track, 'type_name', '?')
            table.add_row(str(track.number), mode, str(track.start_lba),
                          str(track.sector_count), str(track.pregap))
        console.print(table)
    finally:
        session.close()
    return EXIT_SUCCESS


COMMANDS = {
    'info': cmd_info,
    'ls': cmd_ls,
    'tree': cmd_tree,
    'extract': cmd_extract,
    'tracks': cmd_tracks,
}


# =============================================================================
# Entry Point
# =============================================================================

def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for Disc Workbench.

    Returns:
        Process exit code (0 on success, 2-5 by error kind)
    """
    parser = build_parser()
    try:
        args = parser.parse_args(argv)
    except SystemExit as e:
        # argparse exits with 2 on usage errors, which is the IO code here
        return EXIT_SUCCESS if e.code == 0 else EXIT_USAGE

    settings = get_settings()
    setup_logging(args.log_file or settings.logging.log_file,
                  level=getattr(logging, settings.logging.level),
                  console_level=logging.INFO if args.verbose else logging.WARNING)

    try:
        return COMMANDS[args.command](args)
    except DiscError as e:
        log_error(args.command, e)
        error_console.print(f"[bold red]Error:[/] {escape(describe_error(e, args.command))}")
        return get_exit_code(e)
    except KeyboardInterrupt:
        error_console.print("[bold yellow]Interrupted[/]")
        return EXIT_USAGE


if __name__ == "__main__":
    sys.exit(main())
