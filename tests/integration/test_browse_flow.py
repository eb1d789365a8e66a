"""
Integration tests for the browse workflow.

Tests complete open -> detect -> mount -> list -> read sessions over image
files written to a temporary directory, and the command line on top of
them.
"""

import pytest

from disc_workbench.core import settings as settings_module
from disc_workbench.core.settings import Settings
from disc_workbench.filesystems.entry import find_entry, walk
from disc_workbench.filesystems.mount import mount
from disc_workbench.imaging.format_registry import open_image
from disc_workbench.imaging.image_formats import (
    DiscFormat,
    DiscNotFoundError,
    DiscReadError,
    DiscUnsupportedError,
    FilesystemType,
)
from disc_workbench.main import main
from disc_workbench.utils.context_managers import DiscSession
from tests.fixtures import (
    DEEP_TXT,
    NOTES_TEXT,
    README_TEXT,
    SECTOR,
    SYSTEM_CNF,
    TRACK_DAT,
    build_apm_image,
    build_hfsplus_volume,
    create_game_iso_bytes,
    create_udf_image,
    hfsplus_sample_tree,
    write_bincue,
    write_cd_chd,
    write_compressed_chd,
)


@pytest.fixture(autouse=True)
def isolated_settings(tmp_path_factory, monkeypatch):
    config_dir = tmp_path_factory.mktemp("config")
    monkeypatch.setattr(settings_module, "get_settings_dir", lambda: config_dir)
    Settings.reset_instance()
    yield config_dir
    Settings.reset_instance()


@pytest.fixture
def iso_path(tmp_path):
    path = tmp_path / "game.iso"
    path.write_bytes(create_game_iso_bytes(joliet=True))
    return path


@pytest.fixture
def mac_path(tmp_path):
    path = tmp_path / "mac.iso"
    path.write_bytes(build_apm_image(build_hfsplus_volume(hfsplus_sample_tree())))
    return path


class TestContainers:
    """Test the same volume through every container."""

    def test_plain_iso(self, iso_path):
        """Test a Joliet ISO opened from disk."""
        with DiscSession(iso_path) as session:
            fs = session.filesystem
            assert session.reader.format == DiscFormat.ISO
            assert fs.filesystem_type == FilesystemType.JOLIET
            assert fs.read_file(find_entry(fs, "/SYSTEM.CNF")) == SYSTEM_CNF

    @pytest.mark.parametrize("mode", ["MODE1/2352", "MODE2/2352", "MODE1/2048"])
    def test_bincue(self, tmp_path, mode):
        """Test the data track of a two-track BIN/CUE pair."""
        cue = write_bincue(tmp_path, create_game_iso_bytes(), mode=mode)

        with open_image(str(cue)) as reader:
            assert reader.format == DiscFormat.BIN_CUE
            assert len(reader.tracks) == 2
            fs = mount(reader)
            assert fs.volume_name == "MYGAME"
            assert fs.read_file(find_entry(fs, "/DATA/TRACK01.DAT")) == TRACK_DAT

    def test_compressed_chd(self, tmp_path):
        """Test a zlib-compressed CHD holding an ISO volume."""
        path = write_compressed_chd(tmp_path / "game.chd", create_game_iso_bytes())

        with DiscSession(path) as session:
            fs = session.filesystem
            assert session.reader.format == DiscFormat.CHD
            assert fs.read_file(find_entry(fs, "/DATA/SUB/DEEP.TXT")) == DEEP_TXT

    def test_cd_chd(self, tmp_path):
        """Test the data track of a CD CHD with an audio track."""
        path = write_cd_chd(tmp_path / "game.chd", create_game_iso_bytes())

        with DiscSession(path) as session:
            fs = session.filesystem
            assert len(session.reader.tracks) == 2
            assert fs.read_file(find_entry(fs, "/SYSTEM.CNF")) == SYSTEM_CNF

    def test_udf_image(self, tmp_path):
        """Test a UDF volume opened by extension."""
        path = tmp_path / "movie.iso"
        path.write_bytes(create_udf_image())

        with DiscSession(path) as session:
            assert session.filesystem.filesystem_type == FilesystemType.UDF

    def test_partitioned_hfsplus(self, mac_path):
        """Test an HFS+ volume inside an Apple Partition Map."""
        with DiscSession(mac_path) as session:
            fs = session.filesystem
            assert fs.filesystem_type == FilesystemType.HFS_PLUS
            assert fs.read_file(find_entry(fs, "/ReadMe")) == README_TEXT
            assert fs.read_file(find_entry(fs, "/Documents/Notes.txt")) == NOTES_TEXT

    def test_walk_whole_volume(self, mac_path):
        """Test that every file of a walk can be read."""
        with DiscSession(mac_path) as session:
            fs = session.filesystem
            files = [child for _, children in walk(fs) for child in children if child.is_file]

            assert len(files) == 44
            for entry in files:
                assert len(fs.read_file(entry)) == entry.size


class TestSession:
    """Test session ownership of the reader."""

    def test_reader_closed_on_exit(self, iso_path):
        """Test that leaving the session releases the reader."""
        session = DiscSession(iso_path)
        with session:
            reader = session.reader
        assert session.reader is None
        assert session.filesystem is None
        with pytest.raises(DiscReadError):
            reader.read(16)

    def test_reader_closed_on_mount_failure(self, tmp_path):
        """Test that a failed mount does not leak the reader."""
        path = tmp_path / "blank.iso"
        path.write_bytes(bytes(300 * SECTOR))
        session = DiscSession(path)

        with pytest.raises(DiscUnsupportedError):
            session.__enter__()
        assert session.reader is None

    def test_missing_file_in_session(self, iso_path):
        """Test that NotFound leaves the session usable."""
        with DiscSession(iso_path) as session:
            with pytest.raises(DiscNotFoundError):
                find_entry(session.filesystem, "/NOPE")
            assert session.filesystem.list_directory()


class TestCommandLine:
    """Test commands and exit codes."""

    def test_info(self, iso_path, capsys):
        """Test the info command."""
        assert main(["info", str(iso_path)]) == 0
        output = capsys.readouterr().out

        assert "MYGAME" in output
        assert "Joliet" in output

    def test_ls(self, iso_path, capsys):
        """Test listing a subdirectory."""
        assert main(["ls", str(iso_path), "/DATA"]) == 0
        output = capsys.readouterr().out

        assert "TRACK01.DAT" in output
        assert "SUB/" in output

    def test_tree(self, mac_path, capsys):
        """Test the recursive tree."""
        assert main(["tree", str(mac_path), "/Documents"]) == 0

        assert "Notes.txt" in capsys.readouterr().out

    def test_tracks(self, tmp_path, capsys):
        """Test the track table of a BIN/CUE image."""
        cue = write_bincue(tmp_path, create_game_iso_bytes())

        assert main(["tracks", str(cue)]) == 0
        assert "AUDIO" in capsys.readouterr().out

    def test_extract_file(self, iso_path, tmp_path):
        """Test extracting one file."""
        out = tmp_path / "out"

        assert main(["extract", str(iso_path), "/SYSTEM.CNF", "-o", str(out)]) == 0
        assert (out / "SYSTEM.CNF").read_bytes() == SYSTEM_CNF

    def test_extract_directory(self, iso_path, tmp_path):
        """Test extracting a directory tree."""
        out = tmp_path / "out"

        assert main(["extract", str(iso_path), "/DATA", "-o", str(out)]) == 0
        assert (out / "DATA" / "TRACK01.DAT").read_bytes() == TRACK_DAT
        assert (out / "DATA" / "SUB" / "DEEP.TXT").read_bytes() == DEEP_TXT

    def test_filesystem_option(self, iso_path, capsys):
        """Test forcing the Primary hierarchy on a Joliet image."""
        assert main(["--filesystem", "iso9660", "info", str(iso_path)]) == 0

        assert "ISO 9660" in capsys.readouterr().out

    def test_usage_error(self):
        """Test that bad arguments exit with 1."""
        assert main(["frobnicate"]) == 1

    def test_missing_image(self, tmp_path):
        """Test that a missing image exits with the IO code."""
        assert main(["info", str(tmp_path / "nope.iso")]) == 2

    def test_corrupt_image(self, tmp_path):
        """Test that an unterminated descriptor set exits with the Corrupt code."""
        image = bytearray(create_game_iso_bytes())
        image[17 * SECTOR:18 * SECTOR] = bytes(SECTOR)
        path = tmp_path / "bad.iso"
        path.write_bytes(bytes(image))

        assert main(["info", str(path)]) == 3

    def test_unrecognized_volume(self, tmp_path):
        """Test that a blank image exits with the Unsupported code."""
        path = tmp_path / "blank.iso"
        path.write_bytes(bytes(300 * SECTOR))

        assert main(["info", str(path)]) == 4

    def test_missing_path(self, iso_path, capsys):
        """Test that an unknown path exits with the NotFound code."""
        assert main(["ls", str(iso_path), "/NOPE"]) == 5

        assert "does not exist" in capsys.readouterr().err
