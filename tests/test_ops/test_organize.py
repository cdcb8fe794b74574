"""Tests for ops/organize.py -- pattern rendering, rename and move."""

from pathlib import Path

import pytest

from audiobook_organizer.models import AudiobookFile, AudiobookMetadata
from audiobook_organizer.ops.organize import (
    generate_new_filename,
    move_file,
    rename_file,
    render_pattern,
)

PATTERN = "{Author} - {Series} {SeriesPosition} - {Title}"


def _audio(path: Path, metadata: AudiobookMetadata | None = None) -> AudiobookFile:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(b"audio")
    f = AudiobookFile.from_path(path)
    f.metadata = metadata
    return f


class TestRenderPattern:
    def test_full_series(self):
        md = AudiobookMetadata(
            title="Equal Rites", authors=["Terry Pratchett"], series="Discworld", series_position="3",
        )
        assert render_pattern(md, PATTERN) == "Terry Pratchett - Discworld 3 - Equal Rites"

    def test_no_series_drops_placeholders_and_separator(self):
        md = AudiobookMetadata(title="The Hobbit", authors=["J.R.R. Tolkien"])
        assert render_pattern(md, PATTERN) == "J.R.R. Tolkien - The Hobbit"

    def test_series_without_position(self):
        md = AudiobookMetadata(title="Equal Rites", authors=["Terry Pratchett"], series="Discworld")
        assert render_pattern(md, PATTERN) == "Terry Pratchett - Discworld - Equal Rites"

    def test_other_placeholders(self):
        md = AudiobookMetadata(
            title="Good Omens",
            authors=["Terry Pratchett", "Neil Gaiman"],
            published_date="1990-05-01",
            publisher="Gollancz",
        )
        assert render_pattern(md, "{Authors} ({Year}) {Publisher}") == (
            "Terry Pratchett, Neil Gaiman (1990) Gollancz"
        )


class TestGenerateNewFilename:
    def test_keeps_extension_and_sanitizes(self):
        f = AudiobookFile(path=Path("/lib/x.m4b"), filename="x", extension=".m4b")
        md = AudiobookMetadata(title="Who: Me?", authors=["A/B"])
        assert generate_new_filename(f, PATTERN, md) == "A_B - Who_ Me_.m4b"

    def test_without_metadata_unchanged(self):
        f = AudiobookFile(path=Path("/lib/x.mp3"), filename="x", extension=".mp3")
        assert generate_new_filename(f, PATTERN) == "x.mp3"

    def test_uses_file_metadata_by_default(self):
        f = AudiobookFile(
            path=Path("/lib/x.mp3"), filename="x", extension=".mp3",
            metadata=AudiobookMetadata(title="Dune", authors=["Frank Herbert"]),
        )
        assert generate_new_filename(f, PATTERN) == "Frank Herbert - Dune.mp3"


class TestRenameFile:
    def test_renames(self, tmp_path):
        f = _audio(tmp_path / "old.mp3")
        dest = rename_file(f, "new.mp3")
        assert dest == tmp_path / "new.mp3"
        assert dest.exists()
        assert not (tmp_path / "old.mp3").exists()

    def test_dry_run_leaves_file(self, tmp_path):
        f = _audio(tmp_path / "old.mp3")
        dest = rename_file(f, "new.mp3", dry_run=True)
        assert dest == tmp_path / "new.mp3"
        assert (tmp_path / "old.mp3").exists()
        assert not dest.exists()

    def test_same_name_is_noop(self, tmp_path):
        f = _audio(tmp_path / "same.mp3")
        assert rename_file(f, "same.mp3") == f.path

    def test_refuses_to_overwrite(self, tmp_path):
        f = _audio(tmp_path / "old.mp3")
        _audio(tmp_path / "taken.mp3")
        with pytest.raises(FileExistsError):
            rename_file(f, "taken.mp3")


class TestMoveFile:
    def test_moves_and_prunes_empty_parents(self, tmp_path):
        root = tmp_path / "lib"
        f = _audio(root / "inbox" / "nested" / "book.mp3")
        dest = move_file(f, root / "sorted", library_root=root)

        assert dest == root / "sorted" / "book.mp3"
        assert dest.exists()
        assert not (root / "inbox").exists()
        assert root.exists()

    def test_dest_filename(self, tmp_path):
        f = _audio(tmp_path / "a" / "book.mp3")
        dest = move_file(f, tmp_path / "b", dest_filename="renamed.mp3")
        assert dest.name == "renamed.mp3"
        assert dest.exists()

    def test_dry_run(self, tmp_path):
        f = _audio(tmp_path / "a" / "book.mp3")
        dest = move_file(f, tmp_path / "b", dry_run=True)
        assert f.path.exists()
        assert not dest.exists()

    def test_refuses_to_overwrite(self, tmp_path):
        f = _audio(tmp_path / "a" / "book.mp3")
        _audio(tmp_path / "b" / "book.mp3")
        with pytest.raises(FileExistsError):
            move_file(f, tmp_path / "b")
