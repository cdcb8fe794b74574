"""Tests for filename sanitization and file id generation."""

from pathlib import Path

from audiobook_organizer.sanitize import generate_file_id, sanitize_filename


class TestSanitizeFilename:
    def test_replaces_unsafe_chars(self):
        assert sanitize_filename('a/b\\c:"d') == "a_b_c_d"

    def test_removes_leading_dots(self):
        assert sanitize_filename("..hidden") == "hidden"

    def test_collapses_underscores(self):
        assert sanitize_filename("a___b") == "a_b"

    def test_collapses_whitespace(self):
        assert sanitize_filename("The   Hobbit") == "The Hobbit"

    def test_dangling_dashes_from_empty_placeholders(self):
        assert sanitize_filename("Tolkien -  - The Hobbit") == "Tolkien - The Hobbit"

    def test_strips_trailing_dash(self):
        assert sanitize_filename("Tolkien - ") == "Tolkien"

    def test_preserves_normal_names(self):
        assert sanitize_filename("chapter_01.mp3") == "chapter_01.mp3"

    def test_truncation_preserves_extension(self):
        long_name = "a" * 300 + ".mp3"
        result = sanitize_filename(long_name)
        assert result.endswith(".mp3")
        assert len(result.encode("utf-8")) <= 255

    def test_truncation_without_extension(self):
        result = sanitize_filename("a" * 300)
        assert len(result.encode("utf-8")) <= 255


class TestGenerateFileId:
    def test_deterministic(self):
        assert generate_file_id("/lib/a.mp3") == generate_file_id(Path("/lib/a.mp3"))

    def test_length_and_hex(self):
        h = generate_file_id("/lib/a.mp3")
        assert len(h) == 16
        assert all(c in "0123456789abcdef" for c in h)

    def test_different_paths_differ(self):
        assert generate_file_id("/lib/a.mp3") != generate_file_id("/lib/b.mp3")
