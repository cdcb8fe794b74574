"""Tests for ffprobe subprocess wrappers and tag interpretation."""

import json
import subprocess
from pathlib import Path
from unittest.mock import patch

import pytest

from audiobook_organizer.ffprobe import (
    _clean_author_tag,
    duration_to_timestamp,
    extract_author_from_tags,
    extract_file_metadata,
    probe,
    series_from_album,
)


def _mock_result(stdout: str = "", returncode: int = 0) -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(
        args=[], returncode=returncode, stdout=stdout, stderr="",
    )


PROBE_JSON = json.dumps({
    "format": {
        "duration": "3723.5",
        "bit_rate": "64000",
        "tags": {
            "TITLE": "Equal Rites (Unabridged)",
            "ARTIST": "Terry Pratchett, Narrated by Celia Imrie",
            "album": "Discworld Book 3",
            "date": "1987",
            "genre": "Fantasy",
        },
    },
    "streams": [
        {"codec_type": "video"},
        {"codec_type": "audio", "channels": 2, "sample_rate": "44100"},
    ],
})


class TestProbe:
    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_parses_json(self, mock_run):
        mock_run.return_value = _mock_result(PROBE_JSON)
        assert probe(Path("test.mp3"))["format"]["duration"] == "3723.5"

    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_nonzero_exit_is_empty(self, mock_run):
        mock_run.return_value = _mock_result("", returncode=1)
        assert probe(Path("test.mp3")) == {}

    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_garbage_is_empty(self, mock_run):
        mock_run.return_value = _mock_result("not json")
        assert probe(Path("test.mp3")) == {}

    @patch("audiobook_organizer.ffprobe.subprocess.run", side_effect=FileNotFoundError)
    def test_missing_binary_is_empty(self, mock_run):
        assert probe(Path("test.mp3")) == {}


class TestExtractFileMetadata:
    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_builds_metadata(self, mock_run):
        mock_run.return_value = _mock_result(PROBE_JSON)

        md = extract_file_metadata(Path("/lib/equal rites.m4b"))

        assert md.title == "Equal Rites (Unabridged)"
        assert md.authors == ["Terry Pratchett"]
        assert md.series == "Discworld"
        assert md.series_position == "3"
        assert md.published_date == "1987"
        assert md.categories == ["Fantasy"]
        assert md.audio_duration == 3723.5
        assert md.bitrate == 64000
        assert md.channels == 2
        assert md.sample_rate == 44100
        assert md.file_format == "m4b"
        assert md.provider == "File Metadata"

    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_untagged_format_skipped(self, mock_run):
        assert extract_file_metadata(Path("/lib/old.wma")) is None
        mock_run.assert_not_called()

    @patch("audiobook_organizer.ffprobe._run_ffprobe")
    def test_probe_failure_is_none(self, mock_run):
        mock_run.return_value = _mock_result("", returncode=1)
        assert extract_file_metadata(Path("/lib/x.mp3")) is None


class TestAuthorTags:
    @pytest.mark.parametrize("raw, expected", [
        ("Terry Pratchett", "Terry Pratchett"),
        ("Unknown", ""),
        ("Various Artists", ""),
        ("Neil Gaiman - introduction", "Neil Gaiman"),
        ("Neil Gaiman, Narrated by Someone", "Neil Gaiman"),
        ("Neil Gaiman; Narrator", "Neil Gaiman"),
        ("AB", ""),
    ])
    def test_clean_author_tag(self, raw, expected):
        assert _clean_author_tag(raw) == expected

    def test_album_artist_preferred(self):
        tags = {"album_artist": "Frank Herbert", "artist": "Scott Brick"}
        assert extract_author_from_tags(tags) == "Frank Herbert"

    def test_falls_back_past_junk(self):
        assert extract_author_from_tags({"album_artist": "Unknown", "artist": "Frank Herbert"}) == "Frank Herbert"


class TestSeriesFromAlbum:
    @pytest.mark.parametrize("album, expected", [
        ("Discworld Book 3", ("Discworld", "3")),
        ("The Expanse #4", ("The Expanse", "4")),
        ("Foundation Series", ("Foundation", "")),
        ("Dune", ("", "")),
        ("", ("", "")),
    ])
    def test_series_from_album(self, album, expected):
        assert series_from_album(album) == expected


class TestDurationToTimestamp:
    def test_formats(self):
        assert duration_to_timestamp(3723.9) == "01:02:03"
        assert duration_to_timestamp(0) == "00:00:00"
