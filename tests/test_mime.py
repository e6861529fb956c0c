"""Tests for content-type detection and size formatting."""

import pytest

from daybook.mime import DEFAULT_MIME_TYPE, detect_mime_type, format_file_size


class TestDetectMimeType:
    @pytest.mark.parametrize(
        "filename, expected",
        [
            ("photo.png", "image/png"),
            ("HOLIDAY.JPG", "image/jpeg"),
            ("notes.md", "text/markdown"),
            ("report.docx", "application/vnd.openxmlformats-officedocument.wordprocessingml.document"),
            ("archive.tar.gz", DEFAULT_MIME_TYPE),
            ("README", DEFAULT_MIME_TYPE),
        ],
    )
    def test_known_and_unknown(self, filename, expected):
        assert detect_mime_type(filename) == expected


class TestFormatFileSize:
    @pytest.mark.parametrize(
        "size, expected",
        [
            (0, "0 B"),
            (1023, "1023 B"),
            (1024, "1.0 KB"),
            (1536, "1.5 KB"),
            (1024 * 1024, "1.0 MB"),
            (5 * 1024 ** 3, "5.0 GB"),
        ],
    )
    def test_formats(self, size, expected):
        assert format_file_size(size) == expected
