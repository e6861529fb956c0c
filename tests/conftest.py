"""Shared fixtures for daybook tests."""

from datetime import datetime, timedelta, timezone

import pytest

from daybook import envelope
from daybook.models import Entry

T0 = datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)


def make_entry(date, content="", entry_id=None, offset_minutes=0):
    stamp = T0 + timedelta(minutes=offset_minutes)
    return Entry(
        id=entry_id or f"id-{date}",
        date=date,
        content=content,
        created_at=stamp,
        updated_at=stamp,
    )


@pytest.fixture(autouse=True)
def scratch_dir(tmp_path, monkeypatch):
    """Route plaintext working copies into a directory the test can inspect."""
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(envelope, "TMP_DIR", str(scratch))
    return scratch


@pytest.fixture
def config_dir(tmp_path, monkeypatch):
    path = tmp_path / "config"
    monkeypatch.setenv("DAYBOOK_CONFIG_DIR", str(path))
    return path


@pytest.fixture
def photo(tmp_path):
    path = tmp_path / "photo.png"
    path.write_bytes(b"\x89PNG\r\n\x1a\n" + bytes(range(256)) * 4)
    return path
