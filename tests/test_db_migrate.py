"""Tests for the manual migration script."""

import asyncio
import sqlite3
from contextlib import closing

import db_migrate


def _legacy(path):
    with closing(sqlite3.connect(path)) as conn:
        conn.executescript(
            """
            CREATE TABLE entries (
                id TEXT PRIMARY KEY, date TEXT NOT NULL UNIQUE, content TEXT NOT NULL,
                created_at DATETIME NOT NULL, updated_at DATETIME NOT NULL
            );
            CREATE TABLE history (
                id INTEGER PRIMARY KEY AUTOINCREMENT, entry_id TEXT NOT NULL,
                content TEXT NOT NULL, saved_at DATETIME NOT NULL
            );
            """
        )


class TestMigrateScript:
    def test_reports_and_adds_missing_columns(self, tmp_path):
        path = tmp_path / "old.db"
        _legacy(path)

        assert asyncio.run(db_migrate.migrate(str(path))) == ["history.attachment_names"]
        assert asyncio.run(db_migrate.migrate(str(path))) == []

    def test_new_store_needs_nothing(self, tmp_path):
        path = tmp_path / "fresh.db"
        assert asyncio.run(db_migrate.migrate(str(path))) == []
        assert path.exists()
