# -*- coding: utf-8 -*-
"""SQLite schema and async data access for daybook stores.

Every function takes the store path explicitly; a store is one SQLite file
holding entries, their history snapshots and their attachments.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, Iterable, List, Optional, Union
import logging
import os
import sqlite3

import aiosqlite

from .errors import DuplicateDateError, IOFailureError, NotFoundError, SchemaMigrationError
from .models import Attachment, Entry, Journal, SaveRecord

logger = logging.getLogger(__name__)

DB_PATH = os.environ.get("DAYBOOK_DB", "~/.daybook/journal.db")

ATTACHMENT_NAME_SEP = "|"

PathLike = Union[str, Path]


# ---------------------------------------------------------------------
# Base schema (new installs)
# ---------------------------------------------------------------------

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS entries (
    id              TEXT PRIMARY KEY,
    date            TEXT NOT NULL UNIQUE,
    content         TEXT NOT NULL,
    created_at      DATETIME NOT NULL,
    updated_at      DATETIME NOT NULL
);

CREATE TABLE IF NOT EXISTS history (
    id                INTEGER PRIMARY KEY AUTOINCREMENT,
    entry_id          TEXT NOT NULL,
    content           TEXT NOT NULL,
    saved_at          DATETIME NOT NULL,
    attachment_names  TEXT DEFAULT '',
    FOREIGN KEY (entry_id) REFERENCES entries(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS attachments (
    id              TEXT PRIMARY KEY,
    entry_id        TEXT NOT NULL,
    filename        TEXT NOT NULL,
    mime_type       TEXT NOT NULL,
    size            INTEGER NOT NULL,
    data            BLOB NOT NULL,
    created_at      DATETIME NOT NULL,
    FOREIGN KEY (entry_id) REFERENCES entries(id) ON DELETE CASCADE
);

CREATE INDEX IF NOT EXISTS idx_entries_date ON entries(date);
CREATE INDEX IF NOT EXISTS idx_history_entry ON history(entry_id);
CREATE INDEX IF NOT EXISTS idx_attachments_entry ON attachments(entry_id);
"""


# ---------------------------------------------------------------------
# Migrations (existing installs)
# ---------------------------------------------------------------------

# (table, column, statement). Forward-only: there is no downgrade path.
MIGRATIONS = [
    ("history", "attachment_names", "ALTER TABLE history ADD COLUMN attachment_names TEXT DEFAULT ''"),
]


async def column_exists(db: aiosqlite.Connection, table: str, column: str) -> bool:
    """Return True if `column` is present in `table`."""
    cur = await db.execute(f"PRAGMA table_info({table})")
    rows = await cur.fetchall()
    await cur.close()
    for r in rows:
        # PRAGMA table_info columns: cid, name, type, notnull, default_value, pk
        if len(r) >= 2 and r[1] == column:
            return True
    return False


async def _apply_migrations(db: aiosqlite.Connection) -> List[str]:
    """Try each additive column; an already-present column is not an error."""
    applied = []
    for table, column, stmt in MIGRATIONS:
        try:
            await db.execute(stmt)
        except sqlite3.OperationalError as exc:
            if "duplicate column" in str(exc).lower():
                continue
            raise SchemaMigrationError(f"cannot add {table}.{column}: {exc}") from exc
        applied.append(f"{table}.{column}")
        logger.info("Added column %s.%s", table, column)
    if applied:
        await db.commit()
    return applied


# ---------------------------------------------------------------------
# Connection / initialization
# ---------------------------------------------------------------------

def expand_path(path: PathLike) -> Path:
    """Expand a leading ``~`` to the user's home directory."""
    return Path(path).expanduser()


@asynccontextmanager
async def connect(path: PathLike) -> AsyncIterator[aiosqlite.Connection]:
    """Open *path* (creating parent directories) with foreign keys enabled."""
    db_path = expand_path(path)
    try:
        db_path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IOFailureError(f"cannot create directory {db_path.parent}: {exc}") from exc

    try:
        db = await aiosqlite.connect(db_path)
    except sqlite3.Error as exc:
        raise IOFailureError(f"cannot open {db_path}: {exc}") from exc
    try:
        db.row_factory = aiosqlite.Row
        try:
            await db.execute("PRAGMA foreign_keys = ON;")
        except sqlite3.OperationalError as exc:
            raise IOFailureError(f"cannot open {db_path}: {exc}") from exc
        yield db
    finally:
        await db.close()


async def _init_schema(db: aiosqlite.Connection) -> None:
    try:
        await db.executescript(SCHEMA_SQL)
    except sqlite3.OperationalError as exc:
        raise IOFailureError(f"cannot initialise schema: {exc}") from exc
    except sqlite3.DatabaseError as exc:
        raise SchemaMigrationError(f"cannot initialise schema: {exc}") from exc
    await _apply_migrations(db)


async def init_db(path: PathLike) -> None:
    """Create tables if they don't exist and run additive migrations."""
    async with connect(path) as db:
        await _init_schema(db)


@asynccontextmanager
async def transaction(path: PathLike) -> AsyncIterator[aiosqlite.Connection]:
    """Open-or-create *path* and yield a connection inside one transaction.

    Commits when the block finishes, rolls everything back if it raises.
    """
    async with connect(path) as db:
        await _init_schema(db)
        try:
            yield db
        except BaseException:
            await db.rollback()
            raise
        await db.commit()


def _require_store(path: PathLike) -> None:
    if not expand_path(path).exists():
        raise NotFoundError(f"store {path} does not exist")


# ---------------------------------------------------------------------
# Value conversion
# ---------------------------------------------------------------------

def format_ts(dt: datetime) -> str:
    """Canonical stored form: UTC ISO-8601 with microseconds."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_ts(value: str) -> datetime:
    dt = datetime.fromisoformat(value)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def _join_names(names: Iterable[str]) -> str:
    return ATTACHMENT_NAME_SEP.join(names)


def _split_names(value: Optional[str]) -> List[str]:
    return value.split(ATTACHMENT_NAME_SEP) if value else []


def _attachment_from_row(row, with_data: bool) -> Attachment:
    return Attachment(
        id=row["id"],
        entry_id=row["entry_id"],
        filename=row["filename"],
        mime_type=row["mime_type"],
        size=int(row["size"]),
        created_at=parse_ts(row["created_at"]),
        data=bytes(row["data"]) if with_data else None,
    )


def _is_fk_failure(exc: sqlite3.IntegrityError) -> bool:
    return "FOREIGN KEY" in str(exc).upper()


# ---------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------

async def upsert_entry_row(db: aiosqlite.Connection, entry: Entry) -> None:
    """Insert or update an entry by id; a date held by another id is rejected."""
    try:
        await db.execute(
            """
            INSERT INTO entries (id, date, content, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                date = excluded.date,
                content = excluded.content,
                created_at = excluded.created_at,
                updated_at = excluded.updated_at
            """,
            (
                entry.id,
                entry.date,
                entry.content,
                format_ts(entry.created_at),
                format_ts(entry.updated_at),
            ),
        )
    except sqlite3.IntegrityError as exc:
        if "entries.date" in str(exc):
            raise DuplicateDateError(entry.date) from exc
        raise


async def delete_entry_rows(db: aiosqlite.Connection, entry_id: str) -> None:
    """Remove history, attachments and then the entry itself."""
    await db.execute("DELETE FROM history WHERE entry_id = ?", (entry_id,))
    await db.execute("DELETE FROM attachments WHERE entry_id = ?", (entry_id,))
    cur = await db.execute("DELETE FROM entries WHERE id = ?", (entry_id,))
    if cur.rowcount == 0:
        raise NotFoundError(f"entry {entry_id} not found")


async def upsert_entry(path: PathLike, entry: Entry) -> None:
    async with transaction(path) as db:
        await upsert_entry_row(db, entry)


async def save_entry(path: PathLike, entry: Entry) -> None:
    """Upsert one entry and append any of its history rows not yet stored."""
    async with transaction(path) as db:
        await upsert_entry_row(db, entry)
        for record in entry.history:
            await append_history_row(db, entry.id, record)


async def delete_entry(path: PathLike, entry_id: str) -> None:
    """Delete an entry and everything it owns as one transaction."""
    _require_store(path)
    async with transaction(path) as db:
        await delete_entry_rows(db, entry_id)


# ---------------------------------------------------------------------
# History
# ---------------------------------------------------------------------

async def append_history_row(db: aiosqlite.Connection, entry_id: str, record: SaveRecord) -> bool:
    """Insert *record* unless (entry_id, saved_at) is already stored.

    Returns True when a row was written.
    """
    saved_at = format_ts(record.saved_at)
    try:
        cur = await db.execute(
            """
            INSERT INTO history (entry_id, content, saved_at, attachment_names)
            SELECT ?, ?, ?, ?
             WHERE NOT EXISTS (
                   SELECT 1 FROM history WHERE entry_id = ? AND saved_at = ?
             )
            """,
            (entry_id, record.content, saved_at, _join_names(record.attachments), entry_id, saved_at),
        )
    except sqlite3.IntegrityError as exc:
        if _is_fk_failure(exc):
            raise NotFoundError(f"entry {entry_id} not found") from exc
        raise
    return cur.rowcount > 0


async def append_history(path: PathLike, entry_id: str, record: SaveRecord) -> bool:
    async with transaction(path) as db:
        return await append_history_row(db, entry_id, record)


# ---------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------

async def insert_attachment_row(
    db: aiosqlite.Connection,
    attachment: Attachment,
    ignore_existing: bool = False,
) -> None:
    """Write one attachment row including its payload."""
    if attachment.data is None:
        raise ValueError(f"attachment {attachment.id} has no payload loaded")
    verb = "INSERT OR IGNORE" if ignore_existing else "INSERT"
    try:
        await db.execute(
            f"""
            {verb} INTO attachments (id, entry_id, filename, mime_type, size, data, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (
                attachment.id,
                attachment.entry_id,
                attachment.filename,
                attachment.mime_type,
                attachment.size,
                attachment.data,
                format_ts(attachment.created_at),
            ),
        )
    except sqlite3.IntegrityError as exc:
        if _is_fk_failure(exc):
            raise NotFoundError(f"entry {attachment.entry_id} not found") from exc
        raise


async def fetch_attachment_row(db: aiosqlite.Connection, attachment_id: str) -> Attachment:
    cur = await db.execute(
        """
        SELECT id, entry_id, filename, mime_type, size, data, created_at
          FROM attachments
         WHERE id = ?
        """,
        (attachment_id,),
    )
    row = await cur.fetchone()
    await cur.close()
    if row is None:
        raise NotFoundError(f"attachment {attachment_id} not found")
    return _attachment_from_row(row, with_data=True)


async def list_attachment_rows(db: aiosqlite.Connection, entry_id: str) -> List[Attachment]:
    """Attachment metadata for one entry; payloads are not read."""
    cur = await db.execute(
        """
        SELECT id, entry_id, filename, mime_type, size, created_at
          FROM attachments
         WHERE entry_id = ?
         ORDER BY created_at ASC
        """,
        (entry_id,),
    )
    rows = await cur.fetchall()
    await cur.close()
    return [_attachment_from_row(r, with_data=False) for r in rows]


async def delete_attachment_row(db: aiosqlite.Connection, attachment_id: str) -> None:
    cur = await db.execute("DELETE FROM attachments WHERE id = ?", (attachment_id,))
    if cur.rowcount == 0:
        raise NotFoundError(f"attachment {attachment_id} not found")


async def add_attachment(path: PathLike, record: SaveRecord, attachment: Attachment) -> None:
    """Store the pre-attachment snapshot and the attachment together.

    Either both rows persist or neither does.
    """
    async with transaction(path) as db:
        await append_history_row(db, attachment.entry_id, record)
        await insert_attachment_row(db, attachment)


async def get_attachment(path: PathLike, attachment_id: str) -> Attachment:
    """Fetch one attachment with its payload."""
    _require_store(path)
    async with connect(path) as db:
        return await fetch_attachment_row(db, attachment_id)


async def list_attachments(path: PathLike, entry_id: str) -> List[Attachment]:
    if not expand_path(path).exists():
        return []
    async with connect(path) as db:
        await _init_schema(db)
        return await list_attachment_rows(db, entry_id)


async def delete_attachment(path: PathLike, attachment_id: str) -> None:
    """Delete one attachment row. Space is reclaimed only by :func:`compact`."""
    _require_store(path)
    async with transaction(path) as db:
        await delete_attachment_row(db, attachment_id)


async def attachment_payloads(path: PathLike, attachment_ids: Iterable[str]) -> Dict[str, bytes]:
    """Return {id: data} for whichever of *attachment_ids* exist in the store."""
    wanted = list(attachment_ids)
    if not wanted or not expand_path(path).exists():
        return {}
    out: Dict[str, bytes] = {}
    async with connect(path) as db:
        for attachment_id in wanted:
            cur = await db.execute("SELECT data FROM attachments WHERE id = ?", (attachment_id,))
            row = await cur.fetchone()
            await cur.close()
            if row is not None:
                out[attachment_id] = bytes(row["data"])
    return out


async def compact(path: PathLike) -> None:
    """Rebuild the file to reclaim space freed by deletions (never automatic)."""
    _require_store(path)
    async with connect(path) as db:
        await db.execute("VACUUM")


# ---------------------------------------------------------------------
# Whole collection
# ---------------------------------------------------------------------

async def _load_journal(db: aiosqlite.Connection, include_data: bool = False) -> Journal:
    journal = Journal()
    cur = await db.execute(
        "SELECT id, date, content, created_at, updated_at FROM entries ORDER BY date DESC"
    )
    entry_rows = await cur.fetchall()
    await cur.close()

    for r in entry_rows:
        entry = Entry(
            id=r["id"],
            date=r["date"],
            content=r["content"],
            created_at=parse_ts(r["created_at"]),
            updated_at=parse_ts(r["updated_at"]),
        )

        cur = await db.execute(
            """
            SELECT content, saved_at, COALESCE(attachment_names, '') AS attachment_names
              FROM history
             WHERE entry_id = ?
             ORDER BY saved_at DESC
            """,
            (entry.id,),
        )
        for h in await cur.fetchall():
            entry.history.append(
                SaveRecord(
                    content=h["content"],
                    saved_at=parse_ts(h["saved_at"]),
                    attachments=_split_names(h["attachment_names"]),
                )
            )
        await cur.close()

        entry.attachments = await list_attachment_rows(db, entry.id)
        if include_data:
            for att in entry.attachments:
                att.data = (await fetch_attachment_row(db, att.id)).data

        journal.entries.append(entry)
    return journal


async def _write_journal(db: aiosqlite.Connection, journal: Journal) -> None:
    for entry in journal.entries:
        await upsert_entry_row(db, entry)
        for record in entry.history:
            await append_history_row(db, entry.id, record)
        for att in entry.attachments:
            if att.data is not None:
                await insert_attachment_row(db, att, ignore_existing=True)


async def load_journal(path: PathLike, include_data: bool = False) -> Journal:
    """Load every entry, newest date first, with history and attachment metadata.

    A store file that does not exist yet loads as an empty journal.
    """
    if not expand_path(path).exists():
        return Journal()
    async with connect(path) as db:
        await _init_schema(db)
        return await _load_journal(db, include_data)


async def save_journal(journal: Journal, path: PathLike) -> None:
    """Upsert every entry of *journal* (and new history rows) in one transaction."""
    async with transaction(path) as db:
        await _write_journal(db, journal)


async def replace_journal(journal: Journal, path: PathLike) -> None:
    """Write *journal* into a brand-new file that then replaces *path*.

    Whatever *path* held before is discarded.
    """
    target = expand_path(path)
    staging = target.with_name(f".{target.name}.staging")
    leftovers = [staging] + [Path(f"{staging}{s}") for s in ("-journal", "-wal", "-shm")]
    try:
        for p in leftovers:
            p.unlink(missing_ok=True)
        await save_journal(journal, staging)
        os.replace(staging, target)
    except OSError as exc:
        raise IOFailureError(f"cannot replace {target}: {exc}") from exc
    finally:
        for p in leftovers:
            p.unlink(missing_ok=True)
