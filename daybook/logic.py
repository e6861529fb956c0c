# -*- coding: utf-8 -*-
"""Application logic that composes the store, history and envelope layers.

This module provides the public API used by a front end. It contains no UI
code. Every function takes a :class:`StoreContext` naming the journal it works
on; plain and encrypted journals are routed to the matching storage path.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import date
from typing import List, Optional

from . import db, envelope, history
from .errors import DuplicateDateError, NotFoundError
from .history import Version
from .models import Entry, Journal, StoreContext, new_entry, utcnow


# ---------------------------------------------------------------------
# Whole journal
# ---------------------------------------------------------------------

async def open_journal(ctx: StoreContext) -> Journal:
    """Load every entry of the journal, newest date first."""
    if ctx.encrypted:
        return await envelope.load_journal_encrypted(ctx.path, ctx.password)
    return await db.load_journal(ctx.path)


async def save_journal(ctx: StoreContext, journal: Journal) -> None:
    """Persist the whole in-memory collection."""
    if ctx.encrypted:
        await envelope.save_journal_encrypted(journal, ctx.path, ctx.password)
    else:
        await db.save_journal(journal, ctx.path)


# ---------------------------------------------------------------------
# Entries
# ---------------------------------------------------------------------

def _check_date(value: str) -> None:
    try:
        parsed = date.fromisoformat(value)
    except ValueError as exc:
        raise ValueError(f"Invalid date {value!r}; expected YYYY-MM-DD") from exc
    if parsed.isoformat() != value:
        raise ValueError(f"Invalid date {value!r}; expected YYYY-MM-DD")


async def save_entry(ctx: StoreContext, journal: Journal, entry: Entry) -> Entry:
    """Insert a new entry or replace the stored one with the same id.

    Rejects a date already used by a different entry. When an existing entry's
    content changes, its previous content is kept as a history snapshot. On a
    storage failure *journal* is left as it was.
    """
    _check_date(entry.date)
    clash = journal.find_by_date(entry.date)
    if clash is not None and clash.id != entry.id:
        raise DuplicateDateError(entry.date)

    current = journal.find(entry.id)
    previous = current
    if current is entry:
        # Edited in place; the in-memory object no longer holds the old content.
        previous = await _stored_entry(ctx, entry.id)

    before = list(journal.entries)
    undo = (entry.updated_at, entry.history, entry.attachments)
    if previous is not None:
        if previous.content != entry.content and previous.updated_at == entry.updated_at:
            entry.updated_at = utcnow()
        history.record_edit(previous, entry)
    if current is None:
        journal.entries.append(entry)
    elif current is not entry:
        journal.entries[journal.entries.index(current)] = entry
    journal.sort_newest_first()

    try:
        if ctx.encrypted:
            await envelope.save_journal_encrypted(journal, ctx.path, ctx.password)
        else:
            await db.save_entry(ctx.path, entry)
    except Exception:
        journal.entries = before
        entry.updated_at, entry.history, entry.attachments = undo
        raise
    return entry


async def _stored_entry(ctx: StoreContext, entry_id: str) -> Optional[Entry]:
    return (await open_journal(ctx)).find(entry_id)


async def add_entry(ctx: StoreContext, journal: Journal, entry_date: str, content: str) -> Entry:
    return await save_entry(ctx, journal, new_entry(entry_date, content))


async def edit_entry(
    ctx: StoreContext,
    journal: Journal,
    entry_id: str,
    content: str,
    entry_date: Optional[str] = None,
) -> Entry:
    """Change an entry's content (and optionally its date)."""
    current = journal.find(entry_id)
    if current is None:
        raise NotFoundError(f"entry {entry_id} not found")
    updated = replace(
        current,
        content=content,
        date=entry_date or current.date,
        updated_at=utcnow(),
        history=[],
        attachments=[],
    )
    return await save_entry(ctx, journal, updated)


async def delete_entry(ctx: StoreContext, journal: Journal, entry_id: str) -> None:
    """Delete an entry together with its history and attachments."""
    entry = journal.find(entry_id)
    if entry is None:
        raise NotFoundError(f"entry {entry_id} not found")
    if ctx.encrypted:
        remaining = Journal(entries=[e for e in journal.entries if e.id != entry_id])
        await envelope.save_journal_encrypted(remaining, ctx.path, ctx.password)
    else:
        await db.delete_entry(ctx.path, entry_id)
    journal.entries.remove(entry)


def entry_versions(entry: Entry) -> List[Version]:
    """Current state first, then each saved snapshot, most recent first."""
    return history.versions(entry)
