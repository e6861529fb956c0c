# -*- coding: utf-8 -*-
"""When an entry change is preserved as a history snapshot.

Pure policy over in-memory entries; persistence happens in the callers.
An entry's ``history`` list is kept newest-first.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional

from .models import Entry, SaveRecord, utcnow


@dataclass
class Version:
    """One row of an entry's version list, current state first."""

    content: str
    timestamp: datetime
    attachments: List[str] = field(default_factory=list)
    current: bool = False


def _insert(entry: Entry, record: SaveRecord) -> None:
    for existing in entry.history:
        if existing.saved_at == record.saved_at:
            return
    entry.history.append(record)
    entry.history.sort(key=lambda r: r.saved_at, reverse=True)


def record_edit(previous: Entry, updated: Entry) -> Entry:
    """Carry history and attachments from *previous* onto *updated*.

    If the content changed, one snapshot of the previous content (stamped with
    the previous ``updated_at``) is added first. Unchanged content adds nothing.
    """
    updated.history = list(previous.history)
    updated.attachments = list(previous.attachments)
    if previous.content != updated.content:
        _insert(
            updated,
            SaveRecord(
                content=previous.content,
                saved_at=previous.updated_at,
                attachments=previous.attachment_filenames(),
            ),
        )
    return updated


def snapshot_before_attachment(entry: Entry, now: Optional[datetime] = None) -> SaveRecord:
    """Record the entry as it is right before a new attachment is added."""
    record = SaveRecord(
        content=entry.content,
        saved_at=now or utcnow(),
        attachments=entry.attachment_filenames(),
    )
    _insert(entry, record)
    return record


def discard_snapshot(entry: Entry, record: SaveRecord) -> None:
    """Undo :func:`snapshot_before_attachment` after a failed write."""
    entry.history = [r for r in entry.history if r is not record]


def versions(entry: Entry) -> List[Version]:
    """The current state followed by every snapshot, most recent first."""
    out = [
        Version(
            content=entry.content,
            timestamp=entry.updated_at,
            attachments=entry.attachment_filenames(),
            current=True,
        )
    ]
    for record in sorted(entry.history, key=lambda r: r.saved_at, reverse=True):
        out.append(Version(content=record.content, timestamp=record.saved_at, attachments=list(record.attachments)))
    return out
