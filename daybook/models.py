# -*- coding: utf-8 -*-
"""In-memory records for journals, entries, history and attachments."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import List, Optional
import uuid


def utcnow() -> datetime:
    """Return an aware UTC timestamp."""
    return datetime.now(timezone.utc)


@dataclass
class Attachment:
    """A file attached to an entry. ``data`` stays None unless fetched."""

    id: str
    entry_id: str
    filename: str
    mime_type: str
    size: int
    created_at: datetime
    data: Optional[bytes] = None


@dataclass
class SaveRecord:
    """A snapshot of an entry as it was before a mutation."""

    content: str
    saved_at: datetime
    attachments: List[str] = field(default_factory=list)


@dataclass
class Entry:
    """One journal entry (one per calendar day)."""

    id: str
    date: str
    content: str
    created_at: datetime
    updated_at: datetime
    history: List[SaveRecord] = field(default_factory=list)
    attachments: List[Attachment] = field(default_factory=list)

    def preview(self, max_len: int) -> str:
        """Return the content truncated to *max_len* characters."""
        if len(self.content) > max_len:
            return self.content[:max_len] + "..."
        return self.content

    def attachment_count(self) -> int:
        return len(self.attachments)

    def attachment_filenames(self) -> List[str]:
        return [att.filename for att in self.attachments]


def new_entry(date: str, content: str, now: Optional[datetime] = None) -> Entry:
    """Build a fresh entry with a new id."""
    now = now or utcnow()
    return Entry(
        id=str(uuid.uuid4()),
        date=date,
        content=content,
        created_at=now,
        updated_at=now,
    )


@dataclass
class Journal:
    """The full collection of entries held by one store."""

    entries: List[Entry] = field(default_factory=list)

    def find(self, entry_id: str) -> Optional[Entry]:
        for entry in self.entries:
            if entry.id == entry_id:
                return entry
        return None

    def find_by_date(self, date: str) -> Optional[Entry]:
        for entry in self.entries:
            if entry.date == date:
                return entry
        return None

    def sort_newest_first(self) -> None:
        self.entries.sort(key=lambda e: e.date, reverse=True)


@dataclass
class JournalDescriptor:
    """Manifest record describing one store on disk."""

    name: str
    path: str
    encrypted: bool = False
    last_opened: Optional[datetime] = None


@dataclass(frozen=True)
class StoreContext:
    """Which store an operation targets, and how to open it."""

    path: str
    encrypted: bool = False
    password: Optional[str] = None

    def __post_init__(self) -> None:
        if self.encrypted and self.password is None:
            raise ValueError("An encrypted store needs a password")

    @classmethod
    def for_journal(cls, descriptor: JournalDescriptor, password: Optional[str] = None) -> StoreContext:
        return cls(path=descriptor.path, encrypted=descriptor.encrypted, password=password)
