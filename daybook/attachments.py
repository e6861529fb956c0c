# -*- coding: utf-8 -*-
"""Attachment payloads: add, list, fetch, delete and export.

Plain stores are changed row by row. Encrypted stores go through a full
decrypt, change, re-encrypt cycle for every mutation.
"""
from __future__ import annotations

from dataclasses import replace
from pathlib import Path
from typing import List, Optional
import logging
import uuid

from . import db, envelope, history
from .errors import IOFailureError
from .mime import detect_mime_type
from .models import Attachment, Entry, StoreContext, utcnow

logger = logging.getLogger(__name__)


async def add_attachment(ctx: StoreContext, entry: Entry, file_path: db.PathLike) -> Attachment:
    """Attach the file at *file_path* to *entry*.

    The whole file is read into memory. A snapshot of the entry as it was
    before the attachment is stored in the same write; if the write fails the
    snapshot is dropped from *entry* again and the error is re-raised.
    Returns the attachment metadata (without payload).
    """
    source = db.expand_path(file_path)
    try:
        data = source.read_bytes()
    except OSError as exc:
        raise IOFailureError(f"cannot read {source}: {exc}") from exc

    now = utcnow()
    attachment = Attachment(
        id=str(uuid.uuid4()),
        entry_id=entry.id,
        filename=source.name,
        mime_type=detect_mime_type(source.name),
        size=len(data),
        created_at=now,
        data=data,
    )
    record = history.snapshot_before_attachment(entry, now)

    try:
        if ctx.encrypted:
            async with envelope.sealed_store(ctx.path, ctx.password) as work:
                await db.add_attachment(work, record, attachment)
        else:
            await db.add_attachment(ctx.path, record, attachment)
    except Exception:
        history.discard_snapshot(entry, record)
        logger.warning("Adding %s to entry %s failed; history snapshot rolled back", attachment.filename, entry.id)
        raise

    meta = replace(attachment, data=None)
    entry.attachments.append(meta)
    return meta


async def list_attachments(ctx: StoreContext, entry_id: str) -> List[Attachment]:
    """Metadata for every attachment of *entry_id*; payloads are not loaded."""
    if ctx.encrypted:
        async with envelope.opened_store(ctx.path, ctx.password) as work:
            return await db.list_attachments(work, entry_id)
    return await db.list_attachments(ctx.path, entry_id)


async def fetch_attachment(ctx: StoreContext, attachment_id: str) -> Attachment:
    """Return one attachment including its payload."""
    if ctx.encrypted:
        async with envelope.opened_store(ctx.path, ctx.password) as work:
            return await db.get_attachment(work, attachment_id)
    return await db.get_attachment(ctx.path, attachment_id)


async def delete_attachment(ctx: StoreContext, attachment_id: str, entry: Optional[Entry] = None) -> None:
    """Remove an attachment row (and from *entry*, when given).

    File space is not reclaimed until :func:`compact` runs.
    """
    if ctx.encrypted:
        async with envelope.sealed_store(ctx.path, ctx.password) as work:
            await db.delete_attachment(work, attachment_id)
    else:
        await db.delete_attachment(ctx.path, attachment_id)
    if entry is not None:
        entry.attachments = [a for a in entry.attachments if a.id != attachment_id]


async def export_attachment(ctx: StoreContext, attachment_id: str, destination: db.PathLike) -> Path:
    """Write the payload to *destination* and return the path written.

    If *destination* is an existing directory the original filename is
    appended. An existing file is overwritten.
    """
    att = await fetch_attachment(ctx, attachment_id)
    dest = db.expand_path(destination)
    if dest.is_dir():
        dest = dest / att.filename
    try:
        dest.write_bytes(att.data or b"")
    except OSError as exc:
        raise IOFailureError(f"cannot write {dest}: {exc}") from exc
    logger.info("Exported attachment %s to %s", attachment_id, dest)
    return dest


async def compact(ctx: StoreContext) -> None:
    """Reclaim space left by deleted attachments."""
    if ctx.encrypted:
        async with envelope.sealed_store(ctx.path, ctx.password) as work:
            await db.compact(work)
    else:
        await db.compact(ctx.path)
