# -*- coding: utf-8 -*-
"""Whole-file encryption for daybook stores.

An encrypted store on disk is ``nonce || AES-GCM(sqlite file bytes)``. To read
or change it, the blob is decrypted into a short-lived plaintext working copy,
the ordinary SQLite code in :mod:`daybook.db` runs against that copy, and the
copy is re-encrypted and swapped into place. Cost is proportional to the size
of the whole store on every write.

Working copies never outlive the operation that created them; they are zeroed and
unlinked on every exit path. The final overwrite is an atomic rename, so a
crash mid-cycle can lose the change in flight but never the previous blob.
"""
from __future__ import annotations

from contextlib import asynccontextmanager, contextmanager
from dataclasses import replace
from pathlib import Path
from typing import AsyncIterator, Dict, Iterator, Optional
import asyncio
import logging
import os
import tempfile

from filelock import FileLock, Timeout

from . import crypto, db
from .errors import IOFailureError
from .models import Journal

logger = logging.getLogger(__name__)

# Directory for plaintext working copies; None means the system default.
TMP_DIR: Optional[str] = None

WORKING_PREFIX = "daybook-"
WORKING_SUFFIX = ".db"
_SQLITE_SIDE_FILES = ("-journal", "-wal", "-shm")

# Seconds between attempts while another holder has the store lock.
LOCK_POLL_INTERVAL = 0.05


# ---------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------

def _ensure_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise IOFailureError(f"cannot create directory {path.parent}: {exc}") from exc


def read_blob(path: Path) -> bytes:
    """Read the sealed blob; a missing file reads as empty."""
    try:
        return path.read_bytes()
    except FileNotFoundError:
        return b""
    except OSError as exc:
        raise IOFailureError(f"cannot read {path}: {exc}") from exc


def atomic_write_bytes(path: Path, payload: bytes) -> None:
    """Replace *path* with *payload* via a same-directory temp file + rename."""
    _ensure_parent(path)
    tmp = None
    try:
        tmp = tempfile.NamedTemporaryFile(
            "wb", dir=path.parent, prefix=f".{path.name}.", suffix=".tmp", delete=False
        )
        tmp.write(payload)
        tmp.flush()
        os.fsync(tmp.fileno())
        tmp.close()
        os.replace(tmp.name, path)
    except OSError as exc:
        raise IOFailureError(f"cannot write {path}: {exc}") from exc
    finally:
        if tmp is not None:
            tmp.close()
            if os.path.exists(tmp.name):
                os.unlink(tmp.name)


def _shred(path: Path) -> None:
    """Zero and unlink *path* if it exists."""
    try:
        size = path.stat().st_size
    except FileNotFoundError:
        return
    try:
        with open(path, "r+b") as fh:
            fh.write(b"\0" * size)
            fh.flush()
            os.fsync(fh.fileno())
    except OSError as exc:
        logger.warning("Could not zero working copy %s before removal: %s", path, exc)
    path.unlink(missing_ok=True)


@contextmanager
def working_copy(plaintext: bytes = b"") -> Iterator[Path]:
    """Yield a temp file holding *plaintext*; it is shredded on exit."""
    try:
        fd, name = tempfile.mkstemp(prefix=WORKING_PREFIX, suffix=WORKING_SUFFIX, dir=TMP_DIR)
    except OSError as exc:
        raise IOFailureError(f"cannot create working copy: {exc}") from exc
    path = Path(name)
    try:
        try:
            with os.fdopen(fd, "wb") as fh:
                fh.write(plaintext)
        except OSError as exc:
            raise IOFailureError(f"cannot write working copy: {exc}") from exc
        yield path
    finally:
        _shred(path)
        for suffix in _SQLITE_SIDE_FILES:
            _shred(Path(name + suffix))


def _read_working_copy(path: Path) -> bytes:
    try:
        return path.read_bytes()
    except OSError as exc:
        raise IOFailureError(f"cannot read working copy: {exc}") from exc


@asynccontextmanager
async def store_lock(path: Path) -> AsyncIterator[None]:
    """Hold an exclusive advisory lock on ``<path>.lock`` for one cycle.

    While another holder has the lock, this polls with ``asyncio.sleep`` so the
    event loop keeps serving other tasks, including the current holder.
    """
    lock_path = path.with_name(path.name + ".lock")
    _ensure_parent(lock_path)
    lock = FileLock(str(lock_path))
    while True:
        try:
            lock.acquire(timeout=0)
            break
        except Timeout:
            await asyncio.sleep(LOCK_POLL_INTERVAL)
        except OSError as exc:
            raise IOFailureError(f"cannot lock {lock_path}: {exc}") from exc
    try:
        yield
    finally:
        lock.release()


def _seal(path: Path, plaintext: bytes, password: str) -> None:
    sealed = crypto.encrypt(plaintext, password)
    atomic_write_bytes(path, sealed)
    logger.debug("Sealed %s (%d plaintext bytes, %d on disk)", path, len(plaintext), len(sealed))


# ---------------------------------------------------------------------
# Encrypted load / save
# ---------------------------------------------------------------------

async def load_journal_encrypted(path: db.PathLike, password: str, include_data: bool = False) -> Journal:
    """Decrypt the store at *path* and load it.

    A missing or empty file is an empty journal. Raises InvalidCredentialError
    if the password is wrong or the blob is damaged.
    """
    target = db.expand_path(path)
    if not target.exists():
        return Journal()
    async with store_lock(target):
        blob = read_blob(target)
        if not blob:
            return Journal()
        plaintext = crypto.decrypt(blob, password)
        with working_copy(plaintext) as work:
            return await db.load_journal(work, include_data)


async def _carry_payloads(journal: Journal, blob: bytes, password: str) -> Journal:
    """Return a copy of *journal* whose attachments all carry their bytes.

    Payloads missing in memory are read from the currently sealed store.
    """
    missing = [att.id for e in journal.entries for att in e.attachments if att.data is None]
    if not missing:
        return journal

    found: Dict[str, bytes] = {}
    if blob:
        with working_copy(crypto.decrypt(blob, password)) as work:
            found = await db.attachment_payloads(work, missing)

    entries = []
    for entry in journal.entries:
        attachments = []
        for att in entry.attachments:
            if att.data is None:
                if att.id not in found:
                    logger.warning("No stored payload for attachment %s (%s); dropping it", att.id, att.filename)
                    continue
                att = replace(att, data=found[att.id])
            attachments.append(att)
        entries.append(replace(entry, attachments=attachments))
    return Journal(entries=entries)


async def save_journal_encrypted(journal: Journal, path: db.PathLike, password: str) -> None:
    """Write *journal* into a fresh store, encrypt it and replace *path*."""
    target = db.expand_path(path)
    _ensure_parent(target)
    async with store_lock(target):
        complete = await _carry_payloads(journal, read_blob(target), password)
        with working_copy() as work:
            await db.save_journal(complete, work)
            plaintext = _read_working_copy(work)
        _seal(target, plaintext, password)


async def create_empty_journal_encrypted(path: db.PathLike, password: str) -> None:
    await save_journal_encrypted(Journal(), path, password)


@asynccontextmanager
async def sealed_store(path: db.PathLike, password: str) -> AsyncIterator[Path]:
    """Yield a decrypted working copy of *path* for row-level changes.

    If the block completes, the copy is re-encrypted over *path*; if it
    raises, *path* is left exactly as it was.
    """
    target = db.expand_path(path)
    _ensure_parent(target)
    async with store_lock(target):
        blob = read_blob(target)
        plaintext = crypto.decrypt(blob, password) if blob else b""
        with working_copy(plaintext) as work:
            await db.init_db(work)
            yield work
            updated = _read_working_copy(work)
        _seal(target, updated, password)


@asynccontextmanager
async def opened_store(path: db.PathLike, password: str) -> AsyncIterator[Path]:
    """Yield a decrypted working copy of *path* for reading only.

    Nothing is written back. A missing store yields an empty schema.
    """
    target = db.expand_path(path)
    if not target.exists():
        with working_copy() as work:
            await db.init_db(work)
            yield work
        return
    async with store_lock(target):
        blob = read_blob(target)
        plaintext = crypto.decrypt(blob, password) if blob else b""
        with working_copy(plaintext) as work:
            await db.init_db(work)
            yield work
