# -*- coding: utf-8 -*-
"""Known journals (the JSON manifest) and moving a journal between paths.

The manifest belongs to the front end; this module only owns the
``journals`` list and the ``active_journal`` key and passes every other key
through untouched.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional
import copy
import json
import logging
import os

from . import db, envelope
from .errors import IOFailureError
from .models import Journal, JournalDescriptor, utcnow

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Config management (JSON on disk)
# ---------------------------------------------------------------------

APP_NAME = "daybook"

LEGACY_JOURNAL_NAME = "Default Journal"

DEFAULT_CONFIG: Dict[str, object] = {
    "journals": [],
    "active_journal": "",
}


def _config_dir() -> Path:
    """Directory holding ``config.json``; ``DAYBOOK_CONFIG_DIR`` wins if set."""
    override = os.environ.get("DAYBOOK_CONFIG_DIR")
    if override:
        return Path(override).expanduser()
    if os.name == "nt":
        root = os.environ.get("APPDATA") or str(Path.home() / "AppData" / "Roaming")
    else:
        root = os.environ.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(root) / APP_NAME


def _config_path() -> Path:
    return _config_dir() / "config.json"


def config_exists() -> bool:
    return _config_path().exists()


def load_config() -> Dict[str, object]:
    """Read ``config.json`` over the defaults; a missing file is written first."""
    path = _config_path()
    cfg = copy.deepcopy(DEFAULT_CONFIG)
    if not path.exists():
        save_config(cfg)
        return cfg
    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise IOFailureError(f"cannot read {path}: {exc}") from exc
    cfg.update(json.loads(raw))
    return cfg


def save_config(cfg: Dict[str, object]) -> None:
    """Replace ``config.json`` with *cfg* in one rename."""
    envelope.atomic_write_bytes(_config_path(), json.dumps(cfg, indent=2).encode("utf-8"))


def convert_legacy_config(cfg: Dict[str, object]) -> bool:
    """Turn a single-database config into the multi-journal form.

    Returns True if *cfg* was changed.
    """
    legacy_path = cfg.get("database_path")
    if not legacy_path or cfg.get("journals"):
        return False
    cfg["journals"] = [
        {
            "name": LEGACY_JOURNAL_NAME,
            "path": legacy_path,
            "encrypted": bool(cfg.get("encrypted", False)),
            "last_opened": None,
        }
    ]
    cfg["active_journal"] = legacy_path
    cfg.pop("database_path", None)
    cfg.pop("encrypted", None)
    logger.info("Converted legacy config for %s", legacy_path)
    return True


# ---------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------

@dataclass
class Manifest:
    """The core's view of the config: known journals plus the active path."""

    journals: List[JournalDescriptor] = field(default_factory=list)
    active_journal: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)


def _descriptor_from_dict(raw: Dict[str, Any]) -> JournalDescriptor:
    last_opened = raw.get("last_opened")
    return JournalDescriptor(
        name=str(raw.get("name", "")),
        path=str(raw.get("path", "")),
        encrypted=bool(raw.get("encrypted", False)),
        last_opened=datetime.fromisoformat(last_opened) if last_opened else None,
    )


def _descriptor_to_dict(desc: JournalDescriptor) -> Dict[str, Any]:
    return {
        "name": desc.name,
        "path": desc.path,
        "encrypted": desc.encrypted,
        "last_opened": desc.last_opened.isoformat() if desc.last_opened else None,
    }


def manifest_from_config(cfg: Dict[str, object]) -> Manifest:
    extra = {k: v for k, v in cfg.items() if k not in ("journals", "active_journal")}
    return Manifest(
        journals=[_descriptor_from_dict(j) for j in cfg.get("journals") or []],
        active_journal=str(cfg.get("active_journal") or ""),
        extra=extra,
    )


def manifest_to_config(manifest: Manifest) -> Dict[str, object]:
    cfg: Dict[str, object] = dict(manifest.extra)
    cfg["journals"] = [_descriptor_to_dict(j) for j in manifest.journals]
    cfg["active_journal"] = manifest.active_journal
    return cfg


def load_manifest() -> Manifest:
    """Load the manifest, converting a legacy config on the way."""
    cfg = load_config()
    if convert_legacy_config(cfg):
        save_config(cfg)
    return manifest_from_config(cfg)


def save_manifest(manifest: Manifest) -> None:
    save_config(manifest_to_config(manifest))


def add_journal(manifest: Manifest, name: str, path: str, encrypted: bool) -> JournalDescriptor:
    """Register a journal. The store file itself is not created."""
    desc = JournalDescriptor(name=name, path=path, encrypted=encrypted)
    manifest.journals.append(desc)
    return desc


def find_journal(manifest: Manifest, path: str) -> Optional[JournalDescriptor]:
    for desc in manifest.journals:
        if desc.path == path:
            return desc
    return None


def update_last_opened(manifest: Manifest, path: str, when: Optional[datetime] = None) -> bool:
    desc = find_journal(manifest, path)
    if desc is None:
        return False
    desc.last_opened = when or utcnow()
    return True


def active_journal(manifest: Manifest) -> Optional[JournalDescriptor]:
    return find_journal(manifest, manifest.active_journal) if manifest.active_journal else None


def sorted_journals(manifest: Manifest) -> List[JournalDescriptor]:
    """Journals by last-opened time, most recent first; never-opened last."""
    oldest = datetime.min.replace(tzinfo=timezone.utc)

    def key(desc: JournalDescriptor) -> datetime:
        if desc.last_opened is None:
            return oldest
        if desc.last_opened.tzinfo is None:
            return desc.last_opened.replace(tzinfo=timezone.utc)
        return desc.last_opened

    return sorted(manifest.journals, key=key, reverse=True)


# ---------------------------------------------------------------------
# Creating and migrating stores
# ---------------------------------------------------------------------

async def create_empty_journal(path: str, encrypted: bool = False, password: Optional[str] = None) -> None:
    """Create an empty store (or an encrypted blob of one) at *path*."""
    if encrypted:
        if password is None:
            raise ValueError("An encrypted journal needs a password")
        await envelope.create_empty_journal_encrypted(path, password)
    else:
        await db.init_db(path)


async def migrate_journal(
    old_path: str,
    new_path: str,
    encrypted: bool,
    password: Optional[str] = None,
    encrypt_target: Optional[bool] = None,
) -> None:
    """Copy the full contents of one store to another path.

    *encrypted* says how the source is stored; the destination uses the same
    representation unless *encrypt_target* says otherwise. Anything already at
    *new_path* is replaced.
    """
    target_encrypted = encrypted if encrypt_target is None else encrypt_target
    if (encrypted or target_encrypted) and password is None:
        raise ValueError("Migrating an encrypted journal needs a password")
    if db.expand_path(old_path) == db.expand_path(new_path) and encrypted == target_encrypted:
        return

    if encrypted:
        journal: Journal = await envelope.load_journal_encrypted(old_path, password, include_data=True)
    else:
        journal = await db.load_journal(old_path, include_data=True)

    if target_encrypted:
        await envelope.save_journal_encrypted(journal, new_path, password)
    else:
        await db.replace_journal(journal, new_path)
    logger.info(
        "Migrated %d entries from %s to %s (encrypted=%s)",
        len(journal.entries),
        old_path,
        new_path,
        target_encrypted,
    )
