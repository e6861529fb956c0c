# -*- coding: utf-8 -*-
"""daybook: storage for a one-entry-per-day journal.

Modules:
    errors:      Exception taxonomy.
    models:      Entry / SaveRecord / Attachment / Journal dataclasses.
    mime:        Content-type detection and size formatting.
    crypto:      Key derivation and AES-GCM blob sealing.
    db:          SQLite schema + async data access.
    envelope:    Whole-file encryption around a plaintext working copy.
    history:     When edits and attachments produce history snapshots.
    attachments: Attachment payload lifecycle.
    registry:    Known journals (JSON manifest) and journal migration.
    logic:       Journal-level API that composes the layers above.
"""

__all__ = [
    "attachments",
    "crypto",
    "db",
    "envelope",
    "errors",
    "history",
    "logic",
    "mime",
    "models",
    "registry",
]
