# -*- coding: utf-8 -*-
"""Content-type detection and human-readable byte sizes."""
from __future__ import annotations

from pathlib import PurePath
from typing import Dict

DEFAULT_MIME_TYPE = "application/octet-stream"

MIME_TYPES: Dict[str, str] = {
    ".pdf": "application/pdf",
    ".png": "image/png",
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".gif": "image/gif",
    ".webp": "image/webp",
    ".svg": "image/svg+xml",
    ".mp3": "audio/mpeg",
    ".wav": "audio/wav",
    ".mp4": "video/mp4",
    ".webm": "video/webm",
    ".txt": "text/plain",
    ".md": "text/markdown",
    ".json": "application/json",
    ".xml": "application/xml",
    ".zip": "application/zip",
    ".doc": "application/msword",
    ".docx": "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    ".xls": "application/vnd.ms-excel",
    ".xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

_UNITS = "KMGTPE"


def detect_mime_type(filename: str) -> str:
    """Map *filename*'s extension to a content type (case-insensitive)."""
    return MIME_TYPES.get(PurePath(filename).suffix.lower(), DEFAULT_MIME_TYPE)


def format_file_size(size: int) -> str:
    """Format *size* bytes as e.g. ``512 B``, ``1.5 KB``, ``3.0 MB``."""
    unit = 1024
    if size < unit:
        return f"{size} B"
    div, exp = unit, 0
    n = size // unit
    while n >= unit:
        div *= unit
        exp += 1
        n //= unit
    return f"{size / div:.1f} {_UNITS[exp]}B"
