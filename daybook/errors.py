# -*- coding: utf-8 -*-
"""Exceptions raised by the daybook storage layer.

Every failure is raised to the immediate caller; nothing here is retried.
"""
from __future__ import annotations


class JournalError(Exception):
    """Base class for all storage-layer failures."""


class DuplicateDateError(JournalError):
    """Another entry already owns this calendar date."""

    def __init__(self, date: str) -> None:
        super().__init__(f"An entry for {date} already exists")
        self.date = date


class InvalidCredentialError(JournalError):
    """Decryption failed: wrong password or a damaged file.

    The two causes are deliberately reported the same way.
    """

    def __init__(self) -> None:
        super().__init__("invalid password")


class NotFoundError(JournalError, LookupError):
    """An entry or attachment id does not exist in the store."""


class IOFailureError(JournalError):
    """A filesystem operation (read, write, mkdir, temp file) failed."""


class SchemaMigrationError(JournalError):
    """An additive schema change could not be applied."""
