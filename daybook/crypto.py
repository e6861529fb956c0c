# -*- coding: utf-8 -*-
"""Crypto helpers for whole-file journal encryption.

This module encapsulates *stateless* cryptographic helpers. It does **not**
perform any file or database I/O.

Key derivation is a single unsalted SHA-256 of the password, so the same
password always yields the same key. That matches the on-disk format of
existing journals and offers no resistance to offline guessing.
"""
from __future__ import annotations

import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .errors import InvalidCredentialError

# ---------------------------------------------------------------------
# Parameters
# ---------------------------------------------------------------------

NONCE_LEN = 12
TAG_LEN = 16


# ---------------------------------------------------------------------
# Key derivation
# ---------------------------------------------------------------------

def derive_key(password: str) -> bytes:
    """Derive the 32-byte AES key from *password* (SHA-256, no salt)."""
    digest = hashes.Hash(hashes.SHA256())
    digest.update(password.encode("utf-8"))
    return digest.finalize()


# ---------------------------------------------------------------------
# Blob envelope: nonce || ciphertext || tag
# ---------------------------------------------------------------------

def encrypt(plaintext: bytes, password: str) -> bytes:
    """Seal *plaintext* under *password*; a fresh nonce is drawn every call."""
    nonce = secrets.token_bytes(NONCE_LEN)
    return nonce + AESGCM(derive_key(password)).encrypt(nonce, plaintext, None)

def decrypt(blob: bytes, password: str) -> bytes:
    """Open a blob produced by :func:`encrypt`.

    Raises InvalidCredentialError for a short blob, a tag mismatch or a
    wrong key alike.
    """
    if len(blob) < NONCE_LEN + TAG_LEN:
        raise InvalidCredentialError()
    try:
        return AESGCM(derive_key(password)).decrypt(blob[:NONCE_LEN], blob[NONCE_LEN:], None)
    except InvalidTag as exc:
        raise InvalidCredentialError() from exc
