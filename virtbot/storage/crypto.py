"""Symmetric encryption for panel credentials at rest."""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

ENCRYPTION_KEY_ENV = "VIRTBOT_ENCRYPTION_KEY"


def _fernet() -> Fernet:
    key = os.getenv(ENCRYPTION_KEY_ENV)
    if not key:
        raise RuntimeError(f"{ENCRYPTION_KEY_ENV} is not set")
    try:
        return Fernet(key.encode("ascii"))
    except (ValueError, TypeError) as exc:
        raise RuntimeError(f"{ENCRYPTION_KEY_ENV} is not a valid Fernet key") from exc


def encrypt(plaintext: str) -> str:
    return _fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt(token: str) -> str:
    try:
        return _fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken as exc:
        raise RuntimeError("Stored credentials could not be decrypted with the current key") from exc


def generate_key() -> str:
    return Fernet.generate_key().decode("ascii")


__all__ = ["decrypt", "encrypt", "generate_key"]
