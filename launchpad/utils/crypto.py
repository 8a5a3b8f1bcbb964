"""Simple *Fernet* encryption helper for OAuth tokens stored at rest.

The key is read lazily on first use so that test-suites can set
``FERNET_SECRET`` before the first encrypt/decrypt call rather than before
import.
"""

from __future__ import annotations

from cryptography.fernet import Fernet
from cryptography.fernet import InvalidToken

from launchpad.config import get_settings

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        secret = get_settings().fernet_secret
        if not secret:
            raise RuntimeError("FERNET_SECRET environment variable must be set.")
        try:
            _fernet = Fernet(secret.encode())
        except (ValueError, TypeError) as exc:
            raise RuntimeError("FERNET_SECRET is not a valid url-safe base64 32-byte key") from exc
    return _fernet


def encrypt(text: str) -> str:  # noqa: D401
    """Encrypt *text* and return url-safe base64 ciphertext."""

    return _get_fernet().encrypt(text.encode()).decode()


def decrypt(token: str) -> str:  # noqa: D401
    """Decrypt *token* back to UTF-8 string."""

    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except InvalidToken as exc:
        raise ValueError("decryption failed: invalid key or ciphertext") from exc


__all__ = [
    "encrypt",
    "decrypt",
]
