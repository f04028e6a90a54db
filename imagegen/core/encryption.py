"""Fernet encryption helpers for stored backend credentials."""

import logging

from cryptography.fernet import Fernet, InvalidToken

from imagegen.core.config import settings

logger = logging.getLogger(__name__)

_fernet: Fernet | None = None


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        key = settings.fernet_key
        if not key:
            raise ValueError("FERNET_KEY is not configured — cannot encrypt/decrypt credentials")
        _fernet = Fernet(key.encode() if isinstance(key, str) else key)
    return _fernet


def reset_fernet() -> None:
    """Drop the cached cipher so the next call picks up a changed FERNET_KEY."""
    global _fernet
    _fernet = None


def encrypt_value(plaintext: str) -> str:
    """Encrypt a string value. Returns a URL-safe token suitable for a JSON file."""
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("ascii")


def decrypt_value(token: str) -> str:
    """Decrypt a stored token back to string. Returns empty string on failure."""
    if not token:
        return ""
    try:
        return _get_fernet().decrypt(token.encode("ascii")).decode("utf-8")
    except InvalidToken:
        logger.error("Failed to decrypt credential — invalid Fernet key or corrupted data")
        return ""
