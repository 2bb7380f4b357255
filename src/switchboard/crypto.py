"""Encryption of credentials stored in the config store.

Values are Fernet tokens. The key comes from ``[secrets] credential_key``
when set, otherwise from a key file under the data directory that is created
on first use.
"""

from __future__ import annotations

import os

from cryptography.fernet import Fernet, InvalidToken

from switchboard.config import get_settings
from switchboard.logger import logger


class CredentialDecodeError(Exception):
    """A stored credential could not be decrypted."""


_fernet: Fernet | None = None


def _load_key() -> bytes:
    s = get_settings()
    if s.secrets.credential_key is not None:
        return s.secrets.credential_key.get_secret_value().encode()

    path = s.credential_key_path
    if path.exists():
        return path.read_bytes().strip()

    key = Fernet.generate_key()
    path.parent.mkdir(parents=True, exist_ok=True)
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_EXCL, 0o600)
    with os.fdopen(fd, "wb") as f:
        f.write(key)
    logger.info("Generated credential key", path=str(path))
    return key


def _get_fernet() -> Fernet:
    global _fernet
    if _fernet is None:
        _fernet = Fernet(_load_key())
    return _fernet


def reset_crypto() -> None:
    """Forget the cached key (for tests)."""
    global _fernet
    _fernet = None


def encrypt_value(plaintext: str) -> str:
    return _get_fernet().encrypt(plaintext.encode()).decode()


def decrypt_value(token: str) -> str:
    """Decrypt a value produced by ``encrypt_value``.

    Raises CredentialDecodeError when the token is malformed or was encrypted
    under a different key.
    """
    try:
        return _get_fernet().decrypt(token.encode()).decode()
    except (InvalidToken, UnicodeError) as exc:
        raise CredentialDecodeError("Stored credential could not be decrypted") from exc
