"""Encryption of Instagram access tokens at rest (Fernet)."""

import base64
from functools import lru_cache

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from config import get_settings

__all__ = ["InvalidToken", "encrypt_token", "decrypt_token"]


@lru_cache
def _get_fernet(key: str) -> Fernet:
    """Build a Fernet instance, stretching the key if it isn't a Fernet key."""
    try:
        return Fernet(key.encode())
    except ValueError:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=b"instametrics_token_salt",
            iterations=100000,
        )
        return Fernet(base64.urlsafe_b64encode(kdf.derive(key.encode())))


def encrypt_token(token: str) -> str:
    """Encrypt an access token for storage."""
    fernet = _get_fernet(get_settings().token_encryption_key)
    return fernet.encrypt(token.encode()).decode()


def decrypt_token(encrypted_token: str) -> str:
    """Decrypt a stored access token.

    Raises InvalidToken if the ciphertext was produced with another key.
    """
    fernet = _get_fernet(get_settings().token_encryption_key)
    return fernet.decrypt(encrypted_token.encode()).decode()
