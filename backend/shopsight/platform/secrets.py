"""
Secrets encryption and log redaction.

CRITICAL SECURITY REQUIREMENTS:
- NEVER store the Shopify access token in plaintext in DB or logs
- All encrypt/decrypt operations MUST use this module
- Any variable name containing token/secret/key MUST be redacted from logs

Encryption uses a Fernet key derived (PBKDF2-SHA256) from ENCRYPTION_KEY.

Usage:
    from shopsight.platform.secrets import encrypt_secret, decrypt_secret, redact_secrets

    encrypted = encrypt_secret(access_token)
    access_token = decrypt_secret(encrypted)
    safe = redact_secrets({"access_token": "shpat_...", "shop": "x"})
"""

import base64
import hashlib
import logging
import os
import re
from typing import Any, Optional

from cryptography.fernet import Fernet, InvalidToken

logger = logging.getLogger(__name__)

# Patterns for detecting secrets in logs
SECRET_PATTERNS = [
    re.compile(r"(api[_-]?key)", re.IGNORECASE),
    re.compile(r"(access[_-]?token)", re.IGNORECASE),
    re.compile(r"(password)", re.IGNORECASE),
    re.compile(r"(client[_-]?secret)", re.IGNORECASE),
    re.compile(r"(encryption[_-]?key)", re.IGNORECASE),
    re.compile(r"(hmac)", re.IGNORECASE),
    re.compile(r"(webhook[_-]?secret)", re.IGNORECASE),
    re.compile(r"(database[_-]?url)", re.IGNORECASE),
    re.compile(r"(credential)", re.IGNORECASE),
    re.compile(r"(authorization)", re.IGNORECASE),
]

SECRET_VALUE_PATTERNS = [
    re.compile(r"(Bearer\s+[a-zA-Z0-9._-]+)"),
    re.compile(r"(shpat_[a-fA-F0-9]{32,})"),  # Shopify access tokens
    re.compile(r"(shpss_[a-zA-Z0-9]{24,})"),  # Shopify shared secrets
]

REDACTED_VALUE = "[REDACTED]"

_KDF_SALT = b"shopsight-token-salt"
_KDF_ITERATIONS = 100000


class EncryptionError(Exception):
    """Raised when encryption/decryption operations fail."""
    pass


class SecretsManager:
    """Fernet encryption keyed from ENCRYPTION_KEY (lazily initialized)."""

    def __init__(self, encryption_key: Optional[str] = None):
        self._encryption_key = encryption_key
        self._fernet: Optional[Fernet] = None

    def _get_fernet(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        encryption_key = self._encryption_key or os.getenv("ENCRYPTION_KEY")
        if not encryption_key:
            raise EncryptionError("ENCRYPTION_KEY is not configured")

        derived_key = hashlib.pbkdf2_hmac(
            "sha256",
            encryption_key.encode(),
            _KDF_SALT,
            _KDF_ITERATIONS,
            dklen=32,
        )
        self._fernet = Fernet(base64.urlsafe_b64encode(derived_key))
        return self._fernet

    def encrypt(self, plaintext: str) -> str:
        if not plaintext:
            raise ValueError("Cannot encrypt empty string")
        return self._get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")

    def decrypt(self, ciphertext: str) -> str:
        if not ciphertext:
            raise ValueError("Cannot decrypt empty string")
        try:
            return self._get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
        except InvalidToken:
            raise EncryptionError("Invalid ciphertext or wrong encryption key")

    def reset(self) -> None:
        """Drop the cached key (after ENCRYPTION_KEY changes)."""
        self._fernet = None


# Singleton instance
_secrets_manager = SecretsManager()


def encrypt_secret(plaintext: str) -> str:
    """Encrypt a secret for database storage."""
    return _secrets_manager.encrypt(plaintext)


def decrypt_secret(ciphertext: str) -> str:
    """Decrypt a secret read from the database."""
    return _secrets_manager.decrypt(ciphertext)


def reset_secrets_manager() -> None:
    """Reset cached key (for tests only)."""
    _secrets_manager.reset()


def is_secret_key(key: str) -> bool:
    """True if the dictionary key name suggests it holds a secret."""
    return any(pattern.search(key) for pattern in SECRET_PATTERNS)


def redact_value(value: Any) -> Any:
    if not isinstance(value, str):
        return value

    result = value
    for pattern in SECRET_VALUE_PATTERNS:
        result = pattern.sub(REDACTED_VALUE, result)
    return result


def redact_secrets(data: Any, _depth: int = 0) -> Any:
    """
    Recursively redact secrets from a data structure.

    Use this before logging any data that might contain secrets.

    Usage:
        safe_data = redact_secrets({"access_token": "shpat_123", "name": "test"})
        logger.info("Request data", extra=safe_data)
    """
    if _depth > 10:
        return data

    if isinstance(data, dict):
        result = {}
        for key, value in data.items():
            if isinstance(key, str) and is_secret_key(key):
                result[key] = REDACTED_VALUE
            else:
                result[key] = redact_secrets(value, _depth + 1)
        return result

    if isinstance(data, (list, tuple)):
        return [redact_secrets(item, _depth + 1) for item in data]

    if isinstance(data, str):
        return redact_value(data)

    return data
