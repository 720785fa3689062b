import base64
import hashlib
import json
import os
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from cryptography.fernet import Fernet, InvalidToken
from sqlalchemy.types import TypeDecorator, Text


def _build_cipher() -> Fernet:
    """Derive a stable Fernet key from ENCRYPTION_SECRET (or fallback dev secret)."""
    secret = os.getenv("ENCRYPTION_SECRET", "dev-secret-key-change-me").encode("utf-8")
    # Derive a 32-byte key and urlsafe-base64 encode for Fernet
    key = base64.urlsafe_b64encode(hashlib.sha256(secret).digest())
    return Fernet(key)


_CIPHER = _build_cipher()


def encrypt_text(value: str) -> str:
    """Return a Fernet token for ``value``; the token is what gets persisted."""
    return _CIPHER.encrypt(value.encode("utf-8")).decode("utf-8")


def decrypt_text(token: str) -> str:
    """Decrypt a token produced by :func:`encrypt_text`.

    Raises ``InvalidToken`` when the token was produced with another secret
    or has been tampered with.
    """
    return _CIPHER.decrypt(token.encode("utf-8")).decode("utf-8")


@contextmanager
def decrypted(token: Optional[str]) -> Iterator[str]:
    """Scope plaintext to a ``with`` block.

    The plaintext is only reachable through the bound name; callers must not
    stash it on ORM objects or log it.
    """
    if not token:
        raise ValueError("No encrypted payload to decrypt")
    plaintext = decrypt_text(token)
    try:
        yield plaintext
    finally:
        del plaintext


class EncryptedJSON(TypeDecorator):
    """Encrypts/decrypts JSON-serializable values transparently."""

    impl = Text
    cache_ok = True

    def process_bind_param(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        payload = json.dumps(value, default=str)
        return encrypt_text(payload)

    def process_result_value(self, value: Any, dialect) -> Any:  # type: ignore[override]
        if value is None:
            return None
        try:
            return json.loads(decrypt_text(value))
        except (InvalidToken, ValueError):
            return None
