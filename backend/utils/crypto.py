"""Symmetric encryption for third-party service credentials.

``encrypt_secret`` / ``decrypt_secret`` use Fernet keyed by the
``CREDENTIALS_ENCRYPTION_KEY`` environment variable. Generate a key with
``Fernet.generate_key()`` and keep it out of source control.
"""
import json
import os
from typing import Any, Dict

from cryptography.fernet import Fernet, InvalidToken


class CredentialEncryptionError(Exception):
    """Raised when credentials cannot be encrypted or decrypted."""


def _get_fernet() -> Fernet:
    key = os.getenv("CREDENTIALS_ENCRYPTION_KEY")
    if not key:
        raise CredentialEncryptionError("CREDENTIALS_ENCRYPTION_KEY is not set")
    return Fernet(key.encode() if isinstance(key, str) else key)


def encrypt_secret(plaintext: str) -> str:
    return _get_fernet().encrypt(plaintext.encode("utf-8")).decode("utf-8")


def decrypt_secret(ciphertext: str) -> str:
    try:
        return _get_fernet().decrypt(ciphertext.encode("utf-8")).decode("utf-8")
    except InvalidToken as e:
        raise CredentialEncryptionError("Stored credentials cannot be decrypted with the current key") from e


def encrypt_fields(fields: Dict[str, Any]) -> str:
    return encrypt_secret(json.dumps(fields))


def decrypt_fields(ciphertext: str) -> Dict[str, Any]:
    return json.loads(decrypt_secret(ciphertext))
