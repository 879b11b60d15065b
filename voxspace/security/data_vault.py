"""Encryption of private bag content stored in the on-device mirror."""
from __future__ import annotations

import threading
from typing import Final

from cryptography.fernet import Fernet, InvalidToken

from .secrets import MissingSecretError, optional_secret, require_secret


class DataVaultError(RuntimeError):
    """Raised when data cannot be encrypted or decrypted via the vault."""


_PREFIX: Final[str] = "vault.v1:"
_KEY_NAME: Final[str] = "DATA_VAULT_MASTER_KEY"

_vault_lock = threading.Lock()
_vault_instance: Fernet | None = None


def _coerce_key(raw_key: str) -> bytes:
    key_bytes = raw_key.encode("utf-8")
    try:
        Fernet(key_bytes)
    except (ValueError, TypeError) as exc:
        raise DataVaultError(f"{_KEY_NAME} is invalid") from exc
    return key_bytes


def _get_vault() -> Fernet:
    global _vault_instance
    if _vault_instance is None:
        with _vault_lock:
            if _vault_instance is None:
                try:
                    raw_key = require_secret(_KEY_NAME)
                except MissingSecretError as exc:
                    raise DataVaultError(str(exc)) from exc
                _vault_instance = Fernet(_coerce_key(raw_key))
    return _vault_instance


def is_vault_configured() -> bool:
    """Return ``True`` when a master key is available for at-rest encryption."""

    return optional_secret(_KEY_NAME) is not None


def reset_vault() -> None:
    """Forget the cached cipher so a rotated key is picked up."""

    global _vault_instance
    with _vault_lock:
        _vault_instance = None


def is_ciphertext(value: str | None) -> bool:
    """Return ``True`` when ``value`` appears to be vault ciphertext."""

    return bool(value and value.startswith(_PREFIX))


def encrypt_text(value: str) -> str:
    """Encrypt ``value`` and return a prefixed ciphertext safe for storage."""

    if not value:
        value = ""
    if is_ciphertext(value):
        return value
    token = _get_vault().encrypt(value.encode("utf-8")).decode("utf-8")
    return f"{_PREFIX}{token}"


def decrypt_text(value: str) -> str:
    """Attempt to decrypt ``value``; passthrough when no vault prefix is set."""

    if not value:
        return ""
    if not is_ciphertext(value):
        return value
    token = value[len(_PREFIX) :]
    try:
        payload = _get_vault().decrypt(token.encode("utf-8"))
    except InvalidToken as exc:
        raise DataVaultError("Unable to decrypt value") from exc
    return payload.decode("utf-8")


__all__ = [
    "DataVaultError",
    "decrypt_text",
    "encrypt_text",
    "is_ciphertext",
    "is_vault_configured",
    "reset_vault",
]
