"""Environment-backed credentials shared by the remote clients and the vault cipher."""
from __future__ import annotations

import os
from typing import Final

__all__ = ["MissingSecretError", "is_placeholder", "optional_secret", "require_secret"]


class MissingSecretError(RuntimeError):
    """Raised when a credential the caller cannot run without is absent."""


# Values shipped in sample .env files; treated the same as an unset variable
_SAMPLE_VALUES: Final[frozenset[str]] = frozenset(
    {
        "changeme",
        "change-me",
        "placeholder",
        "example",
        "sample",
        "your-key-here",
        "your-anon-key",
    }
)


def is_placeholder(value: str | None) -> bool:
    cleaned = (value or "").strip().lower()
    return not cleaned or cleaned in _SAMPLE_VALUES


def optional_secret(name: str) -> str | None:
    """Return the credential stored under ``name``, or ``None`` if it is blank or a sample value."""

    raw = os.getenv(name)
    return None if is_placeholder(raw) else raw.strip()  # type: ignore[union-attr]


def require_secret(name: str) -> str:
    secret = optional_secret(name)
    if secret is None:
        raise MissingSecretError(f"{name} is not configured (unset, blank or a sample value)")
    return secret
