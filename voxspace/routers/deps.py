"""Shared FastAPI dependencies: the acting user and process-wide collaborators."""
from __future__ import annotations

import logging
from functools import lru_cache

from fastapi import Depends, Header, HTTPException, status

from ..clients import PostgrestRemoteStore, RemoteStore, SqlRemoteStore
from ..clients.base import BlobStorage
from ..config import get_settings
from ..database import get_engine
from ..security.secrets import is_placeholder
from ..services import BackupService, LocalMirrorStore, RealtimeHub, StoryEngine, VaultController
from ..services.storage_service import S3BlobStorage, StorageConfigurationError

logger = logging.getLogger(__name__)

_vaults: dict[str, VaultController] = {}


def get_current_user_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str:
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="X-User-Id header is required")
    return user_id


@lru_cache(maxsize=1)
def get_hub() -> RealtimeHub:
    return RealtimeHub()


@lru_cache(maxsize=1)
def get_remote_store() -> RemoteStore:
    settings = get_settings()
    if not is_placeholder(settings.supabase_url) and not is_placeholder(settings.supabase_anon_key):
        logger.info("Using hosted PostgREST store at %s", settings.supabase_url)
        return PostgrestRemoteStore(settings.supabase_url, settings.supabase_anon_key)
    return SqlRemoteStore(get_engine(), hub=get_hub())


@lru_cache(maxsize=1)
def get_mirror() -> LocalMirrorStore:
    return LocalMirrorStore(get_settings().mirror_database_url)


@lru_cache(maxsize=1)
def get_blob_storage() -> BlobStorage | None:
    try:
        return S3BlobStorage()
    except StorageConfigurationError as exc:
        logger.info("Blob storage disabled: %s", exc)
        return None


def get_story_engine(
    store: RemoteStore = Depends(get_remote_store),
    storage: BlobStorage | None = Depends(get_blob_storage),
) -> StoryEngine:
    return StoryEngine(store, storage, timeout=get_settings().remote_timeout_seconds)


def get_backup_service(
    store: RemoteStore = Depends(get_remote_store),
    mirror: LocalMirrorStore = Depends(get_mirror),
) -> BackupService:
    return BackupService(store, mirror, timeout=get_settings().remote_timeout_seconds)


def get_vault(
    user_id: str = Depends(get_current_user_id),
    store: RemoteStore = Depends(get_remote_store),
    mirror: LocalMirrorStore = Depends(get_mirror),
) -> VaultController:
    """One vault session per user for the lifetime of the process."""

    vault = _vaults.get(user_id)
    if vault is None:
        vault = VaultController(user_id, store, mirror=mirror, timeout=get_settings().remote_timeout_seconds)
        _vaults[user_id] = vault
    return vault


def reset_vault_sessions() -> None:
    _vaults.clear()


__all__ = [
    "get_backup_service",
    "get_blob_storage",
    "get_current_user_id",
    "get_hub",
    "get_mirror",
    "get_remote_store",
    "get_story_engine",
    "get_vault",
    "reset_vault_sessions",
]
