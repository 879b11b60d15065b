"""API routes for chat backup export and restore."""
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Body, Depends

from voxspace.schemas import RestoreSummary
from voxspace.services import BackupService

from .deps import get_backup_service, get_current_user_id

router = APIRouter(prefix="/backup", tags=["backup"])


@router.get("/chats")
async def export_chat_backup(
    user_id: str = Depends(get_current_user_id),
    service: BackupService = Depends(get_backup_service),
) -> dict[str, Any]:
    backup = await service.export_chats(user_id)
    return backup.to_document()


@router.post("/chats/restore", response_model=RestoreSummary)
async def restore_chat_backup(
    document: dict[str, Any] = Body(...),
    _user_id: str = Depends(get_current_user_id),
    service: BackupService = Depends(get_backup_service),
) -> RestoreSummary:
    return await service.restore(document)


__all__ = ["router"]
