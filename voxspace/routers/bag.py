"""API routes for the PIN-gated "My Bag" vault."""
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status
from pydantic import BaseModel

from voxspace.schemas import VaultItem, VaultItemCreate, VaultPinChange, VaultUnlock, VaultUsage
from voxspace.services import VaultController

from .deps import get_vault

router = APIRouter(prefix="/bag", tags=["bag"])


class VaultStatusResponse(BaseModel):
    state: str


@router.post("/unlock", response_model=VaultStatusResponse)
async def unlock_bag(payload: VaultUnlock, vault: VaultController = Depends(get_vault)) -> VaultStatusResponse:
    await vault.unlock(payload.pin)
    return VaultStatusResponse(state=vault.state.value)


@router.post("/lock", response_model=VaultStatusResponse)
def lock_bag(vault: VaultController = Depends(get_vault)) -> VaultStatusResponse:
    vault.lock()
    return VaultStatusResponse(state=vault.state.value)


@router.post("/pin", status_code=status.HTTP_204_NO_CONTENT)
async def set_bag_pin(payload: VaultPinChange, vault: VaultController = Depends(get_vault)) -> None:
    if payload.old_pin is None:
        await vault.setup_pin(payload.new_pin)
    else:
        await vault.change_pin(payload.old_pin, payload.new_pin)


@router.get("/items", response_model=list[VaultItem])
async def list_bag_items(
    category: str = Query("all"),
    q: str = Query(""),
    vault: VaultController = Depends(get_vault),
) -> list[VaultItem]:
    items = await vault.list_items()
    if vault.is_locked or (category == "all" and not q):
        return items
    return vault.search(category, q)


@router.post("/items", response_model=VaultItem, status_code=status.HTTP_201_CREATED)
async def add_bag_item(payload: VaultItemCreate, vault: VaultController = Depends(get_vault)) -> VaultItem:
    return await vault.add_item(payload)


@router.get("/usage", response_model=VaultUsage)
def bag_usage(vault: VaultController = Depends(get_vault)) -> VaultUsage:
    return vault.usage()


__all__ = ["router"]
