"""API routes for ephemeral stories."""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Response, status

from voxspace.schemas import Story, StoryCreate, StoryFeed, ViewRecordResponse
from voxspace.services import StoryEngine

from .deps import get_current_user_id, get_story_engine

router = APIRouter(prefix="/stories", tags=["stories"])


@router.get("/feed", response_model=StoryFeed)
async def list_story_feed(
    viewer_id: str = Depends(get_current_user_id),
    engine: StoryEngine = Depends(get_story_engine),
) -> StoryFeed:
    return await engine.list_active(viewer_id)


@router.post("", response_model=Story, status_code=status.HTTP_201_CREATED)
async def create_story_endpoint(
    payload: StoryCreate,
    owner_id: str = Depends(get_current_user_id),
    engine: StoryEngine = Depends(get_story_engine),
) -> Story:
    return await engine.create_story(owner_id, payload)


@router.post("/{story_id}/views", response_model=ViewRecordResponse)
async def record_story_view(
    story_id: str,
    viewer_id: str = Depends(get_current_user_id),
    engine: StoryEngine = Depends(get_story_engine),
) -> ViewRecordResponse:
    story = await engine.get_story(story_id)
    if story is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Story not found")
    return ViewRecordResponse(recorded=await engine.record_view(story, viewer_id))


@router.delete("/{story_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_story_endpoint(
    story_id: str,
    actor_id: str = Depends(get_current_user_id),
    engine: StoryEngine = Depends(get_story_engine),
) -> Response:
    if not await engine.delete_story(story_id, actor_id):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Story not found")
    return Response(status_code=status.HTTP_204_NO_CONTENT)


__all__ = ["router"]
