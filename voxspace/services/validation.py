"""Input checks applied before any optimistic state change."""
from __future__ import annotations

from typing import Iterable

from ..config import ALLOWED_STORY_TTL_HOURS
from ..schemas import StoryKind

MIN_POLL_OPTIONS = 2


class ContentValidationError(ValueError):
    """Raised when user content is rejected before it reaches the remote store."""


def clean_poll_options(options: Iterable[str] | None) -> list[str]:
    cleaned = [option.strip() for option in options or () if option and option.strip()]
    if len(cleaned) < MIN_POLL_OPTIONS:
        raise ContentValidationError(f"Polls need at least {MIN_POLL_OPTIONS} options")
    return cleaned


def validate_post(
    content: str | None,
    *,
    media_url: str | None = None,
    poll_options: Iterable[str] | None = None,
) -> list[str] | None:
    """Return cleaned poll options (or ``None``) for a post that passes validation."""

    if not (content or "").strip() and not media_url:
        raise ContentValidationError("Post content cannot be empty")
    if poll_options is None:
        return None
    return clean_poll_options(poll_options)


def validate_story(
    kind: StoryKind | str,
    *,
    content: str | None,
    ttl_hours: int,
    has_media: bool,
    poll_options: Iterable[str] | None = None,
) -> list[str] | None:
    try:
        kind = StoryKind(kind)
    except ValueError as exc:
        raise ContentValidationError(f"Unknown story type {kind!r}") from exc
    if ttl_hours not in ALLOWED_STORY_TTL_HOURS:
        raise ContentValidationError(f"Story lifetime must be one of {ALLOWED_STORY_TTL_HOURS} hours")
    if kind in (StoryKind.TEXT, StoryKind.POLL) and not (content or "").strip():
        raise ContentValidationError("Story content cannot be empty")
    if kind in (StoryKind.IMAGE, StoryKind.VIDEO, StoryKind.VOICE) and not has_media:
        raise ContentValidationError(f"{kind.value} stories need a media file")
    if kind is StoryKind.POLL:
        return clean_poll_options(poll_options)
    return None


__all__ = [
    "ContentValidationError",
    "MIN_POLL_OPTIONS",
    "clean_poll_options",
    "validate_post",
    "validate_story",
]
