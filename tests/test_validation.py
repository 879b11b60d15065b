"""Tests for content checks applied before optimistic writes."""
from __future__ import annotations

import pytest

from voxspace.schemas import StoryKind
from voxspace.services.validation import ContentValidationError, clean_poll_options, validate_post, validate_story


def test_post_needs_text_or_media() -> None:
    with pytest.raises(ContentValidationError):
        validate_post("   ")
    assert validate_post("", media_url="https://cdn.test/a.png") is None
    assert validate_post("hello") is None


def test_poll_options_are_trimmed_and_counted() -> None:
    assert clean_poll_options([" yes ", "", "no", "  "]) == ["yes", "no"]
    with pytest.raises(ContentValidationError):
        clean_poll_options(["only one"])
    with pytest.raises(ContentValidationError):
        validate_post("Which?", poll_options=[])


@pytest.mark.parametrize("ttl", [12, 24, 48])
def test_story_lifetimes_accepted(ttl: int) -> None:
    assert validate_story(StoryKind.TEXT, content="hi", ttl_hours=ttl, has_media=False) is None


@pytest.mark.parametrize(
    ("kind", "content", "ttl", "has_media", "options"),
    [
        ("text", "hi", 1, False, None),
        ("text", "  ", 24, False, None),
        ("poll", "", 24, False, ["a", "b"]),
        ("poll", "Q?", 24, False, ["a"]),
        ("image", None, 24, False, None),
        ("voice", None, 24, False, None),
        ("hologram", "hi", 24, False, None),
    ],
)
def test_invalid_stories_rejected(kind, content, ttl, has_media, options) -> None:
    with pytest.raises(ContentValidationError):
        validate_story(kind, content=content, ttl_hours=ttl, has_media=has_media, poll_options=options)


def test_media_story_with_media_passes() -> None:
    assert validate_story("video", content=None, ttl_hours=48, has_media=True) is None
    assert validate_story("poll", content="Q?", ttl_hours=12, has_media=False, poll_options=["a", "b"]) == ["a", "b"]
