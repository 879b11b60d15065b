"""Sequential playback of one owner's story group.

States are ``PLAYING``, ``PAUSED``, ``ADVANCING`` (transient, while moving to
the next item) and ``CLOSED`` (terminal). Time is pushed in explicitly through
:meth:`StoryPlayback.tick`; :class:`PlaybackTimer` drives it from the event
loop for real sessions.
"""
from __future__ import annotations

import asyncio
import contextlib
import logging
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Sequence

from ..config import get_settings
from ..schemas import TIMED_MEDIA_KINDS, Story

if TYPE_CHECKING:
    from .story_service import StoryEngine

logger = logging.getLogger(__name__)

TIMER_INTERVAL_MS = 50


class PlaybackState(str, Enum):
    PLAYING = "playing"
    PAUSED = "paused"
    ADVANCING = "advancing"
    CLOSED = "closed"


class StoryPlayback:
    def __init__(
        self,
        stories: Sequence[Story],
        *,
        start_index: int = 0,
        default_duration_ms: int | None = None,
        on_close: Callable[[], Any] | None = None,
        on_item: Callable[[Story], Any] | None = None,
    ) -> None:
        if not stories:
            raise ValueError("A story group needs at least one story")
        if not 0 <= start_index < len(stories):
            raise IndexError(f"start_index {start_index} outside group of {len(stories)}")
        self._stories = list(stories)
        self._default_ms = default_duration_ms or get_settings().story_default_duration_ms
        self._on_close = on_close
        self._on_item = on_item
        self._media_durations: dict[int, int] = {}
        self._held = False
        self.index = start_index
        self.elapsed_ms = 0.0
        self.state = PlaybackState.PLAYING
        self._enter(start_index)

    @property
    def stories(self) -> list[Story]:
        return list(self._stories)

    @property
    def current(self) -> Story:
        return self._stories[self.index]

    @property
    def duration_ms(self) -> int | None:
        """Duration of the current item; ``None`` while media metadata is pending."""

        if self.current.type in TIMED_MEDIA_KINDS:
            return self._media_durations.get(self.index)
        return self._default_ms

    @property
    def progress(self) -> float:
        duration = self.duration_ms
        if not duration:
            return 0.0
        return min(1.0, self.elapsed_ms / duration)

    @property
    def closed(self) -> bool:
        return self.state is PlaybackState.CLOSED

    def _enter(self, index: int) -> None:
        self.index = index
        self.elapsed_ms = 0.0
        runnable = self.duration_ms is not None and not self._held
        self.state = PlaybackState.PLAYING if runnable else PlaybackState.PAUSED
        if self._on_item is not None:
            self._on_item(self.current)

    def media_loaded(self, duration_ms: int) -> None:
        if self.closed or duration_ms <= 0:
            return
        self._media_durations[self.index] = duration_ms
        if self.state is PlaybackState.PAUSED and not self._held:
            self.state = PlaybackState.PLAYING

    def press(self) -> None:
        self._held = True
        if self.state is PlaybackState.PLAYING:
            self.state = PlaybackState.PAUSED

    def release(self) -> None:
        self._held = False
        if self.state is PlaybackState.PAUSED and self.duration_ms is not None:
            self.state = PlaybackState.PLAYING

    def tick(self, elapsed_ms: float) -> None:
        """Advance the clock; overflow past an item's end carries into the next item."""

        remaining = float(elapsed_ms)
        while remaining > 0 and self.state is PlaybackState.PLAYING:
            duration = self.duration_ms
            if duration is None:
                return
            left = duration - self.elapsed_ms
            if remaining < left:
                self.elapsed_ms += remaining
                return
            remaining -= left
            self.elapsed_ms = float(duration)
            self._advance()

    def _advance(self) -> None:
        self.state = PlaybackState.ADVANCING
        if self.index + 1 < len(self._stories):
            self._enter(self.index + 1)
        else:
            self.close()

    def next(self) -> None:
        if not self.closed:
            self._advance()

    def prev(self) -> None:
        if self.closed or self.index == 0:
            return
        self._enter(self.index - 1)

    def close(self) -> None:
        if self.closed:
            return
        self.state = PlaybackState.CLOSED
        if self._on_close is not None:
            self._on_close()

    async def delete_current(self, engine: "StoryEngine", actor_id: str) -> None:
        """Delete the playing story remotely and close; the group is refetched, never re-sliced."""

        if self.closed:
            return
        story = self.current
        previous = self.state
        self.state = PlaybackState.PAUSED
        try:
            await engine.delete_story(story.id, actor_id)
        except Exception:
            self.state = previous
            raise
        logger.info("Deleted story %s during playback", story.id)
        self.close()


class PlaybackTimer:
    def __init__(self, playback: StoryPlayback, *, interval_ms: int = TIMER_INTERVAL_MS) -> None:
        self._playback = playback
        self._interval = interval_ms / 1000
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if not self.running:
            self._task = asyncio.get_running_loop().create_task(self._run())

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        last = loop.time()
        while not self._playback.closed:
            await asyncio.sleep(self._interval)
            now = loop.time()
            self._playback.tick((now - last) * 1000)
            last = now

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None

    async def wait_closed(self) -> None:
        if self._task is not None:
            await self._task


__all__ = ["PlaybackState", "PlaybackTimer", "StoryPlayback", "TIMER_INTERVAL_MS"]
