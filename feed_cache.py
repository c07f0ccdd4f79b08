"""Per-feed story cache and the background fetch orchestrator.

Completions are applied only when their generation matches the entry's
current generation, so a slow fetch can never overwrite a newer one.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from typing import Callable, Iterable

from hn_api import DEFAULT_STORY_COUNT, FEED_KINDS, FetchError, Story

logger = logging.getLogger(__name__)

NOT_LOADED = "not_loaded"
LOADING = "loading"
LOADED = "loaded"
FAILED = "failed"


@dataclass(frozen=True)
class FeedEntry:
    status: str = NOT_LOADED
    items: tuple[Story, ...] = ()
    error: str = ""
    generation: int = 0
    loaded_at: datetime | None = None


@dataclass(frozen=True)
class FeedCompletion:
    kind: str
    generation: int
    items: tuple[Story, ...] = ()
    error: str | None = None


class FeedCache:
    def __init__(self, kinds: Iterable[str] = FEED_KINDS) -> None:
        self._entries: dict[str, FeedEntry] = {kind: FeedEntry() for kind in kinds}

    @property
    def kinds(self) -> tuple[str, ...]:
        return tuple(self._entries)

    def get(self, kind: str) -> FeedEntry:
        return self._entries[kind]

    def begin_load(self, kind: str) -> int:
        entry = self._entries[kind]
        generation = entry.generation + 1
        self._entries[kind] = replace(entry, status=LOADING, generation=generation)
        return generation

    def complete_load(
        self,
        kind: str,
        generation: int,
        items: Iterable[Story] | None = None,
        error: str | None = None,
    ) -> bool:
        entry = self._entries[kind]
        if generation != entry.generation:
            return False
        if error is not None:
            self._entries[kind] = FeedEntry(status=FAILED, error=error, generation=generation)
        else:
            self._entries[kind] = FeedEntry(
                status=LOADED,
                items=tuple(items or ()),
                generation=generation,
                loaded_at=datetime.now(timezone.utc),
            )
        return True


def start_daemon_thread(job: Callable[[], None]) -> None:
    threading.Thread(target=job, daemon=True).start()


class FetchOrchestrator:
    def __init__(
        self,
        cache: FeedCache,
        fetch_stories: Callable[[str, int], list[Story]],
        post: Callable[[tuple[str, object]], None],
        spawn: Callable[[Callable[[], None]], None] = start_daemon_thread,
        count: int = DEFAULT_STORY_COUNT,
    ) -> None:
        self.cache = cache
        self.fetch_stories = fetch_stories
        self.post = post
        self.spawn = spawn
        self.count = count

    def load_all(self) -> list[str]:
        started = [kind for kind in self.cache.kinds if self.cache.get(kind).status == NOT_LOADED]
        for kind in started:
            self.refresh(kind)
        return started

    def refresh(self, kind: str) -> int:
        generation = self.cache.begin_load(kind)
        logger.info("Fetching %s (generation %d)", kind, generation)
        self.spawn(lambda: self.post(("feed", self.fetch(kind, generation))))
        return generation

    def refresh_all(self) -> list[int]:
        return [self.refresh(kind) for kind in self.cache.kinds]

    def fetch(self, kind: str, generation: int) -> FeedCompletion:
        try:
            stories = self.fetch_stories(kind, self.count)
        except FetchError as exc:
            logger.warning("%s fetch failed: %s", kind, exc)
            return FeedCompletion(kind, generation, error=str(exc))
        except Exception as exc:
            logger.exception("%s fetch crashed", kind)
            return FeedCompletion(kind, generation, error=f"Unexpected error: {exc}")
        return FeedCompletion(kind, generation, items=tuple(stories))

    def apply(self, completion: FeedCompletion) -> bool:
        applied = self.cache.complete_load(
            completion.kind,
            completion.generation,
            items=completion.items,
            error=completion.error,
        )
        if not applied:
            logger.info(
                "Dropped stale %s completion (generation %d)",
                completion.kind,
                completion.generation,
            )
        return applied
