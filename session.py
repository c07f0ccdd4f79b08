"""Session state and the keyboard state machine.

All mutation happens on the main loop. Handlers never perform I/O; they
return effects (``(name, payload)`` tuples) that the loop carries out.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional, Sequence, Union

from feed_cache import FAILED, NOT_LOADED, FeedCache, FeedCompletion, FetchOrchestrator
from hn_api import FEED_KINDS, Story
from summarize import SummaryCompletion, SummaryRequest

Effect = tuple[str, Any]

COMMAND_LOG_MAX = 12
STATUS_MESSAGE_TTL = 5.0


@dataclass(frozen=True)
class Command:
    name: str
    description: str
    action: str

    def matches(self, query: str) -> bool:
        lowered = query.lower()
        return lowered in self.name.lower() or lowered in self.description.lower()


COMMANDS: tuple[Command, ...] = (
    Command("Open in Browser", "Open the selected story in your default browser", "open_story"),
    Command("Open Comments", "Open the comments for the selected story", "open_comments"),
    Command("Summarize", "Get an AI summary of the selected story", "summarize"),
    Command("Search", "Filter stories by text", "search"),
    Command("Switch to Top", "Switch to Top stories section", "switch_top"),
    Command("Switch to Ask", "Switch to Ask HN section", "switch_ask"),
    Command("Switch to Show", "Switch to Show HN section", "switch_show"),
    Command("Switch to Jobs", "Switch to Jobs section", "switch_jobs"),
    Command("Refresh", "Refresh the current section", "refresh"),
    Command("Refresh All", "Refresh all sections", "refresh_all"),
    Command("Quit", "Exit the application", "quit"),
)

SWITCH_ACTIONS = {f"switch_{kind.lower()}": kind for kind in FEED_KINDS}

KEY_BINDINGS: dict[str, str] = {
    "q": "quit",
    "QUIT": "quit",
    "j": "move_down",
    "DOWN": "move_down",
    "k": "move_up",
    "UP": "move_up",
    "T": "switch_top",
    "A": "switch_ask",
    "S": "switch_show",
    "J": "switch_jobs",
    "h": "prev_feed",
    "l": "next_feed",
    "r": "refresh",
    "R": "refresh_all",
    "/": "search",
    ":": "command_palette",
    "PALETTE": "command_palette",
    "o": "options",
    "ENTER": "open_story",
    "C": "open_comments",
}

OPTIONS_MENU: tuple[tuple[str, str], ...] = (
    ("Summarize this post...", "summarize"),
    ("Open this post...", "open_story"),
    ("Close this menu", "close"),
)


@dataclass
class FilterOverlay:
    feed: str
    query: str = ""
    matches: list[int] = field(default_factory=list)
    cursor: int = 0
    scroll: int = 0


@dataclass
class PaletteOverlay:
    query: str = ""
    matches: list[int] = field(default_factory=list)
    cursor: int = 0


@dataclass
class OptionsOverlay:
    cursor: int = 0


@dataclass
class SummaryOverlay:
    story: Story


Overlay = Optional[Union[FilterOverlay, PaletteOverlay, OptionsOverlay, SummaryOverlay]]


@dataclass
class SessionState:
    cache: FeedCache
    active_feed: str
    cursors: dict[str, int]
    overlay: Overlay = None
    summary: SummaryRequest = field(default_factory=SummaryRequest)
    status_message: str = ""
    status_set_at: float = 0.0
    command_log: list[str] = field(default_factory=list)
    # first visible row of the story table, per feed
    scroll_offsets: dict[str, int] = field(default_factory=dict)


def new_session(initial_feed: str = "Top", cache: FeedCache | None = None) -> SessionState:
    cache = cache or FeedCache()
    if initial_feed not in cache.kinds:
        raise ValueError(f"Unknown feed '{initial_feed}'")
    return SessionState(
        cache=cache,
        active_feed=initial_feed,
        cursors={kind: 0 for kind in cache.kinds},
        status_message="Loading stories...",
        status_set_at=time.monotonic(),
    )


def append_command_log(state: SessionState, message: str, max_entries: int = COMMAND_LOG_MAX) -> None:
    timestamp = datetime.now(timezone.utc).strftime("%H:%M:%S")
    state.status_message = message
    state.status_set_at = time.monotonic()
    state.command_log.append(f"[{timestamp}] {message}")
    if len(state.command_log) > max_entries:
        state.command_log = state.command_log[-max_entries:]


def visible_status(state: SessionState, now: float | None = None) -> str:
    """The status line, or an empty string once it is older than STATUS_MESSAGE_TTL."""
    if not state.status_message:
        return ""
    now = time.monotonic() if now is None else now
    if now - state.status_set_at > STATUS_MESSAGE_TTL:
        return ""
    return state.status_message


def match_indices(texts: Sequence[str], query: str) -> list[int]:
    lowered = query.lower()
    return [index for index, text in enumerate(texts) if lowered in text.lower()]


def clamp_selection(index: int, length: int) -> int:
    if length <= 0 or index < 0:
        return 0
    if index >= length:
        return length - 1
    return index


def feed_items(state: SessionState, kind: str | None = None) -> tuple[Story, ...]:
    return state.cache.get(kind or state.active_feed).items


def base_cursor(state: SessionState, kind: str | None = None) -> int:
    kind = kind or state.active_feed
    return clamp_selection(state.cursors[kind], len(feed_items(state, kind)))


def current_view(state: SessionState) -> list[int]:
    """Indices into the active feed's items, in display order."""
    overlay = state.overlay
    if isinstance(overlay, FilterOverlay):
        return list(overlay.matches)
    return list(range(len(feed_items(state))))


def view_cursor(state: SessionState) -> int:
    overlay = state.overlay
    if isinstance(overlay, FilterOverlay):
        return clamp_selection(overlay.cursor, len(overlay.matches))
    return base_cursor(state)


def selected_story(state: SessionState) -> Story | None:
    items = feed_items(state)
    view = current_view(state)
    if not view:
        return None
    return items[view[view_cursor(state)]]


def _refilter_stories(state: SessionState, overlay: FilterOverlay) -> None:
    titles = [story.title for story in feed_items(state, overlay.feed)]
    overlay.matches = match_indices(titles, overlay.query)
    overlay.cursor = clamp_selection(overlay.cursor, len(overlay.matches))


def _refilter_commands(overlay: PaletteOverlay) -> None:
    overlay.matches = [index for index, command in enumerate(COMMANDS) if command.matches(overlay.query)]
    overlay.cursor = clamp_selection(overlay.cursor, len(overlay.matches))


def close_overlay(state: SessionState) -> None:
    if isinstance(state.overlay, SummaryOverlay):
        state.summary.discard()
    state.overlay = None


def open_filter(state: SessionState) -> None:
    close_overlay(state)
    overlay = FilterOverlay(feed=state.active_feed)
    _refilter_stories(state, overlay)
    state.overlay = overlay


def open_palette(state: SessionState) -> None:
    close_overlay(state)
    overlay = PaletteOverlay()
    _refilter_commands(overlay)
    state.overlay = overlay


def open_options(state: SessionState) -> None:
    if selected_story(state) is None:
        append_command_log(state, "No story selected.")
        return
    close_overlay(state)
    state.overlay = OptionsOverlay()


def set_query(state: SessionState, query: str) -> None:
    overlay = state.overlay
    if isinstance(overlay, FilterOverlay):
        overlay.query = query
        _refilter_stories(state, overlay)
    elif isinstance(overlay, PaletteOverlay):
        overlay.query = query
        _refilter_commands(overlay)


def move_cursor(state: SessionState, delta: int) -> None:
    overlay = state.overlay
    if isinstance(overlay, (FilterOverlay, PaletteOverlay)):
        if overlay.matches:
            overlay.cursor = clamp_selection(overlay.cursor + delta, len(overlay.matches))
        return
    if isinstance(overlay, OptionsOverlay):
        overlay.cursor = clamp_selection(overlay.cursor + delta, len(OPTIONS_MENU))
        return
    items = feed_items(state)
    if not items:
        return
    state.cursors[state.active_feed] = clamp_selection(base_cursor(state) + delta, len(items))


def switch_feed(state: SessionState, kind: str) -> list[Effect]:
    if kind == state.active_feed:
        return []
    state.active_feed = kind
    status = state.cache.get(kind).status
    if status == NOT_LOADED:
        append_command_log(state, f"Loading {kind} stories...")
        return [("load", kind)]
    append_command_log(state, f"Switched to {kind} stories")
    return []


def cycle_feed(state: SessionState, step: int) -> list[Effect]:
    kinds = state.cache.kinds
    index = kinds.index(state.active_feed)
    return switch_feed(state, kinds[(index + step) % len(kinds)])


def dispatch(state: SessionState, action: str) -> list[Effect]:
    """Run one named action. Keys and palette commands both land here."""
    if action == "quit":
        return [("quit", None)]
    if action == "move_up":
        move_cursor(state, -1)
        return []
    if action == "move_down":
        move_cursor(state, 1)
        return []
    if action in SWITCH_ACTIONS:
        return switch_feed(state, SWITCH_ACTIONS[action])
    if action == "next_feed":
        return cycle_feed(state, 1)
    if action == "prev_feed":
        return cycle_feed(state, -1)
    if action == "refresh":
        append_command_log(state, f"Refreshing {state.active_feed} stories...")
        return [("refresh", state.active_feed)]
    if action == "refresh_all":
        append_command_log(state, "Refreshing all sections...")
        return [("refresh_all", None)]
    if action == "search":
        open_filter(state)
        return []
    if action == "command_palette":
        open_palette(state)
        return []
    if action == "options":
        open_options(state)
        return []
    if action == "close":
        close_overlay(state)
        return []

    story = selected_story(state)
    if action in {"open_story", "open_comments", "summarize"} and story is None:
        append_command_log(state, "No story selected.")
        return []
    if action == "open_story":
        return [("open", (story.link, story.title))]
    if action == "open_comments":
        return [("open", (story.discussion_url, f"comments for {story.title}"))]
    if action == "summarize":
        close_overlay(state)
        generation = state.summary.start(story)
        state.overlay = SummaryOverlay(story)
        return [("summarize", (generation, story))]
    raise ValueError(f"Unknown action '{action}'")


def _handle_query_key(state: SessionState, overlay: FilterOverlay | PaletteOverlay, key: str) -> list[Effect]:
    if key == "ESC":
        close_overlay(state)
        return []
    if key == "BACKSPACE":
        set_query(state, overlay.query[:-1])
        return []
    if key == "UP":
        move_cursor(state, -1)
        return []
    if key == "DOWN":
        move_cursor(state, 1)
        return []
    if key == "ENTER":
        if isinstance(overlay, PaletteOverlay):
            command = COMMANDS[overlay.matches[overlay.cursor]] if overlay.matches else None
            close_overlay(state)
            return dispatch(state, command.action) if command else []
        story_index = overlay.matches[overlay.cursor] if overlay.matches else None
        close_overlay(state)
        if story_index is None:
            append_command_log(state, "No matching stories.")
            return []
        state.cursors[overlay.feed] = story_index
        return dispatch(state, "open_story")
    if len(key) == 1 and key.isprintable():
        set_query(state, overlay.query + key)
    return []


def _handle_options_key(state: SessionState, overlay: OptionsOverlay, key: str) -> list[Effect]:
    if key == "ESC":
        close_overlay(state)
        return []
    if key in {"UP", "k"}:
        move_cursor(state, -1)
        return []
    if key in {"DOWN", "j"}:
        move_cursor(state, 1)
        return []
    if key == "ENTER":
        _, action = OPTIONS_MENU[overlay.cursor]
        close_overlay(state)
        return dispatch(state, action)
    return []


def handle_key(state: SessionState, key: str) -> list[Effect]:
    if key == "QUIT":
        return [("quit", None)]
    overlay = state.overlay
    if isinstance(overlay, (FilterOverlay, PaletteOverlay)):
        return _handle_query_key(state, overlay, key)
    if isinstance(overlay, OptionsOverlay):
        return _handle_options_key(state, overlay, key)
    if isinstance(overlay, SummaryOverlay):
        if key in {"ESC", "ENTER", "q"}:
            close_overlay(state)
        return []
    action = KEY_BINDINGS.get(key)
    if action is None:
        return []
    return dispatch(state, action)


def apply_feed_completion(
    state: SessionState,
    orchestrator: FetchOrchestrator,
    completion: FeedCompletion,
) -> bool:
    if not orchestrator.apply(completion):
        return False
    kind = completion.kind
    entry = state.cache.get(kind)
    state.cursors[kind] = clamp_selection(state.cursors[kind], len(entry.items))
    overlay = state.overlay
    if isinstance(overlay, FilterOverlay) and overlay.feed == kind:
        _refilter_stories(state, overlay)
    if entry.status == FAILED:
        append_command_log(state, f"Failed to load {kind}: {entry.error}")
    elif kind == state.active_feed:
        append_command_log(state, f"Loaded {len(entry.items)} {kind} stories")
    return True


def apply_summary_completion(state: SessionState, completion: SummaryCompletion) -> bool:
    if not state.summary.complete(completion):
        return False
    if state.summary.error:
        append_command_log(state, f"Failed to get summary: {state.summary.error}")
    else:
        append_command_log(state, f"Summary ready: {state.summary.title}")
    return True
