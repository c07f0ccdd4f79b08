from __future__ import annotations

import html
import logging
import re
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any

import requests

logger = logging.getLogger(__name__)

HN_API_BASE = "https://hacker-news.firebaseio.com/v0"
HN_ITEM_URL_TEMPLATE = f"{HN_API_BASE}/item/{{item_id}}.json"
HN_DISCUSSION_URL_TEMPLATE = "https://news.ycombinator.com/item?id={item_id}"

FEED_KINDS = ("Top", "Ask", "Show", "Jobs")
FEED_ENDPOINTS: dict[str, str] = {
    "Top": f"{HN_API_BASE}/topstories.json",
    "Ask": f"{HN_API_BASE}/askstories.json",
    "Show": f"{HN_API_BASE}/showstories.json",
    "Jobs": f"{HN_API_BASE}/jobstories.json",
}
DEFAULT_STORY_COUNT = 30
ITEM_FETCH_WORKERS = 8

HTML_TAG_RE = re.compile(r"<[^>]+>")
PARAGRAPH_RE = re.compile(r"<p>", re.IGNORECASE)
WHITESPACE_RE = re.compile(r"[ \t]+")


class FetchError(Exception):
    """Raised when a feed cannot be retrieved or decoded."""


@dataclass(frozen=True)
class Story:
    id: int
    title: str
    score: int
    author: str
    discussion_url: str
    url: str | None = None
    text: str | None = None

    @property
    def link(self) -> str:
        return self.url or self.discussion_url


def discussion_url(item_id: int) -> str:
    return HN_DISCUSSION_URL_TEMPLATE.format(item_id=item_id)


def clean_post_text(raw: Any) -> str:
    if not raw:
        return ""
    with_breaks = PARAGRAPH_RE.sub("\n\n", str(raw))
    no_html = HTML_TAG_RE.sub("", with_breaks)
    lines = [WHITESPACE_RE.sub(" ", line).strip() for line in html.unescape(no_html).splitlines()]
    return "\n".join(lines).strip()


def story_from_payload(payload: Any) -> Story | None:
    if not isinstance(payload, dict):
        return None
    if payload.get("deleted") or payload.get("dead"):
        return None
    item_id = payload.get("id")
    title = html.unescape(str(payload.get("title") or "")).strip()
    if not isinstance(item_id, int) or not title:
        return None
    try:
        score = max(int(payload.get("score") or 0), 0)
    except (TypeError, ValueError):
        score = 0
    url = str(payload.get("url") or "").strip() or None
    text = clean_post_text(payload.get("text")) or None
    return Story(
        id=item_id,
        title=title,
        score=score,
        author=str(payload.get("by") or "unknown"),
        discussion_url=discussion_url(item_id),
        url=url,
        text=text,
    )


class HackerNewsClient:
    def __init__(
        self,
        timeout_seconds: float = 10.0,
        session: requests.Session | None = None,
        max_workers: int = ITEM_FETCH_WORKERS,
    ) -> None:
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.max_workers = max(1, max_workers)

    def _get_json(self, url: str) -> Any:
        try:
            response = self.session.get(url, timeout=self.timeout_seconds)
            response.raise_for_status()
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else "unknown"
            raise FetchError(f"HTTP {status} from {url}") from exc
        except requests.RequestException as exc:
            raise FetchError(f"Network error: {exc}") from exc
        try:
            return response.json()
        except ValueError as exc:
            raise FetchError(f"Invalid JSON from {url}") from exc

    def fetch_story_ids(self, kind: str) -> list[int]:
        endpoint = FEED_ENDPOINTS.get(kind)
        if endpoint is None:
            raise FetchError(f"Unknown feed '{kind}'")
        payload = self._get_json(endpoint)
        if not isinstance(payload, list):
            raise FetchError(f"Unexpected {kind} listing payload")
        return [item_id for item_id in payload if isinstance(item_id, int)]

    def fetch_item(self, item_id: int) -> Story | None:
        return story_from_payload(self._get_json(HN_ITEM_URL_TEMPLATE.format(item_id=item_id)))

    def fetch_stories(self, kind: str, count: int = DEFAULT_STORY_COUNT) -> list[Story]:
        ids = self.fetch_story_ids(kind)[: max(count, 0)]
        if not ids:
            return []
        # map() keeps rank order regardless of which request finishes first
        with ThreadPoolExecutor(max_workers=min(self.max_workers, len(ids))) as executor:
            results = list(executor.map(self.fetch_item, ids))
        stories = [story for story in results if story is not None]
        logger.info("Fetched %d/%d %s stories", len(stories), len(ids), kind)
        return stories
