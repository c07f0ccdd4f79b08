from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

import requests

from hn_api import Story

logger = logging.getLogger(__name__)

ANTHROPIC_MESSAGES_URL = "https://api.anthropic.com/v1/messages"
ANTHROPIC_VERSION = "2023-06-01"
DEFAULT_SUMMARY_MODEL = "claude-3-5-haiku-latest"
DEFAULT_MAX_TOKENS = 300
SUMMARY_PROMPT = "Please summarize this Hacker News post concisely:\n\n{body}"

IDLE = "idle"
PENDING = "pending"
SUCCEEDED = "succeeded"
FAILED = "failed"


class SummarizationError(Exception):
    def __init__(self, message: str, kind: str = "service") -> None:
        super().__init__(message)
        self.kind = kind


def build_summary_input(story: Story) -> str:
    parts = [f"Title: {story.title}"]
    if story.text and story.text.strip():
        parts.append(story.text.strip())
    elif story.url:
        parts.append(f"Link: {story.url}")
    else:
        raise SummarizationError("Nothing to summarize: the post has no text or link.", "empty_input")
    return "\n\n".join(parts)


def extract_summary_text(payload: Any) -> str:
    if not isinstance(payload, dict):
        return ""
    blocks = payload.get("content") or []
    texts = [
        str(block.get("text", "")).strip()
        for block in blocks
        if isinstance(block, dict) and block.get("type") == "text"
    ]
    return "\n\n".join(text for text in texts if text)


class Summarizer:
    def __init__(
        self,
        api_key: str,
        model: str = DEFAULT_SUMMARY_MODEL,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        timeout_seconds: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.api_key = api_key
        self.model = model
        self.max_tokens = max_tokens
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()

    def summarize(self, story: Story) -> str:
        prompt = SUMMARY_PROMPT.format(body=build_summary_input(story))
        payload = {
            "model": self.model,
            "max_tokens": self.max_tokens,
            "messages": [{"role": "user", "content": prompt}],
        }
        headers = {
            "x-api-key": self.api_key,
            "anthropic-version": ANTHROPIC_VERSION,
            "content-type": "application/json",
        }
        try:
            response = self.session.post(
                ANTHROPIC_MESSAGES_URL,
                json=payload,
                headers=headers,
                timeout=self.timeout_seconds,
            )
        except requests.RequestException as exc:
            raise SummarizationError(f"Summary request failed: {exc}", "network") from exc

        if response.status_code in (401, 403):
            raise SummarizationError("Summary service rejected the API key.", "auth")
        if response.status_code == 429:
            raise SummarizationError("Summary service rate limit reached, try again later.", "rate_limit")
        if response.status_code >= 400:
            raise SummarizationError(f"Summary service returned HTTP {response.status_code}.", "service")

        try:
            result = response.json()
        except ValueError as exc:
            raise SummarizationError("Summary response was not valid JSON.", "service") from exc
        text = extract_summary_text(result)
        if not text:
            raise SummarizationError("Summary response was empty.", "service")
        return text


@dataclass(frozen=True)
class SummaryCompletion:
    generation: int
    item_id: int
    text: str = ""
    error: str | None = None


def summary_job(summarizer: Summarizer, story: Story, generation: int) -> SummaryCompletion:
    try:
        text = summarizer.summarize(story)
    except SummarizationError as exc:
        logger.warning("Summary for %d failed (%s): %s", story.id, exc.kind, exc)
        return SummaryCompletion(generation, story.id, error=str(exc))
    except Exception as exc:
        logger.exception("Summary for %d crashed", story.id)
        return SummaryCompletion(generation, story.id, error=f"Unexpected error: {exc}")
    return SummaryCompletion(generation, story.id, text=text)


@dataclass
class SummaryRequest:
    generation: int = 0
    item_id: int | None = None
    title: str = ""
    status: str = IDLE
    text: str = ""
    error: str = ""

    def start(self, story: Story) -> int:
        self.generation += 1
        self.item_id = story.id
        self.title = story.title
        self.status = PENDING
        self.text = ""
        self.error = ""
        return self.generation

    def complete(self, completion: SummaryCompletion) -> bool:
        if completion.generation != self.generation or completion.item_id != self.item_id:
            return False
        if self.status != PENDING:
            return False
        if completion.error is not None:
            self.status = FAILED
            self.error = completion.error
        else:
            self.status = SUCCEEDED
            self.text = completion.text
        return True

    def discard(self) -> None:
        # bumping the generation makes any in-flight completion stale
        self.generation += 1
        self.item_id = None
        self.title = ""
        self.status = IDLE
        self.text = ""
        self.error = ""
