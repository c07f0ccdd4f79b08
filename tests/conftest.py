"""Shared test fixtures for hackertuah tests."""

from unittest.mock import MagicMock

import pytest
import requests

from hn_api import Story, discussion_url


def build_story(item_id: int, title: str, score: int = 10, url: str | None = None, text: str | None = None) -> Story:
    return Story(
        id=item_id,
        title=title,
        score=score,
        author=f"user{item_id}",
        discussion_url=discussion_url(item_id),
        url=url if url is not None else f"https://example.com/{item_id}",
        text=text,
    )


class ManualSpawner:
    """Collects background jobs so tests decide when (and in which order) they run."""

    def __init__(self):
        self.jobs = []

    def __call__(self, job):
        self.jobs.append(job)

    def run(self, index):
        self.jobs[index]()

    def run_all(self):
        jobs, self.jobs = self.jobs, []
        for job in jobs:
            job()


def make_response(payload=None, status_code=200, invalid_json=False):
    response = MagicMock()
    response.status_code = status_code
    if invalid_json:
        response.json.side_effect = ValueError("not json")
    else:
        response.json.return_value = payload
    if status_code >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


@pytest.fixture
def make_story():
    return build_story


@pytest.fixture
def spawner():
    return ManualSpawner()


@pytest.fixture
def posted():
    """Message sink standing in for the main loop's event queue."""
    return []


@pytest.fixture
def sample_stories():
    return [
        build_story(1, "AI breakthrough", score=100),
        build_story(2, "Go 2.0", score=80),
        build_story(3, "Sailing across the Atlantic", score=50),
    ]
