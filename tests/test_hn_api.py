"""Tests for the Hacker News feed client."""

from unittest.mock import MagicMock

import pytest
import requests

from conftest import make_response
from hn_api import (
    FEED_ENDPOINTS,
    HN_ITEM_URL_TEMPLATE,
    FetchError,
    HackerNewsClient,
    clean_post_text,
    story_from_payload,
)


def routed_session(routes):
    session = MagicMock()

    def get(url, timeout=None):
        route = routes[url]
        if isinstance(route, Exception):
            raise route
        return route

    session.get.side_effect = get
    return session


def item_url(item_id):
    return HN_ITEM_URL_TEMPLATE.format(item_id=item_id)


class TestStoryFromPayload:
    def test_maps_all_fields(self):
        story = story_from_payload(
            {
                "id": 42,
                "title": "Show HN: A &amp; B",
                "score": 12,
                "by": "pg",
                "url": "https://example.com/post",
                "type": "story",
            }
        )
        assert story.id == 42
        assert story.title == "Show HN: A & B"
        assert story.score == 12
        assert story.author == "pg"
        assert story.url == "https://example.com/post"
        assert story.discussion_url == "https://news.ycombinator.com/item?id=42"
        assert story.link == "https://example.com/post"

    def test_self_post_links_to_discussion(self):
        story = story_from_payload({"id": 7, "title": "Ask HN: Why?", "text": "<p>Because"})
        assert story.url is None
        assert story.link == story.discussion_url
        assert story.text == "Because"

    def test_missing_score_and_author_get_defaults(self):
        story = story_from_payload({"id": 3, "title": "Hiring"})
        assert story.score == 0
        assert story.author == "unknown"

    @pytest.mark.parametrize(
        "payload",
        [
            None,
            [],
            {"id": 1, "title": "gone", "deleted": True},
            {"id": 1, "title": "flagged", "dead": True},
            {"id": 1},
            {"title": "no id"},
        ],
    )
    def test_unusable_payloads_are_skipped(self, payload):
        assert story_from_payload(payload) is None


def test_clean_post_text_strips_markup():
    raw = "First line<p>Second &quot;quoted&quot; <a href=\"x\">link</a>"
    assert clean_post_text(raw) == 'First line\n\nSecond "quoted" link'


class TestHackerNewsClient:
    def test_fetch_stories_keeps_rank_order_and_count(self):
        routes = {FEED_ENDPOINTS["Top"]: make_response([30, 10, 20, 40])}
        routes[item_url(30)] = make_response({"id": 30, "title": "first", "score": 100})
        routes[item_url(10)] = make_response({"id": 10, "title": "second", "score": 80})
        routes[item_url(20)] = make_response({"id": 20, "title": "third", "score": 50})
        client = HackerNewsClient(session=routed_session(routes))

        stories = client.fetch_stories("Top", 3)

        assert [story.id for story in stories] == [30, 10, 20]
        assert [story.score for story in stories] == [100, 80, 50]

    def test_null_items_are_dropped(self):
        routes = {
            FEED_ENDPOINTS["Ask"]: make_response([1, 2]),
            item_url(1): make_response(None),
            item_url(2): make_response({"id": 2, "title": "kept"}),
        }
        client = HackerNewsClient(session=routed_session(routes))

        assert [story.id for story in client.fetch_stories("Ask", 30)] == [2]

    def test_empty_listing_returns_no_stories(self):
        client = HackerNewsClient(session=routed_session({FEED_ENDPOINTS["Jobs"]: make_response([])}))
        assert client.fetch_stories("Jobs", 30) == []

    def test_http_error_raises_fetch_error(self):
        client = HackerNewsClient(session=routed_session({FEED_ENDPOINTS["Show"]: make_response(status_code=503)}))
        with pytest.raises(FetchError, match="HTTP 503"):
            client.fetch_stories("Show", 30)

    def test_network_error_raises_fetch_error(self):
        routes = {FEED_ENDPOINTS["Top"]: requests.ConnectionError("connection refused")}
        client = HackerNewsClient(session=routed_session(routes))
        with pytest.raises(FetchError, match="Network error"):
            client.fetch_stories("Top", 30)

    def test_invalid_json_raises_fetch_error(self):
        routes = {FEED_ENDPOINTS["Top"]: make_response(invalid_json=True)}
        client = HackerNewsClient(session=routed_session(routes))
        with pytest.raises(FetchError, match="Invalid JSON"):
            client.fetch_stories("Top", 30)

    def test_unexpected_listing_shape_raises_fetch_error(self):
        routes = {FEED_ENDPOINTS["Top"]: make_response({"error": "nope"})}
        client = HackerNewsClient(session=routed_session(routes))
        with pytest.raises(FetchError):
            client.fetch_stories("Top", 30)

    def test_item_failure_fails_the_whole_feed(self):
        routes = {
            FEED_ENDPOINTS["Top"]: make_response([1, 2]),
            item_url(1): make_response({"id": 1, "title": "ok"}),
            item_url(2): requests.Timeout("timed out"),
        }
        client = HackerNewsClient(session=routed_session(routes))
        with pytest.raises(FetchError):
            client.fetch_stories("Top", 30)

    def test_unknown_feed_kind(self):
        client = HackerNewsClient(session=MagicMock())
        with pytest.raises(FetchError, match="Unknown feed"):
            client.fetch_story_ids("Best")

    def test_requests_use_configured_timeout(self):
        session = routed_session({FEED_ENDPOINTS["Top"]: make_response([])})
        HackerNewsClient(timeout_seconds=4, session=session).fetch_stories("Top", 30)
        session.get.assert_called_once_with(FEED_ENDPOINTS["Top"], timeout=4)
