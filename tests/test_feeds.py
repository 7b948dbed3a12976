import time
import types
from datetime import datetime, timedelta, timezone

import pytest
import requests

from rss_push import feeds
from rss_push.errors import FetchError
from rss_push.models import FeedEntry

FEED = "https://example.com/feed"
NOW = datetime(2024, 6, 1, 12, 0, tzinfo=timezone.utc)


def _stub_fetch(monkeypatch, entries, feed_title="Example Feed", bozo=False):
    mock_response = types.SimpleNamespace(
        content=b"mock content",
        raise_for_status=lambda: None,
    )
    monkeypatch.setattr(
        feeds.requests, "get", lambda url, timeout=None, headers=None: mock_response
    )
    parsed = types.SimpleNamespace(
        entries=entries,
        feed={"title": feed_title},
        bozo=bozo,
        get=lambda key, default=None: "broken" if key == "bozo_exception" else default,
    )
    monkeypatch.setattr(feeds.feedparser, "parse", lambda content: parsed)


def _entry(link, published=None):
    return FeedEntry(link=link, title=f"Title {link}", published=published)


def test_fetch_feed_entries_keeps_order_and_metadata(monkeypatch):
    published = time.gmtime(0)
    raw = [
        types.SimpleNamespace(
            link="https://example.com/b",
            title="Newer",
            summary="<p>Summary</p>",
            published_parsed=published,
        ),
        types.SimpleNamespace(link="https://example.com/a", title="Older"),
    ]
    _stub_fetch(monkeypatch, raw)

    results = feeds.fetch_feed_entries(FEED)

    assert [entry.link for entry in results] == [
        "https://example.com/b",
        "https://example.com/a",
    ]
    assert results[0].summary == "<p>Summary</p>"
    assert results[0].published == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert results[0].source_title == "Example Feed"
    assert results[1].published is None


def test_fetch_feed_entries_falls_back_to_content(monkeypatch):
    raw = [
        types.SimpleNamespace(
            link="https://example.com/a",
            title="Example Article",
            summary=None,
            content=[{"value": "<div>content</div>"}],
        )
    ]
    _stub_fetch(monkeypatch, raw)

    results = feeds.fetch_feed_entries(FEED)

    assert results[0].summary == "<div>content</div>"


def test_fetch_feed_entries_skips_entries_without_link(monkeypatch):
    raw = [
        types.SimpleNamespace(link=None, title="No link"),
        types.SimpleNamespace(link="https://example.com/a", title="Kept"),
    ]
    _stub_fetch(monkeypatch, raw)

    results = feeds.fetch_feed_entries(FEED)

    assert [entry.link for entry in results] == ["https://example.com/a"]


def test_fetch_feed_entries_keeps_untitled_entries(monkeypatch):
    raw = [
        types.SimpleNamespace(link="https://example.com/a", summary="body only"),
        types.SimpleNamespace(link="https://example.com/b", title="  "),
    ]
    _stub_fetch(monkeypatch, raw)

    results = feeds.fetch_feed_entries(FEED)

    assert [entry.title for entry in results] == [feeds.UNTITLED, feeds.UNTITLED]
    assert results[0].summary == "body only"


def test_fetch_feed_entries_raises_fetch_error_on_request_exception(monkeypatch):
    def fail(url, timeout=None, headers=None):
        raise requests.ConnectionError("Timeout")

    monkeypatch.setattr(feeds.requests, "get", fail)

    with pytest.raises(FetchError) as info:
        feeds.fetch_feed_entries(FEED)

    assert info.value.url == FEED
    assert "Timeout" in info.value.reason


def test_fetch_feed_entries_raises_on_unparseable_feed(monkeypatch):
    _stub_fetch(monkeypatch, [], bozo=True)

    with pytest.raises(FetchError):
        feeds.fetch_feed_entries(FEED)


def test_strip_html_and_truncate():
    assert feeds.strip_html("<p>Summary <strong>text</strong> with a <a>link</a>.</p>") == (
        "Summary text with a link."
    )
    assert feeds.truncate_text("short", 10) == "short"
    assert feeds.truncate_text("abcdefghij", 5) == "abcd…"


def test_select_new_entries_returns_oldest_first(cache):
    entries = [
        _entry("new3", NOW - timedelta(minutes=1)),
        _entry("new2", NOW - timedelta(minutes=2)),
        _entry("new1", NOW - timedelta(minutes=3)),
    ]

    selected = feeds.select_new_entries(FEED, entries, cache, now=NOW)

    assert [entry.link for entry in selected] == ["new1", "new2", "new3"]


def test_select_new_entries_caps_at_three(cache):
    entries = [_entry(str(index), NOW) for index in range(10)]

    selected = feeds.select_new_entries(FEED, entries, cache, now=NOW)

    assert len(selected) == 3
    assert [entry.link for entry in selected] == ["2", "1", "0"]


def test_select_new_entries_only_considers_first_three(cache):
    for link in ("0", "1", "2"):
        cache.mark_delivered(FEED, link)
    entries = [_entry(str(index), NOW) for index in range(5)]

    assert feeds.select_new_entries(FEED, entries, cache, now=NOW) == []


def test_select_new_entries_skips_cached(cache):
    cache.mark_delivered(FEED, "a")
    entries = [_entry("b", NOW), _entry("a", NOW)]

    selected = feeds.select_new_entries(FEED, entries, cache, now=NOW)

    assert [entry.link for entry in selected] == ["b"]
    assert feeds.select_new_entries(FEED, [_entry("a", NOW)], cache, now=NOW) == []


def test_select_new_entries_recency_guard(cache):
    entries = [
        _entry("fresh", NOW - timedelta(hours=47)),
        _entry("stale", NOW - timedelta(hours=49)),
        _entry("undated", None),
    ]

    selected = feeds.select_new_entries(FEED, entries, cache, now=NOW)

    assert [entry.link for entry in selected] == ["undated", "fresh"]


def test_select_new_entries_does_not_write_cache(cache):
    feeds.select_new_entries(FEED, [_entry("a", NOW)], cache, now=NOW)

    assert not cache.has(FEED, "a")
