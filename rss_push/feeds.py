"""Feed fetching and new-entry selection."""

from __future__ import annotations

import logging
import re
import time
from datetime import datetime, timedelta, timezone
from typing import List, Optional, Sequence

import feedparser
import requests
from bs4 import BeautifulSoup

from .cache import DedupCache
from .errors import FetchError
from .models import FeedEntry

logger = logging.getLogger(__name__)

ENTRY_LIMIT = 3
MAX_ENTRY_AGE = timedelta(hours=48)
USER_AGENT = "rss-push/0.1"
UNTITLED = "(无标题)"


def to_datetime(value: Optional[time.struct_time]) -> Optional[datetime]:
    """Convert feedparser UTC timestamps to timezone-aware datetimes."""
    if value is None:
        return None
    return datetime(*value[:6], tzinfo=timezone.utc)


def fetch_feed_entries(url: str, timeout: float = 10.0) -> List[FeedEntry]:
    """Fetch entries for a feed URL in document order (usually newest first).

    Raises ``FetchError`` when the feed cannot be downloaded or parsed.
    """
    logger.info("Fetching feed %s", url)
    try:
        response = requests.get(
            url, timeout=timeout, headers={"User-Agent": USER_AGENT}
        )
        response.raise_for_status()
    except requests.RequestException as exc:
        raise FetchError(url, str(exc)) from exc

    parsed = feedparser.parse(response.content)
    if getattr(parsed, "bozo", False) and not parsed.entries:
        raise FetchError(url, f"unparseable feed ({parsed.get('bozo_exception')})")

    feed_info = getattr(parsed, "feed", None) or {}
    source_title = feed_info.get("title") or None
    entries: List[FeedEntry] = []

    for entry in parsed.entries:
        link = getattr(entry, "link", None)
        title = (getattr(entry, "title", None) or "").strip() or UNTITLED

        if not link:
            logger.debug("Skipping entry without link in feed '%s'", url)
            continue

        summary = getattr(entry, "summary", None)
        if not summary:
            content = getattr(entry, "content", None)
            if content:
                try:
                    summary = content[0].get("value")
                except (TypeError, KeyError, IndexError, AttributeError):
                    summary = None

        published = None
        for attr in ("published_parsed", "updated_parsed", "created_parsed"):
            published = getattr(entry, attr, None)
            if published:
                break

        entries.append(
            FeedEntry(
                link=link,
                title=title,
                summary=summary,
                published=to_datetime(published),
                source_title=source_title,
            )
        )

    logger.info("Collected %d entries from feed '%s'", len(entries), url)
    return entries


def strip_html(raw_value: str) -> str:
    """Return text content extracted from HTML fragments."""
    soup = BeautifulSoup(raw_value, "html.parser")
    text = soup.get_text(separator=" ", strip=True)
    text = re.sub(r"\s+([.,;:!?])", r"\1", text)
    text = re.sub(r"\s{2,}", " ", text)
    return text.strip()


def truncate_text(value: str, limit: int = 100) -> str:
    """Limit text length to the given number of characters."""
    if len(value) <= limit:
        return value
    return value[: limit - 1].rstrip() + "…"


def select_new_entries(
    feed_url: str,
    entries: Sequence[FeedEntry],
    cache: DedupCache,
    now: Optional[datetime] = None,
    limit: int = ENTRY_LIMIT,
    max_age: timedelta = MAX_ENTRY_AGE,
) -> List[FeedEntry]:
    """Return the uncached, recent entries among the first ``limit``, oldest first.

    Undated entries always pass the age check.
    """
    now = now or datetime.now(timezone.utc)
    selected: List[FeedEntry] = []

    for entry in entries[:limit]:
        if not entry.link:
            continue
        if cache.has(feed_url, entry.link):
            continue
        if entry.published is not None and now - entry.published >= max_age:
            logger.debug(
                "Skipping entry older than %s (%s): %s",
                max_age,
                entry.published,
                entry.link,
            )
            continue
        selected.append(entry)

    selected.reverse()
    logger.info("Selected %d new entries for feed %s", len(selected), feed_url)
    return selected
