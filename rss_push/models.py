"""Shared data models for rss_push."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional


@dataclass
class Subscription:
    """A feed URL and the destinations it is pushed to."""

    id: int
    url: str
    destinations: List[str] = field(default_factory=list)
    render_as_image: bool = True

    @property
    def active(self) -> bool:
        return bool(self.destinations)


@dataclass
class FeedEntry:
    """Simplified RSS feed entry used throughout the app."""

    link: str
    title: str
    summary: Optional[str] = None
    published: Optional[datetime] = None
    source_title: Optional[str] = None


@dataclass
class RenderedImage:
    """A screenshot written to the scratch directory."""

    path: Path
    width: int
    height: int


@dataclass
class OutgoingMessage:
    """Payload handed to a message sink."""

    text: Optional[str] = None
    image: Optional[Path] = None


@dataclass
class DestinationOutcome:
    destination: str
    delivered: bool
    reason: Optional[str] = None


@dataclass
class EntryOutcome:
    entry: FeedEntry
    destinations: List[DestinationOutcome] = field(default_factory=list)


@dataclass
class FeedOutcome:
    url: str
    fetched: bool = True
    error: Optional[str] = None
    entries: List[EntryOutcome] = field(default_factory=list)


@dataclass
class CycleReport:
    """Aggregated result of one polling cycle."""

    feeds: List[FeedOutcome] = field(default_factory=list)
    skipped: bool = False

    @property
    def delivered_count(self) -> int:
        return sum(
            1
            for feed in self.feeds
            for entry in feed.entries
            for outcome in entry.destinations
            if outcome.delivered
        )

    @property
    def failed_count(self) -> int:
        return sum(
            1
            for feed in self.feeds
            for entry in feed.entries
            for outcome in entry.destinations
            if not outcome.delivered
        )

    def to_dict(self) -> dict:
        return {
            "skipped": self.skipped,
            "delivered": self.delivered_count,
            "failed": self.failed_count,
            "feeds": [
                {
                    "url": feed.url,
                    "fetched": feed.fetched,
                    "error": feed.error,
                    "entries": [
                        {
                            "link": entry.entry.link,
                            "title": entry.entry.title,
                            "destinations": [
                                {
                                    "destination": outcome.destination,
                                    "delivered": outcome.delivered,
                                    "reason": outcome.reason,
                                }
                                for outcome in entry.destinations
                            ],
                        }
                        for entry in feed.entries
                    ],
                }
                for feed in self.feeds
            ],
        }
