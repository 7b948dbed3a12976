from pathlib import Path
from typing import List, Optional

import pytest

from rss_push import db
from rss_push.cache import DedupCache
from rss_push.models import FeedEntry, OutgoingMessage, RenderedImage
from rss_push.subscriptions import SubscriptionStore


@pytest.fixture
def session_factory():
    """Session factory bound to a fresh in-memory SQLite database."""
    engine = db.init_engine("sqlite:///:memory:")
    yield db.get_session_factory(engine)
    engine.dispose()


@pytest.fixture
def store(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def cache(session_factory):
    return DedupCache(session_factory)


class RecordingSink:
    """Collects messages; destinations listed in ``failing`` raise instead."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.sent: List[tuple] = []
        self.images_existed: List[bool] = []

    async def send(self, destination: str, message: OutgoingMessage) -> None:
        if destination in self.failing:
            raise RuntimeError(f"send to {destination} failed")
        if message.image is not None:
            self.images_existed.append(Path(message.image).exists())
        self.sent.append((destination, message))

    def texts(self, destination: Optional[str] = None) -> List[str]:
        return [
            message.text
            for dest, message in self.sent
            if message.text and (destination is None or dest == destination)
        ]

    def images(self, destination: Optional[str] = None) -> List[Path]:
        return [
            message.image
            for dest, message in self.sent
            if message.image and (destination is None or dest == destination)
        ]


class FakeRenderer:
    """Writes a small placeholder file per entry render, or fails on demand."""

    def __init__(self, directory: Path, fail: bool = False):
        self.directory = directory
        self.fail = fail
        self.rendered: List[Path] = []
        self.closed = False

    async def render_feed_entry(self, entry: FeedEntry) -> Optional[RenderedImage]:
        if self.fail:
            return None
        path = self.directory / f"rss_{len(self.rendered)}.png"
        path.write_bytes(b"\x89PNG fake")
        self.rendered.append(path)
        return RenderedImage(path=path, width=10, height=10)

    async def close(self) -> None:
        self.closed = True


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def renderer(tmp_path):
    return FakeRenderer(tmp_path)


@pytest.fixture
def make_sink():
    return RecordingSink


@pytest.fixture
def make_renderer(tmp_path):
    def factory(fail: bool = False):
        return FakeRenderer(tmp_path, fail=fail)

    return factory
