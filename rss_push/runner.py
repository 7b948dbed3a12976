"""Polling cycle orchestration for rss_push."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Awaitable, Callable, List, Optional

from .cache import DedupCache
from .delivery import MessageSink, build_notice_text, build_plain_text
from .feeds import (
    ENTRY_LIMIT,
    MAX_ENTRY_AGE,
    fetch_feed_entries,
    select_new_entries,
)
from .models import (
    CycleReport,
    DestinationOutcome,
    EntryOutcome,
    FeedEntry,
    FeedOutcome,
    OutgoingMessage,
    Subscription,
)
from .screenshot import Renderer
from .subscriptions import SubscriptionStore

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], List[FeedEntry]]
Reply = Callable[[OutgoingMessage], Awaitable[None]]

DEFAULT_INTERVAL_SECONDS = 600
DEFAULT_PACING_SECONDS = 2.0


def _discard(path: Optional[Path]) -> None:
    if path is None:
        return
    try:
        path.unlink(missing_ok=True)
    except OSError as exc:
        logger.warning("Failed to remove temporary image %s: %s", path, exc)


class DeliveryScheduler:
    """Runs one polling cycle over every subscription.

    Each feed, entry and destination is handled inside its own boundary and
    reports an outcome; nothing raised for one of them reaches its siblings.
    Entries are committed to the dedup cache before any delivery attempt, so
    an entry whose delivery fails is not retried.
    """

    def __init__(
        self,
        store: SubscriptionStore,
        cache: DedupCache,
        renderer: Renderer,
        sink: MessageSink,
        fetcher: Fetcher = fetch_feed_entries,
        pacing_seconds: float = DEFAULT_PACING_SECONDS,
        entry_limit: int = ENTRY_LIMIT,
        max_age: timedelta = MAX_ENTRY_AGE,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.store = store
        self.cache = cache
        self.renderer = renderer
        self.sink = sink
        self.fetcher = fetcher
        self.pacing_seconds = pacing_seconds
        self.entry_limit = entry_limit
        self.max_age = max_age
        self._sleep = sleep
        self._running = False

    @property
    def running(self) -> bool:
        return self._running

    async def run_cycle(self, now: Optional[datetime] = None) -> CycleReport:
        if self._running:
            logger.warning("Previous polling cycle still running; skipping")
            return CycleReport(skipped=True)

        self._running = True
        try:
            now = now or datetime.now(timezone.utc)
            report = CycleReport()
            for subscription in self.store.list_all():
                if not subscription.active:
                    continue
                report.feeds.append(await self._process_feed(subscription, now))
        finally:
            self._running = False

        logger.info(
            "Polling cycle finished: %d feeds, %d delivered, %d failed",
            len(report.feeds),
            report.delivered_count,
            report.failed_count,
        )
        return report

    async def _process_feed(self, subscription: Subscription, now: datetime) -> FeedOutcome:
        outcome = FeedOutcome(url=subscription.url)
        try:
            entries = await asyncio.to_thread(self.fetcher, subscription.url)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Skipping feed %s this cycle: %s", subscription.url, exc)
            outcome.fetched = False
            outcome.error = str(exc)
            return outcome

        if not entries:
            return outcome

        try:
            new_entries = select_new_entries(
                subscription.url,
                entries,
                self.cache,
                now=now,
                limit=self.entry_limit,
                max_age=self.max_age,
            )
        except Exception as exc:  # noqa: BLE001
            logger.exception("Failed to select new entries for %s", subscription.url)
            outcome.error = str(exc)
            return outcome

        for entry in new_entries:
            outcome.entries.append(await self._process_entry(subscription, entry))
        return outcome

    async def _process_entry(self, subscription: Subscription, entry: FeedEntry) -> EntryOutcome:
        outcome = EntryOutcome(entry=entry)
        try:
            self.cache.mark_delivered(subscription.url, entry.link)
        except Exception as exc:  # noqa: BLE001
            # entries are only pushed once recorded
            logger.exception("Failed to record %s; not delivering it", entry.link)
            outcome.destinations = [
                DestinationOutcome(destination, False, f"cache error: {exc}")
                for destination in subscription.destinations
            ]
            return outcome

        for destination in subscription.destinations:
            await self._sleep(self.pacing_seconds)
            outcome.destinations.append(
                await self._deliver(subscription, entry, destination)
            )
        return outcome

    async def _deliver(
        self, subscription: Subscription, entry: FeedEntry, destination: str
    ) -> DestinationOutcome:
        image_path: Optional[Path] = None
        try:
            if subscription.render_as_image:
                logger.info("Pushing %s -> %s", entry.title, destination)
                await self.sink.send(destination, OutgoingMessage(text=build_notice_text(entry)))
                image = await self.renderer.render_feed_entry(entry)
                if image is None:
                    logger.warning("Render failed for %s; sending text instead", entry.link)
                    await self.sink.send(
                        destination, OutgoingMessage(text=build_plain_text(entry))
                    )
                else:
                    image_path = image.path
                    await self.sink.send(destination, OutgoingMessage(image=image_path))
            else:
                await self.sink.send(destination, OutgoingMessage(text=build_plain_text(entry)))
        except Exception as exc:  # noqa: BLE001
            logger.error("Failed to push %s to %s: %s", entry.link, destination, exc)
            return DestinationOutcome(destination, False, str(exc))
        finally:
            _discard(image_path)
        return DestinationOutcome(destination, True)


async def pull_latest(
    url: str,
    renderer: Renderer,
    reply: Reply,
    fetcher: Fetcher = fetch_feed_entries,
) -> bool:
    """Reply with a rendered preview of the newest entry of ``url``.

    This is a preview: the dedup cache is neither consulted nor updated.
    """
    try:
        entries = await asyncio.to_thread(fetcher, url)
    except Exception as exc:  # noqa: BLE001
        logger.error("Manual pull of %s failed: %s", url, exc)
        await reply(OutgoingMessage(text=f"拉取失败: {exc}"))
        return False

    if not entries:
        await reply(OutgoingMessage(text="拉取成功但无内容.."))
        return False

    post = entries[0]
    image_path: Optional[Path] = None
    try:
        await reply(OutgoingMessage(text=f"最新文章：{post.title}\n正在生成预览..."))
        image = await renderer.render_feed_entry(post)
        if image is None:
            await reply(OutgoingMessage(text="生成预览图失败.."))
            return False
        image_path = image.path
        await reply(OutgoingMessage(image=image_path))
    except Exception as exc:  # noqa: BLE001
        logger.error("Failed to deliver preview of %s: %s", url, exc)
        return False
    finally:
        _discard(image_path)
    return True


class PollingService:
    """Owns the periodic task that drives :class:`DeliveryScheduler`."""

    def __init__(
        self,
        scheduler: DeliveryScheduler,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
    ):
        self.scheduler = scheduler
        self.interval_seconds = interval_seconds
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> asyncio.Task:
        if self.running:
            raise RuntimeError("Polling service already started.")
        self._task = asyncio.get_running_loop().create_task(self._loop())
        logger.info(
            "Polling service started (every %.0f seconds)", self.interval_seconds
        )
        return self._task

    def ensure_started(self) -> bool:
        """Start the service unless it is already running; return True if started."""
        if self.running:
            return False
        self.start()
        return True

    async def stop(self) -> None:
        task, self._task = self._task, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        logger.info("Polling service stopped")

    async def wait(self) -> None:
        if self._task is not None:
            await self._task

    async def _loop(self) -> None:
        while True:
            try:
                await self.scheduler.run_cycle()
            except Exception:  # noqa: BLE001
                logger.exception("Polling cycle failed unexpectedly")
            await asyncio.sleep(self.interval_seconds)
