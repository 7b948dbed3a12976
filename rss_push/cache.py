"""Durable record of which feed entries have already been pushed."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from .db import DeliveredEntryModel

logger = logging.getLogger(__name__)


class DedupCache:
    """Set membership over ``(feed_url, entry_link)`` pairs.

    Records are append-only: once an entry is marked it stays marked until a
    retention pass removes it with :meth:`prune_before`.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def has(self, feed_url: str, entry_link: str) -> bool:
        with self._session_factory() as session:
            stmt = select(DeliveredEntryModel.entry_link).where(
                DeliveredEntryModel.feed_url == feed_url,
                DeliveredEntryModel.entry_link == entry_link,
            )
            return session.execute(stmt).first() is not None

    def mark_delivered(
        self,
        feed_url: str,
        entry_link: str,
        delivered_at: Optional[datetime] = None,
    ) -> None:
        """Record the entry as delivered; marking twice keeps the first record."""
        if self.has(feed_url, entry_link):
            logger.debug("Entry already cached for %s: %s", feed_url, entry_link)
            return

        timestamp = (delivered_at or datetime.now(timezone.utc)).astimezone(
            timezone.utc
        )
        with self._session_factory() as session:
            session.add(
                DeliveredEntryModel(
                    feed_url=feed_url,
                    entry_link=entry_link,
                    delivered_at=timestamp,
                )
            )
            try:
                session.commit()
            except IntegrityError:
                # written between our check and the insert
                session.rollback()
            except Exception:
                session.rollback()
                raise
        logger.debug("Cached entry for %s: %s", feed_url, entry_link)

    def prune_before(self, cutoff: datetime) -> int:
        """Delete records delivered before ``cutoff`` and return how many went."""
        with self._session_factory() as session:
            stmt = delete(DeliveredEntryModel).where(
                DeliveredEntryModel.delivered_at < cutoff.astimezone(timezone.utc)
            )
            try:
                result = session.execute(stmt)
                session.commit()
            except Exception:
                session.rollback()
                raise
        removed = result.rowcount or 0
        logger.info("Pruned %d dedup records older than %s", removed, cutoff)
        return removed
