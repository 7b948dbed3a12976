"""Persistent list of feed subscriptions and their destinations."""

from __future__ import annotations

import enum
import logging
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload, sessionmaker

from .db import SubscriptionDestinationModel, SubscriptionModel
from .models import Subscription

logger = logging.getLogger(__name__)


class AddResult(enum.Enum):
    CREATED = "created"
    DESTINATION_ADDED = "destination_added"
    ALREADY_PRESENT = "already_present"


def _to_subscription(row: SubscriptionModel) -> Subscription:
    return Subscription(
        id=row.id,
        url=row.url,
        destinations=[item.destination for item in row.destinations],
        render_as_image=bool(row.render_as_image),
    )


class SubscriptionStore:
    """CRUD over subscriptions keyed by URL, addressed by stable integer ids.

    Ids are assigned on creation and never reused. Removing a destination
    leaves the subscription row in place, even when it ends up with no
    destinations.
    """

    def __init__(self, session_factory: sessionmaker[Session]):
        self._session_factory = session_factory

    def _load(self, session: Session, stmt) -> Optional[SubscriptionModel]:
        return session.execute(
            stmt.options(selectinload(SubscriptionModel.destinations))
        ).scalar_one_or_none()

    def add(
        self, url: str, destination: str, render_as_image: bool = True
    ) -> Tuple[Subscription, AddResult]:
        with self._session_factory() as session:
            row = self._load(
                session, select(SubscriptionModel).where(SubscriptionModel.url == url)
            )
            if row is None:
                row = SubscriptionModel(url=url, render_as_image=render_as_image)
                row.destinations.append(
                    SubscriptionDestinationModel(destination=destination)
                )
                session.add(row)
                result = AddResult.CREATED
            elif destination in {item.destination for item in row.destinations}:
                return _to_subscription(row), AddResult.ALREADY_PRESENT
            else:
                row.destinations.append(
                    SubscriptionDestinationModel(destination=destination)
                )
                result = AddResult.DESTINATION_ADDED

            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            subscription = _to_subscription(row)

        logger.info(
            "Subscription %d (%s) for destination %s: %s",
            subscription.id,
            url,
            destination,
            result.value,
        )
        return subscription, result

    def remove_destination(self, subscription_id: int, destination: str) -> Subscription:
        """Discard ``destination`` from a subscription.

        Raises ``KeyError`` for an unknown id and ``LookupError`` when the
        destination is not subscribed.
        """
        with self._session_factory() as session:
            row = self._load(
                session,
                select(SubscriptionModel).where(SubscriptionModel.id == subscription_id),
            )
            if row is None:
                raise KeyError(subscription_id)

            match = next(
                (item for item in row.destinations if item.destination == destination),
                None,
            )
            if match is None:
                raise LookupError(
                    f"Destination {destination} is not subscribed to {row.url}"
                )

            row.destinations.remove(match)
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            subscription = _to_subscription(row)

        logger.info(
            "Removed destination %s from subscription %d (%s)",
            destination,
            subscription.id,
            subscription.url,
        )
        return subscription

    def set_render_as_image(self, subscription_id: int, enabled: bool) -> Subscription:
        with self._session_factory() as session:
            row = self._load(
                session,
                select(SubscriptionModel).where(SubscriptionModel.id == subscription_id),
            )
            if row is None:
                raise KeyError(subscription_id)
            row.render_as_image = enabled
            try:
                session.commit()
            except Exception:
                session.rollback()
                raise
            return _to_subscription(row)

    def get(self, subscription_id: int) -> Optional[Subscription]:
        with self._session_factory() as session:
            row = self._load(
                session,
                select(SubscriptionModel).where(SubscriptionModel.id == subscription_id),
            )
            return _to_subscription(row) if row else None

    def get_by_url(self, url: str) -> Optional[Subscription]:
        with self._session_factory() as session:
            row = self._load(
                session, select(SubscriptionModel).where(SubscriptionModel.url == url)
            )
            return _to_subscription(row) if row else None

    def list_all(self) -> List[Subscription]:
        with self._session_factory() as session:
            stmt = (
                select(SubscriptionModel)
                .options(selectinload(SubscriptionModel.destinations))
                .order_by(SubscriptionModel.id)
            )
            return [_to_subscription(row) for row in session.execute(stmt).scalars()]

    def list_for_destination(self, destination: str) -> List[Subscription]:
        return [
            subscription
            for subscription in self.list_all()
            if destination in subscription.destinations
        ]
