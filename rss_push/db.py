"""Database layer for subscriptions and the delivery dedup cache."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    create_engine,
)
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.orm import DeclarativeBase, Session, relationship, sessionmaker
from sqlalchemy.pool import StaticPool

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class SubscriptionModel(Base):
    """A subscribed feed URL."""

    __tablename__ = "subscriptions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(String, nullable=False, unique=True)
    render_as_image = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=_utcnow)

    destinations = relationship(
        "SubscriptionDestinationModel",
        order_by="SubscriptionDestinationModel.id",
        cascade="all, delete-orphan",
        back_populates="subscription",
    )


class SubscriptionDestinationModel(Base):
    """One destination attached to a subscription."""

    __tablename__ = "subscription_destinations"
    __table_args__ = (UniqueConstraint("subscription_id", "destination"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    subscription_id = Column(
        Integer, ForeignKey("subscriptions.id"), nullable=False, index=True
    )
    destination = Column(String, nullable=False)

    subscription = relationship("SubscriptionModel", back_populates="destinations")


class DeliveredEntryModel(Base):
    """Record that an entry of a feed has been selected for delivery."""

    __tablename__ = "delivered_entries"

    feed_url = Column(String, primary_key=True)
    entry_link = Column(String, primary_key=True)
    delivered_at = Column(DateTime, nullable=False, default=_utcnow)


def init_engine(connection_string: Optional[str]) -> Optional[Engine]:
    """Initialize the database engine and create missing tables."""
    if not connection_string:
        return None

    url = make_url(connection_string)
    is_sqlite = url.drivername.startswith("sqlite")
    in_memory = is_sqlite and url.database in (None, "", ":memory:")
    if is_sqlite and not in_memory:
        Path(url.database).parent.mkdir(parents=True, exist_ok=True)

    logger.info("Initializing database connection: %s", url.render_as_string())
    if in_memory:
        # a single shared connection keeps the in-memory database alive
        engine = create_engine(
            connection_string,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(connection_string)
    Base.metadata.create_all(engine)
    return engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Return a session factory for the given engine."""
    return sessionmaker(bind=engine, expire_on_commit=False)
