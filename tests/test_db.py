"""Tests for the database helpers."""

from sqlalchemy import inspect

from rss_push import db


def test_init_engine_without_connection_string_returns_none():
    assert db.init_engine(None) is None
    assert db.init_engine("") is None


def test_init_engine_creates_tables_and_parent_directory(tmp_path):
    path = tmp_path / "nested" / "state.db"

    engine = db.init_engine(f"sqlite:///{path}")

    assert path.parent.exists()
    tables = set(inspect(engine).get_table_names())
    assert {"subscriptions", "subscription_destinations", "delivered_entries"} <= tables
    engine.dispose()
