"""Shared test fixtures for the attribution engine.

Provides an in-memory data source seeded with a small project, an event
factory, and an in-memory SQLite repository. No external services needed.
"""

import os
from datetime import datetime, timedelta

import pytest

# Must be set before config.settings is first imported
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("LOG_LEVEL", "WARNING")

from engine.channels import ChannelRegistry  # noqa: E402
from engine.data_source import InMemoryDataSource  # noqa: E402
from models.attribution import AttributionEvent, EventType  # noqa: E402

PROJECT_ID = "proj-1"
BASE_TIME = datetime(2024, 3, 1, 12, 0, 0)


def make_event(
    event_id: str,
    user: str,
    occurred_at: datetime,
    channel_id=None,
    event_type: EventType = EventType.PAGE_VIEW,
    value=None,
    project_id: str = PROJECT_ID,
) -> AttributionEvent:
    """Build an AttributionEvent with terse arguments."""
    return AttributionEvent(
        id=event_id,
        project_id=project_id,
        user_identifier=user,
        channel_id=channel_id,
        event_type=event_type,
        event_value=value,
        occurred_at=occurred_at,
    )


def make_conversion(event_id, user, occurred_at, channel_id=None, value=None, project_id=PROJECT_ID):
    return make_event(event_id, user, occurred_at, channel_id, EventType.CONVERSION, value, project_id)


def seed_project(data_source) -> dict:
    """Bootstrap channels and three converting users.

    - alice: Organic Search -> Email Marketing -> conversion on Paid Search (100)
    - bob: Social Media -> conversion on Direct Traffic (50)
    - carol: conversion with a negative value (skipped by reports)
    """
    channels = ChannelRegistry(data_source).create_default_channels(PROJECT_ID)
    by_name = {c.name: c.id for c in channels}

    events = [
        make_event("a1", "alice", BASE_TIME - timedelta(hours=72), by_name["Organic Search"]),
        make_event("a2", "alice", BASE_TIME - timedelta(hours=24), by_name["Email Marketing"]),
        make_conversion("a3", "alice", BASE_TIME, by_name["Paid Search"], 100.0),
        make_event("b1", "bob", BASE_TIME - timedelta(hours=10), by_name["Social Media"]),
        make_conversion("b2", "bob", BASE_TIME + timedelta(hours=1), by_name["Direct Traffic"], 50.0),
        make_conversion("c1", "carol", BASE_TIME + timedelta(hours=2), by_name["Other"], -10.0),
    ]
    return {"channels": by_name, "events": events}


# ---------------------------------------------------------------------------
# In-memory data source
# ---------------------------------------------------------------------------

@pytest.fixture
def data_source():
    """Empty in-memory data source."""
    return InMemoryDataSource()


@pytest.fixture
def seeded(data_source):
    """In-memory data source holding the seeded project."""
    seed = seed_project(data_source)
    for event in seed["events"]:
        data_source.add_event(event)
    seed["data_source"] = data_source
    return seed


@pytest.fixture
def report_window():
    """Date range covering every seeded conversion."""
    return BASE_TIME - timedelta(days=1), BASE_TIME + timedelta(days=1)


# ---------------------------------------------------------------------------
# SQLite repository
# ---------------------------------------------------------------------------

@pytest.fixture
def sqlite_source():
    """SQLAlchemyDataSource on a fresh in-memory SQLite database."""
    from database.repository import SQLAlchemyDataSource
    from database.session import create_db_engine, create_session_factory, init_db

    engine = create_db_engine("sqlite://")
    init_db(engine)
    yield SQLAlchemyDataSource(create_session_factory(engine))
    engine.dispose()


@pytest.fixture
def seeded_sqlite(sqlite_source):
    """SQLite repository holding the seeded project."""
    seed = seed_project(sqlite_source)
    sqlite_source.add_events(seed["events"])
    seed["data_source"] = sqlite_source
    return seed
