"""
Pytest configuration and fixtures

Every test that touches the database gets a fresh in-memory SQLite schema;
tables are dropped again after the test so nothing leaks between tests.
"""
import os

# Must be set before any habitcoach module builds its engine / settings.
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SCHEDULER_ENABLED"] = "0"
os.environ.pop("OPENAI_API_KEY", None)
os.environ.pop("ADMIN_API_TOKEN", None)

import pytest

from habitcoach.advisor import CoachBriefAdvisor
from habitcoach.db import SessionLocal, engine
from habitcoach.models import Base
from habitcoach.persistence import ProgressionWriter
from habitcoach.service import ProgressionService

from factories import FIRST_DUE, PROGRAMME_START, FrozenClock, records_from_percentages


@pytest.fixture
def db():
    """Fresh schema per test."""
    Base.metadata.create_all(bind=engine)
    yield SessionLocal
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def clock():
    return FrozenClock(FIRST_DUE)


@pytest.fixture
def sleeps():
    """Backoff delays requested by the writer (recorded instead of slept)."""
    return []


@pytest.fixture
def service(db, clock, sleeps):
    writer = ProgressionWriter(db, max_attempts=3, backoff_seconds=0.5, sleep=sleeps.append)
    return ProgressionService(db, clock=clock, writer=writer)


@pytest.fixture
def worker(db, clock):
    """Service as the queue worker builds it: real writer, no LLM for coach briefs."""
    return ProgressionService(db, clock=clock, advisor=CoachBriefAdvisor(api_key=""))


@pytest.fixture
def seed_week(service):
    """Backfill seven days of data for a user from per-day percentages."""
    def _seed(user_id, start, by_pillar, targets=None):
        for rec in records_from_percentages(start, by_pillar, targets):
            service.data.log_daily_value(user_id, rec.day, rec.pillar, rec.actual, rec.target, backfill=True)
    return _seed


@pytest.fixture
def started_user(service):
    service.start_programme(1, start_date=PROGRAMME_START, display_name="Test User")
    return 1
