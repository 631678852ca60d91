from datetime import timezone

import pytest
from apscheduler.schedulers.background import BackgroundScheduler
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from db import Base, make_session_factory
from errors import ConfigurationError
from scheduler import SchedulerCore
from services.directions_service import RouteMeasurement
from store import JobStore


class FakeDirectionsClient:
    """Stands in for DirectionsClient; returns canned routes."""

    def __init__(self):
        self.routes = [RouteMeasurement(route_index=0, duration_seconds=600, distance_meters=12000, summary="I-90")]
        self.error = None
        self.configured = True
        self.calls = []

    def ensure_configured(self):
        if not self.configured:
            raise ConfigurationError("GOOGLE_MAPS_API_KEY not set in .env")

    def get_routes(self, origin, destination, **kwargs):
        self.calls.append((origin, destination, kwargs))
        self.ensure_configured()
        if self.error:
            raise self.error
        return list(self.routes)


@pytest.fixture
def store():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield JobStore(make_session_factory(engine))
    engine.dispose()


@pytest.fixture
def fake_client():
    return FakeDirectionsClient()


@pytest.fixture
def aps():
    sched = BackgroundScheduler(timezone=timezone.utc)
    sched.start()
    yield sched
    sched.shutdown(wait=False)


@pytest.fixture
def core(store, fake_client, aps):
    c = SchedulerCore(store, fake_client, scheduler=aps, min_interval_seconds=300)
    yield c
    c.shutdown()


@pytest.fixture
def make_job(store):
    def _make(**fields):
        fields.setdefault("start_location", "Pike Place Market, Seattle")
        fields.setdefault("end_location", "47.6205,-122.3493")
        return store.create_job(**fields)

    return _make
