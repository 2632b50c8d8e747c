# tests/conftest.py
import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("UDP_ENABLED", "false")
os.environ.setdefault("NOTIFY_ENABLED", "false")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from src.DB.base_class import Base
import src.DB.base  # noqa: F401  (registers every model on Base.metadata)
from src.Services.geofence_completion import GeofenceCompletionEngine
from src.Services.trip_lifecycle import TripLifecycleController
from src.Services.trip_monitor import TripMonitor
from src.Services.trip_registry import TripRegistry

from helpers import FakeStore


# ==========================================================
# FIXTURES
# ==========================================================

@pytest.fixture
def store() -> FakeStore:
    return FakeStore()


@pytest.fixture
def registry() -> TripRegistry:
    return TripRegistry()


@pytest.fixture
def lifecycle(store, registry) -> TripLifecycleController:
    return TripLifecycleController(store, registry)


@pytest.fixture
def geofence(store, lifecycle) -> GeofenceCompletionEngine:
    return GeofenceCompletionEngine(store, lifecycle)


@pytest.fixture
async def monitor(store):
    m = TripMonitor(
        store=store,
        live_radius_km=1.0,
        mailbox_size=100,
        long_stop_minutes=5,
        reject_out_of_order=True,
        reconcile_planned=True
    )
    yield m
    await m.shutdown()


@pytest.fixture
def db_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()
