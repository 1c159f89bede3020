"""Pytest configuration and shared fixtures.

Settings are read at import time, so the environment is pinned before any
`cliq` module loads. Each test gets its own in-memory SQLite database built
from the declarative models.
"""

import os

os.environ.setdefault("POSTGRES_DSN", "sqlite+pysqlite://")
os.environ.setdefault("INSTANCE_ID", "test-instance")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "")

from datetime import datetime, timedelta, timezone  # noqa: E402

import pytest  # noqa: E402

from cliq.common.config import QueueConfig  # noqa: E402
from cliq.common.db import Base, make_engine, make_session_factory  # noqa: E402
from cliq.services.notification.models import Notification, NotificationDelivery  # noqa: E402,F401
from cliq.services.notification.schemas import NotificationPayload  # noqa: E402
from cliq.services.notification.service import QueueService  # noqa: E402
from cliq.services.subscriptions.models import PushSubscription  # noqa: E402
from cliq.services.subscriptions.store import SubscriptionStore  # noqa: E402


class FakeClock:
    """Manually advanced UTC clock injected into the queue service."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def as_utc(value: datetime) -> datetime:
    """SQLite hands back naive datetimes; everything stored is UTC."""

    return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)


@pytest.fixture
def session_factory():
    engine = make_engine("sqlite+pysqlite://")
    Base.metadata.create_all(engine)
    yield make_session_factory(engine)
    engine.dispose()


@pytest.fixture
def clock():
    return FakeClock(datetime(2026, 10, 19, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def queue_config():
    return QueueConfig(
        batch_size=10,
        idle_delay_seconds=0.01,
        lease_seconds=60,
        max_retries=3,
        backoff_initial_seconds=0.01,
        backoff_max_seconds=0.04,
    )


@pytest.fixture
def store(session_factory):
    return SubscriptionStore(session_factory)


@pytest.fixture
def queue(session_factory, queue_config, store, clock):
    return QueueService(session_factory, queue_config, store, clock=clock)


@pytest.fixture
def payload():
    return NotificationPayload(
        title="New friend request",
        body="Ada sent you a friend request",
        metadata='{"type":"FriendRequest"}',
        navigate_target="/friends",
    )


@pytest.fixture
def add_subscription(store):
    """Register a device for a user and return the stored row."""

    counter = {"n": 0}

    def _add(user_id: str) -> PushSubscription:
        counter["n"] += 1
        return store.store_subscription(
            user_id,
            f"https://push.example.com/send/{user_id}-{counter['n']}",
            f"p256dh-{counter['n']}",
            f"auth-{counter['n']}",
        )

    return _add


def delivery_rows(session_factory) -> list[NotificationDelivery]:
    with session_factory() as db:
        return list(db.query(NotificationDelivery).order_by(NotificationDelivery.created_at).all())


def notification_rows(session_factory) -> list[Notification]:
    with session_factory() as db:
        return list(db.query(Notification).all())
