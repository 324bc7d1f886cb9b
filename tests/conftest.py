"""Shared fixtures: in-memory contact store, recording publisher and notifier."""

import asyncio

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from portfolio_events.config import Settings
from portfolio_events.core.contact_states import ContactStatus, Priority
from portfolio_events.db.models import Base, Contact
from portfolio_events.db.repository import ContactRepository
from portfolio_events.events.consumer import StreamMessage
from portfolio_events.events.publisher import PublishResult


def _resolved(result):
    future = asyncio.get_running_loop().create_future()
    future.set_result(result)
    return future


class RecordingPublisher:
    """Stands in for EventPublisher; keeps every record instead of sending it."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []
        self.raw = []

    @property
    def is_started(self) -> bool:
        return True

    async def publish(self, topic, key, event):
        if self.fail:
            raise RuntimeError("broker unavailable")
        self.published.append((topic, key, event))
        return _resolved(PublishResult(topic=topic, key=key, partition=0, offset=len(self.published) - 1))

    async def publish_raw(self, topic, key, value, headers=None, log_extra=None):
        self.raw.append((topic, key, value, headers or {}))
        return _resolved(PublishResult(topic=topic, key=key, partition=0, offset=len(self.raw) - 1))

    def events(self, event_type=None):
        return [e for _, _, e in self.published if event_type is None or e.event_type == event_type]


class RecordingNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.urgent = []
        self.standard = []

    async def notify_urgent(self, email, name, message):
        if self.fail:
            raise RuntimeError("mail server down")
        self.urgent.append((email, name, message))

    async def notify_standard(self, contact):
        if self.fail:
            raise RuntimeError("mail server down")
        self.standard.append(contact.id)


class RecordingBroadcaster:
    def __init__(self):
        self.published = []

    def publish(self, channel, payload):
        self.published.append((channel, payload))


@pytest.fixture
def settings():
    return Settings(
        database_url="sqlite+aiosqlite://",
        kafka_enabled=False,
        consumer_max_retries=2,
        consumer_retry_backoff_seconds=0,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def repository(session_factory):
    return ContactRepository(session_factory)


@pytest.fixture
def publisher():
    return RecordingPublisher()


@pytest.fixture
def notifier():
    return RecordingNotifier()


@pytest.fixture
def broadcaster():
    return RecordingBroadcaster()


@pytest.fixture
def make_contact(repository):
    """Insert a contact directly, bypassing classification."""

    async def _make(
        message="Hello there, just wanted to say your site looks great.",
        priority=Priority.MEDIUM,
        status=ContactStatus.NEW,
        name="Ada Lovelace",
        email="ada@example.com",
        created_at=None,
    ):
        contact = Contact(
            name=name,
            email=email,
            message=message,
            priority=priority,
            status=status,
            created_at=created_at,
        )
        await repository.create(contact)
        return contact

    return _make


def make_message(value, topic="contact-events", partition=0, offset=0, key=None) -> StreamMessage:
    if hasattr(value, "to_bytes"):
        key = key or value.partition_key()
        value = value.to_bytes()
    return StreamMessage(topic=topic, partition=partition, offset=offset, key=key, value=value)
