"""Shared fixtures: a throwaway SQLite database per test and fake collaborators."""

import asyncio
import json
import os
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from decimal import Decimal
from types import SimpleNamespace

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["WEBHOOK_SECRET"] = ""
os.environ["TWILIO_AUTH_TOKEN"] = "test-twilio-token"
os.environ["OPENAI_API_KEY"] = ""
os.environ["AUTOMATION_BATCH_DELAY_SECONDS"] = "0"

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from staffline.database import Base
from staffline.models import Business, Client, Service, Staff
from staffline.schemas.agent import AgentResponse, ToolCall
from staffline.schemas.notification import DeliveryResult

# Monday 2025-03-10, 09:00 in Tashkent (UTC+5)
NOW = datetime(2025, 3, 10, 4, 0)


@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'staffline.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture
async def seed(db):
    """One business (Tashkent, 09:00-18:00 daily), two staff, one service, one client."""
    business = Business(
        name="Studio Aurora",
        phone="+998711234567",
        address="12 Navoi St",
        timezone="Asia/Tashkent",
        language="en",
        channel="telegram",
        bot_token="test-token",
    )
    db.add(business)
    await db.flush()

    anna = Staff(business_id=business.id, name="Anna", role="Stylist", created_at=datetime(2024, 1, 1))
    boris = Staff(business_id=business.id, name="Boris", role="Barber", created_at=datetime(2024, 1, 2))
    haircut = Service(business_id=business.id, name="Haircut", price=Decimal("100.00"), duration_minutes=60)
    dana = Client(business_id=business.id, channel_id="1001", name="Dana")
    egor = Client(business_id=business.id, channel_id="1002", name="Egor")
    db.add_all([anna, boris, haircut, dana, egor])
    await db.commit()

    return SimpleNamespace(
        business_id=business.id,
        anna_id=anna.id,
        boris_id=boris.id,
        service_id=haircut.id,
        client_id=dana.id,
        other_client_id=egor.id,
    )


class ScriptedLLM:
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses=None, summary="Prefers morning appointments."):
        self.responses = list(responses or [])
        self.summary = summary
        self.calls = []

    async def complete_with_tools(self, messages, tools, model=None, temperature=0.4):
        self.calls.append(list(messages))
        if not self.responses:
            return AgentResponse(type="text", content="How can I help?")
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    async def complete(self, messages, **kwargs):
        self.calls.append(list(messages))
        return self.summary


def tool_call(name, arguments=None, call_id="call_1"):
    return AgentResponse(
        type="tool_calls",
        tool_calls=[ToolCall(id=call_id, name=name, arguments=json.dumps(arguments or {}))],
    )


def text(content):
    return AgentResponse(type="text", content=content)


class FakeSender:
    """
    Records deliveries; channel ids in fail_for come back as failed, either
    permanently (blocked bot) or with a transient timeout.
    """

    def __init__(self, fail_for=(), transient=False):
        self.fail_for = set(fail_for)
        self.transient = transient
        self.sent = []
        self.attempted = []

    async def send(self, channel_id, text):
        self.attempted.append(channel_id)
        if channel_id in self.fail_for:
            error = "request timed out" if self.transient else "bot was blocked by the user"
            return DeliveryResult(channel_id=channel_id, success=False, error=error, transient=self.transient)
        self.sent.append((channel_id, text))
        return DeliveryResult(channel_id=channel_id, success=True, external_id=str(len(self.sent)))


class MemoryLocks:
    """In-process stand-in for the Redis conversation locks."""

    def __init__(self):
        self._locks = defaultdict(asyncio.Lock)
        self.acquired = []

    @asynccontextmanager
    async def hold(self, conversation_id):
        async with self._locks[conversation_id]:
            self.acquired.append(conversation_id)
            yield


@pytest.fixture
def sender():
    return FakeSender()


@pytest.fixture
def locks():
    return MemoryLocks()
