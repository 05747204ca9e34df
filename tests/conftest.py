"""
Call Tracker - Shared pytest Fixtures & Configuration

Provides common fixtures for all test modules:
- In-memory SQLite database (aiosqlite) with the full schema
- CallRepository bound to that database
- Token call / user factories
- A scriptable fake price-history provider
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import AsyncGenerator, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from calltracker.config import Resolution, TokenCallStatus
from calltracker.engine.price_history import PriceHistory, PriceSample
from calltracker.models import Base, TokenCall, User
from calltracker.pipeline.repository import CallRepository


# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

pytest_plugins = ("pytest_asyncio",)

T0 = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def unix(dt: datetime) -> int:
    return int(dt.timestamp())


def history(*points: tuple[datetime, float]) -> PriceHistory:
    """Build a PriceHistory from (datetime, price) pairs."""
    return PriceHistory(items=[PriceSample(unix_time=unix(ts), value=v) for ts, v in points])


# ---------------------------------------------------------------------------
# Database Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
async def session_factory() -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """
    Session factory over a fresh in-memory SQLite database.

    StaticPool keeps every session on the same connection, so all of them
    see the same in-memory database.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )

    await engine.dispose()


@pytest.fixture
def repository(session_factory) -> CallRepository:
    return CallRepository(session_factory)


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def make_call() -> Callable[..., TokenCall]:
    """Factory for transient TokenCall rows with sane defaults."""

    def _make(
        token_id: str = "So11111111111111111111111111111111111111112",
        user_id: uuid.UUID | None = None,
        call_timestamp: datetime = T0,
        duration: timedelta = timedelta(hours=1),
        reference_price: str = "1.00",
        target_price: str = "2.00",
        reference_supply: str | None = None,
        status: TokenCallStatus = TokenCallStatus.PENDING,
        **extra,
    ) -> TokenCall:
        return TokenCall(
            id=uuid.uuid4(),
            user_id=user_id or uuid.uuid4(),
            token_id=token_id,
            call_timestamp=call_timestamp,
            target_date=call_timestamp + duration,
            reference_price=Decimal(reference_price),
            target_price=Decimal(target_price),
            reference_supply=Decimal(reference_supply) if reference_supply is not None else None,
            timeframe_duration="1h",
            status=status,
            **extra,
        )

    return _make


@pytest.fixture
def add_user(session_factory) -> Callable:
    """Insert a User and return it."""

    async def _add(username: str, display_name: str | None = None) -> User:
        user = User(
            id=uuid.uuid4(),
            username=username,
            display_name=display_name or username.title(),
            avatar_url=f"https://avatars.test/{username}.png",
        )
        async with session_factory() as session:
            session.add(user)
            await session.commit()
        return user

    return _add


# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeProvider:
    """
    Price-history provider keyed by token id.

    A value in `responses` may be a PriceHistory (returned) or an exception
    (raised). Unknown tokens get an empty history.
    """

    def __init__(self, responses: dict[str, PriceHistory | Exception] | None = None):
        self.responses = responses or {}
        self.calls: list[tuple[str, datetime, datetime, Resolution]] = []

    async def fetch_price_history(
        self,
        token_id: str,
        start: datetime,
        end: datetime,
        resolution: Resolution,
    ) -> PriceHistory:
        self.calls.append((token_id, start, end, resolution))
        response = self.responses.get(token_id, PriceHistory())
        if isinstance(response, Exception):
            raise response
        return response
