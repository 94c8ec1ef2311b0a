"""Pytest fixtures for the EventWeather test suite.

Provides a temporary database, a seeding helper for events/users/bookings,
and snapshot factories.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventweather.config import reset_config
from eventweather.core.types import Units, WeatherSnapshot, utcnow
from eventweather.db.engine import SYSTEM_CONFIG_ID, get_engine, get_session_factory, init_db
from eventweather.db.models import Booking, Event, SystemConfig, User


@pytest.fixture(autouse=True)
def _fresh_config() -> None:
    """Drop cached settings between tests."""
    reset_config()


@pytest.fixture
async def session_factory(tmp_path: Path) -> AsyncGenerator[async_sessionmaker[AsyncSession], None]:
    """Create a temporary SQLite database with all tables and the system config row."""
    engine = get_engine(str(tmp_path / "test.db"))
    await init_db(engine)
    yield get_session_factory(engine)
    await engine.dispose()


class Seeder:
    """Inserts collaborator rows the pipeline reads."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def event(
        self,
        event_id: str | None = None,
        *,
        starts_in: timedelta = timedelta(hours=12),
        latitude: float | None = -34.6,
        longitude: float | None = -58.4,
        organizer_id: str | None = None,
        status: str = "scheduled",
        title: str = "Open Air Festival",
    ) -> str:
        event_id = event_id or str(uuid.uuid4())
        async with self._session_factory() as session:
            session.add(
                Event(
                    id=event_id,
                    title=title,
                    date=utcnow() + starts_in,
                    location="Parque Centenario",
                    latitude=latitude,
                    longitude=longitude,
                    status=status,
                    organizer_id=organizer_id,
                )
            )
            await session.commit()
        return event_id

    async def user(
        self,
        role: str,
        *,
        user_id: str | None = None,
        email: str | None = None,
        phone: str | None = "+5491100000000",
        active: bool = True,
        assigned: list[str] | None = None,
        preferences: dict[str, Any] | None = None,
    ) -> str:
        user_id = user_id or str(uuid.uuid4())
        async with self._session_factory() as session:
            session.add(
                User(
                    id=user_id,
                    name=f"{role} {user_id[:4]}",
                    email=email or f"{user_id}@example.com",
                    phone=phone,
                    role=role,
                    active=active,
                    assigned_events=assigned or [],
                    notification_preferences=preferences,
                )
            )
            await session.commit()
        return user_id

    async def booking(self, event_id: str, user_id: str, status: str = "confirmed") -> None:
        async with self._session_factory() as session:
            session.add(
                Booking(id=str(uuid.uuid4()), event_id=event_id, user_id=user_id, status=status)
            )
            await session.commit()

    async def system(self, **values: Any) -> None:
        async with self._session_factory() as session:
            row = await session.get(SystemConfig, SYSTEM_CONFIG_ID)
            assert row is not None
            for key, value in values.items():
                setattr(row, key, value)
            await session.commit()

    async def delete_event(self, event_id: str) -> None:
        async with self._session_factory() as session:
            row = await session.get(Event, event_id)
            assert row is not None
            await session.delete(row)
            await session.commit()

    async def get_event(self, event_id: str) -> Event:
        async with self._session_factory() as session:
            row = await session.get(Event, event_id)
            assert row is not None
            return row


@pytest.fixture
def seed(session_factory: async_sessionmaker[AsyncSession]) -> Seeder:
    return Seeder(session_factory)


def _snapshot(**overrides: Any) -> WeatherSnapshot:
    values: dict[str, Any] = {
        "location": "Buenos Aires",
        "latitude": -34.6,
        "longitude": -58.4,
        "temperature": 22.0,
        "feels_like": 22.0,
        "humidity": 50.0,
        "wind_speed": 10.0,
        "condition": "Clear",
        "description": "clear sky",
        "visibility": 10000.0,
        "rainfall": 0.0,
        "pressure": 1013.0,
        "units": Units.METRIC,
    }
    values.update(overrides)
    return WeatherSnapshot(**values)


@pytest.fixture
def make_snapshot() -> Callable[..., WeatherSnapshot]:
    """Factory for snapshots: calm metric weather unless overridden."""
    return _snapshot


@pytest.fixture
def calm_snapshot() -> WeatherSnapshot:
    return _snapshot()
