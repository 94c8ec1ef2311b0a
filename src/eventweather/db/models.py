"""SQLAlchemy 2.0 ORM models for events, users, alert configs and alert logs.

All tables use UUID primary keys stored as String (SQLite compatibility).
JSON columns store nested rule bundles, delivery tallies and automation
records in their camelCase wire form.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import JSON, Boolean, DateTime, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """SQLAlchemy declarative base for all EventWeather models."""


# ---------------------------------------------------------------------------
# Collaborators (read by the pipeline; only weather_status/status are written)
# ---------------------------------------------------------------------------


class Event(Base):
    """A ticketed event with an optional location for weather polling."""

    __tablename__ = "events"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    location: Mapped[str] = mapped_column(String(200), nullable=False, default="")
    latitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    longitude: Mapped[float | None] = mapped_column(Float, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="scheduled")
    weather_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    organizer_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class User(Base):
    """A platform user. ``role`` is one of super_admin, admin, event_admin, staff, staff_admin, user."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False, unique=True)
    phone: Mapped[str | None] = mapped_column(String(30), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="user")
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    assigned_events: Mapped[list | None] = mapped_column(JSON, nullable=True)
    notification_preferences: Mapped[dict | None] = mapped_column(JSON, nullable=True)


class Booking(Base):
    """A user's booking for an event."""

    __tablename__ = "bookings"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("events.id"), nullable=False, index=True
    )
    user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")


# ---------------------------------------------------------------------------
# Weather alert subsystem
# ---------------------------------------------------------------------------


class WeatherAlertConfig(Base):
    """Per-event alert rules. Exactly one row per event.

    ``event_id`` is a weak reference: deleting an event leaves this row
    orphaned rather than cascading.
    """

    __tablename__ = "weather_alert_configs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, unique=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    thresholds: Mapped[dict] = mapped_column(JSON, nullable=False)
    alert_conditions: Mapped[dict] = mapped_column(JSON, nullable=False)
    notifications: Mapped[dict] = mapped_column(JSON, nullable=False)
    alert_template: Mapped[str] = mapped_column(Text, nullable=False)
    automation: Mapped[dict] = mapped_column(JSON, nullable=False)
    notification_timing: Mapped[int] = mapped_column(Integer, nullable=False, default=24)
    polling_interval: Mapped[int | None] = mapped_column(Integer, nullable=True)
    alerts_sent: Mapped[list | None] = mapped_column(JSON, nullable=True)
    last_checked: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class WeatherAlertLog(Base):
    """Append-only record of one triggered evaluation.

    Mutated only to add approval, execution and acknowledgement metadata.
    """

    __tablename__ = "weather_alert_logs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    event_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    alert_type: Mapped[str] = mapped_column(String(20), nullable=False)
    weather_condition: Mapped[str] = mapped_column(String(50), nullable=False)
    weather_data: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    risks: Mapped[list | None] = mapped_column(JSON, nullable=True)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    notifications: Mapped[dict] = mapped_column(JSON, nullable=False)
    automation_actions: Mapped[list] = mapped_column(JSON, nullable=False, default=list)
    trigger_source: Mapped[str] = mapped_column(String(10), nullable=False, default="auto")
    triggered_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    acknowledged_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    acknowledged_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)


class SystemConfig(Base):
    """Singleton row (id ``system_config``) gating the whole feature."""

    __tablename__ = "system_config"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    auto_polling: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    polling_interval: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    allowed_roles: Mapped[list] = mapped_column(JSON, nullable=False)
    require_approval: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    updated_by: Mapped[str | None] = mapped_column(String(36), nullable=True)
    updated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class WeatherRecord(Base):
    """Last-known snapshot and forecast for an event, one row per event."""

    __tablename__ = "weather_records"

    event_id: Mapped[str] = mapped_column(String(36), primary_key=True)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    forecast: Mapped[list | None] = mapped_column(JSON, nullable=True)
    uv_index: Mapped[float | None] = mapped_column(Float, nullable=True)
    notification_type: Mapped[str] = mapped_column(String(20), nullable=False)
    notification_message: Mapped[str] = mapped_column(Text, nullable=False)
    last_updated: Mapped[datetime] = mapped_column(DateTime, nullable=False)


class SweepRun(Base):
    """Tracking record for each scheduler sweep.

    Stores timing, counts, and error details for monitoring and debugging.
    """

    __tablename__ = "sweep_runs"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    events_considered: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    events_checked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    events_skipped: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    alerts_sent: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    errors: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    duration_ms: Mapped[int | None] = mapped_column(Integer, nullable=True)
