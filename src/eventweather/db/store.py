"""Repositories over the weather-alert tables.

Every repository takes an ``async_sessionmaker`` and opens a short-lived
session per call. Writes that must not race (config upsert, poll claim) are
single SQL statements rather than read-then-write sequences.
"""

from __future__ import annotations

import logging
import uuid
from collections import Counter
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError
from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError

from eventweather.core.errors import ConfigurationError, NotFoundError, PersistenceError
from eventweather.core.rules import (
    AlertConfigDocument,
    SentAlert,
    SystemWeatherConfig,
    apply_config_patch,
    camel_keys,
    deep_merge,
    validation_details,
)
from eventweather.core.types import (
    Actor,
    AlertLevel,
    AutomationAction,
    AutomationActionRecord,
    DeliveryLog,
    EventInfo,
    EventStatus,
    ForecastDay,
    RiskType,
    SweepRecord,
    TriggerSource,
    WeatherNotification,
    WeatherSnapshot,
    utcnow,
)
from eventweather.db.engine import SYSTEM_CONFIG_ID
from eventweather.db.models import (
    Event,
    SweepRun,
    SystemConfig,
    User,
    WeatherAlertConfig,
    WeatherAlertLog,
    WeatherRecord,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

_ACTIVE_EVENT_STATUSES = (EventStatus.SCHEDULED.value, EventStatus.ONGOING.value)

_RECENT_ALERTS_LIMIT = 10


# ---------------------------------------------------------------------------
# Row conversion helpers
# ---------------------------------------------------------------------------


def event_info(row: Event) -> EventInfo:
    return EventInfo(
        id=row.id,
        title=row.title,
        date=row.date,
        location=row.location,
        latitude=row.latitude,
        longitude=row.longitude,
        status=row.status,
        weather_status=row.weather_status,
        organizer_id=row.organizer_id,
    )


def config_document(row: WeatherAlertConfig) -> AlertConfigDocument:
    return AlertConfigDocument.model_validate(
        {
            "eventId": row.event_id,
            "enabled": row.enabled,
            "thresholds": row.thresholds,
            "alertConditions": row.alert_conditions,
            "notifications": row.notifications,
            "alertTemplate": row.alert_template,
            "automation": row.automation,
            "notificationTiming": row.notification_timing,
            "pollingInterval": row.polling_interval,
            "alertsSent": row.alerts_sent or [],
            "lastChecked": row.last_checked,
            "createdBy": row.created_by,
            "updatedBy": row.updated_by,
            "createdAt": row.created_at,
            "updatedAt": row.updated_at,
        }
    )


def log_to_dict(row: WeatherAlertLog) -> dict[str, Any]:
    return {
        "id": row.id,
        "eventId": row.event_id,
        "alertType": row.alert_type,
        "weatherCondition": row.weather_condition,
        "weatherData": row.weather_data,
        "risks": row.risks or [],
        "message": row.message,
        "notifications": row.notifications,
        "automationActions": row.automation_actions or [],
        "triggerSource": row.trigger_source,
        "triggeredBy": row.triggered_by,
        "acknowledged": row.acknowledged,
        "acknowledgedBy": row.acknowledged_by,
        "acknowledgedAt": row.acknowledged_at.isoformat() if row.acknowledged_at else None,
        "createdAt": row.created_at.isoformat(),
    }


def _system_config(row: SystemConfig) -> SystemWeatherConfig:
    return SystemWeatherConfig(
        enabled=row.enabled,
        auto_polling=row.auto_polling,
        polling_interval=row.polling_interval,
        allowed_roles=list(row.allowed_roles or []),
        require_approval=row.require_approval,
        updated_at=row.updated_at,
    )


# ---------------------------------------------------------------------------
# Alert configuration store
# ---------------------------------------------------------------------------


class AlertConfigStore:
    """One-per-event alert configuration with atomic upsert and poll claims."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_existing(self, event_id: str) -> AlertConfigDocument | None:
        async with self._session_factory() as session:
            row = await session.scalar(
                select(WeatherAlertConfig).where(WeatherAlertConfig.event_id == event_id)
            )
            return config_document(row) if row is not None else None

    async def get(self, event_id: str) -> AlertConfigDocument:
        """Return the stored config, or an unpersisted disabled default."""
        existing = await self.get_existing(event_id)
        if existing is None:
            return AlertConfigDocument.default_for(event_id)
        return existing

    async def upsert(self, event_id: str, patch: dict[str, Any], actor_id: str | None) -> AlertConfigDocument:
        """Merge *patch* onto the current config and write it in one statement.

        The insert and the update share a single ``INSERT .. ON CONFLICT`` so
        concurrent first writes for the same event never create duplicates.

        Raises:
            ConfigurationError: the merged document fails validation.
        """
        current = await self.get_existing(event_id) or AlertConfigDocument(event_id=event_id)
        try:
            doc = apply_config_patch(current, patch)
        except ValidationError as exc:
            msg = "Invalid alert configuration"
            raise ConfigurationError(msg, errors=validation_details(exc)) from exc

        now = utcnow()
        dumped = doc.model_dump(by_alias=True, mode="json")
        values = {
            "enabled": doc.enabled,
            "thresholds": dumped["thresholds"],
            "alert_conditions": dumped["alertConditions"],
            "notifications": dumped["notifications"],
            "alert_template": doc.alert_template,
            "automation": dumped["automation"],
            "notification_timing": doc.notification_timing,
            "polling_interval": doc.polling_interval,
            "updated_by": actor_id,
            "updated_at": now,
        }
        stmt = sqlite_insert(WeatherAlertConfig).values(
            id=str(uuid.uuid4()),
            event_id=event_id,
            alerts_sent=[],
            created_by=actor_id,
            created_at=now,
            **values,
        )
        stmt = stmt.on_conflict_do_update(index_elements=["event_id"], set_=values)

        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to save alert configuration for event {event_id}"
            raise PersistenceError(msg) from exc

        saved = await self.get_existing(event_id)
        if saved is None:
            msg = f"Alert configuration for event {event_id} vanished after write"
            raise PersistenceError(msg)
        logger.info("Alert config for event %s saved by %s", event_id, actor_id)
        return saved

    async def touch_last_checked(self, event_id: str, timestamp: datetime) -> None:
        async with self._session_factory() as session:
            await session.execute(
                update(WeatherAlertConfig)
                .where(WeatherAlertConfig.event_id == event_id)
                .values(last_checked=timestamp)
            )
            await session.commit()

    async def claim_poll(self, event_id: str, now: datetime, interval_minutes: int) -> bool:
        """Atomically stamp ``last_checked`` if the event is due.

        Only one caller can win a given polling window: the conditional
        UPDATE matches a row only while the stored timestamp is still stale.
        """
        cutoff = now - timedelta(minutes=interval_minutes)
        async with self._session_factory() as session:
            result = await session.execute(
                update(WeatherAlertConfig)
                .where(
                    WeatherAlertConfig.event_id == event_id,
                    WeatherAlertConfig.enabled.is_(True),
                    or_(
                        WeatherAlertConfig.last_checked.is_(None),
                        WeatherAlertConfig.last_checked <= cutoff,
                    ),
                )
                .values(last_checked=now)
            )
            await session.commit()
            return result.rowcount == 1

    async def record_sent_risks(
        self,
        event_id: str,
        risk_types: list[RiskType],
        weather_condition: str,
        sent_at: datetime,
        history_limit: int = 10,
    ) -> None:
        """Append sent risk types, keeping the newest entry per type and the last N entries."""
        async with self._session_factory() as session:
            row = await session.scalar(
                select(WeatherAlertConfig).where(WeatherAlertConfig.event_id == event_id)
            )
            if row is None:
                return
            existing = [SentAlert.model_validate(e) for e in (row.alerts_sent or [])]
            fresh = set(risk_types)
            kept = [e for e in existing if e.alert_type not in fresh]
            kept.extend(
                SentAlert(alert_type=t, sent_at=sent_at, weather_condition=weather_condition)
                for t in risk_types
            )
            row.alerts_sent = [
                e.model_dump(by_alias=True, mode="json") for e in kept[-history_limit:]
            ]
            await session.commit()

    async def delete(self, event_id: str) -> bool:
        """Hard-delete a config. Alert logs for the event are kept."""
        async with self._session_factory() as session:
            result = await session.execute(
                delete(WeatherAlertConfig).where(WeatherAlertConfig.event_id == event_id)
            )
            await session.commit()
            return result.rowcount > 0

    async def list_configs(
        self, enabled: bool | None = None, page: int = 1, limit: int = 20
    ) -> tuple[list[AlertConfigDocument], int]:
        stmt = select(WeatherAlertConfig)
        count_stmt = select(func.count()).select_from(WeatherAlertConfig)
        if enabled is not None:
            stmt = stmt.where(WeatherAlertConfig.enabled.is_(enabled))
            count_stmt = count_stmt.where(WeatherAlertConfig.enabled.is_(enabled))
        stmt = (
            stmt.order_by(WeatherAlertConfig.updated_at.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            total = await session.scalar(count_stmt)
        return [config_document(r) for r in rows], int(total or 0)

    async def bulk_toggle(self, event_ids: list[str], enabled: bool, actor_id: str | None) -> int:
        """Set ``enabled`` on existing configs. Returns the number updated."""
        if not event_ids:
            return 0
        async with self._session_factory() as session:
            result = await session.execute(
                update(WeatherAlertConfig)
                .where(WeatherAlertConfig.event_id.in_(event_ids))
                .values(enabled=enabled, updated_by=actor_id, updated_at=utcnow())
            )
            await session.commit()
            return int(result.rowcount)

    async def count_enabled(self) -> int:
        async with self._session_factory() as session:
            total = await session.scalar(
                select(func.count())
                .select_from(WeatherAlertConfig)
                .where(WeatherAlertConfig.enabled.is_(True))
            )
        return int(total or 0)


# ---------------------------------------------------------------------------
# System config singleton
# ---------------------------------------------------------------------------


class SystemConfigService:
    """Reads and writes the ``system_config`` row seeded by ``init_db``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def _row(self, session: AsyncSession) -> SystemConfig:
        row = await session.get(SystemConfig, SYSTEM_CONFIG_ID)
        if row is None:
            msg = "System config missing; was init_db run?"
            raise PersistenceError(msg)
        return row

    async def get(self) -> SystemWeatherConfig:
        async with self._session_factory() as session:
            return _system_config(await self._row(session))

    async def update(self, patch: dict[str, Any], actor_id: str | None) -> SystemWeatherConfig:
        async with self._session_factory() as session:
            row = await self._row(session)
            current = _system_config(row).model_dump(by_alias=True, mode="json")
            try:
                merged = SystemWeatherConfig.model_validate(deep_merge(current, camel_keys(patch)))
            except ValidationError as exc:
                msg = "Invalid system configuration"
                raise ConfigurationError(msg, errors=validation_details(exc)) from exc

            row.enabled = merged.enabled
            row.auto_polling = merged.auto_polling
            row.polling_interval = merged.polling_interval
            row.allowed_roles = list(merged.allowed_roles)
            row.require_approval = merged.require_approval
            row.updated_by = actor_id
            row.updated_at = utcnow()
            await session.commit()
            logger.info("System weather config updated by %s", actor_id)
            return _system_config(row)

    async def toggle(self, enabled: bool, actor_id: str | None) -> SystemWeatherConfig:
        logger.info("Weather alerts %s system-wide by %s", "enabled" if enabled else "disabled", actor_id)
        return await self.update({"enabled": enabled}, actor_id)


# ---------------------------------------------------------------------------
# Alert log
# ---------------------------------------------------------------------------


def _sum_delivery(rows: list[WeatherAlertLog]) -> dict[str, int]:
    totals = {
        "totalEmailSent": 0,
        "totalEmailFailed": 0,
        "totalSmsSent": 0,
        "totalSmsFailed": 0,
        "totalWhatsappSent": 0,
        "totalWhatsappFailed": 0,
    }
    for row in rows:
        notifications = row.notifications or {}
        for channel, label in (("email", "Email"), ("sms", "Sms"), ("whatsapp", "Whatsapp")):
            tally = notifications.get(channel) or {}
            totals[f"total{label}Sent"] += int(tally.get("sent", 0))
            totals[f"total{label}Failed"] += int(tally.get("failed", 0))
    return totals


def _automation_counts(rows: list[WeatherAlertLog]) -> dict[str, dict[str, int]]:
    counts = {a.value: {"executed": 0, "pending": 0} for a in AutomationAction}
    for row in rows:
        for raw in row.automation_actions or []:
            record = AutomationActionRecord.from_dict(raw)
            if record.executed:
                counts[record.action.value]["executed"] += 1
            elif record.is_pending:
                counts[record.action.value]["pending"] += 1
    return counts


class AlertLogRepository:
    """Append-only alert history plus acknowledgement and statistics."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def create(
        self,
        event_id: str,
        notification: WeatherNotification,
        snapshot: WeatherSnapshot,
        message: str,
        delivery: DeliveryLog,
        actions: list[AutomationActionRecord],
        trigger_source: TriggerSource,
        triggered_by: str | None = None,
    ) -> str:
        log_id = str(uuid.uuid4())
        row = WeatherAlertLog(
            id=log_id,
            event_id=event_id,
            alert_type=notification.type.value,
            weather_condition=snapshot.condition or "Unknown",
            weather_data={
                "temperature": snapshot.temperature,
                "feelsLike": snapshot.feels_like,
                "humidity": snapshot.humidity,
                "windSpeed": snapshot.wind_speed,
                "rainfall": snapshot.rainfall,
                "description": snapshot.description,
            },
            risks=notification.to_dict()["risks"],
            message=message,
            notifications=delivery.to_dict(),
            automation_actions=[a.to_dict() for a in actions],
            trigger_source=trigger_source.value,
            triggered_by=triggered_by,
            acknowledged=False,
            created_at=utcnow(),
        )
        try:
            async with self._session_factory() as session:
                session.add(row)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to save alert log for event {event_id}"
            raise PersistenceError(msg) from exc
        return log_id

    async def get(self, alert_id: str) -> dict[str, Any]:
        async with self._session_factory() as session:
            row = await session.get(WeatherAlertLog, alert_id)
            if row is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            return log_to_dict(row)

    async def history(
        self,
        event_id: str,
        alert_type: AlertLevel | None = None,
        acknowledged: bool | None = None,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[dict[str, Any]], int]:
        filters = [WeatherAlertLog.event_id == event_id]
        if alert_type is not None:
            filters.append(WeatherAlertLog.alert_type == alert_type.value)
        if acknowledged is not None:
            filters.append(WeatherAlertLog.acknowledged.is_(acknowledged))

        stmt = (
            select(WeatherAlertLog)
            .where(*filters)
            .order_by(WeatherAlertLog.created_at.desc())
            .offset((max(page, 1) - 1) * limit)
            .limit(limit)
        )
        async with self._session_factory() as session:
            rows = (await session.scalars(stmt)).all()
            total = await session.scalar(
                select(func.count()).select_from(WeatherAlertLog).where(*filters)
            )
        return [log_to_dict(r) for r in rows], int(total or 0)

    async def acknowledge(self, alert_id: str, user_id: str) -> dict[str, Any]:
        """Mark an alert acknowledged. The first acknowledgement is kept."""
        async with self._session_factory() as session:
            row = await session.get(WeatherAlertLog, alert_id)
            if row is None:
                raise NotFoundError("Alert", alert_id=alert_id)
            if not row.acknowledged:
                row.acknowledged = True
                row.acknowledged_by = user_id
                row.acknowledged_at = utcnow()
                await session.commit()
            return log_to_dict(row)

    async def _rows_since(self, since: datetime, event_id: str | None = None) -> list[WeatherAlertLog]:
        stmt = select(WeatherAlertLog).where(WeatherAlertLog.created_at >= since)
        if event_id is not None:
            stmt = stmt.where(WeatherAlertLog.event_id == event_id)
        async with self._session_factory() as session:
            return list((await session.scalars(stmt.order_by(WeatherAlertLog.created_at.desc()))).all())

    async def event_stats(self, event_id: str, days: int = 30) -> dict[str, Any]:
        rows = await self._rows_since(utcnow() - timedelta(days=days), event_id)
        acknowledged = sum(1 for r in rows if r.acknowledged)
        by_type = Counter(r.alert_type for r in rows)
        return {
            "period": f"Last {days} days",
            "totalAlerts": len(rows),
            "acknowledgedAlerts": acknowledged,
            "unacknowledgedAlerts": len(rows) - acknowledged,
            "byType": [{"type": t, "count": c} for t, c in sorted(by_type.items())],
            "notifications": _sum_delivery(rows),
            "automation": _automation_counts(rows),
        }

    async def system_stats(self, monitored_events: int, days: int = 30) -> dict[str, Any]:
        rows = await self._rows_since(utcnow() - timedelta(days=days))
        acknowledged = sum(1 for r in rows if r.acknowledged)
        by_type = Counter(r.alert_type for r in rows)
        return {
            "period": f"Last {days} days",
            "monitoredEvents": monitored_events,
            "totalAlerts": len(rows),
            "byType": {level.value: by_type.get(level.value, 0) for level in AlertLevel},
            "acknowledgedAlerts": acknowledged,
            "unacknowledgedAlerts": len(rows) - acknowledged,
            "notifications": _sum_delivery(rows),
            "automation": _automation_counts(rows),
            "recentAlerts": [log_to_dict(r) for r in rows[:_RECENT_ALERTS_LIMIT]],
        }

    async def pending_approvals(self) -> list[dict[str, Any]]:
        """Every automation record still awaiting approval, newest alert first."""
        async with self._session_factory() as session:
            rows = (
                await session.scalars(
                    select(WeatherAlertLog).order_by(WeatherAlertLog.created_at.desc())
                )
            ).all()
            event_ids = {r.event_id for r in rows}
            titles: dict[str, str] = {}
            if event_ids:
                for ev in (await session.scalars(select(Event).where(Event.id.in_(event_ids)))).all():
                    titles[ev.id] = ev.title

        pending: list[dict[str, Any]] = []
        for row in rows:
            for index, raw in enumerate(row.automation_actions or []):
                record = AutomationActionRecord.from_dict(raw)
                if not record.is_pending:
                    continue
                pending.append(
                    {
                        "alertId": row.id,
                        "actionIndex": index,
                        "eventId": row.event_id,
                        "eventTitle": titles.get(row.event_id),
                        "alertType": row.alert_type,
                        "weatherCondition": row.weather_condition,
                        "action": record.action.value,
                        "createdAt": row.created_at.isoformat(),
                        "triggerSource": row.trigger_source,
                        "triggeredBy": row.triggered_by,
                    }
                )
        return pending


# ---------------------------------------------------------------------------
# Weather records
# ---------------------------------------------------------------------------


class WeatherRecordRepository:
    """Last-known weather per event."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(
        self,
        event_id: str,
        snapshot: WeatherSnapshot,
        forecast: list[ForecastDay],
        uv_index: float | None,
        notification: WeatherNotification,
    ) -> None:
        values = {
            "snapshot": snapshot.to_dict(),
            "forecast": [f.to_dict() for f in forecast],
            "uv_index": uv_index,
            "notification_type": notification.type.value,
            "notification_message": notification.message,
            "last_updated": utcnow(),
        }
        stmt = sqlite_insert(WeatherRecord).values(event_id=event_id, **values)
        stmt = stmt.on_conflict_do_update(index_elements=["event_id"], set_=values)
        try:
            async with self._session_factory() as session:
                await session.execute(stmt)
                await session.commit()
        except SQLAlchemyError as exc:
            msg = f"Failed to save weather record for event {event_id}"
            raise PersistenceError(msg) from exc

    async def get(self, event_id: str) -> dict[str, Any] | None:
        async with self._session_factory() as session:
            row = await session.get(WeatherRecord, event_id)
            if row is None:
                return None
            return {
                "eventId": row.event_id,
                "snapshot": row.snapshot,
                "forecast": row.forecast or [],
                "uvIndex": row.uv_index,
                "notificationType": row.notification_type,
                "notificationMessage": row.notification_message,
                "lastUpdated": row.last_updated.isoformat(),
            }


# ---------------------------------------------------------------------------
# Events and users (collaborators)
# ---------------------------------------------------------------------------


class EventRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get(self, event_id: str) -> EventInfo:
        async with self._session_factory() as session:
            row = await session.get(Event, event_id)
            if row is None:
                raise NotFoundError("Event", event_id=event_id)
            return event_info(row)

    async def upcoming(self, now: datetime, lookahead_days: int) -> list[EventInfo]:
        """Scheduled/ongoing events with coordinates starting within the lookahead window."""
        stmt = (
            select(Event)
            .where(
                Event.date >= now,
                Event.date <= now + timedelta(days=lookahead_days),
                Event.status.in_(_ACTIVE_EVENT_STATUSES),
                Event.latitude.is_not(None),
                Event.longitude.is_not(None),
            )
            .order_by(Event.date)
        )
        async with self._session_factory() as session:
            return [event_info(r) for r in (await session.scalars(stmt)).all()]


class UserRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def get_actor(self, user_id: str) -> Actor | None:
        async with self._session_factory() as session:
            row = await session.get(User, user_id)
            if row is None or not row.active:
                return None
            return Actor(
                id=row.id,
                role=row.role,
                name=row.name,
                assigned_events=tuple(row.assigned_events or ()),
            )


class SweepRunRepository:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    async def save(self, record: SweepRecord) -> None:
        """Persist a sweep record. Failures are logged, never raised."""
        try:
            async with self._session_factory() as session:
                session.add(
                    SweepRun(
                        id=record.id,
                        started_at=record.started_at,
                        completed_at=record.completed_at,
                        status=record.status.value,
                        events_considered=record.events_considered,
                        events_checked=record.events_checked,
                        events_skipped=record.events_skipped,
                        alerts_sent=record.alerts_sent,
                        errors={"messages": record.errors} if record.errors else None,
                        duration_ms=record.duration_ms,
                    )
                )
                await session.commit()
        except Exception:
            logger.exception("Failed to save sweep run record %s", record.id)
