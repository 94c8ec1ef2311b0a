"""Pipeline orchestrator for the weather-alert evaluation cycle.

Runs one evaluation per event: fetch -> detect -> build -> gate -> resolve ->
dispatch -> automate -> log. ``run_sweep`` drives it for every due event and is
fault-tolerant per event: a failure is logged and recorded, and the sweep moves
on to the next event.

This is the ONLY module that imports from all layers (ingestion, processing,
alerts, automation, db). All other modules import from core/ only.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
import traceback
import uuid
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any

from eventweather.alerts.recipients import RecipientResolver
from eventweather.alerts.templates import build_outbound_message
from eventweather.automation.executor import AutomationExecutor
from eventweather.core.errors import ConfigurationError
from eventweather.core.rules import AlertConfigDocument
from eventweather.core.types import (
    EvaluationResult,
    EventInfo,
    ForecastDay,
    RiskType,
    SweepRecord,
    SweepStatus,
    TriggerSource,
    Units,
    WeatherSnapshot,
    utcnow,
)
from eventweather.db.store import (
    AlertConfigStore,
    AlertLogRepository,
    EventRepository,
    SweepRunRepository,
    SystemConfigService,
    WeatherRecordRepository,
)
from eventweather.processing.notification import CALM_MESSAGE, build_notification
from eventweather.processing.risk import detect_risks
from eventweather.processing.thresholds import check_alert_thresholds, in_notification_window

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from eventweather.alerts.dispatcher import NotificationDispatcher
    from eventweather.config import YAMLConfig
    from eventweather.ingestion.weather import WeatherClient

logger = logging.getLogger(__name__)

SKIP_THRESHOLDS = "thresholds not exceeded"
SKIP_WINDOW = "outside notification window"
SKIP_COOLDOWN = "all detected risks alerted recently"


def _coordinates(event: EventInfo) -> tuple[float, float]:
    if not event.has_coordinates:
        msg = "Event location coordinates not available"
        raise ConfigurationError(msg, event_id=event.id)
    return event.latitude, event.longitude  # type: ignore[return-value]


def risks_in_cooldown(
    config: AlertConfigDocument,
    risk_types: list[RiskType],
    now: datetime,
    cooldown_hours: int,
) -> set[RiskType]:
    """Risk types already alerted within the cooldown window."""
    cutoff = now - timedelta(hours=cooldown_hours)
    recent = {s.alert_type for s in config.alerts_sent if s.sent_at > cutoff}
    return {t for t in risk_types if t in recent}


class WeatherAlertPipeline:
    """Per-event evaluation and scheduled sweep orchestrator.

    Collaborators are injected for testability; repositories are built from
    the session factory.
    """

    def __init__(
        self,
        weather_client: WeatherClient,
        dispatcher: NotificationDispatcher,
        session_factory: async_sessionmaker[AsyncSession],
        yaml_config: YAMLConfig,
        resolver: RecipientResolver | None = None,
        executor: AutomationExecutor | None = None,
    ) -> None:
        self._weather = weather_client
        self._dispatcher = dispatcher
        self._yaml_config = yaml_config
        self._resolver = resolver or RecipientResolver(session_factory)
        self._executor = executor or AutomationExecutor(session_factory)
        self._configs = AlertConfigStore(session_factory)
        self._system = SystemConfigService(session_factory)
        self._logs = AlertLogRepository(session_factory)
        self._records = WeatherRecordRepository(session_factory)
        self._events = EventRepository(session_factory)
        self._sweeps = SweepRunRepository(session_factory)
        self._units = Units(yaml_config.weather.units)

    # ------------------------------------------------------------------
    # Single event
    # ------------------------------------------------------------------

    async def evaluate_event(
        self,
        event_id: str,
        trigger: TriggerSource = TriggerSource.MANUAL,
        actor_id: str | None = None,
        force_notify: bool = False,
    ) -> EvaluationResult:
        """Evaluate one event now (manual trigger path).

        Manual triggers are not gated by ``last_checked``, the notification
        window or the risk cooldown. ``force_notify`` also bypasses the
        threshold gate.

        Raises:
            NotFoundError: the event does not exist.
            ConfigurationError: no coordinates, or alerts not configured/enabled.
            WeatherFetchError: current weather or forecast unavailable.
        """
        event = await self._events.get(event_id)
        _coordinates(event)

        config = await self._configs.get_existing(event_id)
        if config is None or not config.enabled:
            msg = "Weather alerts not configured or disabled for this event"
            raise ConfigurationError(msg, event_id=event_id)

        return await self._evaluate(event, config, trigger, actor_id, force_notify)

    async def _evaluate(
        self,
        event: EventInfo,
        config: AlertConfigDocument,
        trigger: TriggerSource,
        actor_id: str | None,
        force_notify: bool,
    ) -> EvaluationResult:
        snapshot, forecast, uv_index = await self._fetch_weather(event)
        assessment = detect_risks(snapshot)
        notification = build_notification(snapshot, assessment)
        await self._records.save(event.id, snapshot, forecast, uv_index, notification)

        result = EvaluationResult(
            event_id=event.id,
            alert_triggered=False,
            snapshot=snapshot,
            notification=notification,
        )

        if not force_notify and not check_alert_thresholds(snapshot, config):
            logger.info("Event %s: weather OK (%s)", event.id, assessment.summary)
            result.skipped_reason = SKIP_THRESHOLDS
            return result

        now = utcnow()
        risk_types = [r.type for r in assessment.risks]
        if trigger == TriggerSource.AUTO:
            if not in_notification_window(now, event.date, config.notification_timing):
                logger.info(
                    "Event %s: not yet time to send (%dh before start)",
                    event.id,
                    config.notification_timing,
                )
                result.skipped_reason = SKIP_WINDOW
                return result

            cooling = risks_in_cooldown(
                config, risk_types, now, self._yaml_config.alerts.risk_cooldown_hours
            )
            if risk_types and cooling == set(risk_types):
                logger.info("Event %s: %s", event.id, SKIP_COOLDOWN)
                result.skipped_reason = SKIP_COOLDOWN
                return result
            risk_types = [t for t in risk_types if t not in cooling]

        recipients = await self._resolver.resolve(event, config.notifications.recipient_flags())
        message = build_outbound_message(event, notification, snapshot, config.alert_template)
        delivery = await self._dispatcher.dispatch(recipients, message, config.notifications)

        # Written before automation; executed actions are recorded on this row
        alert_log_id = await self._logs.create(
            event_id=event.id,
            notification=notification,
            snapshot=snapshot,
            message=notification.message,
            delivery=delivery,
            actions=[],
            trigger_source=trigger,
            triggered_by=actor_id,
        )

        actions = []
        if config.automation.enabled:
            system = await self._system.get()
            actions = await self._executor.decide_and_execute(
                event.id,
                alert_log_id,
                config.automation,
                notification.type,
                actor_id,
                system.require_approval,
            )

        if risk_types:
            await self._configs.record_sent_risks(
                event.id,
                risk_types,
                snapshot.condition,
                now,
                history_limit=self._yaml_config.alerts.alerts_sent_history,
            )

        logger.info(
            "Weather alert sent for event %s: type=%s sent=%d failed=%d actions=%d",
            event.id,
            notification.type.value,
            delivery.total_sent,
            delivery.total_failed,
            len(actions),
        )

        result.alert_triggered = True
        result.delivery = delivery
        result.actions = actions
        result.alert_log_id = alert_log_id
        return result

    async def _fetch_weather(
        self, event: EventInfo
    ) -> tuple[WeatherSnapshot, list[ForecastDay], float | None]:
        """Current conditions (with UV attached), forecast and UV index."""
        latitude, longitude = _coordinates(event)
        current, forecast, uv_index = await asyncio.gather(
            self._weather.fetch_current(latitude, longitude, self._units),
            self._weather.fetch_forecast(latitude, longitude, self._units),
            self._weather.fetch_uv_index(latitude, longitude),
        )
        return dataclasses.replace(current, uv_index=uv_index), forecast, uv_index

    # ------------------------------------------------------------------
    # Public weather view
    # ------------------------------------------------------------------

    async def current_weather(self, event_id: str) -> dict[str, Any]:
        """Fetch, store and return the event's current weather bundle.

        Raises:
            NotFoundError: the event does not exist.
            ConfigurationError: the event has no coordinates.
            WeatherFetchError: current weather or forecast unavailable.
        """
        event = await self._events.get(event_id)
        snapshot, forecast, uv_index = await self._fetch_weather(event)
        notification = build_notification(snapshot)
        await self._records.save(event.id, snapshot, forecast, uv_index, notification)
        return {
            "eventId": event.id,
            "current": snapshot.to_dict(),
            "forecast": [f.to_dict() for f in forecast],
            "uvIndex": uv_index,
            "notification": notification.to_dict(),
        }

    async def stored_alerts(self, event_id: str) -> dict[str, Any]:
        """The last generated notification for an event, without fetching."""
        record = await self._records.get(event_id)
        if record is None:
            return {"hasAlert": False, "notifications": [], "message": "No weather data available"}
        snapshot = record["snapshot"]
        return {
            "hasAlert": record["notificationMessage"] != CALM_MESSAGE,
            "notificationType": record["notificationType"],
            "message": record["notificationMessage"],
            "temperature": snapshot.get("temperature"),
            "condition": snapshot.get("weatherCondition"),
            "humidity": snapshot.get("humidity"),
            "windSpeed": snapshot.get("windSpeed"),
            "rainfall": snapshot.get("rainfall"),
            "lastUpdated": record["lastUpdated"],
        }

    # ------------------------------------------------------------------
    # Scheduled sweep
    # ------------------------------------------------------------------

    async def run_sweep(self) -> SweepRecord:
        """Evaluate every due event once. Never raises.

        Returns:
            SweepRecord with timing, counts, and error details.
        """
        start_mono = time.monotonic()
        record = SweepRecord(id=str(uuid.uuid4()), started_at=utcnow())

        try:
            system = await self._system.get()
        except Exception:
            error_msg = f"Sweep failed to load system config: {traceback.format_exc()}"
            logger.error(error_msg)
            record.errors.append(error_msg)
            record.status = SweepStatus.FAILED
            return await self._finish(record, start_mono)

        if not system.enabled or not system.auto_polling:
            logger.info(
                "Weather sweep: %s",
                "feature disabled by Super Admin" if not system.enabled else "auto-polling disabled",
            )
            record.status = SweepStatus.DISABLED
            return await self._finish(record, start_mono)

        try:
            events = await self._events.upcoming(utcnow(), self._yaml_config.scheduler.lookahead_days)
        except Exception:
            error_msg = f"Sweep failed to list upcoming events: {traceback.format_exc()}"
            logger.error(error_msg)
            record.errors.append(error_msg)
            record.status = SweepStatus.FAILED
            return await self._finish(record, start_mono)

        record.events_considered = len(events)
        failures = 0

        for event in events:
            try:
                config = await self._configs.get_existing(event.id)
                if config is None or not config.enabled:
                    logger.info("Weather sweep: skipping event %s, alerts disabled", event.id)
                    record.events_skipped += 1
                    continue

                interval = config.effective_polling_interval(system.polling_interval)
                if not await self._configs.claim_poll(event.id, utcnow(), interval):
                    logger.info(
                        "Weather sweep: skipping event %s, checked within the last %d min",
                        event.id,
                        interval,
                    )
                    record.events_skipped += 1
                    continue

                record.events_checked += 1
                result = await self._evaluate(event, config, TriggerSource.AUTO, None, False)
                if result.alert_triggered:
                    record.alerts_sent += 1
            except Exception as exc:
                failures += 1
                logger.exception("Weather sweep: error processing event %s", event.id)
                record.errors.append(f"{event.id}: {type(exc).__name__}: {exc}")

        attempted = record.events_considered - record.events_skipped
        if failures and failures == attempted:
            record.status = SweepStatus.FAILED
        elif failures:
            record.status = SweepStatus.PARTIAL
        else:
            record.status = SweepStatus.SUCCESS

        return await self._finish(record, start_mono)

    async def _finish(self, record: SweepRecord, start_mono: float) -> SweepRecord:
        record.completed_at = utcnow()
        record.duration_ms = int((time.monotonic() - start_mono) * 1000)
        await self._sweeps.save(record)
        logger.info(
            "Weather sweep %s completed: status=%s duration=%dms "
            "considered=%d checked=%d skipped=%d alerts=%d errors=%d",
            record.id,
            record.status.value,
            record.duration_ms,
            record.events_considered,
            record.events_checked,
            record.events_skipped,
            record.alerts_sent,
            len(record.errors),
        )
        return record
