"""Automation executor: weather-driven event state transitions.

Decides which actions an alert's severity triggers, applies the ones that do
not need approval, and executes queued actions when a super admin approves
them. Event writes always commit together with the action records on the
alert that caused them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING

from sqlalchemy.exc import SQLAlchemyError

from eventweather.core.errors import ConflictError, NotFoundError, PersistenceError
from eventweather.core.rules import AutomationSettings, CancelActionRule
from eventweather.core.types import (
    AlertLevel,
    AutomationAction,
    AutomationActionRecord,
    EventStatus,
    WeatherStatus,
    utcnow,
)
from eventweather.db.models import Event, WeatherAlertLog

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

logger = logging.getLogger(__name__)

WEATHER_STATUS_FOR: dict[AutomationAction, WeatherStatus] = {
    AutomationAction.MARK_ON_HOLD: WeatherStatus.ON_HOLD,
    AutomationAction.MARK_DELAYED: WeatherStatus.DELAYED,
    AutomationAction.MARK_CANCELLED: WeatherStatus.CANCELLED_WEATHER,
    AutomationAction.RESTRICT_ENTRY: WeatherStatus.ENTRY_RESTRICTED,
}


def decide(
    automation: AutomationSettings,
    severity: AlertLevel,
    global_require_approval: bool,
) -> list[AutomationActionRecord]:
    """Pure eligibility and approval decision for every configured action.

    An action is eligible when enabled and its threshold is met. It needs
    approval when the global flag is set, or, for ``markCancelled``, when its
    own ``requireManualApproval`` flag is set.
    """
    if not automation.enabled:
        return []

    records: list[AutomationActionRecord] = []
    for action in AutomationAction:
        rule = automation.actions.rule_for(action)
        if not rule.enabled or not rule.triggered_by(severity):
            continue
        requires_approval = global_require_approval or (
            isinstance(rule, CancelActionRule) and rule.require_manual_approval
        )
        records.append(AutomationActionRecord(action=action, requires_approval=requires_approval))
    return records


def apply_action(event: Event, action: AutomationAction) -> None:
    """Mutate the event row for one action (no save)."""
    event.weather_status = WEATHER_STATUS_FOR[action].value
    if action == AutomationAction.MARK_CANCELLED:
        event.status = EventStatus.CANCELLED.value


class AutomationExecutor:
    """Applies automation decisions to events and handles approvals."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory
        # Serializes approvals so a pending action executes exactly once
        self._approval_lock = asyncio.Lock()

    async def decide_and_execute(
        self,
        event_id: str,
        alert_id: str,
        automation: AutomationSettings,
        severity: AlertLevel,
        actor_id: str | None,
        global_require_approval: bool,
    ) -> list[AutomationActionRecord]:
        """Decide actions, execute the ones not requiring approval, record all on the alert.

        The immediate event mutations and the alert's action records land in
        one commit. If that commit fails, neither is written and the returned
        records stay ``executed=False``.

        Raises:
            NotFoundError: unknown alert or event.
        """
        records = decide(automation, severity, global_require_approval)
        if not records:
            return records
        immediate = [r for r in records if not r.requires_approval]

        executed_at = utcnow()
        for record in immediate:
            record.executed = True
            record.executed_at = executed_at
            record.executed_by = actor_id

        try:
            async with self._session_factory() as session:
                log = await session.get(WeatherAlertLog, alert_id)
                if log is None:
                    raise NotFoundError("Alert", alert_id=alert_id)
                if immediate:
                    event = await session.get(Event, event_id)
                    if event is None:
                        raise NotFoundError("Event", event_id=event_id)
                    for record in immediate:
                        apply_action(event, record.action)
                    event.updated_at = executed_at
                log.automation_actions = [r.to_dict() for r in records]
                await session.commit()
        except SQLAlchemyError:
            logger.exception("Automation save failed for event %s; actions not executed", event_id)
            for record in immediate:
                record.executed = False
                record.executed_at = None
                record.executed_by = None
            return records

        logger.info(
            "Automation for event %s: %d executed, %d pending approval (%s)",
            event_id,
            len(immediate),
            len(records) - len(immediate),
            ", ".join(r.action.value for r in records),
        )
        return records

    async def approve(self, alert_id: str, action_index: int, actor_id: str) -> AutomationActionRecord:
        """Approve and execute a pending action exactly once.

        The event mutation and the updated action record commit together.

        Raises:
            NotFoundError: unknown alert, action index or event.
            ConflictError: the action was already executed or never needed approval.
        """
        async with self._approval_lock, self._session_factory() as session:
            log = await session.get(WeatherAlertLog, alert_id)
            if log is None:
                raise NotFoundError("Alert", alert_id=alert_id)

            actions = list(log.automation_actions or [])
            if not 0 <= action_index < len(actions):
                raise NotFoundError("Automation action", alert_id=alert_id, action_index=action_index)

            record = AutomationActionRecord.from_dict(actions[action_index])
            if record.executed:
                msg = "Action has already been executed"
                raise ConflictError(msg, alert_id=alert_id, action_index=action_index)
            if not record.requires_approval:
                msg = "Action does not require approval"
                raise ConflictError(msg, alert_id=alert_id, action_index=action_index)

            event = await session.get(Event, log.event_id)
            if event is None:
                raise NotFoundError("Event", event_id=log.event_id)

            now = utcnow()
            apply_action(event, record.action)
            event.updated_at = now
            record.approved = True
            record.approved_by = actor_id
            record.approved_at = now
            record.executed = True
            record.executed_at = now
            record.executed_by = actor_id
            actions[action_index] = record.to_dict()
            log.automation_actions = actions

            try:
                await session.commit()
            except SQLAlchemyError as exc:
                msg = f"Failed to execute approved action {record.action.value}"
                raise PersistenceError(msg, alert_id=alert_id) from exc

        logger.info(
            "Action %s on alert %s approved and executed by %s",
            record.action.value,
            alert_id,
            actor_id,
        )
        return record
