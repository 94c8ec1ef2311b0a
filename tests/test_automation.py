"""Tests for automation decisions, execution and approvals."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING
from unittest.mock import patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventweather.automation.executor import AutomationExecutor, decide
from eventweather.core.errors import ConflictError, NotFoundError
from eventweather.core.rules import AutomationSettings
from eventweather.core.types import (
    AlertLevel,
    AutomationAction,
    DeliveryLog,
    TriggerSource,
    WeatherNotification,
    WeatherSnapshot,
)
from eventweather.db.store import AlertLogRepository

if TYPE_CHECKING:
    from conftest import Seeder

SessionFactory = async_sessionmaker[AsyncSession]


def _automation(**actions: dict) -> AutomationSettings:
    return AutomationSettings.model_validate({"enabled": True, "actions": actions})


# ---------------------------------------------------------------------------
# decide (pure)
# ---------------------------------------------------------------------------


def test_disabled_automation_decides_nothing() -> None:
    settings = AutomationSettings.model_validate(
        {"enabled": False, "actions": {"markOnHold": {"enabled": True}}}
    )
    assert decide(settings, AlertLevel.WARNING, False) == []


def test_threshold_filters_by_severity() -> None:
    settings = _automation(
        markOnHold={"enabled": True, "threshold": "caution"},
        markDelayed={"enabled": True, "threshold": "warning"},
    )

    caution = decide(settings, AlertLevel.CAUTION, False)
    warning = decide(settings, AlertLevel.WARNING, False)

    assert [r.action for r in caution] == [AutomationAction.MARK_ON_HOLD]
    assert [r.action for r in warning] == [AutomationAction.MARK_ON_HOLD, AutomationAction.MARK_DELAYED]
    assert decide(settings, AlertLevel.INFO, False) == []


def test_global_approval_gates_cancel_even_without_own_flag() -> None:
    settings = _automation(markCancelled={"enabled": True, "requireManualApproval": False})

    records = decide(settings, AlertLevel.WARNING, global_require_approval=True)

    assert len(records) == 1
    assert records[0].requires_approval
    assert not records[0].executed


def test_cancel_own_flag_gates_without_global() -> None:
    settings = _automation(
        markCancelled={"enabled": True, "requireManualApproval": True},
        restrictEntry={"enabled": True},
    )

    records = {r.action: r for r in decide(settings, AlertLevel.WARNING, False)}

    assert records[AutomationAction.MARK_CANCELLED].requires_approval
    assert not records[AutomationAction.RESTRICT_ENTRY].requires_approval


def test_global_flag_gates_non_cancel_actions() -> None:
    settings = _automation(markOnHold={"enabled": True})
    assert decide(settings, AlertLevel.WARNING, True)[0].requires_approval


# ---------------------------------------------------------------------------
# AutomationExecutor
# ---------------------------------------------------------------------------


async def _alert(session_factory: SessionFactory, event_id: str, snapshot: WeatherSnapshot) -> str:
    notification = WeatherNotification(has_alert=True, notifications=[], type=AlertLevel.WARNING, message="m")
    return await AlertLogRepository(session_factory).create(
        event_id=event_id,
        notification=notification,
        snapshot=snapshot,
        message="m",
        delivery=DeliveryLog(),
        actions=[],
        trigger_source=TriggerSource.AUTO,
    )


async def test_immediate_actions_applied_in_one_save(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)
    settings = _automation(markDelayed={"enabled": True}, markCancelled={"enabled": True})

    records = await executor.decide_and_execute(
        event_id, alert_id, settings, AlertLevel.WARNING, "admin-1", False
    )

    by_action = {r.action: r for r in records}
    assert by_action[AutomationAction.MARK_DELAYED].executed
    assert by_action[AutomationAction.MARK_DELAYED].executed_by == "admin-1"
    assert by_action[AutomationAction.MARK_CANCELLED].requires_approval
    assert not by_action[AutomationAction.MARK_CANCELLED].executed

    event = await seed.get_event(event_id)
    assert event.weather_status == "delayed"
    assert event.status == "scheduled"


async def test_actions_recorded_on_alert(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    await executor.decide_and_execute(
        event_id, alert_id, _automation(markOnHold={"enabled": True}), AlertLevel.WARNING, "admin-1", False
    )

    stored = await AlertLogRepository(session_factory).get(alert_id)
    assert [a["action"] for a in stored["automationActions"]] == ["markOnHold"]
    assert stored["automationActions"][0]["executed"] is True


async def test_pending_actions_never_mutate_event(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    records = await executor.decide_and_execute(
        event_id, alert_id, _automation(markOnHold={"enabled": True}), AlertLevel.WARNING, None, True
    )

    assert records[0].is_pending
    event = await seed.get_event(event_id)
    assert event.weather_status is None
    stored = await AlertLogRepository(session_factory).get(alert_id)
    assert stored["automationActions"][0]["requiresApproval"] is True


async def test_failed_save_leaves_event_and_alert_untouched(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    with patch.object(AsyncSession, "commit", side_effect=OperationalError("UPDATE", {}, Exception("locked"))):
        records = await executor.decide_and_execute(
            event_id, alert_id, _automation(markOnHold={"enabled": True}), AlertLevel.WARNING, None, False
        )

    assert len(records) == 1
    assert not records[0].executed
    assert records[0].executed_at is None
    event = await seed.get_event(event_id)
    assert event.weather_status is None
    stored = await AlertLogRepository(session_factory).get(alert_id)
    assert stored["automationActions"] == []


async def test_unknown_alert_rejected(session_factory: SessionFactory, seed: Seeder) -> None:
    event_id = await seed.event()
    executor = AutomationExecutor(session_factory)

    with pytest.raises(NotFoundError):
        await executor.decide_and_execute(
            event_id, "missing", _automation(markOnHold={"enabled": True}), AlertLevel.WARNING, None, False
        )
    event = await seed.get_event(event_id)
    assert event.weather_status is None


async def _pending_alert(session_factory: SessionFactory, event_id: str, snapshot: WeatherSnapshot) -> str:
    alert_id = await _alert(session_factory, event_id, snapshot)
    await AutomationExecutor(session_factory).decide_and_execute(
        event_id,
        alert_id,
        _automation(markCancelled={"enabled": True}, markOnHold={"enabled": True}),
        AlertLevel.WARNING,
        None,
        False,
    )
    return alert_id


async def test_approve_executes_cancel(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _pending_alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    # Index 0 is markOnHold (executed immediately), index 1 is markCancelled
    record = await executor.approve(alert_id, 1, "sa-1")

    assert record.action == AutomationAction.MARK_CANCELLED
    assert record.approved
    assert record.executed
    assert record.approved_by == "sa-1"
    event = await seed.get_event(event_id)
    assert event.status == "cancelled"
    assert event.weather_status == "cancelled_weather"

    stored = await AlertLogRepository(session_factory).get(alert_id)
    assert stored["automationActions"][1]["executed"] is True
    assert await AlertLogRepository(session_factory).pending_approvals() == []


async def test_approve_is_exactly_once(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _pending_alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    results = await asyncio.gather(
        executor.approve(alert_id, 1, "sa-1"),
        executor.approve(alert_id, 1, "sa-2"),
        return_exceptions=True,
    )

    conflicts = [r for r in results if isinstance(r, ConflictError)]
    assert len(conflicts) == 1


async def test_approve_rejects_bad_targets(
    session_factory: SessionFactory, seed: Seeder, calm_snapshot: WeatherSnapshot
) -> None:
    event_id = await seed.event()
    alert_id = await _pending_alert(session_factory, event_id, calm_snapshot)
    executor = AutomationExecutor(session_factory)

    with pytest.raises(NotFoundError):
        await executor.approve("missing", 0, "sa")
    with pytest.raises(NotFoundError):
        await executor.approve(alert_id, 7, "sa")
    with pytest.raises(ConflictError, match="already been executed"):
        await executor.approve(alert_id, 0, "sa")
