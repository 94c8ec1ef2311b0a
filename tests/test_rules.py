"""Tests for the typed alert-config rules and patch merging."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from eventweather.core.rules import (
    DEFAULT_ALERT_TEMPLATE,
    ActionRule,
    AlertConfigDocument,
    NotificationSettings,
    SystemWeatherConfig,
    apply_config_patch,
    camel_keys,
    clamp_polling_interval,
    deep_merge,
    template_placeholders,
)
from eventweather.core.types import AlertChannel, AlertLevel, RecipientRole


def test_default_document_shape() -> None:
    doc = AlertConfigDocument.default_for("ev-1")

    assert doc.is_new
    assert not doc.enabled
    assert doc.thresholds.temperature.min == 0
    assert doc.thresholds.temperature.max == 40
    assert doc.thresholds.rainfall == 10
    assert doc.thresholds.wind_speed == 50
    assert doc.thresholds.humidity == 90
    assert doc.alert_conditions.fog is False
    assert doc.notification_timing == 24
    assert doc.alert_template == DEFAULT_ALERT_TEMPLATE
    assert doc.notifications.enabled_channels() == [AlertChannel.EMAIL]
    assert not doc.automation.enabled
    assert doc.automation.actions.mark_cancelled.require_manual_approval


def test_wire_form_is_camel_case() -> None:
    dumped = AlertConfigDocument(event_id="ev-1").model_dump(by_alias=True, mode="json")

    assert dumped["eventId"] == "ev-1"
    assert "alertConditions" in dumped
    assert dumped["thresholds"]["windSpeed"] == 50
    assert dumped["automation"]["actions"]["markCancelled"]["requireManualApproval"] is True
    assert "isNew" not in dumped


@pytest.mark.parametrize(("raw", "expected"), [(1, 5), (5, 5), (90, 90), (5000, 1440)])
def test_polling_interval_clamped(raw: int, expected: int) -> None:
    assert clamp_polling_interval(raw) == expected
    assert AlertConfigDocument(event_id="e", polling_interval=raw).polling_interval == expected
    assert SystemWeatherConfig(polling_interval=raw).polling_interval == expected


def test_effective_polling_interval_falls_back_to_system() -> None:
    doc = AlertConfigDocument(event_id="e")
    assert doc.effective_polling_interval(60) == 60
    assert doc.model_copy(update={"polling_interval": 15}).effective_polling_interval(60) == 15


def test_notification_timing_restricted() -> None:
    with pytest.raises(ValidationError):
        AlertConfigDocument(event_id="e", notification_timing=3)


def test_template_with_unknown_placeholder_rejected() -> None:
    with pytest.raises(ValidationError, match="Unknown template placeholders"):
        AlertConfigDocument(event_id="e", alert_template="Hi {eventName} at {venue}")


def test_template_placeholders_parsed() -> None:
    assert template_placeholders("{eventName}: {windSpeed} km/h") == {"eventName", "windSpeed"}
    assert template_placeholders("no fields") == set()


def test_action_rule_thresholds() -> None:
    warning_only = ActionRule(enabled=True, threshold="warning")
    caution_or_worse = ActionRule(enabled=True, threshold="caution")

    assert warning_only.triggered_by(AlertLevel.WARNING)
    assert not warning_only.triggered_by(AlertLevel.CAUTION)
    assert caution_or_worse.triggered_by(AlertLevel.CAUTION)
    assert caution_or_worse.triggered_by(AlertLevel.WARNING)
    assert not caution_or_worse.triggered_by(AlertLevel.INFO)


def test_recipient_flags_union_enabled_channels_only() -> None:
    settings = NotificationSettings.model_validate(
        {
            "email": {"enabled": True, "recipients": {"staff": True}},
            "sms": {"enabled": False, "recipients": {"superAdmin": True}},
            "whatsapp": {"enabled": True, "recipients": {"attendees": True}},
        }
    )
    flags = settings.recipient_flags()

    assert flags.allows(RecipientRole.STAFF)
    assert flags.allows(RecipientRole.ATTENDEE)
    assert not flags.allows(RecipientRole.SUPER_ADMIN)


def test_deep_merge_keeps_untouched_siblings() -> None:
    base = {"thresholds": {"rainfall": 10, "windSpeed": 50}, "enabled": True}
    merged = deep_merge(base, {"thresholds": {"rainfall": 4}})

    assert merged == {"thresholds": {"rainfall": 4, "windSpeed": 50}, "enabled": True}
    assert base["thresholds"]["rainfall"] == 10


def test_camel_keys_normalizes_nested() -> None:
    assert camel_keys({"wind_speed": 1, "alert_conditions": {"heavy_rain": False}}) == {
        "windSpeed": 1,
        "alertConditions": {"heavyRain": False},
    }


def test_patch_merges_partial_nested_fields() -> None:
    current = AlertConfigDocument(event_id="ev-1")
    patched = apply_config_patch(
        current,
        {"thresholds": {"windSpeed": 30}, "alert_conditions": {"fog": True}},
    )

    assert patched.thresholds.wind_speed == 30
    assert patched.thresholds.rainfall == 10
    assert patched.alert_conditions.fog is True
    assert patched.alert_conditions.thunderstorm is True


def test_patch_cannot_touch_protected_fields() -> None:
    current = AlertConfigDocument(event_id="ev-1")
    patched = apply_config_patch(current, {"eventId": "ev-2", "alertsSent": [{"bogus": 1}]})

    assert patched.event_id == "ev-1"
    assert patched.alerts_sent == []


def test_patch_rejects_invalid_values() -> None:
    with pytest.raises(ValidationError):
        apply_config_patch(AlertConfigDocument(event_id="e"), {"notificationTiming": 48})
