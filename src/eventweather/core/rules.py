"""Typed per-event alert rules and the system-wide weather-alert settings.

These pydantic models are the validated shape of the ``weather_alert_configs``
and ``system_config`` rows. Field names are snake_case in Python and camelCase
on the wire (API bodies and stored JSON).
"""

from __future__ import annotations

import string
from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from pydantic.alias_generators import to_camel

from eventweather.core.types import AlertChannel, AlertLevel, AutomationAction, RecipientRole, RiskType

POLLING_INTERVAL_MIN = 5
POLLING_INTERVAL_MAX = 1440

# Closed set of placeholders an alert template may reference
TEMPLATE_PLACEHOLDERS = frozenset(
    {"eventName", "weatherCondition", "temperature", "windSpeed", "humidity", "rainfall"}
)

DEFAULT_ALERT_TEMPLATE = (
    "⚠️ Weather Alert for {eventName}: {weatherCondition}. "
    "Temperature: {temperature}°C, Wind: {windSpeed} km/h. "
    "Please take necessary precautions."
)


def clamp_polling_interval(value: int) -> int:
    """Clamp a polling interval (minutes) to the supported range."""
    return max(POLLING_INTERVAL_MIN, min(POLLING_INTERVAL_MAX, int(value)))


def template_placeholders(template: str) -> set[str]:
    """Return every ``{name}`` placeholder referenced by *template*."""
    names: set[str] = set()
    for _, field_name, _, _ in string.Formatter().parse(template):
        if field_name is not None:
            names.add(field_name)
    return names


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ---------------------------------------------------------------------------
# Thresholds and condition toggles
# ---------------------------------------------------------------------------


class TemperatureRange(_CamelModel):
    min: float = 0.0
    max: float = 40.0


class Thresholds(_CamelModel):
    """Numeric limits; exceeding any one trips the alert gate."""

    temperature: TemperatureRange = Field(default_factory=TemperatureRange)
    rainfall: float = 10.0
    wind_speed: float = 50.0
    humidity: float = 90.0


class AlertConditions(_CamelModel):
    """Condition keywords that trip the alert gate on their own."""

    thunderstorm: bool = True
    heavy_rain: bool = True
    snow: bool = True
    extreme_heat: bool = True
    fog: bool = False
    tornado: bool = True


# ---------------------------------------------------------------------------
# Notification channels x recipient roles
# ---------------------------------------------------------------------------


class RoleFlags(_CamelModel):
    super_admin: bool = False
    event_admin: bool = False
    staff: bool = False
    attendees: bool = False

    def allows(self, role: RecipientRole) -> bool:
        if role == RecipientRole.SUPER_ADMIN:
            return self.super_admin
        if role == RecipientRole.EVENT_ADMIN:
            return self.event_admin
        if role == RecipientRole.STAFF:
            return self.staff
        return self.attendees

    def union(self, other: RoleFlags) -> RoleFlags:
        return RoleFlags(
            super_admin=self.super_admin or other.super_admin,
            event_admin=self.event_admin or other.event_admin,
            staff=self.staff or other.staff,
            attendees=self.attendees or other.attendees,
        )


class ChannelSettings(_CamelModel):
    enabled: bool = False
    recipients: RoleFlags = Field(default_factory=RoleFlags)


def _email_defaults() -> ChannelSettings:
    return ChannelSettings(
        enabled=True,
        recipients=RoleFlags(super_admin=True, event_admin=True, staff=True),
    )


def _sms_defaults() -> ChannelSettings:
    return ChannelSettings(
        enabled=False,
        recipients=RoleFlags(super_admin=True, event_admin=True),
    )


class NotificationSettings(_CamelModel):
    email: ChannelSettings = Field(default_factory=_email_defaults)
    sms: ChannelSettings = Field(default_factory=_sms_defaults)
    whatsapp: ChannelSettings = Field(default_factory=ChannelSettings)

    def for_channel(self, channel: AlertChannel) -> ChannelSettings:
        return getattr(self, channel.value)  # type: ignore[no-any-return]

    def enabled_channels(self) -> list[AlertChannel]:
        return [c for c in AlertChannel if self.for_channel(c).enabled]

    def recipient_flags(self) -> RoleFlags:
        """Union of role flags across every enabled channel."""
        flags = RoleFlags()
        for channel in self.enabled_channels():
            flags = flags.union(self.for_channel(channel).recipients)
        return flags


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


class ActionRule(_CamelModel):
    enabled: bool = False
    threshold: Literal["warning", "caution"] = "warning"

    def triggered_by(self, severity: AlertLevel) -> bool:
        """``caution`` is the lower bar; ``warning`` alerts satisfy both."""
        if self.threshold == AlertLevel.WARNING.value:
            return severity == AlertLevel.WARNING
        return severity in (AlertLevel.CAUTION, AlertLevel.WARNING)


class CancelActionRule(ActionRule):
    threshold: Literal["warning"] = "warning"
    require_manual_approval: bool = True


class AutomationActions(_CamelModel):
    mark_on_hold: ActionRule = Field(default_factory=ActionRule)
    mark_delayed: ActionRule = Field(default_factory=ActionRule)
    mark_cancelled: CancelActionRule = Field(default_factory=CancelActionRule)
    restrict_entry: ActionRule = Field(default_factory=ActionRule)

    def rule_for(self, action: AutomationAction) -> ActionRule:
        return {
            AutomationAction.MARK_ON_HOLD: self.mark_on_hold,
            AutomationAction.MARK_DELAYED: self.mark_delayed,
            AutomationAction.MARK_CANCELLED: self.mark_cancelled,
            AutomationAction.RESTRICT_ENTRY: self.restrict_entry,
        }[action]


class AutomationSettings(_CamelModel):
    enabled: bool = False
    actions: AutomationActions = Field(default_factory=AutomationActions)


# ---------------------------------------------------------------------------
# Per-event config document
# ---------------------------------------------------------------------------


class SentAlert(_CamelModel):
    """Cooldown bookkeeping: when a risk type was last alerted."""

    alert_type: RiskType
    sent_at: datetime
    weather_condition: str = ""


class AlertConfigDocument(_CamelModel):
    """One event's weather-alert configuration."""

    event_id: str
    enabled: bool = True
    thresholds: Thresholds = Field(default_factory=Thresholds)
    alert_conditions: AlertConditions = Field(default_factory=AlertConditions)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    alert_template: str = DEFAULT_ALERT_TEMPLATE
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    notification_timing: Literal[6, 12, 24] = 24
    polling_interval: int | None = None
    alerts_sent: list[SentAlert] = Field(default_factory=list)
    last_checked: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    is_new: bool = Field(default=False, exclude=True)

    @field_validator("polling_interval")
    @classmethod
    def clamp_interval(cls, v: int | None) -> int | None:
        if v is None:
            return None
        return clamp_polling_interval(v)

    @field_validator("alert_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        try:
            unknown = template_placeholders(v) - TEMPLATE_PLACEHOLDERS
        except ValueError as exc:
            msg = f"Malformed alert template: {exc}"
            raise ValueError(msg) from exc
        if unknown:
            msg = f"Unknown template placeholders: {sorted(unknown)}"
            raise ValueError(msg)
        return v

    @classmethod
    def default_for(cls, event_id: str) -> AlertConfigDocument:
        """Unpersisted default returned when an event has no config yet."""
        return cls(event_id=event_id, enabled=False, is_new=True)

    def effective_polling_interval(self, system_default: int) -> int:
        if self.polling_interval is not None:
            return self.polling_interval
        return clamp_polling_interval(system_default)


# Fields a client patch may never overwrite
PROTECTED_CONFIG_FIELDS = frozenset(
    {
        "eventId",
        "event_id",
        "alertsSent",
        "alerts_sent",
        "lastChecked",
        "last_checked",
        "createdBy",
        "created_by",
        "createdAt",
        "created_at",
        "updatedAt",
        "updated_at",
        "updatedBy",
        "updated_by",
    }
)


def validation_details(exc: ValidationError) -> list[dict[str, Any]]:
    """JSON-safe summary of a pydantic validation failure."""
    return [
        {"loc": ".".join(str(p) for p in err["loc"]), "msg": err["msg"]}
        for err in exc.errors()
    ]


def deep_merge(base: dict[str, Any], patch: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge *patch* onto *base*. Returns a new dict."""
    merged = dict(base)
    for key, value in patch.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def camel_keys(data: Any) -> Any:
    """Normalize snake_case keys to camelCase so patches merge onto stored JSON."""
    if isinstance(data, dict):
        return {to_camel(k) if "_" in k else k: camel_keys(v) for k, v in data.items()}
    return data


def apply_config_patch(
    current: AlertConfigDocument, patch: dict[str, Any]
) -> AlertConfigDocument:
    """Validate *patch* merged onto *current*. Raises ``pydantic.ValidationError``."""
    cleaned = {k: v for k, v in patch.items() if k not in PROTECTED_CONFIG_FIELDS}
    base = current.model_dump(by_alias=True, mode="json")
    merged = deep_merge(base, camel_keys(cleaned))
    return AlertConfigDocument.model_validate(merged)


# ---------------------------------------------------------------------------
# System-wide settings
# ---------------------------------------------------------------------------


class SystemWeatherConfig(_CamelModel):
    """The weather-alerts section of the ``system_config`` singleton."""

    enabled: bool = False
    auto_polling: bool = True
    polling_interval: int = 60
    allowed_roles: list[str] = Field(default_factory=lambda: ["super_admin"])
    require_approval: bool = True
    updated_at: datetime | None = None

    @field_validator("polling_interval")
    @classmethod
    def clamp_interval(cls, v: int) -> int:
        return clamp_polling_interval(v)
