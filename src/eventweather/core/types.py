"""Shared dataclass contracts between all EventWeather modules.

These types define the boundaries between pipeline stages. All modules import
from here -- no module imports from a peer.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, date, datetime
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the form stored in SQLite)."""
    return datetime.now(tz=UTC).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Units(str, Enum):
    """Unit system requested from the weather provider."""

    METRIC = "metric"
    IMPERIAL = "imperial"


class AlertLevel(str, Enum):
    """Overall severity of a weather notification, lowest to highest."""

    INFO = "info"
    CAUTION = "caution"
    WARNING = "warning"

    @property
    def rank(self) -> int:
        return _LEVEL_RANK[self]

    def escalate(self, other: AlertLevel) -> AlertLevel:
        """Return the higher of two levels. Never downgrades."""
        return other if other.rank > self.rank else self


_LEVEL_RANK: dict[AlertLevel, int] = {
    AlertLevel.INFO: 0,
    AlertLevel.CAUTION: 1,
    AlertLevel.WARNING: 2,
}


class RiskType(str, Enum):
    """Typed weather risk categories."""

    HEATWAVE = "HEATWAVE"
    HEAVY_RAIN = "HEAVY_RAIN"
    THUNDERSTORM = "THUNDERSTORM"
    STRONG_WIND = "STRONG_WIND"
    CYCLONE = "CYCLONE"


class AlertChannel(str, Enum):
    """Supported alert delivery channels."""

    EMAIL = "email"
    SMS = "sms"
    WHATSAPP = "whatsapp"


class RecipientRole(str, Enum):
    """Role tag recorded for a resolved recipient."""

    SUPER_ADMIN = "super_admin"
    EVENT_ADMIN = "event_admin"
    STAFF = "staff"
    ATTENDEE = "attendee"


class DeliveryStatus(str, Enum):
    """Per-recipient delivery outcome."""

    SENT = "sent"
    FAILED = "failed"


class AutomationAction(str, Enum):
    """Event-state transitions the automation executor can apply."""

    MARK_ON_HOLD = "markOnHold"
    MARK_DELAYED = "markDelayed"
    MARK_CANCELLED = "markCancelled"
    RESTRICT_ENTRY = "restrictEntry"


class TriggerSource(str, Enum):
    """What started an evaluation cycle."""

    AUTO = "auto"
    MANUAL = "manual"


class EventStatus(str, Enum):
    """Primary lifecycle status of an event."""

    SCHEDULED = "scheduled"
    ONGOING = "ongoing"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class WeatherStatus(str, Enum):
    """Weather-driven status written by automation actions."""

    ON_HOLD = "on_hold"
    DELAYED = "delayed"
    CANCELLED_WEATHER = "cancelled_weather"
    ENTRY_RESTRICTED = "entry_restricted"


class SweepStatus(str, Enum):
    """Scheduler sweep completion status."""

    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"
    DISABLED = "disabled"


# ---------------------------------------------------------------------------
# Weather data (frozen -- superseded by the next fetch, never mutated)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class WeatherSnapshot:
    """Current conditions at an event location.

    Wind speed is km/h for metric and mph for imperial. Rainfall is mm over
    the last hour regardless of unit system.
    """

    location: str
    latitude: float
    longitude: float
    temperature: float
    feels_like: float
    humidity: float
    wind_speed: float
    condition: str
    description: str
    visibility: float | None
    rainfall: float
    pressure: float | None
    units: Units = Units.METRIC
    uv_index: float | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "location": self.location,
            "latitude": self.latitude,
            "longitude": self.longitude,
            "temperature": self.temperature,
            "feelsLike": self.feels_like,
            "humidity": self.humidity,
            "windSpeed": self.wind_speed,
            "weatherCondition": self.condition,
            "weatherDescription": self.description,
            "visibility": self.visibility,
            "rainfall": self.rainfall,
            "pressure": self.pressure,
            "units": self.units.value,
            "uvIndex": self.uv_index,
        }


@dataclass(frozen=True)
class ForecastDay:
    """One ~24h forecast entry."""

    date: datetime
    temperature: float
    condition: str
    description: str
    humidity: float
    wind_speed: float
    rainfall: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "date": self.date.isoformat(),
            "temperature": self.temperature,
            "condition": self.condition,
            "description": self.description,
            "humidity": self.humidity,
            "windSpeed": self.wind_speed,
            "rainfall": self.rainfall,
        }


# ---------------------------------------------------------------------------
# Rule evaluation results
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RiskFinding:
    """A single typed risk detected in a snapshot."""

    type: RiskType
    severity: AlertLevel
    detail: str


@dataclass
class RiskAssessment:
    """Output of the risk detector."""

    has_risk: bool
    risks: list[RiskFinding]
    summary: str


@dataclass
class WeatherNotification:
    """Human-readable alert bundle built from a snapshot."""

    has_alert: bool
    notifications: list[str]
    type: AlertLevel
    message: str
    risks: list[RiskFinding] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "hasAlert": self.has_alert,
            "notifications": list(self.notifications),
            "type": self.type.value,
            "message": self.message,
            "risks": [
                {"type": r.type.value, "severity": r.severity.value, "detail": r.detail}
                for r in self.risks
            ],
        }


# ---------------------------------------------------------------------------
# Collaborator views (read from the store, handed between stages)
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class EventInfo:
    """The subset of an event the pipeline reads."""

    id: str
    title: str
    date: datetime
    location: str
    latitude: float | None
    longitude: float | None
    status: str = EventStatus.SCHEDULED.value
    weather_status: str | None = None
    organizer_id: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return self.latitude is not None and self.longitude is not None


@dataclass(frozen=True)
class RecipientUser:
    """A concrete user resolved for notification, tagged with the role that matched."""

    user_id: str
    name: str
    email: str | None
    phone: str | None
    role: RecipientRole
    preferences: dict[str, bool] = field(default_factory=dict)

    def opted_out(self, channel: AlertChannel) -> bool:
        """True when the user explicitly disabled this channel."""
        return self.preferences.get(channel.value) is False

    def address_for(self, channel: AlertChannel) -> str | None:
        if channel == AlertChannel.EMAIL:
            return self.email
        return self.phone


@dataclass(frozen=True)
class Actor:
    """The authenticated user making an API call."""

    id: str
    role: str
    name: str = ""
    assigned_events: tuple[str, ...] = ()

    @property
    def is_super_admin(self) -> bool:
        return self.role == RecipientRole.SUPER_ADMIN.value


@dataclass(frozen=True)
class OutboundMessage:
    """A rendered alert ready for any channel."""

    subject: str
    text: str
    html: str


@dataclass(frozen=True)
class SendResult:
    """What a channel transport reports for one message."""

    success: bool
    sid: str | None = None
    error: str | None = None


# ---------------------------------------------------------------------------
# Delivery log (embedded into AlertLog rows)
# ---------------------------------------------------------------------------


@dataclass
class DeliveryOutcome:
    """Per-recipient delivery record."""

    address: str
    role: RecipientRole
    status: DeliveryStatus
    sent_at: datetime | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "address": self.address,
            "role": self.role.value,
            "status": self.status.value,
            "sentAt": self.sent_at.isoformat() if self.sent_at else None,
            "error": self.error,
        }


@dataclass
class ChannelDelivery:
    """Sent/failed tallies and outcomes for one channel."""

    sent: int = 0
    failed: int = 0
    recipients: list[DeliveryOutcome] = field(default_factory=list)

    def record(self, outcome: DeliveryOutcome) -> None:
        if outcome.status == DeliveryStatus.SENT:
            self.sent += 1
        else:
            self.failed += 1
        self.recipients.append(outcome)

    def to_dict(self) -> dict[str, Any]:
        return {
            "sent": self.sent,
            "failed": self.failed,
            "recipients": [r.to_dict() for r in self.recipients],
        }


@dataclass
class DeliveryLog:
    """Union of all three channels' tallies for one evaluation cycle."""

    email: ChannelDelivery = field(default_factory=ChannelDelivery)
    sms: ChannelDelivery = field(default_factory=ChannelDelivery)
    whatsapp: ChannelDelivery = field(default_factory=ChannelDelivery)

    def for_channel(self, channel: AlertChannel) -> ChannelDelivery:
        return getattr(self, channel.value)  # type: ignore[no-any-return]

    @property
    def total_sent(self) -> int:
        return self.email.sent + self.sms.sent + self.whatsapp.sent

    @property
    def total_failed(self) -> int:
        return self.email.failed + self.sms.failed + self.whatsapp.failed

    def to_dict(self) -> dict[str, Any]:
        return {
            "email": self.email.to_dict(),
            "sms": self.sms.to_dict(),
            "whatsapp": self.whatsapp.to_dict(),
        }


# ---------------------------------------------------------------------------
# Automation
# ---------------------------------------------------------------------------


@dataclass
class AutomationActionRecord:
    """One automation decision, embedded in an AlertLog."""

    action: AutomationAction
    requires_approval: bool = False
    executed: bool = False
    executed_at: datetime | None = None
    executed_by: str | None = None
    approved: bool | None = None
    approved_by: str | None = None
    approved_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.requires_approval and not self.approved and not self.executed

    def to_dict(self) -> dict[str, Any]:
        return {
            "action": self.action.value,
            "requiresApproval": self.requires_approval,
            "executed": self.executed,
            "executedAt": _iso(self.executed_at),
            "executedBy": self.executed_by,
            "approved": self.approved,
            "approvedBy": self.approved_by,
            "approvedAt": _iso(self.approved_at),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AutomationActionRecord:
        return cls(
            action=AutomationAction(data["action"]),
            requires_approval=bool(data.get("requiresApproval", False)),
            executed=bool(data.get("executed", False)),
            executed_at=_parse_iso(data.get("executedAt")),
            executed_by=data.get("executedBy"),
            approved=data.get("approved"),
            approved_by=data.get("approvedBy"),
            approved_at=_parse_iso(data.get("approvedAt")),
        )


# ---------------------------------------------------------------------------
# Pipeline results
# ---------------------------------------------------------------------------


@dataclass
class EvaluationResult:
    """Outcome of evaluating one event (manual trigger or sweep)."""

    event_id: str
    alert_triggered: bool
    snapshot: WeatherSnapshot | None = None
    notification: WeatherNotification | None = None
    delivery: DeliveryLog | None = None
    actions: list[AutomationActionRecord] = field(default_factory=list)
    alert_log_id: str | None = None
    skipped_reason: str | None = None


@dataclass
class SweepRecord:
    """Metrics for a single scheduler sweep."""

    id: str
    started_at: datetime
    completed_at: datetime | None = None
    status: SweepStatus = SweepStatus.SUCCESS
    events_considered: int = 0
    events_checked: int = 0
    events_skipped: int = 0
    alerts_sent: int = 0
    errors: list[str] = field(default_factory=list)
    duration_ms: int | None = None


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_iso(value: str | datetime | date | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    return datetime.fromisoformat(value)
