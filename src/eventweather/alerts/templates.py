"""Alert message formatting for email, SMS and WhatsApp.

Renders the per-event alert template over a closed set of named fields and
wraps the result into subject, plain-text and HTML bodies.

No external dependencies -- pure string formatting only.
Imports only from eventweather.core (never from ingestion/ or processing/).
"""

from __future__ import annotations

import html
import string
from dataclasses import dataclass

from eventweather.core.errors import ConfigurationError
from eventweather.core.rules import DEFAULT_ALERT_TEMPLATE, TEMPLATE_PLACEHOLDERS, template_placeholders
from eventweather.core.types import AlertLevel, EventInfo, OutboundMessage, WeatherNotification, WeatherSnapshot

_MISSING = "N/A"
_DEFAULT_CONDITION = "Severe Weather"

_LEVEL_ICONS: dict[AlertLevel, str] = {
    AlertLevel.INFO: "ℹ️",
    AlertLevel.CAUTION: "⚠️",
    AlertLevel.WARNING: "🚨",
}

_LEVEL_COLOURS: dict[AlertLevel, str] = {
    AlertLevel.INFO: "#2196F3",
    AlertLevel.CAUTION: "#FF9800",
    AlertLevel.WARNING: "#F44336",
}


@dataclass(frozen=True)
class AlertTemplateFields:
    """The only values an alert template can reference."""

    event_name: str
    weather_condition: str
    temperature: str
    wind_speed: str
    humidity: str
    rainfall: str

    @classmethod
    def from_snapshot(cls, event_name: str, snapshot: WeatherSnapshot | None) -> AlertTemplateFields:
        """Build fields, substituting ``N/A`` (``0`` for rainfall) for missing values."""
        if snapshot is None:
            return cls(
                event_name=event_name,
                weather_condition=_DEFAULT_CONDITION,
                temperature=_MISSING,
                wind_speed=_MISSING,
                humidity=_MISSING,
                rainfall="0",
            )
        return cls(
            event_name=event_name,
            weather_condition=snapshot.condition or _DEFAULT_CONDITION,
            temperature=_num(snapshot.temperature),
            wind_speed=_num(snapshot.wind_speed),
            humidity=_num(snapshot.humidity),
            rainfall=_num(snapshot.rainfall, missing="0"),
        )

    def as_mapping(self) -> dict[str, str]:
        return {
            "eventName": self.event_name,
            "weatherCondition": self.weather_condition,
            "temperature": self.temperature,
            "windSpeed": self.wind_speed,
            "humidity": self.humidity,
            "rainfall": self.rainfall,
        }


def _num(value: float | None, missing: str = _MISSING) -> str:
    if value is None:
        return missing
    return f"{value:g}"


def validate_template(template: str) -> None:
    """Raise ``ConfigurationError`` if *template* references unknown fields."""
    try:
        unknown = template_placeholders(template) - TEMPLATE_PLACEHOLDERS
    except ValueError as exc:
        msg = f"Malformed alert template: {exc}"
        raise ConfigurationError(msg) from exc
    if unknown:
        msg = "Alert template references unknown placeholders"
        raise ConfigurationError(msg, unknown=sorted(unknown))


def render_alert_template(template: str | None, fields: AlertTemplateFields) -> str:
    """Substitute *fields* into *template* (the default template when empty)."""
    text = template or DEFAULT_ALERT_TEMPLATE
    validate_template(text)
    return string.Formatter().vformat(text, (), fields.as_mapping())


# ---------------------------------------------------------------------------
# Channel bodies
# ---------------------------------------------------------------------------


def email_subject(event: EventInfo, level: AlertLevel) -> str:
    icon = _LEVEL_ICONS[level]
    return f"{icon} [{level.value.upper()}] Weather Alert: {event.title}"


def _html_body(
    event: EventInfo,
    text: str,
    notification: WeatherNotification,
    snapshot: WeatherSnapshot | None,
) -> str:
    colour = _LEVEL_COLOURS[notification.type]
    details = "".join(
        f"<li>{html.escape(line)}</li>" for line in notification.notifications
    )
    conditions = ""
    if snapshot is not None:
        conditions = (
            f"<p><strong>Conditions:</strong> {html.escape(snapshot.description or snapshot.condition)}"
            f" | {snapshot.temperature:g}° | wind {snapshot.wind_speed:g}"
            f" | humidity {snapshot.humidity:g}% | rain {snapshot.rainfall:g} mm</p>"
        )
    return f"""
    <div style="font-family:Arial,sans-serif;max-width:600px;margin:auto;">
      <div style="background:{colour};color:white;padding:16px;border-radius:8px 8px 0 0;">
        <h2 style="margin:0;">WEATHER ALERT: {html.escape(event.title)}</h2>
        <p style="margin:4px 0 0;">Severity: {notification.type.value.upper()}</p>
      </div>
      <div style="border:1px solid #ddd;border-top:none;padding:16px;border-radius:0 0 8px 8px;">
        <p>{html.escape(text)}</p>
        <ul>{details}</ul>
        {conditions}
        <hr>
        <p><strong>Location:</strong> {html.escape(event.location)}</p>
        <p><strong>Date:</strong> {event.date.strftime('%Y-%m-%d %H:%M UTC')}</p>
      </div>
    </div>
    """


def build_outbound_message(
    event: EventInfo,
    notification: WeatherNotification,
    snapshot: WeatherSnapshot | None,
    template: str | None = None,
) -> OutboundMessage:
    """Render the alert once for every channel.

    The rendered template is the SMS/WhatsApp text. Email gets the same text
    plus the notification's individual alert strings.
    """
    fields = AlertTemplateFields.from_snapshot(event.title, snapshot)
    text = render_alert_template(template, fields)
    return OutboundMessage(
        subject=email_subject(event, notification.type),
        text=text,
        html=_html_body(event, text, notification, snapshot),
    )
