"""Human-readable alert bundle built from a weather snapshot.

Folds risk findings left to right into an overall level that only ever
escalates, then applies the supplementary snapshot checks (freezing, snow,
fog/mist, humidity) which add text without producing a finding.
"""

from __future__ import annotations

from eventweather.core.types import (
    AlertLevel,
    RiskAssessment,
    RiskFinding,
    RiskType,
    Units,
    WeatherNotification,
    WeatherSnapshot,
)
from eventweather.processing.risk import detect_risks

CALM_MESSAGE = "Weather conditions are normal. Enjoy the event!"

# Freezing point per unit system
_FREEZING = {Units.METRIC: 0.0, Units.IMPERIAL: 32.0}

_HUMIDITY_INFO_PCT = 85.0

_FINDING_TEXT: dict[tuple[RiskType, AlertLevel], str] = {
    (RiskType.HEATWAVE, AlertLevel.WARNING): "🌡️ Extreme heat warning! Stay hydrated and seek shade.",
    (RiskType.HEATWAVE, AlertLevel.CAUTION): "☀️ High temperature. Please drink plenty of water.",
    (RiskType.THUNDERSTORM, AlertLevel.WARNING): "⚡ Severe weather warning! Thunderstorm or tornado expected.",
    (RiskType.HEAVY_RAIN, AlertLevel.WARNING): "🌧️ Heavy rainfall expected. Avoid open areas and low ground.",
    (RiskType.HEAVY_RAIN, AlertLevel.CAUTION): "🌧️ Heavy rainfall expected. Carry an umbrella!",
    (RiskType.STRONG_WIND, AlertLevel.WARNING): "💨 Strong wind warning! Be cautious during the event.",
    (RiskType.STRONG_WIND, AlertLevel.CAUTION): "🌬️ Moderate wind expected. Secure loose items.",
    (RiskType.CYCLONE, AlertLevel.WARNING): "🌀 Cyclone conditions possible. Follow official guidance.",
}

FREEZING_TEXT = "❄️ Freezing conditions! Wear appropriate winter clothing."
SNOW_TEXT = "❄️ Snow expected. Dress warmly and wear snow boots."
FOG_TEXT = "🌫️ Poor visibility expected. Be careful while traveling."
HUMIDITY_TEXT = "💧 High humidity. It may feel hotter than the actual temperature."


def finding_text(finding: RiskFinding) -> str:
    """Alert string for a finding, falling back to its detail."""
    text = _FINDING_TEXT.get((finding.type, finding.severity))
    if text is None:
        return f"{finding.type.value}: {finding.detail}"
    return text


def fold_levels(findings: list[RiskFinding], start: AlertLevel = AlertLevel.INFO) -> list[AlertLevel]:
    """Running overall level after each finding. Non-decreasing by construction."""
    levels: list[AlertLevel] = []
    level = start
    for finding in findings:
        level = level.escalate(finding.severity)
        levels.append(level)
    return levels


def build_notification(
    snapshot: WeatherSnapshot,
    assessment: RiskAssessment | None = None,
) -> WeatherNotification:
    """Build the alert bundle for a snapshot.

    Args:
        snapshot: Current conditions.
        assessment: Precomputed risk assessment. Detected here when omitted.

    Returns:
        WeatherNotification with overall level, alert strings and combined message.
    """
    if assessment is None:
        assessment = detect_risks(snapshot)

    alerts: list[str] = []
    level = AlertLevel.INFO

    for finding in assessment.risks:
        alerts.append(finding_text(finding))
        level = level.escalate(finding.severity)

    condition = snapshot.condition.lower()

    if snapshot.temperature < _FREEZING[snapshot.units]:
        alerts.append(FREEZING_TEXT)
        level = level.escalate(AlertLevel.WARNING)

    if "snow" in condition:
        alerts.append(SNOW_TEXT)
        level = level.escalate(AlertLevel.CAUTION)

    if "fog" in condition or "mist" in condition:
        alerts.append(FOG_TEXT)
        level = level.escalate(AlertLevel.CAUTION)

    # Informational only, never changes the level
    if snapshot.humidity > _HUMIDITY_INFO_PCT:
        alerts.append(HUMIDITY_TEXT)

    return WeatherNotification(
        has_alert=bool(alerts),
        notifications=alerts,
        type=level,
        message="\n".join(alerts) if alerts else CALM_MESSAGE,
        risks=list(assessment.risks),
    )
