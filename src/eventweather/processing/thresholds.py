"""Per-event threshold gate.

Decides whether a snapshot is bad enough, by one event's own configured
limits and condition toggles, to proceed to notification.
"""

from __future__ import annotations

from datetime import datetime, timedelta

from eventweather.core.rules import AlertConfigDocument
from eventweather.core.types import WeatherSnapshot


def breached_thresholds(snapshot: WeatherSnapshot, config: AlertConfigDocument) -> list[str]:
    """Return a reason string for every limit or condition toggle the snapshot trips."""
    thresholds = config.thresholds
    conditions = config.alert_conditions
    reasons: list[str] = []
    condition = snapshot.condition.lower()

    if snapshot.temperature < thresholds.temperature.min:
        reasons.append(f"temperature below {thresholds.temperature.min:g}")
    if snapshot.temperature > thresholds.temperature.max:
        reasons.append(f"temperature above {thresholds.temperature.max:g}")
    if snapshot.rainfall > thresholds.rainfall:
        reasons.append(f"rainfall above {thresholds.rainfall:g}")
    if snapshot.wind_speed > thresholds.wind_speed:
        reasons.append(f"wind above {thresholds.wind_speed:g}")
    if snapshot.humidity > thresholds.humidity:
        reasons.append(f"humidity above {thresholds.humidity:g}")

    if conditions.thunderstorm and "thunderstorm" in condition:
        reasons.append("thunderstorm")
    if conditions.heavy_rain and ("rain" in condition or "drizzle" in condition):
        reasons.append("rain")
    if conditions.snow and "snow" in condition:
        reasons.append("snow")
    if conditions.tornado and "tornado" in condition:
        reasons.append("tornado")
    if conditions.fog and ("fog" in condition or "mist" in condition):
        reasons.append("fog")

    return reasons


def check_alert_thresholds(snapshot: WeatherSnapshot, config: AlertConfigDocument) -> bool:
    """True when any configured limit or enabled condition toggle is tripped."""
    return bool(breached_thresholds(snapshot, config))


def in_notification_window(now: datetime, event_date: datetime, hours_before: int) -> bool:
    """True when *now* falls in ``[event_date - hours_before, event_date)``."""
    return event_date - timedelta(hours=hours_before) <= now < event_date
