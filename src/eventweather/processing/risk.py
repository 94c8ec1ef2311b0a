"""Risk detection over a weather snapshot.

Pure and deterministic: maps a ``WeatherSnapshot`` to typed ``RiskFinding``
values. Every threshold has a metric and an imperial variant, selected by the
snapshot's unit system. Findings are additive and never deduplicated, so a
tornado yields both THUNDERSTORM and CYCLONE.
"""

from __future__ import annotations

from dataclasses import dataclass

from eventweather.core.types import AlertLevel, RiskAssessment, RiskFinding, RiskType, Units, WeatherSnapshot


@dataclass(frozen=True)
class RiskThresholds:
    """Caution/warning boundaries for one unit system (strictly greater-than)."""

    heat_caution: float
    heat_warning: float
    wind_caution: float
    wind_warning: float
    temp_unit: str
    wind_unit: str
    # Rainfall is reported in mm for both unit systems
    rain_caution: float = 5.0
    rain_warning: float = 10.0


METRIC_THRESHOLDS = RiskThresholds(
    heat_caution=35.0,
    heat_warning=40.0,
    wind_caution=40.0,
    wind_warning=60.0,
    temp_unit="°C",
    wind_unit="km/h",
)

IMPERIAL_THRESHOLDS = RiskThresholds(
    heat_caution=95.0,
    heat_warning=104.0,
    wind_caution=25.0,
    wind_warning=37.0,
    temp_unit="°F",
    wind_unit="mph",
)


def thresholds_for(units: Units) -> RiskThresholds:
    return IMPERIAL_THRESHOLDS if units == Units.IMPERIAL else METRIC_THRESHOLDS


def _fmt(value: float) -> str:
    return f"{value:g}"


def detect_risks(snapshot: WeatherSnapshot) -> RiskAssessment:
    """Evaluate a snapshot against the heat, storm, rain, wind and cyclone rules."""
    limits = thresholds_for(snapshot.units)
    condition = snapshot.condition.lower()
    risks: list[RiskFinding] = []

    if snapshot.temperature > limits.heat_caution:
        level = (
            AlertLevel.WARNING
            if snapshot.temperature > limits.heat_warning
            else AlertLevel.CAUTION
        )
        risks.append(
            RiskFinding(
                type=RiskType.HEATWAVE,
                severity=level,
                detail=f"Temperature {_fmt(snapshot.temperature)}{limits.temp_unit}",
            )
        )

    if "thunderstorm" in condition or "tornado" in condition:
        risks.append(
            RiskFinding(
                type=RiskType.THUNDERSTORM,
                severity=AlertLevel.WARNING,
                detail=f"Condition: {snapshot.condition}",
            )
        )

    if "rain" in condition and snapshot.rainfall > limits.rain_caution:
        level = (
            AlertLevel.WARNING
            if snapshot.rainfall > limits.rain_warning
            else AlertLevel.CAUTION
        )
        risks.append(
            RiskFinding(
                type=RiskType.HEAVY_RAIN,
                severity=level,
                detail=f"Rainfall {_fmt(snapshot.rainfall)} mm in the last hour",
            )
        )

    if snapshot.wind_speed > limits.wind_caution:
        level = (
            AlertLevel.WARNING
            if snapshot.wind_speed > limits.wind_warning
            else AlertLevel.CAUTION
        )
        risks.append(
            RiskFinding(
                type=RiskType.STRONG_WIND,
                severity=level,
                detail=f"Wind {_fmt(snapshot.wind_speed)} {limits.wind_unit}",
            )
        )

    if "tornado" in condition or "squall" in condition:
        risks.append(
            RiskFinding(
                type=RiskType.CYCLONE,
                severity=AlertLevel.WARNING,
                detail=f"Condition: {snapshot.condition}",
            )
        )

    if risks:
        summary = "; ".join(f"{r.type.value} ({r.severity.value})" for r in risks)
    else:
        summary = "No weather risks detected"

    return RiskAssessment(has_risk=bool(risks), risks=risks, summary=summary)
