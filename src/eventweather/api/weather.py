"""Read-only weather view for an event (no alerting side effects)."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter

from eventweather.api.deps import ServicesDep

router = APIRouter(prefix="/api/v1/weather", tags=["weather"])


@router.get("/{event_id}")
async def event_weather(event_id: str, services: ServicesDep) -> dict[str, Any]:
    return {"success": True, "data": await services.pipeline.current_weather(event_id)}


@router.get("/{event_id}/alerts")
async def event_weather_alerts(event_id: str, services: ServicesDep) -> dict[str, Any]:
    return {"success": True, "data": await services.pipeline.stored_alerts(event_id)}
