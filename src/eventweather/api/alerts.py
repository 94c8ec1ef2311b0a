"""Per-event weather-alert routes for event administrators."""

from __future__ import annotations

import logging
from typing import Annotated, Any

from fastapi import APIRouter, Body, Query

from eventweather.api.deps import (
    Services,
    ServicesDep,
    WeatherActorDep,
    WeatherSuperAdminDep,
    ensure_event_access,
)
from eventweather.api.schemas import TriggerRequest
from eventweather.core.rules import AlertConfigDocument
from eventweather.core.types import Actor, AlertLevel, EvaluationResult, TriggerSource

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/weather-alerts", tags=["weather-alerts"])

PatchBody = Annotated[dict[str, Any], Body()]


def _config_payload(doc: AlertConfigDocument) -> dict[str, Any]:
    payload = doc.model_dump(by_alias=True, mode="json")
    payload["isNew"] = doc.is_new
    return payload


def _trigger_payload(result: EvaluationResult) -> dict[str, Any]:
    if not result.alert_triggered:
        return {
            "success": True,
            "alertTriggered": False,
            "message": f"No alert sent: {result.skipped_reason}",
            "weatherData": result.snapshot.to_dict() if result.snapshot else None,
            "notification": result.notification.to_dict() if result.notification else None,
        }
    return {
        "success": True,
        "alertTriggered": True,
        "message": "Weather alert triggered successfully",
        "alertLogId": result.alert_log_id,
        "weatherData": result.snapshot.to_dict() if result.snapshot else None,
        "notification": result.notification.to_dict() if result.notification else None,
        "notificationLog": result.delivery.to_dict() if result.delivery else None,
        "automationActions": [a.to_dict() for a in result.actions],
    }


async def _authorize_history(actor: Actor, services: Services, event_id: str) -> None:
    """Alert logs outlive their event; super admins reach them without the event row."""
    if actor.is_super_admin:
        return
    ensure_event_access(actor, await services.events.get(event_id))


@router.get("/config/{event_id}")
async def get_config(event_id: str, actor: WeatherActorDep, services: ServicesDep) -> dict[str, Any]:
    event = await services.events.get(event_id)
    ensure_event_access(actor, event)
    return {"success": True, "config": _config_payload(await services.configs.get(event_id))}


@router.post("/config/{event_id}")
@router.put("/config/{event_id}")
async def save_config(
    event_id: str, patch: PatchBody, actor: WeatherActorDep, services: ServicesDep
) -> dict[str, Any]:
    event = await services.events.get(event_id)
    ensure_event_access(actor, event)
    doc = await services.configs.upsert(event_id, patch, actor.id)
    return {
        "success": True,
        "message": "Weather alert configuration saved",
        "config": _config_payload(doc),
    }


@router.post("/trigger/{event_id}")
async def trigger(
    event_id: str,
    actor: WeatherActorDep,
    services: ServicesDep,
    body: TriggerRequest | None = None,
) -> dict[str, Any]:
    event = await services.events.get(event_id)
    ensure_event_access(actor, event)
    force_notify = body.force_notify if body is not None else False
    logger.info("Manual weather check for event %s by %s (force=%s)", event_id, actor.id, force_notify)
    result = await services.pipeline.evaluate_event(
        event_id, TriggerSource.MANUAL, actor.id, force_notify=force_notify
    )
    return _trigger_payload(result)


@router.get("/history/{event_id}")
async def history(
    event_id: str,
    actor: WeatherActorDep,
    services: ServicesDep,
    alert_type: Annotated[AlertLevel | None, Query(alias="type")] = None,
    acknowledged: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> dict[str, Any]:
    await _authorize_history(actor, services, event_id)
    alerts, total = await services.logs.history(event_id, alert_type, acknowledged, page, limit)
    return {
        "success": True,
        "alerts": alerts,
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.patch("/acknowledge/{alert_id}")
async def acknowledge(alert_id: str, actor: WeatherActorDep, services: ServicesDep) -> dict[str, Any]:
    alert = await services.logs.get(alert_id)
    await _authorize_history(actor, services, alert["eventId"])
    return {"success": True, "alert": await services.logs.acknowledge(alert_id, actor.id)}


@router.get("/stats/{event_id}")
async def stats(
    event_id: str,
    actor: WeatherActorDep,
    services: ServicesDep,
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> dict[str, Any]:
    await _authorize_history(actor, services, event_id)
    return {"success": True, "stats": await services.logs.event_stats(event_id, days)}


@router.post("/approve/{alert_id}/{action_index}")
async def approve(
    alert_id: str, action_index: int, actor: WeatherSuperAdminDep, services: ServicesDep
) -> dict[str, Any]:
    record = await services.executor.approve(alert_id, action_index, actor.id)
    return {
        "success": True,
        "message": "Automation action approved and executed",
        "action": record.to_dict(),
    }
