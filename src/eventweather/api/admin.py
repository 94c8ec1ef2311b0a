"""Super Admin routes: the system-wide switch, every event's config, approvals."""

from __future__ import annotations

from typing import Annotated, Any

from fastapi import APIRouter, Body, Query

from eventweather.api.deps import ServicesDep, SuperAdminDep
from eventweather.api.schemas import BulkToggleRequest, ToggleRequest
from eventweather.core.errors import NotFoundError

router = APIRouter(prefix="/api/v1/super-admin/weather", tags=["super-admin"])


@router.get("/system-config")
async def get_system_config(actor: SuperAdminDep, services: ServicesDep) -> dict[str, Any]:
    system = await services.system.get()
    return {"success": True, "config": system.model_dump(by_alias=True, mode="json")}


@router.put("/system-config")
async def update_system_config(
    patch: Annotated[dict[str, Any], Body()], actor: SuperAdminDep, services: ServicesDep
) -> dict[str, Any]:
    system = await services.system.update(patch, actor.id)
    return {
        "success": True,
        "message": "System weather configuration updated",
        "config": system.model_dump(by_alias=True, mode="json"),
    }


@router.post("/toggle")
async def toggle(body: ToggleRequest, actor: SuperAdminDep, services: ServicesDep) -> dict[str, Any]:
    system = await services.system.toggle(body.enabled, actor.id)
    state = "enabled" if system.enabled else "disabled"
    return {
        "success": True,
        "message": f"Weather alerts {state} system-wide",
        "config": system.model_dump(by_alias=True, mode="json"),
    }


@router.get("/configs")
async def list_configs(
    actor: SuperAdminDep,
    services: ServicesDep,
    enabled: bool | None = None,
    page: Annotated[int, Query(ge=1)] = 1,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> dict[str, Any]:
    docs, total = await services.configs.list_configs(enabled, page, limit)
    return {
        "success": True,
        "configs": [d.model_dump(by_alias=True, mode="json") for d in docs],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "pages": (total + limit - 1) // limit,
        },
    }


@router.get("/stats")
async def stats(
    actor: SuperAdminDep,
    services: ServicesDep,
    days: Annotated[int, Query(ge=1, le=365)] = 30,
) -> dict[str, Any]:
    monitored = await services.configs.count_enabled()
    return {"success": True, "stats": await services.logs.system_stats(monitored, days)}


@router.get("/pending-approvals")
async def pending_approvals(actor: SuperAdminDep, services: ServicesDep) -> dict[str, Any]:
    pending = await services.logs.pending_approvals()
    return {"success": True, "pendingApprovals": pending, "count": len(pending)}


@router.post("/bulk-toggle")
async def bulk_toggle(
    body: BulkToggleRequest, actor: SuperAdminDep, services: ServicesDep
) -> dict[str, Any]:
    updated = await services.configs.bulk_toggle(body.event_ids, body.enabled, actor.id)
    return {
        "success": True,
        "message": f"{updated} configuration(s) {'enabled' if body.enabled else 'disabled'}",
        "updated": updated,
    }


@router.delete("/config/{event_id}")
async def delete_config(event_id: str, actor: SuperAdminDep, services: ServicesDep) -> dict[str, Any]:
    if not await services.configs.delete(event_id):
        raise NotFoundError("Weather alert configuration", event_id=event_id)
    return {"success": True, "message": "Weather alert configuration deleted"}
