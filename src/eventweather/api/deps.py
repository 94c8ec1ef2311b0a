"""Request dependencies: service container, caller identity and access gates.

Authentication itself happens upstream; the gateway forwards the caller's
user id in the ``X-User-Id`` header and this module resolves it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Header, Request

from eventweather.automation.executor import AutomationExecutor
from eventweather.core.errors import AuthenticationError, FeatureDisabledError, PermissionDeniedError
from eventweather.core.pipeline import WeatherAlertPipeline
from eventweather.core.types import Actor, EventInfo
from eventweather.db.store import (
    AlertConfigStore,
    AlertLogRepository,
    EventRepository,
    SystemConfigService,
    UserRepository,
)


@dataclass
class Services:
    """Everything the routes need, built once at startup."""

    pipeline: WeatherAlertPipeline
    configs: AlertConfigStore
    system: SystemConfigService
    logs: AlertLogRepository
    events: EventRepository
    users: UserRepository
    executor: AutomationExecutor


def get_services(request: Request) -> Services:
    return request.app.state.services  # type: ignore[no-any-return]


ServicesDep = Annotated[Services, Depends(get_services)]


async def current_actor(
    services: ServicesDep,
    x_user_id: Annotated[str | None, Header()] = None,
) -> Actor:
    if not x_user_id:
        raise AuthenticationError("Authentication required")
    actor = await services.users.get_actor(x_user_id)
    if actor is None:
        raise AuthenticationError("Unknown or inactive user", user_id=x_user_id)
    return actor


ActorDep = Annotated[Actor, Depends(current_actor)]


async def require_super_admin(actor: ActorDep) -> Actor:
    if not actor.is_super_admin:
        raise PermissionDeniedError("Super Admin access required")
    return actor


SuperAdminDep = Annotated[Actor, Depends(require_super_admin)]


async def require_weather_access(actor: ActorDep, services: ServicesDep) -> Actor:
    """Feature flag for everyone, plus the allowed-roles list for non super admins."""
    system = await services.system.get()
    if not system.enabled:
        raise FeatureDisabledError()
    if not actor.is_super_admin and actor.role not in system.allowed_roles:
        raise PermissionDeniedError(
            "Your role is not permitted to manage weather alerts", role=actor.role
        )
    return actor


WeatherActorDep = Annotated[Actor, Depends(require_weather_access)]


async def require_weather_super_admin(actor: WeatherActorDep) -> Actor:
    if not actor.is_super_admin:
        raise PermissionDeniedError("Super Admin access required")
    return actor


WeatherSuperAdminDep = Annotated[Actor, Depends(require_weather_super_admin)]


def ensure_event_access(actor: Actor, event: EventInfo) -> None:
    """Super admins see every event; others only events they organize or are assigned to."""
    if actor.is_super_admin:
        return
    if event.organizer_id == actor.id or event.id in actor.assigned_events:
        return
    raise PermissionDeniedError("You do not have access to this event", event_id=event.id)
