"""FastAPI application factory.

The app holds a ``Services`` container on ``app.state``; ``main`` builds it
from the live pipeline, tests build it against a temporary database.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from eventweather import __version__
from eventweather.api import admin, alerts, weather
from eventweather.api.deps import Services
from eventweather.core.errors import WeatherAlertError
from eventweather.db.store import (
    AlertConfigStore,
    AlertLogRepository,
    EventRepository,
    SystemConfigService,
    UserRepository,
)

if TYPE_CHECKING:
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    from eventweather.automation.executor import AutomationExecutor
    from eventweather.core.pipeline import WeatherAlertPipeline

logger = logging.getLogger(__name__)


def build_services(
    pipeline: WeatherAlertPipeline,
    executor: AutomationExecutor,
    session_factory: async_sessionmaker[AsyncSession],
) -> Services:
    return Services(
        pipeline=pipeline,
        configs=AlertConfigStore(session_factory),
        system=SystemConfigService(session_factory),
        logs=AlertLogRepository(session_factory),
        events=EventRepository(session_factory),
        users=UserRepository(session_factory),
        executor=executor,
    )


async def _weather_alert_error_handler(request: Request, exc: WeatherAlertError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def create_app(services: Services) -> FastAPI:
    app = FastAPI(
        title="EventWeather",
        description="Weather monitoring and alerting for scheduled events.",
        version=__version__,
    )
    app.state.services = services
    app.add_exception_handler(WeatherAlertError, _weather_alert_error_handler)  # type: ignore[arg-type]

    app.include_router(alerts.router)
    app.include_router(admin.router)
    app.include_router(weather.router)

    @app.get("/health", tags=["health"])
    async def health() -> dict[str, str]:
        return {"status": "ok", "version": __version__}

    return app
