"""Tests for the FastAPI routes, access gates and error rendering."""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable
from typing import TYPE_CHECKING
from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from eventweather.api.app import build_services, create_app
from eventweather.automation.executor import AutomationExecutor
from eventweather.config import YAMLConfig
from eventweather.core.pipeline import WeatherAlertPipeline
from eventweather.core.types import DeliveryLog, WeatherSnapshot

if TYPE_CHECKING:
    from conftest import Seeder

_ALERTS = "/api/v1/weather-alerts"
_ADMIN = "/api/v1/super-admin/weather"


def _as(user_id: str) -> dict[str, str]:
    return {"X-User-Id": user_id}


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    make_snapshot: Callable[..., WeatherSnapshot],
) -> AsyncGenerator[AsyncClient, None]:
    weather = MagicMock()
    weather.fetch_current = AsyncMock(return_value=make_snapshot(temperature=42, humidity=30))
    weather.fetch_forecast = AsyncMock(return_value=[])
    weather.fetch_uv_index = AsyncMock(return_value=None)
    dispatcher = MagicMock()
    dispatcher.dispatch = AsyncMock(return_value=DeliveryLog())
    executor = AutomationExecutor(session_factory)
    pipeline = WeatherAlertPipeline(
        weather_client=weather,
        dispatcher=dispatcher,
        session_factory=session_factory,
        yaml_config=YAMLConfig(),
        executor=executor,
    )
    app = create_app(build_services(pipeline, executor, session_factory))

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c


@pytest.fixture
async def super_admin(seed: Seeder) -> str:
    return await seed.user("super_admin")


@pytest.fixture
async def enabled(seed: Seeder) -> None:
    await seed.system(enabled=True, allowed_roles=["super_admin", "event_admin"])


# ---------------------------------------------------------------------------
# Access gates
# ---------------------------------------------------------------------------


async def test_health(client: AsyncClient) -> None:
    resp = await client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"


async def test_missing_identity_is_401(client: AsyncClient, seed: Seeder) -> None:
    event_id = await seed.event()
    resp = await client.get(f"{_ALERTS}/config/{event_id}")

    assert resp.status_code == 401
    assert resp.json()["error"] == "AUTHENTICATION_REQUIRED"


async def test_feature_disabled_blocks_everyone(
    client: AsyncClient, seed: Seeder, super_admin: str
) -> None:
    event_id = await seed.event()
    resp = await client.get(f"{_ALERTS}/config/{event_id}", headers=_as(super_admin))

    assert resp.status_code == 403
    body = resp.json()
    assert body["error"] == "FEATURE_DISABLED"
    assert body["details"]["featureDisabled"] is True


async def test_role_not_in_allowed_roles(client: AsyncClient, seed: Seeder) -> None:
    await seed.system(enabled=True)
    organizer = await seed.user("event_admin")
    event_id = await seed.event(organizer_id=organizer)

    resp = await client.get(f"{_ALERTS}/config/{event_id}", headers=_as(organizer))

    assert resp.status_code == 403
    assert resp.json()["error"] == "PERMISSION_DENIED"


async def test_event_admin_scoped_to_own_events(
    client: AsyncClient, seed: Seeder, enabled: None
) -> None:
    organizer = await seed.user("event_admin")
    stranger = await seed.user("event_admin")
    event_id = await seed.event(organizer_id=organizer)
    assigned = await seed.user("event_admin", assigned=[event_id])
    url = f"{_ALERTS}/config/{event_id}"

    assert (await client.get(url, headers=_as(organizer))).status_code == 200
    assert (await client.get(url, headers=_as(assigned))).status_code == 200
    assert (await client.get(url, headers=_as(stranger))).status_code == 403


async def test_super_admin_routes_reject_others(client: AsyncClient, seed: Seeder) -> None:
    staff = await seed.user("staff")
    resp = await client.get(f"{_ADMIN}/system-config", headers=_as(staff))
    assert resp.status_code == 403


# ---------------------------------------------------------------------------
# Per-event config and alerts
# ---------------------------------------------------------------------------


async def test_config_lifecycle(client: AsyncClient, seed: Seeder, super_admin: str, enabled: None) -> None:
    event_id = await seed.event()
    headers = _as(super_admin)

    default = (await client.get(f"{_ALERTS}/config/{event_id}", headers=headers)).json()["config"]
    assert default["isNew"] is True
    assert default["enabled"] is False

    created = await client.post(
        f"{_ALERTS}/config/{event_id}", json={"thresholds": {"windSpeed": 25}}, headers=headers
    )
    assert created.status_code == 200
    assert created.json()["config"]["enabled"] is True
    assert created.json()["config"]["thresholds"]["windSpeed"] == 25

    updated = await client.put(
        f"{_ALERTS}/config/{event_id}", json={"notificationTiming": 6}, headers=headers
    )
    config = updated.json()["config"]
    assert config["notificationTiming"] == 6
    assert config["thresholds"]["windSpeed"] == 25
    assert config["isNew"] is False


async def test_invalid_config_is_400(client: AsyncClient, seed: Seeder, super_admin: str, enabled: None) -> None:
    event_id = await seed.event()
    resp = await client.put(
        f"{_ALERTS}/config/{event_id}",
        json={"alertTemplate": "Hello {nickname}"},
        headers=_as(super_admin),
    )

    assert resp.status_code == 400
    assert resp.json()["error"] == "CONFIGURATION_ERROR"
    assert resp.json()["details"]["errors"]


async def test_unknown_event_is_404(client: AsyncClient, super_admin: str, enabled: None) -> None:
    resp = await client.get(f"{_ALERTS}/config/missing", headers=_as(super_admin))
    assert resp.status_code == 404
    assert resp.json()["error"] == "NOT_FOUND"


async def test_trigger_without_config_is_400(
    client: AsyncClient, seed: Seeder, super_admin: str, enabled: None
) -> None:
    event_id = await seed.event()
    resp = await client.post(f"{_ALERTS}/trigger/{event_id}", headers=_as(super_admin))
    assert resp.status_code == 400


async def test_trigger_history_acknowledge_stats(
    client: AsyncClient, seed: Seeder, super_admin: str, enabled: None
) -> None:
    event_id = await seed.event()
    headers = _as(super_admin)
    await client.post(f"{_ALERTS}/config/{event_id}", json={}, headers=headers)

    triggered = (
        await client.post(f"{_ALERTS}/trigger/{event_id}", json={"forceNotify": False}, headers=headers)
    ).json()
    assert triggered["alertTriggered"] is True
    assert triggered["notification"]["type"] == "warning"
    alert_id = triggered["alertLogId"]

    history = (await client.get(f"{_ALERTS}/history/{event_id}", headers=headers)).json()
    assert history["pagination"]["total"] == 1
    assert history["alerts"][0]["id"] == alert_id

    acked = await client.patch(f"{_ALERTS}/acknowledge/{alert_id}", headers=headers)
    assert acked.json()["alert"]["acknowledged"] is True

    filtered = await client.get(
        f"{_ALERTS}/history/{event_id}", params={"acknowledged": "false"}, headers=headers
    )
    assert filtered.json()["pagination"]["total"] == 0

    stats = (await client.get(f"{_ALERTS}/stats/{event_id}", headers=headers)).json()["stats"]
    assert stats["totalAlerts"] == 1
    assert stats["acknowledgedAlerts"] == 1


async def test_approval_flow(client: AsyncClient, seed: Seeder, super_admin: str, enabled: None) -> None:
    event_id = await seed.event()
    headers = _as(super_admin)
    await client.post(
        f"{_ALERTS}/config/{event_id}",
        json={"automation": {"enabled": True, "actions": {"markCancelled": {"enabled": True}}}},
        headers=headers,
    )
    await client.post(f"{_ALERTS}/trigger/{event_id}", headers=headers)

    pending = (await client.get(f"{_ADMIN}/pending-approvals", headers=headers)).json()
    assert pending["count"] == 1
    item = pending["pendingApprovals"][0]
    assert item["action"] == "markCancelled"

    approve_url = f"{_ALERTS}/approve/{item['alertId']}/{item['actionIndex']}"
    approved = await client.post(approve_url, headers=headers)
    assert approved.status_code == 200
    assert approved.json()["action"]["executed"] is True

    again = await client.post(approve_url, headers=headers)
    assert again.status_code == 409

    event = await seed.get_event(event_id)
    assert event.status == "cancelled"


async def test_alert_history_outlives_event(
    client: AsyncClient, seed: Seeder, super_admin: str, enabled: None
) -> None:
    organizer = await seed.user("event_admin")
    event_id = await seed.event(organizer_id=organizer)
    headers = _as(super_admin)
    await client.post(f"{_ALERTS}/config/{event_id}", json={}, headers=headers)
    alert_id = (await client.post(f"{_ALERTS}/trigger/{event_id}", headers=headers)).json()["alertLogId"]
    await seed.delete_event(event_id)

    history = await client.get(f"{_ALERTS}/history/{event_id}", headers=headers)
    assert history.status_code == 200
    assert history.json()["alerts"][0]["id"] == alert_id

    acked = await client.patch(f"{_ALERTS}/acknowledge/{alert_id}", headers=headers)
    assert acked.status_code == 200
    assert acked.json()["alert"]["acknowledged"] is True

    stats = await client.get(f"{_ALERTS}/stats/{event_id}", headers=headers)
    assert stats.json()["stats"]["totalAlerts"] == 1

    organizer_view = await client.get(f"{_ALERTS}/history/{event_id}", headers=_as(organizer))
    assert organizer_view.status_code == 404


async def test_approve_blocked_while_feature_disabled(
    client: AsyncClient, seed: Seeder, super_admin: str, enabled: None
) -> None:
    event_id = await seed.event()
    headers = _as(super_admin)
    await client.post(
        f"{_ALERTS}/config/{event_id}",
        json={"automation": {"enabled": True, "actions": {"markCancelled": {"enabled": True}}}},
        headers=headers,
    )
    alert_id = (await client.post(f"{_ALERTS}/trigger/{event_id}", headers=headers)).json()["alertLogId"]
    await seed.system(enabled=False)

    resp = await client.post(f"{_ALERTS}/approve/{alert_id}/0", headers=headers)

    assert resp.status_code == 403
    assert resp.json()["error"] == "FEATURE_DISABLED"
    event = await seed.get_event(event_id)
    assert event.status == "scheduled"


# ---------------------------------------------------------------------------
# Super Admin
# ---------------------------------------------------------------------------


async def test_system_config_toggle_and_update(client: AsyncClient, super_admin: str) -> None:
    headers = _as(super_admin)

    toggled = (await client.post(f"{_ADMIN}/toggle", json={"enabled": True}, headers=headers)).json()
    assert toggled["config"]["enabled"] is True

    updated = await client.put(
        f"{_ADMIN}/system-config", json={"pollingInterval": 2, "requireApproval": False}, headers=headers
    )
    config = updated.json()["config"]
    assert config["pollingInterval"] == 5
    assert config["requireApproval"] is False
    assert config["enabled"] is True


async def test_configs_bulk_toggle_and_delete(
    client: AsyncClient, seed: Seeder, super_admin: str, enabled: None
) -> None:
    headers = _as(super_admin)
    first = await seed.event()
    second = await seed.event()
    for event_id in (first, second):
        await client.post(f"{_ALERTS}/config/{event_id}", json={}, headers=headers)

    bulk = await client.post(
        f"{_ADMIN}/bulk-toggle", json={"eventIds": [first], "enabled": False}, headers=headers
    )
    assert bulk.json()["updated"] == 1

    listed = (await client.get(f"{_ADMIN}/configs", params={"enabled": "true"}, headers=headers)).json()
    assert [c["eventId"] for c in listed["configs"]] == [second]

    stats = (await client.get(f"{_ADMIN}/stats", headers=headers)).json()["stats"]
    assert stats["monitoredEvents"] == 1

    assert (await client.delete(f"{_ADMIN}/config/{second}", headers=headers)).status_code == 200
    assert (await client.delete(f"{_ADMIN}/config/{second}", headers=headers)).status_code == 404


async def test_bulk_toggle_requires_ids(client: AsyncClient, super_admin: str) -> None:
    resp = await client.post(
        f"{_ADMIN}/bulk-toggle", json={"eventIds": [], "enabled": True}, headers=_as(super_admin)
    )
    assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Public weather view
# ---------------------------------------------------------------------------


async def test_public_weather(client: AsyncClient, seed: Seeder) -> None:
    event_id = await seed.event()

    empty = (await client.get(f"/api/v1/weather/{event_id}/alerts")).json()["data"]
    assert empty["hasAlert"] is False

    current = (await client.get(f"/api/v1/weather/{event_id}")).json()["data"]
    assert current["current"]["temperature"] == 42
    assert current["notification"]["type"] == "warning"

    stored = (await client.get(f"/api/v1/weather/{event_id}/alerts")).json()["data"]
    assert stored["hasAlert"] is True
    assert stored["notificationType"] == "warning"
