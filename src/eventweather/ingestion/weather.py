"""OpenWeatherMap client for event-location weather.

Fetches current conditions, a 5-day forecast (one entry per ~24h), and the UV
index for a coordinate pair. Results are cached in memory per
``(kind, lat, lon, units)`` for a short TTL to bound outbound call volume.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx

from eventweather.core.errors import WeatherFetchError
from eventweather.core.types import ForecastDay, Units, WeatherSnapshot

logger = logging.getLogger(__name__)

_BASE_URL = "https://api.openweathermap.org/data/2.5"

# Defaults (can be overridden from weather_alerts.yml)
_CACHE_TTL_MINUTES = 10
_REQUEST_TIMEOUT_S = 15.0

# m/s -> km/h
_MS_TO_KMH = 3.6

# /forecast returns 3-hourly slots; every 8th slot is ~24h apart
_FORECAST_STRIDE = 8
_FORECAST_DAYS = 5

_CacheKey = tuple[str, float, float, str]


def _wind_speed(raw: float, units: Units) -> float:
    """Normalize provider wind speed: km/h for metric, mph for imperial."""
    if units == Units.METRIC:
        return float(round(raw * _MS_TO_KMH))
    return float(round(raw))


def _first_condition(item: dict[str, Any]) -> dict[str, Any]:
    weather = item.get("weather") or [{}]
    return weather[0]  # type: ignore[no-any-return]


class WeatherClient:
    """Async OpenWeatherMap client with a TTL cache.

    Parameters
    ----------
    api_key:
        OpenWeatherMap ``appid``.
    client:
        Optional shared ``httpx.AsyncClient``. A throwaway client is created
        per request when omitted.
    cache_ttl_minutes:
        How long a fetched result is served from memory.
    timeout:
        Per-request timeout in seconds.
    """

    def __init__(
        self,
        api_key: str,
        client: httpx.AsyncClient | None = None,
        cache_ttl_minutes: int = _CACHE_TTL_MINUTES,
        timeout: float = _REQUEST_TIMEOUT_S,
    ) -> None:
        self._api_key = api_key
        self._external_client = client
        self._ttl = timedelta(minutes=cache_ttl_minutes)
        self._timeout = timeout
        self._cache: dict[_CacheKey, tuple[Any, datetime]] = {}

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch_current(
        self, latitude: float, longitude: float, units: Units = Units.METRIC
    ) -> WeatherSnapshot:
        """Fetch current conditions. Raises ``WeatherFetchError`` on failure."""
        key: _CacheKey = ("current", latitude, longitude, units.value)
        cached = self._cache_get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        data = await self._request(
            "weather", {"lat": latitude, "lon": longitude, "units": units.value}
        )
        try:
            snapshot = self._parse_current(data, units)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            msg = f"Malformed current-weather response: {exc}"
            raise WeatherFetchError(msg, latitude=latitude, longitude=longitude) from exc

        self._cache_put(key, snapshot)
        return snapshot

    async def fetch_forecast(
        self, latitude: float, longitude: float, units: Units = Units.METRIC
    ) -> list[ForecastDay]:
        """Fetch up to five ~24h forecast entries. Raises ``WeatherFetchError``."""
        key: _CacheKey = ("forecast", latitude, longitude, units.value)
        cached = self._cache_get(key)
        if cached is not None:
            return list(cached)

        data = await self._request(
            "forecast", {"lat": latitude, "lon": longitude, "units": units.value}
        )
        try:
            forecast = self._parse_forecast(data, units)
        except (KeyError, TypeError, ValueError, IndexError) as exc:
            msg = f"Malformed forecast response: {exc}"
            raise WeatherFetchError(msg, latitude=latitude, longitude=longitude) from exc

        self._cache_put(key, tuple(forecast))
        return forecast

    async def fetch_uv_index(self, latitude: float, longitude: float) -> float | None:
        """Fetch the UV index. Returns ``None`` on any error (supplementary data)."""
        key: _CacheKey = ("uvi", latitude, longitude, "")
        cached = self._cache_get(key)
        if cached is not None:
            return cached  # type: ignore[no-any-return]

        try:
            data = await self._request("uvi", {"lat": latitude, "lon": longitude})
            value = data.get("value")
            if value is None:
                return None
            uv = float(value)
        except (WeatherFetchError, AttributeError, TypeError, ValueError):
            logger.warning("UV index unavailable for (%.4f, %.4f)", latitude, longitude)
            return None

        self._cache_put(key, uv)
        return uv

    def clear_expired(self) -> int:
        """Remove expired cache entries. Returns the number removed."""
        now = datetime.now(tz=UTC)
        expired_keys = [
            k for k, (_, cached_at) in self._cache.items() if now - cached_at >= self._ttl
        ]
        for k in expired_keys:
            del self._cache[k]
        if expired_keys:
            logger.debug("Evicted %d expired weather cache entries", len(expired_keys))
        return len(expired_keys)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _cache_get(self, key: _CacheKey) -> Any:
        cached = self._cache.get(key)
        if cached is None:
            return None
        value, cached_at = cached
        if datetime.now(tz=UTC) - cached_at < self._ttl:
            logger.debug("Cache hit for %s", key)
            return value
        del self._cache[key]
        return None

    def _cache_put(self, key: _CacheKey, value: Any) -> None:
        self._cache[key] = (value, datetime.now(tz=UTC))

    async def _request(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        """GET an endpoint and return parsed JSON. Raises ``WeatherFetchError``."""
        url = f"{_BASE_URL}/{path}"
        query = {**params, "appid": self._api_key}
        try:
            if self._external_client is not None:
                response = await self._external_client.get(
                    url, params=query, timeout=self._timeout
                )
            else:
                async with httpx.AsyncClient() as client:
                    response = await client.get(url, params=query, timeout=self._timeout)
        except httpx.HTTPError as exc:
            msg = f"Weather provider unreachable: {exc}"
            raise WeatherFetchError(msg, endpoint=path) from exc

        if response.status_code != 200:
            logger.warning("OpenWeatherMap returned HTTP %d for %s", response.status_code, path)
            msg = f"Weather provider returned HTTP {response.status_code}"
            raise WeatherFetchError(msg, endpoint=path, status=response.status_code)

        try:
            return response.json()  # type: ignore[no-any-return]
        except ValueError as exc:
            msg = "Weather provider returned invalid JSON"
            raise WeatherFetchError(msg, endpoint=path) from exc

    @staticmethod
    def _parse_current(data: dict[str, Any], units: Units) -> WeatherSnapshot:
        main = data["main"]
        condition = _first_condition(data)
        rain = data.get("rain") or {}
        return WeatherSnapshot(
            location=data.get("name", ""),
            latitude=float(data["coord"]["lat"]),
            longitude=float(data["coord"]["lon"]),
            temperature=float(round(main["temp"])),
            feels_like=float(round(main.get("feels_like", main["temp"]))),
            humidity=float(main.get("humidity", 0)),
            wind_speed=_wind_speed(float((data.get("wind") or {}).get("speed", 0)), units),
            condition=condition.get("main", ""),
            description=condition.get("description", ""),
            visibility=data.get("visibility"),
            rainfall=float(rain.get("1h", 0)),
            pressure=main.get("pressure"),
            units=units,
        )

    @staticmethod
    def _parse_forecast(data: dict[str, Any], units: Units) -> list[ForecastDay]:
        entries = data["list"][::_FORECAST_STRIDE][:_FORECAST_DAYS]
        forecast: list[ForecastDay] = []
        for item in entries:
            condition = _first_condition(item)
            rain = item.get("rain") or {}
            forecast.append(
                ForecastDay(
                    date=datetime.fromtimestamp(item["dt"], tz=UTC).replace(tzinfo=None),
                    temperature=float(round(item["main"]["temp"])),
                    condition=condition.get("main", ""),
                    description=condition.get("description", ""),
                    humidity=float(item["main"].get("humidity", 0)),
                    wind_speed=_wind_speed(
                        float((item.get("wind") or {}).get("speed", 0)), units
                    ),
                    rainfall=float(rain.get("3h", 0)),
                )
            )
        return forecast
