"""
Outdoor weather lookup (Open-Meteo).

Weather is flavor only: every failure is reported as WeatherError and the
callers carry on without it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

from agri_buddy.config import get_settings
from agri_buddy.orchestrator.schemas import OutdoorWeather, TomorrowWeather

logger = logging.getLogger(__name__)


class WeatherError(Exception):
    """Raised when the weather service cannot answer."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


def weather_description(code: int) -> str:
    """Japanese description of a WMO weather code."""
    if code == 0:
        return "快晴"
    if code <= 3:
        return "晴れ"
    if code <= 49:
        return "曇り"
    if code <= 69:
        return "雨"
    if code <= 79:
        return "雪"
    return "荒天"


class WeatherService(ABC):
    @abstractmethod
    async def current(self) -> OutdoorWeather:
        ...

    @abstractmethod
    async def tomorrow(self) -> TomorrowWeather:
        ...


class OpenMeteoWeatherService(WeatherService):
    """Open-Meteo client for the farm's coordinates."""

    def __init__(
        self,
        latitude: float | None = None,
        longitude: float | None = None,
        endpoint: str | None = None,
        timeout: float | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        settings = get_settings()
        self._latitude = latitude if latitude is not None else settings.weather_latitude
        self._longitude = longitude if longitude is not None else settings.weather_longitude
        self._endpoint = endpoint or settings.weather_endpoint
        self._timeout = timeout if timeout is not None else settings.weather_timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout, transport=self._transport)
        return self._client

    async def _fetch(self, params: dict[str, Any]) -> dict[str, Any]:
        client = await self._get_client()
        query = {
            "latitude": self._latitude,
            "longitude": self._longitude,
            "timezone": "Asia/Tokyo",
            **params,
        }
        try:
            response = await client.get(self._endpoint, params=query)
            response.raise_for_status()
            return response.json()
        except httpx.HTTPStatusError as e:
            raise WeatherError(f"Weather service returned {e.response.status_code}", e.response.status_code) from e
        except (httpx.HTTPError, ValueError) as e:
            raise WeatherError(f"Weather lookup failed: {e}") from e

    async def current(self) -> OutdoorWeather:
        data = await self._fetch({"current": "temperature_2m,weather_code"})
        try:
            cur = data["current"]
            code = int(cur["weather_code"])
            return OutdoorWeather(
                description=weather_description(code),
                temperature=float(cur["temperature_2m"]),
                code=code,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise WeatherError(f"Unexpected weather payload: {e}") from e

    async def tomorrow(self) -> TomorrowWeather:
        data = await self._fetch(
            {"daily": "weather_code,temperature_2m_max,temperature_2m_min", "forecast_days": 2}
        )
        try:
            daily = data["daily"]
            code = int(daily["weather_code"][1])
            return TomorrowWeather(
                description=weather_description(code),
                max_temp=float(daily["temperature_2m_max"][1]),
                min_temp=float(daily["temperature_2m_min"][1]),
                code=code,
            )
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise WeatherError(f"Unexpected forecast payload: {e}") from e

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
