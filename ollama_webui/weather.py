from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import requests


logger = logging.getLogger("webui.weather")

CURRENT_FIELDS = (
    "temperature_2m",
    "relative_humidity_2m",
    "apparent_temperature",
    "weather_code",
    "wind_speed_10m",
)
HOURLY_FIELDS = ("temperature_2m", "precipitation_probability", "weather_code")
DAILY_FIELDS = (
    "temperature_2m_max",
    "temperature_2m_min",
    "weather_code",
    "sunrise",
    "sunset",
)

WEATHER_CODES = {
    0: "Clear sky",
    1: "Mainly clear",
    2: "Partly cloudy",
    3: "Overcast",
    45: "Fog",
    48: "Depositing rime fog",
    51: "Light drizzle",
    53: "Drizzle",
    55: "Dense drizzle",
    56: "Freezing drizzle",
    57: "Dense freezing drizzle",
    61: "Slight rain",
    63: "Rain",
    65: "Heavy rain",
    66: "Freezing rain",
    67: "Heavy freezing rain",
    71: "Slight snow",
    73: "Snow",
    75: "Heavy snow",
    77: "Snow grains",
    80: "Rain showers",
    81: "Heavy rain showers",
    82: "Violent rain showers",
    85: "Snow showers",
    86: "Heavy snow showers",
    95: "Thunderstorm",
    96: "Thunderstorm with hail",
    99: "Thunderstorm with heavy hail",
}


class WeatherError(RuntimeError):
    """Raised when the weather service cannot answer."""


class LocationNotFound(WeatherError):
    pass


class InvalidQuery(WeatherError):
    pass


@dataclass(frozen=True)
class Location:
    name: str
    latitude: float
    longitude: float
    country: str = ""
    timezone: str = "auto"

    @property
    def label(self) -> str:
        return f"{self.name}, {self.country}" if self.country else self.name


def describe_weather_code(code: Any) -> str:
    try:
        return WEATHER_CODES.get(int(code), "Unknown")
    except (TypeError, ValueError):
        return "Unknown"


class WeatherClient:
    """
    Thin wrapper over the Open-Meteo geocoding and forecast endpoints.
    """

    def __init__(self, settings: Dict[str, Any]) -> None:
        self.geocoding_url = settings["geocoding_url"]
        self.forecast_url = settings["forecast_url"]
        self.timeout = settings.get("timeout", 15)

    def _get(self, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        try:
            response = requests.get(url, params=params, timeout=self.timeout)
        except requests.RequestException as exc:
            raise WeatherError(f"Weather service unreachable: {exc}") from exc
        if response.status_code >= 400:
            raise WeatherError(f"Weather service returned {response.status_code}: {response.text}")
        try:
            data = response.json()
        except ValueError as exc:
            raise WeatherError("Weather service sent invalid JSON.") from exc
        if not isinstance(data, dict):
            raise WeatherError("Weather service sent an unexpected payload.")
        return data

    def geocode(self, city: str) -> Location:
        data = self._get(
            self.geocoding_url,
            {"name": city, "count": 1, "language": "en", "format": "json"},
        )
        results = data.get("results") or []
        if not results:
            raise LocationNotFound(f"No place called '{city}' was found.")
        best = results[0]
        return Location(
            name=best.get("name") or city,
            latitude=float(best["latitude"]),
            longitude=float(best["longitude"]),
            country=best.get("country") or "",
            timezone=best.get("timezone") or "auto",
        )

    def forecast(self, location: Location) -> Dict[str, Any]:
        params = {
            "latitude": location.latitude,
            "longitude": location.longitude,
            "current": ",".join(CURRENT_FIELDS),
            "hourly": ",".join(HOURLY_FIELDS),
            "daily": ",".join(DAILY_FIELDS),
            "timezone": location.timezone or "auto",
            "forecast_days": 7,
        }
        logger.debug("Fetching forecast for %s", location.label)
        return self._get(self.forecast_url, params)

    def lookup(
        self,
        *,
        city: Optional[str] = None,
        latitude: Optional[float] = None,
        longitude: Optional[float] = None,
    ) -> Dict[str, Any]:
        if city and city.strip():
            location = self.geocode(city.strip())
        elif latitude is not None and longitude is not None:
            if not (-90 <= latitude <= 90 and -180 <= longitude <= 180):
                raise InvalidQuery("Latitude or longitude out of range.")
            location = Location(
                name=f"{latitude:.4f}, {longitude:.4f}",
                latitude=latitude,
                longitude=longitude,
            )
        else:
            raise InvalidQuery("Give a city or both latitude and longitude.")
        return normalize_weather(self.forecast(location), location)


def _column(block: Dict[str, Any], key: str, index: int) -> Any:
    values = block.get(key) or []
    return values[index] if index < len(values) else None


def _current_hour(raw: Dict[str, Any], now: Optional[datetime]) -> str:
    # Open-Meteo hourly times look like "2024-05-01T13:00" in the place's local
    # time; the key is the "YYYY-MM-DDTHH" prefix of the current hour.
    stamp = (raw.get("current") or {}).get("time")
    if stamp:
        return str(stamp)[:13]
    if now is None:
        return ""
    offset = raw.get("utc_offset_seconds")
    if now.tzinfo is not None and isinstance(offset, (int, float)):
        now = now.astimezone(timezone(timedelta(seconds=offset)))
    return now.strftime("%Y-%m-%dT%H")


def normalize_weather(
    raw: Dict[str, Any],
    location: Location,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """
    Reshape an Open-Meteo forecast into current conditions, the next 24 hours
    and up to 7 days. Values keep Open-Meteo's metric units.
    """
    current_raw = raw.get("current") or {}
    hourly = raw.get("hourly") or {}
    daily = raw.get("daily") or {}

    current = {
        "time": current_raw.get("time"),
        "temperature": current_raw.get("temperature_2m"),
        "apparent_temperature": current_raw.get("apparent_temperature"),
        "humidity": current_raw.get("relative_humidity_2m"),
        "wind_speed": current_raw.get("wind_speed_10m"),
        "weather_code": current_raw.get("weather_code"),
        "description": describe_weather_code(current_raw.get("weather_code")),
        "sunrise": _column(daily, "sunrise", 0),
        "sunset": _column(daily, "sunset", 0),
    }

    times: List[str] = list(hourly.get("time") or [])
    hour_key = _current_hour(raw, now)
    start: Optional[int] = 0
    if hour_key:
        start = next((i for i, stamp in enumerate(times) if stamp[:13] >= hour_key), None)
    hourly24 = [] if start is None else [
        {
            "time": times[i],
            "temperature": _column(hourly, "temperature_2m", i),
            "precipitation_probability": _column(hourly, "precipitation_probability", i),
            "weather_code": _column(hourly, "weather_code", i),
            "description": describe_weather_code(_column(hourly, "weather_code", i)),
        }
        for i in range(start, min(start + 24, len(times)))
    ]

    days: List[str] = list(daily.get("time") or [])[:7]
    daily7 = [
        {
            "date": day,
            "min": _column(daily, "temperature_2m_min", i),
            "max": _column(daily, "temperature_2m_max", i),
            "weather_code": _column(daily, "weather_code", i),
            "description": describe_weather_code(_column(daily, "weather_code", i)),
            "sunrise": _column(daily, "sunrise", i),
            "sunset": _column(daily, "sunset", i),
        }
        for i, day in enumerate(days)
    ]

    generated = now or datetime.now(timezone.utc)
    return {
        "location": location.label,
        "place": asdict(location),
        "latitude": raw.get("latitude", location.latitude),
        "longitude": raw.get("longitude", location.longitude),
        "timezone": raw.get("timezone") or location.timezone,
        "generated_at": generated.isoformat(),
        "units": {
            "temperature": (raw.get("current_units") or {}).get("temperature_2m", "°C"),
            "wind_speed": (raw.get("current_units") or {}).get("wind_speed_10m", "km/h"),
        },
        "current": current,
        "hourly24": hourly24,
        "daily7": daily7,
    }
