"""
Weather API client (Open-Meteo).

All outbound weather calls go through ``WeatherClient``:
  - one GET per report date, 10 s timeout, imperial units
  - WMO weather code → report condition mapping
  - in-process limiter: WEATHER_RATE_LIMIT requests per hour (default 100)
  - retry with exponential backoff (1 s then 2 s), 3 attempts;
    rate-limit errors are raised immediately, never retried
  - results cached for 24 h keyed by location (2 dp) + date

Testability: pass a mock ``session`` (and a no-op ``sleep``) to
WeatherClient() instead of letting it create a real requests.Session.
"""

from __future__ import annotations

import logging
import math
import threading
import time
from datetime import date, datetime, timezone
from typing import Any, Callable

import requests
from flask import current_app

from app.services import cache_service

logger = logging.getLogger(__name__)

_DEFAULT_URL = "https://api.open-meteo.com/v1/forecast"
_DEFAULT_TIMEOUT = 10
_RETRY_MAX = 3
_DAILY_FIELDS = (
    "temperature_2m_max,temperature_2m_min,precipitation_sum,"
    "windspeed_10m_max,relative_humidity_2m_max,weathercode"
)


class WeatherAPIError(Exception):
    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class WeatherRateLimitError(Exception):
    def __init__(self, retry_after: int):
        super().__init__(
            f"Weather API rate limit exceeded. Retry after {retry_after} seconds.")
        self.retry_after = retry_after


class RateLimiter:
    """Fixed-window request counter shared by every caller in the process."""

    def __init__(self, max_requests: int = 100, window_seconds: int = 3600):
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._lock = threading.Lock()
        self._count = 0
        self._reset_at = 0.0

    def check(self) -> tuple[bool, int | None]:
        """Count one request. Returns (allowed, retry_after_seconds)."""
        now = time.monotonic()
        with self._lock:
            if now >= self._reset_at:
                self._count = 1
                self._reset_at = now + self.window_seconds
                return True, None
            if self._count < self.max_requests:
                self._count += 1
                return True, None
            return False, math.ceil(self._reset_at - now)

    def stats(self) -> dict[str, Any]:
        with self._lock:
            return {"requests": self._count, "limit": self.max_requests,
                    "resets_in": max(0, math.ceil(self._reset_at - time.monotonic()))}


def map_weather_code(code: int | None) -> str:
    """WMO weather interpretation code → clear/partly_cloudy/overcast/rain/snow/fog."""
    if code is None or code == 0:
        return "clear"
    if code in (1, 2):
        return "partly_cloudy"
    if code == 3:
        return "overcast"
    if code in (45, 48):
        return "fog"
    if 51 <= code <= 67 or 80 <= code <= 82:
        return "rain"
    if 71 <= code <= 77 or code in (85, 86):
        return "snow"
    if code >= 95:
        return "rain"
    return "clear"


def cache_key(latitude: float, longitude: float, day: date) -> str:
    return f"weather:{round(latitude, 2)},{round(longitude, 2)}:{day.isoformat()}"


class WeatherClient:
    """Open-Meteo client. Module-level singleton: ``weather_client``."""

    def __init__(self, session: requests.Session | None = None,
                 sleep: Callable[[float], None] | None = None,
                 limiter: RateLimiter | None = None) -> None:
        self._session = session
        self._sleep = sleep or time.sleep
        self._limiter = limiter

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    @property
    def limiter(self) -> RateLimiter:
        if self._limiter is None:
            self._limiter = RateLimiter(current_app.config.get("WEATHER_RATE_LIMIT", 100))
        return self._limiter

    # ── single request ──────────────────────────────────────────────────

    def fetch(self, latitude: float, longitude: float, day: date) -> dict[str, Any]:
        """One API call. Raises WeatherAPIError / WeatherRateLimitError."""
        allowed, retry_after = self.limiter.check()
        if not allowed:
            raise WeatherRateLimitError(retry_after or 3600)

        cfg = current_app.config
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "start_date": day.isoformat(),
            "end_date": day.isoformat(),
            "daily": _DAILY_FIELDS,
            "temperature_unit": "fahrenheit",
            "windspeed_unit": "mph",
            "precipitation_unit": "inch",
            "timezone": "auto",
        }
        if cfg.get("WEATHER_API_KEY"):
            params["apikey"] = cfg["WEATHER_API_KEY"]

        try:
            resp = self.session.get(cfg.get("WEATHER_API_URL") or _DEFAULT_URL,
                                    params=params, timeout=_DEFAULT_TIMEOUT)
        except requests.Timeout as exc:
            raise WeatherAPIError("Weather API request timed out") from exc
        except requests.RequestException as exc:
            raise WeatherAPIError(f"Weather API request failed: {exc}") from exc

        if not resp.ok:
            raise WeatherAPIError(f"Weather API request failed: {resp.reason}",
                                  status_code=resp.status_code)
        try:
            payload = resp.json()
        except ValueError as exc:
            raise WeatherAPIError("Weather API returned invalid JSON") from exc

        daily = payload.get("daily") or {}
        if not daily.get("time"):
            raise WeatherAPIError("No weather data available for the requested date")
        return _transform(daily)

    # ── retry ───────────────────────────────────────────────────────────

    def fetch_with_retry(self, latitude: float, longitude: float, day: date,
                         max_retries: int = _RETRY_MAX) -> dict[str, Any]:
        last_error: WeatherAPIError | None = None
        for attempt in range(max_retries):
            try:
                return self.fetch(latitude, longitude, day)
            except WeatherAPIError as exc:
                last_error = exc
                logger.warning("Weather fetch attempt %d/%d failed: %s",
                               attempt + 1, max_retries, exc)
                if attempt < max_retries - 1:
                    self._sleep(2 ** attempt)
        raise last_error or WeatherAPIError("Failed to fetch weather data after retries")

    # ── cached entry point ──────────────────────────────────────────────

    def get_weather(self, latitude: float, longitude: float, day: date) -> dict[str, Any]:
        """Cache → API with retry. Cache hits report ``source="cache"`` and
        keep their original ``fetched_at``."""
        key = cache_key(latitude, longitude, day)
        cached = cache_service.get_json(key)
        if cached is not None:
            return {**cached, "source": "cache"}
        weather = self.fetch_with_retry(latitude, longitude, day)
        cache_service.set_json(key, weather, ttl=cache_service.WEATHER_TTL)
        return weather


def _first(daily: dict, field: str) -> float:
    values = daily.get(field) or [None]
    return values[0] if values[0] is not None else 0


def _transform(daily: dict) -> dict[str, Any]:
    return {
        "condition": map_weather_code((daily.get("weathercode") or [None])[0]),
        "temperature_high": round(_first(daily, "temperature_2m_max"), 2),
        "temperature_low": round(_first(daily, "temperature_2m_min"), 2),
        "precipitation": round(_first(daily, "precipitation_sum"), 2),
        "wind_speed": round(_first(daily, "windspeed_10m_max"), 2),
        "humidity": round(_first(daily, "relative_humidity_2m_max")),
        "source": "api",
        "fetched_at": datetime.now(timezone.utc).isoformat(),
    }


weather_client = WeatherClient()
