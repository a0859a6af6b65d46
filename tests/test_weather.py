"""
Weather client tests — no network: a fake session stands in for requests
and a recording ``sleep`` replaces the backoff delay.
"""

from datetime import date

import pytest
import requests

from app.integrations.weather import (
    RateLimiter,
    WeatherAPIError,
    WeatherClient,
    WeatherRateLimitError,
    cache_key,
    map_weather_code,
)
from app.services import cache_service

DAY = date(2024, 7, 15)

DAILY = {
    "time": ["2024-07-15"],
    "temperature_2m_max": [91.44],
    "temperature_2m_min": [70.2],
    "precipitation_sum": [0.12],
    "windspeed_10m_max": [12.3],
    "relative_humidity_2m_max": [78.4],
    "weathercode": [61],
}


class FakeResponse:
    def __init__(self, payload=None, status_code=200, reason="OK"):
        self._payload = payload
        self.status_code = status_code
        self.reason = reason
        self.ok = status_code < 400

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class FakeSession:
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def get(self, url, params=None, timeout=None):
        self.calls.append({"url": url, "params": params, "timeout": timeout})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item


@pytest.fixture()
def sleeps():
    return []


def _client(session, sleeps, limiter=None):
    return WeatherClient(session=session, sleep=sleeps.append,
                         limiter=limiter or RateLimiter(100))


class TestWeatherCodes:
    @pytest.mark.parametrize("code, condition", [
        (None, "clear"), (0, "clear"), (2, "partly_cloudy"), (3, "overcast"),
        (45, "fog"), (61, "rain"), (81, "rain"), (73, "snow"), (86, "snow"), (95, "rain"),
    ])
    def test_map_weather_code(self, code, condition):
        assert map_weather_code(code) == condition

    def test_cache_key_rounds_coordinates(self):
        assert cache_key(40.712776, -74.005974, DAY) == "weather:40.71,-74.01:2024-07-15"


class TestFetch:
    def test_transforms_daily_payload(self, sleeps):
        session = FakeSession(FakeResponse({"daily": DAILY}))
        data = _client(session, sleeps).fetch(40.7, -74.0, DAY)
        assert data["condition"] == "rain"
        assert data["temperature_high"] == 91.44
        assert data["humidity"] == 78
        assert data["source"] == "api"

        params = session.calls[0]["params"]
        assert params["start_date"] == params["end_date"] == "2024-07-15"
        assert params["temperature_unit"] == "fahrenheit"
        assert session.calls[0]["timeout"] == 10

    def test_missing_values_default_to_zero(self, sleeps):
        daily = dict(DAILY, precipitation_sum=[None], weathercode=[None])
        data = _client(FakeSession(FakeResponse({"daily": daily})), sleeps).fetch(1, 1, DAY)
        assert data["precipitation"] == 0
        assert data["condition"] == "clear"

    def test_empty_daily_is_an_error(self, sleeps):
        with pytest.raises(WeatherAPIError, match="No weather data"):
            _client(FakeSession(FakeResponse({"daily": {}})), sleeps).fetch(1, 1, DAY)

    def test_http_error_keeps_status(self, sleeps):
        session = FakeSession(FakeResponse(status_code=502, reason="Bad Gateway"))
        with pytest.raises(WeatherAPIError) as exc:
            _client(session, sleeps).fetch(1, 1, DAY)
        assert exc.value.status_code == 502

    def test_timeout(self, sleeps):
        session = FakeSession(requests.Timeout())
        with pytest.raises(WeatherAPIError, match="timed out"):
            _client(session, sleeps).fetch(1, 1, DAY)


class TestRetry:
    def test_retries_with_backoff_then_succeeds(self, sleeps):
        session = FakeSession(requests.ConnectionError("reset"),
                              FakeResponse(status_code=500, reason="Server Error"),
                              FakeResponse({"daily": DAILY}))
        data = _client(session, sleeps).fetch_with_retry(1, 1, DAY)
        assert data["condition"] == "rain"
        assert sleeps == [1, 2]

    def test_gives_up_after_three_attempts(self, sleeps):
        session = FakeSession(*[FakeResponse(status_code=503, reason="Unavailable")] * 3)
        with pytest.raises(WeatherAPIError):
            _client(session, sleeps).fetch_with_retry(1, 1, DAY)
        assert len(session.calls) == 3
        assert sleeps == [1, 2]

    def test_rate_limit_is_not_retried(self, sleeps):
        limiter = RateLimiter(max_requests=1)
        client = _client(FakeSession(FakeResponse({"daily": DAILY})), sleeps, limiter)
        client.fetch(1, 1, DAY)
        with pytest.raises(WeatherRateLimitError) as exc:
            client.fetch_with_retry(1, 1, DAY)
        assert 0 < exc.value.retry_after <= 3600
        assert sleeps == []


class TestRateLimiter:
    def test_window_counts_requests(self):
        limiter = RateLimiter(max_requests=2, window_seconds=60)
        assert limiter.check() == (True, None)
        assert limiter.check() == (True, None)
        allowed, retry_after = limiter.check()
        assert allowed is False
        assert retry_after <= 60
        assert limiter.stats()["requests"] == 2


class TestCache:
    def test_second_lookup_hits_cache(self, sleeps):
        session = FakeSession(FakeResponse({"daily": DAILY}))
        client = _client(session, sleeps)
        first = client.get_weather(40.7128, -74.006, DAY)
        second = client.get_weather(40.7128, -74.006, DAY)
        assert first["source"] == "api"
        assert second["source"] == "cache"
        assert second["fetched_at"] == first["fetched_at"]
        assert len(session.calls) == 1
        assert cache_service.get_json(cache_key(40.7128, -74.006, DAY)) is not None
