"""
Cache backend selection and JSON helpers.
"""

import redis

from app.services import cache_service


class DownRedis:
    def ping(self):
        raise redis.ConnectionError("Connection refused")


def test_memory_backend_under_tests():
    assert cache_service.backend_name() == "memory"
    assert cache_service.health_check() == {"status": "ok", "backend": "memory"}


def test_json_round_trip_and_delete():
    cache_service.set_json("weather:1,2:2024-07-15", {"condition": "rain", "humidity": 80})
    assert cache_service.get_json("weather:1,2:2024-07-15") == {"condition": "rain",
                                                                 "humidity": 80}
    assert cache_service.delete("weather:1,2:2024-07-15") is True
    assert cache_service.delete("weather:1,2:2024-07-15") is False
    assert cache_service.get_json("weather:1,2:2024-07-15") is None


def test_expired_entry_is_gone():
    cache_service.set_json("k", 1, ttl=0)
    assert cache_service.get_json("k") is None


def test_unreadable_entry_is_dropped():
    cache_service.backend().setex("k", 60, "{not json")
    assert cache_service.get_json("k") is None
    assert cache_service.backend().get("k") is None


def test_unreachable_redis_falls_back(app, monkeypatch):
    monkeypatch.setitem(app.config, "REDIS_URL", "redis://cache.internal:6379/0")
    monkeypatch.setattr(redis, "from_url", lambda url, **kwargs: DownRedis())
    cache_service.reset_backend()
    assert cache_service.backend_name() == "memory"
