"""
Cache Service — JSON values with a TTL, in Redis or in process.

The backend is picked once per process from REDIS_URL: a ``redis://`` or
``rediss://`` URL uses Redis, anything else (``memory://`` in development
and tests) uses a dict. A Redis server that does not answer PING at startup
also falls back to the dict so weather lookups keep working without it.

    cache_service.set_json("weather:40.71,-74.01:2024-07-15", payload, ttl=WEATHER_TTL)
    cache_service.get_json("weather:40.71,-74.01:2024-07-15")
"""

import json
import logging
import os
import threading
import time

import redis
from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

DEFAULT_TTL = 300
WEATHER_TTL = 24 * 60 * 60


class MemoryCache:
    """Redis-shaped subset (get/setex/delete/flushdb/ping) over a dict."""

    name = "memory"

    def __init__(self):
        self._data: dict[str, tuple[str, float]] = {}
        self._lock = threading.Lock()

    def get(self, key):
        with self._lock:
            entry = self._data.get(key)
            if entry is None:
                return None
            value, expires_at = entry
            if time.monotonic() >= expires_at:
                del self._data[key]
                return None
            return value

    def setex(self, key, ttl, value):
        with self._lock:
            self._data[key] = (value, time.monotonic() + ttl)

    def delete(self, key):
        with self._lock:
            return int(self._data.pop(key, None) is not None)

    def flushdb(self):
        with self._lock:
            self._data.clear()

    def ping(self):
        return True


_backend = None
_backend_lock = threading.Lock()


def _connect():
    url = current_app.config.get("REDIS_URL") if has_app_context() else os.getenv("REDIS_URL")
    if not url or not url.startswith(("redis://", "rediss://")):
        return MemoryCache()
    client = redis.from_url(url, decode_responses=True, socket_connect_timeout=2)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("Redis at %s unreachable, using in-process cache: %s",
                       url.rsplit("@", 1)[-1], exc)
        return MemoryCache()
    logger.info("Cache backend: Redis at %s", url.rsplit("@", 1)[-1])
    return client


def backend():
    global _backend
    if _backend is None:
        with _backend_lock:
            if _backend is None:
                _backend = _connect()
    return _backend


def backend_name():
    return getattr(backend(), "name", "redis")


def reset_backend():
    """Drop the chosen backend; the next call reconnects from the current config."""
    global _backend
    _backend = None


def get_json(key):
    raw = backend().get(key)
    if raw is None:
        return None
    try:
        return json.loads(raw)
    except (TypeError, ValueError):
        logger.warning("Dropping unreadable cache entry %s", key)
        backend().delete(key)
        return None


def set_json(key, value, ttl=DEFAULT_TTL):
    backend().setex(key, int(ttl), json.dumps(value, default=str))


def delete(key):
    return bool(backend().delete(key))


def clear_all():
    backend().flushdb()


def health_check():
    try:
        backend().ping()
    except redis.RedisError as exc:
        return {"status": "error", "backend": backend_name(), "detail": str(exc)}
    return {"status": "ok", "backend": backend_name()}
