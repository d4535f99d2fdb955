"""
Tenant-keyed snapshot cache shared by every polling view.

Snapshots live in Redis so every worker process reads and invalidates the same
entries. All keys start with the company id so one tenant can never read
another tenant's snapshot. Writes through the repository invalidate the whole
tenant. When Redis is not configured or unreachable the cache degrades to
loading straight from the database.
"""
from __future__ import annotations

import json
from typing import Any, Callable

import redis
import structlog
from flask import Flask, current_app

logger = structlog.get_logger(__name__)


def _identity(value: Any) -> Any:
    return value


class TenantSnapshotCache:
    def __init__(self, client: redis.Redis | None, ttl_seconds: float = 5.0):
        self.client = client
        self.ttl_seconds = ttl_seconds

    @property
    def enabled(self) -> bool:
        return self.client is not None and self.ttl_seconds > 0

    def _key(self, company_id: int, *parts: str) -> str:
        return f"company:{company_id}:" + ":".join(str(p) for p in parts)

    def get_or_load(
        self,
        company_id: int,
        name: str,
        loader: Callable[[], Any],
        dump: Callable[[Any], Any] = _identity,
        load: Callable[[Any], Any] = _identity,
    ) -> Any:
        """Return the cached snapshot ``name`` of a company, loading it on a miss.

        ``dump`` turns the loaded value into something JSON can encode and
        ``load`` rebuilds it from the decoded JSON.
        """
        if not self.enabled:
            return loader()
        key = self._key(company_id, "snapshot", name)
        try:
            raw = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("cache_get_failed", key=key, error=str(exc))
            return loader()
        if raw is not None:
            logger.debug("cache_hit", key=key)
            return load(json.loads(raw))

        value = loader()
        try:
            self.client.setex(key, max(1, int(round(self.ttl_seconds))), json.dumps(dump(value)))
        except redis.RedisError as exc:
            logger.warning("cache_set_failed", key=key, error=str(exc))
        return value

    def invalidate(self, company_id: int) -> None:
        if self.client is None:
            return
        pattern = self._key(company_id, "*")
        try:
            keys = list(self.client.scan_iter(match=pattern))
            if keys:
                self.client.delete(*keys)
                logger.debug("cache_invalidated", company_id=company_id, keys=len(keys))
        except redis.RedisError as exc:
            logger.warning("cache_invalidate_failed", company_id=company_id, error=str(exc))


def _connect(url: str) -> redis.Redis | None:
    client = redis.Redis.from_url(url, decode_responses=True)
    try:
        client.ping()
    except redis.RedisError as exc:
        logger.warning("cache_unavailable", url=url, error=str(exc))
        return None
    logger.info("cache_connected", url=url)
    return client


def init_cache(app: Flask, client: redis.Redis | None = None) -> TenantSnapshotCache:
    ttl = float(app.config.get("SNAPSHOT_CACHE_SECONDS", 5))
    url = app.config.get("REDIS_URL")
    if client is None and url and ttl > 0:
        client = _connect(url)
    cache = TenantSnapshotCache(client, ttl)
    app.extensions["snapshot_cache"] = cache
    return cache


def snapshot_cache() -> TenantSnapshotCache:
    return current_app.extensions["snapshot_cache"]
