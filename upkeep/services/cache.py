"""Tenant-namespaced redis cache for analytics rollups.

Every key carries the tenant id and the caller's scope signature, so two users
with different branch access never share an entry. Redis being unavailable only
costs a recomputation.
"""

from __future__ import annotations

import hashlib
import json
import logging
from collections.abc import Callable
from datetime import date, datetime
from decimal import Decimal
from typing import Any

import redis

from upkeep.core.config import Config, get_config

logger = logging.getLogger(__name__)

KEY_PREFIX = "upkeep:analytics"


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return float(value)
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _params_hash(params: dict[str, Any]) -> str:
    raw = json.dumps(params, sort_keys=True, default=_json_default)
    return hashlib.sha1(raw.encode("utf-8")).hexdigest()[:16]


class AnalyticsCache:
    """Read-through cache; invalidation bumps a per-tenant generation counter."""

    def __init__(self, client: Any | None = None, config: Config | None = None) -> None:
        self.config = config or get_config()
        self.ttl_seconds = self.config.ANALYTICS_CACHE_TTL_SECONDS
        self._client = client
        self.enabled = self.config.ANALYTICS_CACHE_ENABLED or client is not None

    @property
    def client(self) -> Any:
        if self._client is None:
            self._client = redis.Redis.from_url(self.config.REDIS_URL, decode_responses=True, socket_timeout=2)
        return self._client

    def ping(self) -> bool:
        try:
            return bool(self.client.ping())
        except redis.RedisError as exc:
            logger.warning("cache.unavailable", extra={"event": "cache.unavailable", "error": str(exc)})
            return False

    def _generation_key(self, tenant_id: int) -> str:
        return f"{KEY_PREFIX}:t{tenant_id}:generation"

    def build_key(self, tenant_id: int, scope_signature: str, name: str, params: dict[str, Any]) -> str:
        generation = self.client.get(self._generation_key(tenant_id)) or "0"
        return f"{KEY_PREFIX}:t{tenant_id}:g{generation}:{name}:{scope_signature}:{_params_hash(params)}"

    def remember(
        self,
        tenant_id: int,
        scope_signature: str,
        name: str,
        params: dict[str, Any],
        compute: Callable[[], dict[str, Any]],
    ) -> dict[str, Any]:
        if not self.enabled or self.ttl_seconds == 0:
            return compute()
        try:
            key = self.build_key(tenant_id, scope_signature, name, params)
            cached = self.client.get(key)
        except redis.RedisError as exc:
            logger.warning("cache.unavailable", extra={"event": "cache.unavailable", "error": str(exc)})
            return compute()
        if cached is not None:
            return json.loads(cached)

        value = compute()
        try:
            self.client.setex(key, self.ttl_seconds, json.dumps(value, default=_json_default))
        except redis.RedisError as exc:
            logger.warning("cache.write_failed", extra={"event": "cache.write_failed", "key": key, "error": str(exc)})
        return value

    def invalidate_tenant(self, tenant_id: int) -> None:
        if not self.enabled:
            return
        try:
            self.client.incr(self._generation_key(tenant_id))
        except redis.RedisError as exc:
            logger.warning(
                "cache.invalidate_failed",
                extra={"event": "cache.invalidate_failed", "tenant_id": tenant_id, "error": str(exc)},
            )
