from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from typing import Any

from redis import asyncio as redis
from redis.asyncio.client import Redis

from relayer.common import log_event

from .settings import StorageSettings

_REFRESH_LEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('expire', KEYS[1], ARGV[2])
end
return 0
"""

_RELEASE_LEASE_SCRIPT = """
if redis.call('get', KEYS[1]) == ARGV[1] then
  return redis.call('del', KEYS[1])
end
return 0
"""


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _encode_field(value: Any) -> str:
    """Flatten one snapshot value into a hash field.

    Counter and signature lists are comma-joined so they stay readable from
    ``redis-cli HGETALL``.
    """
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        return ",".join(str(item) for item in value)
    if isinstance(value, dict):
        return json.dumps(value, separators=(",", ":"), default=str)
    return str(value)


class RelayStateStore:
    """Redis coordination for one watched account.

    Holds the single-flight lease that keeps two relayer processes from
    relaying the same account, and publishes heartbeat/progress snapshots.
    None of this is relay state: progress is always re-read from the
    destination ledger.
    """

    def __init__(
        self,
        settings: StorageSettings,
        logger: logging.Logger,
        *,
        watched_account: str,
        client: Redis | None = None,
    ) -> None:
        self.settings = settings
        self._logger = logger
        self._watched_account = watched_account
        self._redis: Redis | None = client

    @property
    def owner_id(self) -> str:
        return self.settings.relayer_id

    @property
    def lease_key(self) -> str:
        return f"{self.settings.lease_prefix}:{self._watched_account}"

    @property
    def heartbeat_key(self) -> str:
        return f"{self.settings.heartbeat_prefix}:{self._watched_account}"

    @property
    def progress_key(self) -> str:
        return f"{self.settings.progress_prefix}:{self._watched_account}"

    def _require_redis(self) -> Redis:
        if self._redis is None:
            raise RuntimeError("Redis client is not initialized.")
        return self._redis

    async def connect(self) -> None:
        if self._redis is None:
            self._redis = redis.from_url(self.settings.redis_url, decode_responses=True)
        await self._redis.ping()
        log_event(
            self._logger,
            level="info",
            event="redis_connected",
            message="Connected to Redis",
            relayer_id=self.owner_id,
        )

    async def close(self) -> None:
        if self._redis is None:
            return
        await self._redis.aclose()
        self._redis = None

    async def acquire_lease(self) -> bool:
        redis_client = self._require_redis()
        ttl_seconds = max(1, self.settings.lease_ttl_seconds)
        acquired = await redis_client.set(self.lease_key, self.owner_id, ex=ttl_seconds, nx=True)
        if acquired:
            log_event(
                self._logger,
                level="info",
                event="lease_acquired",
                message="Relay lease acquired",
                lease_key=self.lease_key,
                relayer_id=self.owner_id,
            )
            return True
        return await self.refresh_lease()

    async def refresh_lease(self) -> bool:
        redis_client = self._require_redis()
        refreshed = await redis_client.eval(
            _REFRESH_LEASE_SCRIPT,
            1,
            self.lease_key,
            self.owner_id,
            str(max(1, self.settings.lease_ttl_seconds)),
        )
        return bool(refreshed)

    async def release_lease(self) -> bool:
        redis_client = self._require_redis()
        deleted = await redis_client.eval(_RELEASE_LEASE_SCRIPT, 1, self.lease_key, self.owner_id)
        return bool(deleted)

    async def get_lease_holder(self) -> str | None:
        return await self._require_redis().get(self.lease_key)

    async def update_heartbeat(self, *, phase: str) -> None:
        redis_client = self._require_redis()
        await redis_client.hset(
            self.heartbeat_key,
            mapping={
                "relayer_id": self.owner_id,
                "phase": phase,
                "updated_at": _now_iso(),
            },
        )
        await redis_client.expire(self.heartbeat_key, self.settings.state_ttl_seconds)

    async def record_progress(self, snapshot: dict[str, Any]) -> None:
        redis_client = self._require_redis()
        mapping = {str(key): _encode_field(value) for key, value in snapshot.items()}
        mapping["relayer_id"] = self.owner_id
        mapping["updated_at"] = _now_iso()
        await redis_client.hset(self.progress_key, mapping=mapping)
        await redis_client.expire(self.progress_key, self.settings.state_ttl_seconds)
