from __future__ import annotations

import os
import socket
from dataclasses import dataclass
from typing import Any


def to_int(value: Any, default: int) -> int:
    try:
        if value is None or value == "":
            return default
        return int(float(str(value).strip()))
    except (TypeError, ValueError):
        return default


def _default_relayer_id() -> str:
    return f"bridge-relayer-{socket.gethostname()}-{os.getpid()}"


@dataclass(slots=True)
class StorageSettings:
    redis_url: str
    relayer_id: str
    lease_prefix: str
    heartbeat_prefix: str
    progress_prefix: str
    lease_ttl_seconds: int
    state_ttl_seconds: int

    @property
    def enabled(self) -> bool:
        return bool(self.redis_url)

    @classmethod
    def from_env(cls) -> "StorageSettings":
        return cls(
            redis_url=os.getenv("REDIS_URL", "").strip(),
            relayer_id=os.getenv("RELAYER_ID", "").strip() or _default_relayer_id(),
            lease_prefix=os.getenv("REDIS_LEASE_PREFIX", "relayer:lease"),
            heartbeat_prefix=os.getenv("REDIS_HEARTBEAT_PREFIX", "relayer:heartbeat"),
            progress_prefix=os.getenv("REDIS_PROGRESS_PREFIX", "relayer:progress"),
            lease_ttl_seconds=max(10, to_int(os.getenv("LEASE_TTL_SECONDS"), 180)),
            state_ttl_seconds=max(60, to_int(os.getenv("REDIS_STATE_TTL_SECONDS"), 86400)),
        )
