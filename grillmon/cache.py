"""
cache.py — Per-device local session cache for Grill Monitor.

The local cache is a fast mirror of the current session, used as the
fallback when the durable store (or the server) is unreachable. It also
holds the device identity that is stamped on durable records.

Two implementations of LocalSessionCache:
  FileSessionCache   one JSON slot file per device (default)
  RedisSessionCache  redis.asyncio client, for devices that already run Redis

Namespace conventions (RedisSessionCache):
  grill:session:{slot}   → session JSON           TTL = session max age (24h)
  grill:device:{slot}    → device identifier      no TTL

Design:
  - Best effort: every failure is logged and reported as None / False; a
    broken cache never fails a session mutation on its own
  - No locking: one process owns one slot, last local writer wins
  - Logs only session_id / device_id (not data values)
"""
import json
import logging
import os
import tempfile
import uuid
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from grillmon.session.schemas import GrillSession

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# TTL constants (seconds)
# ---------------------------------------------------------------------------
SESSION_TTL: int = 86400   # 24 hours, the session expiry age

# ---------------------------------------------------------------------------
# Key prefix constants
# ---------------------------------------------------------------------------
SESSION_PREFIX = "grill:session"
DEVICE_PREFIX = "grill:device"


# ---------------------------------------------------------------------------
# Key builders
# ---------------------------------------------------------------------------

def make_session_key(slot: str) -> str:
    """Build Redis key for the cached session: grill:session:{slot}"""
    return f"{SESSION_PREFIX}:{slot}"


def make_device_key(slot: str) -> str:
    """Build Redis key for the device identity: grill:device:{slot}"""
    return f"{DEVICE_PREFIX}:{slot}"


def new_device_id() -> str:
    return f"device-{uuid.uuid4().hex[:12]}"


# ---------------------------------------------------------------------------
# Interface
# ---------------------------------------------------------------------------

class LocalSessionCache(ABC):
    """Local key/value mirror of the current session plus device identity."""

    @abstractmethod
    async def get_session(self) -> Optional[GrillSession]:
        """Cached session, or None if missing / unreadable."""

    @abstractmethod
    async def set_session(self, session: GrillSession) -> bool:
        """Replace the cached session. Returns False on failure."""

    @abstractmethod
    async def delete_session(self) -> bool:
        """Drop the cached session. A missing entry is not an error."""

    @abstractmethod
    async def get_device_id(self) -> str:
        """Stable device identifier, created on first use."""

    @abstractmethod
    async def rotate_device_id(self) -> str:
        """Replace the device identifier (used when a cook is cleared)."""

    async def close(self) -> None:
        return None


# ---------------------------------------------------------------------------
# File slot
# ---------------------------------------------------------------------------

class FileSessionCache(LocalSessionCache):
    """
    Single JSON file {"session": ..., "deviceId": ...}, rewritten atomically.
    Reads and writes are small and synchronous.
    """

    def __init__(self, path: Path | str) -> None:
        self.path = Path(path)
        self._device_id: Optional[str] = None

    def _read(self) -> dict:
        try:
            data = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            logger.warning("Unreadable local cache %s: %s", self.path, exc)
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> bool:
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(dir=self.path.parent, prefix=".cache-")
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(data, fh)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.warning("Local cache write failed %s: %s", self.path, exc)
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            return False
        return True

    async def get_session(self) -> Optional[GrillSession]:
        raw = self._read().get("session")
        if raw is None:
            return None
        try:
            return GrillSession.model_validate(raw)
        except ValueError as exc:
            logger.warning("Discarding malformed cached session: %s", exc)
            return None

    async def set_session(self, session: GrillSession) -> bool:
        data = self._read()
        data["session"] = session.to_wire()
        ok = self._write(data)
        if ok:
            logger.debug("Local cache updated session_id=%s", session.id)
        return ok

    async def delete_session(self) -> bool:
        data = self._read()
        if "session" not in data:
            return True
        data.pop("session")
        return self._write(data)

    async def get_device_id(self) -> str:
        if self._device_id is None:
            stored = self._read().get("deviceId")
            if isinstance(stored, str) and stored:
                self._device_id = stored
            else:
                self._device_id = await self.rotate_device_id()
        return self._device_id

    async def rotate_device_id(self) -> str:
        device_id = new_device_id()
        data = self._read()
        data["deviceId"] = device_id
        self._write(data)
        self._device_id = device_id
        logger.info("Device identity set device_id=%s", device_id)
        return device_id


# ---------------------------------------------------------------------------
# Redis slot
# ---------------------------------------------------------------------------

async def create_redis_client(url: str) -> aioredis.Redis:
    """
    Create an async Redis client and verify connectivity with PING.
    Called once at startup when local_cache_backend == "redis".
    """
    client = aioredis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
        max_connections=10,
    )
    await client.ping()
    logger.info("Redis local cache connected at %s", url)
    return client


class RedisSessionCache(LocalSessionCache):
    """Session slot in Redis with TTL equal to the session expiry age."""

    def __init__(self, client: aioredis.Redis, slot: str = "default", ttl: int = SESSION_TTL) -> None:
        self._client = client
        self._slot = slot
        self._ttl = ttl
        self._device_id: Optional[str] = None

    async def get_session(self) -> Optional[GrillSession]:
        try:
            raw = await self._client.get(make_session_key(self._slot))
        except (RedisError, OSError) as exc:
            logger.warning("Redis cache read failed slot=%s: %s", self._slot, exc)
            return None
        if raw is None:
            return None
        try:
            return GrillSession.model_validate_json(raw)
        except ValueError as exc:
            logger.warning("Discarding malformed cached session slot=%s: %s", self._slot, exc)
            return None

    async def set_session(self, session: GrillSession) -> bool:
        key = make_session_key(self._slot)
        try:
            await self._client.setex(key, self._ttl, session.model_dump_json(by_alias=True))
        except (RedisError, OSError) as exc:
            logger.warning("Redis cache write failed session_id=%s: %s", session.id, exc)
            return False
        logger.debug("Session cached session_id=%s ttl=%ds", session.id, self._ttl)
        return True

    async def delete_session(self) -> bool:
        try:
            await self._client.delete(make_session_key(self._slot))
        except (RedisError, OSError) as exc:
            logger.warning("Redis cache delete failed slot=%s: %s", self._slot, exc)
            return False
        return True

    async def get_device_id(self) -> str:
        if self._device_id is not None:
            return self._device_id
        try:
            stored = await self._client.get(make_device_key(self._slot))
        except (RedisError, OSError) as exc:
            logger.warning("Redis device id read failed slot=%s: %s", self._slot, exc)
            stored = None
        if stored:
            self._device_id = stored
            return stored
        return await self.rotate_device_id()

    async def rotate_device_id(self) -> str:
        device_id = new_device_id()
        try:
            await self._client.set(make_device_key(self._slot), device_id)
        except (RedisError, OSError) as exc:
            logger.warning("Redis device id write failed slot=%s: %s", self._slot, exc)
        self._device_id = device_id
        logger.info("Device identity set device_id=%s", device_id)
        return device_id

    async def close(self) -> None:
        await self._client.aclose()
        logger.info("Redis local cache closed")


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------

async def open_local_cache(
    backend: str,
    path: Path | str,
    redis_url: str,
    slot: str = "default",
) -> LocalSessionCache:
    """
    Build the configured cache. A Redis cache that cannot be reached at
    startup falls back to the file slot so the process still comes up.
    """
    if backend == "redis":
        try:
            client = await create_redis_client(redis_url)
        except (RedisError, OSError) as exc:
            logger.warning("Redis unavailable (%s), using file cache at %s", exc, path)
        else:
            return RedisSessionCache(client, slot=slot)
    return FileSessionCache(path)
