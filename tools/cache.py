import json
import time
import redis
import os
from typing import Any, Dict, Optional
from loguru import logger

CACHE_TTL_MS = 5 * 60 * 1000
SNAPSHOT_CACHE_KEY = "initial-data-cache"

def _now_ms() -> int:
    return int(time.time() * 1000)

def _is_snapshot(data: Any) -> bool:
    return (
        isinstance(data, dict)
        and isinstance(data.get("contacts"), list)
        and isinstance(data.get("followUps"), list)
    )

class SnapshotCache:
    """Redis-backed persisted cache holding the last fetched snapshot with a fixed TTL."""

    def __init__(self, redis_url: Optional[str] = None, ttl_ms: int = CACHE_TTL_MS):
        """Initialize Redis connection."""
        self.ttl_ms = ttl_ms
        self._memory: Dict[str, str] = {}
        try:
            redis_url = redis_url or os.getenv("REDIS_URL", "redis://localhost:6379")
            self.r = redis.from_url(redis_url, decode_responses=True)
            # Test connection
            self.r.ping()
            logger.info("Redis connection established successfully")
        except Exception as e:
            logger.warning(f"Redis connection failed, snapshot cache will not survive restarts: {e}")
            self.r = None

    def _read(self, key: str) -> Optional[str]:
        if self.r:
            return self.r.get(f"cache:{key}")
        return self._memory.get(key)

    def _write(self, key: str, raw: str) -> None:
        if self.r:
            self.r.set(f"cache:{key}", raw)
        else:
            self._memory[key] = raw

    def clear(self, key: str) -> None:
        """Drop an entry."""
        try:
            if self.r:
                self.r.delete(f"cache:{key}")
            else:
                self._memory.pop(key, None)
        except Exception as e:
            logger.error(f"Failed to clear cache key {key}: {e}")

    def get(self, key: str) -> Optional[Dict[str, Any]]:
        """
        Read a cached snapshot.

        Expired and corrupt entries are deleted on read.

        Args:
            key: Cache key

        Returns:
            The stored ``{contacts, followUps}`` payload, or None when absent, expired or corrupt
        """
        try:
            raw = self._read(key)
        except UnicodeDecodeError as e:
            logger.error(f"Cache item for key {key} is not valid UTF-8: {e}")
            self.clear(key)
            return None
        except Exception as e:
            logger.error(f"Cache read failed for {key}: {e}")
            return None

        if raw is None:
            return None

        try:
            item = json.loads(raw)
            timestamp = item["timestamp"]
            data = item["data"]
            if not isinstance(timestamp, (int, float)) or not _is_snapshot(data):
                raise ValueError("cache entry does not hold a snapshot")
        except (ValueError, TypeError, KeyError) as e:
            logger.error(f"Failed to parse cache item for key {key}: {e}")
            self.clear(key)
            return None

        if _now_ms() - timestamp > self.ttl_ms:
            logger.info(f"Cache entry {key} expired")
            self.clear(key)
            return None

        return data

    def set(self, key: str, data: Dict[str, Any]) -> None:
        """Store a snapshot payload stamped with the current time."""
        item = {"timestamp": _now_ms(), "data": data}
        try:
            self._write(key, json.dumps(item))
        except Exception as e:
            logger.error(f"Failed to set cache item for key {key}: {e}")

def snapshot_to_payload(snapshot: Dict[str, Any]) -> Dict[str, Any]:
    """Cache payload shape: ``{contacts, followUps}``."""
    return {"contacts": snapshot["contacts"], "followUps": snapshot["follow_ups"]}

def payload_to_snapshot(payload: Dict[str, Any]) -> Dict[str, Any]:
    return {"contacts": payload["contacts"], "follow_ups": payload["followUps"]}
