"""Storage backends for the cache gateway.

Every backend stores JSON-serializable payloads under (category, key) with a
per-write TTL. Storage failures surface as CacheError; the gateway decides how
to degrade.
"""

import asyncio
import json
import os
import shutil
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

import redis.asyncio as aioredis
import structlog
from redis.exceptions import RedisError

from evidence_research.exceptions import CacheError
from evidence_research.utils.file_ops import atomic_write_text

logger = structlog.get_logger()


@dataclass
class CacheEntry:
    key: str
    category: str
    payload: Any
    written_at: float


class CacheBackend:
    """Interface implemented by all cache stores"""

    name = "base"

    async def read(self, category: str, key: str, ttl: int) -> Optional[CacheEntry]:
        raise NotImplementedError

    async def write(self, category: str, key: str, payload: Any, ttl: int) -> None:
        raise NotImplementedError

    async def clear(self, category: Optional[str] = None) -> int:
        raise NotImplementedError

    async def close(self) -> None:
        return None


class NullBackend(CacheBackend):
    """Cache disabled: every read misses, writes are dropped"""

    name = "disabled"

    async def read(self, category, key, ttl):
        return None

    async def write(self, category, key, payload, ttl):
        return None

    async def clear(self, category=None):
        return 0


class MemoryBackend(CacheBackend):
    """Process-local TTL dictionary"""

    name = "memory"

    def __init__(self, clock: Callable[[], float] = time.time):
        self._store: Dict[Tuple[str, str], CacheEntry] = {}
        self._clock = clock

    async def read(self, category, key, ttl):
        entry = self._store.get((category, key))
        if entry is None:
            return None
        if self._clock() - entry.written_at >= ttl:
            # Expired entries are purged on read
            del self._store[(category, key)]
            return None
        return entry

    async def write(self, category, key, payload, ttl):
        self._store[(category, key)] = CacheEntry(key, category, payload, self._clock())

    async def clear(self, category=None):
        doomed = [k for k in self._store if category is None or k[0] == category]
        for k in doomed:
            del self._store[k]
        return len(doomed)

    def size(self) -> int:
        return len(self._store)


class FileBackend(CacheBackend):
    """One JSON file per entry under <root>/<category>/<key>.json, TTL by mtime"""

    name = "file"

    def __init__(self, root: str, clock: Callable[[], float] = time.time):
        self.root = root
        self._clock = clock

    def _path(self, category: str, key: str) -> str:
        return os.path.join(self.root, category, f"{key}.json")

    def _purge(self, path: str) -> None:
        try:
            os.unlink(path)
        except FileNotFoundError:
            pass
        except OSError as e:
            raise CacheError(f"purge failed for {path}: {e}") from e

    def _read_sync(self, category: str, key: str, ttl: int) -> Optional[CacheEntry]:
        path = self._path(category, key)
        try:
            mtime = os.path.getmtime(path)
        except FileNotFoundError:
            return None
        except OSError as e:
            raise CacheError(f"stat failed for {path}: {e}") from e

        if self._clock() - mtime >= ttl:
            self._purge(path)
            return None

        try:
            with open(path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except FileNotFoundError:
            return None
        except ValueError:
            # Undecodable bytes or malformed JSON
            data = None
        except OSError as e:
            raise CacheError(f"read failed for {path}: {e}") from e

        if not isinstance(data, dict):
            # A torn or foreign file is a miss, not a storage failure
            logger.debug("cache_entry_corrupt", path=path)
            self._purge(path)
            return None
        return CacheEntry(key, category, data.get("payload"), data.get("ts", mtime))

    def _write_sync(self, category: str, key: str, payload: Any) -> None:
        path = self._path(category, key)
        try:
            body = json.dumps({"ts": self._clock(), "category": category, "payload": payload})
        except (TypeError, ValueError) as e:
            raise CacheError(f"payload for {category}/{key} is not JSON serializable: {e}") from e
        try:
            atomic_write_text(path, body)
        except OSError as e:
            raise CacheError(f"write failed for {path}: {e}") from e

    def _clear_sync(self, category: Optional[str]) -> int:
        target = os.path.join(self.root, category) if category else self.root
        if not os.path.isdir(target):
            return 0
        count = sum(len(files) for _, _, files in os.walk(target))
        try:
            shutil.rmtree(target)
        except OSError as e:
            raise CacheError(f"clear failed for {target}: {e}") from e
        return count

    async def read(self, category, key, ttl):
        return await asyncio.to_thread(self._read_sync, category, key, ttl)

    async def write(self, category, key, payload, ttl):
        await asyncio.to_thread(self._write_sync, category, key, payload)

    async def clear(self, category=None):
        return await asyncio.to_thread(self._clear_sync, category)


class RedisBackend(CacheBackend):
    """Redis store using SETEX so the server evicts expired entries"""

    name = "redis"

    def __init__(self, redis_url: str, prefix: str = "evidence", client: Optional[aioredis.Redis] = None):
        self.prefix = prefix
        self.redis_client = client or aioredis.from_url(
            redis_url,
            decode_responses=True,
            retry_on_timeout=True,
            health_check_interval=30,
        )

    def _key(self, category: str, key: str) -> str:
        return f"{self.prefix}:{category}:{key}"

    async def read(self, category, key, ttl):
        try:
            value = await self.redis_client.get(self._key(category, key))
        except RedisError as e:
            raise CacheError(f"redis get failed: {e}") from e
        if not value:
            return None
        try:
            data = json.loads(value)
        except ValueError:
            data = None
        if not isinstance(data, dict):
            logger.debug("cache_entry_corrupt", key=self._key(category, key))
            try:
                await self.redis_client.delete(self._key(category, key))
            except RedisError as e:
                raise CacheError(f"redis delete failed: {e}") from e
            return None
        return CacheEntry(key, category, data.get("payload"), data.get("ts", 0.0))

    async def write(self, category, key, payload, ttl):
        try:
            body = json.dumps({"ts": time.time(), "category": category, "payload": payload})
        except (TypeError, ValueError) as e:
            raise CacheError(f"payload for {category}/{key} is not JSON serializable: {e}") from e
        try:
            await self.redis_client.setex(self._key(category, key), ttl, body)
        except RedisError as e:
            raise CacheError(f"redis setex failed: {e}") from e

    async def clear(self, category=None):
        pattern = f"{self.prefix}:{category}:*" if category else f"{self.prefix}:*"
        deleted = 0
        try:
            async for k in self.redis_client.scan_iter(match=pattern):
                deleted += await self.redis_client.delete(k)
        except RedisError as e:
            raise CacheError(f"redis clear failed: {e}") from e
        return deleted

    async def close(self):
        await self.redis_client.aclose()
