"""Content-addressed cache for provider responses."""

import hashlib
import json
import re
from typing import Any, Dict, NamedTuple, Optional

import structlog

from evidence_research.cache.backends import (
    CacheBackend, FileBackend, MemoryBackend, NullBackend, RedisBackend,
)
from evidence_research.config.settings import Settings
from evidence_research.exceptions import CacheError
from evidence_research.monitoring_metrics import CACHE_LOOKUPS

logger = structlog.get_logger()

_WS = re.compile(r"\s+")


class CacheLookup(NamedTuple):
    payload: Any
    found: bool


MISS = CacheLookup(None, False)


def _normalize(value: Any) -> Any:
    if isinstance(value, str):
        return _WS.sub(" ", value).strip()
    if isinstance(value, dict):
        return {str(k): _normalize(v) for k, v in value.items() if v is not None}
    if isinstance(value, (list, tuple)):
        return [_normalize(v) for v in value]
    return value


def cache_key(params: Dict[str, Any]) -> str:
    """Stable SHA-256 of request parameters (None dropped, whitespace collapsed, keys sorted)."""
    blob = json.dumps(_normalize(params), sort_keys=True, separators=(",", ":"), ensure_ascii=False, default=str)
    return hashlib.sha256(blob.encode("utf-8")).hexdigest()


class CacheGateway:
    """Read/write provider payloads by category with per-category TTL.

    Storage failures never propagate: the first one is logged as a warning and
    the gateway answers every later lookup with a miss.
    """

    def __init__(self, backend: CacheBackend, ttls: Dict[str, int]):
        self.backend = backend
        self.ttls = dict(ttls)
        self.degraded = False

    def _ttl(self, category: str) -> int:
        return self.ttls.get(category, 0)

    def _degrade(self, op: str, error: CacheError) -> None:
        if not self.degraded:
            logger.warning("cache_degraded", backend=self.backend.name, op=op, error=str(error))
        self.degraded = True

    async def get(self, category: str, params: Dict[str, Any]) -> CacheLookup:
        ttl = self._ttl(category)
        if self.degraded or ttl <= 0:
            return MISS
        try:
            entry = await self.backend.read(category, cache_key(params), ttl)
        except CacheError as e:
            CACHE_LOOKUPS.labels(category=category, result="error").inc()
            self._degrade("get", e)
            return MISS
        if entry is None:
            CACHE_LOOKUPS.labels(category=category, result="miss").inc()
            return MISS
        CACHE_LOOKUPS.labels(category=category, result="hit").inc()
        return CacheLookup(entry.payload, True)

    async def put(self, category: str, params: Dict[str, Any], payload: Any) -> None:
        ttl = self._ttl(category)
        if self.degraded or ttl <= 0:
            return
        try:
            await self.backend.write(category, cache_key(params), payload, ttl)
        except CacheError as e:
            self._degrade("put", e)

    async def clear(self, category: Optional[str] = None) -> int:
        try:
            removed = await self.backend.clear(category)
        except CacheError as e:
            self._degrade("clear", e)
            return 0
        logger.info("cache_cleared", backend=self.backend.name, category=category or "*", removed=removed)
        return removed

    async def close(self) -> None:
        await self.backend.close()


def build_cache(settings: Settings) -> CacheGateway:
    """Create the gateway for the configured backend."""
    backend_name = settings.CACHE_BACKEND
    if backend_name == "file":
        backend: CacheBackend = FileBackend(settings.CACHE_DIR)
    elif backend_name == "memory":
        backend = MemoryBackend()
    elif backend_name == "redis":
        backend = RedisBackend(settings.REDIS_URL, prefix=settings.CACHE_KEY_PREFIX)
    else:
        backend = NullBackend()
    return CacheGateway(backend, settings.cache_ttls())
