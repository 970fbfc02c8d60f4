from .backends import CacheBackend, CacheEntry, FileBackend, MemoryBackend, NullBackend, RedisBackend
from .gateway import CacheGateway, CacheLookup, build_cache, cache_key

__all__ = [
    "CacheBackend",
    "CacheEntry",
    "FileBackend",
    "MemoryBackend",
    "NullBackend",
    "RedisBackend",
    "CacheGateway",
    "CacheLookup",
    "build_cache",
    "cache_key",
]
