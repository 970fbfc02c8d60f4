"""Test the cache gateway and its storage backends."""

import os

import pytest
from unittest.mock import AsyncMock, MagicMock
from redis.exceptions import ConnectionError as RedisConnectionError

from evidence_research.cache import CacheGateway, build_cache, cache_key
from evidence_research.cache.backends import FileBackend, MemoryBackend, NullBackend, RedisBackend
from evidence_research.exceptions import CacheError, ConfigurationError

from conftest import FakeClock, make_settings

TTLS = {"search": 60, "answer": 60, "llm": 0}


def test_cache_key_normalizes_params():
    a = cache_key({"query": "solid  state\nbatteries ", "depth": "basic", "domains": None})
    b = cache_key({"depth": "basic", "query": "solid state batteries"})
    assert a == b
    assert a != cache_key({"query": "solid state batteries", "depth": "advanced"})


@pytest.mark.asyncio
async def test_memory_roundtrip_and_expiry_purges():
    clock = FakeClock()
    backend = MemoryBackend(clock=clock)
    cache = CacheGateway(backend, TTLS)
    params = {"query": "q"}

    assert not (await cache.get("search", params)).found
    await cache.put("search", params, {"items": [1]})
    hit = await cache.get("search", params)
    assert hit.found and hit.payload == {"items": [1]}

    clock.advance(61)
    assert not (await cache.get("search", params)).found
    assert backend.size() == 0


@pytest.mark.asyncio
async def test_zero_ttl_category_never_cached():
    backend = MemoryBackend()
    cache = CacheGateway(backend, TTLS)
    await cache.put("llm", {"p": 1}, {"text": "x"})
    assert backend.size() == 0
    assert not (await cache.get("llm", {"p": 1})).found


@pytest.mark.asyncio
async def test_file_backend_roundtrip_and_clear(tmp_path):
    cache = CacheGateway(FileBackend(str(tmp_path)), TTLS)
    await cache.put("search", {"q": 1}, {"items": []})
    await cache.put("answer", {"q": 1}, {"text": "t", "citations": []})
    assert (await cache.get("answer", {"q": 1})).payload["text"] == "t"
    assert os.path.exists(tmp_path / "search" / f"{cache_key({'q': 1})}.json")

    assert await cache.clear("search") == 1
    assert not (await cache.get("search", {"q": 1})).found
    assert await cache.clear() == 1


@pytest.mark.asyncio
async def test_file_backend_expired_entry_deleted(tmp_path):
    backend = FileBackend(str(tmp_path))
    cache = CacheGateway(backend, TTLS)
    await cache.put("search", {"q": 2}, {"items": []})
    path = tmp_path / "search" / f"{cache_key({'q': 2})}.json"
    old = os.path.getmtime(path) - 3600
    os.utime(path, (old, old))

    assert not (await cache.get("search", {"q": 2})).found
    assert not path.exists()


@pytest.mark.asyncio
async def test_corrupt_file_is_a_miss(tmp_path):
    cache = CacheGateway(FileBackend(str(tmp_path)), TTLS)
    path = tmp_path / "search" / f"{cache_key({'q': 3})}.json"
    path.parent.mkdir(parents=True)
    path.write_text("{not json")
    assert not (await cache.get("search", {"q": 3})).found
    assert not cache.degraded


@pytest.mark.asyncio
async def test_undecodable_file_is_a_miss_and_purged(tmp_path):
    cache = CacheGateway(FileBackend(str(tmp_path)), TTLS)
    path = tmp_path / "search" / f"{cache_key({'q': 4})}.json"
    path.parent.mkdir(parents=True)
    path.write_bytes(b"\xff\xfe\xfa not utf8")

    assert not (await cache.get("search", {"q": 4})).found
    assert not path.exists()
    assert not cache.degraded


@pytest.mark.asyncio
async def test_non_object_json_file_is_a_miss_and_purged(tmp_path):
    cache = CacheGateway(FileBackend(str(tmp_path)), TTLS)
    path = tmp_path / "search" / f"{cache_key({'q': 5})}.json"
    path.parent.mkdir(parents=True)
    path.write_text("[]")

    assert not (await cache.get("search", {"q": 5})).found
    assert not path.exists()
    # The slot is usable again after the purge
    await cache.put("search", {"q": 5}, {"items": []})
    assert (await cache.get("search", {"q": 5})).payload == {"items": []}


@pytest.mark.asyncio
async def test_redis_non_object_value_is_a_miss_and_deleted():
    client = MagicMock()
    client.get = AsyncMock(return_value="[1, 2]")
    client.delete = AsyncMock(return_value=1)
    backend = RedisBackend("redis://localhost:6379/0", prefix="ev", client=client)

    assert await backend.read("search", "k", 60) is None
    client.delete.assert_awaited_once_with("ev:search:k")


@pytest.mark.asyncio
async def test_storage_failure_degrades_to_miss():
    backend = MemoryBackend()
    backend.read = AsyncMock(side_effect=CacheError("disk gone"))
    backend.write = AsyncMock()
    cache = CacheGateway(backend, TTLS)

    assert not (await cache.get("search", {"q": 1})).found
    assert cache.degraded
    await cache.put("search", {"q": 1}, {"items": []})
    backend.write.assert_not_called()
    assert backend.read.call_count == 1


@pytest.mark.asyncio
async def test_redis_errors_surface_as_cache_errors():
    client = MagicMock()
    client.get = AsyncMock(side_effect=RedisConnectionError("refused"))
    backend = RedisBackend("redis://localhost:6379/0", client=client)
    with pytest.raises(CacheError):
        await backend.read("search", "k", 60)

    cache = CacheGateway(backend, TTLS)
    assert not (await cache.get("search", {"q": 1})).found
    assert cache.degraded


@pytest.mark.asyncio
async def test_redis_write_uses_setex_with_prefixed_key():
    client = MagicMock()
    client.setex = AsyncMock()
    backend = RedisBackend("redis://localhost:6379/0", prefix="ev", client=client)
    await backend.write("answer", "abc", {"text": "t"}, 30)
    key, ttl, _ = client.setex.call_args.args
    assert key == "ev:answer:abc"
    assert ttl == 30


@pytest.mark.asyncio
async def test_null_backend_always_misses():
    cache = CacheGateway(NullBackend(), TTLS)
    await cache.put("search", {"q": 1}, {"items": []})
    assert not (await cache.get("search", {"q": 1})).found


def test_build_cache_selects_backend(tmp_path):
    assert isinstance(build_cache(make_settings(CACHE_BACKEND="memory")).backend, MemoryBackend)
    assert isinstance(build_cache(make_settings(CACHE_BACKEND="disabled")).backend, NullBackend)
    file_cache = build_cache(make_settings(CACHE_BACKEND="file", CACHE_DIR=str(tmp_path)))
    assert isinstance(file_cache.backend, FileBackend)


def test_redis_backend_requires_url():
    with pytest.raises(ConfigurationError):
        make_settings(CACHE_BACKEND="redis", REDIS_URL=None)
