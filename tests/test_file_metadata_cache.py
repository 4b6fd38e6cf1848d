from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from filevault.config.config_schema import FileCacheConfig
from filevault.infra.redis.base_redis_client import BaseRedisClient
from filevault.services.file.file_metadata_cache import (
    NullFileMetadataCache,
    RedisFileMetadataCache,
    create_file_metadata_cache,
    file_key,
    recent_key,
)
from tests.conftest import FakeRedis, make_record


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest.fixture
def redis_cache(fake_redis):
    return RedisFileMetadataCache(BaseRedisClient(fake_redis), ttl_seconds=3600, recent_max_size=1000)


def full_record(file_id="f1", **overrides):
    data = dict(
        folder_id=None,
        size_bytes=2 ** 53 + 1,
        checksum_sha256=None,
        version=3,
        is_latest=False,
        parent_file_id="f0",
        thumbnail_small="thumbs/f1-s.png",
        tags=["invoice", "2024", "q1"],
        is_public=True,
        is_safe=False,
        metadata={
            "project": "apollo",
            "pages": 12,
            "ratio": 0.5,
            "reviewed": True,
            "due": datetime(2024, 3, 1, 12, 30, tzinfo=timezone.utc),
            "note": None,
        },
        updated_at=datetime(2024, 2, 1, tzinfo=timezone.utc),
    )
    data.update(overrides)
    return make_record(file_id, **data)


@pytest.mark.asyncio
async def test_set_then_get_round_trips_every_field(redis_cache):
    record = full_record()

    await redis_cache.set(record)
    cached = await redis_cache.get("f1")

    assert cached == record
    assert cached.size_bytes == 2 ** 53 + 1
    assert set(cached.tags) == set(record.tags)
    assert cached.metadata["pages"] == 12 and type(cached.metadata["pages"]) is int
    assert cached.metadata["reviewed"] is True
    assert isinstance(cached.metadata["due"], datetime)
    assert cached.is_public is True and cached.is_safe is False and cached.is_latest is False


@pytest.mark.asyncio
async def test_set_writes_flat_strings_ttl_and_recent_entry(redis_cache, fake_redis):
    await redis_cache.set(full_record())

    stored = fake_redis.hashes[file_key("f1")]
    assert all(isinstance(value, str) for value in stored.values())
    assert stored["size_bytes"] == "9007199254740993"
    assert stored["is_public"] == "1"
    assert stored["is_safe"] == "0"
    assert stored["folder_id"] == ""
    assert fake_redis.ttls[file_key("f1")] == 3600
    assert "f1" in fake_redis.zsets[recent_key("V1")]


@pytest.mark.asyncio
async def test_malformed_json_fields_decode_as_empty(redis_cache, fake_redis):
    await redis_cache.set(full_record())
    fake_redis.hashes[file_key("f1")]["metadata"] = "{not json"
    fake_redis.hashes[file_key("f1")]["tags"] = '"just a string"'

    cached = await redis_cache.get("f1")

    assert cached is not None
    assert cached.metadata == {}
    assert cached.tags == []
    assert cached.size_bytes == 2 ** 53 + 1


@pytest.mark.asyncio
async def test_entry_missing_required_fields_is_a_miss(redis_cache, fake_redis):
    fake_redis.hashes[file_key("f1")] = {"name": "orphan.pdf"}

    assert await redis_cache.get("f1") is None
    assert await redis_cache.get_many(["f1"]) == {}


@pytest.mark.asyncio
async def test_get_many_returns_only_present_entries(redis_cache, fake_redis):
    await redis_cache.set_many([make_record("f1"), make_record("f2"), make_record("f3")])
    fake_redis.broken_keys.add(file_key("f3"))

    found = await redis_cache.get_many(["f1", "missing", "f2", "f3"])

    assert set(found) == {"f1", "f2"}
    assert found["f2"] == make_record("f2")


@pytest.mark.asyncio
async def test_invalidate_is_idempotent(redis_cache):
    await redis_cache.set_many([make_record("f1"), make_record("f2"), make_record("f3")])

    await redis_cache.invalidate("f1")
    await redis_cache.invalidate("f1")
    await redis_cache.invalidate_many(["f2", "nope"])

    assert await redis_cache.get("f1") is None
    assert set(await redis_cache.get_many(["f1", "f2", "f3"])) == {"f3"}


@pytest.mark.asyncio
async def test_get_recent_is_newest_first(redis_cache, fake_redis):
    fake_redis.zsets[recent_key("V1")] = {"old": 1000.0, "newest": 3000.0, "middle": 2000.0}

    assert await redis_cache.get_recent("V1") == ["newest", "middle", "old"]
    assert await redis_cache.get_recent("V1", limit=2) == ["newest", "middle"]
    assert await redis_cache.get_recent("other") == []


@pytest.mark.asyncio
async def test_recent_set_is_trimmed(fake_redis):
    cache = RedisFileMetadataCache(BaseRedisClient(fake_redis), recent_max_size=2)

    await cache.set_many([make_record("f1"), make_record("f2"), make_record("f3")])

    assert len(fake_redis.zsets[recent_key("V1")]) == 2


@pytest.mark.asyncio
async def test_backend_errors_are_treated_as_misses():
    client = MagicMock()
    client.hgetall = AsyncMock(side_effect=ConnectionError("redis down"))
    client.delete = AsyncMock(side_effect=ConnectionError("redis down"))
    client.zrevrange = AsyncMock(side_effect=ConnectionError("redis down"))
    client.pipeline = MagicMock(side_effect=ConnectionError("redis down"))
    cache = RedisFileMetadataCache(BaseRedisClient(client))

    assert await cache.get("f1") is None
    assert await cache.get_many(["f1", "f2"]) == {}
    assert await cache.get_recent("V1") == []
    await cache.set(make_record("f1"))
    await cache.invalidate("f1")
    await cache.invalidate_many(["f1"])


@pytest.mark.asyncio
async def test_null_cache_is_unavailable_and_inert():
    cache = NullFileMetadataCache()

    await cache.set(make_record("f1"))

    assert cache.is_available is False
    assert await cache.get("f1") is None
    assert await cache.get_many(["f1"]) == {}
    assert await cache.get_recent("V1") == []


@pytest.mark.asyncio
async def test_factory_selects_implementation_by_connection():
    factory = MagicMock()
    factory.init_client = AsyncMock(return_value=None)
    assert isinstance(await create_file_metadata_cache(FileCacheConfig(), factory), NullFileMetadataCache)

    factory.init_client = AsyncMock(return_value=FakeRedis())
    cache = await create_file_metadata_cache(FileCacheConfig(enabled=True, ttl_seconds=60), factory)
    assert isinstance(cache, RedisFileMetadataCache)
    assert cache.is_available is True
    assert cache.ttl == 60


@pytest.mark.asyncio
async def test_invalidate_many_removes_every_entry_in_one_call(redis_cache, fake_redis):
    await redis_cache.set_many([make_record("f1"), make_record("f2"), make_record("f3")])
    fake_redis.delete = AsyncMock(wraps=fake_redis.delete)

    await redis_cache.invalidate_many(["f1", "f2", "f3"])

    fake_redis.delete.assert_awaited_once_with(file_key("f1"), file_key("f2"), file_key("f3"))
    assert fake_redis.hashes == {}
    assert await redis_cache.get_many(["f1", "f2", "f3"]) == {}

    # 重复失效和空列表都不应报错
    await redis_cache.invalidate_many(["f1", "f2", "f3"])
    await redis_cache.invalidate_many([])
    assert fake_redis.delete.await_count == 2
    assert fake_redis.hashes == {}
