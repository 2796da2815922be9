import pytest

from authcore.storage.memory import MemoryCache

from conftest import FakeClock


@pytest.fixture
def clock():
    return FakeClock(1000.0)


@pytest.fixture
def cache(clock):
    return MemoryCache(clock=clock)


async def test_get_set_delete(cache):
    assert await cache.get("k") is None
    await cache.set("k", "v")
    assert await cache.get("k") == "v"
    assert await cache.exists("k")
    assert await cache.delete("k") == 1
    assert await cache.delete("k") == 0
    assert not await cache.exists("k")


async def test_ttl_expiry(cache, clock):
    await cache.set("k", "v", ttl=10)
    assert await cache.ttl("k") == 10
    clock.advance(9.5)
    assert await cache.ttl("k") == 1
    assert await cache.get("k") == "v"
    clock.advance(0.5)
    assert await cache.get("k") is None
    assert await cache.ttl("k") == -2


async def test_set_without_ttl_clears_expiry(cache, clock):
    await cache.set("k", "v", ttl=10)
    await cache.set("k", "w")
    assert await cache.ttl("k") == -1
    clock.advance(100)
    assert await cache.get("k") == "w"


async def test_sets(cache):
    assert await cache.sadd("s", "a") == 1
    assert await cache.sadd("s", "a") == 0
    await cache.sadd("s", "b")
    assert await cache.smembers("s") == {"a", "b"}

    assert await cache.srem("s", "a") == 1
    assert await cache.srem("s", "missing") == 0
    assert await cache.srem("s", "b") == 1
    # Emptied sets disappear like in Redis
    assert not await cache.exists("s")
    assert await cache.smembers("s") == set()


async def test_expire(cache, clock):
    assert await cache.expire("missing", 10) is False
    await cache.sadd("s", "a")
    assert await cache.ttl("s") == -1
    assert await cache.expire("s", 5) is True
    clock.advance(5)
    assert await cache.smembers("s") == set()


async def test_type_errors(cache):
    await cache.sadd("s", "a")
    with pytest.raises(TypeError):
        await cache.get("s")
    await cache.set("k", "v")
    with pytest.raises(TypeError):
        await cache.sadd("k", "a")


async def test_ping_and_close(cache):
    assert await cache.ping() is True
    await cache.close()
