import asyncio

import pytest

from compass_engine.cache import AsyncResourceCache


@pytest.fixture
def cache():
    return AsyncResourceCache()


@pytest.mark.asyncio
async def test_concurrent_gets_run_factory_once(cache):
    calls = 0
    release = asyncio.Event()

    async def factory():
        nonlocal calls
        calls += 1
        await release.wait()
        return {"loaded": True}

    waiters = [asyncio.ensure_future(cache.get("ref", factory)) for _ in range(5)]
    await asyncio.sleep(0)
    assert cache.stats()["pending"] == 1
    release.set()
    results = await asyncio.gather(*waiters)

    assert calls == 1
    assert all(r is results[0] for r in results)
    assert cache.peek("ref") == {"loaded": True}
    assert cache.stats() == {"cached": 1, "pending": 0, "keys": ["ref"]}


@pytest.mark.asyncio
async def test_failed_load_is_not_cached(cache):
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise OSError("source offline")
        return "ok"

    with pytest.raises(OSError, match="source offline"):
        await cache.get("flaky", flaky)
    assert cache.peek("flaky") is None
    assert cache.stats()["pending"] == 0

    assert await cache.get("flaky", flaky) == "ok"
    assert len(attempts) == 2


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_load(cache):
    release = asyncio.Event()

    async def factory():
        await release.wait()
        return 42

    first = asyncio.ensure_future(cache.get("shared", factory))
    second = asyncio.ensure_future(cache.get("shared", factory))
    await asyncio.sleep(0)
    first.cancel()
    release.set()

    assert await second == 42
    assert cache.peek("shared") == 42


@pytest.mark.asyncio
async def test_sync_factory_results_are_accepted(cache):
    assert await cache.get("plain", lambda: "value") == "value"


@pytest.mark.asyncio
async def test_invalidate_and_clear(cache):
    async def factory():
        return "v"

    await cache.get("a", factory)
    await cache.get("b", factory)
    assert cache.invalidate("a") is True
    assert cache.invalidate("a") is False
    assert cache.peek("b") == "v"

    cache.clear()
    assert cache.stats()["cached"] == 0
