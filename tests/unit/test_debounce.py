import asyncio

import pytest

from storefront.client.debounce import ItemDebouncer


def recorder(calls, value):
    async def callback():
        calls.append(value)
        return value
    return callback


@pytest.mark.asyncio
async def test_rescheduling_replaces_pending_window():
    debouncer = ItemDebouncer(0.02)
    calls = []

    debouncer.schedule("a", recorder(calls, 1))
    debouncer.schedule("a", recorder(calls, 2))
    debouncer.schedule("a", recorder(calls, 3))
    results = await debouncer.wait()

    assert calls == [3]
    assert results == [3]


@pytest.mark.asyncio
async def test_keys_are_independent():
    debouncer = ItemDebouncer(0.02)
    calls = []

    debouncer.schedule("a", recorder(calls, "a"))
    debouncer.schedule("b", recorder(calls, "b"))
    debouncer.cancel("a")
    await debouncer.wait()

    assert calls == ["b"]


@pytest.mark.asyncio
async def test_pending_and_active_flags():
    debouncer = ItemDebouncer(0.02)
    started = asyncio.Event()
    release = asyncio.Event()

    async def slow():
        started.set()
        await release.wait()
        return True

    debouncer.schedule("a", slow)
    assert debouncer.pending("a")
    assert debouncer.active("a")

    await started.wait()
    # Fired: no longer cancellable, still in flight
    assert not debouncer.pending("a")
    assert debouncer.active("a")
    assert debouncer.cancel("a") is False

    release.set()
    assert await debouncer.wait("a") == [True]
    assert not debouncer.active("a")


@pytest.mark.asyncio
async def test_cancel_all():
    debouncer = ItemDebouncer(0.02)
    calls = []

    debouncer.schedule("a", recorder(calls, "a"))
    debouncer.schedule("b", recorder(calls, "b"))
    debouncer.cancel_all()

    assert await debouncer.wait() == []
    assert calls == []


@pytest.mark.asyncio
async def test_failures_are_returned_from_wait():
    debouncer = ItemDebouncer(0)

    async def broken():
        raise RuntimeError("write failed")

    debouncer.schedule("a", broken)
    results = await debouncer.wait()

    assert len(results) == 1
    assert isinstance(results[0], RuntimeError)
