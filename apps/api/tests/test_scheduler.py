import asyncio
import threading

from csg.modules.sync.scheduler import DebouncedScheduler


def _recorder():
    calls = []

    async def callback() -> None:
        calls.append(1)

    return calls, callback


def test_burst_of_triggers_fires_once() -> None:
    calls, callback = _recorder()

    async def scenario() -> DebouncedScheduler:
        s = DebouncedScheduler(0.05, callback)
        s.attach(asyncio.get_running_loop())
        for _ in range(5):
            s.trigger()
            await asyncio.sleep(0.01)
        assert s.pending
        await asyncio.sleep(0.2)
        return s

    s = asyncio.run(scenario())

    assert calls == [1]
    assert s.fired == 1
    assert not s.pending


def test_trigger_from_worker_thread() -> None:
    calls, callback = _recorder()

    async def scenario() -> None:
        s = DebouncedScheduler(0.02, callback)
        s.attach(asyncio.get_running_loop())
        t = threading.Thread(target=s.trigger)
        t.start()
        t.join()
        await asyncio.sleep(0.15)

    asyncio.run(scenario())

    assert calls == [1]


def test_trigger_before_attach_is_remembered() -> None:
    calls, callback = _recorder()
    s = DebouncedScheduler(0.01, callback)
    s.trigger()
    assert s.pending

    async def scenario() -> None:
        s.attach(asyncio.get_running_loop())
        await asyncio.sleep(0.1)

    asyncio.run(scenario())

    assert calls == [1]


def test_cancel_drops_the_pending_tick() -> None:
    calls, callback = _recorder()

    async def scenario() -> None:
        s = DebouncedScheduler(0.02, callback)
        s.attach(asyncio.get_running_loop())
        s.trigger()
        s.cancel()
        await asyncio.sleep(0.08)
        await s.close()

    asyncio.run(scenario())

    assert calls == []


def test_failing_callback_is_contained() -> None:
    async def callback() -> None:
        raise RuntimeError("remote down")

    async def scenario() -> DebouncedScheduler:
        s = DebouncedScheduler(0.01, callback)
        s.attach(asyncio.get_running_loop())
        s.trigger()
        await asyncio.sleep(0.08)
        s.trigger()
        await asyncio.sleep(0.08)
        return s

    assert asyncio.run(scenario()).fired == 2
