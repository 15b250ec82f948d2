import asyncio

import pytest

from ogamed.errors import (
    InternalError,
    PreconditionViolation,
    Reason,
    TransientNetworkError,
)
from ogamed.executor import CommandExecutor, ManualToken, Regime


def _recorder(log, name, result=None):
    async def action():
        log.append(name)
        return result if result is not None else name

    return action


def test_earlier_eligibility_runs_first_and_ties_keep_enqueue_order():
    async def scenario():
        ex = CommandExecutor(clock=lambda: 100.0)
        log = []
        handles = [
            ex.submit(_recorder(log, "b"), at=50.0),
            ex.submit(_recorder(log, "a"), at=10.0),
            ex.submit(_recorder(log, "c"), at=50.0),
            ex.submit(_recorder(log, "d"), at=50.0),
        ]
        ex.start()
        await asyncio.gather(*handles)
        await ex.close()
        return log

    assert asyncio.run(scenario()) == ["a", "b", "c", "d"]


def test_delayed_task_waits_for_its_time():
    async def scenario():
        ex = CommandExecutor()
        log = []
        late = ex.submit(_recorder(log, "late"), delay=0.05)
        now = ex.submit(_recorder(log, "now"))
        ex.start()
        await asyncio.gather(late, now)
        await ex.close()
        return log

    assert asyncio.run(scenario()) == ["now", "late"]


def test_one_task_in_flight_at_a_time():
    windows = []

    async def slow():
        loop = asyncio.get_running_loop()
        start = loop.time()
        await asyncio.sleep(0.01)
        windows.append((start, loop.time()))

    async def scenario():
        ex = CommandExecutor()
        ex.start()
        await asyncio.gather(*(ex.submit(slow) for _ in range(4)))
        await ex.close()

    asyncio.run(scenario())
    windows.sort()
    assert len(windows) == 4
    for (_, end), (start, _) in zip(windows, windows[1:]):
        assert end <= start


def test_manual_mode_suspends_draining_and_queue_grows():
    async def scenario():
        ex = CommandExecutor()
        ex.start()
        log = []
        async with ex.manual() as token:
            handles = [ex.submit(_recorder(log, f"t{i}")) for i in range(3)]
            await asyncio.sleep(0.05)
            during = (ex.regime, ex.queue_depth, list(log), ex.state()["locked"])
            assert await token.run(_recorder(log, "manual")) == "manual"
        await asyncio.gather(*handles)
        after = (ex.regime, ex.queue_depth)
        await ex.close()
        return during, after, log

    during, after, log = asyncio.run(scenario())
    assert during == (Regime.MANUAL, 3, [], True)
    assert after == (Regime.AUTOMATIC, 0)
    assert log == ["manual", "t0", "t1", "t2"]


def test_manual_mode_released_on_error():
    async def scenario():
        ex = CommandExecutor()
        with pytest.raises(RuntimeError):
            async with ex.manual():
                raise RuntimeError("boom")
        return ex.regime, ex.state()["locked"]

    assert asyncio.run(scenario()) == (Regime.AUTOMATIC, False)


def test_leave_manual_requires_the_token():
    async def scenario():
        ex = CommandExecutor()
        token = await ex.enter_manual()
        with pytest.raises(InternalError):
            ex.leave_manual(ManualToken(ex))
        assert ex.regime is Regime.MANUAL
        ex.leave_manual(token)
        with pytest.raises(InternalError):
            ex.leave_manual(token)
        return ex.regime

    assert asyncio.run(scenario()) is Regime.AUTOMATIC


def test_cancelled_queued_task_never_runs():
    async def scenario():
        ex = CommandExecutor()
        ex.start()
        log = []
        async with ex.manual():
            keep = ex.submit(_recorder(log, "keep"))
            drop = ex.submit(_recorder(log, "drop"))
            assert drop.cancel() is True
            assert ex.queue_depth == 1
        await keep
        with pytest.raises(asyncio.CancelledError):
            await drop
        assert drop.cancel() is False
        await ex.close()
        return log

    assert asyncio.run(scenario()) == ["keep"]


def test_transient_failure_is_requeued_with_backoff():
    calls = []

    async def flaky():
        calls.append(1)
        if len(calls) < 3:
            raise TransientNetworkError("503")
        return "done"

    async def scenario():
        ex = CommandExecutor(backoff_base=0.0)
        ex.start()
        handle = ex.submit(flaky)
        result = await handle
        await ex.close()
        return result, handle.task.attempts

    assert asyncio.run(scenario()) == ("done", 3)
    assert CommandExecutor()._backoff(1) == 1.0
    assert CommandExecutor()._backoff(4) == 8.0
    assert CommandExecutor()._backoff(10) == 60.0


def test_transient_failure_gives_up_after_max_attempts():
    calls = []

    async def down():
        calls.append(1)
        raise TransientNetworkError("connection reset")

    async def scenario():
        ex = CommandExecutor(backoff_base=0.0, max_attempts=3)
        ex.start()
        with pytest.raises(TransientNetworkError):
            await ex.submit(down)
        await ex.close()

    asyncio.run(scenario())
    assert len(calls) == 3


def test_permanent_failure_reaches_caller_once():
    calls = []

    async def refused():
        calls.append(1)
        raise PreconditionViolation(Reason.NO_SHIP_SELECTED)

    async def scenario():
        ex = CommandExecutor(backoff_base=0.0)
        ex.start()
        with pytest.raises(PreconditionViolation) as exc:
            await ex.submit(refused)
        await ex.close()
        return exc.value

    err = asyncio.run(scenario())
    assert err.reason is Reason.NO_SHIP_SELECTED
    assert len(calls) == 1


def test_unexpected_exception_becomes_internal_error():
    async def broken():
        raise ZeroDivisionError("division by zero")

    async def scenario():
        ex = CommandExecutor()
        ex.start()
        with pytest.raises(InternalError) as exc:
            await ex.submit(broken)
        await ex.close()
        return exc.value

    err = asyncio.run(scenario())
    assert err.kind == "internal"
    assert "ZeroDivisionError" in err.message


def test_before_task_runs_ahead_of_each_task():
    async def scenario():
        log = []

        async def ensure():
            log.append("ensure")

        ex = CommandExecutor(before_task=ensure)
        ex.start()
        await ex.submit(_recorder(log, "a"))
        await ex.submit(_recorder(log, "b"), prepare=False)
        await ex.close()
        return log

    assert asyncio.run(scenario()) == ["ensure", "a", "b"]


def test_tasks_listing_and_state():
    async def scenario():
        ex = CommandExecutor(clock=lambda: 0.0)
        ex.submit(_recorder([], "x"), name="get_fleets", at=5.0)
        ex.submit(_recorder([], "y"), name="build", at=1.0)
        listing = ex.tasks()
        state = ex.state()
        await ex.close()
        return listing, state

    listing, state = asyncio.run(scenario())
    assert [t["name"] for t in listing] == ["build", "get_fleets"]
    assert listing[1]["eligible_in"] == 5.0
    assert state == {"locked": False, "regime": "automatic", "current": None, "queue_depth": 2}


def test_task_whose_caller_timed_out_never_runs():
    async def scenario():
        ex = CommandExecutor()
        log = []
        ex.start()
        token = await ex.enter_manual()
        handle = ex.submit(_recorder(log, "abandoned"))
        with pytest.raises(asyncio.TimeoutError):
            await asyncio.wait_for(handle, 0.05)
        depth_after_timeout = ex.queue_depth
        ex.leave_manual(token)
        after = ex.submit(_recorder(log, "after"))
        await after
        await ex.close()
        return log, depth_after_timeout

    log, depth = asyncio.run(scenario())
    assert log == ["after"]
    assert depth == 0
