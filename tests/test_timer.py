import asyncio

from shiori import timer as timer_util


def test_manual_scheduler_fires_in_due_order() -> None:
    scheduler = timer_util.ManualScheduler()
    calls: list[str] = []
    scheduler.call_later(300, lambda: calls.append("late"))
    scheduler.call_later(100, lambda: calls.append("early"))

    assert scheduler.advance(99) == 0
    assert scheduler.advance(1) == 1
    assert calls == ["early"]
    scheduler.advance(500)
    assert calls == ["early", "late"]
    assert scheduler.now_ms == 600


def test_cancelled_entry_never_fires() -> None:
    scheduler = timer_util.ManualScheduler()
    calls: list[int] = []
    handle = scheduler.call_later(10, lambda: calls.append(1))
    handle.cancel()
    handle.cancel()
    scheduler.advance(100)
    assert calls == []
    assert scheduler.pending == 0


def test_timer_restart_replaces_pending_call() -> None:
    scheduler = timer_util.ManualScheduler()
    timer = timer_util.Timer(scheduler, 200)
    calls: list[str] = []

    timer.start(lambda: calls.append("first"))
    scheduler.advance(150)
    timer.start(lambda: calls.append("second"))
    assert scheduler.pending == 1
    scheduler.advance(150)
    assert calls == []
    scheduler.advance(50)
    assert calls == ["second"]
    assert timer.pending is False


def test_timer_cancel() -> None:
    scheduler = timer_util.ManualScheduler()
    timer = timer_util.Timer(scheduler, 50)
    calls: list[int] = []
    timer.start(lambda: calls.append(1))
    assert timer.pending is True
    timer.cancel()
    scheduler.advance(100)
    assert calls == []
    assert timer.pending is False


def test_callback_may_restart_its_own_timer() -> None:
    scheduler = timer_util.ManualScheduler()
    timer = timer_util.Timer(scheduler, 100)
    calls: list[float] = []

    def tick() -> None:
        calls.append(scheduler.now_ms)
        if len(calls) < 3:
            timer.start(tick)

    timer.start(tick)
    scheduler.advance(1000)
    assert calls == [100, 200, 300]


def test_asyncio_scheduler_uses_running_loop() -> None:
    calls: list[int] = []

    async def scenario() -> None:
        timer = timer_util.Timer(timer_util.AsyncioScheduler(), 10)
        timer.start(lambda: calls.append(1))
        timer.start(lambda: calls.append(2))
        await asyncio.sleep(0.05)

    asyncio.run(scenario())
    assert calls == [2]
