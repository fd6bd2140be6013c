import asyncio

from sitepanel.cancellation import CancellationToken


def test_cancel_fires_each_observer_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.add_observer(lambda: calls.append("a"))
    token.add_observer(lambda: calls.append("b"))

    assert token.cancel() is True
    assert token.cancel() is False

    assert token.is_cancelled is True
    assert calls == ["a", "b"]


def test_observer_added_after_cancel_fires_immediately() -> None:
    token = CancellationToken()
    token.cancel()
    calls: list[str] = []

    token.add_observer(lambda: calls.append("late"))
    token.cancel()

    assert calls == ["late"]


def test_failing_observer_does_not_block_the_rest() -> None:
    token = CancellationToken()
    calls: list[str] = []

    def _boom() -> None:
        raise RuntimeError("observer failure")

    token.add_observer(_boom)
    token.add_observer(lambda: calls.append("after"))
    token.cancel()

    assert calls == ["after"]


def test_removed_observer_is_not_called() -> None:
    token = CancellationToken()
    calls: list[str] = []

    def _observer() -> None:
        calls.append("x")

    token.add_observer(_observer)
    token.remove_observer(_observer)
    token.cancel()

    assert calls == []


def test_wait_returns_once_cancelled() -> None:
    async def _run() -> bool:
        token = CancellationToken()
        waiter = asyncio.create_task(token.wait())
        await asyncio.sleep(0.01)
        pending = not waiter.done()
        token.cancel()
        await asyncio.wait_for(waiter, timeout=1.0)
        await asyncio.wait_for(token.wait(), timeout=1.0)
        return pending

    assert asyncio.run(_run()) is True
