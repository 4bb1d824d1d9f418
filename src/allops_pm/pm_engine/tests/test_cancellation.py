import asyncio

import pytest

from allops_pm.exceptions import OperationCancelledError
from allops_pm.pm_engine.services.cancellation import CancelToken, watch_disconnect


def test_sleep_returns_after_timeout():
    async def run():
        token = CancelToken()
        await token.sleep(0.01)
        return token.cancelled

    assert asyncio.run(run()) is False


def test_sleep_raises_once_cancelled():
    async def run():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel)
        await token.sleep(5)

    with pytest.raises(OperationCancelledError):
        asyncio.run(run())


def test_run_returns_result():
    async def work():
        await asyncio.sleep(0)
        return 42

    async def run():
        return await CancelToken().run(work())

    assert asyncio.run(run()) == 42


def test_run_abandons_work_when_cancelled():
    state = {"finished": False}

    async def slow():
        await asyncio.sleep(5)
        state["finished"] = True

    async def run():
        token = CancelToken()
        asyncio.get_running_loop().call_later(0.01, token.cancel, "client disconnected")
        try:
            await token.run(slow())
        finally:
            assert token.reason == "client disconnected"

    with pytest.raises(OperationCancelledError):
        asyncio.run(run())
    assert state["finished"] is False


def test_already_cancelled_token_fails_fast():
    token = CancelToken()
    token.cancel()

    with pytest.raises(OperationCancelledError) as exc:
        token.raise_if_cancelled()
    assert exc.value.status_code == 499


def test_watch_disconnect_cancels_token():
    calls = {"n": 0}

    async def is_disconnected():
        calls["n"] += 1
        return calls["n"] >= 3

    async def run():
        token = CancelToken()
        await watch_disconnect(is_disconnected, token, interval=0.001)
        return token

    token = asyncio.run(run())
    assert token.cancelled is True
    assert token.reason == "client disconnected"
    assert calls["n"] == 3
