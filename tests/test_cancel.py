import asyncio

import pytest

from jady import CancelToken
from jady._cancel import cancellable_sleep, race_cancel

pytestmark = pytest.mark.anyio


async def test_cancel_is_idempotent():
    token = CancelToken()
    token.cancel('first')
    token.cancel('second')
    assert token.cancelled
    assert token.reason == 'first'


async def test_race_returns_result():
    async def work():
        return 42

    assert await race_cancel(work(), CancelToken(), timeout=1.0) == (True, 42)


async def test_race_times_out_and_cancels_task():
    cancelled = asyncio.Event()

    async def slow():
        try:
            await asyncio.sleep(10)
        except asyncio.CancelledError:
            cancelled.set()
            raise

    finished, result = await race_cancel(slow(), None, timeout=0.02)
    assert (finished, result) == (False, None)
    assert cancelled.is_set()


async def test_race_interrupted_by_token():
    token = CancelToken()
    asyncio.get_running_loop().call_later(0.02, token.cancel)
    finished, _ = await race_cancel(asyncio.sleep(10), token)
    assert not finished


async def test_race_propagates_errors():
    async def broken():
        raise LookupError('nope')

    with pytest.raises(LookupError):
        await race_cancel(broken(), None)


async def test_cancellable_sleep():
    assert await cancellable_sleep(0, None)

    token = CancelToken()
    token.cancel()
    assert not await cancellable_sleep(10, token)
