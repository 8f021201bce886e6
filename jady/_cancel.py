'''
cooperative cancellation for jady calls

A `CancelToken` is threaded through one call. The dispatch engine observes
it while the adapter is running and while waiting between retries.
'''
import asyncio


class CancelToken:
    __slots__ = ('_event', '_reason')

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self._reason: str | None = None

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def cancel(self, reason: str | None = None) -> None:
        if self._event.is_set():
            return
        self._reason = reason
        self._event.set()

    async def wait(self) -> None:
        await self._event.wait()

    def __repr__(self) -> str:
        return f'CancelToken(cancelled={self.cancelled})'


async def race_cancel(
    awaitable,
    token: CancelToken | None,
    timeout: float | None = None,
):
    '''
    Run `awaitable` until it finishes, the token fires or `timeout` elapses.

    Parameters
    ----------
    awaitable : Awaitable
    token : CancelToken | None
    timeout : float | None
        Seconds; None waits forever.

    Returns
    -------
    tuple[bool, Any]
        `(True, result)` when the awaitable finished, `(False, None)` when it
        was interrupted. The interrupted task is cancelled and awaited.
    '''
    task = asyncio.ensure_future(awaitable)
    waiters: set[asyncio.Future] = {task}
    watcher = None
    if token is not None:
        watcher = asyncio.ensure_future(token.wait())
        waiters.add(watcher)

    try:
        done, _ = await asyncio.wait(
            waiters,
            timeout=timeout,
            return_when=asyncio.FIRST_COMPLETED,
        )
    except asyncio.CancelledError:
        task.cancel()
        raise
    finally:
        if watcher is not None:
            watcher.cancel()

    if task in done:
        return True, task.result()

    task.cancel()
    await asyncio.gather(task, return_exceptions=True)
    return False, None


async def cancellable_sleep(delay: float, token: CancelToken | None) -> bool:
    '''
    Sleep for `delay` seconds unless the token fires first.

    Returns
    -------
    bool
        False when the sleep was interrupted by the token.
    '''
    if token is None:
        await asyncio.sleep(delay)
        return True
    if token.cancelled:
        return False
    finished, _ = await race_cancel(asyncio.sleep(delay), token)
    return finished
