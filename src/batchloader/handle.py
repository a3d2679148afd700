"""
Shared result handle returned by ``BatchLoader.load``.

A handle wraps one thread-safe future per key and window. Every caller that
asks for the key before the window closes receives the same handle, so the
future itself is never cancelled by an individual caller: awaiting goes
through ``asyncio.shield`` and interest is tracked with a holder count.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import threading
import typing as t

import structlog

log = structlog.get_logger(__name__)


class Handle:
    """
    Awaitable, shared handle on the outcome of one key.

    Parameters
    ----------
    key : typing.Any
        Key as passed to ``load``.
    cache_key : typing.Hashable
        Normalized key used for caching and deduplication.
    on_abandon : typing.Callable[[Handle], None] | None, optional
        Called when the last holder releases the handle before it settled.
    """

    def __init__(
        self,
        key: t.Any,
        cache_key: t.Hashable,
        on_abandon: t.Callable[[Handle], None] | None = None,
    ) -> None:
        self.key = key
        self.cache_key = cache_key
        self._future: concurrent.futures.Future[t.Any] = concurrent.futures.Future()
        self._on_abandon = on_abandon
        self._holders = 0
        self._holders_lock = threading.Lock()

    def __repr__(self) -> str:
        if self._future.cancelled():
            state = "cancelled"
        elif not self._future.done():
            state = "pending"
        elif self._future.exception() is not None:
            state = "rejected"
        else:
            state = "resolved"
        return f"<Handle key={self.key!r} state={state} holders={self._holders}>"

    @property
    def holders(self) -> int:
        """
        Number of callers currently holding the handle.

        Returns
        -------
        int
            Holder count.
        """
        return self._holders

    def retain(self) -> Handle:
        """
        Register one more caller interested in the outcome.

        Returns
        -------
        Handle
            The handle itself.
        """
        with self._holders_lock:
            self._holders += 1
        return self

    def release(self) -> None:
        """
        Detach one caller from the handle.

        When the last holder releases a handle that has not settled yet, the
        owning loader is notified so it can drop the key from a batch that has
        not been dispatched. A dispatched batch is never affected.
        """
        with self._holders_lock:
            if self._holders > 0:
                self._holders -= 1
            abandoned = self._holders == 0 and not self._future.done()
        if abandoned and self._on_abandon is not None:
            log.debug(event="Handle abandoned by last holder", key=self.key)
            self._on_abandon(self)

    def done(self) -> bool:
        """
        Whether the handle settled.

        Returns
        -------
        bool
            ``True`` once resolved, rejected or cancelled.
        """
        return self._future.done()

    def cancelled(self) -> bool:
        return self._future.cancelled()

    def result(self, timeout: float | None = 0) -> t.Any:
        """
        Return the loaded value, raising the rejection error if any.

        Parameters
        ----------
        timeout : float | None, optional
            Seconds to wait for the outcome. The default does not wait and
            raises ``TimeoutError`` while the handle is pending.

        Returns
        -------
        typing.Any
            Loaded value.
        """
        return self._future.result(timeout=timeout)

    def exception(self, timeout: float | None = 0) -> BaseException | None:
        """
        Return the rejection error, or ``None`` when the handle resolved.

        Parameters
        ----------
        timeout : float | None, optional
            Seconds to wait for the outcome, see ``result``.

        Returns
        -------
        BaseException | None
            Rejection error.
        """
        return self._future.exception(timeout=timeout)

    def add_done_callback(self, fn: t.Callable[[Handle], t.Any]) -> None:
        self._future.add_done_callback(lambda _: fn(self))

    def set_result(self, value: t.Any) -> bool:
        """
        Resolve the handle.

        Parameters
        ----------
        value : typing.Any
            Loaded value.

        Returns
        -------
        bool
            ``False`` when the handle was already settled.
        """
        try:
            self._future.set_result(value)
        except concurrent.futures.InvalidStateError:
            return False
        return True

    def set_exception(self, error: BaseException) -> bool:
        """
        Reject the handle.

        Parameters
        ----------
        error : BaseException
            Rejection error.

        Returns
        -------
        bool
            ``False`` when the handle was already settled.
        """
        try:
            self._future.set_exception(error)
        except concurrent.futures.InvalidStateError:
            return False
        return True

    def cancel(self) -> bool:
        """
        Cancel the shared future. Only the owning loader drops handles.

        Returns
        -------
        bool
            ``True`` when the future was cancelled.
        """
        return self._future.cancel()

    async def _wait(self) -> t.Any:
        waiter = asyncio.wrap_future(self._future)
        try:
            return await asyncio.shield(waiter)
        except asyncio.CancelledError:
            if not self._future.cancelled():
                self.release()
            raise

    def __await__(self) -> t.Generator[t.Any, None, t.Any]:
        return self._wait().__await__()
