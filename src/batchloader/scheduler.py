"""
Batch scheduling: collect keys into the open batch and decide when it closes.

A batch is closed and handed to the dispatcher when either:
- the open batch reaches ``max_batch_size`` distinct keys, OR
- the injected ``schedule_flush`` primitive fires its callback, OR
- ``flush`` is called explicitly.
"""

from __future__ import annotations

import asyncio
import functools
import threading
import typing as t
import uuid
from dataclasses import dataclass, field

import structlog

if t.TYPE_CHECKING:
    from batchloader.handle import Handle

log = structlog.get_logger(__name__)

FlushCallback = t.Callable[[], None]
# returns False when nothing was scheduled; None counts as scheduled
ScheduleFlush = t.Callable[[FlushCallback], bool | None]


def schedule_next_tick(callback: FlushCallback) -> bool:
    """
    Run ``callback`` once the current cooperative turn of the event loop ends.

    Parameters
    ----------
    callback : FlushCallback
        Window-closing callback.

    Returns
    -------
    bool
        ``False`` when no event loop runs in the calling thread.

    Notes
    -----
    Without a running event loop nothing is scheduled; a later ``load`` from a
    loop thread schedules the window, otherwise the loader must be flushed
    explicitly.
    """
    try:
        loop = asyncio.get_running_loop()
    except RuntimeError:
        log.debug(event="No running event loop, waiting for explicit flush")
        return False
    loop.call_soon(callback)
    return True


def schedule_after(seconds: float) -> ScheduleFlush:
    """
    Build a scheduler that keeps the window open for a fixed duration.

    Parameters
    ----------
    seconds : float
        Window length in seconds.

    Returns
    -------
    ScheduleFlush
        Scheduling primitive using ``loop.call_later``.
    """
    if seconds < 0:
        raise ValueError("Batch window must be a non-negative number of seconds")

    def _schedule(callback: FlushCallback) -> bool:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            log.debug(event="No running event loop, waiting for explicit flush")
            return False
        loop.call_later(seconds, callback)
        return True

    return _schedule


def schedule_manual(callback: FlushCallback) -> bool:
    """
    Never close windows implicitly; batches go out on ``flush`` or size threshold.
    """
    return False


@dataclass
class Batch:
    """Keys accumulated in one dispatch window."""

    batch_id: str = field(default_factory=lambda: str(object=uuid.uuid4()))
    handles: dict[t.Hashable, Handle] = field(default_factory=dict)  # cache_key -> handle
    window_scheduled: bool = False

    def __len__(self) -> int:
        return len(self.handles)

    @property
    def keys(self) -> list[t.Any]:
        """
        Original keys in first-requested order.

        Returns
        -------
        list[typing.Any]
            One key per distinct cache key.
        """
        return [handle.key for handle in self.handles.values()]


class BatchScheduler:
    """
    Own the open batch of a loader and close it at window boundaries.

    Parameters
    ----------
    dispatch : typing.Callable[[Batch], None]
        Called with every closed, non-empty batch.
    lock : threading.RLock
        Loader lock guarding the open batch.
    max_batch_size : int | None, optional
        Dispatch immediately once this many distinct keys are pending.
    schedule_flush : ScheduleFlush, optional
        Primitive deciding when an open window closes.
    """

    def __init__(
        self,
        *,
        dispatch: t.Callable[[Batch], None],
        lock: threading.RLock,
        max_batch_size: int | None = None,
        schedule_flush: ScheduleFlush = schedule_next_tick,
    ) -> None:
        self._dispatch = dispatch
        self._lock = lock
        self._max_batch_size = max_batch_size
        self._schedule_flush = schedule_flush
        self._open_batch: Batch | None = None

    @property
    def open_batch(self) -> Batch | None:
        return self._open_batch

    @property
    def flush_scheduled(self) -> bool:
        return self._open_batch is not None and self._open_batch.window_scheduled

    def pending(self, *, cache_key: t.Hashable) -> Handle | None:
        """
        Return the handle of a key waiting in the open batch.

        Parameters
        ----------
        cache_key : typing.Hashable
            Normalized key.

        Returns
        -------
        Handle | None
            Pending handle, if the key is in the open batch.
        """
        if self._open_batch is None:
            return None
        return self._open_batch.handles.get(cache_key)

    def enqueue(self, *, handle: Handle) -> Batch | None:
        """
        Add a new handle to the open batch. The caller holds the loader lock.

        Parameters
        ----------
        handle : Handle
            Handle of a key that is not pending yet.

        Returns
        -------
        Batch | None
            A full batch the caller must dispatch once the lock is released.
        """
        if self._open_batch is None:
            self._open_batch = Batch()
            log.debug(event="Opened batch", batch_id=self._open_batch.batch_id)
        batch = self._open_batch
        batch.handles[handle.cache_key] = handle

        if self._max_batch_size is not None and len(batch) >= self._max_batch_size:
            log.debug(
                event="Batch size reached",
                batch_id=batch.batch_id,
                max_batch_size=self._max_batch_size,
            )
            self._open_batch = None
            return batch

        if not batch.window_scheduled:
            batch.window_scheduled = True
            callback = functools.partial(self._on_window_closed, batch_id=batch.batch_id)
            # retried by the next enqueue, e.g. from a thread running the loop
            batch.window_scheduled = self._schedule_flush(callback) is not False
        return None

    def discard(self, *, handle: Handle) -> bool:
        """
        Remove a handle from the open batch. The caller holds the loader lock.

        Parameters
        ----------
        handle : Handle
            Handle to drop.

        Returns
        -------
        bool
            ``True`` when the handle was still waiting for dispatch.
        """
        batch = self._open_batch
        if batch is None or batch.handles.get(handle.cache_key) is not handle:
            return False
        del batch.handles[handle.cache_key]
        log.debug(
            event="Dropped key from open batch",
            batch_id=batch.batch_id,
            pending_count=len(batch),
        )
        return True

    def _close(self) -> Batch | None:
        batch, self._open_batch = self._open_batch, None
        if batch is not None and not batch.handles:
            log.debug(event="Skipping empty batch", batch_id=batch.batch_id)
            return None
        return batch

    def _on_window_closed(self, *, batch_id: str) -> None:
        with self._lock:
            if self._open_batch is None or self._open_batch.batch_id != batch_id:
                # window of a batch already flushed or dispatched at full size
                log.debug(event="Ignoring stale window", batch_id=batch_id)
                return
            batch = self._close()
        if batch is not None:
            log.debug(event="Batch window closed", batch_id=batch.batch_id)
            self._dispatch(batch)

    def flush(self) -> None:
        """
        Close the open batch now and dispatch it.
        """
        with self._lock:
            batch = self._close()
        if batch is not None:
            log.debug(event="Flushing batch", batch_id=batch.batch_id)
            self._dispatch(batch)
