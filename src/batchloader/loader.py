"""
Public loader facade.

A ``BatchLoader`` is created per unit of work (typically one incoming request)
and discarded with it. Keys loaded during one window of the scheduler are
coalesced into a single call of the batch function; handles are memoized in
the loader cache until ``clear``/``clear_all``.
"""

from __future__ import annotations

import asyncio
import threading
import typing as t

import structlog

from batchloader.cache import CacheMap, InMemoryCacheMap, evict_if_owned
from batchloader.demux import ResultDemultiplexer
from batchloader.exceptions import PerKeyError
from batchloader.executor import BatchExecutor, BatchFunction
from batchloader.handle import Handle
from batchloader.scheduler import Batch, BatchScheduler
from batchloader.settings import LoaderSettings

log = structlog.get_logger(__name__)


class BatchLoader:
    """
    Coalesce single-key lookups into batched calls and memoize their outcomes.

    Parameters
    ----------
    batch_fn : BatchFunction
        Called with a list of distinct keys; returns (or resolves to) one
        outcome per key in the same order. Items may be plain values,
        exception instances, ``Value`` or ``Failure``.
    settings : LoaderSettings | None, optional
        Loader configuration. Keyword options override its fields.
    cache_map : CacheMap | None, optional
        Storage for memoized handles, an ``InMemoryCacheMap`` by default.
    **options : typing.Any
        Any ``LoaderSettings`` field, e.g. ``max_batch_size=100``.

    Notes
    -----
    ``load`` never blocks. Windows close at the next event loop turn unless
    another ``schedule_flush`` primitive is configured; without a running loop
    call ``flush`` explicitly.
    """

    def __init__(
        self,
        batch_fn: BatchFunction,
        *,
        settings: LoaderSettings | None = None,
        cache_map: CacheMap | None = None,
        **options: t.Any,
    ) -> None:
        if settings is None:
            settings = LoaderSettings(**options)
        elif options:
            settings = LoaderSettings(**{**dict(settings), **options})
        self._settings = settings
        self._lock = threading.RLock()
        self._cache: CacheMap | None = None
        if settings.cache_enabled:
            self._cache = cache_map if cache_map is not None else InMemoryCacheMap()

        self._demux = ResultDemultiplexer(
            cache=self._cache,
            lock=self._lock,
            cache_rejections=settings.cache_rejections,
        )
        self._executor = BatchExecutor(batch_fn=batch_fn, demux=self._demux, name=settings.name)
        self._scheduler = BatchScheduler(
            dispatch=self._dispatch,
            lock=self._lock,
            max_batch_size=settings.max_batch_size,
            schedule_flush=settings.schedule_flush,
        )
        self._tasks: set[asyncio.Task[None]] = set()

        log.debug(
            event="Initialized BatchLoader",
            loader=settings.name,
            max_batch_size=settings.max_batch_size,
            cache_enabled=settings.cache_enabled,
            cache_rejections=settings.cache_rejections,
        )

    @property
    def settings(self) -> LoaderSettings:
        return self._settings

    @property
    def cache_map(self) -> CacheMap | None:
        return self._cache

    @property
    def in_flight(self) -> int:
        """
        Number of asynchronous dispatches still running.

        Returns
        -------
        int
            In-flight dispatch count.
        """
        with self._lock:
            return len(self._tasks)

    def load(self, key: t.Any) -> Handle:
        """
        Request one key.

        Parameters
        ----------
        key : typing.Any
            Key to load.

        Returns
        -------
        Handle
            Awaitable handle, shared with every other caller of the same key
            in the current window or cache lifetime.
        """
        cache_key = self._settings.cache_key_fn(key)
        with self._lock:
            handle = self._cache.get(cache_key) if self._cache is not None else None
            if handle is not None:
                log.debug(event="Cache hit", key=key)
                return handle.retain()

            handle = self._scheduler.pending(cache_key=cache_key)
            if handle is not None:
                # cleared while still waiting in the open batch
                if self._cache is not None:
                    self._cache.set(cache_key, handle)
                return handle.retain()

            handle = Handle(key=key, cache_key=cache_key, on_abandon=self._abandon).retain()
            if self._cache is not None:
                self._cache.set(cache_key, handle)
            full_batch = self._scheduler.enqueue(handle=handle)

        if full_batch is not None:
            self._dispatch(full_batch)
        return handle

    def load_many(self, keys: t.Iterable[t.Any]) -> list[Handle]:
        """
        Request several keys.

        Parameters
        ----------
        keys : typing.Iterable[typing.Any]
            Keys to load.

        Returns
        -------
        list[Handle]
            One handle per key, in the order of ``keys``.
        """
        return [self.load(key) for key in keys]

    def clear(self, key: t.Any) -> BatchLoader:
        """
        Forget the memoized outcome of one key.

        A batch already dispatched for the key is not affected; only later
        ``load`` calls go to the batch function again.

        Parameters
        ----------
        key : typing.Any
            Key to forget.

        Returns
        -------
        BatchLoader
            The loader itself.
        """
        if self._cache is not None:
            with self._lock:
                self._cache.delete(self._settings.cache_key_fn(key))
        return self

    def clear_all(self) -> BatchLoader:
        """
        Forget every memoized outcome, with the same guarantee as ``clear``.

        Returns
        -------
        BatchLoader
            The loader itself.
        """
        if self._cache is not None:
            with self._lock:
                self._cache.clear()
        return self

    def prime(self, key: t.Any, value: t.Any) -> BatchLoader:
        """
        Seed the cache with a known outcome.

        Does nothing when the key is cached or pending, or when caching is
        disabled. An exception instance primes a rejection.

        Parameters
        ----------
        key : typing.Any
            Key to seed.
        value : typing.Any
            Value (or exception) the key resolves to.

        Returns
        -------
        BatchLoader
            The loader itself.
        """
        if self._cache is None:
            return self
        cache_key = self._settings.cache_key_fn(key)
        with self._lock:
            if self._cache.get(cache_key) is not None:
                return self
            if self._scheduler.pending(cache_key=cache_key) is not None:
                return self
            handle = Handle(key=key, cache_key=cache_key)
            if isinstance(value, BaseException):
                handle.set_exception(PerKeyError(key=key, error=value))
            else:
                handle.set_result(value)
            self._cache.set(cache_key, handle)
        log.debug(event="Primed key", key=key)
        return self

    def flush(self) -> None:
        """
        Dispatch the open batch immediately.
        """
        self._scheduler.flush()

    async def close(self) -> None:
        """
        Flush pending keys and wait for every in-flight dispatch to finish.
        """
        self.flush()
        while True:
            with self._lock:
                tasks = list(self._tasks)
            if not tasks:
                break
            await asyncio.gather(*tasks, return_exceptions=True)
        log.debug(event="BatchLoader closed", loader=self._settings.name)

    def _dispatch(self, batch: Batch) -> None:
        task = self._executor.execute(batch=batch)
        if task is None:
            return
        with self._lock:
            self._tasks.add(task)
        task.add_done_callback(self._forget_task)

    def _forget_task(self, task: asyncio.Task[None]) -> None:
        with self._lock:
            self._tasks.discard(task)

    def _abandon(self, handle: Handle) -> None:
        with self._lock:
            if handle.holders > 0:
                return
            if not self._scheduler.discard(handle=handle):
                return
            if self._cache is not None:
                evict_if_owned(cache=self._cache, handle=handle)
        handle.cancel()
        log.debug(event="Dropped abandoned key", key=handle.key)
