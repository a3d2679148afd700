"""
Fan batch outcomes back out to the handles that requested them.
"""

from __future__ import annotations

import threading
import typing as t

import structlog

from batchloader.cache import CacheMap, evict_if_owned
from batchloader.exceptions import ContractViolationError, LoaderError, PerKeyError
from batchloader.outcome import Failure, Outcome

if t.TYPE_CHECKING:
    from batchloader.scheduler import Batch

log = structlog.get_logger(__name__)


class ResultDemultiplexer:
    """
    Settle the handles of a dispatched batch and apply the cache policy.

    Parameters
    ----------
    cache : CacheMap | None
        Cache map of the loader, ``None`` when caching is disabled.
    lock : threading.RLock
        Loader lock guarding cache updates.
    cache_rejections : bool, optional
        Keep rejected handles cached so later loads observe the same error.
    """

    def __init__(
        self,
        *,
        cache: CacheMap | None,
        lock: threading.RLock,
        cache_rejections: bool = True,
    ) -> None:
        self._cache = cache
        self._lock = lock
        self._cache_rejections = cache_rejections

    def resolve(self, *, batch: Batch, outcomes: t.Sequence[Outcome]) -> None:
        """
        Settle each handle from the outcome at its key position.

        Parameters
        ----------
        batch : Batch
            Dispatched batch.
        outcomes : typing.Sequence[Outcome]
            Validated outcomes, one per batch key in the same order.
        """
        handles = list(batch.handles.values())
        pairs = list(zip(handles, outcomes, strict=True))
        rejected = [handle for handle, outcome in pairs if isinstance(outcome, Failure)]
        if rejected:
            log.warning(
                event="Batch resolved with per-key failures",
                batch_id=batch.batch_id,
                failed_count=len(rejected),
                key_count=len(handles),
            )
            if not self._cache_rejections:
                self._evict(handles=rejected)

        for handle, outcome in pairs:
            if isinstance(outcome, Failure):
                handle.set_exception(PerKeyError(key=handle.key, error=outcome.error))
            else:
                handle.set_result(outcome.value)
        log.debug(
            event="Resolved batch",
            batch_id=batch.batch_id,
            key_count=len(handles),
        )

    def reject(self, *, batch: Batch, error: LoaderError) -> None:
        """
        Reject every handle of a batch with the same batch-level error.

        Parameters
        ----------
        batch : Batch
            Dispatched batch.
        error : LoaderError
            ``BatchFunctionError`` or ``ContractViolationError``.
        """
        handles = list(batch.handles.values())
        # a misconfigured batch function must not be memoized
        if isinstance(error, ContractViolationError) or not self._cache_rejections:
            self._evict(handles=handles)
        for handle in handles:
            handle.set_exception(error)
        log.error(
            event="Batch rejected",
            batch_id=batch.batch_id,
            error_type=type(error).__name__,
            error=str(object=error),
            key_count=len(handles),
        )

    def _evict(self, *, handles: t.Iterable[t.Any]) -> None:
        if self._cache is None:
            return
        with self._lock:
            for handle in handles:
                evict_if_owned(cache=self._cache, handle=handle)
