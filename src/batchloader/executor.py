"""
Invoke the batch function for a closed batch and enforce its output contract.
"""

from __future__ import annotations

import asyncio
import inspect
import typing as t
from collections.abc import Sequence

import structlog

from batchloader.demux import ResultDemultiplexer
from batchloader.exceptions import BatchFunctionError, ContractViolationError
from batchloader.outcome import Outcome, to_outcome
from batchloader.utils.logging import logging_context

if t.TYPE_CHECKING:
    from batchloader.scheduler import Batch

log = structlog.get_logger(__name__)

BatchFunction = t.Callable[[list[t.Any]], t.Any]


class BatchExecutor:
    """
    Run the batch function once per dispatched batch.

    The batch function receives the deduplicated keys in first-requested order
    and returns one outcome per key, either directly or through an awaitable.
    Awaitables are driven as tasks on the running event loop.

    Parameters
    ----------
    batch_fn : BatchFunction
        Caller-supplied batch function.
    demux : ResultDemultiplexer
        Demultiplexer settling the handles of each batch.
    name : str | None, optional
        Loader label used in logs.
    """

    def __init__(
        self,
        *,
        batch_fn: BatchFunction,
        demux: ResultDemultiplexer,
        name: str | None = None,
    ) -> None:
        self._batch_fn = batch_fn
        self._demux = demux
        self._name = name or getattr(batch_fn, "__qualname__", repr(batch_fn))

    def execute(self, *, batch: Batch) -> asyncio.Task[None] | None:
        """
        Dispatch one batch.

        Parameters
        ----------
        batch : Batch
            Closed batch to load.

        Returns
        -------
        asyncio.Task[None] | None
            Task completing the dispatch when the batch function is asynchronous,
            ``None`` when the batch already settled.
        """
        keys = batch.keys
        with logging_context(loader=self._name, batch_id=batch.batch_id):
            log.info(event="Dispatching batch", key_count=len(keys))
            try:
                raw = self._batch_fn(keys)
            except Exception as error:
                self._fail(batch=batch, keys=keys, error=error)
                return None

            if not inspect.isawaitable(raw):
                self._complete(batch=batch, keys=keys, raw=raw)
                return None

            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                if inspect.iscoroutine(raw):
                    raw.close()
                self._fail(
                    batch=batch,
                    keys=keys,
                    error=RuntimeError("Async batch function requires a running event loop"),
                )
                return None
            task = loop.create_task(
                self._complete_async(batch=batch, keys=keys, awaitable=raw),
                name=f"batch_dispatch_{batch.batch_id}",
            )
            task.add_done_callback(
                lambda task: self._on_task_done(batch=batch, keys=keys, awaitable=raw, task=task)
            )
            return task

    async def _complete_async(
        self,
        *,
        batch: Batch,
        keys: list[t.Any],
        awaitable: t.Awaitable[t.Any],
    ) -> None:
        try:
            raw = await awaitable
        except Exception as error:
            self._fail(batch=batch, keys=keys, error=error)
            return
        self._complete(batch=batch, keys=keys, raw=raw)

    def _on_task_done(
        self,
        *,
        batch: Batch,
        keys: list[t.Any],
        awaitable: t.Awaitable[t.Any],
        task: asyncio.Task[None],
    ) -> None:
        if not task.cancelled():
            return
        # a task cancelled before its first step never awaited the batch function
        if inspect.iscoroutine(awaitable):
            awaitable.close()
        if any(not handle.done() for handle in batch.handles.values()):
            self._fail(batch=batch, keys=keys, error=asyncio.CancelledError())

    def validate(self, *, keys: list[t.Any], raw: t.Any) -> list[Outcome]:
        """
        Check the batch function output against its key list.

        Parameters
        ----------
        keys : list[typing.Any]
            Keys passed to the batch function.
        raw : typing.Any
            Batch function output.

        Returns
        -------
        list[Outcome]
            One outcome per key, in key order.

        Raises
        ------
        ContractViolationError
            If the output is not a sequence or its length differs from ``keys``.
        """
        if isinstance(raw, (str, bytes)) or not isinstance(raw, Sequence):
            raise ContractViolationError(keys=keys, expected=len(keys), actual=None)
        if len(raw) != len(keys):
            raise ContractViolationError(keys=keys, expected=len(keys), actual=len(raw))
        return [to_outcome(item) for item in raw]

    def _complete(self, *, batch: Batch, keys: list[t.Any], raw: t.Any) -> None:
        try:
            outcomes = self.validate(keys=keys, raw=raw)
        except ContractViolationError as error:
            self._demux.reject(batch=batch, error=error)
            return
        self._demux.resolve(batch=batch, outcomes=outcomes)

    def _fail(self, *, batch: Batch, keys: list[t.Any], error: BaseException) -> None:
        log.error(
            event="Batch function failed",
            batch_id=batch.batch_id,
            error_type=type(error).__name__,
            error=str(object=error),
        )
        self._demux.reject(batch=batch, error=BatchFunctionError(keys=keys, error=error))
