"""
Tests for window handling in batchloader.scheduler.
"""

import asyncio
import threading
import typing as t

import pytest

from batchloader import BatchLoader, schedule_after
from batchloader.handle import Handle
from batchloader.scheduler import Batch, BatchScheduler, schedule_manual, schedule_next_tick
from tests.mocks.batch_functions import RecordingBatchFunction


class FakeScheduleFlush:
    """Collect window callbacks so tests decide when windows close."""

    def __init__(self) -> None:
        self.callbacks: list[t.Callable[[], None]] = []

    def __call__(self, callback: t.Callable[[], None]) -> None:
        self.callbacks.append(callback)

    def fire(self) -> None:
        callbacks, self.callbacks = self.callbacks, []
        for callback in callbacks:
            callback()


@pytest.fixture
def schedule_flush() -> FakeScheduleFlush:
    """
    Create a controllable scheduling primitive.

    Returns
    -------
    FakeScheduleFlush
        Scheduling primitive collecting callbacks.
    """
    return FakeScheduleFlush()


@pytest.fixture
def dispatched() -> list[Batch]:
    """
    Create the list receiving dispatched batches.

    Returns
    -------
    list[Batch]
        Dispatched batches in order.
    """
    return []


def _scheduler(
    *,
    dispatched: list[Batch],
    schedule_flush: t.Callable[[t.Callable[[], None]], None],
    max_batch_size: int | None = None,
) -> BatchScheduler:
    return BatchScheduler(
        dispatch=dispatched.append,
        lock=threading.RLock(),
        max_batch_size=max_batch_size,
        schedule_flush=schedule_flush,
    )


def test_window_scheduled_once_per_batch(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that one window callback covers every key of the open batch."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)

    for key in ["a", "b", "c"]:
        assert scheduler.enqueue(handle=Handle(key=key, cache_key=key)) is None

    assert len(schedule_flush.callbacks) == 1
    assert scheduler.flush_scheduled

    schedule_flush.fire()

    assert [batch.keys for batch in dispatched] == [["a", "b", "c"]]
    assert scheduler.open_batch is None
    assert not scheduler.flush_scheduled


def test_full_batch_returned_to_caller(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that the batch reaching max_batch_size is handed back for dispatch."""
    scheduler = _scheduler(
        dispatched=dispatched,
        schedule_flush=schedule_flush,
        max_batch_size=2,
    )

    assert scheduler.enqueue(handle=Handle(key=1, cache_key=1)) is None
    full = scheduler.enqueue(handle=Handle(key=2, cache_key=2))

    assert full is not None
    assert full.keys == [1, 2]
    assert scheduler.open_batch is None

    scheduler.enqueue(handle=Handle(key=3, cache_key=3))
    schedule_flush.fire()

    assert [batch.keys for batch in dispatched] == [[3]]


def test_pending_lookup_and_discard(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that handles can be found and dropped while their batch is open."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)
    handle = Handle(key="a", cache_key="a")
    scheduler.enqueue(handle=handle)

    assert scheduler.pending(cache_key="a") is handle
    assert scheduler.discard(handle=handle) is True
    assert scheduler.discard(handle=handle) is False
    assert scheduler.pending(cache_key="a") is None

    schedule_flush.fire()
    assert dispatched == []


def test_discard_ignores_foreign_handle(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that only the handle owning the batch slot can be discarded."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)
    scheduler.enqueue(handle=Handle(key="a", cache_key="a"))

    assert scheduler.discard(handle=Handle(key="a", cache_key="a")) is False
    assert scheduler.pending(cache_key="a") is not None


def test_explicit_flush_resets_window(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that a stale window callback after flush dispatches nothing."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)
    scheduler.enqueue(handle=Handle(key=1, cache_key=1))

    scheduler.flush()
    schedule_flush.fire()

    assert [batch.keys for batch in dispatched] == [[1]]
    assert not scheduler.flush_scheduled


def test_immediate_schedule_flush_dispatches_each_key(dispatched: list[Batch]):
    """Test that a primitive calling back synchronously closes the window at once."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=lambda callback: callback())

    scheduler.enqueue(handle=Handle(key=1, cache_key=1))
    scheduler.enqueue(handle=Handle(key=2, cache_key=2))

    assert [batch.keys for batch in dispatched] == [[1], [2]]


def test_batches_get_distinct_ids():
    """Test that each batch carries its own identifier."""
    assert Batch().batch_id != Batch().batch_id


def test_schedule_next_tick_without_loop_does_nothing():
    """Test that the default primitive waits for an explicit flush outside a loop."""
    calls = []

    schedule_next_tick(lambda: calls.append(1))

    assert calls == []


def test_schedule_manual_never_calls_back():
    """Test that the manual primitive ignores callbacks."""
    calls = []

    schedule_manual(lambda: calls.append(1))

    assert calls == []


def test_schedule_after_rejects_negative_window():
    """Test that negative windows are refused."""
    with pytest.raises(ValueError):
        schedule_after(-1.0)


@pytest.mark.asyncio
async def test_schedule_after_collects_keys_over_window():
    """Test that a timed window groups keys loaded across loop turns."""
    batch_fn = RecordingBatchFunction()
    loader = BatchLoader(batch_fn, schedule_flush=schedule_after(0.05))

    first = loader.load(1)
    for _ in range(3):
        await asyncio.sleep(delay=0)
    second = loader.load(2)

    assert await first == 1
    assert await second == 2
    assert batch_fn.calls == [[1, 2]]



def test_stale_window_does_not_close_next_batch(
    schedule_flush: FakeScheduleFlush,
    dispatched: list[Batch],
):
    """Test that the window of a flushed batch leaves the following batch open."""
    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)
    scheduler.enqueue(handle=Handle(key=1, cache_key=1))
    scheduler.flush()
    scheduler.enqueue(handle=Handle(key=2, cache_key=2))

    stale, current = schedule_flush.callbacks
    stale()

    assert [batch.keys for batch in dispatched] == [[1]]
    assert scheduler.pending(cache_key=2) is not None

    scheduler.enqueue(handle=Handle(key=3, cache_key=3))
    current()

    assert [batch.keys for batch in dispatched] == [[1], [2, 3]]


def test_unscheduled_window_retried_on_next_enqueue(dispatched: list[Batch]):
    """Test that a primitive unable to schedule is asked again for the same batch."""
    callbacks: list[t.Callable[[], None]] = []
    results = iter([False, True])

    def schedule_flush(callback: t.Callable[[], None]) -> bool:
        scheduled = next(results)
        if scheduled:
            callbacks.append(callback)
        return scheduled

    scheduler = _scheduler(dispatched=dispatched, schedule_flush=schedule_flush)

    scheduler.enqueue(handle=Handle(key=1, cache_key=1))
    assert not scheduler.flush_scheduled

    scheduler.enqueue(handle=Handle(key=2, cache_key=2))
    assert scheduler.flush_scheduled
    assert len(callbacks) == 1

    scheduler.enqueue(handle=Handle(key=3, cache_key=3))
    callbacks[0]()

    assert [batch.keys for batch in dispatched] == [[1, 2, 3]]


def test_schedule_primitives_report_scheduling():
    """Test that primitives return False when nothing will call back."""
    assert schedule_next_tick(lambda: None) is False
    assert schedule_after(0.1)(lambda: None) is False
    assert schedule_manual(lambda: None) is False


@pytest.mark.asyncio
async def test_schedule_after_window_not_shortened_by_flush():
    """Test that a flush does not let its timer cut the next window short."""
    batch_fn = RecordingBatchFunction()
    loader = BatchLoader(batch_fn, schedule_flush=schedule_after(0.3))

    first = loader.load(1)
    loader.flush()
    await asyncio.sleep(delay=0.15)
    second = loader.load(2)
    await asyncio.sleep(delay=0.2)
    third = loader.load(3)

    assert await first == 1
    assert await second == 2
    assert await third == 3
    assert batch_fn.calls == [[1], [2, 3]]
