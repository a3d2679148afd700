"""
Tests for the LoaderScope class in batchloader.context.
"""

import asyncio
import warnings

import pytest

from batchloader import LoaderScope, LoaderSettings, NoActiveScopeError, get_loader
from batchloader.context import active_scope, current_scope
from tests.mocks.batch_functions import (
    AsyncRecordingBatchFunction,
    RecordingBatchFunction,
    double,
)


def test_get_loader_outside_scope_raises(reset_scope: None):
    """Test that scoped loaders require an active scope."""
    with pytest.raises(NoActiveScopeError):
        get_loader(RecordingBatchFunction())

    with pytest.raises(LookupError):
        current_scope()


def test_scope_enters_and_exits_sync(reset_scope: None):
    """Test that the scope binds itself to the context var."""
    scope = LoaderScope()

    assert active_scope.get() is None
    with scope as active:
        assert active is scope
        assert current_scope() is scope
    assert active_scope.get() is None


def test_scope_reuses_loader_per_batch_function(reset_scope: None):
    """Test that one batch function maps to one loader within a scope."""
    batch_fn = RecordingBatchFunction()

    with LoaderScope() as scope:
        first = get_loader(batch_fn)
        second = scope.loader(batch_fn)
        other = scope.loader(batch_fn, scope_key="other")

        assert first is second
        assert other is not first
        assert len(scope.loaders) == 2


def test_scopes_do_not_share_loaders(reset_scope: None):
    """Test that separate scopes never share cached outcomes."""
    batch_fn = RecordingBatchFunction(fn=double)

    with LoaderScope() as scope:
        first = scope.loader(batch_fn)
        handle = first.load(1)
    with LoaderScope() as scope:
        second = scope.loader(batch_fn)
        again = second.load(1)

    assert second is not first
    assert again is not handle
    assert batch_fn.calls == [[1], [1]]


def test_sync_scope_flushes_loaders_on_exit(reset_scope: None):
    """Test that leaving a sync scope dispatches pending keys."""
    batch_fn = RecordingBatchFunction(fn=double)

    with LoaderScope():
        handle = get_loader(batch_fn).load(21)
        assert not handle.done()

    assert handle.result() == 42


def test_scope_settings_apply_to_loaders(reset_scope: None):
    """Test that scope settings are the defaults of every scoped loader."""
    settings = LoaderSettings(max_batch_size=1, name="scoped")

    with LoaderScope(settings=settings) as scope:
        loader = scope.loader(RecordingBatchFunction(), cache_rejections=False)

        assert loader.settings.max_batch_size == 1
        assert loader.settings.name == "scoped"
        assert loader.settings.cache_rejections is False


@pytest.mark.asyncio
async def test_async_scope_closes_loaders(reset_scope: None):
    """Test that leaving an async scope waits for in-flight batches."""
    batch_fn = AsyncRecordingBatchFunction(fn=double)

    async with LoaderScope() as scope:
        loader = scope.loader(batch_fn)
        handles = loader.load_many([1, 2])

    assert active_scope.get() is None
    assert [handle.result() for handle in handles] == [2, 4]
    assert batch_fn.calls == [[1, 2]]


@pytest.mark.asyncio
async def test_scope_visible_from_child_tasks(reset_scope: None):
    """Test that tasks spawned inside the scope resolve the same loader."""
    batch_fn = RecordingBatchFunction(fn=double)

    async def resolve(key: int) -> int:
        return await get_loader(batch_fn).load(key)

    async with LoaderScope():
        results = await asyncio.gather(resolve(1), resolve(2), resolve(1))

    assert results == [2, 4, 2]
    assert batch_fn.calls == [[1, 2]]


@pytest.mark.asyncio
async def test_sync_scope_warns_with_async_batches_in_flight(reset_scope: None):
    """Test that a sync exit with running async dispatches warns."""
    batch_fn = AsyncRecordingBatchFunction(fn=double)

    with warnings.catch_warnings(record=True) as warnings_list:
        warnings.simplefilter(action="always")
        with LoaderScope() as scope:
            handle = scope.loader(batch_fn).load(1)

    assert any("sync context manager" in str(warning.message) for warning in warnings_list)
    assert await handle == 2


def test_scope_warns_when_options_differ_from_existing_loader(reset_scope: None):
    """Test that options for an already created loader are reported, not applied."""
    batch_fn = RecordingBatchFunction()

    with LoaderScope() as scope:
        loader = scope.loader(batch_fn, max_batch_size=3)

        with warnings.catch_warnings():
            warnings.simplefilter(action="error")
            assert get_loader(batch_fn, max_batch_size=3) is loader

        with pytest.warns(UserWarning, match="max_batch_size"):
            again = get_loader(batch_fn, max_batch_size=5)

    assert again is loader
    assert loader.settings.max_batch_size == 3
