import pytest

from batchloader.context import active_scope


@pytest.fixture(autouse=True)
def test_unset_env(monkeypatch):
    monkeypatch.delenv("BATCHLOADER_MAX_BATCH_SIZE", raising=False)
    monkeypatch.delenv("BATCHLOADER_CACHE_ENABLED", raising=False)
    monkeypatch.delenv("BATCHLOADER_CACHE_REJECTIONS", raising=False)


@pytest.fixture
def reset_scope():
    """Fixture guaranteeing no LoaderScope leaks between tests."""
    token = active_scope.set(None)
    yield
    active_scope.reset(token)
