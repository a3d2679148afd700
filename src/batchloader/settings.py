"""
Validated loader configuration.
"""

from __future__ import annotations

import os
import typing as t

from pydantic import BaseModel, ConfigDict, Field, PositiveInt

from batchloader.scheduler import ScheduleFlush, schedule_next_tick

MAX_BATCH_SIZE_ENV_VAR = "BATCHLOADER_MAX_BATCH_SIZE"
CACHE_ENABLED_ENV_VAR = "BATCHLOADER_CACHE_ENABLED"
CACHE_REJECTIONS_ENV_VAR = "BATCHLOADER_CACHE_REJECTIONS"

_FALSY = frozenset({"0", "false", "no", "off"})


def identity(key: t.Any) -> t.Any:
    return key


class LoaderSettings(BaseModel):
    """
    Options recognized by ``BatchLoader``.

    Parameters
    ----------
    max_batch_size : int | None
        Dispatch a batch as soon as it holds this many distinct keys.
        ``None`` leaves batches unbounded.
    schedule_flush : ScheduleFlush
        Primitive closing the dispatch window, next event loop turn by default.
    cache_key_fn : typing.Callable[[typing.Any], typing.Hashable]
        Normalize keys into hashable cache keys, identity by default.
    cache_enabled : bool
        Memoize handles across windows.
    cache_rejections : bool
        Keep rejected handles cached. Contract violations are never cached.
    name : str | None
        Label used in logs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", arbitrary_types_allowed=True)

    max_batch_size: PositiveInt | None = None
    schedule_flush: ScheduleFlush = Field(default=schedule_next_tick)
    cache_key_fn: t.Callable[[t.Any], t.Any] = Field(default=identity)
    cache_enabled: bool = True
    cache_rejections: bool = True
    name: str | None = None

    @classmethod
    def from_env(cls, **overrides: t.Any) -> LoaderSettings:
        """
        Build settings from ``BATCHLOADER_*`` environment variables.

        Parameters
        ----------
        **overrides : typing.Any
            Explicit options taking precedence over the environment.

        Returns
        -------
        LoaderSettings
            Validated settings.
        """
        values: dict[str, t.Any] = {}
        max_batch_size = os.getenv(MAX_BATCH_SIZE_ENV_VAR)
        if max_batch_size:
            values["max_batch_size"] = max_batch_size
        cache_enabled = os.getenv(CACHE_ENABLED_ENV_VAR)
        if cache_enabled:
            values["cache_enabled"] = cache_enabled.strip().lower() not in _FALSY
        cache_rejections = os.getenv(CACHE_REJECTIONS_ENV_VAR)
        if cache_rejections:
            values["cache_rejections"] = cache_rejections.strip().lower() not in _FALSY
        values.update(overrides)
        return cls(**values)
