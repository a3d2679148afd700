"""
Tagged per-key outcomes produced by a batch function.
"""

from __future__ import annotations

import typing as t
from dataclasses import dataclass


@dataclass(frozen=True)
class Value:
    """
    Successful outcome for one key.

    Parameters
    ----------
    value : typing.Any
        Loaded value.
    """

    value: t.Any


@dataclass(frozen=True)
class Failure:
    """
    Failed outcome for one key, isolated from its siblings in the batch.

    Parameters
    ----------
    error : BaseException
        Error describing why the key could not be loaded.
    """

    error: BaseException


Outcome = Value | Failure


def to_outcome(item: t.Any) -> Outcome:
    """
    Normalize one batch function output item into an outcome.

    Parameters
    ----------
    item : typing.Any
        Explicit ``Value``/``Failure``, an exception instance, or a plain value.

    Returns
    -------
    Outcome
        Tagged outcome.
    """
    if isinstance(item, (Value, Failure)):
        return item
    if isinstance(item, BaseException):
        return Failure(error=item)
    return Value(value=item)
