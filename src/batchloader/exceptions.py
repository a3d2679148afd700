"""
Batchloader-specific runtime exceptions.

Every failure reaches callers through the rejection channel of a handle.
The three batch-related kinds let callers tell apart "this key failed",
"the whole fetch layer failed" and "this loader is misused".
"""

from __future__ import annotations

import typing as t


class LoaderError(Exception):
    """
    Base class for errors raised by batchloader.
    """


class PerKeyError(LoaderError):
    """
    Raised for a single key whose outcome was marked as failed by the batch function.

    Parameters
    ----------
    key : typing.Any
        Key whose lookup failed.
    error : BaseException
        Error returned by the batch function at the key position.
    """

    def __init__(self, key: t.Any, error: BaseException) -> None:
        super().__init__(str(object=error))
        self.key = key
        self.error = error
        self.__cause__ = error


class BatchFunctionError(LoaderError):
    """
    Raised for every key of a batch when the batch function itself failed.

    Parameters
    ----------
    keys : typing.Sequence[typing.Any]
        Keys that were part of the failed dispatch.
    error : BaseException
        Error raised by the batch function.
    """

    def __init__(self, keys: t.Sequence[t.Any], error: BaseException) -> None:
        super().__init__(str(object=error))
        self.keys = list(keys)
        self.error = error
        self.__cause__ = error


class ContractViolationError(LoaderError):
    """
    Raised when the batch function output does not match its key list.

    Parameters
    ----------
    keys : typing.Sequence[typing.Any]
        Keys that were passed to the batch function.
    expected : int
        Number of outcomes the batch function had to return.
    actual : int | None
        Number of outcomes received, or ``None`` when the output was not a sequence.
    """

    def __init__(
        self,
        keys: t.Sequence[t.Any],
        expected: int,
        actual: int | None,
    ) -> None:
        if actual is None:
            message = f"Batch function must return a sequence of {expected} outcome(s)"
        else:
            message = (
                f"Batch function returned {actual} outcome(s) for {expected} key(s); "
                "outcomes must match keys in length and order"
            )
        super().__init__(message)
        self.keys = list(keys)
        self.expected = expected
        self.actual = actual


class NoActiveScopeError(LoaderError, LookupError):
    """
    Raised when a scoped loader is requested outside of a ``LoaderScope``.
    """


def is_batch_level_error(*, error: BaseException) -> bool:
    """
    Detect whether an error concerns a whole batch rather than a single key.

    Parameters
    ----------
    error : BaseException
        Error received from a handle.

    Returns
    -------
    bool
        ``True`` for batch function failures and contract violations.
    """
    return isinstance(error, (BatchFunctionError, ContractViolationError))
