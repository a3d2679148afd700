"""
Per-unit-of-work loader scopes.

A ``LoaderScope`` owns the loaders of one request. Entering it binds the scope
to a context var, so code running in the request (resolvers, tasks spawned by
them) can fetch the shared loader of a batch function with ``get_loader``.
Exiting the scope flushes or closes every loader it created; nothing is shared
with other scopes.
"""

import contextvars
import typing as t
import warnings

import structlog

from batchloader.exceptions import NoActiveScopeError
from batchloader.executor import BatchFunction
from batchloader.loader import BatchLoader
from batchloader.settings import LoaderSettings

log = structlog.get_logger(__name__)

# ContextVar to hold the LoaderScope of the current request
active_scope: contextvars.ContextVar = contextvars.ContextVar("active_scope", default=None)


class LoaderScope:
    """
    Context manager owning one loader per batch function.

    Parameters
    ----------
    settings : LoaderSettings | None, optional
        Default settings for loaders created by the scope.
    """

    def __init__(self, settings: LoaderSettings | None = None) -> None:
        self._settings = settings
        self._loaders: dict[t.Hashable, BatchLoader] = {}
        self._context_token: contextvars.Token | None = None

    @property
    def loaders(self) -> list[BatchLoader]:
        return list(self._loaders.values())

    def loader(
        self,
        batch_fn: BatchFunction,
        *,
        scope_key: t.Hashable | None = None,
        **options: t.Any,
    ) -> BatchLoader:
        """
        Return the scope's loader for a batch function, creating it on first use.

        Parameters
        ----------
        batch_fn : BatchFunction
            Batch function of the loader.
        scope_key : typing.Hashable | None, optional
            Registry key, ``batch_fn`` itself by default. Use distinct keys to
            keep several differently configured loaders for one function.
        **options : typing.Any
            ``LoaderSettings`` overrides applied when the loader is created.

        Returns
        -------
        BatchLoader
            Loader bound to this scope.

        Warns
        -----
        UserWarning
            If ``options`` differ from the settings of the existing loader.
        """
        registry_key = batch_fn if scope_key is None else scope_key
        loader = self._loaders.get(registry_key)
        if loader is not None and options:
            current = dict(loader.settings)
            ignored = sorted(
                name
                for name, value in options.items()
                if name not in current or current[name] != value
            )
            if ignored:
                log.warning(
                    event="Ignoring options for existing scoped loader",
                    loader=loader.settings.name,
                    options=ignored,
                )
                warnings.warn(
                    message=(
                        f"Scoped loader already exists; options {ignored} are ignored. "
                        "Pass a distinct 'scope_key' for a differently configured loader."
                    ),
                    category=UserWarning,
                    stacklevel=2,
                )
        if loader is None:
            loader = BatchLoader(batch_fn, settings=self._settings, **options)
            self._loaders[registry_key] = loader
            log.debug(
                event="Created scoped loader",
                loader=loader.settings.name,
                loader_count=len(self._loaders),
            )
        return loader

    def __enter__(self) -> "LoaderScope":
        """
        Enter the synchronous scope.

        Returns
        -------
        LoaderScope
            The scope itself.
        """
        self._context_token = active_scope.set(self)
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the synchronous scope and flush its loaders.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._reset()
        for loader in self._loaders.values():
            loader.flush()
            if loader.in_flight:
                warnings.warn(
                    message=(
                        "LoaderScope used with sync context manager while async batches "
                        "are in flight. Use 'async with' to wait for them."
                    ),
                    category=UserWarning,
                    stacklevel=2,
                )
        self._loaders.clear()

    async def __aenter__(self) -> "LoaderScope":
        """
        Enter the async scope.

        Returns
        -------
        LoaderScope
            The scope itself.
        """
        self._context_token = active_scope.set(self)
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: t.Any,
    ) -> None:
        """
        Exit the async scope and close its loaders.

        Parameters
        ----------
        exc_type : type[BaseException] | None
            Exception type, if any.
        exc_val : BaseException | None
            Exception value, if any.
        exc_tb : typing.Any
            Exception traceback, if any.
        """
        self._reset()
        for loader in self._loaders.values():
            await loader.close()
        self._loaders.clear()

    def _reset(self) -> None:
        if self._context_token is not None:
            active_scope.reset(self._context_token)
            self._context_token = None


def current_scope() -> LoaderScope:
    """
    Return the scope bound to the current context.

    Returns
    -------
    LoaderScope
        Active scope.

    Raises
    ------
    NoActiveScopeError
        If no scope is active.
    """
    scope = active_scope.get()
    if scope is None:
        raise NoActiveScopeError(
            "No active LoaderScope; wrap the unit of work in 'with LoaderScope()'"
        )
    return scope


def get_loader(batch_fn: BatchFunction, **options: t.Any) -> BatchLoader:
    """
    Return the active scope's loader for a batch function.

    Parameters
    ----------
    batch_fn : BatchFunction
        Batch function of the loader.
    **options : typing.Any
        Forwarded to ``LoaderScope.loader``.

    Returns
    -------
    BatchLoader
        Scoped loader.
    """
    return current_scope().loader(batch_fn, **options)
