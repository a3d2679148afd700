from .cache import CacheMap as CacheMap
from .cache import InMemoryCacheMap as InMemoryCacheMap
from .context import LoaderScope as LoaderScope
from .context import get_loader as get_loader
from .exceptions import BatchFunctionError as BatchFunctionError
from .exceptions import ContractViolationError as ContractViolationError
from .exceptions import LoaderError as LoaderError
from .exceptions import NoActiveScopeError as NoActiveScopeError
from .exceptions import PerKeyError as PerKeyError
from .handle import Handle as Handle
from .loader import BatchLoader as BatchLoader
from .outcome import Failure as Failure
from .outcome import Value as Value
from .scheduler import schedule_after as schedule_after
from .scheduler import schedule_manual as schedule_manual
from .scheduler import schedule_next_tick as schedule_next_tick
from .settings import LoaderSettings as LoaderSettings

__all__ = [
    "BatchLoader",
    "LoaderSettings",
    "LoaderScope",
    "get_loader",
    "Handle",
    "Value",
    "Failure",
    "CacheMap",
    "InMemoryCacheMap",
    "LoaderError",
    "PerKeyError",
    "BatchFunctionError",
    "ContractViolationError",
    "NoActiveScopeError",
    "schedule_next_tick",
    "schedule_after",
    "schedule_manual",
]
