import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog

LOGGER_NAME = "batchloader"


def setup_logging(*, level: int | str = logging.WARNING, json: bool = False) -> None:
    """
    Route batchloader logs through structlog.

    Parameters
    ----------
    level : int | str, optional
        Level applied to the ``batchloader`` logger hierarchy.
    json : bool, optional
        Render JSON lines instead of colored console output.
    """
    logging.getLogger(LOGGER_NAME).setLevel(level)
    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if json
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,  # loader / batch_id of the dispatch
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


@contextmanager
def logging_context(**fields: t.Any) -> Iterator[None]:
    """
    Bind fields to every log emitted in the block, including tasks it spawns.

    Values of ``None`` are skipped. Previously bound values are restored on exit.
    """
    to_bind = {key: value for key, value in fields.items() if value is not None}
    if not to_bind:
        yield
        return
    with structlog.contextvars.bound_contextvars(**to_bind):
        yield
