"""
structlog configuration for applications and the command line.
"""

import logging
import typing as t
from collections.abc import Iterator
from contextlib import contextmanager

import structlog


def setup_logging(level: str | int = logging.INFO, *, json_output: bool = False) -> None:
    """
    Route batchfetch logs through structlog.

    Parameters
    ----------
    level : str | int, optional
        Level of the ``batchfetch`` logger.
    json_output : bool, optional
        Render one JSON object per line instead of colored console output.
    """
    logging.basicConfig(format="%(message)s")
    logging.getLogger("batchfetch").setLevel(level)
    renderer: t.Any = (
        structlog.processors.JSONRenderer()
        if json_output
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
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
def logging_context(**context: t.Any) -> Iterator[None]:
    """
    Bind context variables for the duration of the block.

    Keys already bound by an outer scope keep their value. ``None`` values
    are skipped.
    """
    current = structlog.contextvars.get_contextvars()
    to_bind = {
        key: value for key, value in context.items() if value is not None and key not in current
    }
    if not to_bind:
        yield
        return
    with structlog.contextvars.bound_contextvars(**to_bind):
        yield
