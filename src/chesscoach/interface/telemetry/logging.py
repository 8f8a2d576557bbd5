from __future__ import annotations

from typing import Any, TextIO
import logging
import sys
import structlog

RENDERERS = ("json", "console")


def resolve_level(level: int | str) -> int:
    """Map ``"debug"``/``"INFO"``/``10`` style levels to a logging level number."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(
    level: int | str = "INFO",
    *,
    renderer: str = "json",
    stream: TextIO | None = None,
) -> None:
    """Configure structlog once per process.

    The HTTP service logs JSON lines to stdout. The interactive CLI asks for
    the ``console`` renderer on stderr so engine chatter does not interleave
    with the board prompt.
    """
    if renderer not in RENDERERS:
        raise ValueError(f"Unknown log renderer {renderer!r}; expected one of {RENDERERS}.")

    min_level = resolve_level(level)
    logging.basicConfig(format="%(message)s", level=min_level, stream=stream or sys.stdout)

    final_processor: Any
    if renderer == "console":
        final_processor = structlog.dev.ConsoleRenderer(colors=False)
    else:
        final_processor = structlog.processors.JSONRenderer()

    structlog.configure(
        processors=[
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            final_processor,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None):
    return structlog.get_logger(name or "chesscoach")


def bind_trace(logger: Any, trace_id: str | None = None, **kwargs) -> Any:
    """Attach an HTTP trace id (and any extra context) to ``logger``."""
    context = {"trace_id": trace_id} if trace_id else {}
    context.update(kwargs)
    return logger.bind(**context)


__all__ = ["RENDERERS", "bind_trace", "get_logger", "resolve_level", "setup_logging"]
