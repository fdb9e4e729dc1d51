"""Opt-in structured log output for the ``event_matcher`` logger tree.

Engine modules log through ``logging.getLogger(__name__)`` and stay silent
until a host installs handlers.  :func:`configure_logging` is that opt-in:
it attaches a structlog ``ProcessorFormatter`` to the ``event_matcher``
logger only, so the host application's root logger is left alone.

Records that carry ``extra=`` fields (query windows, counts) keep them as
structured keys; dates and durations are rendered as ISO-8601 strings, and
the ids of the active ``engine_span`` are attached when one is open.
"""

from __future__ import annotations

import logging
import sys
from datetime import date, timedelta
from pathlib import Path
from typing import TextIO

import structlog
from opentelemetry import trace

LIBRARY_LOGGER = "event_matcher"
LOG_FORMATS = ("text", "json")

# Exporter chatter is only interesting when it fails.
_OTEL_LOGGERS = ("opentelemetry.sdk", "opentelemetry.exporter")

_HANDLER_MARK = "_event_matcher_handler"

logging.getLogger(LIBRARY_LOGGER).addHandler(logging.NullHandler())


# ---------------------------------------------------------------------------
# Structlog processors
# ---------------------------------------------------------------------------


def add_otel_context(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Attach ``trace_id`` and ``span_id`` when a valid span is current."""
    ctx = trace.get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = format(ctx.trace_id, "032x")
        event_dict["span_id"] = format(ctx.span_id, "016x")
    return event_dict


def render_temporal(
    logger: logging.Logger,  # noqa: ARG001
    method_name: str,  # noqa: ARG001
    event_dict: dict,
) -> dict:
    """Render date, datetime and timedelta values as ISO-8601 strings."""
    for key, value in event_dict.items():
        if isinstance(value, date):
            event_dict[key] = value.isoformat()
        elif isinstance(value, timedelta):
            event_dict[key] = f"PT{int(value.total_seconds())}S"
    return event_dict


def _pre_chain(time_fmt: str) -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt=time_fmt, utc=True),
        structlog.stdlib.ExtraAdder(),
        render_temporal,
        add_otel_context,
    ]


def _formatter(renderer: structlog.types.Processor, time_fmt: str) -> logging.Formatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
        foreign_pre_chain=_pre_chain(time_fmt),
    )


def _remove_installed_handlers(target: logging.Logger) -> None:
    for handler in list(target.handlers):
        if getattr(handler, _HANDLER_MARK, False):
            target.removeHandler(handler)
            handler.close()


# ---------------------------------------------------------------------------
# configure_logging()
# ---------------------------------------------------------------------------


def configure_logging(
    level: str = "INFO",
    fmt: str = "text",
    log_file: str | Path | None = None,
    engine_name: str | None = None,
    stream: TextIO | None = None,
) -> logging.Logger:
    """Route ``event_matcher`` records to a console stream and an optional file.

    Parameters
    ----------
    level:
        Level for the ``event_matcher`` logger (e.g. "DEBUG", "INFO").
    fmt:
        ``"text"`` for console rendering, ``"json"`` for one object per line.
    log_file:
        Optional path that additionally receives JSON lines.  Parent
        directories are created.
    engine_name:
        Bound as the ``engine`` key on every record via structlog's
        contextvars.
    stream:
        Console stream; defaults to ``sys.stderr``.

    Calling again replaces the handlers installed by the previous call.
    Records do not propagate to the root logger while configured.
    """
    if fmt not in LOG_FORMATS:
        raise ValueError(f"Unknown log format {fmt!r}; expected one of {LOG_FORMATS}")

    if engine_name:
        structlog.contextvars.bind_contextvars(engine=engine_name)

    if fmt == "json":
        console_formatter = _formatter(structlog.processors.JSONRenderer(), "iso")
    else:
        console_formatter = _formatter(structlog.dev.ConsoleRenderer(colors=False), "%H:%M:%S")

    handlers: list[logging.Handler] = []
    console_handler = logging.StreamHandler(stream or sys.stderr)
    console_handler.setFormatter(console_formatter)
    handlers.append(console_handler)

    if log_file is not None:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path)
        file_handler.setFormatter(_formatter(structlog.processors.JSONRenderer(), "iso"))
        handlers.append(file_handler)

    library_logger = logging.getLogger(LIBRARY_LOGGER)
    _remove_installed_handlers(library_logger)
    for handler in handlers:
        setattr(handler, _HANDLER_MARK, True)
        library_logger.addHandler(handler)
    library_logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    library_logger.propagate = False

    for name in _OTEL_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return library_logger


def reset_logging() -> None:
    """Undo :func:`configure_logging` and unbind the engine name."""
    library_logger = logging.getLogger(LIBRARY_LOGGER)
    _remove_installed_handlers(library_logger)
    library_logger.setLevel(logging.NOTSET)
    library_logger.propagate = True
    structlog.contextvars.unbind_contextvars("engine")
