"""Structured logging for the content engine.

All modules log through structlog; this module routes those events into
the stdlib root logger so one handler set (stderr plus an optional file)
renders them either as coloured console lines or as JSON objects. Section
generation binds its key through :func:`section_logging_context` so that
provider attempts made on a section's behalf carry it too.
"""

from __future__ import annotations

import logging
import sys
import time
import uuid
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

_VALID_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}

# Third-party loggers that are chatty at INFO; held at WARNING unless the
# engine itself runs at DEBUG.
_NOISY_LOGGERS = ("LiteLLM", "litellm", "httpx", "httpcore", "openai")


def generate_session_id() -> str:
    """Return a fresh UUID4 string identifying one generation run."""
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Setup helpers
# ---------------------------------------------------------------------------


def _resolve_level(level: str) -> int:
    name = level.upper()
    if name not in _VALID_LEVELS:
        msg = f"Invalid log level: {level!r}. Must be one of {sorted(_VALID_LEVELS)}"
        raise ValueError(msg)
    return int(getattr(logging, name))


def _pre_chain() -> list[structlog.types.Processor]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]


def _handlers(numeric_level: int, log_file: str | Path | None) -> list[logging.Handler]:
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(str(log_file), encoding="utf-8"))
    for handler in handlers:
        handler.setLevel(numeric_level)
    return handlers


def configure_logging(
    level: str = "INFO",
    fmt: str = "console",
    log_file: str | Path | None = None,
    session_id: str | None = None,
) -> None:
    """Install the structlog pipeline and the root handlers.

    Calling this again replaces the previous handlers, so a CLI command
    may reconfigure after loading settings.

    Args:
        level: Level name, case-insensitive.
        fmt: ``"json"`` for one JSON object per line; anything else
            selects the console renderer.
        log_file: Also write rendered events to this file.
        session_id: Bound as ``session_id`` on every subsequent event.

    Raises:
        ValueError: If ``level`` is not a standard level name.
    """
    numeric_level = _resolve_level(level)

    renderer: structlog.types.Processor = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer()
    )
    formatter = structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(numeric_level)
    for handler in _handlers(numeric_level, log_file):
        handler.setFormatter(formatter)
        root.addHandler(handler)

    library_level = logging.DEBUG if numeric_level <= logging.DEBUG else logging.WARNING
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(library_level, numeric_level))

    structlog.configure(
        processors=[*_pre_chain(), structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )

    if session_id:
        structlog.contextvars.bind_contextvars(session_id=session_id)


# ---------------------------------------------------------------------------
# Per-section context
# ---------------------------------------------------------------------------


@contextmanager
def section_logging_context(
    section_key: str,
    **extra: Any,
) -> Iterator[structlog.stdlib.BoundLogger]:
    """Bind ``section`` (plus ``extra``) to every event inside the block.

    Emits ``section_start`` on entry and ``section_end`` with the elapsed
    milliseconds on exit; an escaping exception is logged as
    ``section_error`` and re-raised.

    Example::

        with section_logging_context("offer", schema="offer") as log:
            log.info("prompt_built", chars=len(prompt))
    """
    structlog.contextvars.bind_contextvars(section=section_key, **extra)
    log: structlog.stdlib.BoundLogger = structlog.get_logger("content_engine.section")
    started = time.perf_counter()
    log.info("section_start")
    try:
        yield log
    except Exception:
        log.exception("section_error")
        raise
    finally:
        elapsed_ms = round((time.perf_counter() - started) * 1000, 1)
        log.info("section_end", elapsed_ms=elapsed_ms)
        structlog.contextvars.unbind_contextvars("section", *extra)
