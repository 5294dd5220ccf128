"""Loguru setup shared by every workboard module.

>>> from workboard.kernel.logging import get_logger
>>> logger = get_logger(__name__)
>>> logger.info("Job {job_id} submitted", job_id="123")

Front-ends call :func:`configure_logging` once; library code only calls
:func:`get_logger`. Records carry the calling module in ``extra["module"]``
and the current workspace session in ``extra["correlation_id"]``.
"""

from __future__ import annotations

import contextvars
import logging
import os
import sys
from contextlib import suppress
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

from loguru import logger
from rich.console import Console
from rich.logging import RichHandler

if TYPE_CHECKING:
    import types

    from loguru import Logger, Record

LogLevel = Literal["TRACE", "DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
LogFormat = Literal["console", "json", "structured", "rich"]

_CURRENT_CONFIG: dict[str, Any] | None = None
_HANDLER_IDS: list[int] = []

correlation_id: contextvars.ContextVar[str] = contextvars.ContextVar("correlation_id", default="-")


def _stamp_record(record: Record) -> None:
    extra = record["extra"]
    extra.setdefault("module", record["name"])
    extra.setdefault("correlation_id", correlation_id.get())


def _rich_sink(timestamps: bool, **_: Any) -> dict[str, Any]:
    handler = RichHandler(
        console=Console(stderr=True),
        rich_tracebacks=True,
        markup=False,
        show_time=timestamps,
        show_path=True,
    )
    return {"sink": handler, "format": "{message}"}


def _json_sink(**_: Any) -> dict[str, Any]:
    return {"sink": sys.stderr, "serialize": True}


def _structured_sink(timestamps: bool, color: bool, **_: Any) -> dict[str, Any]:
    colorize = color and sys.stderr.isatty()
    when = "<green>{time:YYYY-MM-DD HH:mm:ss}</green> " if timestamps else ""
    level = "<level>{level: <8}</level>" if colorize else "{level: <8}"
    return {
        "sink": sys.stderr,
        "colorize": colorize,
        "format": (
            f"{when}[{level}] <cyan>{{name}}:{{line}}</cyan> "
            "({extra[correlation_id]}) | <level>{message}</level>"
        ),
    }


def _console_sink(timestamps: bool, **_: Any) -> dict[str, Any]:
    when = "{time:HH:mm:ss} " if timestamps else ""
    return {
        "sink": sys.stderr,
        "colorize": False,
        "format": when + "{level: <8} | {extra[module]} | {message}",
    }


_SINKS = {
    "rich": _rich_sink,
    "json": _json_sink,
    "structured": _structured_sink,
    "console": _console_sink,
}


def configure_logging(
    level: LogLevel = "INFO",
    format: LogFormat = "structured",
    output_file: str | Path | None = None,
    use_color: bool = True,
    include_timestamp: bool = True,
    force_reconfigure: bool = False,
    enable_stdlib_bridge: bool = False,
    backtrace: bool = True,
    diagnose: bool = True,
) -> None:
    """Install workboard's log handlers, replacing any it installed before.

    Calling again with identical arguments is a no-op unless
    *force_reconfigure* is set. Handlers added by other code (pytest's
    capture, for one) are left alone.

    Parameters
    ----------
    level : LogLevel
        Minimum level for every handler
    format : LogFormat
        ``"rich"`` for interactive use, ``"structured"`` or ``"console"`` for
        plain terminals, ``"json"`` for log shippers
    output_file : str | Path | None
        Also write JSON lines here, rotated at 10 MB
    use_color : bool
        Colour the structured format when stderr is a TTY
    include_timestamp : bool
        Prefix lines with the time
    force_reconfigure : bool
        Rebuild handlers even if nothing changed
    enable_stdlib_bridge : bool
        Forward stdlib ``logging`` (sqlalchemy, asyncio) into Loguru
    backtrace, diagnose : bool
        Loguru's extended traceback options
    """
    global _CURRENT_CONFIG

    requested = {
        "level": level,
        "format": format,
        "output_file": str(output_file) if output_file else None,
        "use_color": use_color,
        "include_timestamp": include_timestamp,
        "enable_stdlib_bridge": enable_stdlib_bridge,
        "backtrace": backtrace,
        "diagnose": diagnose,
    }
    if requested == _CURRENT_CONFIG and not force_reconfigure:
        return

    while _HANDLER_IDS:
        with suppress(ValueError):
            logger.remove(_HANDLER_IDS.pop())

    logger.configure(patcher=_stamp_record)
    common = {"level": level, "backtrace": backtrace, "diagnose": diagnose}
    sink = _SINKS.get(format, _console_sink)(timestamps=include_timestamp, color=use_color)
    _HANDLER_IDS.append(logger.add(**sink, **common))

    if output_file:
        path = Path(output_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        _HANDLER_IDS.append(
            logger.add(path, serialize=True, rotation="10 MB", retention=5, **common)
        )

    if enable_stdlib_bridge:
        enable_stdlib_logging_bridge()

    _CURRENT_CONFIG = requested


@lru_cache(maxsize=256)
def get_logger(name: str) -> Logger:
    """Loguru logger bound to *name*; one instance per name."""
    if _CURRENT_CONFIG is None:
        level = os.getenv("WORKBOARD_LOG_LEVEL", "INFO").upper()
        fmt = os.getenv("WORKBOARD_LOG_FORMAT", "structured").lower()
        configure_logging(level=level, format=fmt)  # type: ignore[arg-type]
    return logger.bind(module=name)


class _LoguruBridge(logging.Handler):
    def emit(self, record: logging.LogRecord) -> None:
        level: str | int
        try:
            level = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame: types.FrameType | None = logging.currentframe()
        depth = 0
        while frame and (depth == 0 or frame.f_code.co_filename == logging.__file__):
            frame = frame.f_back
            depth += 1
        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def enable_stdlib_logging_bridge() -> None:
    """Send records of stdlib loggers through Loguru's handlers."""
    logging.basicConfig(handlers=[_LoguruBridge()], level=0, force=True)


def set_correlation_id(cid: str) -> None:
    correlation_id.set(cid)


def get_correlation_id() -> str:
    return correlation_id.get()


def clear_correlation_id() -> None:
    correlation_id.set("-")
