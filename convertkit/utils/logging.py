"""structlog configuration for the CLI and the worker processes.

Everything goes through the stdlib ``logging`` root logger so that library
records and structlog events share handlers: a console handler (rich
console on stderr by default) and, for CLI tasks, a per-task file.
"""

import logging
import re
import sys
import uuid
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path
from typing import TYPE_CHECKING, TextIO

import structlog
from rich.console import Console

if TYPE_CHECKING:
    from structlog.typing import EventDict, Processor, WrappedLogger

_console: Console | None = None
_log_output: TextIO = sys.stderr

# Long base64 runs (envelope file bodies)
_BASE64_RUN = re.compile(r"[A-Za-z0-9+/=]{500,}")
_MAX_VALUE_CHARS = 500

# Keys the renderer handles itself
_RESERVED_KEYS = frozenset({"event", "level", "timestamp", "_record", "_from_structlog"})

# Libraries that are too chatty below WARNING
_QUIET_LOGGERS = ("PIL", "asyncio", "fitz", "pymupdf")


class SafeStreamHandler(logging.StreamHandler):
    """StreamHandler that degrades unencodable characters instead of failing.

    File names in log lines may not fit the console encoding (CP1252 on
    Windows, for example).
    """

    def emit(self, record: logging.LogRecord) -> None:
        try:
            line = self.format(record) + self.terminator
            try:
                self.stream.write(line)
            except UnicodeEncodeError:
                encoding = getattr(self.stream, "encoding", None) or "utf-8"
                self.stream.write(line.encode(encoding, "replace").decode(encoding))
            self.flush()
        except RecursionError:
            raise
        except Exception:
            self.handleError(record)


def get_console() -> Console:
    """Shared rich console (stderr) used by progress bars and log output."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def set_log_output(output: TextIO) -> None:
    """Stream that the next ``setup_logging`` call sends console logs to."""
    global _log_output
    _log_output = output


def _scrub_values(_logger: "WrappedLogger", _name: str, event_dict: "EventDict") -> "EventDict":
    """Keep file bodies out of log lines.

    Base64 runs become ``[BASE64:n chars]``, raw bytes become a size note and
    other long strings are cut at ``_MAX_VALUE_CHARS``.
    """
    for key, value in event_dict.items():
        if isinstance(value, (bytes, bytearray)):
            event_dict[key] = f"[BINARY DATA: {len(value)} bytes]"
        elif isinstance(value, str) and len(value) > _MAX_VALUE_CHARS // 2:
            value = _BASE64_RUN.sub(lambda m: f"[BASE64:{len(m.group(0))} chars]", value)
            if len(value) > _MAX_VALUE_CHARS:
                value = f"{value[:_MAX_VALUE_CHARS]}... [{len(value)} chars total]"
            event_dict[key] = value
    return event_dict


def _mark_context(_logger: "WrappedLogger", _name: str, event_dict: "EventDict") -> "EventDict":
    """Put a ``|`` after the event text when key/value context follows."""
    if "event" in event_dict and not _RESERVED_KEYS.issuperset(event_dict):
        event_dict["event"] = f"{event_dict['event']} |"
    return event_dict


_PRE_CHAIN: list["Processor"] = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
    structlog.processors.StackInfoRenderer(),
    structlog.processors.UnicodeDecoder(),
    _scrub_values,
    _mark_context,
]


def _renderer(json_format: bool, colors: bool) -> "Processor":
    if json_format:
        return structlog.processors.JSONRenderer()
    return structlog.dev.ConsoleRenderer(
        colors=colors,
        exception_formatter=structlog.dev.plain_traceback,
        pad_event_to=0,
        pad_level=False,
    )


def _formatter(renderer: "Processor") -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_PRE_CHAIN,
        processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
    )


def _level(name: str | None, default: int) -> int:
    return getattr(logging, name.upper(), default) if name else default


def setup_logging(
    level: str = "INFO",
    log_file: str | None = None,
    json_format: bool = False,
    console: Console | None = None,
    console_level: str | None = None,
    file_level: str | None = None,
    colors: bool = True,
) -> None:
    """Configure structlog and the stdlib root logger.

    Args:
        level: Root log level name
        log_file: Also write to this file (rotated at midnight, 7 days kept)
        json_format: Render JSON lines instead of console text
        console: Rich console to share with progress displays
        console_level: Console handler level (defaults to ``level``)
        file_level: File handler level (defaults to ``level``)
        colors: Colorize console output
    """
    global _console
    if console is not None:
        _console = console

    root_level = _level(level, logging.INFO)
    root = logging.getLogger()
    root.handlers.clear()
    root.setLevel(root_level)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(root_level, logging.WARNING))

    stream_handler = SafeStreamHandler(_log_output)
    stream_handler.setLevel(_level(console_level, root_level))
    stream_handler.setFormatter(_formatter(_renderer(json_format, colors)))
    root.addHandler(stream_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", backupCount=7, encoding="utf-8"
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setLevel(_level(file_level, root_level))
        file_handler.setFormatter(_formatter(_renderer(json_format, colors=False)))
        root.addHandler(file_handler)

    structlog.configure(
        processors=[*_PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


def setup_worker_logging(kind: str, level: str = "INFO") -> None:
    """Logging inside a worker process.

    stdout carries envelopes, so logs go to stderr without colors and the
    parent forwards them into its own log.
    """
    set_log_output(sys.stderr)
    setup_logging(level=level, colors=False)
    structlog.contextvars.bind_contextvars(worker=kind)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def create_task_log_path(log_dir: str | Path, prefix: str = "task") -> tuple[str, Path]:
    """Allocate ``<log_dir>/<prefix>_<YYYYmmdd_HHMMSS>_<id>.log``.

    Returns:
        Tuple of (task_id, log_file_path)
    """
    directory = Path(log_dir)
    directory.mkdir(parents=True, exist_ok=True)
    task_id = uuid.uuid4().hex[:8]
    stamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    return task_id, directory / f"{prefix}_{stamp}_{task_id}.log"


def setup_task_logging(
    log_dir: str | Path,
    prefix: str = "task",
    verbose: bool = False,
) -> tuple[str, Path]:
    """Log a CLI task to its own file.

    The file always gets DEBUG; the console gets WARNING, or DEBUG when
    ``verbose``.
    """
    task_id, log_path = create_task_log_path(log_dir, prefix)
    setup_logging(
        level="DEBUG",
        log_file=str(log_path),
        console_level="DEBUG" if verbose else "WARNING",
        file_level="DEBUG",
    )
    return task_id, log_path
