# chatwire/logging_config.py
"""
Process-wide logging for chatwire.

One rotating file under the data dir, an optional coloured console, and
per-logger levels for the `llm.*` and `models` channels so stream tracing can
be turned up without drowning the rest of the log.
"""
from __future__ import annotations
import logging, logging.handlers, sys, traceback
from pathlib import Path
from typing import Mapping, Optional
from .constants import DEFAULT_LOG_MAX_BYTES, DEFAULT_LOG_BACKUP_COUNT, DEFAULT_LOG_FILENAME

LINE_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Third-party loggers held at WARNING unless a per-logger level says otherwise
HTTP_LOGGERS = ("urllib3", "requests", "charset_normalizer")


class _ColorFormatter(logging.Formatter):
    COLORS = {
        "DEBUG": "\x1b[36m",
        "INFO": "\x1b[32m",
        "WARNING": "\x1b[33m",
        "ERROR": "\x1b[31m",
        "CRITICAL": "\x1b[41m",
    }
    RESET = "\x1b[0m"

    def __init__(self, use_color: bool):
        super().__init__(LINE_FORMAT, DATE_FORMAT)
        self.use_color = use_color

    def format(self, record: logging.LogRecord) -> str:
        line = super().format(record)
        color = self.COLORS.get(record.levelname) if self.use_color else None
        return f"{color}{line}{self.RESET}" if color else line


def _level(name: str, default: int = logging.INFO) -> int:
    lvl = logging.getLevelName(str(name).upper())
    return lvl if isinstance(lvl, int) else default


def apply_logger_levels(levels: Optional[Mapping[str, str]]) -> None:
    """Set levels on named loggers, e.g. {"llm.sse": "DEBUG", "models": "WARNING"}."""
    for name, value in (levels or {}).items():
        lvl = logging.getLevelName(str(value).upper())
        if not isinstance(lvl, int):
            logging.getLogger(__name__).warning("Ignoring unknown level %r for logger %r", value, name)
            continue
        logging.getLogger(name).setLevel(lvl)


def init_logging(log_dir: Path, level: str = "INFO", log_name: str = DEFAULT_LOG_FILENAME,
                 max_bytes: int = DEFAULT_LOG_MAX_BYTES, backup_count: int = DEFAULT_LOG_BACKUP_COUNT,
                 also_console: bool = True, logger_levels: Optional[Mapping[str, str]] = None) -> Path:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_path = log_dir / log_name
    lvl = _level(level)

    root = logging.getLogger()
    # Clear old handlers to support re-init in tests
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()
    root.setLevel(lvl)

    fh = logging.handlers.RotatingFileHandler(str(log_path), maxBytes=max_bytes, backupCount=backup_count,
                                              encoding="utf-8", delay=True)
    fh.setFormatter(_ColorFormatter(use_color=False))
    root.addHandler(fh)

    if also_console:
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(_ColorFormatter(use_color=sys.stdout.isatty()))
        root.addHandler(ch)

    for name in HTTP_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    apply_logger_levels(logger_levels)

    install_excepthook()

    logging.getLogger(__name__).info("Logging initialized → %s (level %s)", log_path, logging.getLevelName(lvl))
    return log_path


def install_excepthook():
    def _hook(exc_type, exc, tb):
        logging.getLogger("uncaught").error("Uncaught exception", exc_info=(exc_type, exc, tb))
        msg = "".join(traceback.format_exception_only(exc_type, exc)).strip()
        sys.stderr.write(f"\nFATAL: {msg}\n")
        sys.stderr.flush()
    sys.excepthook = _hook
