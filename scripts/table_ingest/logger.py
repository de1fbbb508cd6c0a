"""
Console logging for the ingestion pipeline.

Lines look like ``[2017-03-04 17:05:09] [INFO] Table ready (table=flights)``.
Pipeline code logs through a StructuredLogger and never prints directly.
"""
import sys
from datetime import datetime
from enum import IntEnum
from threading import Lock
from typing import Optional, TextIO


class LogLevel(IntEnum):
    """Severity, ordered so that filtering is a plain comparison."""
    DEBUG = 10
    INFO = 20
    METRIC = 21
    SUCCESS = 25
    WARNING = 30
    ERROR = 40


_STDERR_LEVELS = frozenset({LogLevel.WARNING, LogLevel.ERROR})


class StructuredLogger:
    """
    Level-filtered logger that appends keyword details as ``(k=v, ...)``.

    WARNING and ERROR go to the error stream, the rest to the output
    stream. Writes are serialised so lines from worker threads never
    interleave.
    """

    def __init__(
        self,
        min_level: LogLevel = LogLevel.INFO,
        show_timestamp: bool = True,
        out: Optional[TextIO] = None,
        err: Optional[TextIO] = None,
    ):
        self.min_level = min_level
        self.show_timestamp = show_timestamp
        self._out = out
        self._err = err
        self._lock = Lock()

    def enabled_for(self, level: LogLevel) -> bool:
        return level >= self.min_level

    def render(self, level: LogLevel, message: str, details: Optional[dict] = None) -> str:
        prefix = f"[{level.name}]"
        if self.show_timestamp:
            prefix = f"[{datetime.now():%Y-%m-%d %H:%M:%S}] {prefix}"

        line = f"{prefix} {message}"
        if details:
            line += " (" + ", ".join(f"{key}={value}" for key, value in details.items()) + ")"
        return line

    def log(self, level: LogLevel, message: str, **details):
        if not self.enabled_for(level):
            return

        # sys streams are looked up per call so capsys/capfd replacements apply
        if level in _STDERR_LEVELS:
            stream = self._err or sys.stderr
        else:
            stream = self._out or sys.stdout

        text = self.render(level, message, details)
        with self._lock:
            stream.write(text + "\n")
            stream.flush()

    def debug(self, message: str, **details):
        self.log(LogLevel.DEBUG, message, **details)

    def info(self, message: str, **details):
        self.log(LogLevel.INFO, message, **details)

    def metric(self, line: str):
        """Emit a per-batch throughput line: timestamp, elapsed ms, batch size."""
        self.log(LogLevel.METRIC, line)

    def success(self, message: str, **details):
        self.log(LogLevel.SUCCESS, message, **details)

    def warning(self, message: str, **details):
        self.log(LogLevel.WARNING, message, **details)

    def error(self, message: str, **details):
        self.log(LogLevel.ERROR, message, **details)

    def section(self, title: str, width: int = 60):
        """Banner used at the start of a CLI command."""
        rule = "=" * width
        for text in (rule, title, rule):
            self.log(LogLevel.INFO, text)


_default: Optional[StructuredLogger] = None


def get_logger() -> StructuredLogger:
    """Process-wide logger, created on first use."""
    global _default
    if _default is None:
        _default = StructuredLogger()
    return _default


def set_logger(logger: StructuredLogger) -> Optional[StructuredLogger]:
    """Replace the process-wide logger and return the previous one."""
    global _default
    previous, _default = _default, logger
    return previous
