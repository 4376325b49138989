"""Log formatters for QuorumBridge.

JSON output is the default; the text formatter is meant for operators
tailing a console.
"""

import json
import time
import traceback
from typing import Optional

from .core import LogEntry, LogFormatter


class JSONFormatter(LogFormatter):
    """JSON log formatter."""

    def __init__(
        self,
        include_context: bool = True,
        include_exception: bool = True,
        include_extra: bool = True,
        include_thread: bool = False,
        timestamp_format: str = "iso",
        indent: Optional[int] = None,
        ensure_ascii: bool = False,
    ):
        self.include_context = include_context
        self.include_exception = include_exception
        self.include_extra = include_extra
        self.include_thread = include_thread
        self.timestamp_format = timestamp_format
        self.indent = indent
        self.ensure_ascii = ensure_ascii

    def format(self, entry: LogEntry) -> str:
        """Format log entry as JSON."""
        data = {
            "timestamp": self._format_timestamp(entry.timestamp),
            "level": entry.level.value,
            "logger": entry.logger_name,
        }

        if self.include_context:
            data["context"] = {
                key: value
                for key, value in entry.context.to_dict().items()
                if value not in (None, {})
            }

        if self.include_exception and entry.exception:
            data["exception"] = {
                "type": type(entry.exception).__name__,
                "message": str(entry.exception),
                "traceback": "".join(
                    traceback.format_exception(
                        type(entry.exception),
                        entry.exception,
                        entry.exception.__traceback__,
                    )
                ),
            }

        if self.include_extra and entry.extra:
            data["extra"] = entry.extra

        if self.include_thread:
            data["thread_id"] = entry.thread_id
            data["process_id"] = entry.process_id

        data["message"] = entry.message

        return json.dumps(
            data, indent=self.indent, ensure_ascii=self.ensure_ascii, default=str
        )

    def _format_timestamp(self, timestamp: float) -> str:
        """Format timestamp."""
        if self.timestamp_format == "iso":
            return (
                time.strftime("%Y-%m-%dT%H:%M:%S", time.gmtime(timestamp))
                + f".{int((timestamp % 1) * 1000000):06d}Z"
            )
        elif self.timestamp_format == "unix":
            return str(timestamp)
        else:
            return time.strftime(self.timestamp_format, time.gmtime(timestamp))


class TextFormatter(LogFormatter):
    """Plain text log formatter."""

    def __init__(self, format_string: Optional[str] = None, include_extra: bool = True):
        self.format_string = format_string or "{timestamp} [{level}] {logger}: {message}"
        self.include_extra = include_extra

    def format(self, entry: LogEntry) -> str:
        line = self.format_string.format(
            timestamp=time.strftime("%Y-%m-%d %H:%M:%S", time.localtime(entry.timestamp)),
            level=entry.level.value.upper(),
            logger=entry.logger_name,
            message=entry.message,
        )
        if self.include_extra and entry.extra:
            pairs = " ".join(f"{key}={value}" for key, value in entry.extra.items())
            line = f"{line} {pairs}"
        if entry.exception:
            line = f"{line} ({type(entry.exception).__name__}: {entry.exception})"
        return line
