"""Log handlers for QuorumBridge."""

import sys
import threading
from collections import deque
from typing import Any, Dict, List, Optional

from .core import LogEntry, LogHandler, LogLevel


class ConsoleHandler(LogHandler):
    """Console log handler."""

    def __init__(self, stream: Any = None):
        super().__init__()
        self.stream = stream or sys.stderr
        self._owns_stream = stream is not None and stream not in (sys.stdout, sys.stderr)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to console."""
        with self._lock:
            if self.stream is None:
                return
            if self.formatter:
                formatted = self.formatter.format(entry)
            else:
                formatted = f"{entry.timestamp} [{entry.level.value.upper()}] {entry.logger_name}: {entry.message}"

            self.stream.write(formatted + "\n")
            self.stream.flush()

    def close(self) -> None:
        """Close handler."""
        with self._lock:
            if self._owns_stream and self.stream is not None:
                self.stream.close()
            self.stream = None


class MemoryHandler(LogHandler):
    """Keeps the most recent entries in memory."""

    def __init__(self, max_size: int = 1000):
        super().__init__()
        self.max_size = max_size
        self.buffer: deque = deque(maxlen=max_size)

    def emit(self, entry: LogEntry) -> None:
        """Emit log entry to memory."""
        with self._lock:
            self.buffer.append(
                {
                    "timestamp": entry.timestamp,
                    "level": entry.level.value,
                    "message": entry.message,
                    "logger_name": entry.logger_name,
                    "extra": dict(entry.extra),
                    "formatted": self.formatter.format(entry) if self.formatter else None,
                }
            )

    def get_logs(self, level: Optional[LogLevel] = None) -> List[Dict[str, Any]]:
        """Get logs from memory, optionally only those at ``level``."""
        with self._lock:
            if level is None:
                return list(self.buffer)
            return [record for record in self.buffer if record["level"] == level.value]

    def clear_logs(self) -> None:
        """Clear all logs from memory."""
        with self._lock:
            self.buffer.clear()

    def close(self) -> None:
        """Close handler."""
        self.clear_logs()
