"""Trace output sinks for observability.

Sinks receive trace records and handle their output to various destinations:
- FileSink: JSONL file output
- ConsoleSink: Formatted console output
- MemorySink: In-memory buffer for testing/analysis
- NullSink: Discards everything
"""

import sys
import threading
from collections import deque
from pathlib import Path
from typing import Callable, Deque, List, Optional, TextIO

from nativeproc.observability import Sink
from nativeproc.observability.records import (
    TraceRecord,
    ProcessStartRecord,
    ProcessExitRecord,
    FlushResolvedRecord,
    MalformedFrameRecord,
)


class FileSink(Sink):
    """Sink that writes trace records to a JSONL file.

    Args:
        path: Path to the output file.
        buffer_size: Number of records to buffer before flushing (default: 100).
        append: Whether to append to existing file (default: False).

    Example:
        >>> sink = FileSink("/tmp/trace.jsonl")
        >>> hub.add_sink(sink)
        >>> # ... supervise a worker ...
        >>> sink.close()  # Ensure final flush
    """

    def __init__(
        self,
        path: str,
        buffer_size: int = 100,
        append: bool = False,
    ):
        self._path = Path(path)
        self._buffer_size = buffer_size
        self._append = append

        self._buffer: List[str] = []
        self._file: Optional[TextIO] = None
        self._lock = threading.Lock()

        self._open_file()

    def _open_file(self) -> None:
        mode = "a" if self._append else "w"
        self._path.parent.mkdir(parents=True, exist_ok=True)
        self._file = open(self._path, mode, encoding="utf-8")

    def write(self, record: TraceRecord) -> None:
        line = record.to_json()

        with self._lock:
            self._buffer.append(line)
            if len(self._buffer) >= self._buffer_size:
                self._flush_buffer()

    def _flush_buffer(self) -> None:
        """Flush the buffer to disk. Must be called with lock held."""
        if not self._buffer or self._file is None:
            return

        for line in self._buffer:
            self._file.write(line + "\n")
        self._file.flush()
        self._buffer.clear()

    def flush(self) -> None:
        with self._lock:
            self._flush_buffer()

    def close(self) -> None:
        with self._lock:
            self._flush_buffer()
            if self._file is not None:
                self._file.close()
                self._file = None


class ConsoleSink(Sink):
    """Sink that writes human-readable trace lines to the console.

    Only records worth a human's attention are printed: process start/exit,
    abandoned flushes and malformed frames. Everything else is skipped unless
    a custom ``format_fn`` says otherwise.

    Args:
        stream: Output stream (default: sys.stderr).
        color: Enable ANSI color codes (default: True, only on a TTY).
        format_fn: Optional custom format function for records.
    """

    COLORS = {
        "reset": "\033[0m",
        "red": "\033[91m",
        "green": "\033[92m",
        "yellow": "\033[93m",
        "cyan": "\033[96m",
    }

    def __init__(
        self,
        stream: Optional[TextIO] = None,
        color: bool = True,
        format_fn: Optional[Callable[[TraceRecord], Optional[str]]] = None,
    ):
        self._stream = stream or sys.stderr
        self._color = color and self._stream.isatty()
        self._format_fn = format_fn
        self._lock = threading.Lock()

    def _colorize(self, text: str, color: str) -> str:
        if not self._color:
            return text
        return f"{self.COLORS.get(color, '')}{text}{self.COLORS['reset']}"

    def write(self, record: TraceRecord) -> None:
        if self._format_fn:
            line = self._format_fn(record)
        else:
            line = self._format_record(record)

        if line:
            with self._lock:
                self._stream.write(line + "\n")
                self._stream.flush()

    def _format_record(self, record: TraceRecord) -> Optional[str]:
        if isinstance(record, ProcessStartRecord):
            tag = self._colorize("[START]", "green")
            return f"{tag} {record.process_name} pid={record.pid} ({record.startup_ms:.0f}ms)"
        elif isinstance(record, ProcessExitRecord):
            tag = self._colorize("[EXIT]", "red" if record.killed else "yellow")
            how = "killed" if record.killed else f"exit code {record.exit_code}"
            return (
                f"{tag} {record.process_name} pid={record.pid} {how} "
                f"after {record.uptime_sec:.1f}s, "
                f"{record.abandoned_flushes} flush(es) abandoned"
            )
        elif isinstance(record, FlushResolvedRecord):
            if record.state != "abandoned":
                return None
            tag = self._colorize("[FLUSH]", "yellow")
            return f"{tag} {record.process_name} flush {record.flush_id} abandoned"
        elif isinstance(record, MalformedFrameRecord):
            tag = self._colorize("[MALFORMED]", "red")
            return (
                f"{tag} {record.process_name} {record.stream}: {record.reason} "
                f"(total {record.total_malformed}) {record.preview!r}"
            )
        return None

    def flush(self) -> None:
        with self._lock:
            self._stream.flush()


class MemorySink(Sink):
    """Sink that stores trace records in memory.

    Useful for testing and for in-session analysis.

    Args:
        max_records: Maximum number of records to keep (default: 10000).
    """

    def __init__(self, max_records: int = 10000):
        self._max_records = max_records
        self._records: Deque[TraceRecord] = deque(maxlen=max_records)
        self._lock = threading.Lock()

    def write(self, record: TraceRecord) -> None:
        with self._lock:
            self._records.append(record)

    def get_records(self, record_type: Optional[str] = None) -> List[TraceRecord]:
        """Get stored records, optionally filtered by record type."""
        with self._lock:
            records = list(self._records)

        if record_type:
            records = [r for r in records if r.record_type == record_type]

        return records

    def get_by_flush(self, flush_id: str) -> List[TraceRecord]:
        """Get all records that mention a specific flush id."""
        with self._lock:
            records = list(self._records)

        return [
            r for r in records
            if getattr(r, "flush_id", None) == flush_id
        ]

    def clear(self) -> None:
        with self._lock:
            self._records.clear()

    def __len__(self) -> int:
        return len(self._records)


class NullSink(Sink):
    """Sink that discards all records."""

    def write(self, record: TraceRecord) -> None:
        pass


__all__ = [
    "FileSink",
    "ConsoleSink",
    "MemorySink",
    "NullSink",
]
