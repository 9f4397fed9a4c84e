"""Observability system for nativeproc.

Provides tracing infrastructure to track:
- Worker start and exit
- Flush requests and how they were resolved
- Malformed frames skipped by the stream readers

Trace Levels:
- OFF: No tracing (production default)
- MINIMAL: Process lifecycle events only
- NORMAL: Lifecycle + flush traffic
- VERBOSE: Everything, including every malformed frame

Example:
    >>> from nativeproc.observability import ObservabilityHub, TraceLevel
    >>> hub = ObservabilityHub.get_instance()
    >>> hub.configure(level=TraceLevel.NORMAL)
    >>> hub.add_sink(FileSink("/tmp/trace.jsonl"))
    >>>
    >>> # In controller code:
    >>> if hub.enabled:
    ...     hub.emit(FlushRequestRecord(...))
"""

from enum import IntEnum
from typing import List, Optional
import threading


class TraceLevel(IntEnum):
    """Observability trace levels.

    Higher levels include all lower level information.
    """
    OFF = 0       # No tracing
    MINIMAL = 1   # Lifecycle events only
    NORMAL = 2    # Lifecycle + flush traffic
    VERBOSE = 3   # Full detail

    @classmethod
    def from_string(cls, s: str) -> "TraceLevel":
        """Parse a trace level name such as "normal"."""
        try:
            return cls[s.upper()]
        except KeyError:
            raise ValueError(
                f"Unknown trace level: {s}. "
                f"Valid levels: {', '.join(m.name.lower() for m in cls)}"
            ) from None


class Sink:
    """Base class for trace sinks.

    Sinks receive trace records and handle their output
    (file, console, memory buffer, etc.).
    """

    def write(self, record: "TraceRecord") -> None:
        """Write a trace record.

        Args:
            record: The trace record to write.
        """
        raise NotImplementedError

    def flush(self) -> None:
        """Flush any buffered records."""
        pass

    def close(self) -> None:
        """Close the sink and release resources."""
        pass


class ObservabilityHub:
    """Central hub for trace configuration and record emission.

    Singleton pattern - use get_instance() to access. Controllers accept an
    explicit hub too, which is what tests use.

    Thread Safety:
        Records are emitted from the caller's thread and from every stream
        reader thread, so sink access is serialized by ``_emit_lock``.

    Example:
        >>> hub = ObservabilityHub.get_instance()
        >>> hub.configure(level=TraceLevel.NORMAL)
        >>> hub.add_sink(ConsoleSink())
        >>>
        >>> # Fast check before creating records
        >>> if hub.enabled:
        ...     hub.emit(record)
    """

    _instance: Optional["ObservabilityHub"] = None
    _lock = threading.Lock()

    def __init__(self):
        """Initialize the hub. Use get_instance() for the shared one."""
        self._level = TraceLevel.OFF
        self._sinks: List[Sink] = []
        self._emit_lock = threading.Lock()
        self._enabled = False

    @classmethod
    def get_instance(cls) -> "ObservabilityHub":
        """Get the singleton hub instance."""
        if cls._instance is None:
            with cls._lock:
                if cls._instance is None:
                    cls._instance = cls()
        return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Reset the singleton instance. For testing only."""
        with cls._lock:
            if cls._instance is not None:
                cls._instance.shutdown()
            cls._instance = None

    def configure(
        self,
        level: TraceLevel = TraceLevel.OFF,
        sinks: Optional[List[Sink]] = None,
    ) -> None:
        """Set the trace level and optionally add sinks."""
        self._level = level
        self._enabled = level > TraceLevel.OFF

        if sinks:
            for sink in sinks:
                self.add_sink(sink)

    def add_sink(self, sink: Sink) -> None:
        with self._emit_lock:
            self._sinks.append(sink)

    def remove_sink(self, sink: Sink) -> None:
        with self._emit_lock:
            if sink in self._sinks:
                self._sinks.remove(sink)

    def emit(self, record: "TraceRecord") -> None:
        """Emit a trace record to all sinks.

        Records below the configured level are dropped. A failing sink never
        affects the stream readers or the caller.
        """
        if not self._enabled:
            return

        if record.min_level > self._level:
            return

        with self._emit_lock:
            for sink in self._sinks:
                try:
                    sink.write(record)
                except Exception:
                    pass

    def flush(self) -> None:
        """Flush all sinks."""
        with self._emit_lock:
            for sink in self._sinks:
                try:
                    sink.flush()
                except Exception:
                    pass

    def shutdown(self) -> None:
        """Close all sinks and turn tracing off."""
        with self._emit_lock:
            for sink in self._sinks:
                try:
                    sink.flush()
                    sink.close()
                except Exception:
                    pass
            self._sinks.clear()

        self._level = TraceLevel.OFF
        self._enabled = False

    @property
    def enabled(self) -> bool:
        """Fast check if tracing is enabled.

        Use this before creating trace records to keep the disabled path
        free of allocations.
        """
        return self._enabled

    @property
    def level(self) -> TraceLevel:
        return self._level

    def is_level_enabled(self, level: TraceLevel) -> bool:
        return self._level >= level


# Import TraceRecord and sinks after defining TraceLevel
from nativeproc.observability.records import (  # noqa: E402
    TraceRecord,
    ProcessStartRecord,
    ProcessExitRecord,
    FlushRequestRecord,
    FlushResolvedRecord,
    MalformedFrameRecord,
)
from nativeproc.observability.sinks import FileSink, ConsoleSink, MemorySink, NullSink  # noqa: E402

__all__ = [
    # Core
    "TraceLevel",
    "Sink",
    "ObservabilityHub",
    # Records
    "TraceRecord",
    "ProcessStartRecord",
    "ProcessExitRecord",
    "FlushRequestRecord",
    "FlushResolvedRecord",
    "MalformedFrameRecord",
    # Sinks
    "FileSink",
    "ConsoleSink",
    "MemorySink",
    "NullSink",
]
