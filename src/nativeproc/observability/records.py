"""Trace record data classes for observability.

Record Categories:
- Base: TraceRecord base class
- Process: worker start and exit
- Flush: flush requests and their resolution
- Stream: malformed frames skipped by a reader
"""

from dataclasses import dataclass, field, asdict
from typing import Any, Dict, List, Optional
import time
import json


# Forward reference for TraceLevel
from nativeproc.observability import TraceLevel


@dataclass
class TraceRecord:
    """Base class for all trace records.

    All trace records have:
    - record_type: String identifying the record type
    - timestamp_ns: When the record was created (monotonic)
    - min_level: Minimum trace level required to emit this record

    Subclasses should set record_type as a class variable.
    """
    record_type: str = field(default="base", init=False)
    timestamp_ns: int = field(default_factory=lambda: time.perf_counter_ns())
    min_level: TraceLevel = field(default=TraceLevel.NORMAL, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        """Convert record to a JSON-friendly dictionary."""
        d = asdict(self)
        d.pop("min_level", None)
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


# =============================================================================
# Process Records
# =============================================================================


@dataclass
class ProcessStartRecord(TraceRecord):
    """Emitted once the worker has been launched and its streams attached."""
    record_type: str = field(default="process_start", init=False)
    min_level: TraceLevel = field(default=TraceLevel.MINIMAL, repr=False)

    process_name: str = ""
    pid: int = 0
    command: List[str] = field(default_factory=list)
    startup_ms: float = 0.0


@dataclass
class ProcessExitRecord(TraceRecord):
    """Emitted when the worker is observed dead."""
    record_type: str = field(default="process_exit", init=False)
    min_level: TraceLevel = field(default=TraceLevel.MINIMAL, repr=False)

    process_name: str = ""
    pid: int = 0
    exit_code: Optional[int] = None
    killed: bool = False
    uptime_sec: float = 0.0
    abandoned_flushes: int = 0


# =============================================================================
# Flush Records
# =============================================================================


@dataclass
class FlushRequestRecord(TraceRecord):
    """Emitted when a flush directive is written to the worker."""
    record_type: str = field(default="flush_request", init=False)

    process_name: str = ""
    flush_id: str = ""
    calc_interim: bool = False
    advance_time: Optional[str] = None
    skip_time: Optional[str] = None


@dataclass
class FlushResolvedRecord(TraceRecord):
    """Emitted when a flush is completed or abandoned."""
    record_type: str = field(default="flush_resolved", init=False)

    process_name: str = ""
    flush_id: str = ""
    state: str = ""


# =============================================================================
# Stream Records
# =============================================================================


@dataclass
class MalformedFrameRecord(TraceRecord):
    """Emitted each time a reader skips a frame it could not parse."""
    record_type: str = field(default="malformed_frame", init=False)
    min_level: TraceLevel = field(default=TraceLevel.VERBOSE, repr=False)

    process_name: str = ""
    stream: str = ""  # "output", "error", "persist"
    reason: str = ""
    preview: str = ""
    total_malformed: int = 0


__all__ = [
    "TraceRecord",
    "ProcessStartRecord",
    "ProcessExitRecord",
    "FlushRequestRecord",
    "FlushResolvedRecord",
    "MalformedFrameRecord",
]
