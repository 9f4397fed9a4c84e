"""Heuristic liveness check for an external worker process.

There is no synchronous primitive that says whether a worker is truly alive.
A stalled output stream may mean the worker died, or only that it is slow.
Death is, however, almost always accompanied by the worker's diagnostic
stream reaching end-of-stream. That stream is consumed on another thread
which may lag slightly behind, so the monitor gives it a short grace period
to catch up before concluding the worker is still running.
"""

import logging
from typing import Callable, Optional, Protocol

logger = logging.getLogger(__name__)

# Tuned for scheduling jitter between the caller and the error reader thread.
DEFAULT_GRACE_MS = 45.0


class EndOfStreamSignal(Protocol):
    """Anything with threading.Event's wait() semantics."""

    def is_set(self) -> bool:
        ...

    def wait(self, timeout: Optional[float] = None) -> bool:
        ...


class LivenessMonitor:
    """Combines an OS-level liveness probe with error-stream EOF detection.

    Args:
        is_alive: Cheap, non-blocking OS-level check (e.g. Popen.poll()).
        end_of_stream: Event set by the error reader on end-of-stream.
        grace_ms: How long to wait for end-of-stream before giving up.
    """

    def __init__(
        self,
        is_alive: Callable[[], bool],
        end_of_stream: EndOfStreamSignal,
        grace_ms: float = DEFAULT_GRACE_MS,
    ):
        if grace_ms <= 0:
            raise ValueError(f"grace_ms must be positive, got {grace_ms}")
        self._is_alive = is_alive
        self._end_of_stream = end_of_stream
        self._grace_sec = grace_ms / 1000.0

    @property
    def grace_ms(self) -> float:
        return self._grace_sec * 1000.0

    def is_alive(self) -> bool:
        return self._is_alive()

    def is_alive_after_waiting(self) -> bool:
        """Check whether the worker has terminated, allowing a grace period.

        This is a heuristic. False means the worker has certainly ended.
        True means it *probably* still runs: the OS reports it present and
        its error stream did not end within the grace period.

        Never blocks longer than the grace period.
        """
        if not self._is_alive():
            return False
        if self._end_of_stream.wait(self._grace_sec):
            logger.debug("Error stream ended within grace period; worker is dead")
            return False
        return True


__all__ = ["LivenessMonitor", "EndOfStreamSignal", "DEFAULT_GRACE_MS"]
