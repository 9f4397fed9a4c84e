"""Flush requests and their asynchronous acknowledgment.

A flush is requested on the input stream and acknowledged, some time later,
on the output stream. The two are correlated only by a token, so the
coordinator keeps one Future per token and resolves it when the matching
acknowledgment arrives, or abandons it when the worker dies.

Example:
    >>> coordinator = FlushCoordinator()
    >>> token = coordinator.new_token()
    >>> coordinator.acknowledge(FlushAcknowledgement(flush_id=token))
    True
    >>> coordinator.state(token)
    <FlushState.COMPLETED: 'completed'>
"""

import itertools
import logging
import threading
from concurrent.futures import Future, InvalidStateError, TimeoutError as FutureTimeoutError
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, List, Optional

logger = logging.getLogger(__name__)


class FlushState(str, Enum):
    """State of a single flush request."""
    PENDING = "pending"
    COMPLETED = "completed"
    ABANDONED = "abandoned"


@dataclass(frozen=True)
class FlushParams:
    """Controls that accompany a flush directive.

    Attributes:
        calc_interim: Ask the worker to calculate interim results.
        start: Optional start of the interim results time range.
        end: Optional end of the interim results time range.
        advance_time: Advance the worker's clock to this time.
        skip_time: Skip the worker's clock forward to this time.
    """
    calc_interim: bool = False
    start: Optional[str] = None
    end: Optional[str] = None
    advance_time: Optional[str] = None
    skip_time: Optional[str] = None

    def __post_init__(self):
        if not self.calc_interim and (self.start or self.end):
            raise ValueError("start and end are only valid when calc_interim is set")
        if bool(self.start) != bool(self.end):
            raise ValueError("start and end must be given together")
        if self.start and self.end and _as_number(self.end) <= _as_number(self.start):
            raise ValueError(
                f"end ({self.end}) must be after start ({self.start})"
            )

    @property
    def should_advance_time(self) -> bool:
        return bool(self.advance_time)

    @property
    def should_skip_time(self) -> bool:
        return bool(self.skip_time)


def _as_number(value: str) -> float:
    try:
        return float(value)
    except ValueError:
        raise ValueError(f"time value must be numeric, got {value!r}") from None


@dataclass(frozen=True)
class FlushAcknowledgement:
    """Acknowledgment emitted by the worker once a flush has been processed."""
    flush_id: str
    last_finalized_bucket_end: Optional[int] = None


FlushListener = Callable[[str, FlushState], None]


class FlushCoordinator:
    """Issues flush tokens and resolves them from acknowledgments.

    Tokens are a monotonically increasing counter rendered as a string,
    optionally salted with ``prefix`` so tokens from different controllers
    can be told apart in a shared log. A token is never reused.

    Each token maps to a Future whose result is the terminal FlushState.
    Resolution happens at most once; a late acknowledgment for an abandoned
    token is ignored.

    Thread Safety:
        new_token() is called from the caller's thread while acknowledge()
        runs on the output reader thread and abandon_all() on whichever
        thread observes worker death. All map access holds ``_lock``.
    """

    def __init__(
        self,
        prefix: str = "",
        on_resolved: Optional[FlushListener] = None,
    ):
        self._prefix = prefix
        self._on_resolved = on_resolved
        self._counter = itertools.count(1)
        self._futures: Dict[str, Future] = {}
        self._lock = threading.Lock()
        self._closed = False

    def new_token(self) -> str:
        """Allocate a fresh token in the PENDING state."""
        future: Future = Future()
        with self._lock:
            token = f"{self._prefix}{next(self._counter)}"
            self._futures[token] = future
            closed = self._closed
        if closed:
            # Worker already gone; nothing will ever acknowledge this token.
            self._resolve(token, future, FlushState.ABANDONED)
        return token

    def acknowledge(self, ack: FlushAcknowledgement) -> bool:
        """Mark the acknowledged token COMPLETED.

        Returns:
            True if a pending token was completed.
        """
        with self._lock:
            future = self._futures.get(ack.flush_id)
        if future is None:
            logger.warning(f"Acknowledgement for unknown flush id '{ack.flush_id}'")
            return False
        if not self._resolve(ack.flush_id, future, FlushState.COMPLETED):
            logger.warning(
                f"Acknowledgement for flush id '{ack.flush_id}' arrived after "
                f"it was resolved as {future.result().value}"
            )
            return False
        logger.debug(f"Flush '{ack.flush_id}' acknowledged")
        return True

    def abandon(self, token: str) -> bool:
        """Abandon a single token, e.g. when its directive could not be written.

        Returns:
            True if the token was pending and is now ABANDONED.
        """
        with self._lock:
            future = self._futures.get(token)
        if future is None:
            return False
        return self._resolve(token, future, FlushState.ABANDONED)

    def abandon_all(self) -> List[str]:
        """Abandon every pending token and refuse new ones.

        Returns:
            Tokens that were moved from PENDING to ABANDONED.
        """
        with self._lock:
            self._closed = True
            pending = [(t, f) for t, f in self._futures.items() if not f.done()]

        abandoned = [
            token for token, future in pending
            if self._resolve(token, future, FlushState.ABANDONED)
        ]
        if abandoned:
            logger.info(f"Abandoned {len(abandoned)} pending flush(es): {abandoned}")
        return abandoned

    def _resolve(self, token: str, future: Future, state: FlushState) -> bool:
        try:
            future.set_result(state)
        except InvalidStateError:
            # Another path resolved it first
            return False
        if self._on_resolved is not None:
            try:
                self._on_resolved(token, state)
            except Exception as e:
                logger.warning(f"Flush listener failed for '{token}': {e}")
        return True

    def state(self, token: str) -> FlushState:
        """Current state of ``token``.

        Raises:
            KeyError: If the token was never issued by this coordinator.
        """
        with self._lock:
            future = self._futures[token]
        return future.result() if future.done() else FlushState.PENDING

    def future(self, token: str) -> Future:
        """The Future that resolves to ``token``'s terminal state."""
        with self._lock:
            return self._futures[token]

    def wait(self, token: str, timeout: Optional[float] = None) -> FlushState:
        """Block until ``token`` is resolved or ``timeout`` elapses.

        Returns:
            The terminal state, or PENDING if the timeout elapsed first.
        """
        try:
            return self.future(token).result(timeout=timeout)
        except FutureTimeoutError:
            return FlushState.PENDING

    @property
    def pending_count(self) -> int:
        with self._lock:
            return sum(1 for f in self._futures.values() if not f.done())


__all__ = [
    "FlushState",
    "FlushParams",
    "FlushAcknowledgement",
    "FlushCoordinator",
    "FlushListener",
]
