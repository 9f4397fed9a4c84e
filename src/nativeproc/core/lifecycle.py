"""Lifecycle state of a supervised worker process.

The state only ever moves forward:

    STARTING -> READY -> RUNNING -> TERMINATING -> DEAD

Any state may jump straight to DEAD. Death can be observed from several
places at once (exit watcher, kill(), close()), so entering DEAD more than
once is a no-op rather than an error.

Example:
    >>> lifecycle = ProcessLifecycle()
    >>> lifecycle.advance(ProcessState.READY)
    True
    >>> lifecycle.advance(ProcessState.STARTING)
    False
    >>> lifecycle.state
    <ProcessState.READY: 1>
"""

import threading
from enum import IntEnum
from typing import Callable, List


class ProcessState(IntEnum):
    """Lifecycle state of a worker process, ordered by progression."""
    STARTING = 0     # Launch requested, streams not yet attached
    READY = 1        # Streams attached, handshake done
    RUNNING = 2      # At least one record or directive written
    TERMINATING = 3  # Graceful shutdown requested
    DEAD = 4         # Process exited or was killed


StateListener = Callable[[ProcessState, ProcessState], None]


class ProcessLifecycle:
    """Thread-safe holder for the current ProcessState.

    Listeners are called outside the lock with (old_state, new_state) for
    every transition that actually happens.
    """

    def __init__(self, initial: ProcessState = ProcessState.STARTING):
        self._state = initial
        self._lock = threading.Lock()
        self._dead = threading.Event()
        self._listeners: List[StateListener] = []
        if initial == ProcessState.DEAD:
            self._dead.set()

    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def is_dead(self) -> bool:
        return self._dead.is_set()

    def add_listener(self, listener: StateListener) -> None:
        with self._lock:
            self._listeners.append(listener)

    def advance(self, target: ProcessState) -> bool:
        """Move to ``target`` if it is ahead of the current state.

        Returns:
            True if the state changed, False if ``target`` is not ahead of
            the current state (including repeated DEAD transitions).
        """
        with self._lock:
            old = self._state
            if target <= old:
                return False
            self._state = target
            listeners = list(self._listeners)
            if target == ProcessState.DEAD:
                self._dead.set()

        for listener in listeners:
            listener(old, target)
        return True

    def mark_dead(self) -> bool:
        """Enter DEAD. Idempotent."""
        return self.advance(ProcessState.DEAD)


__all__ = ["ProcessState", "ProcessLifecycle", "StateListener"]
