"""Core protocol state for nativeproc.

Building blocks used by the process controller:

- ProcessLifecycle / ProcessState: monotonic worker lifecycle
- FlushCoordinator: flush token issue and resolution
- FlushParams / FlushAcknowledgement / FlushState: flush data types
- LivenessMonitor: grace-period liveness heuristic
"""

from nativeproc.core.lifecycle import ProcessState, ProcessLifecycle
from nativeproc.core.flush import (
    FlushState,
    FlushParams,
    FlushAcknowledgement,
    FlushCoordinator,
)
from nativeproc.core.liveness import LivenessMonitor, DEFAULT_GRACE_MS

__all__ = [
    # Lifecycle
    "ProcessState",
    "ProcessLifecycle",
    # Flush
    "FlushState",
    "FlushParams",
    "FlushAcknowledgement",
    "FlushCoordinator",
    # Liveness
    "LivenessMonitor",
    "DEFAULT_GRACE_MS",
]
