"""nativeproc - Controller for long-running native analytics workers.

nativeproc supervises an external worker process that receives records on
its stdin, answers with results and flush acknowledgments on its stdout and
reports diagnostics on its stderr.

Quick Start:
    >>> import nativeproc as np_
    >>>
    >>> launcher = np_.WorkerLauncher(["autodetect", "--bucket-span=300"])
    >>> with np_.NativeProcess(launcher, number_of_fields=3) as process:
    ...     process.write_record(["1700000000", "42.0"])
    ...     token = process.flush_job(np_.FlushParams(calc_interim=True))
    ...     process.wait_for_flush(token, timeout=10.0)

    >>> # Or from a YAML configuration
    >>> config = np_.load_yaml_config("processes.yaml")
    >>> process = np_.NativeProcess.from_config("autodetect", config.processes["autodetect"])

For advanced usage, see:
- nativeproc.core: ProcessLifecycle, FlushCoordinator, LivenessMonitor
- nativeproc.process: encoder, launcher, stream readers, reference worker
- nativeproc.observability: trace hub, records and sinks
"""

try:
    from nativeproc._version import __version__
except ImportError:
    __version__ = "0.0.0.dev0"

from nativeproc.errors import (
    NativeProcessError,
    StartupError,
    ProcessIOError,
    RestoreError,
    ConfigLoadError,
)
from nativeproc.core import (
    ProcessState,
    FlushState,
    FlushParams,
    FlushAcknowledgement,
)
from nativeproc.process import (
    NativeProcess,
    WorkerLauncher,
    LaunchedWorker,
)
from nativeproc.config import (
    ProcessConfig,
    ConfigSchema,
    load_yaml_config,
    load_yaml_string,
)

__all__ = [
    "__version__",
    # Errors
    "NativeProcessError",
    "StartupError",
    "ProcessIOError",
    "RestoreError",
    "ConfigLoadError",
    # Core types
    "ProcessState",
    "FlushState",
    "FlushParams",
    "FlushAcknowledgement",
    # Process
    "NativeProcess",
    "WorkerLauncher",
    "LaunchedWorker",
    # Configuration
    "ProcessConfig",
    "ConfigSchema",
    "load_yaml_config",
    "load_yaml_string",
]
