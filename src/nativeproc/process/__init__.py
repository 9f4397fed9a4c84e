"""Worker process supervision.

Components:
- Encoder: length-encoded records and control directives (input stream)
- Launcher: spawns the worker and attaches its stream pipes
- Readers: background consumers of the output, error and persist streams
- Controller: NativeProcess, the lifecycle owner tying it all together
- Worker: a reference worker speaking the same protocol
"""

from nativeproc.process.encoder import (
    encode_record,
    read_record,
    iter_records,
    split_control,
    ControlMessageWriter,
    FLUSH_SPACES_LENGTH,
)
from nativeproc.process.launcher import (
    WorkerLauncher,
    LaunchedWorker,
    RESTORE_FD_ARG,
    PERSIST_FD_ARG,
)
from nativeproc.process.readers import (
    ErrorBuffer,
    OutputStreamReader,
    ErrorStreamReader,
    StateStreamReader,
)
from nativeproc.process.controller import NativeProcess

__all__ = [
    # Encoder
    "encode_record",
    "read_record",
    "iter_records",
    "split_control",
    "ControlMessageWriter",
    "FLUSH_SPACES_LENGTH",
    # Launcher
    "WorkerLauncher",
    "LaunchedWorker",
    "RESTORE_FD_ARG",
    "PERSIST_FD_ARG",
    # Readers
    "ErrorBuffer",
    "OutputStreamReader",
    "ErrorStreamReader",
    "StateStreamReader",
    # Controller
    "NativeProcess",
]
