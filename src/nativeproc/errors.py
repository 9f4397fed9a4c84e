"""Exception hierarchy for native process supervision.

Every error raised by nativeproc derives from NativeProcessError, so callers
can catch the whole family with one clause. ProcessIOError is additionally an
IOError so code written against plain stream semantics keeps working.
"""


class NativeProcessError(Exception):
    """Base class for all nativeproc errors."""


class StartupError(NativeProcessError):
    """The worker could not be launched or its streams could not be attached."""


class ProcessIOError(NativeProcessError, IOError):
    """A read or write on one of the worker's streams failed."""


class RestoreError(NativeProcessError):
    """The restore routine failed or no restore stream is available."""


class ConfigLoadError(NativeProcessError):
    """Error loading or validating configuration."""


__all__ = [
    "NativeProcessError",
    "StartupError",
    "ProcessIOError",
    "RestoreError",
    "ConfigLoadError",
]
