"""Launching the worker executable and attaching its streams.

The worker always gets three standard streams:

- stdin:  length-encoded records and control directives (we write)
- stdout: JSON-line results and flush acknowledgments (we read)
- stderr: diagnostic log lines (we read)

Optionally two more one-way pipes are created for state. Their worker-side
descriptors are passed through ``pass_fds`` and announced on the command
line:

- restore: ``--restore-fd N``, we write persisted state, worker reads it
- persist: ``--persist-fd N``, worker writes state documents, we read them

Example:
    >>> launcher = WorkerLauncher(["autodetect", "--bucket-span=300"], restore=True)
    >>> worker = launcher.launch()
    >>> worker.pid
    12345
"""

import logging
import os
import subprocess
from dataclasses import dataclass, field
from typing import BinaryIO, Dict, List, Optional, Sequence

from nativeproc.errors import StartupError

logger = logging.getLogger(__name__)

RESTORE_FD_ARG = "--restore-fd"
PERSIST_FD_ARG = "--persist-fd"


@dataclass
class LaunchedWorker:
    """A running worker process and the parent-side ends of its streams.

    Attributes:
        process: The Popen handle (or anything with poll/wait/kill/pid).
        input_stream: Writable binary stream feeding the worker's stdin.
        output_stream: Readable binary stream of the worker's stdout.
        error_stream: Readable binary stream of the worker's stderr.
        restore_stream: Writable end of the restore pipe, if requested.
        persist_stream: Readable end of the persist pipe, if requested.
        command: The argv the worker was started with.
    """
    process: subprocess.Popen
    input_stream: BinaryIO
    output_stream: BinaryIO
    error_stream: BinaryIO
    restore_stream: Optional[BinaryIO] = None
    persist_stream: Optional[BinaryIO] = None
    command: List[str] = field(default_factory=list)

    @property
    def pid(self) -> int:
        return self.process.pid


class WorkerLauncher:
    """Spawns the worker executable with its stream pipes attached.

    Args:
        command: argv of the worker executable.
        cwd: Working directory for the worker.
        env: Extra environment variables, merged over os.environ.
        restore: Create a restore pipe.
        persist: Create a persist pipe.
    """

    def __init__(
        self,
        command: Sequence[str],
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        restore: bool = False,
        persist: bool = False,
    ):
        if not command:
            raise ValueError("command must not be empty")
        self._command = list(command)
        self._cwd = cwd
        self._env = dict(env) if env else None
        self._restore = restore
        self._persist = persist

    @property
    def command(self) -> List[str]:
        return list(self._command)

    def launch(self) -> LaunchedWorker:
        """Start the worker.

        Raises:
            StartupError: If the executable cannot be started or a pipe
                cannot be created.
        """
        # Each entry: (worker-side fd, parent-side fd)
        restore_fds = self._pipe(child_reads=True) if self._restore else None
        persist_fds = self._pipe(child_reads=False) if self._persist else None
        child_fds = [p[0] for p in (restore_fds, persist_fds) if p]

        cmd = list(self._command)
        if restore_fds:
            cmd += [RESTORE_FD_ARG, str(restore_fds[0])]
        if persist_fds:
            cmd += [PERSIST_FD_ARG, str(persist_fds[0])]

        env = None
        if self._env:
            env = dict(os.environ)
            env.update(self._env)

        logger.info(f"Starting worker: {' '.join(cmd)}")

        try:
            process = subprocess.Popen(
                cmd,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                cwd=self._cwd,
                env=env,
                pass_fds=child_fds,
            )
        except (OSError, ValueError) as e:
            _close_fds(*(p[1] for p in (restore_fds, persist_fds) if p))
            raise StartupError(f"Failed to start worker {cmd[0]!r}: {e}") from e
        finally:
            # The worker holds its own copies now
            _close_fds(*child_fds)

        restore_stream = os.fdopen(restore_fds[1], "wb") if restore_fds else None
        persist_stream = os.fdopen(persist_fds[1], "rb") if persist_fds else None

        logger.info(f"Worker started (PID {process.pid})")
        return LaunchedWorker(
            process=process,
            input_stream=process.stdin,
            output_stream=process.stdout,
            error_stream=process.stderr,
            restore_stream=restore_stream,
            persist_stream=persist_stream,
            command=cmd,
        )

    @staticmethod
    def _pipe(child_reads: bool):
        try:
            read_fd, write_fd = os.pipe()
        except OSError as e:
            raise StartupError(f"Failed to create state pipe: {e}") from e
        return (read_fd, write_fd) if child_reads else (write_fd, read_fd)


def _close_fds(*fds: int) -> None:
    for fd in fds:
        try:
            os.close(fd)
        except OSError:
            pass


__all__ = ["WorkerLauncher", "LaunchedWorker", "RESTORE_FD_ARG", "PERSIST_FD_ARG"]
