"""Process controller for a long-running native analytics worker.

NativeProcess owns exactly one worker process and reconciles its three
loosely synchronized channels into one lifecycle view:

- input (stdin): records and control directives, written by the caller
- output (stdout): results and flush acknowledgments, read on a thread
- error (stderr): diagnostics, read on a thread; its EOF signals death

Almost every operation is fire-and-forget. A flush returns a token at once
and its completion is only observed later, when the output reader sees the
matching acknowledgment. Worker death is observed by the exit watcher,
kill() or close(), and it abandons outstanding flushes. Output EOF abandons
them too, so nobody waits on a token forever.

Example:
    >>> launcher = WorkerLauncher(["autodetect"], restore=True)
    >>> with NativeProcess(launcher, number_of_fields=3) as process:
    ...     process.restore_state(lambda sink: sink.write(saved_state))
    ...     process.write_record(["1700000000", "42.0"])
    ...     token = process.flush_job(FlushParams(calc_interim=True))
    ...     process.wait_for_flush(token, timeout=10.0)
    <FlushState.COMPLETED: 'completed'>
"""

import logging
import subprocess
import threading
import time
from datetime import datetime, timezone
from typing import BinaryIO, Callable, List, Optional, Sequence

from nativeproc.config.loader import configure_observability
from nativeproc.config.schema import ProcessConfig
from nativeproc.core.flush import FlushCoordinator, FlushParams, FlushState
from nativeproc.core.lifecycle import ProcessLifecycle, ProcessState
from nativeproc.core.liveness import DEFAULT_GRACE_MS, LivenessMonitor
from nativeproc.errors import ProcessIOError, RestoreError, StartupError
from nativeproc.observability import ObservabilityHub
from nativeproc.observability.records import (
    FlushRequestRecord,
    FlushResolvedRecord,
    ProcessExitRecord,
    ProcessStartRecord,
)
from nativeproc.process.encoder import ControlMessageWriter
from nativeproc.process.launcher import LaunchedWorker, WorkerLauncher
from nativeproc.process.readers import (
    ErrorBuffer,
    ErrorStreamReader,
    OutputStreamReader,
    ResultHandler,
    StateHandler,
    StateStreamReader,
    StreamReader,
)

logger = logging.getLogger(__name__)

Restorer = Callable[[BinaryIO], None]


class NativeProcess:
    """Supervises one external worker process.

    Args:
        launcher: Process-launch facility; anything with a ``launch()``
            returning a LaunchedWorker.
        name: Name used in logs and trace records.
        number_of_fields: Record width including the trailing control field.
        handshake: "assume" or "log" (wait for the first diagnostic line).
        handshake_timeout_sec: How long start() waits for the handshake.
        liveness_grace_ms: Grace period for is_process_alive_after_waiting().
        shutdown_timeout_sec: How long close() waits for a clean exit.
        output_drain_timeout_sec: How long the exit watcher lets the output
            reader drain before abandoning pending flushes.
        error_buffer_size: Maximum number of buffered error messages.
        flush_token_prefix: Salt prepended to flush tokens.
        result_handler: Called on the output reader thread for each result.
        state_handler: Called on the persist reader thread for each state
            document.
        observability_hub: Optional custom observability hub (uses global if None).
    """

    def __init__(
        self,
        launcher: WorkerLauncher,
        name: str = "worker",
        number_of_fields: int = 2,
        handshake: str = "assume",
        handshake_timeout_sec: float = 10.0,
        liveness_grace_ms: float = DEFAULT_GRACE_MS,
        shutdown_timeout_sec: float = 5.0,
        output_drain_timeout_sec: float = 1.0,
        error_buffer_size: int = 100,
        flush_token_prefix: str = "",
        result_handler: Optional[ResultHandler] = None,
        state_handler: Optional[StateHandler] = None,
        observability_hub: Optional[ObservabilityHub] = None,
    ):
        if handshake not in ("assume", "log"):
            raise ValueError(f"Unknown handshake policy: {handshake}")
        if liveness_grace_ms <= 0:
            raise ValueError(f"liveness_grace_ms must be positive, got {liveness_grace_ms}")

        self._launcher = launcher
        self._name = name
        self._handshake = handshake
        self._handshake_timeout_sec = handshake_timeout_sec
        self._liveness_grace_ms = liveness_grace_ms
        self._shutdown_timeout_sec = shutdown_timeout_sec
        self._output_drain_timeout_sec = output_drain_timeout_sec
        self._result_handler = result_handler
        self._state_handler = state_handler
        self._hub = observability_hub or ObservabilityHub.get_instance()

        self._lifecycle = ProcessLifecycle()
        self._lifecycle.add_listener(self._on_state_change)
        self._writer = ControlMessageWriter(number_of_fields)
        self._coordinator = FlushCoordinator(
            prefix=flush_token_prefix,
            on_resolved=self._on_flush_resolved,
        )
        self._error_buffer = ErrorBuffer(error_buffer_size)

        self._worker: Optional[LaunchedWorker] = None
        self._input: Optional[BinaryIO] = None
        self._restore_stream: Optional[BinaryIO] = None
        self._write_lock = threading.Lock()
        self._restore_lock = threading.Lock()
        self._exit_lock = threading.Lock()

        self._output_reader: Optional[OutputStreamReader] = None
        self._error_reader: Optional[ErrorStreamReader] = None
        self._readers: List[StreamReader] = []
        self._exit_watcher: Optional[threading.Thread] = None
        self._liveness: Optional[LivenessMonitor] = None

        self._start_time: Optional[datetime] = None
        self._start_monotonic = 0.0
        self._killed = False
        self._closed = False
        self._exit_reported = False

    @classmethod
    def from_config(
        cls,
        name: str,
        config: ProcessConfig,
        result_handler: Optional[ResultHandler] = None,
        state_handler: Optional[StateHandler] = None,
        observability_hub: Optional[ObservabilityHub] = None,
    ) -> "NativeProcess":
        """Build a controller (and its launcher) from a ProcessConfig.

        The config's observability section, unless its level is "off", is
        applied to ``observability_hub`` (the global hub by default).
        """
        if config.observability.level != "off":
            observability_hub = configure_observability(
                config.observability, observability_hub,
            )
        launcher = WorkerLauncher(
            command=config.command,
            cwd=config.cwd,
            env=config.env,
            restore=config.restore,
            persist=config.persist,
        )
        return cls(
            launcher,
            name=name,
            number_of_fields=config.number_of_fields,
            handshake=config.handshake,
            handshake_timeout_sec=config.handshake_timeout_sec,
            liveness_grace_ms=config.liveness_grace_ms,
            shutdown_timeout_sec=config.shutdown_timeout_sec,
            output_drain_timeout_sec=config.output_drain_timeout_sec,
            error_buffer_size=config.error_buffer_size,
            flush_token_prefix=config.flush_token_prefix,
            result_handler=result_handler,
            state_handler=state_handler,
            observability_hub=observability_hub,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Launch the worker, attach its streams and perform the handshake.

        Starting an already started controller is a no-op. A controller
        that was closed, killed or failed to start cannot be started again.

        Raises:
            StartupError: If the worker cannot be launched, its streams
                cannot be attached or the handshake does not complete.
        """
        if self._closed or self._lifecycle.is_dead:
            raise StartupError(f"Process '{self._name}' cannot be restarted")
        if self._worker is not None:
            return

        start_ns = time.perf_counter_ns()
        try:
            worker = self._launcher.launch()
        except StartupError:
            self._lifecycle.mark_dead()
            raise
        except OSError as e:
            self._lifecycle.mark_dead()
            raise StartupError(f"Failed to launch '{self._name}': {e}") from e

        self._worker = worker
        self._input = worker.input_stream
        self._restore_stream = worker.restore_stream
        self._start_time = datetime.now(timezone.utc)
        self._start_monotonic = time.monotonic()

        try:
            self._attach_streams(worker)
        except Exception as e:
            self._release()
            raise StartupError(f"Failed to attach streams of '{self._name}': {e}") from e

        if self._handshake == "log":
            self._await_handshake()

        self._lifecycle.advance(ProcessState.READY)
        startup_ms = (time.perf_counter_ns() - start_ns) / 1_000_000
        logger.info(f"Process '{self._name}' ready (PID {worker.pid}, {startup_ms:.0f}ms)")

        if self._hub.enabled:
            self._hub.emit(ProcessStartRecord(
                process_name=self._name,
                pid=worker.pid,
                command=list(worker.command),
                startup_ms=startup_ms,
            ))

    def _attach_streams(self, worker: LaunchedWorker) -> None:
        for stream_name in ("input_stream", "output_stream", "error_stream"):
            if getattr(worker, stream_name) is None:
                raise StartupError(f"worker has no {stream_name.replace('_', ' ')}")

        common = dict(process_name=self._name, observability_hub=self._hub)
        self._error_reader = ErrorStreamReader(
            worker.error_stream,
            error_buffer=self._error_buffer,
            **common,
        )
        self._output_reader = OutputStreamReader(
            worker.output_stream,
            self._coordinator,
            result_handler=self._result_handler,
            on_eof=self._on_output_eof,
            **common,
        )
        self._readers = [self._error_reader, self._output_reader]
        if worker.persist_stream is not None:
            self._readers.append(StateStreamReader(
                worker.persist_stream,
                state_handler=self._state_handler,
                **common,
            ))

        self._liveness = LivenessMonitor(
            is_alive=self.is_process_alive,
            end_of_stream=self._error_reader.end_of_stream,
            grace_ms=self._liveness_grace_ms,
        )

        for reader in self._readers:
            reader.start()

        self._exit_watcher = threading.Thread(
            target=self._watch_exit,
            name=f"{self._name}-exit-watcher",
            daemon=True,
        )
        self._exit_watcher.start()

    def _await_handshake(self) -> None:
        if self._error_reader.wait_for_first_message(self._handshake_timeout_sec):
            logger.debug(
                f"Handshake from '{self._name}' "
                f"(reported PID {self._error_reader.worker_pid})"
            )
            return

        if self.is_process_alive():
            reason = f"no handshake within {self._handshake_timeout_sec}s"
        else:
            reason = "worker exited before its handshake"
        errors = self.read_error()
        self.kill()
        self._release()
        message = f"Process '{self._name}' failed to start: {reason}"
        if errors:
            message += f": {errors}"
        raise StartupError(message)

    def is_ready(self) -> bool:
        """True once the worker has completed (or been assumed to complete)
        its handshake and has not died since."""
        return self._lifecycle.state in (ProcessState.READY, ProcessState.RUNNING)

    @property
    def state(self) -> ProcessState:
        return self._lifecycle.state

    @property
    def name(self) -> str:
        return self._name

    @property
    def pid(self) -> Optional[int]:
        return self._worker.pid if self._worker is not None else None

    def get_process_start_time(self) -> Optional[datetime]:
        """When the worker was launched (UTC), or None before start()."""
        return self._start_time

    # ------------------------------------------------------------------
    # Input stream
    # ------------------------------------------------------------------

    def write_record(self, fields: Sequence[str]) -> None:
        """Encode and write one record. Records are not acknowledged.

        Raises:
            ProcessIOError: If the input stream is closed or the worker died.
        """
        self._write(self._writer.data_record(fields))

    def flush_job(self, params: Optional[FlushParams] = None) -> str:
        """Ask the worker to flush and return the flush token immediately.

        The flush directives are pushed out of the local buffer but this
        call does not wait for the worker. Completion is observed later via
        wait_for_flush() or flush_state().

        Raises:
            ProcessIOError: If the directives could not be written.
        """
        params = params or FlushParams()
        token = self._coordinator.new_token()
        try:
            self._write(self._writer.flush_messages(token, params), flush=True)
        except ProcessIOError:
            self._coordinator.abandon(token)
            raise

        logger.debug(f"Flush '{token}' requested from '{self._name}'")
        if self._hub.enabled:
            self._hub.emit(FlushRequestRecord(
                process_name=self._name,
                flush_id=token,
                calc_interim=params.calc_interim,
                advance_time=params.advance_time,
                skip_time=params.skip_time,
            ))
        return token

    def persist_state(self) -> None:
        """Ask the worker to persist its state in the background.

        The state arrives on the persist stream and is handed to the state
        handler; this call does not wait for it.

        Raises:
            ProcessIOError: If there is no persist stream or the directive
                could not be written.
        """
        if self._worker is not None and self._worker.persist_stream is None:
            raise ProcessIOError(f"Process '{self._name}' has no persist stream")
        self._write(self._writer.persist_message(), flush=True)

    def flush_stream(self) -> None:
        """Push any locally buffered input bytes to the worker."""
        with self._write_lock:
            stream = self._writable_input()
            try:
                stream.flush()
            except (OSError, ValueError) as e:
                raise ProcessIOError(f"Flushing input of '{self._name}' failed: {e}") from e

    def _write(self, data: bytes, flush: bool = False) -> None:
        with self._write_lock:
            stream = self._writable_input()
            try:
                stream.write(data)
                if flush:
                    stream.flush()
            except (OSError, ValueError) as e:
                raise ProcessIOError(f"Write to '{self._name}' failed: {e}") from e
        self._lifecycle.advance(ProcessState.RUNNING)

    def _writable_input(self) -> BinaryIO:
        """Must be called with _write_lock held."""
        if self._input is None:
            raise ProcessIOError(f"Input stream of '{self._name}' is closed")
        if self._lifecycle.is_dead:
            raise ProcessIOError(f"Process '{self._name}' is dead")
        return self._input

    def _close_input(self) -> None:
        with self._write_lock:
            stream, self._input = self._input, None
        if stream is None:
            return
        try:
            stream.close()
        except (OSError, ValueError) as e:
            # Buffered bytes could not be delivered; the worker is gone
            logger.debug(f"Closing input of '{self._name}' failed: {e}")

    # ------------------------------------------------------------------
    # Flush results
    # ------------------------------------------------------------------

    def flush_state(self, token: str) -> FlushState:
        """Non-blocking state of a flush token.

        Raises:
            KeyError: If the token was not issued by this controller.
        """
        return self._coordinator.state(token)

    def wait_for_flush(self, token: str, timeout: Optional[float] = None) -> FlushState:
        """Block until the flush is completed or abandoned.

        Returns:
            COMPLETED, ABANDONED, or PENDING if ``timeout`` elapsed first.
        """
        return self._coordinator.wait(token, timeout)

    def _on_flush_resolved(self, token: str, state: FlushState) -> None:
        if self._hub.enabled:
            self._hub.emit(FlushResolvedRecord(
                process_name=self._name,
                flush_id=token,
                state=state.value,
            ))

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    def restore_state(self, restorer: Restorer) -> None:
        """Stream previously persisted state into the worker.

        ``restorer`` receives a writable binary stream wired to the worker's
        restore input. The stream is closed afterwards whether or not the
        restorer succeeded. The restore stream is one-shot.

        Raises:
            RestoreError: If there is no restore stream (or it was already
                used), or if the restorer fails.
        """
        with self._restore_lock:
            stream, self._restore_stream = self._restore_stream, None
        if stream is None:
            raise RestoreError(f"Process '{self._name}' has no open restore stream")

        logger.info(f"Restoring state into '{self._name}'")
        try:
            restorer(stream)
            stream.flush()
        except Exception as e:
            raise RestoreError(f"State restore into '{self._name}' failed: {e}") from e
        finally:
            _close_quietly(stream)

    # ------------------------------------------------------------------
    # Liveness and errors
    # ------------------------------------------------------------------

    def is_process_alive(self) -> bool:
        """Cheap OS-level check that the worker has not exited."""
        if self._worker is None:
            return False
        return self._worker.process.poll() is None

    def is_process_alive_after_waiting(self) -> bool:
        """Check whether the worker has terminated, allowing a grace period.

        Processing errors are most often caused by the worker terminating
        unexpectedly, but there is no direct way to ask whether it is
        alive. The error stream is read on another thread which can lag
        behind this one, so this waits up to ``liveness_grace_ms`` for that
        stream to reach end-of-stream.

        This is a heuristic: False means the worker has ended for sure,
        True means it probably still runs.
        """
        if self._liveness is None:
            return False
        return self._liveness.is_alive_after_waiting()

    def read_error(self) -> str:
        """Buffered worker error messages, or an empty string."""
        return self._error_buffer.snapshot()

    # ------------------------------------------------------------------
    # Death and shutdown
    # ------------------------------------------------------------------

    def kill(self) -> None:
        """Terminate the worker immediately, without a graceful shutdown.

        Safe to call any number of times and on a worker that already died.
        """
        with self._exit_lock:
            should_kill = self._worker is not None and not self._killed
            if should_kill:
                self._killed = True
        if should_kill:
            logger.info(f"Killing process '{self._name}' (PID {self._worker.pid})")
            try:
                self._worker.process.kill()
            except OSError as e:
                # ProcessLookupError: it already exited
                logger.debug(f"Kill of '{self._name}' failed: {e}")
        self._mark_dead()
        self._close_input()

    def close(self) -> None:
        """Shut the worker down gracefully, killing it if it does not exit.

        Closes the input stream (end-of-input), waits up to
        ``shutdown_timeout_sec`` for a clean exit and then kills the worker.
        Streams and the OS process are released on every path. Never raises.
        """
        if self._closed:
            return
        self._closed = True

        try:
            if self._worker is not None and not self._lifecycle.is_dead:
                self._lifecycle.advance(ProcessState.TERMINATING)
                pending = self._coordinator.pending_count
                logger.info(
                    f"Closing process '{self._name}'"
                    + (f" with {pending} flush(es) pending" if pending else "")
                )
                self._close_input()
                # The worker reads its restore stream before any input
                self._close_restore()
                try:
                    self._worker.process.wait(timeout=self._shutdown_timeout_sec)
                except subprocess.TimeoutExpired:
                    logger.warning(
                        f"Process '{self._name}' did not exit within "
                        f"{self._shutdown_timeout_sec}s, killing"
                    )
                    self.kill()
        except Exception as e:
            logger.warning(f"Error during shutdown of '{self._name}': {e}")
        finally:
            self._release()

    def _release(self) -> None:
        """Release every stream and the OS process. Idempotent, never raises."""
        try:
            if self.is_process_alive():
                self.kill()
            self._close_input()
            self._close_restore()

            # Readers close their own streams once the worker's ends close
            for reader in self._readers:
                if not reader.join(self._output_drain_timeout_sec):
                    logger.warning(
                        f"{reader.stream_name} reader of '{self._name}' "
                        f"still running after shutdown"
                    )
            if self._exit_watcher is not None and self._exit_watcher is not threading.current_thread():
                self._exit_watcher.join(self._output_drain_timeout_sec)
        except Exception as e:
            logger.warning(f"Error releasing resources of '{self._name}': {e}")
        finally:
            self._mark_dead()

    def _watch_exit(self) -> None:
        process = self._worker.process
        try:
            exit_code = process.wait()
        except Exception as e:
            logger.error(f"Waiting for '{self._name}' failed: {e}")
            exit_code = None

        # Let acknowledgments written just before exit complete their tokens
        if self._output_reader is not None:
            self._output_reader.join(self._output_drain_timeout_sec)

        expected = self._killed or self._lifecycle.state == ProcessState.TERMINATING
        abandoned = self._mark_dead()
        if not expected:
            errors = self.read_error()
            logger.error(
                f"Process '{self._name}' exited unexpectedly with code {exit_code}"
                + (f": {errors}" if errors else "")
            )
        else:
            logger.info(f"Process '{self._name}' exited with code {exit_code}")
        self._report_exit(exit_code, abandoned)

    def _close_restore(self) -> None:
        with self._restore_lock:
            stream, self._restore_stream = self._restore_stream, None
        if stream is not None:
            _close_quietly(stream)

    def _on_output_eof(self) -> None:
        # No acknowledgment can arrive any more
        abandoned = self._coordinator.abandon_all()
        if abandoned:
            logger.warning(
                f"Output of '{self._name}' ended with {len(abandoned)} flush(es) pending"
            )

    def _mark_dead(self) -> int:
        """Enter DEAD and abandon pending flushes. Returns how many were abandoned."""
        self._lifecycle.mark_dead()
        return len(self._coordinator.abandon_all())

    def _on_state_change(self, old: ProcessState, new: ProcessState) -> None:
        logger.debug(f"Process '{self._name}' {old.name} -> {new.name}")

    def _report_exit(self, exit_code: Optional[int], abandoned: int) -> None:
        with self._exit_lock:
            if self._exit_reported:
                return
            self._exit_reported = True
        if self._hub.enabled:
            self._hub.emit(ProcessExitRecord(
                process_name=self._name,
                pid=self._worker.pid,
                exit_code=exit_code,
                killed=self._killed,
                uptime_sec=time.monotonic() - self._start_monotonic,
                abandoned_flushes=abandoned,
            ))

    def __enter__(self) -> "NativeProcess":
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()


def _close_quietly(stream: BinaryIO) -> None:
    try:
        stream.close()
    except (OSError, ValueError) as e:
        logger.debug(f"Closing stream failed: {e}")


__all__ = ["NativeProcess", "Restorer"]
