"""Background consumers for the worker's output, error and persist streams.

Each reader owns one daemon thread that runs until its stream reaches
end-of-stream, normally because the worker exited. Readers close their own
streams. A frame that cannot be parsed is skipped, counted and logged;
it never stops the loop, so one corrupt frame does not hide the frames
after it.

Output stream: one JSON object per line. ``{"flush": {"id": ...}}`` is a
flush acknowledgment and goes to the FlushCoordinator; anything else is a
result and goes to the result handler.

Error stream: one diagnostic line per line. Structured JSON log lines are
forwarded to the ``nativeproc.worker`` logger; ERROR/FATAL ones and all
unstructured text also land in the bounded ErrorBuffer.

Persist stream: state documents separated by NUL bytes, each handed to the
state handler.
"""

import json
import logging
import threading
from collections import deque
from typing import Any, BinaryIO, Callable, Deque, Dict, Optional

from nativeproc.core.flush import FlushAcknowledgement, FlushCoordinator
from nativeproc.observability import ObservabilityHub
from nativeproc.observability.records import MalformedFrameRecord

logger = logging.getLogger(__name__)
worker_logger = logging.getLogger("nativeproc.worker")

ResultHandler = Callable[[Dict[str, Any]], None]
StateHandler = Callable[[bytes], None]

# Worker log level name -> Python logging level
WORKER_LOG_LEVELS = {
    "TRACE": logging.DEBUG,
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARN": logging.WARNING,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "FATAL": logging.CRITICAL,
    "CRITICAL": logging.CRITICAL,
}

_PREVIEW_CHARS = 100
_STATE_CHUNK_BYTES = 64 * 1024


class ErrorBuffer:
    """Bounded, append-only buffer of worker error messages.

    Oldest messages are evicted once ``max_messages`` is reached. Reading
    returns an immutable snapshot and never clears the buffer.
    """

    def __init__(self, max_messages: int = 100):
        self._messages: Deque[str] = deque(maxlen=max_messages)
        self._lock = threading.Lock()

    def append(self, message: str) -> None:
        with self._lock:
            self._messages.append(message)

    def snapshot(self) -> str:
        """All buffered messages joined by newlines, or "" if none."""
        with self._lock:
            return "\n".join(self._messages)

    def __len__(self) -> int:
        with self._lock:
            return len(self._messages)


class StreamReader:
    """Base class: runs ``_consume`` on a daemon thread.

    Subclasses set ``stream_name``, used in logs and trace records.

    Args:
        stream: Binary stream to consume. Closed when the loop exits.
        process_name: Name of the supervised worker.
        on_eof: Optional callback run once the stream has ended.
        observability_hub: Hub for trace records (uses global if None).
    """

    stream_name = "stream"

    def __init__(
        self,
        stream: BinaryIO,
        process_name: str = "worker",
        on_eof: Optional[Callable[[], None]] = None,
        observability_hub: Optional[ObservabilityHub] = None,
    ):
        self._stream = stream
        self._process_name = process_name
        self._on_eof = on_eof
        self._hub = observability_hub or ObservabilityHub.get_instance()

        self._eof = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self._malformed = 0
        self._handler_errors = 0
        self._frames = 0

    def start(self) -> None:
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run,
            name=f"{self._process_name}-{self.stream_name}-reader",
            daemon=True,
        )
        self._thread.start()

    def join(self, timeout: Optional[float] = None) -> bool:
        """Wait for the read loop to exit. Returns True if it has."""
        if self._thread is None:
            return True
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def end_of_stream(self) -> threading.Event:
        """Set once the stream has been read to its end."""
        return self._eof

    @property
    def malformed_count(self) -> int:
        return self._malformed

    @property
    def handler_error_count(self) -> int:
        return self._handler_errors

    @property
    def frame_count(self) -> int:
        return self._frames

    def _run(self) -> None:
        try:
            self._consume()
        except (OSError, ValueError) as e:
            # ValueError: stream closed under us
            logger.debug(f"{self._process_name} {self.stream_name} stream closed: {e}")
        finally:
            try:
                self._stream.close()
            except OSError as e:
                logger.debug(f"Closing {self.stream_name} stream failed: {e}")
            self._eof.set()
            logger.debug(
                f"{self._process_name} {self.stream_name} reader finished: "
                f"{self._frames} frames, {self._malformed} malformed"
            )
            if self._on_eof is not None:
                try:
                    self._on_eof()
                except Exception as e:
                    logger.error(f"{self.stream_name} end-of-stream callback failed: {e}")

    def _consume(self) -> None:
        raise NotImplementedError

    def _iter_lines(self):
        for raw in iter(self._stream.readline, b""):
            try:
                line = raw.decode("utf-8").strip()
            except UnicodeDecodeError:
                self._malformed_frame("invalid utf-8", raw)
                continue
            if line:
                yield line

    def _malformed_frame(self, reason: str, frame: Any) -> None:
        self._malformed += 1
        preview = frame if isinstance(frame, str) else repr(frame)
        preview = preview[:_PREVIEW_CHARS]
        logger.warning(
            f"Skipping malformed {self.stream_name} frame from "
            f"{self._process_name} ({reason}): {preview}"
        )
        if self._hub.enabled:
            self._hub.emit(MalformedFrameRecord(
                process_name=self._process_name,
                stream=self.stream_name,
                reason=reason,
                preview=preview,
                total_malformed=self._malformed,
            ))

    def _call_handler(self, handler: Callable, payload: Any) -> None:
        try:
            handler(payload)
        except Exception as e:
            self._handler_errors += 1
            logger.error(f"{self.stream_name} handler failed for {self._process_name}: {e}")


class OutputStreamReader(StreamReader):
    """Routes worker results and flush acknowledgments."""

    stream_name = "output"

    def __init__(
        self,
        stream: BinaryIO,
        coordinator: FlushCoordinator,
        result_handler: Optional[ResultHandler] = None,
        **kwargs,
    ):
        super().__init__(stream, **kwargs)
        self._coordinator = coordinator
        self._result_handler = result_handler

    def _consume(self) -> None:
        for line in self._iter_lines():
            try:
                frame = json.loads(line)
            except json.JSONDecodeError as e:
                self._malformed_frame(f"invalid JSON: {e.msg}", line)
                continue
            if not isinstance(frame, dict):
                self._malformed_frame("not a JSON object", line)
                continue

            self._frames += 1
            if "flush" in frame:
                ack = self._parse_ack(frame["flush"])
                if ack is None:
                    self._malformed_frame("flush acknowledgment without id", line)
                    continue
                self._coordinator.acknowledge(ack)
            elif self._result_handler is not None:
                self._call_handler(self._result_handler, frame)

    @staticmethod
    def _parse_ack(body: Any) -> Optional[FlushAcknowledgement]:
        if not isinstance(body, dict) or body.get("id") in (None, ""):
            return None
        bucket_end = body.get("last_finalized_bucket_end")
        return FlushAcknowledgement(
            flush_id=str(body["id"]),
            last_finalized_bucket_end=bucket_end if isinstance(bucket_end, int) else None,
        )


class ErrorStreamReader(StreamReader):
    """Buffers worker diagnostics and signals end-of-stream for liveness."""

    stream_name = "error"

    def __init__(
        self,
        stream: BinaryIO,
        error_buffer: Optional[ErrorBuffer] = None,
        **kwargs,
    ):
        super().__init__(stream, **kwargs)
        self._buffer = error_buffer if error_buffer is not None else ErrorBuffer()
        self._handshake = threading.Event()
        self._seen_message = False
        self._worker_pid: Optional[int] = None

    @property
    def buffer(self) -> ErrorBuffer:
        return self._buffer

    @property
    def worker_pid(self) -> Optional[int]:
        """The pid the worker reported in its first structured log line."""
        return self._worker_pid

    def wait_for_first_message(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker writes its first diagnostic line.

        Returns early, with False, if the stream ends first.
        """
        self._handshake.wait(timeout)
        return self._seen_message

    def _consume(self) -> None:
        try:
            for line in self._iter_lines():
                if line.startswith("{"):
                    self._handle_structured(line)
                else:
                    self._frames += 1
                    worker_logger.warning(f"[{self._process_name}] {line}")
                    self._buffer.append(line)
                self._seen_message = True
                self._handshake.set()
        finally:
            self._handshake.set()

    def _handle_structured(self, line: str) -> None:
        try:
            entry = json.loads(line)
        except json.JSONDecodeError as e:
            self._malformed_frame(f"invalid JSON: {e.msg}", line)
            return
        if not isinstance(entry, dict) or "message" not in entry:
            self._malformed_frame("log entry without message", line)
            return

        self._frames += 1
        if self._worker_pid is None and isinstance(entry.get("pid"), int):
            self._worker_pid = entry["pid"]

        level_name = str(entry.get("level", "INFO")).upper()
        level = WORKER_LOG_LEVELS.get(level_name, logging.INFO)
        message = str(entry["message"])
        source = entry.get("logger")
        prefix = f"[{self._process_name}/{source}]" if source else f"[{self._process_name}]"
        worker_logger.log(level, f"{prefix} {message}")

        if level >= logging.ERROR:
            self._buffer.append(message)


class StateStreamReader(StreamReader):
    """Splits the persist stream into NUL-separated state documents."""

    stream_name = "persist"

    def __init__(
        self,
        stream: BinaryIO,
        state_handler: Optional[StateHandler] = None,
        **kwargs,
    ):
        super().__init__(stream, **kwargs)
        self._state_handler = state_handler
        self._documents = 0

    @property
    def document_count(self) -> int:
        return self._documents

    def _consume(self) -> None:
        pending = b""
        for chunk in iter(lambda: self._stream.read1(_STATE_CHUNK_BYTES), b""):
            pending += chunk
            *documents, pending = pending.split(b"\0")
            for document in documents:
                if document:
                    self._deliver(document)
        if pending:
            self._malformed_frame("incomplete state document at end of stream", pending)

    def _deliver(self, document: bytes) -> None:
        self._frames += 1
        self._documents += 1
        logger.debug(f"{self._process_name} persisted {len(document)} bytes of state")
        if self._state_handler is not None:
            self._call_handler(self._state_handler, document)


__all__ = [
    "ErrorBuffer",
    "StreamReader",
    "OutputStreamReader",
    "ErrorStreamReader",
    "StateStreamReader",
    "WORKER_LOG_LEVELS",
    "ResultHandler",
    "StateHandler",
]
