"""Reference worker speaking the native process stream protocol.

A small, dependency-free stand-in for a native analytics worker. It is used
by the integration tests and is handy for trying out a configuration
without the real executable:

- stdin: length-encoded records; data records are echoed as results
- stdout: one JSON object per line; flush acknowledgments as
  ``{"flush": {"id": ..., "last_finalized_bucket_end": ...}}``
- stderr: JSON log lines ``{"level", "message", "pid", "logger"}``
- restore fd: read to end-of-stream before any input is processed
- persist fd: one JSON state document plus a NUL byte per ``w`` directive

Usage:
    python -m nativeproc.process.worker --persist-fd 5 --log-level DEBUG
"""

import argparse
import json
import logging
import os
import sys
from typing import IO, List, Optional

from nativeproc.process.encoder import (
    ADVANCE_TIME_MESSAGE_CODE,
    BACKGROUND_PERSIST_MESSAGE_CODE,
    FLUSH_MESSAGE_CODE,
    INTERIM_MESSAGE_CODE,
    SKIP_TIME_MESSAGE_CODE,
    iter_records,
    split_control,
)

logger = logging.getLogger("nativeproc.worker.reference")


class JsonLineFormatter(logging.Formatter):
    """Formats log records as the JSON lines the error reader understands."""

    def format(self, record: logging.LogRecord) -> str:
        return json.dumps({
            "level": record.levelname,
            "message": record.getMessage(),
            "pid": os.getpid(),
            "logger": record.name,
        })


class ReferenceWorker:
    """Echoing worker state machine.

    Args:
        output: Text stream for results and acknowledgments.
        persist: Binary stream for state documents, if any.
        crash_after: Exit abruptly after this many data records.
    """

    def __init__(
        self,
        output: IO[str],
        persist: Optional[IO[bytes]] = None,
        crash_after: Optional[int] = None,
    ):
        self._output = output
        self._persist = persist
        self._crash_after = crash_after
        self.records_seen = 0
        self.last_time: Optional[int] = None
        self.restored_bytes = 0

    def restore(self, stream: IO[bytes]) -> None:
        data = stream.read()
        self.restored_bytes = len(data)
        if data:
            try:
                state = json.loads(data.rstrip(b"\0").decode("utf-8"))
                self.records_seen = int(state.get("records_seen", 0))
                self.last_time = state.get("last_time")
            except ValueError:
                logger.warning(f"Ignoring unreadable restore state ({len(data)} bytes)")
        logger.info(f"Restored {len(data)} bytes of state")

    def handle(self, record: List[str]) -> bool:
        """Apply one record. Returns False when the worker should crash."""
        directive = split_control(record)
        if directive is None:
            return self._handle_data(record[:-1])
        self._handle_directive(directive)
        return True

    def _handle_data(self, fields: List[str]) -> bool:
        self.records_seen += 1
        self._emit({"record": fields, "seq": self.records_seen})
        if self._crash_after is not None and self.records_seen >= self._crash_after:
            logger.error(f"Simulated crash after {self.records_seen} records")
            return False
        return True

    def _handle_directive(self, directive: str) -> None:
        if not directive.strip():
            # Flush padding
            return
        code, argument = directive[0], directive[1:]
        if code == FLUSH_MESSAGE_CODE:
            ack = {"id": argument}
            if self.last_time is not None:
                ack["last_finalized_bucket_end"] = self.last_time
            self._emit({"flush": ack})
            self._output.flush()
        elif code == INTERIM_MESSAGE_CODE:
            start, _, end = argument.partition(" ")
            self._emit({"interim": {"start": start or None, "end": end or None}})
        elif code in (ADVANCE_TIME_MESSAGE_CODE, SKIP_TIME_MESSAGE_CODE):
            self.last_time = int(float(argument))
            logger.debug(f"Time moved to {self.last_time} ({code})")
        elif code == BACKGROUND_PERSIST_MESSAGE_CODE:
            self._write_state()
        else:
            logger.warning(f"Unknown control message: {directive[:20]}")

    def _write_state(self) -> None:
        if self._persist is None:
            logger.error("Persist requested but no persist stream was given")
            return
        document = json.dumps({
            "records_seen": self.records_seen,
            "last_time": self.last_time,
        }).encode("utf-8")
        self._persist.write(document + b"\0")
        self._persist.flush()
        logger.debug(f"Persisted {len(document)} bytes of state")

    def _emit(self, frame: dict) -> None:
        self._output.write(json.dumps(frame) + "\n")


def run_worker(
    restore_fd: Optional[int] = None,
    persist_fd: Optional[int] = None,
    crash_after: Optional[int] = None,
) -> int:
    """Run the worker main loop until stdin ends.

    Returns:
        Exit code (0 for success, non-zero for error).
    """
    logger.info("Worker started")

    persist = os.fdopen(persist_fd, "wb") if persist_fd is not None else None
    worker = ReferenceWorker(sys.stdout, persist=persist, crash_after=crash_after)

    try:
        if restore_fd is not None:
            with os.fdopen(restore_fd, "rb") as restore:
                worker.restore(restore)

        for record in iter_records(sys.stdin.buffer):
            if not worker.handle(record):
                sys.stdout.flush()
                return 3
    except (EOFError, ValueError) as e:
        logger.error(f"Malformed input: {e}")
        return 2
    finally:
        sys.stdout.flush()
        if persist is not None:
            persist.close()

    logger.info(f"Input ended after {worker.records_seen} records")
    return 0


def main() -> int:
    """Main entry point for the worker subprocess."""
    parser = argparse.ArgumentParser(
        description="nativeproc reference worker",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--restore-fd",
        type=int,
        help="File descriptor to read restored state from",
    )
    parser.add_argument(
        "--persist-fd",
        type=int,
        help="File descriptor to write persisted state to",
    )
    parser.add_argument(
        "--crash-after",
        type=int,
        help="Exit abruptly after this many data records (testing aid)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    args = parser.parse_args()

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JsonLineFormatter())
    logging.basicConfig(level=getattr(logging, args.log_level), handlers=[handler])

    return run_worker(args.restore_fd, args.persist_fd, args.crash_after)


if __name__ == "__main__":
    sys.exit(main())
