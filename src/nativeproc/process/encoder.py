"""Length-encoded record framing for the worker's input stream.

Wire format (all integers are 32-bit big-endian):

    <num_fields> ( <byte_length> <utf-8 bytes> ) * num_fields

The last column of every record is the control field. Data records leave it
empty; control directives leave every other field empty and put the
directive text in the control field:

    f<id>               flush, acknowledged later on the output stream
    i / i<start> <end>  calculate interim results
    t<time>             advance time
    s<time>             skip time
    w                   start a background persist

Example:
    >>> encode_record(["a", "bc"])
    b'\\x00\\x00\\x00\\x02\\x00\\x00\\x00\\x01a\\x00\\x00\\x00\\x02bc'
"""

import struct
from typing import BinaryIO, Iterator, List, Optional, Sequence

from nativeproc.core.flush import FlushParams

FLUSH_MESSAGE_CODE = "f"
INTERIM_MESSAGE_CODE = "i"
ADVANCE_TIME_MESSAGE_CODE = "t"
SKIP_TIME_MESSAGE_CODE = "s"
BACKGROUND_PERSIST_MESSAGE_CODE = "w"

# Padding written after a flush so it isn't held in a worker-side read buffer.
FLUSH_SPACES_LENGTH = 8192

_INT = struct.Struct(">i")


def encode_record(fields: Sequence[str]) -> bytes:
    """Frame one record. Pure function of ``fields``."""
    parts = [_INT.pack(len(fields))]
    for value in fields:
        data = value.encode("utf-8")
        parts.append(_INT.pack(len(data)))
        parts.append(data)
    return b"".join(parts)


def read_record(stream: BinaryIO) -> Optional[List[str]]:
    """Read one length-encoded record from ``stream``.

    Returns:
        The decoded fields, or None on a clean end-of-stream.

    Raises:
        EOFError: If the stream ends in the middle of a record.
        ValueError: If a length prefix is negative.
    """
    header = stream.read(_INT.size)
    if not header:
        return None
    num_fields = _unpack(header)
    fields = []
    for _ in range(num_fields):
        length = _unpack(stream.read(_INT.size))
        data = stream.read(length)
        if len(data) != length:
            raise EOFError("stream ended inside a field")
        fields.append(data.decode("utf-8"))
    return fields


def iter_records(stream: BinaryIO) -> Iterator[List[str]]:
    """Yield records until a clean end-of-stream."""
    while True:
        record = read_record(stream)
        if record is None:
            return
        yield record


def _unpack(data: bytes) -> int:
    if len(data) != _INT.size:
        raise EOFError("stream ended inside a length prefix")
    (value,) = _INT.unpack(data)
    if value < 0:
        raise ValueError(f"negative length prefix {value}")
    return value


class ControlMessageWriter:
    """Builds data records and control directives of a fixed width.

    Args:
        number_of_fields: Record width including the trailing control field.
    """

    def __init__(self, number_of_fields: int):
        if number_of_fields < 1:
            raise ValueError("number_of_fields must be at least 1")
        self._number_of_fields = number_of_fields

    @property
    def number_of_fields(self) -> int:
        return self._number_of_fields

    def data_record(self, fields: Sequence[str]) -> bytes:
        """Encode caller fields followed by an empty control field."""
        return encode_record(list(fields) + [""])

    def control_message(self, message: str) -> bytes:
        record = [""] * self._number_of_fields
        record[-1] = message
        return encode_record(record)

    def flush_messages(self, flush_id: str, params: FlushParams) -> bytes:
        """All directives for one flush, in the order the worker applies them."""
        messages = []
        if params.should_skip_time:
            messages.append(SKIP_TIME_MESSAGE_CODE + params.skip_time)
        if params.should_advance_time:
            messages.append(ADVANCE_TIME_MESSAGE_CODE + params.advance_time)
        if params.calc_interim:
            time_range = f"{params.start} {params.end}" if params.start else ""
            messages.append(INTERIM_MESSAGE_CODE + time_range)
        messages.append(FLUSH_MESSAGE_CODE + flush_id)
        messages.append(" " * FLUSH_SPACES_LENGTH)
        return b"".join(self.control_message(m) for m in messages)

    def persist_message(self) -> bytes:
        return self.control_message(BACKGROUND_PERSIST_MESSAGE_CODE)


def split_control(record: List[str]) -> Optional[str]:
    """Return the directive carried by ``record``, or None for a data record."""
    if record and record[-1] and not any(record[:-1]):
        return record[-1]
    return None


__all__ = [
    "encode_record",
    "read_record",
    "iter_records",
    "split_control",
    "ControlMessageWriter",
    "FLUSH_MESSAGE_CODE",
    "INTERIM_MESSAGE_CODE",
    "ADVANCE_TIME_MESSAGE_CODE",
    "SKIP_TIME_MESSAGE_CODE",
    "BACKGROUND_PERSIST_MESSAGE_CODE",
    "FLUSH_SPACES_LENGTH",
]
