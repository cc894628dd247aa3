from __future__ import annotations

import logging
import time
from enum import Enum
from typing import Final, NamedTuple, Optional, Union

import serial

from .errors import TransportError
from .port import SerialHandle

_logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS: Final[int] = 5000
DEFAULT_EOL: Final[int] = 0x0A
DEFAULT_MAX_LEN: Final[int] = 256


class ReadStatus(Enum):
    """
    Outcome tags of a single-byte read.
    DATA: one byte was transferred
    TIMEOUT: the budget ran out with nothing transferred
    EOF: the source is exhausted (file sources only)
    ERROR: the OS reported a failure
    """
    DATA = "data"
    TIMEOUT = "timeout"
    EOF = "eof"
    ERROR = "error"


class ReadOutcome:
    """
    Tagged result of a single-byte read.
    Only DATA carries a byte; only ERROR carries an exception.
    """

    __slots__ = ("status", "byte", "error")

    def __init__(self, status: ReadStatus, byte: Optional[int] = None, error: Optional[BaseException] = None) -> None:
        self.status = status
        self.byte = byte
        self.error = error

    @classmethod
    def data(cls, value: int) -> "ReadOutcome":
        return cls(ReadStatus.DATA, byte=value)

    @classmethod
    def timed_out(cls) -> "ReadOutcome":
        return cls(ReadStatus.TIMEOUT)

    @classmethod
    def eof(cls) -> "ReadOutcome":
        return cls(ReadStatus.EOF)

    @classmethod
    def failed(cls, error: BaseException) -> "ReadOutcome":
        return cls(ReadStatus.ERROR, error=error)

    @property
    def is_data(self) -> bool:
        return self.status is ReadStatus.DATA

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ReadOutcome):
            return NotImplemented
        return (self.status, self.byte, self.error) == (other.status, other.byte, other.error)

    def __repr__(self) -> str:
        if self.status is ReadStatus.DATA:
            return f"ReadOutcome(DATA, 0x{self.byte:02x})"
        if self.status is ReadStatus.ERROR:
            return f"ReadOutcome(ERROR, {self.error!r})"
        return f"ReadOutcome({self.status.name})"


class TimeoutBudget:
    """
    Monotonic deadline, fixed at construction, shared by an operation that
    spans several reads.
    """

    def __init__(self, timeout_ms: int) -> None:
        self.timeout_ms = max(0, int(timeout_ms))
        self._deadline = time.monotonic() + self.timeout_ms / 1000.0

    @property
    def expired(self) -> bool:
        return time.monotonic() >= self._deadline


class LineBuffer:
    """
    Fixed-capacity line accumulator.
    Holds at most max_len - 1 data bytes so that a terminating NUL always fits.
    Args:
        max_len (int): Capacity including the terminator, at least 1
        eol (int): End-of-line byte value
    """

    def __init__(self, max_len: int = DEFAULT_MAX_LEN, eol: int = DEFAULT_EOL) -> None:
        if max_len < 1:
            raise ValueError("max_len must be at least 1")
        self.max_len = int(max_len)
        self.eol = eol_byte(eol)
        self._data = bytearray()

    @property
    def full(self) -> bool:
        return len(self._data) >= self.max_len - 1

    def feed(self, value: int) -> bool:
        """
        Add one byte.
        Args:
            value (int): Byte value
        Returns:
            bool: True if value was the EOL byte (it is not stored)
        """
        if value == self.eol:
            return True
        if not self.full:
            self._data.append(value)
        return False

    def __len__(self) -> int:
        return len(self._data)

    def __bytes__(self) -> bytes:
        return bytes(self._data)

    def as_cstring(self) -> bytes:
        """Data followed by a single NUL byte."""
        return bytes(self._data) + b"\x00"


class LineResult(NamedTuple):
    data: bytes
    complete: bool

    @property
    def bytes_written(self) -> int:
        return len(self.data)

    @property
    def buffer(self) -> bytes:
        """Null-terminated rendition of data."""
        return self.data + b"\x00"


def eol_byte(value: Union[int, bytes, str]) -> int:
    """
    Normalise an EOL given as int, single byte or single character.
    Raises:
        ValueError: If value is not exactly one byte
    """
    if isinstance(value, str):
        value = value.encode("latin-1")
    if isinstance(value, (bytes, bytearray)):
        if len(value) != 1:
            raise ValueError("EOL must be exactly one byte")
        return value[0]
    value = int(value)
    if not (0 <= value <= 0xFF):
        raise ValueError("EOL out of range (u8)")
    return value


def _read_one(port: serial.SerialBase, budget: TimeoutBudget) -> ReadOutcome:
    # Always issue at least one bounded read, so a zero budget still polls once.
    while True:
        try:
            chunk = port.read(1)
        except (serial.SerialException, OSError) as exc:
            _logger.debug("read failed: %s", exc)
            return ReadOutcome.failed(exc)
        if chunk:
            return ReadOutcome.data(chunk[0])
        if budget.expired:
            return ReadOutcome.timed_out()


def read_byte(handle: SerialHandle, timeout_ms: int = DEFAULT_TIMEOUT_MS) -> ReadOutcome:
    """
    Read exactly one byte, polling in slices until the budget is spent.
    Args:
        handle (SerialHandle): Open port
        timeout_ms (int): Budget in milliseconds, clamped to >= 0
    Returns:
        ReadOutcome: DATA, TIMEOUT or ERROR. Never EOF.
    """
    return _read_one(handle.port, TimeoutBudget(timeout_ms))


def read_line(
    handle: SerialHandle,
    eol: Union[int, bytes, str] = DEFAULT_EOL,
    max_len: int = DEFAULT_MAX_LEN,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
) -> LineResult:
    """
    Read bytes until EOL, until max_len - 1 bytes are held, or until the
    budget for the whole line runs out.
    Args:
        handle (SerialHandle): Open port
        eol: End-of-line byte, excluded from the result
        max_len (int): Buffer capacity including the NUL terminator
        timeout_ms (int): Budget shared by every byte of the line
    Returns:
        LineResult: data and whether the EOL byte was seen. A timeout before
        any data yields empty data, not an error.
    Raises:
        TransportError: If the OS reports a read failure
    """
    line = LineBuffer(max_len, eol)
    budget = TimeoutBudget(timeout_ms)
    port = handle.port
    while not line.full:
        outcome = _read_one(port, budget)
        if outcome.status is ReadStatus.ERROR:
            raise TransportError(f"read failed on {handle.path}: {outcome.error}") from outcome.error
        if outcome.status is ReadStatus.TIMEOUT:
            break
        if line.feed(outcome.byte):
            return LineResult(bytes(line), True)
        if budget.expired:
            break
    return LineResult(bytes(line), False)
