from __future__ import annotations

import logging
import os
import termios
from typing import Final, Optional, Tuple

import serial

from .errors import ConfigError, OpenError, UnsupportedBaudRate

_logger = logging.getLogger(__name__)

DEFAULT_BAUDRATE: Final[int] = 9600
DEFAULT_POLL_INTERVAL_MS: Final[int] = 100

# Standard rates this platform's termios can express exactly.
SUPPORTED_BAUDRATES: Final[Tuple[int, ...]] = tuple(
    rate for rate in serial.Serial.BAUDRATES if hasattr(termios, f"B{rate}")
)


def check_baudrate(baudrate: int) -> int:
    """
    Map a requested rate onto the supported rate table.
    Args:
        baudrate (int): Requested rate in bits per second
    Returns:
        int: The same rate, if it is supported
    Raises:
        UnsupportedBaudRate: If no exact match exists
    """
    try:
        rate = int(baudrate)
    except (TypeError, ValueError):
        raise UnsupportedBaudRate(baudrate) from None
    if rate <= 0 or rate not in SUPPORTED_BAUDRATES:
        raise UnsupportedBaudRate(rate)
    return rate


class SerialHandle:
    """
    One open, raw-configured serial device.
    Reads on the underlying port return as soon as one byte is available or
    after one poll slice; writes block until accepted by the OS.
    Attributes:
        path (str): Device path the handle was opened on
        baudrate (int): Configured rate
        poll_interval_ms (int): Upper bound of a single low-level read
    """

    def __init__(self, port: serial.SerialBase, path: str, baudrate: int, poll_interval_ms: int) -> None:
        self._port = port
        self.path = path
        self.baudrate = baudrate
        self.poll_interval_ms = poll_interval_ms

    @property
    def port(self) -> serial.SerialBase:
        """The pyserial port object."""
        return self._port

    @property
    def is_open(self) -> bool:
        return bool(self._port.is_open)

    def close(self) -> None:
        """
        Discard queued input/output, then close the device. Closing twice is a no-op.
        """
        if not self._port.is_open:
            return
        try:
            self._port.reset_input_buffer()
            self._port.reset_output_buffer()
        except (serial.SerialException, OSError) as exc:
            _logger.debug("flush before close failed on %s: %s", self.path, exc)
        self._port.close()
        _logger.debug("closed port %s", self.path)

    def __enter__(self) -> "SerialHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def __repr__(self) -> str:
        state = "open" if self.is_open else "closed"
        return f"<SerialHandle {self.path} {self.baudrate} baud {state}>"


class _QueuePreservingSerial(serial.Serial):
    """
    pyserial device port whose open() leaves bytes already queued by the OS in
    place. Explicit reset_input_buffer() calls still discard input.
    """

    _opening = False

    def open(self) -> None:
        self._opening = True
        try:
            super().open()
        finally:
            self._opening = False

    def _reset_input_buffer(self) -> None:
        if not self._opening:
            super()._reset_input_buffer()


def _make_port(path: str) -> serial.SerialBase:
    """Unopened pyserial port for a device path or a pyserial URL."""
    if "://" in path:
        return serial.serial_for_url(path, do_not_open=True)
    port = _QueuePreservingSerial()
    port.port = path
    return port


def open_port(
    path: str,
    baudrate: int = DEFAULT_BAUDRATE,
    *,
    poll_interval_ms: int = DEFAULT_POLL_INTERVAL_MS,
    previous: Optional[SerialHandle] = None,
) -> SerialHandle:
    """
    Open a serial device and place it in raw 8N1 mode without flow control.
    Args:
        path (str): Device path (e.g. /dev/ttyACM0) or pyserial URL
        baudrate (int): Rate from SUPPORTED_BAUDRATES
        poll_interval_ms (int): Poll slice bounding each low-level read
        previous (SerialHandle, optional): Handle to flush and close first
    Returns:
        SerialHandle: The configured handle
    Raises:
        UnsupportedBaudRate: If the rate is not in the table
        OpenError: If the device cannot be opened
        ConfigError: If terminal attributes cannot be applied
    """
    if previous is not None:
        previous.close()
    rate = check_baudrate(baudrate)
    poll_interval_ms = max(1, int(poll_interval_ms))

    try:
        port = _make_port(path)
    except (serial.SerialException, ValueError) as exc:
        raise OpenError(path, str(exc)) from exc
    try:
        port.baudrate = rate
        port.bytesize = serial.EIGHTBITS
        port.parity = serial.PARITY_NONE
        port.stopbits = serial.STOPBITS_ONE
        port.xonxoff = False
        port.rtscts = False
        port.dsrdtr = False
        port.timeout = poll_interval_ms / 1000.0
        port.write_timeout = None
    except ValueError as exc:
        raise ConfigError(f"invalid settings for {path}: {exc}") from exc

    try:
        port.open()
    except serial.SerialException as exc:
        # pyserial tags failures of the open() syscall with an errno; attribute
        # failures come through without one.
        if exc.errno is not None:
            raise OpenError(path, os.strerror(exc.errno)) from exc
        _close_quietly(port)
        raise ConfigError(f"could not configure {path}: {exc}") from exc
    except (OSError, ValueError) as exc:
        _close_quietly(port)
        raise ConfigError(f"could not configure {path}: {exc}") from exc

    _logger.debug("opened port %s at %d baud", path, rate)
    return SerialHandle(port, path, rate, poll_interval_ms)


def _close_quietly(port: serial.SerialBase) -> None:
    try:
        port.close()
    except (serial.SerialException, OSError):
        _logger.debug("close after failed configure raised", exc_info=True)
