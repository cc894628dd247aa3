from __future__ import annotations

import os
import termios
import time
import tty
import unittest
from unittest import mock

import pytest

import serial  # type: ignore

from mcu_serial.errors import ConfigError, OpenError, UnsupportedBaudRate
from mcu_serial.port import SUPPORTED_BAUDRATES, SerialHandle, _make_port, _QueuePreservingSerial, check_baudrate, open_port
from mcu_serial.reader import ReadOutcome, ReadStatus, read_byte
from mcu_serial.writer import write


class TestBaudRateTable(unittest.TestCase):
    def test_common_rates_supported(self):
        for rate in (300, 1200, 2400, 4800, 9600, 19200, 38400, 57600, 115200):
            with self.subTest(rate=rate):
                self.assertIn(rate, SUPPORTED_BAUDRATES)
                self.assertEqual(check_baudrate(rate), rate)

    def test_no_rounding_to_nearest_rate(self):
        for rate in (9601, 14400, 100000, 115201):
            with self.subTest(rate=rate):
                with self.assertRaises(UnsupportedBaudRate) as cm:
                    check_baudrate(rate)
                self.assertEqual(cm.exception.baudrate, rate)

    def test_non_positive_rejected(self):
        for rate in (0, -9600):
            with self.subTest(rate=rate):
                with self.assertRaises(UnsupportedBaudRate):
                    check_baudrate(rate)

    def test_unsupported_rate_never_touches_device(self):
        with mock.patch("mcu_serial.port._make_port") as factory:
            with self.assertRaises(UnsupportedBaudRate):
                open_port("/dev/ttyUSB0", 12345)
        factory.assert_not_called()


class TestOpenFailures(unittest.TestCase):
    def _port_failing_with(self, exc):
        port = mock.Mock()
        port.is_open = False
        port.open.side_effect = exc
        return port

    def test_missing_device_is_open_error(self):
        with self.assertRaises(OpenError):
            open_port("/dev/does-not-exist-mcu-serial", 9600)

    def test_unknown_url_scheme_is_open_error(self):
        with self.assertRaises(OpenError):
            open_port("bogus://nowhere", 9600)

    def test_permission_denied_is_open_error(self):
        port = self._port_failing_with(serial.SerialException(13, "could not open port /dev/ttyS9"))
        with mock.patch("mcu_serial.port._make_port", return_value=port):
            with self.assertRaises(OpenError) as cm:
                open_port("/dev/ttyS9", 9600)
        self.assertIn(os.strerror(13), str(cm.exception))
        self.assertEqual(cm.exception.path, "/dev/ttyS9")

    def test_attribute_failure_is_config_error_and_releases_port(self):
        port = self._port_failing_with(serial.SerialException("Could not configure port: (22, 'Invalid argument')"))
        with mock.patch("mcu_serial.port._make_port", return_value=port):
            with self.assertRaises(ConfigError):
                open_port("/dev/ttyS9", 9600)
        port.close.assert_called_once()

    def test_port_configured_raw_8n1_before_open(self):
        port = mock.Mock()
        with mock.patch("mcu_serial.port._make_port", return_value=port) as factory:
            handle = open_port("/dev/ttyACM0", 57600, poll_interval_ms=50)
        factory.assert_called_once_with("/dev/ttyACM0")
        self.assertEqual(port.baudrate, 57600)
        self.assertEqual(port.bytesize, serial.EIGHTBITS)
        self.assertEqual(port.parity, serial.PARITY_NONE)
        self.assertEqual(port.stopbits, serial.STOPBITS_ONE)
        self.assertFalse(port.xonxoff)
        self.assertFalse(port.rtscts)
        self.assertFalse(port.dsrdtr)
        self.assertAlmostEqual(port.timeout, 0.05)
        self.assertIsNone(port.write_timeout)
        port.open.assert_called_once()
        self.assertEqual(handle.baudrate, 57600)
        self.assertEqual(handle.poll_interval_ms, 50)


class TestHandleLifecycle(unittest.TestCase):
    def test_close_flushes_then_closes_once(self):
        port = mock.Mock()
        port.is_open = True

        def _close():
            port.is_open = False

        port.close.side_effect = _close
        handle = SerialHandle(port, "/dev/ttyUSB0", 9600, 100)
        handle.close()
        handle.close()
        port.reset_input_buffer.assert_called_once()
        port.reset_output_buffer.assert_called_once()
        port.close.assert_called_once()

    def test_close_still_closes_when_flush_fails(self):
        port = mock.Mock()
        port.is_open = True
        port.reset_input_buffer.side_effect = serial.SerialException("device disconnected")
        handle = SerialHandle(port, "/dev/ttyUSB0", 9600, 100)
        handle.close()
        port.close.assert_called_once()

    def test_reopen_closes_previous_handle(self):
        first = open_port("loop://", 9600)
        second = open_port("loop://", 115200, previous=first)
        try:
            self.assertFalse(first.is_open)
            self.assertTrue(second.is_open)
            self.assertEqual(second.baudrate, 115200)
        finally:
            second.close()

    def test_context_manager_closes(self):
        with open_port("loop://", 9600) as handle:
            self.assertTrue(handle.is_open)
        self.assertFalse(handle.is_open)


@pytest.mark.parametrize("rate", SUPPORTED_BAUDRATES)
def test_loopback_returns_sent_byte_unmodified_at_every_rate(rate):
    with open_port("loop://", rate) as handle:
        assert handle.port.baudrate == rate
        for value in (0x00, 0x03, 0x0A, 0x0D, 0x11, 0x13, 0x7F, 0xA5, 0xFF):
            write(handle, bytes([value]))
            outcome = read_byte(handle, 500)
            assert outcome.status is ReadStatus.DATA
            assert outcome.byte == value


def test_pty_is_left_in_raw_mode(pty_pair):
    _, device = pty_pair
    with open_port(device, 115200) as handle:
        iflag, oflag, cflag, lflag, ispeed, ospeed, _ = termios.tcgetattr(handle.port.fileno())
    for flag in (termios.ICANON, termios.ECHO, termios.ISIG, termios.IEXTEN):
        assert not lflag & flag
    for flag in (termios.ICRNL, termios.INLCR, termios.IGNCR, termios.IXON, termios.IXOFF):
        assert not iflag & flag
    assert not oflag & termios.OPOST
    assert cflag & termios.CSIZE == termios.CS8
    assert not cflag & termios.PARENB
    assert not cflag & termios.CSTOPB
    assert ispeed == ospeed == termios.B115200


def test_pty_delivers_control_bytes_untranslated(pty_pair):
    master, device = pty_pair
    with open_port(device, 9600) as handle:
        os.write(master, b"\r\n\x03\x1a")
        received = []
        for _ in range(4):
            outcome = read_byte(handle, 1000)
            assert outcome.status is ReadStatus.DATA
            received.append(outcome.byte)
    assert bytes(received) == b"\r\n\x03\x1a"


def test_pty_read_returns_within_poll_slice_when_idle(pty_pair):
    _, device = pty_pair
    with open_port(device, 9600, poll_interval_ms=100) as handle:
        started = time.monotonic()
        outcome = read_byte(handle, 0)
        elapsed = time.monotonic() - started
    assert outcome.status is ReadStatus.TIMEOUT
    assert elapsed < 0.1 + 0.15


class TestPortFactory(unittest.TestCase):
    def test_device_path_keeps_queued_input(self):
        port = _make_port("/dev/ttyUSB7")
        self.assertIsInstance(port, _QueuePreservingSerial)
        self.assertEqual(port.port, "/dev/ttyUSB7")
        self.assertFalse(port.is_open)

    def test_url_goes_through_pyserial(self):
        port = _make_port("loop://")
        self.assertNotIsInstance(port, _QueuePreservingSerial)
        self.assertFalse(port.is_open)


def test_pty_input_queued_before_open_is_kept(pty_pair):
    master, device = pty_pair
    fd = os.open(device, os.O_RDWR | os.O_NOCTTY)
    try:
        tty.setraw(fd)
    finally:
        os.close(fd)
    os.write(master, b"Q")
    time.sleep(0.05)
    with open_port(device, 9600) as handle:
        assert read_byte(handle, 1000) == ReadOutcome.data(0x51)
