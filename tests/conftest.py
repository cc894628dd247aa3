from __future__ import annotations

import os

import pytest

from mcu_serial.port import open_port


@pytest.fixture
def loop_handle():
    """A handle on pyserial's loopback URL: every byte written comes back."""
    handle = open_port("loop://", 115200)
    try:
        yield handle
    finally:
        handle.close()


@pytest.fixture
def pty_pair():
    """Pseudo-terminal (master fd, slave device path) standing in for a UART."""
    if not hasattr(os, "openpty"):
        pytest.skip("pseudo-terminals not available")
    master, slave = os.openpty()
    try:
        yield master, os.ttyname(slave)
    finally:
        os.close(master)
        os.close(slave)
