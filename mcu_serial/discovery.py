from __future__ import annotations

import platform
from typing import List

from serial.tools import list_ports  # type: ignore


def get_available_ports() -> List[str]:
    """Get list of available serial ports on the current platform."""
    return sorted(port_info.device for port_info in list_ports.comports())


def list_likely_ports() -> List[str]:
    """
    Get serial ports with likely USB-UART adapters first.

    Returns:
        Device paths, USB adapters before built-in UARTs and anything else
    """
    system = platform.system().lower()
    all_ports = get_available_ports()

    if system == "linux":
        patterns = ["/dev/ttyUSB", "/dev/ttyACM", "/dev/ttyS"]
    elif system == "darwin":
        patterns = ["/dev/cu.usbserial", "/dev/cu.usbmodem", "/dev/cu.SLAB_USBtoUART", "/dev/cu.wchusbserial"]
    else:
        patterns = []

    likely = [p for p in all_ports if any(p.startswith(pattern) for pattern in patterns)]
    # USB adapters ahead of on-board UARTs
    likely.sort(key=lambda x: (0 if any(tag in x for tag in ("USB", "ACM", "usbserial", "usbmodem")) else 1, x))
    other_ports = [p for p in all_ports if p not in likely]
    return likely + other_ports
