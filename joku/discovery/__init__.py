"""joku.discovery: finding a Roku on the local network.

Exports:
    DeviceScanner   SSDP multicast discovery agent
    run_setup       first-run flow: discover, pick, fetch apps, save
"""

from __future__ import annotations

from joku.discovery.scanner import DeviceScanner
from joku.discovery.wizard import run_setup

__all__ = [
    "DeviceScanner",
    "run_setup",
]
