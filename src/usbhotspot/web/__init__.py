"""
USB Hotspot web API.

Provides HTTP endpoints for monitoring and controlling the hotspot.
"""

from usbhotspot.web.app import app, run_server

__all__ = ["app", "run_server"]
