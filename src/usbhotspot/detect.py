"""
Host checks and interface discovery.

Used by the `check` and `configure` commands and before a start.
"""

import os
import shutil
from typing import Optional

from usbhotspot.config import HotspotConfig
from usbhotspot.errors import PreflightError
from usbhotspot.system import SYS_CLASS_NET, System

# Driver names and USB id of the RTL8188EUS family
ADAPTER_MARKERS = ("8188eu", "rtl8xxxu", "bda/8179")

# A failed NetworkManager hand-off is only logged
OPTIONAL_TOOLS = ("nmcli",)


def check_root() -> bool:
    """Check if running as root."""
    return os.geteuid() == 0


def check_dependencies(config: HotspotConfig) -> list[str]:
    """Check for required system tools.

    Returns:
        List of missing dependencies (empty if all present)
    """
    required = [config.hostapd_bin, config.dnsmasq_bin, "ip", "iw", config.iptables_bin, "sysctl"]
    # nmcli is only needed when we hand the interface to/from NetworkManager
    if config.manage_network_manager:
        required.append("nmcli")
    return [tool for tool in required if shutil.which(tool) is None]


def preflight(config: HotspotConfig) -> None:
    """Raise PreflightError unless the host can run the hotspot."""
    if not check_root():
        raise PreflightError("must run as root (use sudo)")
    missing = [tool for tool in check_dependencies(config) if tool not in OPTIONAL_TOOLS]
    if missing:
        raise PreflightError(f"missing dependencies: {', '.join(missing)}")


def detect_wireless_interface(system: System) -> Optional[str]:
    """Find the wireless interface of the USB adapter.

    Prefers an RTL8188EUS device (by driver or USB id in its uevent),
    then falls back to the first wl* interface.
    """
    wireless = [name for name in system.list_interfaces() if name.startswith("wl")]
    for name in wireless:
        try:
            uevent = (SYS_CLASS_NET / name / "device" / "uevent").read_text().lower()
        except OSError:
            continue
        if any(marker in uevent for marker in ADAPTER_MARKERS):
            return name
    return wireless[0] if wireless else None


def detect_upstream_interface(system: System) -> Optional[str]:
    """Interface of the default route, which carries internet traffic."""
    result = system.run(["ip", "route", "show", "default"])
    if result.returncode != 0:
        return None
    for line in (result.stdout or "").splitlines():
        parts = line.split()
        if parts and parts[0] == "default" and "dev" in parts:
            index = parts.index("dev")
            if index + 1 < len(parts):
                return parts[index + 1]
    return None
