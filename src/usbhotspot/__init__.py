"""
USB Hotspot - managed access point on a USB WiFi adapter

Brings up hostapd and dnsmasq on a single wireless interface, shares an
upstream connection through NAT, and tears everything down cleanly.
"""

__version__ = "1.0.0"
__author__ = "USB Hotspot Contributors"

from usbhotspot.config import HotspotConfig, load_config, save_config
from usbhotspot.errors import (
    AlreadyInProgress,
    AlreadyRunning,
    DaemonStartFailed,
    HotspotError,
    InterfaceNotFound,
    LeaseTableUnavailable,
    NatRuleError,
    RegulatoryDomainWarning,
    TeardownError,
)
from usbhotspot.ledger import ResourceLedger
from usbhotspot.orchestrator import HotspotOrchestrator, StartResult, StopResult
from usbhotspot.state import LifecycleState
from usbhotspot.status import HotspotStatus

__all__ = [
    # Version
    "__version__",
    # Config
    "HotspotConfig",
    "load_config",
    "save_config",
    # Lifecycle
    "HotspotOrchestrator",
    "LifecycleState",
    "ResourceLedger",
    "StartResult",
    "StopResult",
    "HotspotStatus",
    # Errors
    "HotspotError",
    "AlreadyRunning",
    "AlreadyInProgress",
    "InterfaceNotFound",
    "DaemonStartFailed",
    "NatRuleError",
    "LeaseTableUnavailable",
    "RegulatoryDomainWarning",
    "TeardownError",
]
