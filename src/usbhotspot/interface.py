"""
Wireless interface control.

Brings the hotspot interface up with its gateway address and resets it
afterwards. Reads go to the live system every time.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from typing import Optional

from usbhotspot.config import HotspotConfig
from usbhotspot.errors import CommandFailed, InterfaceNotFound, TeardownError
from usbhotspot.ledger import InterfaceBinding
from usbhotspot.system import System, describe_failure, format_command

logger = logging.getLogger(__name__)

_INET_RE = re.compile(r"inet (\d+\.\d+\.\d+\.\d+)/(\d+)")
_IW_TYPE_RE = re.compile(r"^\s*type\s+(\S+)", re.MULTILINE)


@dataclass
class InterfaceInfo:
    """Live view of one network interface. Unknown fields are None."""

    name: str
    found: bool
    mac_address: Optional[str] = None
    operstate: Optional[str] = None
    mode: Optional[str] = None
    addresses: list[str] = field(default_factory=list)

    @property
    def is_up(self) -> bool:
        # Wireless links in AP mode without stations often report "unknown"
        return self.operstate in ("up", "unknown")


class InterfaceController:
    """Owns the link state and gateway address of the hotspot interface."""

    def __init__(self, system: System, manage_network_manager: bool = True, settle_delay: float = 1.0):
        self.system = system
        self.manage_network_manager = manage_network_manager
        self.settle_delay = settle_delay

    def exists(self, interface: str) -> bool:
        return self.system.interface_exists(interface)

    def addresses(self, interface: str) -> list[str]:
        """IPv4 addresses on the interface, as address/prefix strings."""
        result = self.system.run(["ip", "-4", "-o", "addr", "show", "dev", interface])
        if result.returncode != 0:
            return []
        return [f"{ip}/{prefix}" for ip, prefix in _INET_RE.findall(result.stdout or "")]

    def is_bound(self, interface: str, address: str) -> bool:
        """True if the interface currently carries the given gateway address."""
        return any(entry.split("/")[0] == address for entry in self.addresses(interface))

    def bind(self, config: HotspotConfig) -> InterfaceBinding:
        """Assign the gateway address and bring the interface up.

        Binding an already-bound interface unbinds it first, so repeated
        calls converge to the same state.

        Raises:
            InterfaceNotFound: The device does not exist
            CommandFailed: An ip command failed (partial changes are undone)
        """
        interface = config.interface
        if not self.exists(interface):
            raise InterfaceNotFound(interface)

        if self.is_bound(interface, config.gateway):
            logger.info("Interface %s already carries %s, resetting it", interface, config.gateway)
            self.unbind(interface)

        if self.manage_network_manager:
            self._set_network_manager(interface, managed=False)

        logger.info("Configuring %s with %s", interface, config.gateway_cidr)
        try:
            self.system.run_checked(["ip", "addr", "flush", "dev", interface])
            self.system.run_checked(["ip", "link", "set", interface, "down"])
            self.system.run_checked(["ip", "addr", "add", config.gateway_cidr, "dev", interface])
            self.system.run_checked(["ip", "link", "set", interface, "up"])
        except CommandFailed:
            if not self.exists(interface):
                # Unplugged halfway through
                raise InterfaceNotFound(interface) from None
            self.unbind(interface)
            raise
        self.system.sleep(self.settle_delay)
        return InterfaceBinding(interface=interface, address=config.gateway_cidr)

    def unbind(self, interface: str) -> list[TeardownError]:
        """Flush addresses and set the interface down. Best-effort."""
        if not self.exists(interface):
            logger.info("Interface %s is gone, nothing to reset", interface)
            return []

        errors = []
        for argv in (
            ["ip", "addr", "flush", "dev", interface],
            ["ip", "link", "set", interface, "down"],
        ):
            result = self.system.run(argv)
            if result.returncode != 0:
                error = TeardownError("interface", format_command(argv), describe_failure(result))
                logger.warning("%s", error)
                errors.append(error)

        if self.manage_network_manager:
            self._set_network_manager(interface, managed=True)
        return errors

    def release(self, handle: InterfaceBinding) -> list[TeardownError]:
        return self.unbind(handle.interface)

    def inspect(self, interface: str) -> InterfaceInfo:
        """Collect MAC, operstate, wireless mode and addresses."""
        if not self.exists(interface):
            return InterfaceInfo(name=interface, found=False)
        return InterfaceInfo(
            name=interface,
            found=True,
            mac_address=self.system.read_sysfs(interface, "address"),
            operstate=self.system.read_sysfs(interface, "operstate"),
            mode=self._wireless_mode(interface),
            addresses=self.addresses(interface),
        )

    def _wireless_mode(self, interface: str) -> Optional[str]:
        result = self.system.run(["iw", "dev", interface, "info"])
        if result.returncode != 0:
            return None
        match = _IW_TYPE_RE.search(result.stdout or "")
        return match.group(1) if match else None

    def _set_network_manager(self, interface: str, managed: bool) -> None:
        """Hand the interface to or from NetworkManager. Best-effort."""
        state = "yes" if managed else "no"
        result = self.system.run(["nmcli", "device", "set", interface, "managed", state])
        if result.returncode != 0:
            logger.debug("nmcli managed %s on %s: %s", state, interface, describe_failure(result))
