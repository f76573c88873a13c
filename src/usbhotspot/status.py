"""
Reconciled hotspot status.

Everything here is queried live. The ledger only tells us what the
orchestrator believes; where belief and reality disagree the mismatch
is reported as drift instead of being papered over.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from usbhotspot.config import HotspotConfig
from usbhotspot.daemon_configs import read_hostapd_setting
from usbhotspot.daemons import DaemonSupervisor
from usbhotspot.errors import LeaseTableUnavailable
from usbhotspot.interface import InterfaceController, InterfaceInfo
from usbhotspot.leases import ClientLease, read_leases
from usbhotspot.ledger import (
    AccessPointProcess,
    DhcpProcess,
    InterfaceBinding,
    NatRule,
    NatRuleSet,
    ResourceLedger,
)
from usbhotspot.nat import NatManager
from usbhotspot.regulatory import RegulatorySetter
from usbhotspot.state import LifecycleState

logger = logging.getLogger(__name__)


@dataclass
class DaemonStatus:
    """Liveness of one supervised daemon."""

    name: str
    running: bool
    pid: Optional[int] = None
    pid_file_present: bool = False

    @property
    def label(self) -> str:
        return "RUNNING" if self.running else "STOPPED"


@dataclass
class NatStatus:
    """Presence of the hotspot's firewall rules."""

    upstream_interface: str
    rules: dict[NatRule, Optional[bool]] = field(default_factory=dict)

    @property
    def present_count(self) -> int:
        return sum(1 for present in self.rules.values() if present)

    @property
    def known(self) -> bool:
        return all(present is not None for present in self.rules.values())

    @property
    def label(self) -> str:
        if self.rules and self.present_count == len(self.rules):
            return "ACTIVE"
        if not self.known:
            return "UNKNOWN"
        if self.present_count:
            return "PARTIAL"
        return "INACTIVE"

    @property
    def active(self) -> bool:
        return self.label == "ACTIVE"


@dataclass
class HotspotStatus:
    """Single reconciled snapshot of every managed resource."""

    state: LifecycleState
    interface: InterfaceInfo
    gateway: str
    gateway_assigned: bool
    country_code: Optional[str]
    hostapd: DaemonStatus
    dnsmasq: DaemonStatus
    ssid: Optional[str]
    channel: Optional[str]
    nat: NatStatus
    leases: list[ClientLease] = field(default_factory=list)
    leases_error: Optional[str] = None
    drift: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "state": self.state.value,
            "interface": {
                "name": self.interface.name,
                "found": self.interface.found,
                "up": self.interface.is_up,
                "mac_address": self.interface.mac_address,
                "operstate": self.interface.operstate,
                "mode": self.interface.mode,
                "addresses": list(self.interface.addresses),
                "gateway_assigned": self.gateway_assigned,
            },
            "country_code": self.country_code,
            "hostapd": {
                "status": self.hostapd.label,
                "pid": self.hostapd.pid,
                "ssid": self.ssid,
                "channel": self.channel,
            },
            "dhcp": {"status": self.dnsmasq.label, "pid": self.dnsmasq.pid},
            "nat": {
                "status": self.nat.label,
                "upstream_interface": self.nat.upstream_interface,
                "rules_present": self.nat.present_count,
            },
            "leases": [
                {
                    "address": lease.address,
                    "mac_address": lease.mac_address,
                    "hostname": lease.hostname,
                    "expires": lease.expires.isoformat() if lease.expires else None,
                }
                for lease in self.leases
            ],
            "leases_error": self.leases_error,
            "drift": list(self.drift),
        }


class StatusReporter:
    """Builds HotspotStatus from live queries."""

    def __init__(
        self,
        config: HotspotConfig,
        interface: InterfaceController,
        regulatory: RegulatorySetter,
        hostapd: DaemonSupervisor,
        dnsmasq: DaemonSupervisor,
        nat: NatManager,
    ):
        self.config = config
        self.interface = interface
        self.regulatory = regulatory
        self.hostapd = hostapd
        self.dnsmasq = dnsmasq
        self.nat = nat

    def snapshot(self, belief: Optional[ResourceLedger] = None) -> HotspotStatus:
        """Query every resource and reconcile against belief.

        Args:
            belief: Ledger of this orchestrator, if it holds one. Without it
                the PID files stand in for what a previous run believed.
        """
        config = self.config
        info = self.interface.inspect(config.interface)
        gateway_assigned = info.found and any(
            entry.split("/")[0] == config.gateway for entry in info.addresses
        )
        hostapd = self._daemon_status(self.hostapd)
        dnsmasq = self._daemon_status(self.dnsmasq)
        nat = NatStatus(
            upstream_interface=config.upstream_interface,
            rules=self.nat.present(config.interface, config.upstream_interface),
        )

        ssid = channel = None
        if hostapd.running:
            ssid = read_hostapd_setting(self.hostapd.config_path, "ssid")
            channel = read_hostapd_setting(self.hostapd.config_path, "channel")

        leases: list[ClientLease] = []
        leases_error = None
        try:
            leases = read_leases(config.lease_file)
        except LeaseTableUnavailable as e:
            leases_error = str(e)
            logger.debug("%s", e)

        status = HotspotStatus(
            state=LifecycleState.RUNNING if hostapd.running else LifecycleState.STOPPED,
            interface=info,
            gateway=config.gateway,
            gateway_assigned=gateway_assigned,
            country_code=self.regulatory.current(),
            hostapd=hostapd,
            dnsmasq=dnsmasq,
            ssid=ssid,
            channel=channel,
            nat=nat,
            leases=leases,
            leases_error=leases_error,
        )
        status.drift = self._drift(status, belief)
        return status

    def _daemon_status(self, supervisor: DaemonSupervisor) -> DaemonStatus:
        pid = supervisor.recorded_pid()
        return DaemonStatus(
            name=supervisor.name,
            running=pid is not None and supervisor.system.pid_alive(pid),
            pid=pid,
            pid_file_present=supervisor.pid_file.exists(),
        )

    def _drift(self, status: HotspotStatus, belief: Optional[ResourceLedger]) -> list[str]:
        """Describe every disagreement between belief and live state."""
        drift = []
        config = self.config

        if belief is None:
            believed_ap = status.hostapd.pid_file_present
            believed_dhcp = status.dnsmasq.pid_file_present
            believed_iface = believed_ap or believed_dhcp
            believed_nat = believed_ap
        else:
            believed_ap = AccessPointProcess in belief
            believed_dhcp = DhcpProcess in belief
            believed_iface = InterfaceBinding in belief
            believed_nat = NatRuleSet in belief

        for daemon, believed in ((status.hostapd, believed_ap), (status.dnsmasq, believed_dhcp)):
            if believed and not daemon.running:
                if daemon.pid is not None:
                    drift.append(f"{daemon.name}: PID {daemon.pid} is recorded but the process is not running")
                else:
                    drift.append(f"{daemon.name}: expected to be running but no live process is recorded")
            elif daemon.running and not believed:
                drift.append(f"{daemon.name}: running (PID {daemon.pid}) but not owned by this hotspot")

        if believed_iface or status.hostapd.running:
            if not status.interface.found:
                drift.append(f"interface {config.interface} not found while the hotspot is configured")
            elif not status.gateway_assigned:
                drift.append(f"interface {config.interface} lost gateway address {config.gateway}")

        if (believed_nat or status.hostapd.running) and status.nat.label in ("INACTIVE", "PARTIAL"):
            drift.append(
                f"NAT rules missing ({status.nat.present_count}/{len(status.nat.rules)} present) "
                f"while the access point is up"
            )
        elif not believed_nat and not status.hostapd.running and status.nat.present_count:
            drift.append(f"NAT rules via {config.upstream_interface} left behind with no access point")

        if status.dnsmasq.running and not status.hostapd.running:
            drift.append("dnsmasq is running without hostapd")
        return drift


def format_report(status: HotspotStatus) -> list[str]:
    """Human readable status lines."""
    info = status.interface
    lines = []
    if info.found:
        lines.append(f"Interface: {info.name} (FOUND, {'UP' if info.is_up else 'DOWN'})")
        lines.append(f"  MAC:   {info.mac_address or 'N/A'}")
        lines.append(f"  State: {info.operstate or 'N/A'}")
        lines.append(f"  Mode:  {info.mode or 'N/A'}")
        lines.append(f"  IP:    {', '.join(info.addresses) or 'none'}")
    else:
        lines.append(f"Interface: {info.name} (NOT FOUND)")
    lines.append(f"Country:   {status.country_code or 'unknown'}")
    lines.append("")

    if status.hostapd.running:
        lines.append(f"Hostapd:   RUNNING (PID {status.hostapd.pid})")
        lines.append(f"  SSID:      {status.ssid or 'unknown'}")
        lines.append(f"  Channel:   {status.channel or 'unknown'}")
    else:
        lines.append("Hostapd:   STOPPED")

    if status.dnsmasq.running:
        lines.append(f"DHCP:      RUNNING (PID {status.dnsmasq.pid})")
    else:
        lines.append("DHCP:      STOPPED")

    label = status.nat.label
    if label == "ACTIVE":
        lines.append(f"NAT:       ACTIVE (via {status.nat.upstream_interface})")
    elif label == "PARTIAL":
        lines.append(
            f"NAT:       PARTIAL ({status.nat.present_count}/{len(status.nat.rules)} rules "
            f"via {status.nat.upstream_interface})"
        )
    else:
        lines.append(f"NAT:       {label}")

    lines.append("")
    lines.append("Connected clients:")
    if status.leases:
        for lease in status.leases:
            lines.append(f"  {lease.address:<16} {lease.mac_address:<18} {lease.hostname or '*'}")
    else:
        lines.append("  (none)")

    if status.drift:
        lines.append("")
        lines.append("Drift detected:")
        for entry in status.drift:
            lines.append(f"  ! {entry}")
    return lines
