"""
Hotspot lifecycle orchestration.

Drives start, stop, restart and status across the managed resources:
regulatory domain, interface, hostapd, dnsmasq and NAT. Every acquired
resource goes into a ResourceLedger the moment its action succeeds, so a
failed start can roll back exactly what it created.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Callable, Optional

from usbhotspot.config import HotspotConfig
from usbhotspot.daemon_configs import write_daemon_configs
from usbhotspot.daemons import DnsmasqSupervisor, HostapdSupervisor
from usbhotspot.errors import (
    AlreadyRunning,
    CommandFailed,
    HotspotError,
    RegulatoryDomainWarning,
    TeardownError,
)
from usbhotspot.interface import InterfaceController
from usbhotspot.ledger import (
    AccessPointProcess,
    DhcpProcess,
    InterfaceBinding,
    NatRuleSet,
    RegulatoryDomain,
    ResourceHandle,
    ResourceLedger,
)
from usbhotspot.lock import HotspotLock
from usbhotspot.nat import NatManager
from usbhotspot.regulatory import RegulatorySetter
from usbhotspot.state import LifecycleState
from usbhotspot.status import HotspotStatus, StatusReporter
from usbhotspot.system import System

logger = logging.getLogger(__name__)


@dataclass
class StartResult:
    """Outcome of a successful start."""

    ssid: str
    interface: str
    gateway: str
    dhcp_range: tuple[str, str]
    upstream_interface: str
    hostapd_pid: Optional[int]
    dnsmasq_pid: Optional[int]
    warnings: list[str] = field(default_factory=list)


@dataclass
class StopResult:
    """Outcome of a stop. Errors are reported, never raised."""

    was_running: bool
    released: list[str] = field(default_factory=list)
    errors: list[TeardownError] = field(default_factory=list)


class HotspotOrchestrator:
    """State machine and resource ledger for one hotspot."""

    def __init__(self, config: HotspotConfig, system: Optional[System] = None):
        self.config = config
        self.system = system or System(command_timeout=config.command_timeout)
        self.regulatory = RegulatorySetter(self.system, settle_delay=config.settle_delay)
        self.interface = InterfaceController(
            self.system,
            manage_network_manager=config.manage_network_manager,
            settle_delay=config.settle_delay,
        )
        self.hostapd = HostapdSupervisor(self.system, config)
        self.dnsmasq = DnsmasqSupervisor(self.system, config)
        self.nat = NatManager(self.system, iptables=config.iptables_bin)
        self.reporter = StatusReporter(
            config, self.interface, self.regulatory, self.hostapd, self.dnsmasq, self.nat
        )
        self.ledger = ResourceLedger()
        self.state = self.live_state()

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def live_state(self) -> LifecycleState:
        """RUNNING iff hostapd's PID file names a live process."""
        return LifecycleState.RUNNING if self.hostapd.is_running() else LifecycleState.STOPPED

    def start(self) -> StartResult:
        """Bring the hotspot up.

        Raises:
            AlreadyInProgress: Another operation holds the lock
            AlreadyRunning: hostapd is already live
            HotspotError: A step failed; everything acquired was rolled back
        """
        with HotspotLock(self.config.lock_file):
            return self._start()

    def stop(self) -> StopResult:
        """Tear the hotspot down, best-effort. Stopping twice is fine."""
        with HotspotLock(self.config.lock_file):
            return self._stop()

    def restart(self) -> StartResult:
        """Stop (if running) then start, under one lock."""
        with HotspotLock(self.config.lock_file):
            result = self._stop()
            if result.errors:
                logger.warning("Restart continuing after %d teardown error(s)", len(result.errors))
            if result.was_running:
                self.system.sleep(self.config.settle_delay)
            return self._start()

    def status(self) -> HotspotStatus:
        """Reconciled live snapshot. Never takes the lock."""
        belief = self.ledger if self.ledger and self._ledger_is_current() else None
        return self.reporter.snapshot(belief)

    # ------------------------------------------------------------------
    # Start
    # ------------------------------------------------------------------

    def startup_sequence(self) -> list[tuple[str, Callable[[], Optional[ResourceHandle]]]]:
        """Acquisition steps in dependency order."""
        return [
            ("regulatory domain", self._acquire_regulatory),
            ("interface", lambda: self.interface.bind(self.config)),
            ("hostapd", self.hostapd.start),
            ("dnsmasq", self.dnsmasq.start),
            ("NAT", lambda: self.nat.apply(self.config.interface, self.config.upstream_interface)),
        ]

    def _acquire_regulatory(self) -> Optional[RegulatoryDomain]:
        return self.regulatory.apply(self.config.country_code)

    def _start(self) -> StartResult:
        if self.hostapd.is_running():
            raise AlreadyRunning(
                f"hostapd is already running (PID {self.hostapd.recorded_pid()}); stop it first"
            )

        logger.info("Starting hotspot %r on %s", self.config.ssid, self.config.interface)
        self.state = LifecycleState.STARTING
        self.ledger = ResourceLedger()
        warnings: list[str] = []
        try:
            try:
                write_daemon_configs(self.config)
            except OSError as e:
                raise CommandFailed("writing daemon configuration", str(e)) from e
            for name, step in self.startup_sequence():
                logger.info("Acquiring %s", name)
                handle = step()
                if handle is None:
                    warning = self.regulatory.last_warning
                    if isinstance(warning, RegulatoryDomainWarning):
                        warnings.append(str(warning))
                    continue
                self.ledger.acquire(handle)
        except Exception as e:
            self.state = LifecycleState.FAILED
            logger.error("Start failed: %s; rolling back %d resource(s)", e, len(self.ledger))
            errors = self.ledger.release_all(self._release)
            self.state = LifecycleState.STOPPED
            if isinstance(e, HotspotError):
                e.rollback_errors = errors
            raise

        self.state = LifecycleState.RUNNING
        ap = self.ledger.find(AccessPointProcess)
        dhcp = self.ledger.find(DhcpProcess)
        logger.info("Hotspot is active")
        return StartResult(
            ssid=self.config.ssid,
            interface=self.config.interface,
            gateway=self.config.gateway,
            dhcp_range=(self.config.dhcp_first_address, self.config.dhcp_last_address),
            upstream_interface=self.config.upstream_interface,
            hostapd_pid=ap.pid if ap else None,
            dnsmasq_pid=dhcp.pid if dhcp else None,
            warnings=warnings,
        )

    # ------------------------------------------------------------------
    # Stop
    # ------------------------------------------------------------------

    def reconstruct_ledger(self) -> ResourceLedger:
        """Rebuild what a previous run left behind from persisted state.

        An interface counts as ours when it carries the gateway address or
        a daemon PID file exists. Daemons count when their PID file exists,
        live or stale. Only NAT rules that are present right now count.
        """
        config = self.config
        ledger = ResourceLedger()
        ap = self.hostapd.recorded_handle()
        dhcp = self.dnsmasq.recorded_handle()

        if self.interface.exists(config.interface) and (
            ap or dhcp or self.interface.is_bound(config.interface, config.gateway)
        ):
            ledger.acquire(InterfaceBinding(interface=config.interface, address=config.gateway_cidr))
        if ap:
            ledger.acquire(ap)
        if dhcp:
            ledger.acquire(dhcp)

        present = tuple(
            rule
            for rule, found in self.nat.present(config.interface, config.upstream_interface).items()
            if found
        )
        if present:
            ledger.acquire(
                NatRuleSet(
                    hotspot_interface=config.interface,
                    upstream_interface=config.upstream_interface,
                    rules=present,
                )
            )
        return ledger

    def _ledger_is_current(self) -> bool:
        """Whether the daemons this ledger holds are still the ones on record.

        Another invocation (the CLI next to a long-lived web server) may have
        stopped or restarted the hotspot since this ledger was built.
        """
        for handle_type, supervisor in (
            (AccessPointProcess, self.hostapd),
            (DhcpProcess, self.dnsmasq),
        ):
            handle = self.ledger.find(handle_type)
            if handle is not None and handle.pid != supervisor.recorded_pid():
                return False
        return True

    def _stop(self) -> StopResult:
        if self.ledger and self._ledger_is_current():
            # Our own start knows exactly which rules it inserted
            ledger = self.ledger
        else:
            if self.ledger:
                logger.info("In-memory ledger is out of date; rebuilding from persisted state")
            ledger = self.reconstruct_ledger()
        if not ledger:
            logger.info("Hotspot is already stopped")
            self.ledger = ResourceLedger()
            self.state = LifecycleState.STOPPED
            return StopResult(was_running=False)

        logger.info("Stopping hotspot")
        self.state = LifecycleState.STOPPING
        released = [handle.resource for handle in reversed(list(ledger))]
        errors = ledger.release_all(self._release)
        self.ledger = ResourceLedger()
        self.state = LifecycleState.STOPPED
        logger.info("Hotspot stopped")
        return StopResult(was_running=True, released=released, errors=errors)

    def _release(self, handle: ResourceHandle) -> list[TeardownError]:
        """Type-specific teardown for one ledger entry."""
        if isinstance(handle, NatRuleSet):
            return self.nat.release(handle)
        if isinstance(handle, DhcpProcess):
            return self.dnsmasq.release(handle)
        if isinstance(handle, AccessPointProcess):
            return self.hostapd.release(handle)
        if isinstance(handle, InterfaceBinding):
            return self.interface.release(handle)
        if isinstance(handle, RegulatoryDomain):
            return []
        raise TypeError(f"Unknown resource handle: {handle!r}")

