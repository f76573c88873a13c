"""Tests for reconciled status and drift detection."""

import pytest

from usbhotspot.ledger import RegulatoryDomain
from usbhotspot.nat import hotspot_rules
from usbhotspot.orchestrator import HotspotOrchestrator
from usbhotspot.state import LifecycleState
from usbhotspot.status import NatStatus, format_report


@pytest.fixture
def orchestrator(config, host):
    return HotspotOrchestrator(config, system=host)


def fresh(config, host):
    """An orchestrator in a new process: no in-memory ledger."""
    return HotspotOrchestrator(config, system=host)


class TestSnapshot:
    """Tests for the live snapshot."""

    def test_stopped(self, orchestrator):
        status = orchestrator.status()

        assert status.state == LifecycleState.STOPPED
        assert status.interface.found is True
        assert status.hostapd.running is False
        assert status.dnsmasq.running is False
        assert status.nat.label == "INACTIVE"
        assert status.ssid is None
        assert status.drift == []

    def test_running(self, orchestrator, config):
        result = orchestrator.start()

        status = orchestrator.status()

        assert status.state == LifecycleState.RUNNING
        assert status.gateway_assigned is True
        assert status.hostapd.pid == result.hostapd_pid
        assert status.dnsmasq.running is True
        assert status.ssid == "USB-Hotspot"
        assert status.channel == "6"
        assert status.country_code == "US"
        assert status.interface.mode == "AP"
        assert status.nat.label == "ACTIVE"
        assert status.drift == []

    def test_leases_listed(self, orchestrator, config):
        orchestrator.start()
        config.lease_file.parent.mkdir(parents=True, exist_ok=True)
        config.lease_file.write_text("0 aa:bb:cc:dd:ee:02 10.9.9.24 tablet *\n")

        status = orchestrator.status()

        assert [lease.hostname for lease in status.leases] == ["tablet"]
        assert status.leases_error is None

    def test_missing_lease_table_degrades(self, orchestrator):
        status = orchestrator.status()
        assert status.leases == []
        assert "unavailable" in status.leases_error

    def test_to_dict(self, orchestrator):
        orchestrator.start()
        data = orchestrator.status().to_dict()

        assert data["state"] == "running"
        assert data["hostapd"]["status"] == "RUNNING"
        assert data["dhcp"]["status"] == "RUNNING"
        assert data["nat"] == {"status": "ACTIVE", "upstream_interface": "eth-test", "rules_present": 3}
        assert data["interface"]["addresses"] == ["10.9.9.1/24"]


class TestDrift:
    """Tests for belief versus reality."""

    def test_dead_hostapd_reported(self, orchestrator, host):
        result = orchestrator.start()
        del host.processes[result.hostapd_pid]

        status = orchestrator.status()

        assert status.state == LifecycleState.STOPPED
        assert any(f"PID {result.hostapd_pid} is recorded" in d for d in status.drift)
        assert "dnsmasq is running without hostapd" in status.drift

    def test_flushed_nat_reported(self, orchestrator, host):
        """Rules flushed behind our back show up as drift, not as ACTIVE."""
        orchestrator.start()
        host.rules.clear()

        status = orchestrator.status()

        assert status.nat.label == "INACTIVE"
        assert any("NAT rules missing (0/3 present)" in d for d in status.drift)

    def test_lost_gateway_reported(self, orchestrator, host):
        orchestrator.start()
        host.interfaces["wlan-test"]["addresses"] = []

        assert "interface wlan-test lost gateway address 10.9.9.1" in orchestrator.status().drift

    def test_unplugged_adapter_reported(self, orchestrator, host):
        orchestrator.start()
        host.unplug("wlan-test")

        status = orchestrator.status()

        assert status.interface.found is False
        assert "interface wlan-test not found while the hotspot is configured" in status.drift

    def test_drift_seen_from_new_process(self, config, host):
        """Without a ledger the PID files stand in for belief."""
        result = fresh(config, host).start()
        del host.processes[result.dnsmasq_pid]

        status = fresh(config, host).status()

        assert any(d.startswith(f"dnsmasq: PID {result.dnsmasq_pid}") for d in status.drift)

    def test_leftover_nat_reported(self, orchestrator, host):
        for rule in hotspot_rules("wlan-test", "eth-test"):
            host.rules.append((rule.table, rule.chain, rule.spec))

        drift = orchestrator.status().drift

        assert "NAT rules via eth-test left behind with no access point" in drift

    def test_foreign_hostapd_reported(self, orchestrator, host, config):
        config.hostapd_pid_file.parent.mkdir(parents=True, exist_ok=True)
        host.processes[777] = "hostapd"
        config.hostapd_pid_file.write_text("777\n")
        # The in-process ledger says we own nothing
        orchestrator.ledger.acquire(RegulatoryDomain("US"))

        drift = orchestrator.status().drift

        assert "hostapd: running (PID 777) but not owned by this hotspot" in drift


class TestNatStatus:
    """Tests for NAT labels."""

    def _status(self, *values):
        rules = hotspot_rules("wlan-test", "eth-test")
        return NatStatus(upstream_interface="eth-test", rules=dict(zip(rules, values)))

    def test_labels(self):
        assert self._status(True, True, True).label == "ACTIVE"
        assert self._status(True, False, False).label == "PARTIAL"
        assert self._status(False, False, False).label == "INACTIVE"
        assert self._status(True, None, True).label == "UNKNOWN"


class TestFormatReport:
    """Tests for the human readable report."""

    def test_stopped_report(self, orchestrator):
        lines = format_report(orchestrator.status())

        assert "Interface: wlan-test (FOUND, DOWN)" in lines
        assert "Hostapd:   STOPPED" in lines
        assert "DHCP:      STOPPED" in lines
        assert "NAT:       INACTIVE" in lines
        assert "  (none)" in lines

    def test_running_report(self, orchestrator):
        result = orchestrator.start()
        lines = format_report(orchestrator.status())

        assert "Interface: wlan-test (FOUND, UP)" in lines
        assert f"Hostapd:   RUNNING (PID {result.hostapd_pid})" in lines
        assert "  SSID:      USB-Hotspot" in lines
        assert "NAT:       ACTIVE (via eth-test)" in lines
        assert "Drift detected:" not in lines

    def test_missing_interface_report(self, orchestrator, host):
        host.unplug("wlan-test")
        lines = format_report(orchestrator.status())
        assert "Interface: wlan-test (NOT FOUND)" in lines

    def test_drift_listed(self, orchestrator, host):
        orchestrator.start()
        host.rules.clear()

        lines = format_report(orchestrator.status())

        assert "Drift detected:" in lines
        assert any(line.startswith("  ! NAT rules missing") for line in lines)
