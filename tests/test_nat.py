"""Tests for NAT and forwarding rules."""

import subprocess
from unittest.mock import MagicMock

import pytest

from usbhotspot.errors import NatRuleError
from usbhotspot.nat import NatManager, hotspot_rules

MASQUERADE = ("-o", "eth-test", "-j", "MASQUERADE")
OUTBOUND = ("-i", "wlan-test", "-o", "eth-test", "-j", "ACCEPT")
RETURN = ("-i", "eth-test", "-o", "wlan-test", "-m", "state", "--state", "RELATED,ESTABLISHED", "-j", "ACCEPT")


@pytest.fixture
def nat(host):
    return NatManager(host)


class TestRules:
    """Tests for the rule set."""

    def test_three_rules(self):
        rules = hotspot_rules("wlan-test", "eth-test")
        assert [(r.table, r.chain, r.spec) for r in rules] == [
            ("nat", "POSTROUTING", MASQUERADE),
            ("filter", "FORWARD", OUTBOUND),
            ("filter", "FORWARD", RETURN),
        ]


class TestApply:
    """Tests for installing rules."""

    def test_apply_installs_rules_and_forwarding(self, nat, host):
        handle = nat.apply("wlan-test", "eth-test")

        assert host.forwarding is True
        assert host.rules_for("nat", "POSTROUTING") == [MASQUERADE]
        assert host.rules_for("filter", "FORWARD") == [OUTBOUND, RETURN]
        assert handle.rules == hotspot_rules("wlan-test", "eth-test")

    def test_apply_twice_is_idempotent(self, nat, host):
        """Each rule exists exactly once no matter how often apply runs."""
        nat.apply("wlan-test", "eth-test")
        nat.apply("wlan-test", "eth-test")

        assert host.rules_for("nat", "POSTROUTING") == [MASQUERADE]
        assert host.rules_for("filter", "FORWARD") == [OUTBOUND, RETURN]

    def test_apply_fills_in_missing_rules(self, nat, host):
        host.rules.append(("nat", "POSTROUTING", MASQUERADE))

        nat.apply("wlan-test", "eth-test")

        assert host.rules_for("nat", "POSTROUTING") == [MASQUERADE]
        assert len(host.rules) == 3

    def test_failed_insert_removes_what_it_added(self, nat, host):
        host.fail("iptables", "-t", "filter", "-A", "FORWARD", "-i", "eth-test", stderr="iptables: No chain/target/match by that name.")

        with pytest.raises(NatRuleError, match="No chain/target/match"):
            nat.apply("wlan-test", "eth-test")
        assert host.rules == []

    def test_failed_insert_keeps_preexisting_rules(self, nat, host):
        """Rules that were already there before apply are not ours to remove."""
        host.rules.append(("nat", "POSTROUTING", MASQUERADE))
        host.fail("iptables", "-t", "filter", "-A", "FORWARD", "-i", "eth-test")

        with pytest.raises(NatRuleError):
            nat.apply("wlan-test", "eth-test")
        assert host.rules == [("nat", "POSTROUTING", MASQUERADE)]

    def test_forwarding_failure(self, nat, host):
        host.fail("sysctl", stderr="sysctl: permission denied on key 'net.ipv4.ip_forward'")
        with pytest.raises(NatRuleError, match="forwarding"):
            nat.apply("wlan-test", "eth-test")
        assert host.rules == []


class TestRemove:
    """Tests for deleting rules."""

    def test_remove_all(self, nat, host):
        handle = nat.apply("wlan-test", "eth-test")

        assert nat.release(handle) == []
        assert host.rules == []

    def test_remove_tolerates_absent_rules(self, nat, host):
        """Rules flushed by someone else are not an error."""
        handle = nat.apply("wlan-test", "eth-test")
        host.rules.clear()

        assert nat.release(handle) == []

    def test_remove_keeps_unrelated_rules(self, nat, host):
        other = ("filter", "FORWARD", ("-i", "docker0", "-j", "ACCEPT"))
        host.rules.append(other)
        handle = nat.apply("wlan-test", "eth-test")

        nat.release(handle)

        assert host.rules == [other]

    def test_remove_collects_failures(self, nat, host):
        handle = nat.apply("wlan-test", "eth-test")
        host.fail("iptables", "-t", "nat", "-D", stderr="iptables: Resource temporarily unavailable.")

        errors = nat.release(handle)

        assert len(errors) == 1
        assert errors[0].resource == "NAT"
        assert host.rules_for("filter", "FORWARD") == []


class TestExists:
    """Tests for live rule checks."""

    def _manager(self, returncode, stderr=""):
        system = MagicMock()
        system.run.return_value = subprocess.CompletedProcess([], returncode, stdout="", stderr=stderr)
        return NatManager(system)

    def test_present(self):
        rule = hotspot_rules("wlan-test", "eth-test")[0]
        assert self._manager(0).exists(rule) is True

    def test_absent(self):
        rule = hotspot_rules("wlan-test", "eth-test")[0]
        assert self._manager(1).exists(rule) is False

    def test_absent_reported_with_exit_2(self):
        rule = hotspot_rules("wlan-test", "eth-test")[0]
        manager = self._manager(2, "iptables: Bad rule (does a matching rule exist in that chain?).")
        assert manager.exists(rule) is False

    def test_iptables_missing(self):
        rule = hotspot_rules("wlan-test", "eth-test")[0]
        with pytest.raises(NatRuleError):
            self._manager(127, "iptables: command not found").exists(rule)

    def test_present_reports_unknown(self):
        manager = self._manager(4, "iptables v1.8.7 (nf_tables): Could not fetch rule set generation id")
        assert set(manager.present("wlan-test", "eth-test").values()) == {None}
