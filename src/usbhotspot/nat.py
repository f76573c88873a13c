"""
NAT and forwarding rules between the hotspot and the upstream interface.

The firewall table is shared with the rest of the system and may be
flushed behind our back, so every question is answered with a live
`iptables -C` check rather than a remembered flag.
"""

from __future__ import annotations

import logging
from typing import Optional

from usbhotspot.errors import CommandFailed, NatRuleError, TeardownError
from usbhotspot.ledger import NatRule, NatRuleSet
from usbhotspot.system import COMMAND_NOT_FOUND, System, describe_failure, format_command

logger = logging.getLogger(__name__)

# iptables -C exits 1 when the rule is simply absent
_RULE_ABSENT = 1


def hotspot_rules(hotspot_if: str, upstream_if: str) -> tuple[NatRule, ...]:
    """The three rules that share the upstream link with hotspot clients."""
    return (
        NatRule("nat", "POSTROUTING", ("-o", upstream_if, "-j", "MASQUERADE")),
        NatRule("filter", "FORWARD", ("-i", hotspot_if, "-o", upstream_if, "-j", "ACCEPT")),
        NatRule(
            "filter",
            "FORWARD",
            (
                "-i",
                upstream_if,
                "-o",
                hotspot_if,
                "-m",
                "state",
                "--state",
                "RELATED,ESTABLISHED",
                "-j",
                "ACCEPT",
            ),
        ),
    )


class NatManager:
    """Installs and removes the hotspot's iptables rules."""

    def __init__(self, system: System, iptables: str = "iptables"):
        self.system = system
        self.iptables = iptables

    def _argv(self, op: str, rule: NatRule) -> list[str]:
        return [self.iptables, "-t", rule.table, op, rule.chain, *rule.spec]

    def exists(self, rule: NatRule) -> bool:
        """Live check for one rule.

        Raises:
            NatRuleError: iptables could not answer
        """
        argv = self._argv("-C", rule)
        result = self.system.run(argv)
        if result.returncode == 0:
            return True
        if result.returncode == _RULE_ABSENT:
            return False
        if result.returncode == COMMAND_NOT_FOUND:
            raise NatRuleError(f"{format_command(argv)}: {describe_failure(result)}")
        # Some iptables builds exit 2 for a rule that is merely absent
        text = (result.stderr or "").lower()
        if "does a matching rule exist" in text or "bad rule" in text:
            return False
        raise NatRuleError(f"{format_command(argv)} failed: {describe_failure(result)}")

    def present(self, hotspot_if: str, upstream_if: str) -> dict[NatRule, Optional[bool]]:
        """Presence of each hotspot rule; None where iptables could not say."""
        state: dict[NatRule, Optional[bool]] = {}
        for rule in hotspot_rules(hotspot_if, upstream_if):
            try:
                state[rule] = self.exists(rule)
            except NatRuleError as e:
                logger.debug("%s", e)
                state[rule] = None
        return state

    def enable_forwarding(self) -> None:
        """Turn on IPv4 forwarding. Left on at teardown."""
        try:
            self.system.run_checked(["sysctl", "-w", "net.ipv4.ip_forward=1"])
        except CommandFailed as e:
            raise NatRuleError(f"enabling IPv4 forwarding: {e}") from None

    def apply(self, hotspot_if: str, upstream_if: str) -> NatRuleSet:
        """Ensure the three rules exist exactly once.

        Rules that are already present are not inserted again. If an insert
        fails, rules inserted by this call are removed before raising.

        Raises:
            NatRuleError: forwarding or a rule could not be set up
        """
        logger.info("Setting up NAT from %s via %s", hotspot_if, upstream_if)
        self.enable_forwarding()
        rules = hotspot_rules(hotspot_if, upstream_if)
        inserted: list[NatRule] = []
        try:
            for rule in rules:
                if self.exists(rule):
                    logger.debug("Rule already present: %s", rule)
                    continue
                argv = self._argv("-A", rule)
                result = self.system.run(argv)
                if result.returncode != 0:
                    raise NatRuleError(f"{format_command(argv)} failed: {describe_failure(result)}")
                inserted.append(rule)
        except NatRuleError:
            for rule in reversed(inserted):
                self._delete(rule)
            raise
        return NatRuleSet(hotspot_interface=hotspot_if, upstream_interface=upstream_if, rules=rules)

    def remove(self, rules: tuple[NatRule, ...]) -> list[TeardownError]:
        """Delete each rule if present. Absent rules are not an error."""
        errors = []
        for rule in rules:
            try:
                if not self.exists(rule):
                    continue
            except NatRuleError as e:
                errors.append(TeardownError("NAT", format_command(self._argv("-C", rule)), str(e)))
                continue
            error = self._delete(rule)
            if error:
                errors.append(error)
        return errors

    def release(self, handle: NatRuleSet) -> list[TeardownError]:
        return self.remove(handle.rules)

    def _delete(self, rule: NatRule) -> Optional[TeardownError]:
        argv = self._argv("-D", rule)
        result = self.system.run(argv)
        if result.returncode != 0:
            error = TeardownError("NAT", format_command(argv), describe_failure(result))
            logger.warning("%s", error)
            return error
        logger.debug("Removed rule: %s", rule)
        return None
