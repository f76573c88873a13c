"""
Error types for USB Hotspot.

Every message names the resource that failed and the external action
that was attempted, so operators can diagnose without reading source.
"""

from __future__ import annotations

from dataclasses import dataclass


class HotspotError(Exception):
    """Base class for all hotspot lifecycle errors."""

    def __init__(self, *args):
        super().__init__(*args)
        # Set on start failures: what went wrong while undoing the partial start
        self.rollback_errors: list[TeardownError] = []


class AlreadyRunning(HotspotError):
    """A live access point daemon already exists."""


class AlreadyInProgress(HotspotError):
    """Another start/stop/restart holds the control lock."""


class InterfaceNotFound(HotspotError):
    """The wireless device does not exist (adapter unplugged)."""

    def __init__(self, interface: str):
        self.interface = interface
        super().__init__(f"interface {interface} not found. Is the USB adapter plugged in?")


class RegulatoryDomainWarning(HotspotError):
    """Setting the regulatory domain failed. Never fatal."""


class DaemonStartFailed(HotspotError):
    """A supervised daemon did not come up within its attempt budget."""

    def __init__(self, which: str, detail: str):
        self.which = which
        self.detail = detail
        super().__init__(f"{which} failed to start: {detail}")


class NatRuleError(HotspotError):
    """A firewall rule could not be queried, inserted or deleted."""


class LeaseTableUnavailable(HotspotError):
    """The DHCP lease table could not be read."""


class CommandFailed(HotspotError):
    """An external command needed by the start sequence failed."""

    def __init__(self, action: str, detail: str):
        self.action = action
        self.detail = detail
        super().__init__(f"{action} failed: {detail}" if detail else f"{action} failed")


class PreflightError(HotspotError):
    """The host cannot run a hotspot (not root, tools missing)."""


@dataclass(frozen=True)
class TeardownError:
    """One failed teardown step, collected rather than raised."""

    resource: str
    action: str
    detail: str

    def __str__(self) -> str:
        return f"{self.resource}: {self.action} failed: {self.detail}"
