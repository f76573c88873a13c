"""
Resource ledger for the hotspot lifecycle.

The ledger records which resources this orchestrator believes it owns,
in acquisition order. Teardown walks it backwards and keeps going past
individual failures so nothing acquired earlier is leaked.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterator, Optional, Union

from usbhotspot.errors import TeardownError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RegulatoryDomain:
    """Regulatory domain that was set. Nothing to undo."""

    country_code: str

    resource = "regulatory domain"


@dataclass(frozen=True)
class InterfaceBinding:
    """Gateway address assigned to the hotspot interface."""

    interface: str
    address: str

    resource = "interface"


@dataclass(frozen=True)
class AccessPointProcess:
    """Running hostapd instance."""

    pid: Optional[int]
    pid_file: Path
    config_path: Path

    resource = "hostapd"


@dataclass(frozen=True)
class DhcpProcess:
    """Running dnsmasq instance."""

    pid: Optional[int]
    pid_file: Path
    config_path: Path

    resource = "dnsmasq"


@dataclass(frozen=True)
class NatRule:
    """One iptables rule, keyed by its exact tuple."""

    table: str
    chain: str
    spec: tuple[str, ...]

    def __str__(self) -> str:
        return f"-t {self.table} {self.chain} {' '.join(self.spec)}"


@dataclass(frozen=True)
class NatRuleSet:
    """Forwarding and masquerading rules we ensured are present."""

    hotspot_interface: str
    upstream_interface: str
    rules: tuple[NatRule, ...]

    resource = "NAT"


ResourceHandle = Union[RegulatoryDomain, InterfaceBinding, AccessPointProcess, DhcpProcess, NatRuleSet]

# Start walks this forwards, stop and rollback walk it backwards
ACQUISITION_ORDER: tuple[type, ...] = (
    RegulatoryDomain,
    InterfaceBinding,
    AccessPointProcess,
    DhcpProcess,
    NatRuleSet,
)

Releaser = Callable[[ResourceHandle], list[TeardownError]]


class LedgerOrderError(ValueError):
    """A handle was acquired out of dependency order."""


def acquisition_rank(handle: ResourceHandle) -> int:
    return ACQUISITION_ORDER.index(type(handle))


class ResourceLedger:
    """Ordered, append-only record of acquired resources."""

    def __init__(self, handles: Optional[list[ResourceHandle]] = None):
        self._handles: list[ResourceHandle] = []
        for handle in handles or []:
            self.acquire(handle)

    def acquire(self, handle: ResourceHandle) -> None:
        """Record a resource whose creating action has already succeeded."""
        if type(handle) not in ACQUISITION_ORDER:
            raise TypeError(f"Not a resource handle: {handle!r}")
        if self._handles and acquisition_rank(handle) <= acquisition_rank(self._handles[-1]):
            raise LedgerOrderError(
                f"{type(handle).__name__} cannot follow {type(self._handles[-1]).__name__}"
            )
        logger.debug("Acquired %s", handle)
        self._handles.append(handle)

    def release_all(self, release: Releaser) -> list[TeardownError]:
        """Release every handle in reverse order.

        Continues past failures, then clears the ledger unconditionally.

        Args:
            release: Type-specific teardown for one handle

        Returns:
            All teardown errors encountered
        """
        errors: list[TeardownError] = []
        try:
            for handle in reversed(self._handles):
                try:
                    errors.extend(release(handle))
                except Exception as e:
                    logger.exception("Teardown of %s raised", handle.resource)
                    errors.append(TeardownError(handle.resource, "release", str(e)))
        finally:
            self._handles.clear()
        for error in errors:
            logger.warning("Teardown error: %s", error)
        return errors

    def find(self, kind: type) -> Optional[ResourceHandle]:
        for handle in self._handles:
            if isinstance(handle, kind):
                return handle
        return None

    def __contains__(self, kind: type) -> bool:
        return self.find(kind) is not None

    def __iter__(self) -> Iterator[ResourceHandle]:
        return iter(list(self._handles))

    def __len__(self) -> int:
        return len(self._handles)

    def __bool__(self) -> bool:
        return bool(self._handles)

    def __repr__(self) -> str:
        kinds = ", ".join(type(h).__name__ for h in self._handles)
        return f"ResourceLedger([{kinds}])"
