"""Read-only view of the dnsmasq lease table."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Optional

from usbhotspot.errors import LeaseTableUnavailable


@dataclass(frozen=True)
class ClientLease:
    """One DHCP lease handed out to a hotspot client."""

    address: str
    mac_address: str
    hostname: Optional[str]
    expires: Optional[datetime]  # None = infinite lease


def parse_lease_line(line: str) -> Optional[ClientLease]:
    """Parse `<expiry> <mac> <ip> <hostname> <client-id>`.

    Returns:
        Lease, or None for blank/malformed lines
    """
    parts = line.split()
    if len(parts) < 4:
        return None
    expiry, mac, address, hostname = parts[:4]
    try:
        stamp = int(expiry)
    except ValueError:
        return None
    return ClientLease(
        address=address,
        mac_address=mac.lower(),
        hostname=None if hostname == "*" else hostname,
        expires=datetime.fromtimestamp(stamp) if stamp > 0 else None,
    )


def read_leases(path: Path) -> list[ClientLease]:
    """Read the current lease table.

    Raises:
        LeaseTableUnavailable: The file is missing or unreadable
    """
    try:
        text = path.read_text()
    except OSError as e:
        raise LeaseTableUnavailable(f"lease table {path} unavailable: {e.strerror or e}") from None

    leases = []
    for line in text.splitlines():
        lease = parse_lease_line(line)
        if lease is not None:
            leases.append(lease)
    return leases
