"""Regulatory domain setter."""

import logging
from typing import Optional

from usbhotspot.errors import RegulatoryDomainWarning
from usbhotspot.ledger import RegulatoryDomain
from usbhotspot.system import System, describe_failure

logger = logging.getLogger(__name__)


class RegulatorySetter:
    """Sets the wireless regulatory domain so restricted channels unlock.

    Failure is only a warning: if the channel really is unusable, hostapd
    rejects it later with a more useful message.
    """

    def __init__(self, system: System, settle_delay: float = 1.0):
        self.system = system
        self.settle_delay = settle_delay
        self.last_warning: Optional[RegulatoryDomainWarning] = None

    def apply(self, country_code: str) -> Optional[RegulatoryDomain]:
        """Run `iw reg set`.

        Returns:
            Handle on success, None when the call failed (see last_warning)
        """
        result = self.system.run(["iw", "reg", "set", country_code])
        if result.returncode != 0:
            self.last_warning = RegulatoryDomainWarning(
                f"iw reg set {country_code} failed: {describe_failure(result)}"
            )
            logger.warning("%s", self.last_warning)
            return None
        self.last_warning = None
        self.system.sleep(self.settle_delay)
        return RegulatoryDomain(country_code=country_code)

    def current(self) -> Optional[str]:
        """Country currently reported by `iw reg get`."""
        result = self.system.run(["iw", "reg", "get"])
        if result.returncode != 0:
            return None
        for line in (result.stdout or "").splitlines():
            line = line.strip()
            if line.startswith("country "):
                return line.split()[1].rstrip(":")
        return None
