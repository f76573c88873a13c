"""
hostapd and dnsmasq configuration files.

The files live in the configuration directory and are only rewritten on
request, so hand edits made by an operator survive a restart.
"""

import logging
from pathlib import Path
from typing import Optional

from usbhotspot.config import HotspotConfig, is_5ghz_channel

logger = logging.getLogger(__name__)


def render_hostapd_config(config: HotspotConfig) -> str:
    """Create hostapd configuration text.

    Args:
        config: Hotspot configuration

    Returns:
        Contents for hostapd.conf
    """
    # Use hw_mode=a for 5GHz channels, hw_mode=g for 2.4GHz
    hw_mode = "a" if is_5ghz_channel(config.channel) else "g"

    return f"""interface={config.interface}
driver=nl80211
ssid={config.ssid}
hw_mode={hw_mode}
channel={config.channel}
country_code={config.country_code}
ieee80211n=1
wmm_enabled=1
ht_capab=[SHORT-GI-20][SHORT-GI-40]
beacon_int=100
auth_algs=1
wpa=2
wpa_key_mgmt=WPA-PSK
wpa_passphrase={config.passphrase}
wpa_pairwise=CCMP
rsn_pairwise=CCMP
max_num_sta={config.max_stations}
wpa_group_rekey=86400
ignore_broadcast_ssid=0
macaddr_acl=0
"""


def render_dnsmasq_config(config: HotspotConfig) -> str:
    """Create dnsmasq configuration text.

    Args:
        config: Hotspot configuration

    Returns:
        Contents for dnsmasq.conf
    """
    dns = ",".join(config.dns_servers)
    lines = [
        f"interface={config.interface}",
        "bind-interfaces",
        f"dhcp-range={config.dhcp_first_address},{config.dhcp_last_address},"
        f"{config.netmask},{config.lease_time}",
        f"dhcp-option=option:router,{config.gateway}",
        f"dhcp-option=option:dns-server,{dns}",
        f"dhcp-leasefile={config.lease_file}",
    ]
    lines.extend(f"server={server}" for server in config.dns_servers)
    return "\n".join(lines) + "\n"


def write_daemon_configs(config: HotspotConfig, overwrite: bool = False) -> list[Path]:
    """Write hostapd.conf and dnsmasq.conf.

    Args:
        config: Hotspot configuration
        overwrite: Replace files that already exist

    Returns:
        Paths that were written
    """
    written = []
    for path, render in (
        (config.hostapd_conf, render_hostapd_config),
        (config.dnsmasq_conf, render_dnsmasq_config),
    ):
        if path.exists() and not overwrite:
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(render(config))
        # The hostapd file carries the passphrase
        path.chmod(0o600)
        logger.info("Wrote %s", path)
        written.append(path)
    return written


def read_hostapd_setting(path: Path, key: str) -> Optional[str]:
    """Read one key=value setting from a hostapd configuration file."""
    try:
        text = path.read_text()
    except OSError:
        return None
    prefix = f"{key}="
    for line in text.splitlines():
        if line.startswith(prefix):
            return line[len(prefix):].strip()
    return None
