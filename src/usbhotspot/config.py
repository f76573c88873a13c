"""
Configuration management for USB Hotspot.

Uses Pydantic for validated configuration with defaults matching a
single USB WiFi adapter sharing a wired uplink.
"""

import ipaddress
import re
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

# Default config file location
DEFAULT_CONFIG_PATH = Path("/etc/usbhotspot/config.yaml")
DEFAULT_CONFIG_DIR = DEFAULT_CONFIG_PATH.parent

_SUBNET_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}$")
_COUNTRY_RE = re.compile(r"^[A-Z]{2}$")

# 2.4GHz channels 1-14, plus the 5GHz channel numbers hostapd accepts
VALID_5GHZ_CHANNELS = frozenset(
    [36, 40, 44, 48, 52, 56, 60, 64, 100, 104, 108, 112, 116, 120, 124, 128, 132, 136, 140, 144]
    + [149, 153, 157, 161, 165, 169, 173, 177]
)


def is_5ghz_channel(channel: int) -> bool:
    """Check if a channel is in the 5GHz band."""
    return channel >= 36


class HotspotConfig(BaseModel):
    """Main configuration for USB Hotspot.

    Loaded once per invocation and never mutated (the model is frozen).
    """

    # Interfaces
    interface: str = Field(
        default="wlan0",
        description="Wireless interface of the USB adapter that runs the AP",
    )
    upstream_interface: str = Field(
        default="eth0",
        description="Interface that carries internet traffic",
    )

    # Access point
    ssid: str = Field(default="USB-Hotspot", description="Network name to broadcast")
    passphrase: str = Field(default="hotspot2024", description="WPA2 passphrase")
    channel: int = Field(default=6, description="WiFi channel")
    country_code: str = Field(default="US", description="Regulatory domain (ISO 3166 alpha-2)")
    max_stations: int = Field(default=8, ge=1, le=2007, description="Station limit")

    # Addressing
    subnet: str = Field(
        default="192.168.50",
        description="First three octets of the hotspot network; gateway is <subnet>.1",
    )
    subnet_prefix: int = Field(default=24, ge=8, le=30, description="Prefix length")
    dhcp_range_start: int = Field(default=10, ge=2, le=254, description="First DHCP host")
    dhcp_range_end: int = Field(default=50, ge=2, le=254, description="Last DHCP host")
    lease_time: str = Field(default="24h", description="DHCP lease duration")
    dns_servers: list[str] = Field(
        default_factory=lambda: ["8.8.8.8", "8.8.4.4"],
        description="DNS servers handed to clients and used upstream",
    )

    # NetworkManager would fight us for the interface otherwise
    manage_network_manager: bool = Field(
        default=True,
        description="Toggle NetworkManager control of the interface with nmcli",
    )

    # Persisted state
    hostapd_conf: Path = Field(default=DEFAULT_CONFIG_DIR / "hostapd.conf")
    dnsmasq_conf: Path = Field(default=DEFAULT_CONFIG_DIR / "dnsmasq.conf")
    hostapd_pid_file: Path = Field(default=Path("/var/run/usbhotspot-hostapd.pid"))
    dnsmasq_pid_file: Path = Field(default=Path("/var/run/usbhotspot-dnsmasq.pid"))
    lock_file: Path = Field(default=Path("/var/run/usbhotspot.lock"))
    lease_file: Path = Field(default=Path("/var/lib/misc/dnsmasq.leases"))

    # Tools
    hostapd_bin: str = Field(default="/usr/sbin/hostapd")
    dnsmasq_bin: str = Field(default="dnsmasq")
    iptables_bin: str = Field(default="iptables")

    # Web API
    web_host: str = Field(default="127.0.0.1", description="Host for the web API to bind to")
    web_port: int = Field(default=8080, ge=1, le=65535, description="Port for the web API")

    # Timing. Tuned for slow USB adapters; the right values depend on hardware.
    daemon_start_attempts: int = Field(
        default=10,
        ge=1,
        description="Liveness polls before a daemon counts as failed",
    )
    daemon_poll_interval: float = Field(
        default=0.5,
        ge=0,
        description="Seconds between liveness polls",
    )
    daemon_stop_timeout: float = Field(
        default=3.0,
        ge=0,
        description="Seconds to wait after SIGTERM before SIGKILL",
    )
    settle_delay: float = Field(
        default=1.0,
        ge=0,
        description="Pause after regulatory and link changes",
    )
    command_timeout: float = Field(
        default=15.0,
        gt=0,
        description="Upper bound for any single external command",
    )

    model_config = {
        "extra": "ignore",
        "frozen": True,
    }

    @field_validator("passphrase")
    @classmethod
    def validate_passphrase(cls, v: str) -> str:
        """WPA2-PSK passphrases are 8-63 printable characters."""
        if not 8 <= len(v) <= 63:
            raise ValueError("Passphrase must be 8-63 characters for WPA2")
        return v

    @field_validator("ssid")
    @classmethod
    def validate_ssid(cls, v: str) -> str:
        if not 1 <= len(v) <= 32:
            raise ValueError("SSID must be 1-32 characters")
        return v

    @field_validator("channel")
    @classmethod
    def validate_channel(cls, v: int) -> int:
        if 1 <= v <= 14 or v in VALID_5GHZ_CHANNELS:
            return v
        raise ValueError(f"Unsupported WiFi channel: {v}")

    @field_validator("country_code")
    @classmethod
    def validate_country(cls, v: str) -> str:
        v = v.upper()
        if not _COUNTRY_RE.match(v):
            raise ValueError("Country code must be two letters (e.g. US, KR, GB)")
        return v

    @field_validator("subnet")
    @classmethod
    def validate_subnet(cls, v: str) -> str:
        """Accept '10.9.9' style prefixes (a trailing '.0' is tolerated)."""
        if v.endswith(".0") and v.count(".") == 3:
            v = v[:-2]
        if not _SUBNET_RE.match(v) or any(int(octet) > 255 for octet in v.split(".")):
            raise ValueError(f"Subnet must look like 192.168.50, got {v!r}")
        return v

    @field_validator("dns_servers")
    @classmethod
    def validate_dns(cls, v: list[str]) -> list[str]:
        for server in v:
            ipaddress.IPv4Address(server)
        return v

    @model_validator(mode="after")
    def validate_range(self) -> "HotspotConfig":
        if self.dhcp_range_start >= self.dhcp_range_end:
            raise ValueError("dhcp_range_start must be below dhcp_range_end")
        if self.interface == self.upstream_interface:
            raise ValueError("interface and upstream_interface must differ")
        return self

    @property
    def gateway(self) -> str:
        """Address assigned to the hotspot interface."""
        return f"{self.subnet}.1"

    @property
    def gateway_cidr(self) -> str:
        return f"{self.gateway}/{self.subnet_prefix}"

    @property
    def netmask(self) -> str:
        return str(ipaddress.IPv4Network(f"0.0.0.0/{self.subnet_prefix}").netmask)

    @property
    def dhcp_first_address(self) -> str:
        return f"{self.subnet}.{self.dhcp_range_start}"

    @property
    def dhcp_last_address(self) -> str:
        return f"{self.subnet}.{self.dhcp_range_end}"

    def with_overrides(self, **overrides: object) -> "HotspotConfig":
        """Build a validated copy with some fields replaced."""
        return HotspotConfig(**{**self.model_dump(), **overrides})


def load_config(config_path: Optional[Path] = None) -> HotspotConfig:
    """Load configuration from a YAML file.

    Args:
        config_path: Optional path to YAML config file

    Returns:
        Validated configuration object (defaults if the file is absent)
    """
    if config_path and config_path.exists():
        import yaml

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        return HotspotConfig(**data)

    return HotspotConfig()


def save_config(config: HotspotConfig, config_path: Path) -> None:
    """Save configuration to YAML file.

    Args:
        config: Configuration to save
        config_path: Path to write config file
    """
    import yaml

    config_path.parent.mkdir(parents=True, exist_ok=True)
    with open(config_path, "w") as f:
        yaml.safe_dump(config.model_dump(mode="json"), f, default_flow_style=False)
