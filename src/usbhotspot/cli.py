"""
Command-line interface for USB Hotspot.

Provides commands to start, stop, restart and inspect the hotspot,
check the host, and write the configuration.
"""

import json
from pathlib import Path
from typing import Optional

import click

from usbhotspot import __version__
from usbhotspot.config import DEFAULT_CONFIG_PATH, HotspotConfig, load_config, save_config
from usbhotspot.daemon_configs import write_daemon_configs
from usbhotspot.detect import (
    check_dependencies,
    check_root,
    detect_upstream_interface,
    detect_wireless_interface,
    preflight,
)
from usbhotspot.errors import HotspotError
from usbhotspot.log import setup_logging
from usbhotspot.orchestrator import HotspotOrchestrator, StartResult
from usbhotspot.status import format_report
from usbhotspot.system import System


def _config_path(ctx: click.Context) -> Path:
    return ctx.obj.get("config_path") or DEFAULT_CONFIG_PATH


def _load(ctx: click.Context) -> HotspotConfig:
    """Load config from the selected file, or defaults."""
    path = _config_path(ctx)
    try:
        return load_config(path)
    except ValueError as e:
        raise click.ClickException(f"Invalid configuration in {path}: {e}") from None


def _failure(error: HotspotError) -> click.ClickException:
    """ClickException carrying the failure and any rollback problems."""
    message = str(error)
    if error.rollback_errors:
        details = "\n".join(f"  - {e}" for e in error.rollback_errors)
        message += f"\nRollback reported errors:\n{details}"
    return click.ClickException(message)


def _print_started(result: StartResult) -> None:
    for warning in result.warnings:
        click.echo(f"Warning: {warning}")
    click.echo("")
    click.echo("=== Hotspot is ACTIVE ===")
    click.echo(f"  SSID:      {result.ssid}")
    click.echo(f"  Interface: {result.interface}")
    click.echo(f"  Gateway:   {result.gateway}")
    click.echo(f"  DHCP:      {result.dhcp_range[0]} - {result.dhcp_range[1]}")
    click.echo(f"  Internet:  shared via {result.upstream_interface}")
    click.echo("")
    click.echo("Stop with: sudo usbhotspot stop")


@click.group()
@click.version_option(version=__version__, prog_name="USB Hotspot")
@click.option(
    "--config",
    "config_path",
    type=click.Path(exists=False, path_type=Path),
    default=None,
    help="Path to config file (default: /etc/usbhotspot/config.yaml)",
)
@click.option("-v", "--verbose", count=True, help="Log progress (-v) or every command (-vv)")
@click.option("--json-logs", is_flag=True, help="Log as JSON lines")
@click.pass_context
def main(ctx: click.Context, config_path: Optional[Path], verbose: int, json_logs: bool) -> None:
    """USB Hotspot - share a wired uplink through a USB WiFi adapter."""
    ctx.ensure_object(dict)
    ctx.obj["config_path"] = config_path
    level = {0: None, 1: "INFO"}.get(verbose, "DEBUG")
    setup_logging(level, json_format=json_logs)


@main.command()
@click.pass_context
def start(ctx: click.Context) -> None:
    """Start the WiFi hotspot."""
    config = _load(ctx)
    try:
        preflight(config)
        click.echo(f"=== Starting hotspot on {config.interface} ===")
        result = HotspotOrchestrator(config).start()
    except HotspotError as e:
        raise _failure(e) from None
    _print_started(result)


@main.command()
@click.pass_context
def stop(ctx: click.Context) -> None:
    """Stop the WiFi hotspot (safe to run repeatedly)."""
    config = _load(ctx)
    try:
        preflight(config)
        result = HotspotOrchestrator(config).stop()
    except HotspotError as e:
        raise _failure(e) from None

    if not result.was_running:
        click.echo("Hotspot is not running")
        return
    click.echo(f"Released: {', '.join(result.released)}")
    if result.errors:
        click.echo("Teardown reported errors:")
        for error in result.errors:
            click.echo(f"  - {error}")
    click.echo("=== Hotspot stopped ===")


@main.command()
@click.pass_context
def restart(ctx: click.Context) -> None:
    """Stop the hotspot if running, then start it."""
    config = _load(ctx)
    try:
        preflight(config)
        result = HotspotOrchestrator(config).restart()
    except HotspotError as e:
        raise _failure(e) from None
    _print_started(result)


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Print the snapshot as JSON")
@click.pass_context
def status(ctx: click.Context, as_json: bool) -> None:
    """Show interface, daemon, NAT and client status."""
    config = _load(ctx)
    snapshot = HotspotOrchestrator(config).status()

    if as_json:
        click.echo(json.dumps(snapshot.to_dict(), indent=2))
        return

    click.echo("=== USB Hotspot Status ===")
    click.echo("")
    for line in format_report(snapshot):
        click.echo(line)


@main.command()
@click.pass_context
def check(ctx: click.Context) -> None:
    """Check system requirements."""
    path = _config_path(ctx)
    config = _load(ctx)
    if path.exists():
        click.echo(f"Loaded config from {path}")
    else:
        click.echo("Using default config (no config file found)")

    system = System()
    click.echo()
    click.echo("USB Hotspot System Check")
    click.echo("=" * 40)

    is_root = check_root()
    if is_root:
        click.echo("[OK] Running as root")
    else:
        click.echo("[!!] Not running as root (use sudo)")

    missing = check_dependencies(config)
    if missing:
        click.echo(f"[!!] Missing: {', '.join(missing)}")
        click.echo("     Install with: sudo apt install hostapd dnsmasq iw iptables")
    else:
        click.echo("[OK] All dependencies installed")

    for label, name in (("Interface", config.interface), ("Upstream", config.upstream_interface)):
        if system.interface_exists(name):
            click.echo(f"[OK] {label} {name} exists")
        else:
            click.echo(f"[!!] {label} {name} not found")

    detected = detect_wireless_interface(system)
    if detected and detected != config.interface:
        click.echo(f"[--] Detected wireless interface: {detected}")

    for path_label, conf in (("hostapd", config.hostapd_conf), ("dnsmasq", config.dnsmasq_conf)):
        state = "present" if conf.exists() else "will be written on start"
        click.echo(f"[--] {path_label} config {conf}: {state}")

    click.echo()
    if not missing and is_root:
        click.echo("Ready to run: sudo usbhotspot start")
    else:
        click.echo("Please fix the issues above before running")


@main.command()
@click.option("--interface", default=None, help="WiFi interface of the USB adapter")
@click.option("--upstream", default=None, help="Interface with internet access")
@click.option("--ssid", default=None, help="Network name")
@click.option("--passphrase", default=None, help="WPA2 passphrase (8-63 chars)")
@click.option("--channel", type=int, default=None, help="WiFi channel")
@click.option("--country", default=None, help="Country code (US/KR/GB/JP/...)")
@click.option("--subnet", default=None, help="First three octets, e.g. 192.168.50")
@click.option("--detect/--no-detect", default=True, help="Auto-detect interfaces not given")
@click.pass_context
def configure(
    ctx: click.Context,
    interface: Optional[str],
    upstream: Optional[str],
    ssid: Optional[str],
    passphrase: Optional[str],
    channel: Optional[int],
    country: Optional[str],
    subnet: Optional[str],
    detect: bool,
) -> None:
    """Write the config file and both daemon configuration files."""
    path = _config_path(ctx)
    base = _load(ctx)

    if detect and not path.exists():
        system = System()
        interface = interface or detect_wireless_interface(system)
        upstream = upstream or detect_upstream_interface(system)

    overrides: dict[str, object] = {}
    if interface is not None:
        overrides["interface"] = interface
    if upstream is not None:
        overrides["upstream_interface"] = upstream
    if ssid is not None:
        overrides["ssid"] = ssid
    if passphrase is not None:
        overrides["passphrase"] = passphrase
    if channel is not None:
        overrides["channel"] = channel
    if country is not None:
        overrides["country_code"] = country
    if subnet is not None:
        overrides["subnet"] = subnet

    try:
        config = base.with_overrides(**overrides)
    except ValueError as e:
        raise click.ClickException(str(e)) from None

    click.echo("Configuration:")
    click.echo(f"  Interface:  {config.interface}")
    click.echo(f"  Upstream:   {config.upstream_interface}")
    click.echo(f"  SSID:       {config.ssid}")
    click.echo(f"  Channel:    {config.channel}")
    click.echo(f"  Country:    {config.country_code}")
    click.echo(f"  Subnet:     {config.subnet}.0/{config.subnet_prefix}")

    try:
        save_config(config, path)
        written = write_daemon_configs(config, overwrite=True)
    except OSError as e:
        raise click.ClickException(f"Could not write configuration: {e}") from None

    click.echo(f"Wrote {path}")
    for written_path in written:
        click.echo(f"Wrote {written_path}")
    click.echo("Start the hotspot with: sudo usbhotspot start")


if __name__ == "__main__":
    main()
