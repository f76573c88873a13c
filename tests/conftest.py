"""Pytest configuration and fixtures."""

import signal
import subprocess
from pathlib import Path
from tempfile import TemporaryDirectory
from typing import Optional

import pytest

from usbhotspot.config import HotspotConfig
from usbhotspot.system import System


class FakeHost(System):
    """In-memory host that understands the commands the hotspot issues.

    Tracks interfaces, addresses, iptables rules (as a list, so duplicates
    show up), processes and the regulatory domain.
    """

    def __init__(self, interfaces=("wlan-test", "eth-test")):
        super().__init__(command_timeout=1.0)
        self.interfaces: dict[str, dict] = {
            name: {"up": False, "addresses": [], "mac": f"02:00:00:00:00:{i:02x}"}
            for i, name in enumerate(interfaces, start=1)
        }
        self.rules: list[tuple[str, str, tuple[str, ...]]] = []
        self.processes: dict[int, str] = {}
        self.next_pid = 4000
        self.country = "00"
        self.forwarding = False
        self.unmanaged: set[str] = set()
        self.calls: list[list[str]] = []
        self.sleeps: list[float] = []
        # "ok", "exit" (non-zero exit) or "dies" (PID file names a dead process)
        self.hostapd_behavior = "ok"
        self.dnsmasq_behavior = "ok"
        self.stubborn: set[int] = set()
        self.failures: dict[tuple[str, ...], tuple[int, str]] = {}

    # -- helpers for tests -------------------------------------------------

    def fail(self, *prefix: str, returncode: int = 1, stderr: str = "boom") -> None:
        """Make every command starting with prefix fail."""
        self.failures[prefix] = (returncode, stderr)

    def unplug(self, name: str) -> None:
        self.interfaces.pop(name, None)

    def live(self, name: str) -> list[int]:
        return [pid for pid, proc in self.processes.items() if proc == name]

    def rules_for(self, table: str, chain: str) -> list[tuple[str, ...]]:
        return [spec for t, c, spec in self.rules if (t, c) == (table, chain)]

    # -- System interface --------------------------------------------------

    def run(self, argv, timeout=None) -> subprocess.CompletedProcess:
        argv = list(argv)
        self.calls.append(argv)
        for prefix, (code, stderr) in self.failures.items():
            if tuple(argv[: len(prefix)]) == prefix:
                return subprocess.CompletedProcess(argv, code, stdout="", stderr=stderr)
        handler = {
            "ip": self._ip,
            "iw": self._iw,
            "nmcli": self._nmcli,
            "sysctl": self._sysctl,
            "iptables": self._iptables,
            "hostapd": self._hostapd,
            "dnsmasq": self._dnsmasq,
        }.get(Path(argv[0]).name)
        if handler is None:
            return self._result(argv, 127, stderr=f"{argv[0]}: command not found")
        return handler(argv)

    def pid_alive(self, pid: int) -> bool:
        return pid in self.processes

    def send_signal(self, pid: int, sig: int = signal.SIGTERM) -> bool:
        if pid not in self.processes:
            return False
        if sig == signal.SIGKILL or pid not in self.stubborn:
            del self.processes[pid]
        return True

    def interface_exists(self, interface: str) -> bool:
        return interface in self.interfaces

    def read_sysfs(self, interface: str, attribute: str) -> Optional[str]:
        iface = self.interfaces.get(interface)
        if iface is None:
            return None
        if attribute == "address":
            return iface["mac"]
        if attribute == "operstate":
            return "up" if iface["up"] else "down"
        return None

    def list_interfaces(self) -> list[str]:
        return sorted(self.interfaces)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)

    # -- command emulation -------------------------------------------------

    @staticmethod
    def _result(argv, code=0, stdout="", stderr=""):
        return subprocess.CompletedProcess(argv, code, stdout=stdout, stderr=stderr)

    def _no_device(self, argv, name):
        return self._result(argv, 1, stderr=f'Cannot find device "{name}"')

    def _ip(self, argv):
        args = argv[1:]
        if args[:3] == ["route", "show", "default"]:
            return self._result(argv, stdout="default via 10.0.0.1 dev eth-test proto dhcp metric 100\n")
        if args[:2] == ["addr", "flush"]:
            name = args[3]
            if name not in self.interfaces:
                return self._no_device(argv, name)
            self.interfaces[name]["addresses"] = []
            return self._result(argv)
        if args[:2] == ["addr", "add"]:
            cidr, name = args[2], args[4]
            if name not in self.interfaces:
                return self._no_device(argv, name)
            if cidr in self.interfaces[name]["addresses"]:
                return self._result(argv, 2, stderr="RTNETLINK answers: File exists")
            self.interfaces[name]["addresses"].append(cidr)
            return self._result(argv)
        if args[:2] == ["link", "set"]:
            name, state = args[2], args[3]
            if name not in self.interfaces:
                return self._no_device(argv, name)
            self.interfaces[name]["up"] = state == "up"
            return self._result(argv)
        if args[:4] == ["-4", "-o", "addr", "show"]:
            name = args[5]
            if name not in self.interfaces:
                return self._no_device(argv, name)
            lines = [
                f"3: {name}    inet {cidr} scope global {name}\\       valid_lft forever"
                for cidr in self.interfaces[name]["addresses"]
            ]
            return self._result(argv, stdout="\n".join(lines) + ("\n" if lines else ""))
        return self._result(argv, 1, stderr="unsupported ip command")

    def _iw(self, argv):
        args = argv[1:]
        if args[:2] == ["reg", "set"]:
            self.country = args[2]
            return self._result(argv)
        if args[:2] == ["reg", "get"]:
            return self._result(argv, stdout=f"global\ncountry {self.country}: DFS-FCC\n")
        if args[:1] == ["dev"] and args[2:] == ["info"]:
            name = args[1]
            if name not in self.interfaces:
                return self._no_device(argv, name)
            mode = "AP" if self.live("hostapd") else "managed"
            return self._result(argv, stdout=f"Interface {name}\n\tifindex 3\n\ttype {mode}\n")
        return self._result(argv, 1, stderr="unsupported iw command")

    def _nmcli(self, argv):
        name, state = argv[3], argv[5]
        if state == "no":
            self.unmanaged.add(name)
        else:
            self.unmanaged.discard(name)
        return self._result(argv)

    def _sysctl(self, argv):
        if argv[-1] == "net.ipv4.ip_forward=1":
            self.forwarding = True
        return self._result(argv)

    def _iptables(self, argv):
        table, op, chain, spec = argv[2], argv[3], argv[4], tuple(argv[5:])
        rule = (table, chain, spec)
        if op == "-C":
            if rule in self.rules:
                return self._result(argv)
            return self._result(argv, 1, stderr="iptables: Bad rule (does a matching rule exist in that chain?).")
        if op == "-A":
            self.rules.append(rule)
            return self._result(argv)
        if op == "-D":
            if rule not in self.rules:
                return self._result(argv, 1, stderr="iptables: Bad rule (does a matching rule exist in that chain?).")
            self.rules.remove(rule)
            return self._result(argv)
        return self._result(argv, 2, stderr="unsupported iptables command")

    def _spawn(self, name: str, pid_file: Path, behavior: str):
        pid = self.next_pid
        self.next_pid += 1
        if behavior == "ok":
            self.processes[pid] = name
        pid_file.parent.mkdir(parents=True, exist_ok=True)
        pid_file.write_text(f"{pid}\n")
        return pid

    def _hostapd(self, argv):
        pid_file, conf = Path(argv[argv.index("-P") + 1]), argv[-1]
        interface = _conf_value(conf, "interface")
        if self.hostapd_behavior == "exit":
            return self._result(argv, 1, stdout="Could not set channel for kernel driver\n")
        if interface not in self.interfaces:
            return self._result(argv, 1, stdout=f"Could not read interface {interface} flags\n")
        self._spawn("hostapd", pid_file, self.hostapd_behavior)
        return self._result(argv)

    def _dnsmasq(self, argv):
        conf = argv[argv.index("-C") + 1]
        pid_file = Path(next(a for a in argv if a.startswith("--pid-file=")).split("=", 1)[1])
        interface = _conf_value(conf, "interface")
        router = _conf_value(conf, "dhcp-option=option:router", sep=",")
        addresses = [cidr.split("/")[0] for cidr in self.interfaces.get(interface, {}).get("addresses", [])]
        if self.dnsmasq_behavior == "exit" or router not in addresses:
            return self._result(
                argv, 2, stderr=f"dnsmasq: failed to create listening socket for {router}: Cannot assign requested address"
            )
        self._spawn("dnsmasq", pid_file, self.dnsmasq_behavior)
        return self._result(argv)


def _conf_value(path: str, key: str, sep: str = "=") -> Optional[str]:
    for line in Path(path).read_text().splitlines():
        if line.startswith(key + sep):
            return line[len(key) + len(sep):]
    return None


def make_config(base: Path, **overrides) -> HotspotConfig:
    """Config whose persisted state lives under base, with no delays."""
    values = {
        "interface": "wlan-test",
        "upstream_interface": "eth-test",
        "subnet": "10.9.9",
        "hostapd_conf": base / "etc" / "hostapd.conf",
        "dnsmasq_conf": base / "etc" / "dnsmasq.conf",
        "hostapd_pid_file": base / "run" / "hostapd.pid",
        "dnsmasq_pid_file": base / "run" / "dnsmasq.pid",
        "lock_file": base / "run" / "usbhotspot.lock",
        "lease_file": base / "lib" / "dnsmasq.leases",
        "hostapd_bin": "hostapd",
        "dnsmasq_bin": "dnsmasq",
        "daemon_start_attempts": 3,
        "daemon_poll_interval": 0.0,
        "daemon_stop_timeout": 0.3,
        "settle_delay": 0.0,
    }
    values.update(overrides)
    return HotspotConfig(**values)


@pytest.fixture
def temp_dir():
    """Provide a temporary directory."""
    with TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def config(temp_dir: Path) -> HotspotConfig:
    """Test configuration: wlan-test hotspot sharing eth-test, subnet 10.9.9."""
    return make_config(temp_dir)


@pytest.fixture
def host() -> FakeHost:
    """Fake host with wlan-test and eth-test present."""
    return FakeHost()


@pytest.fixture
def config_factory(temp_dir: Path):
    """Build test configurations with some fields replaced."""

    def factory(**overrides) -> HotspotConfig:
        return make_config(temp_dir, **overrides)

    return factory
