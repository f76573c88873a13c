"""
Supervision of the hostapd and dnsmasq daemons.

Both daemons detach and write their own PID file. We only ever start
them, probe them and stop them; a crashed daemon is reported, not
restarted.
"""

from __future__ import annotations

import logging
import signal
from pathlib import Path
from typing import Optional, Union

from usbhotspot.config import HotspotConfig
from usbhotspot.errors import DaemonStartFailed, TeardownError
from usbhotspot.ledger import AccessPointProcess, DhcpProcess
from usbhotspot.system import COMMAND_NOT_FOUND, System, describe_failure, format_command

logger = logging.getLogger(__name__)

DaemonHandle = Union[AccessPointProcess, DhcpProcess]

# Polling granularity while waiting for a terminated daemon to exit
_STOP_POLL = 0.1


def read_pid_file(path: Path) -> Optional[int]:
    """Read a PID file.

    Returns:
        The PID, or None if the file is missing or garbage
    """
    try:
        text = path.read_text().strip()
    except OSError:
        return None
    try:
        pid = int(text.split()[0]) if text else 0
    except ValueError:
        return None
    return pid if pid > 0 else None


class DaemonSupervisor:
    """Start, probe and stop one daemon tracked by a PID file."""

    name = "daemon"
    handle_type: type = AccessPointProcess

    def __init__(
        self,
        system: System,
        pid_file: Path,
        config_path: Path,
        start_attempts: int = 10,
        poll_interval: float = 0.5,
        stop_timeout: float = 3.0,
    ):
        self.system = system
        self.pid_file = pid_file
        self.config_path = config_path
        self.start_attempts = start_attempts
        self.poll_interval = poll_interval
        self.stop_timeout = stop_timeout

    def command(self) -> list[str]:
        """argv that launches the daemon detached, writing pid_file."""
        raise NotImplementedError

    def recorded_pid(self) -> Optional[int]:
        return read_pid_file(self.pid_file)

    def is_running(self) -> bool:
        """PID file names a process AND that process is alive."""
        pid = self.recorded_pid()
        return pid is not None and self.system.pid_alive(pid)

    def recorded_handle(self) -> Optional[DaemonHandle]:
        """Handle built from the PID file, live or stale."""
        if not self.pid_file.exists():
            return None
        return self.handle_type(
            pid=self.recorded_pid(),
            pid_file=self.pid_file,
            config_path=self.config_path,
        )

    def start(self) -> DaemonHandle:
        """Launch the daemon and wait until its PID file names a live process.

        Raises:
            DaemonStartFailed: Launch failed or the attempt budget ran out
        """
        if not self.config_path.exists():
            raise DaemonStartFailed(self.name, f"configuration file {self.config_path} not found")

        if self.pid_file.exists():
            self._clear_previous()

        argv = self.command()
        logger.info("Starting %s: %s", self.name, format_command(argv))
        result = self.system.run(argv)
        if result.returncode == COMMAND_NOT_FOUND:
            raise DaemonStartFailed(self.name, describe_failure(result))
        if result.returncode != 0:
            # The previous file was cleared above, so anything here came from this launch
            self._remove_pid_file()
            raise DaemonStartFailed(
                self.name, f"{format_command(argv)} exited {result.returncode}: {describe_failure(result)}"
            )

        for attempt in range(1, self.start_attempts + 1):
            pid = self.recorded_pid()
            if pid is not None and self.system.pid_alive(pid):
                logger.info("%s is running (PID %d)", self.name, pid)
                return self.handle_type(pid=pid, pid_file=self.pid_file, config_path=self.config_path)
            logger.debug("%s not live yet (attempt %d/%d)", self.name, attempt, self.start_attempts)
            self.system.sleep(self.poll_interval)

        pid = self.recorded_pid()
        if pid is not None and self.system.pid_alive(pid):
            # Came up after the last poll; the caller never learns of it otherwise
            self.stop(pid)
        self._remove_pid_file()
        raise DaemonStartFailed(
            self.name,
            f"no live process in {self.pid_file} after {self.start_attempts} checks",
        )

    def stop(self, pid: Optional[int] = None) -> list[TeardownError]:
        """Terminate the daemon and remove its PID file.

        The file is removed even if the process had already exited, so a
        stale file never blocks a later start.

        Args:
            pid: PID to stop (default: the one in the PID file)
        """
        if pid is None:
            pid = self.recorded_pid()
        errors = []
        if pid is not None:
            errors.extend(self._terminate(pid))
        errors.extend(self._remove_pid_file())
        return errors

    def release(self, handle: DaemonHandle) -> list[TeardownError]:
        recorded = self.recorded_pid()
        if handle.pid is not None and recorded not in (None, handle.pid):
            # The PID file now belongs to a newer instance; leave it alone
            logger.warning(
                "%s PID file names PID %d, not %d; keeping it", self.name, recorded, handle.pid
            )
            return self._terminate(handle.pid)
        return self.stop(handle.pid)

    def _clear_previous(self) -> None:
        """Stop a live instance from an earlier run and remove its PID file.

        Raises:
            DaemonStartFailed: The earlier instance could not be stopped
        """
        pid = self.recorded_pid()
        if pid is not None and self.system.pid_alive(pid):
            logger.warning("%s from an earlier run is still live (PID %d); stopping it", self.name, pid)
            errors = self._terminate(pid)
            if errors:
                # Keep the file so a later stop can still find it
                raise DaemonStartFailed(self.name, f"could not stop earlier instance: {errors[0]}")
        else:
            logger.info("Removing stale %s PID file %s", self.name, self.pid_file)
        self._remove_pid_file()

    def _terminate(self, pid: int) -> list[TeardownError]:
        try:
            if not self.system.send_signal(pid, signal.SIGTERM):
                logger.info("%s (PID %d) had already exited", self.name, pid)
                return []
        except PermissionError as e:
            return [TeardownError(self.name, f"kill -TERM {pid}", str(e))]

        logger.info("Sent SIGTERM to %s (PID %d)", self.name, pid)
        waited = 0.0
        while waited < self.stop_timeout:
            if not self.system.pid_alive(pid):
                return []
            self.system.sleep(_STOP_POLL)
            waited += _STOP_POLL

        if not self.system.pid_alive(pid):
            return []
        logger.warning("%s (PID %d) ignored SIGTERM, sending SIGKILL", self.name, pid)
        try:
            self.system.send_signal(pid, signal.SIGKILL)
        except PermissionError as e:
            return [TeardownError(self.name, f"kill -KILL {pid}", str(e))]
        return []

    def _remove_pid_file(self) -> list[TeardownError]:
        try:
            self.pid_file.unlink(missing_ok=True)
        except OSError as e:
            return [TeardownError(self.name, f"rm {self.pid_file}", str(e))]
        return []


class HostapdSupervisor(DaemonSupervisor):
    """The access point daemon."""

    name = "hostapd"
    handle_type = AccessPointProcess

    def __init__(self, system: System, config: HotspotConfig):
        super().__init__(
            system,
            pid_file=config.hostapd_pid_file,
            config_path=config.hostapd_conf,
            start_attempts=config.daemon_start_attempts,
            poll_interval=config.daemon_poll_interval,
            stop_timeout=config.daemon_stop_timeout,
        )
        self.binary = config.hostapd_bin

    def command(self) -> list[str]:
        return [self.binary, "-B", "-P", str(self.pid_file), str(self.config_path)]


class DnsmasqSupervisor(DaemonSupervisor):
    """The DHCP/DNS daemon."""

    name = "dnsmasq"
    handle_type = DhcpProcess

    def __init__(self, system: System, config: HotspotConfig):
        super().__init__(
            system,
            pid_file=config.dnsmasq_pid_file,
            config_path=config.dnsmasq_conf,
            start_attempts=config.daemon_start_attempts,
            poll_interval=config.daemon_poll_interval,
            stop_timeout=config.daemon_stop_timeout,
        )
        self.binary = config.dnsmasq_bin

    def command(self) -> list[str]:
        return [self.binary, "-C", str(self.config_path), f"--pid-file={self.pid_file}"]
