"""
Access to the host: external commands, processes and sysfs.

Components never call subprocess or os.kill directly; they go through
a System so the whole lifecycle can run against a fake host in tests.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import time
from pathlib import Path
from typing import Optional, Sequence

from usbhotspot.errors import CommandFailed

logger = logging.getLogger(__name__)

SYS_CLASS_NET = Path("/sys/class/net")

# Return code used when the executable itself is missing
COMMAND_NOT_FOUND = 127


def format_command(argv: Sequence[str]) -> str:
    """Render argv the way an operator would type it."""
    return " ".join(argv)


def describe_failure(result: subprocess.CompletedProcess) -> str:
    """Best single-line explanation for a failed command."""
    text = (result.stderr or "").strip() or (result.stdout or "").strip()
    if text:
        return text.splitlines()[-1]
    return f"exit code {result.returncode}"


class System:
    """Thin wrapper around the operating system facilities we use."""

    def __init__(self, command_timeout: float = 15.0):
        self.command_timeout = command_timeout

    def run(
        self,
        argv: Sequence[str],
        timeout: Optional[float] = None,
    ) -> subprocess.CompletedProcess:
        """Run a command and capture its output.

        Never raises for a non-zero exit. A missing executable or a timeout
        is reported through the return code so callers handle one shape.
        """
        argv = list(argv)
        logger.debug("Running: %s", format_command(argv))
        try:
            return subprocess.run(
                argv,
                capture_output=True,
                text=True,
                check=False,
                timeout=timeout if timeout is not None else self.command_timeout,
            )
        except FileNotFoundError:
            return subprocess.CompletedProcess(
                argv, COMMAND_NOT_FOUND, stdout="", stderr=f"{argv[0]}: command not found"
            )
        except subprocess.TimeoutExpired as e:
            return subprocess.CompletedProcess(
                argv, -1, stdout="", stderr=f"timed out after {e.timeout}s"
            )

    def run_checked(self, argv: Sequence[str], action: Optional[str] = None) -> str:
        """Run a command and raise CommandFailed unless it exits 0.

        Returns:
            Captured stdout
        """
        result = self.run(argv)
        if result.returncode != 0:
            raise CommandFailed(action or format_command(argv), describe_failure(result))
        return result.stdout or ""

    def pid_alive(self, pid: int) -> bool:
        """Zero-cost liveness probe (signal 0)."""
        if pid <= 0:
            return False
        try:
            os.kill(pid, 0)
        except ProcessLookupError:
            return False
        except PermissionError:
            # Exists, owned by someone else
            return True
        return True

    def send_signal(self, pid: int, sig: int = signal.SIGTERM) -> bool:
        """Deliver a signal.

        Returns:
            False if the process no longer exists
        """
        try:
            os.kill(pid, sig)
        except ProcessLookupError:
            return False
        return True

    def interface_exists(self, interface: str) -> bool:
        return (SYS_CLASS_NET / interface).exists()

    def read_sysfs(self, interface: str, attribute: str) -> Optional[str]:
        """Read /sys/class/net/<interface>/<attribute>, or None."""
        try:
            return (SYS_CLASS_NET / interface / attribute).read_text().strip()
        except (FileNotFoundError, PermissionError, OSError):
            return None

    def list_interfaces(self) -> list[str]:
        try:
            return sorted(entry.name for entry in SYS_CLASS_NET.iterdir())
        except OSError:
            return []

    def sleep(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)
