"""Lifecycle states of the hotspot."""

from enum import Enum


class LifecycleState(str, Enum):
    """Where the hotspot is in its lifecycle.

    Only STOPPED and RUNNING survive between invocations; they are read
    back from the hostapd PID file. The others exist while an operation
    is in flight.
    """

    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    FAILED = "failed"
