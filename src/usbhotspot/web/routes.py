"""
API routes for the USB Hotspot web API.
"""

import os
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from usbhotspot.config import DEFAULT_CONFIG_PATH, HotspotConfig, load_config
from usbhotspot.errors import AlreadyInProgress, AlreadyRunning, HotspotError
from usbhotspot.orchestrator import HotspotOrchestrator

router = APIRouter()


def load_initial_config() -> HotspotConfig:
    """Load config from file or use defaults."""
    return load_config(DEFAULT_CONFIG_PATH)


# Global orchestrator, created on first use
_orchestrator: Optional[HotspotOrchestrator] = None


def _get_orchestrator() -> HotspotOrchestrator:
    """Get or create the global orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = HotspotOrchestrator(load_initial_config())
    return _orchestrator


def _is_root() -> bool:
    """Check if running with root privileges."""
    return os.geteuid() == 0


def _require_root() -> None:
    if not _is_root():
        raise HTTPException(
            status_code=403,
            detail="Must run as root to control the hotspot. Use: sudo usbhotspot-web",
        )


class ActionResponse(BaseModel):
    """Result of a start/stop/restart request."""

    status: str
    message: str
    ssid: Optional[str] = None
    gateway: Optional[str] = None
    errors: list[str] = []
    warnings: list[str] = []


def _control_error(error: HotspotError) -> HTTPException:
    if isinstance(error, (AlreadyRunning, AlreadyInProgress)):
        return HTTPException(status_code=409, detail=str(error))
    detail = str(error)
    if error.rollback_errors:
        detail += "; rollback: " + "; ".join(str(e) for e in error.rollback_errors)
    return HTTPException(status_code=500, detail=detail)


@router.get("/status")
def get_status() -> dict:
    """Reconciled live status of every managed resource."""
    snapshot = _get_orchestrator().status()
    result = snapshot.to_dict()
    result["is_root"] = _is_root()
    return result


@router.post("/hotspot/start", response_model=ActionResponse)
def start_hotspot() -> ActionResponse:
    """Start the WiFi hotspot."""
    _require_root()
    try:
        result = _get_orchestrator().start()
    except HotspotError as e:
        raise _control_error(e) from None
    return ActionResponse(
        status="ok",
        message="Hotspot started",
        ssid=result.ssid,
        gateway=result.gateway,
        warnings=result.warnings,
    )


@router.post("/hotspot/stop", response_model=ActionResponse)
def stop_hotspot() -> ActionResponse:
    """Stop the WiFi hotspot."""
    _require_root()
    try:
        result = _get_orchestrator().stop()
    except HotspotError as e:
        raise _control_error(e) from None
    if not result.was_running:
        return ActionResponse(status="ok", message="Hotspot not running")
    return ActionResponse(
        status="ok",
        message="Hotspot stopped",
        errors=[str(e) for e in result.errors],
    )


@router.post("/hotspot/restart", response_model=ActionResponse)
def restart_hotspot() -> ActionResponse:
    """Restart the WiFi hotspot."""
    _require_root()
    try:
        result = _get_orchestrator().restart()
    except HotspotError as e:
        raise _control_error(e) from None
    return ActionResponse(
        status="ok",
        message="Hotspot restarted",
        ssid=result.ssid,
        gateway=result.gateway,
        warnings=result.warnings,
    )
