"""
FastAPI application for the USB Hotspot web API.
"""

from typing import Optional

from fastapi import FastAPI

from usbhotspot import __version__
from usbhotspot.log import setup_logging
from usbhotspot.web.routes import load_initial_config, router

# Create FastAPI app
app = FastAPI(
    title="USB Hotspot",
    description="Control and status API for the USB WiFi hotspot",
    version=__version__,
)

# Include API routes
app.include_router(router, prefix="/api")


@app.get("/health")
async def health() -> dict:
    """Health check endpoint."""
    return {"status": "ok", "version": __version__}


def run_server(
    host: Optional[str] = None,
    port: Optional[int] = None,
    reload: bool = False,
) -> None:
    """Run the web server.

    Args:
        host: Host to bind to (default: from config or 127.0.0.1)
        port: Port to listen on (default: from config or 8080)
        reload: Enable auto-reload for development
    """
    import uvicorn

    setup_logging("INFO")
    config = load_initial_config()
    effective_host = host if host is not None else config.web_host
    effective_port = port if port is not None else config.web_port

    print(f"Starting USB Hotspot API on http://{effective_host}:{effective_port}")
    uvicorn.run(
        "usbhotspot.web.app:app",
        host=effective_host,
        port=effective_port,
        reload=reload,
    )


if __name__ == "__main__":
    run_server()
