"""FastAPI application entry point."""

from contextlib import asynccontextmanager
from typing import AsyncGenerator

from fastapi import Depends, FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from openfridge.api.routes import router
from openfridge.api.websocket import handle_kiosk_socket
from openfridge.config import get_settings
from openfridge.kiosk.hub import KioskHub, get_hub, shutdown_hub
from openfridge.services.lock import get_lock_client
from openfridge.state.manager import get_state_manager
from openfridge.utils.logging import get_logger, setup_logging

# Setup logging first
setup_logging()
logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan manager."""
    # Startup
    logger.info("application_starting")

    state_manager = await get_state_manager()
    logger.info("state_manager_initialized")

    yield

    # Shutdown
    logger.info("application_shutting_down")
    await shutdown_hub()
    # Re-lock any door still open before the process exits
    await get_lock_client().shutdown()
    await state_manager.disconnect()


# Create FastAPI app
app = FastAPI(
    title="OpenFridge",
    description="Self-service smart fridge kiosk: checkout, settlement and door lock",
    version="0.1.0",
    lifespan=lifespan,
)

# CORS middleware
settings = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Kiosk displays are served from their own origin
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router, prefix="/api/v1", tags=["api"])


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint."""
    return {"status": "healthy", "service": "openfridge"}


@app.get("/")
async def root() -> dict[str, str]:
    """Root endpoint."""
    return {
        "message": "OpenFridge kiosk API",
        "docs": "/docs",
        "health": "/health",
    }


# WebSocket endpoint
@app.websocket("/ws/kiosk/{machine_id}")
async def kiosk_websocket(
    websocket: WebSocket,
    machine_id: str,
    hub: KioskHub = Depends(get_hub),
) -> None:
    """WebSocket endpoint for a kiosk display."""
    await handle_kiosk_socket(websocket, machine_id, hub)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "openfridge.main:app",
        host=settings.api_host,
        port=settings.api_port,
        reload=settings.environment == "development",
    )
