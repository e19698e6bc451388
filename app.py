from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, WebSocket
from fastapi.middleware.cors import CORSMiddleware

from auth import TokenValidator
from constants import FRONTEND_URL, ROOMS_CONFIG
from gateway import Gateway
from logging_config import get_logger, setup_logging
from registry import RoomRegistry, load_registry
from room_manager import RoomManager
from routers.realtime import realtime_router
import os

# Setup logging
log_level = os.getenv("LOG_LEVEL", "INFO")
log_file = os.getenv("LOG_FILE", None)
setup_logging(log_level=log_level, log_file=log_file)
logger = get_logger(__name__)


def create_app(
    jwt_secret: Optional[str] = None,
    registry: Optional[RoomRegistry] = None,
    room_manager: Optional[RoomManager] = None,
) -> FastAPI:
    """Build the application. Each app owns exactly one RoomManager."""
    if room_manager is None:
        room_manager = RoomManager(registry or load_registry(ROOMS_CONFIG))
    token_validator = TokenValidator(secret=jwt_secret)
    gateway = Gateway(room_manager, token_validator)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        room_manager.shutdown()

    app = FastAPI(title="PAMBAZO realtime", lifespan=lifespan)
    app.state.room_manager = room_manager
    app.state.token_validator = token_validator
    app.state.gateway = gateway

    app.add_middleware(
        CORSMiddleware,
        allow_origins=[FRONTEND_URL],
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    app.include_router(realtime_router)

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.websocket("/ws")
    async def websocket_endpoint(websocket: WebSocket):
        """Real-time gateway.

        Authenticate with ``?token=<jwt>`` or an ``Authorization: Bearer`` header.
        """
        await gateway.serve(websocket)

    logger.info("FastAPI application initialized")
    return app


app = create_app()
