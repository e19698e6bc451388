from fastapi import APIRouter, Depends, Header, HTTPException, Request
from typing import Optional

from auth import Identity, extract_bearer
from constants import MANAGER_ROLES
from exceptions import AuthenticationError, ConfigurationError
from logging_config import get_logger
from room_manager import RoomManager
from schemas.realtime import (
    OnlineUsersResponse,
    PublishEventRequest,
    PublishResponse,
    PublishToRolesRequest,
    PublishToRolesResponse,
    RoomInfo,
    RoomsResponse,
    StatsResponse,
    SystemMessageRequest,
    SystemMessageResponse,
)

logger = get_logger(__name__)

realtime_router = APIRouter(prefix="/realtime", tags=["realtime"])


def get_room_manager(request: Request) -> RoomManager:
    return request.app.state.room_manager


def get_current_identity(request: Request, authorization: Optional[str] = Header(None)) -> Identity:
    validator = request.app.state.token_validator
    try:
        return validator.validate(extract_bearer(authorization))
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=e.reason, headers={"WWW-Authenticate": "Bearer"})
    except ConfigurationError:
        raise HTTPException(status_code=500, detail=ConfigurationError.REASON)


def require_manager(identity: Identity = Depends(get_current_identity)) -> Identity:
    if identity.role not in MANAGER_ROLES:
        logger.warning(f"Realtime API access denied for {identity.email} ({identity.role})")
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return identity


@realtime_router.get("/stats", response_model=StatsResponse)
async def get_stats(
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    return StatsResponse(
        rooms=manager.stats(),
        by_role=manager.connected_by_role(),
        connections=manager.connection_count,
    )


@realtime_router.get("/online", response_model=OnlineUsersResponse)
async def get_online_users(
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    users = manager.list_online()
    return OnlineUsersResponse(users=users, count=len(users))


@realtime_router.get("/rooms", response_model=RoomsResponse)
async def list_rooms(
    identity: Identity = Depends(get_current_identity),
    manager: RoomManager = Depends(get_room_manager),
):
    """Every registry room, and the ones the caller's role may join."""
    rooms = [
        RoomInfo(name=c.name, allowed_roles=sorted(c.allowed_roles), description=c.description)
        for c in manager.registry
    ]
    return RoomsResponse(rooms=rooms, accessible=manager.registry.channel_names_for_role(identity.role))


@realtime_router.post("/rooms/{room}/events", response_model=PublishResponse)
async def publish_to_room(
    room: str,
    body: PublishEventRequest,
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    result = manager.broadcast(room, body.event, body.data)
    if not result.found:
        raise HTTPException(status_code=404, detail="Room not found")
    logger.info(f"{identity.email} published {body.event} to room {room} ({result.delivered} recipients)")
    return PublishResponse(found=result.found, delivered=result.delivered)


@realtime_router.post("/users/{user_id}/events", response_model=PublishResponse)
async def publish_to_user(
    user_id: str,
    body: PublishEventRequest,
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    result = manager.unicast(user_id, body.event, body.data)
    logger.info(f"{identity.email} sent {body.event} to user {user_id} ({result.delivered} recipients)")
    return PublishResponse(found=result.found, delivered=result.delivered)


@realtime_router.post("/roles/events", response_model=PublishToRolesResponse)
async def publish_to_roles(
    body: PublishToRolesRequest,
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    results = manager.broadcast_to_roles(body.roles, body.event, body.data)
    return PublishToRolesResponse(results={
        role: PublishResponse(found=r.found, delivered=r.delivered) for role, r in results.items()
    })


@realtime_router.post("/system-message", response_model=SystemMessageResponse)
async def send_system_message(
    body: SystemMessageRequest,
    identity: Identity = Depends(require_manager),
    manager: RoomManager = Depends(get_room_manager),
):
    delivered = manager.system_message(body.message, body.level)
    return SystemMessageResponse(delivered=delivered)
