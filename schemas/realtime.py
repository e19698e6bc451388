from pydantic import BaseModel, Field
from typing import Any, Dict, List, Literal, Optional


class InboundMessage(BaseModel):
    event: str = Field(min_length=1)
    data: Any = None

class PublishEventRequest(BaseModel):
    event: str = Field(min_length=1)
    data: Optional[Dict[str, Any]] = None

class PublishToRolesRequest(PublishEventRequest):
    roles: List[Literal["owner", "admin", "waiter", "kitchen", "customer"]] = Field(min_length=1)

class PublishResponse(BaseModel):
    found: bool
    delivered: int

class PublishToRolesResponse(BaseModel):
    results: Dict[str, PublishResponse]

class SystemMessageRequest(BaseModel):
    message: str = Field(min_length=1)
    level: Literal["info", "warning", "error"] = "info"

class SystemMessageResponse(BaseModel):
    delivered: int

class OnlineUser(BaseModel):
    id: str
    email: str
    role: str
    socketId: str
    status: str

class OnlineUsersResponse(BaseModel):
    users: list[OnlineUser]
    count: int

class StatsResponse(BaseModel):
    rooms: Dict[str, int]
    by_role: Dict[str, int]
    connections: int

class RoomInfo(BaseModel):
    name: str
    allowed_roles: list[str]
    description: str

class RoomsResponse(BaseModel):
    rooms: list[RoomInfo]
    accessible: list[str]
