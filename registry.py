import json
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from constants import VALID_ROLES
from exceptions import UnknownChannelError
from logging_config import get_logger
from room_keys import IMPLICIT_PREFIXES

logger = get_logger(__name__)

DEFAULT_ROOMS = [
    {
        "name": "admin",
        "allowed_roles": ["owner", "admin"],
        "description": "Administrative operations and system management",
    },
    {
        "name": "orders",
        "allowed_roles": ["owner", "admin", "waiter", "kitchen"],
        "description": "Order management and updates",
    },
    {
        "name": "kitchen",
        "allowed_roles": ["owner", "admin", "kitchen"],
        "description": "Kitchen operations and inventory",
    },
    {
        "name": "tables",
        "allowed_roles": ["owner", "admin", "waiter"],
        "description": "Table management and reservations",
    },
    {
        "name": "inventory",
        "allowed_roles": ["owner", "admin", "kitchen"],
        "description": "Inventory management and stock alerts",
    },
    {
        "name": "customers",
        "allowed_roles": ["customer"],
        "description": "Customer-specific notifications",
    },
    {
        "name": "all_staff",
        "allowed_roles": ["owner", "admin", "waiter", "kitchen"],
        "description": "General staff communications",
    },
]


class Channel(BaseModel):
    model_config = ConfigDict(frozen=True)

    name: str = Field(min_length=1)
    allowed_roles: frozenset[str]
    description: str = ""

    @field_validator("name")
    @classmethod
    def name_not_implicit(cls, value: str) -> str:
        if value.startswith(IMPLICIT_PREFIXES):
            raise ValueError(f"room name {value!r} uses a reserved prefix")
        return value

    @field_validator("allowed_roles")
    @classmethod
    def roles_known(cls, value: frozenset[str]) -> frozenset[str]:
        if not value:
            raise ValueError("allowed_roles must not be empty")
        unknown = sorted(set(value) - set(VALID_ROLES))
        if unknown:
            raise ValueError(f"unknown roles: {', '.join(unknown)}")
        return value


class RegistryConfig(BaseModel):
    rooms: list[Channel]

    @model_validator(mode="after")
    def unique_names(self):
        seen = set()
        for room in self.rooms:
            if room.name in seen:
                raise ValueError(f"duplicate room name: {room.name}")
            seen.add(room.name)
        return self


class RoomRegistry:
    """Read-only table of rooms and the roles allowed to join them."""

    def __init__(self, channels: list[Channel]):
        self._channels = tuple(channels)
        self._by_name = {channel.name: channel for channel in self._channels}
        self._by_role = {
            role: frozenset(c for c in self._channels if role in c.allowed_roles)
            for role in VALID_ROLES
        }

    @classmethod
    def from_config(cls, data: dict) -> "RoomRegistry":
        config = RegistryConfig.model_validate(data)
        return cls(config.rooms)

    def __iter__(self):
        return iter(self._channels)

    def __len__(self):
        return len(self._channels)

    def __contains__(self, name: str) -> bool:
        return name in self._by_name

    def names(self) -> list[str]:
        return [channel.name for channel in self._channels]

    def describe(self, name: str) -> Optional[Channel]:
        return self._by_name.get(name)

    def require(self, name: str) -> Channel:
        channel = self._by_name.get(name)
        if channel is None:
            raise UnknownChannelError(name)
        return channel

    def channels_for_role(self, role: str) -> frozenset[Channel]:
        return self._by_role.get(role, frozenset())

    def channel_names_for_role(self, role: str) -> list[str]:
        """Names of the rooms ``role`` may join, in registry order."""
        return [c.name for c in self._channels if role in c.allowed_roles]


def load_registry(path: Optional[str] = None) -> RoomRegistry:
    """Build the registry from ``path`` (JSON ``{"rooms": [...]}``) or the defaults."""
    if not path:
        registry = RoomRegistry.from_config({"rooms": DEFAULT_ROOMS})
        logger.info(f"Loaded default room registry with {len(registry)} rooms")
        return registry

    data = json.loads(Path(path).read_text(encoding="utf-8"))
    registry = RoomRegistry.from_config(data)
    logger.info(f"Loaded room registry from {path} with {len(registry)} rooms")
    return registry
