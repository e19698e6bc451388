"""Room membership and fan-out for authenticated connections.

Every connection is placed in:

- ``role:<role>`` and ``user:<id>`` (derived from its identity)
- every registry room whose ``allowed_roles`` contains its role

Membership is never taken from the client. All methods are synchronous and
run on the event loop; sending only enqueues a frame on the connection, so
nothing here awaits a socket. Bad room names are logged and reported through
``PublishResult.found``, never raised.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, NamedTuple, Set

from connections import Connection, ConnectionTracker
from constants import VALID_ROLES, WELCOME_MESSAGE
from exceptions import UnknownChannelError
from logging_config import get_logger
from registry import RoomRegistry
from room_keys import ADMIN_ROOM, ROLE_ROOM, USER_ROOM

logger = get_logger(__name__)

SYSTEM_LEVELS = ("info", "warning", "error")


class PublishResult(NamedTuple):
    found: bool
    delivered: int


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


class RoomManager:
    def __init__(self, registry: RoomRegistry, welcome_message: str = WELCOME_MESSAGE):
        self.registry = registry
        self.welcome_message = welcome_message
        self.tracker = ConnectionTracker()
        # Format: {room_name: {connection_id, ...}}
        self._rooms: Dict[str, Set[str]] = {}
        logger.info(f"Room manager initialized with rooms: {', '.join(registry.names())}")

    @property
    def connection_count(self) -> int:
        return len(self.tracker)

    def rooms_for(self, connection: Connection) -> List[str]:
        """Rooms a connection is entitled to, implicit rooms first."""
        identity = connection.identity
        return [
            ROLE_ROOM.format(role=identity.role),
            USER_ROOM.format(user_id=identity.id),
            *self.registry.channel_names_for_role(identity.role),
        ]

    def admit(self, connection: Connection) -> List[str]:
        identity = connection.identity
        rooms = self.rooms_for(connection)

        self.tracker.add(connection)
        for room in rooms:
            self._join(connection, room)
        logger.info(f"User {identity.email} ({identity.role}) admitted on {connection.connection_id}, rooms: {rooms}")

        connection.send("connection:welcome", {
            "message": self.welcome_message,
            "rooms": rooms,
            "timestamp": utc_now(),
        })
        self.broadcast(ADMIN_ROOM, "user:connected", self._presence_payload(connection))
        return rooms

    def remove(self, connection_id: str) -> bool:
        connection = self.tracker.pop(connection_id)
        if connection is None:
            logger.debug(f"Remove ignored for unknown connection {connection_id}")
            return False

        for room in list(connection.joined_channels):
            self._leave(connection, room)

        logger.info(f"User {connection.identity.email} left all rooms ({connection_id})")
        self.broadcast(ADMIN_ROOM, "user:disconnected", self._presence_payload(connection))
        return True

    def has_access(self, role: str, channel_name: str) -> bool:
        channel = self.registry.describe(channel_name)
        return channel is not None and role in channel.allowed_roles

    def join(self, connection_id: str, channel_name: str) -> bool:
        """Client-requested join. Only registry rooms the role may enter."""
        connection = self.tracker.get(connection_id)
        if connection is None:
            return False
        if not self.has_access(connection.identity.role, channel_name):
            logger.warning(f"User {connection.identity.email} denied access to room {channel_name}")
            return False
        self._join(connection, channel_name)
        return True

    def leave(self, connection_id: str, channel_name: str) -> bool:
        """Client-requested leave. Implicit rooms cannot be left."""
        connection = self.tracker.get(connection_id)
        if connection is None or channel_name not in self.registry:
            return False
        if channel_name not in connection.joined_channels:
            return False
        self._leave(connection, channel_name)
        return True

    def broadcast(self, channel_name: str, event: str, payload: Any) -> PublishResult:
        try:
            self._check_channel(channel_name)
        except UnknownChannelError as e:
            logger.warning(f"Broadcast of {event} skipped: {e}")
            return PublishResult(found=False, delivered=0)

        message = self._tag(payload, timestamp=utc_now(), room=channel_name)
        delivered = 0
        for connection_id in list(self._rooms.get(channel_name, ())):
            connection = self.tracker.get(connection_id)
            if connection and connection.send(event, message):
                delivered += 1
        logger.debug(f"Broadcast {event} to room {channel_name}: {delivered} recipients")
        return PublishResult(found=True, delivered=delivered)

    def broadcast_to_roles(self, roles: Iterable[str], event: str, payload: Any) -> Dict[str, PublishResult]:
        return {
            role: self.broadcast(ROLE_ROOM.format(role=role), event, payload)
            for role in roles
        }

    def unicast(self, identity_id: str, event: str, payload: Any) -> PublishResult:
        message = self._tag(payload, targetUser=identity_id)
        return self.broadcast(USER_ROOM.format(user_id=identity_id), event, message)

    def system_message(self, message: str, level: str = "info") -> int:
        """Send ``system:message`` to every connection, ignoring room membership."""
        if level not in SYSTEM_LEVELS:
            logger.warning(f"Unknown system message level {level!r}, using 'info'")
            level = "info"
        payload = {"message": message, "level": level, "timestamp": utc_now()}
        delivered = sum(1 for connection in self.tracker if connection.send("system:message", payload))
        logger.info(f"System message ({level}) sent to {delivered} connections")
        return delivered

    def stats(self) -> Dict[str, int]:
        counts = {name: 0 for name in self.registry.names()}
        for room, members in self._rooms.items():
            if members:
                counts[room] = len(members)
        return counts

    def connected_by_role(self) -> Dict[str, int]:
        counts = {role: 0 for role in VALID_ROLES}
        for connection in self.tracker:
            counts[connection.identity.role] = counts.get(connection.identity.role, 0) + 1
        return counts

    def is_connected(self, identity_id: str) -> bool:
        return bool(self.tracker.for_identity(identity_id))

    def set_presence(self, identity_id: str, status: str):
        self.tracker.set_status(identity_id, status)
        logger.info(f"User {identity_id} status updated to: {status}")

    def list_online(self) -> List[Dict[str, str]]:
        return [
            {
                "id": connection.identity.id,
                "email": connection.identity.email,
                "role": connection.identity.role,
                "socketId": connection.connection_id,
                "status": self.tracker.status_of(connection.identity.id),
            }
            for connection in self.tracker
        ]

    def members(self, channel_name: str) -> Set[str]:
        return set(self._rooms.get(channel_name, ()))

    def shutdown(self):
        logger.info(f"Room manager shutting down with {len(self.tracker)} connections")
        self._rooms.clear()
        self.tracker.clear()

    def _join(self, connection: Connection, room: str):
        self._rooms.setdefault(room, set()).add(connection.connection_id)
        connection.joined_channels.add(room)

    def _leave(self, connection: Connection, room: str):
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection.connection_id)
            if not members:
                del self._rooms[room]
        connection.joined_channels.discard(room)

    def _check_channel(self, channel_name: str):
        prefix, sep, suffix = channel_name.partition(":")
        if sep and suffix:
            if prefix == "role" and suffix in VALID_ROLES:
                return
            if prefix == "user":
                return
        # Raises UnknownChannelError for anything else
        self.registry.require(channel_name)

    @staticmethod
    def _presence_payload(connection: Connection) -> Dict[str, str]:
        return {
            "userId": connection.identity.id,
            "email": connection.identity.email,
            "role": connection.identity.role,
            "timestamp": utc_now(),
        }

    @staticmethod
    def _tag(payload: Any, **tags) -> Dict[str, Any]:
        if payload is None:
            payload = {}
        elif not isinstance(payload, dict):
            payload = {"data": payload}
        return {**payload, **tags}
