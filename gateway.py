"""WebSocket gateway: handshake, admission, inbound events, disconnect.

Each connection walks a small state machine::

    CONNECTING -> AUTHENTICATING -> ADMITTED -> DISCONNECTED
                         |
                         +-> REJECTED

Frames are JSON text in both directions: ``{"event": "...", "data": ...}``.
Outbound frames go through a per-connection queue drained by a writer task,
so the room manager never awaits a socket.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from auth import Identity, TokenValidator, extract_bearer
from connections import Connection, Deliver
from constants import MANAGER_ROLES, VALID_ROLES
from exceptions import AuthenticationError, ConfigurationError, InvalidTransitionError
from logging_config import get_logger
from room_keys import STAFF_ROOM
from room_manager import RoomManager, utc_now
from schemas.realtime import InboundMessage

logger = get_logger(__name__)

POLICY_VIOLATION = 1008
INTERNAL_ERROR = 1011

ONLINE_USERS_ROLES = ("owner", "admin", "waiter")


class ConnectionState(str, Enum):
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    ADMITTED = "admitted"
    REJECTED = "rejected"
    DISCONNECTED = "disconnected"


TRANSITIONS = {
    ConnectionState.CONNECTING: {ConnectionState.AUTHENTICATING, ConnectionState.DISCONNECTED},
    ConnectionState.AUTHENTICATING: {
        ConnectionState.ADMITTED,
        ConnectionState.REJECTED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.ADMITTED: {ConnectionState.DISCONNECTED},
    ConnectionState.REJECTED: set(),
    ConnectionState.DISCONNECTED: set(),
}


@dataclass
class Session:
    state: ConnectionState = ConnectionState.CONNECTING
    connection: Optional[Connection] = None
    rejection_reason: Optional[str] = None

    @property
    def terminal(self) -> bool:
        return not TRANSITIONS[self.state]

    def transition(self, target: ConnectionState):
        if target not in TRANSITIONS[self.state]:
            raise InvalidTransitionError(self.state, target)
        logger.debug(f"Connection state {self.state.value} -> {target.value}")
        self.state = target


class Gateway:
    def __init__(self, room_manager: RoomManager, validator: TokenValidator):
        self.room_manager = room_manager
        self.validator = validator
        self.handlers = {
            "order:created": self.on_order_created,
            "order:status-updated": self.on_order_status_updated,
            "table:status-changed": self.on_table_status_changed,
            "room:join": self.on_room_join,
            "room:leave": self.on_room_leave,
            "user:update_status": self.on_update_status,
            "user:get_online_users": self.on_get_online_users,
            "user:broadcast_announcement": self.on_broadcast_announcement,
        }

    @staticmethod
    def extract_token(websocket: WebSocket) -> Optional[str]:
        """Query parameter ``token`` first, then the ``Authorization`` header."""
        token = websocket.query_params.get("token")
        if token:
            return token
        return extract_bearer(websocket.headers.get("authorization"))

    def authenticate(self, session: Session, token: Optional[str]) -> Optional[Identity]:
        session.transition(ConnectionState.AUTHENTICATING)
        try:
            return self.validator.validate(token)
        except AuthenticationError as e:
            session.rejection_reason = e.reason
        except ConfigurationError:
            logger.error("Rejecting connection: server is not configured for authentication")
            session.rejection_reason = ConfigurationError.REASON
        session.transition(ConnectionState.REJECTED)
        return None

    def admit(self, session: Session, identity: Identity, deliver: Deliver) -> Connection:
        session.transition(ConnectionState.ADMITTED)
        session.connection = Connection(identity=identity, deliver=deliver)
        self.room_manager.admit(session.connection)
        return session.connection

    def disconnect(self, session: Session):
        if session.terminal:
            return
        session.transition(ConnectionState.DISCONNECTED)
        if session.connection is not None:
            self.room_manager.remove(session.connection.connection_id)

    async def serve(self, websocket: WebSocket):
        session = Session()
        logger.info(f"WebSocket connection attempt from {websocket.client.host if websocket.client else 'unknown'}")

        identity = self.authenticate(session, self.extract_token(websocket))
        if identity is None:
            # Accept first so the close frame, and its reason, reach the client
            await websocket.accept()
            await websocket.close(code=POLICY_VIOLATION, reason=session.rejection_reason)
            return

        await websocket.accept()
        outbox: asyncio.Queue = asyncio.Queue()
        connection = self.admit(session, identity, outbox.put_nowait)
        writer = asyncio.create_task(self._write(websocket, outbox, session))

        try:
            await self._read(websocket, connection)
        finally:
            self.disconnect(session)
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass
            logger.info(f"Connection {connection.connection_id} closed for {identity.email}")

    async def _write(self, websocket: WebSocket, outbox: asyncio.Queue, session: Session):
        while True:
            frame = await outbox.get()
            try:
                await websocket.send_text(json.dumps(frame))
            except Exception as e:
                connection_id = session.connection.connection_id if session.connection else "unknown"
                logger.warning(f"Error sending to connection {connection_id}, dropping it: {e}")
                # Stop fan-out to this socket now, the read loop may not notice for a while
                self.disconnect(session)
                try:
                    await websocket.close(code=INTERNAL_ERROR)
                except Exception as close_error:
                    logger.debug(f"Error closing WebSocket {connection_id}: {close_error}")
                return

    async def _read(self, websocket: WebSocket, connection: Connection):
        message_count = 0
        while True:
            try:
                raw = await websocket.receive_text()
            except WebSocketDisconnect:
                logger.info(f"WebSocket disconnected normally for connection {connection.connection_id}")
                return
            except Exception as e:
                logger.error(f"Error receiving from connection {connection.connection_id}: {e}", exc_info=True)
                return
            message_count += 1
            logger.debug(f"Received message #{message_count} from connection {connection.connection_id}")
            self.handle_frame(connection, raw)

    def handle_frame(self, connection: Connection, raw: str):
        try:
            message = InboundMessage.model_validate(json.loads(raw))
        except (json.JSONDecodeError, ValidationError) as e:
            logger.debug(f"Malformed frame from connection {connection.connection_id}: {e}")
            connection.send("error", {"message": "Malformed message", "timestamp": utc_now()})
            return
        self.dispatch(connection, message.event, message.data)

    def dispatch(self, connection: Connection, event: str, data: Any):
        handler = self.handlers.get(event)
        if handler is None:
            logger.debug(f"Unknown event {event!r} from connection {connection.connection_id}")
            connection.send("error", {"message": f"Unknown event: {event}", "timestamp": utc_now()})
            return
        try:
            handler(connection, data)
        except Exception as e:
            # A bad payload must not end the session
            logger.error(f"Error handling {event} from connection {connection.connection_id}: {e}", exc_info=True)
            connection.send("error", {"message": f"Failed to handle event: {event}", "timestamp": utc_now()})

    # Domain events relayed from clients. Payloads are passed through untouched.

    def on_order_created(self, connection: Connection, order: Any):
        self.room_manager.broadcast_to_roles(["kitchen", "owner", "admin"], "new-order", order)

    def on_order_status_updated(self, connection: Connection, order: Any):
        fields = order if isinstance(order, dict) else {}
        if fields.get("waiterId"):
            self.room_manager.unicast(str(fields["waiterId"]), "order-updated", order)
        if fields.get("customerId"):
            self.room_manager.unicast(str(fields["customerId"]), "order-updated", order)
        if fields.get("status") == "ready":
            self.room_manager.broadcast_to_roles(["waiter"], "order-ready", order)

    def on_table_status_changed(self, connection: Connection, table: Any):
        self.room_manager.broadcast_to_roles(["waiter", "owner", "admin"], "table-updated", table)

    def on_room_join(self, connection: Connection, data: Any):
        room = data.get("room") if isinstance(data, dict) else None
        if not isinstance(room, str) or room not in self.room_manager.registry:
            connection.send("room:error", {"room": room, "message": "Unknown room", "code": "UNKNOWN_ROOM"})
            return
        if not self.room_manager.join(connection.connection_id, room):
            connection.send("room:error", {"room": room, "message": "Access denied", "code": "ACCESS_DENIED"})
            return
        connection.send("room:joined", {"room": room, "timestamp": utc_now()})

    def on_room_leave(self, connection: Connection, data: Any):
        room = data.get("room") if isinstance(data, dict) else None
        if not isinstance(room, str) or not self.room_manager.leave(connection.connection_id, room):
            connection.send("room:error", {"room": room, "message": "Cannot leave room", "code": "NOT_A_MEMBER"})
            return
        connection.send("room:left", {"room": room, "timestamp": utc_now()})

    def on_update_status(self, connection: Connection, data: Any):
        status = data.get("status") if isinstance(data, dict) else None
        if not isinstance(status, str) or not status.strip():
            connection.send("user:error", {"message": "Status is required", "code": "INVALID_STATUS"})
            return

        identity = connection.identity
        self.room_manager.set_presence(identity.id, status.strip())
        status_data = {
            "userId": identity.id,
            "email": identity.email,
            "role": identity.role,
            "status": status.strip(),
            "lastSeen": utc_now(),
        }
        self.room_manager.broadcast(STAFF_ROOM, "user:status_changed", status_data)
        connection.send("user:status_update_success", status_data)

    def on_get_online_users(self, connection: Connection, data: Any):
        if connection.identity.role not in ONLINE_USERS_ROLES:
            connection.send("user:error", {
                "message": "Insufficient permissions to view online users",
                "code": "PERMISSION_DENIED",
            })
            return
        users = self.room_manager.list_online()
        connection.send("user:online_users", {
            "users": users,
            "count": len(users),
            "timestamp": utc_now(),
        })

    def on_broadcast_announcement(self, connection: Connection, data: Any):
        if connection.identity.role not in MANAGER_ROLES:
            connection.send("user:error", {
                "message": "Insufficient permissions to broadcast announcements",
                "code": "PERMISSION_DENIED",
            })
            return
        fields = data if isinstance(data, dict) else {}
        if not fields.get("message"):
            connection.send("user:error", {"message": "Announcement message is required", "code": "INVALID_ANNOUNCEMENT"})
            return

        identity = connection.identity
        requested_roles = fields.get("targetRoles") or []
        if not isinstance(requested_roles, list):
            connection.send("user:error", {"message": "targetRoles must be a list", "code": "INVALID_ANNOUNCEMENT"})
            return
        target_roles = [r for r in requested_roles if r in VALID_ROLES]
        announcement = {
            "title": fields.get("title"),
            "message": fields["message"],
            "priority": fields.get("priority") or "medium",
            "fromUserId": identity.id,
            "fromUserEmail": identity.email,
            "targetRoles": target_roles,
        }
        if target_roles:
            results = self.room_manager.broadcast_to_roles(target_roles, "user:announcement_received", announcement)
            delivered = sum(result.delivered for result in results.values())
        else:
            delivered = self.room_manager.broadcast(STAFF_ROOM, "user:announcement_received", announcement).delivered
        connection.send("user:announcement_sent", {**announcement, "delivered": delivered, "timestamp": utc_now()})
