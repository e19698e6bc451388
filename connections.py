import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterator, List, Optional, Set

from auth import Identity
from constants import DEFAULT_PRESENCE_STATUS
from logging_config import get_logger

logger = get_logger(__name__)

# Receives one outbound frame: {"event": ..., "data": ...}
Deliver = Callable[[Dict[str, Any]], None]


def new_connection_id() -> str:
    return uuid.uuid4().hex


@dataclass(eq=False)
class Connection:
    """One live session. ``deliver`` must not block; the gateway backs it with a queue."""

    identity: Identity
    deliver: Deliver
    connection_id: str = field(default_factory=new_connection_id)
    joined_channels: Set[str] = field(default_factory=set)

    def send(self, event: str, data: Any) -> bool:
        try:
            self.deliver({"event": event, "data": data})
        except Exception as e:
            # One broken socket must not stop a fan-out
            logger.warning(f"Error delivering {event} to connection {self.connection_id}: {e}")
            return False
        return True


class ConnectionTracker:
    """Connections by id, plus the last known presence status of each identity."""

    def __init__(self):
        self._connections: Dict[str, Connection] = {}
        self._statuses: Dict[str, str] = {}

    def __len__(self):
        return len(self._connections)

    def __iter__(self) -> Iterator[Connection]:
        return iter(list(self._connections.values()))

    def __contains__(self, connection_id: str) -> bool:
        return connection_id in self._connections

    def add(self, connection: Connection):
        self._connections[connection.connection_id] = connection
        logger.debug(f"Tracking connection {connection.connection_id} (total: {len(self._connections)})")

    def pop(self, connection_id: str) -> Optional[Connection]:
        connection = self._connections.pop(connection_id, None)
        if connection:
            logger.debug(f"Stopped tracking connection {connection_id} (total: {len(self._connections)})")
        return connection

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def for_identity(self, identity_id: str) -> List[Connection]:
        return [c for c in self._connections.values() if c.identity.id == identity_id]

    def set_status(self, identity_id: str, status: str):
        self._statuses[identity_id] = status

    def status_of(self, identity_id: str) -> str:
        # Entries are never evicted, only cleared with the tracker
        return self._statuses.get(identity_id, DEFAULT_PRESENCE_STATUS)

    def clear(self):
        self._connections.clear()
        self._statuses.clear()
