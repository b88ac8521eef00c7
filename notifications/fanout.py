import logging
import threading
from typing import Optional, Protocol
from uuid import UUID

from .events import NotificationEvent, to_payload


logger = logging.getLogger(__name__)


class Connection(Protocol):
    def send(self, payload: dict) -> None:
        ...


class Notifier(Protocol):
    def notify_user(self, user_id: UUID, event: NotificationEvent) -> None:
        ...

    def broadcast(self, event: NotificationEvent) -> None:
        ...


class ConnectionRegistry:
    """Live connections keyed by user id.

    A connection is registered as soon as it is accepted and bound to a user
    once it authenticates, so broadcasts reach anonymous connections too.
    Delivery is best effort: a connection whose ``send`` raises is dropped and
    the client is expected to re-query state when it reconnects.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._owners: dict[Connection, Optional[UUID]] = {}
        self._by_user: dict[UUID, list[Connection]] = {}

    def register(self, connection: Connection, user_id: Optional[UUID] = None) -> None:
        with self._lock:
            self._owners.setdefault(connection, None)
        if user_id is not None:
            self.bind(connection, user_id)

    def bind(self, connection: Connection, user_id: UUID) -> None:
        with self._lock:
            previous = self._owners.get(connection)
            if previous is not None:
                self._detach(connection, previous)
            self._owners[connection] = user_id
            self._by_user.setdefault(user_id, []).append(connection)
        logger.debug("Connection bound to user %s", user_id)

    def unregister(self, connection: Connection) -> None:
        with self._lock:
            user_id = self._owners.pop(connection, None)
            if user_id is not None:
                self._detach(connection, user_id)

    def _detach(self, connection: Connection, user_id: UUID) -> None:
        connections = self._by_user.get(user_id, [])
        if connection in connections:
            connections.remove(connection)
        if not connections:
            self._by_user.pop(user_id, None)

    def connections_for(self, user_id: UUID) -> list[Connection]:
        with self._lock:
            return list(self._by_user.get(user_id, []))

    def all_connections(self) -> list[Connection]:
        with self._lock:
            return list(self._owners)

    def notify_user(self, user_id: UUID, event: NotificationEvent) -> None:
        self._deliver(self.connections_for(user_id), event)

    def broadcast(self, event: NotificationEvent) -> None:
        self._deliver(self.all_connections(), event)

    def _deliver(self, connections: list[Connection], event: NotificationEvent) -> None:
        if not connections:
            return
        payload = to_payload(event)
        for connection in connections:
            try:
                connection.send(payload)
            except Exception:
                logger.exception("Dropping connection after failed %s delivery", event.type)
                self.unregister(connection)
