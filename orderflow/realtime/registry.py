"""Per-instance index of live real-time connections.

One registry is built at application startup and closed on shutdown. Every
index mutation and every fan-out runs under the same lock, so a disconnect
racing a publish can never observe or leave a half-updated index. Cross-instance
fan-out would plug in behind ``publish``; this registry only knows its own
connections.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

from orderflow.models.enums import Role
from orderflow.schemas.realtime import RealtimeEvent
from orderflow.utils.time import utcnow

logger = logging.getLogger(__name__)


class Connection(Protocol):
    """Transport handle; ``send`` must not block."""

    connection_id: str

    def send(self, message: dict[str, Any]) -> None: ...

    def close(self) -> None: ...


@dataclass
class ConnectionState:
    connection: Connection
    identity_id: int | None = None
    role: Role | None = None
    rooms: set[int] = field(default_factory=set)

    @property
    def authenticated(self) -> bool:
        return self.role is not None


@dataclass(frozen=True)
class Audience:
    """Who receives an order-scoped event."""

    admins: bool = True
    room_roles: frozenset[Role] = frozenset({Role.USER})
    user_ids: frozenset[int] = frozenset()
    partner_ids: frozenset[int] = frozenset()


class RegistryClosed(RuntimeError):
    pass


class NotAuthenticated(LookupError):
    """The connection has not bound an identity yet."""


class ConnectionRegistry:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._states: dict[str, ConnectionState] = {}
        self._users: dict[int, set[str]] = {}
        self._partners: dict[int, set[str]] = {}
        self._admins: set[str] = set()
        self._rooms: dict[int, set[str]] = {}
        self._sequences: dict[int, int] = {}
        self._closed = False

    # -- membership ---------------------------------------------------------

    def register(self, connection: Connection) -> None:
        with self._lock:
            if self._closed:
                raise RegistryClosed("Connection registry is shut down")
            self._states.setdefault(connection.connection_id, ConnectionState(connection=connection))

    def bind_identity(self, connection: Connection, identity_id: int, role: Role) -> None:
        """Attach identity and role; re-authenticating replaces the previous binding."""
        with self._lock:
            self.register(connection)
            state = self._states[connection.connection_id]
            self._unindex_identity(state)
            state.identity_id = identity_id
            state.role = role
            if role == Role.ADMIN:
                self._admins.add(connection.connection_id)
            elif role == Role.DELIVERY:
                self._partners.setdefault(identity_id, set()).add(connection.connection_id)
            else:
                self._users.setdefault(identity_id, set()).add(connection.connection_id)

    def join_room(self, connection: Connection, order_id: int) -> None:
        with self._lock:
            state = self._require_state(connection)
            state.rooms.add(order_id)
            self._rooms.setdefault(order_id, set()).add(connection.connection_id)

    def leave_room(self, connection: Connection, order_id: int) -> bool:
        with self._lock:
            state = self._states.get(connection.connection_id)
            if state is None or order_id not in state.rooms:
                return False
            state.rooms.discard(order_id)
            self._discard_from_room(order_id, connection.connection_id)
            return True

    def remove(self, connection: Connection) -> ConnectionState | None:
        """Drop the connection from every index; safe to call more than once."""
        with self._lock:
            state = self._states.pop(connection.connection_id, None)
            if state is None:
                return None
            self._unindex_identity(state)
            for order_id in state.rooms:
                self._discard_from_room(order_id, connection.connection_id)
            state.rooms.clear()
            return state

    def close(self) -> None:
        """Tear down all connections; used on application shutdown."""
        with self._lock:
            self._closed = True
            states = list(self._states.values())
            for state in states:
                self.remove(state.connection)
        for state in states:
            try:
                state.connection.close()
            except Exception:
                logger.exception("[REALTIME] Failed to close connection %s", state.connection.connection_id)
        logger.info("[REALTIME] Registry closed, %s connection(s) dropped", len(states))

    # -- queries ------------------------------------------------------------

    def is_indexed(self, connection_id: str) -> bool:
        """Whether the id appears in any index at all."""
        with self._lock:
            return (
                connection_id in self._states
                or connection_id in self._admins
                or any(connection_id in ids for ids in self._users.values())
                or any(connection_id in ids for ids in self._partners.values())
                or any(connection_id in ids for ids in self._rooms.values())
            )

    def room_members(self, order_id: int) -> set[str]:
        with self._lock:
            return set(self._rooms.get(order_id, set()))

    def connection_count(self) -> int:
        with self._lock:
            return len(self._states)

    def last_sequence(self, order_id: int) -> int:
        """Sequence of the latest event for the order, 0 when none is tracked."""
        with self._lock:
            return self._sequences.get(order_id, 0)

    # -- fan-out ------------------------------------------------------------

    def publish(
        self,
        order_id: int,
        event: str,
        payload: dict[str, Any],
        audience: Audience,
        final: bool = False,
    ) -> int:
        """Send an order-scoped event; return how many connections received it.

        The sequence number and every recipient's enqueue happen under the
        lock, so events for one order reach each connection in publication
        order. ``final`` marks the order's last event and stops tracking its
        sequence.
        """
        with self._lock:
            recipients = self._resolve(order_id, audience)
            sequence = self._sequences.pop(order_id, 0) + 1
            if not final:
                self._sequences[order_id] = sequence
            message = RealtimeEvent(
                event=event,
                order_id=order_id,
                sequence=sequence,
                emitted_at=utcnow(),
                payload=payload,
            ).model_dump(mode="json")

            delivered = 0
            for connection_id in recipients:
                state = self._states[connection_id]
                try:
                    state.connection.send(message)
                except Exception:
                    logger.warning("[REALTIME] Dropping connection %s after send failure", connection_id, exc_info=True)
                    self.remove(state.connection)
                    continue
                delivered += 1
            return delivered

    def _resolve(self, order_id: int, audience: Audience) -> list[str]:
        selected: set[str] = set()
        if audience.admins:
            selected.update(self._admins)
        for connection_id in self._rooms.get(order_id, set()):
            state = self._states.get(connection_id)
            if state is not None and state.role in audience.room_roles:
                selected.add(connection_id)
        for user_id in audience.user_ids:
            selected.update(self._users.get(user_id, set()))
        for partner_id in audience.partner_ids:
            selected.update(self._partners.get(partner_id, set()))
        return sorted(selected)

    # -- internals ----------------------------------------------------------

    def _require_state(self, connection: Connection) -> ConnectionState:
        state = self._states.get(connection.connection_id)
        if state is None or not state.authenticated:
            raise NotAuthenticated(f"Connection {connection.connection_id} is not authenticated")
        return state

    def _unindex_identity(self, state: ConnectionState) -> None:
        connection_id = state.connection.connection_id
        self._admins.discard(connection_id)
        if state.identity_id is None:
            return
        for index in (self._users, self._partners):
            ids = index.get(state.identity_id)
            if ids is None:
                continue
            ids.discard(connection_id)
            if not ids:
                del index[state.identity_id]

    def _discard_from_room(self, order_id: int, connection_id: str) -> None:
        members = self._rooms.get(order_id)
        if members is None:
            return
        members.discard(connection_id)
        if not members:
            del self._rooms[order_id]
