"""Routing of order status and courier location events to live subscribers."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import update
from sqlalchemy.orm import Session

from orderflow.core.errors import NotAuthorized, NotFound, ValidationError
from orderflow.db.session import commit_or_raise
from orderflow.models.enums import OrderStatus, Role
from orderflow.models.order import Order, OrderLocationPoint
from orderflow.models.partner import DeliveryPartner
from orderflow.realtime.registry import Audience, Connection, ConnectionRegistry
from orderflow.schemas.realtime import (
    EVENT_AUTHENTICATED,
    EVENT_LOCATION_UPDATED,
    EVENT_ROOM_JOINED,
    EVENT_ROOM_LEFT,
    EVENT_STATUS_CHANGED,
    RealtimeEvent,
)
from orderflow.services.order_status import ALLOWED_TRANSITIONS
from orderflow.utils.geo import validate_coordinates
from orderflow.utils.time import utcnow

logger = logging.getLogger(__name__)

ROOM_ROLES: frozenset[Role] = frozenset({Role.USER, Role.DELIVERY})


@dataclass(frozen=True)
class LocationPush:
    order_id: int
    partner_id: int
    latitude: float
    longitude: float
    recorded_at: datetime
    broadcast: bool


def _direct(event: str, order_id: int | None = None, **payload: Any) -> dict[str, Any]:
    return RealtimeEvent(event=event, order_id=order_id, emitted_at=utcnow(), payload=payload).model_dump(mode="json")


def status_payload(order: Order) -> dict[str, Any]:
    return {
        "status": order.status.value,
        "assigned_partner_id": order.assigned_partner_id,
        "payment_status": order.payment_status.value,
        "status_updated_at": order.status_updated_at.isoformat() if order.status_updated_at else None,
        "delivered_at": order.delivered_at.isoformat() if order.delivered_at else None,
    }


class LocationBroadcaster:
    """Fan-out of lifecycle and location events over a ``ConnectionRegistry``."""

    def __init__(self, registry: ConnectionRegistry) -> None:
        self.registry = registry

    def authenticate(
        self,
        connection: Connection,
        identity_id: int,
        role: Role,
        order_id: int | None = None,
    ) -> None:
        self.registry.bind_identity(connection, identity_id, role)
        if order_id is not None and role in ROOM_ROLES:
            self.registry.join_room(connection, order_id)
        connection.send(_direct(EVENT_AUTHENTICATED, order_id, identity_id=identity_id, role=role.value))
        logger.info("[REALTIME] Connection %s authenticated as %s:%s", connection.connection_id, role.value, identity_id)

    def join_room(self, connection: Connection, order_id: int) -> None:
        self.registry.join_room(connection, order_id)
        connection.send(_direct(EVENT_ROOM_JOINED, order_id))

    def leave_room(self, connection: Connection, order_id: int) -> None:
        self.registry.leave_room(connection, order_id)
        connection.send(_direct(EVENT_ROOM_LEFT, order_id))

    def disconnect(self, connection: Connection) -> None:
        state = self.registry.remove(connection)
        if state is not None:
            logger.info("[REALTIME] Connection %s disconnected", connection.connection_id)

    def push_location(
        self,
        db: Session,
        order_id: int,
        partner_id: int,
        latitude: float,
        longitude: float,
    ) -> LocationPush:
        """Record a courier position and broadcast it while the order is delivering.

        The history point and the partner position are always stored. The
        order's current location is a conditional update on the stored
        status, so a push racing the delivery confirmation can never write a
        position onto a delivered order; the broadcast follows that update.
        """
        if not validate_coordinates(latitude, longitude):
            raise ValidationError("Coordinates are out of range")

        order = db.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        if order.assigned_partner_id != partner_id:
            raise NotAuthorized("Only the assigned delivery partner can report location for this order")

        now = utcnow()
        db.add(
            OrderLocationPoint(
                order_id=order.id,
                partner_id=partner_id,
                latitude=latitude,
                longitude=longitude,
                recorded_at=now,
            )
        )
        partner = db.get(DeliveryPartner, partner_id)
        if partner is not None:
            partner.current_latitude = latitude
            partner.current_longitude = longitude
            partner.location_updated_at = now

        result = db.execute(
            update(Order)
            .where(Order.id == order_id, Order.status == OrderStatus.DELIVERING)
            .values(current_latitude=latitude, current_longitude=longitude, location_updated_at=now)
            .execution_options(synchronize_session=False)
        )
        delivering = result.rowcount == 1
        commit_or_raise(db)

        if delivering:
            self.registry.publish(
                order_id,
                EVENT_LOCATION_UPDATED,
                {
                    "partner_id": partner_id,
                    "latitude": latitude,
                    "longitude": longitude,
                    "recorded_at": now.isoformat(),
                },
                Audience(admins=True, room_roles=frozenset({Role.USER})),
            )
        else:
            logger.debug("[REALTIME] Stored location for order %s without broadcast, not delivering", order_id)

        return LocationPush(
            order_id=order_id,
            partner_id=partner_id,
            latitude=latitude,
            longitude=longitude,
            recorded_at=now,
            broadcast=delivering,
        )

    def push_status(self, order: Order, actor_role: Role) -> int:
        """Broadcast a status change to admins, the order room, its owner and its courier."""
        payload = status_payload(order)
        payload["updated_by_role"] = actor_role.value
        partner_ids = frozenset({order.assigned_partner_id}) if order.assigned_partner_id is not None else frozenset()
        return self.registry.publish(
            order.id,
            EVENT_STATUS_CHANGED,
            payload,
            Audience(
                admins=True,
                room_roles=ROOM_ROLES,
                user_ids=frozenset({order.user_id}),
                partner_ids=partner_ids,
            ),
            final=not ALLOWED_TRANSITIONS.get(order.status),
        )

    def notify_admins(self, event: str, order_id: int, payload: dict[str, Any]) -> int:
        return self.registry.publish(order_id, event, payload, Audience(admins=True, room_roles=frozenset()))

    def notify_partner(self, partner_id: int, event: str, order_id: int, payload: dict[str, Any]) -> int:
        return self.registry.publish(
            order_id,
            event,
            payload,
            Audience(admins=False, room_roles=frozenset(), partner_ids=frozenset({partner_id})),
        )
