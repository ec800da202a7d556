"""Delivery partner eligibility and order binding."""

from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import exists, select, update
from sqlalchemy.orm import Session

from orderflow.core.errors import InvalidTransition, NotFound, PartnerUnavailable
from orderflow.db.session import commit_or_raise
from orderflow.models.enums import OrderStatus, PartnerStatus
from orderflow.models.order import Order
from orderflow.models.partner import DeliveryPartner
from orderflow.services.order_status import ACTIVE_DELIVERY_STATUSES, transition_values
from orderflow.utils.geo import distance_km

logger = logging.getLogger(__name__)


def is_eligible(partner: DeliveryPartner) -> bool:
    return partner.status == PartnerStatus.ACTIVE and partner.is_available


def partner_distance_km(partner: DeliveryPartner, latitude: float, longitude: float) -> float | None:
    if partner.current_latitude is None or partner.current_longitude is None:
        return None
    return distance_km(partner.current_latitude, partner.current_longitude, latitude, longitude)


def find_eligible(
    db: Session,
    latitude: float | None = None,
    longitude: float | None = None,
    max_distance_km: float | None = None,
) -> list[DeliveryPartner]:
    """Return active, available partners, nearest first when coordinates are given.

    Without coordinates partners come back in insertion order. Partners that
    never reported a location sort after located ones and are dropped when a
    distance limit applies.
    """
    partners: list[DeliveryPartner] = list(
        db.scalars(
            select(DeliveryPartner)
            .where(DeliveryPartner.status == PartnerStatus.ACTIVE, DeliveryPartner.is_available.is_(True))
            .order_by(DeliveryPartner.id.asc())
        ).all()
    )
    if latitude is None or longitude is None:
        return partners

    ranked: list[tuple[float, int, DeliveryPartner]] = []
    unlocated: list[DeliveryPartner] = []
    for partner in partners:
        distance = partner_distance_km(partner, latitude, longitude)
        if distance is None:
            unlocated.append(partner)
            continue
        if max_distance_km is not None and distance > max_distance_km:
            continue
        ranked.append((distance, partner.id, partner))

    ranked.sort(key=lambda row: (row[0], row[1]))
    result = [partner for _, _, partner in ranked]
    if max_distance_km is None:
        result.extend(unlocated)
    return result


def bind(db: Session, order_id: int, partner_id: int, now: datetime) -> None:
    """Bind partner to order and flip its availability inside one transaction.

    Both writes are conditional updates; if either matches no row the whole
    transaction is rolled back so the order and the partner stay consistent.
    The caller commits on success.
    """
    order_result = db.execute(
        update(Order)
        .where(Order.id == order_id, Order.status == OrderStatus.ACCEPTED)
        .values(assigned_partner_id=partner_id, **transition_values(OrderStatus.ASSIGNED, now))
        .execution_options(synchronize_session=False)
    )
    if order_result.rowcount != 1:
        db.rollback()
        raise InvalidTransition(f"Order {order_id} is no longer accepted; refresh and retry")

    partner_result = db.execute(
        update(DeliveryPartner)
        .where(
            DeliveryPartner.id == partner_id,
            DeliveryPartner.status == PartnerStatus.ACTIVE,
            DeliveryPartner.is_available.is_(True),
        )
        .values(is_available=False)
        .execution_options(synchronize_session=False)
    )
    if partner_result.rowcount != 1:
        db.rollback()
        logger.warning("[ASSIGN] Partner %s became unavailable while binding order %s", partner_id, order_id)
        raise PartnerUnavailable(f"Delivery partner {partner_id} is not available")

    logger.info("[ASSIGN] Order %s bound to partner %s", order_id, partner_id)


def release(db: Session, partner_id: int) -> None:
    """Mark the partner available again after its order reached a terminal state."""
    db.execute(
        update(DeliveryPartner)
        .where(DeliveryPartner.id == partner_id)
        .values(is_available=True)
        .execution_options(synchronize_session=False)
    )


def set_availability(db: Session, partner_id: int, is_available: bool) -> DeliveryPartner:
    """Partner self-service on/off duty switch.

    Going available is a conditional update that only matches while no
    assigned or delivering order is bound to the partner.
    """
    query = update(DeliveryPartner).where(DeliveryPartner.id == partner_id)
    if is_available:
        query = query.where(
            ~exists().where(
                Order.assigned_partner_id == partner_id,
                Order.status.in_(list(ACTIVE_DELIVERY_STATUSES)),
            )
        )
    result = db.execute(query.values(is_available=is_available).execution_options(synchronize_session=False))
    if result.rowcount != 1:
        db.rollback()
        if db.get(DeliveryPartner, partner_id) is None:
            raise NotFound(f"Delivery partner {partner_id} not found")
        raise InvalidTransition(f"Delivery partner {partner_id} is bound to an active order")
    commit_or_raise(db)
    logger.info("[ASSIGN] Partner %s availability set to %s", partner_id, is_available)
    return _reload(db, partner_id)


def set_status(db: Session, partner_id: int, status: PartnerStatus) -> DeliveryPartner:
    """Change the partner's account status; non-active partners drop out of eligibility."""
    result = db.execute(
        update(DeliveryPartner)
        .where(DeliveryPartner.id == partner_id)
        .values(status=status)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        db.rollback()
        raise NotFound(f"Delivery partner {partner_id} not found")
    commit_or_raise(db)
    logger.info("[ASSIGN] Partner %s status set to %s", partner_id, status.value)
    return _reload(db, partner_id)


def _reload(db: Session, partner_id: int) -> DeliveryPartner:
    partner = db.get(DeliveryPartner, partner_id)
    if partner is None:
        raise NotFound(f"Delivery partner {partner_id} not found")
    db.refresh(partner)
    return partner
