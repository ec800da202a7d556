"""Order lifecycle: placement, status transitions, OTP hand-off and feedback.

Every status change is a conditional update keyed on the expected current
status, so concurrent callers (possibly on different server instances) can
never both apply a transition; the loser gets ``InvalidTransition``.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import Sequence
from datetime import datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Protocol

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from orderflow.core.config import settings
from orderflow.core.errors import (
    InvalidTransition,
    NotAuthorized,
    NotFound,
    OtpMismatch,
    PartnerUnavailable,
    ValidationError,
)
from orderflow.core.security import Identity
from orderflow.db.session import commit_or_raise
from orderflow.models.enums import OrderStatus, PaymentMethod, PaymentStatus, Role
from orderflow.models.menu import MenuItem
from orderflow.models.order import Order, OrderItem, OrderLocationPoint
from orderflow.models.partner import DeliveryPartner, PartnerDelivery
from orderflow.models.user import User
from orderflow.realtime.broadcaster import LocationBroadcaster, LocationPush
from orderflow.schemas.realtime import EVENT_ORDER_ASSIGNED, EVENT_ORDER_PLACED
from orderflow.services import assignment_service, otp_service, stats_service
from orderflow.services.notification_service import SmsNotifier
from orderflow.services.order_status import (
    ACTIVE_DELIVERY_STATUSES,
    CANCELLABLE_STATUSES,
    can_transition,
    transition_values,
)
from orderflow.utils.time import utcnow

logger = logging.getLogger(__name__)

CENT: Decimal = Decimal("0.01")
ADDRESS_FIELDS: tuple[str, ...] = ("street", "city", "state", "zip_code")


class LineItemInput(Protocol):
    menu_item_id: int
    quantity: int


class AddressInput(Protocol):
    street: str
    city: str
    state: str
    zip_code: str
    landmark: str | None
    latitude: float | None
    longitude: float | None


def money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


def compute_pricing(lines: Sequence[tuple[Decimal, int]]) -> dict[str, Decimal]:
    """Price ``(unit_price, quantity)`` lines with the configured tax and delivery charge."""
    subtotal = money(sum((money(price) * quantity for price, quantity in lines), Decimal("0")))
    tax = money(subtotal * settings.tax_rate)
    delivery_charge = money(settings.delivery_charge)
    return {
        "subtotal": subtotal,
        "tax": tax,
        "delivery_charge": delivery_charge,
        "total": subtotal + tax + delivery_charge,
    }


def can_view(order: Order, actor: Identity) -> bool:
    """Owner, bound partner and admins may read an order."""
    if actor.role == Role.ADMIN:
        return True
    if actor.role == Role.DELIVERY:
        return order.assigned_partner_id == actor.id
    return order.user_id == actor.id


class OrderLifecycle:
    """State machine for one order store, publishing through a broadcaster."""

    def __init__(self, db: Session, broadcaster: LocationBroadcaster, notifier: SmsNotifier) -> None:
        self.db = db
        self.broadcaster = broadcaster
        self.notifier = notifier

    # -- placement ------------------------------------------------------------

    def place(
        self,
        actor: Identity,
        items: Sequence[LineItemInput],
        address: AddressInput,
        payment_method: PaymentMethod | str = PaymentMethod.CASH,
        delivery_notes: str | None = None,
    ) -> Order:
        self._require_role(actor, Role.USER)
        if not items:
            raise ValidationError("No items in order")

        missing = [name for name in ADDRESS_FIELDS if not str(getattr(address, name, "") or "").strip()]
        if missing:
            raise ValidationError(f"Complete delivery address is required, missing: {', '.join(missing)}")

        try:
            method = PaymentMethod(payment_method)
        except ValueError as exc:
            raise ValidationError(f"Unsupported payment method: {payment_method}") from exc

        customer = self.db.get(User, actor.id)
        if customer is None:
            raise ValidationError(f"Unknown customer {actor.id}")
        if not customer.phone:
            raise ValidationError("User phone number is required for delivery")

        order_items: list[OrderItem] = []
        for position, item in enumerate(items):
            if item.quantity < 1:
                raise ValidationError(f"Quantity must be >= 1 for menu item {item.menu_item_id}")
            menu_item = self.db.get(MenuItem, item.menu_item_id)
            if menu_item is None or not menu_item.is_available:
                raise ValidationError(f"Menu item not found: {item.menu_item_id}")
            order_items.append(
                OrderItem(
                    position=position,
                    menu_item_id=menu_item.id,
                    name=menu_item.name,
                    unit_price=money(menu_item.price),
                    quantity=item.quantity,
                )
            )

        pricing = compute_pricing([(line.unit_price, line.quantity) for line in order_items])
        now = utcnow()
        order = Order(
            user_id=actor.id,
            delivery_phone=customer.phone,
            status=OrderStatus.PLACED,
            payment_method=method,
            payment_status=PaymentStatus.PENDING,
            payment_reference=f"PAY-{int(now.timestamp() * 1000)}-{secrets.token_hex(5)}",
            otp=otp_service.generate(),
            otp_failed_attempts=0,
            address_street=address.street.strip(),
            address_city=address.city.strip(),
            address_state=address.state.strip(),
            address_zip_code=address.zip_code.strip(),
            address_landmark=getattr(address, "landmark", None),
            address_latitude=getattr(address, "latitude", None),
            address_longitude=getattr(address, "longitude", None),
            delivery_notes=delivery_notes,
            created_at=now,
            status_updated_at=now,
            estimated_delivery_start=now + timedelta(minutes=settings.estimated_delivery_start_minutes),
            estimated_delivery_end=now + timedelta(minutes=settings.estimated_delivery_end_minutes),
            items=order_items,
            **pricing,
        )
        self.db.add(order)
        commit_or_raise(self.db)
        self.db.refresh(order)
        logger.info("[ORDER] Order %s placed by user %s total=%s", order.id, actor.id, order.total)

        self.notifier.send_otp(order.delivery_phone, order.id, order.otp)
        self._publish(
            self.broadcaster.notify_admins,
            EVENT_ORDER_PLACED,
            order.id,
            {
                "user": {"id": customer.id, "name": customer.name, "phone": customer.phone},
                "delivery_address": self._address_payload(order),
                "total": str(order.total),
                "estimated_delivery": {
                    "start": order.estimated_delivery_start.isoformat() if order.estimated_delivery_start else None,
                    "end": order.estimated_delivery_end.isoformat() if order.estimated_delivery_end else None,
                },
            },
        )
        return order

    # -- transitions ----------------------------------------------------------

    def accept(self, order_id: int, actor: Identity) -> Order:
        self._require_role(actor, Role.ADMIN)
        order = self._load(order_id)
        self._transition(order, OrderStatus.PLACED, OrderStatus.ACCEPTED, action="accept")
        commit_or_raise(self.db)
        logger.info("[ORDER] Order %s accepted by admin %s", order_id, actor.id)
        return self._after_status_change(order, actor)

    def assign(self, order_id: int, partner_id: int, actor: Identity) -> Order:
        self._require_role(actor, Role.ADMIN)
        order = self._load(order_id)
        if order.status != OrderStatus.ACCEPTED:
            raise InvalidTransition(
                f"Order must be accepted before assigning delivery; current status is '{order.status.value}'"
            )
        partner = self.db.get(DeliveryPartner, partner_id)
        if partner is None:
            raise NotFound(f"Delivery partner {partner_id} not found")
        if not assignment_service.is_eligible(partner):
            raise PartnerUnavailable(f"Delivery partner {partner_id} is not available")

        assignment_service.bind(self.db, order_id, partner_id, utcnow())
        commit_or_raise(self.db)
        logger.info("[ORDER] Order %s assigned to partner %s by admin %s", order_id, partner_id, actor.id)

        self.db.refresh(order)
        self.db.refresh(partner)
        self._publish(
            self.broadcaster.notify_partner,
            partner_id,
            EVENT_ORDER_ASSIGNED,
            order.id,
            {
                "delivery_address": self._address_payload(order),
                "customer_phone": order.delivery_phone,
                "items": [{"name": item.name, "quantity": item.quantity} for item in order.items],
                "payment_method": order.payment_method.value,
                "total": str(order.total),
            },
        )
        self.notifier.dispatch(
            order.delivery_phone,
            f"Your order #{order.id} has been assigned to {partner.name}. You can contact them at {partner.phone}.",
        )
        return self._after_status_change(order, actor)

    def start_delivering(self, order_id: int, actor: Identity) -> Order:
        order = self._load(order_id)
        self._require_bound_partner(order, actor)
        self._transition(order, OrderStatus.ASSIGNED, OrderStatus.DELIVERING, action="start delivering")
        commit_or_raise(self.db)
        logger.info("[ORDER] Order %s out for delivery with partner %s", order_id, actor.id)
        return self._after_status_change(order, actor)

    def confirm_delivered(self, order_id: int, actor: Identity, provided_otp: str | None) -> Order:
        order = self._load(order_id)
        self._require_bound_partner(order, actor)
        if order.status != OrderStatus.DELIVERING:
            raise InvalidTransition(
                f"Order must be delivering before it can be delivered; current status is '{order.status.value}'"
            )
        if order.payment_status != PaymentStatus.COMPLETED and order.payment_method != PaymentMethod.CASH:
            raise ValidationError("Online payment must be completed before marking as delivered")
        if otp_service.attempts_exhausted(order.otp_failed_attempts):
            raise OtpMismatch("Too many incorrect delivery codes; ask an admin to reset the attempts")

        if not otp_service.verify(order.otp, provided_otp):
            self.db.execute(
                update(Order)
                .where(Order.id == order_id, Order.status == OrderStatus.DELIVERING)
                .values(otp_failed_attempts=Order.otp_failed_attempts + 1)
                .execution_options(synchronize_session=False)
            )
            commit_or_raise(self.db)
            logger.warning("[ORDER] Incorrect delivery code for order %s from partner %s", order_id, actor.id)
            raise OtpMismatch("Invalid OTP for delivery confirmation; ask the customer for the code sent to their phone")

        now = utcnow()
        partner_id = order.assigned_partner_id
        self._transition(
            order,
            OrderStatus.DELIVERING,
            OrderStatus.DELIVERED,
            action="confirm delivery of",
            now=now,
            payment_status=PaymentStatus.COMPLETED,
            current_latitude=None,
            current_longitude=None,
        )
        assignment_service.release(self.db, partner_id)
        self.db.add(
            PartnerDelivery(
                partner_id=partner_id,
                order_id=order.id,
                delivery_charge=order.delivery_charge,
                tip=Decimal("0.00"),
                order_created_at=order.created_at,
                delivered_at=now,
            )
        )
        self.db.flush()
        partner = self.db.get(DeliveryPartner, partner_id)
        if partner is not None:
            stats_service.recompute(self.db, partner)
        commit_or_raise(self.db)
        logger.info("[ORDER] Order %s delivered by partner %s", order_id, partner_id)
        return self._after_status_change(order, actor)

    def cancel(self, order_id: int, actor: Identity) -> Order:
        order = self._load(order_id)
        if not (actor.role == Role.ADMIN or (actor.role == Role.USER and order.user_id == actor.id)):
            raise NotAuthorized("Only the order owner or an admin can cancel this order")
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransition(f"Order in status '{order.status.value}' can no longer be cancelled")
        self._transition(order, order.status, OrderStatus.CANCELLED, action="cancel")
        commit_or_raise(self.db)
        logger.info("[ORDER] Order %s cancelled by %s %s", order_id, actor.role.value, actor.id)
        return self._after_status_change(order, actor)

    # -- feedback and payment -------------------------------------------------

    def submit_feedback(
        self,
        order_id: int,
        actor: Identity,
        rating: int,
        tip: Decimal | float | int | None = None,
        comment: str | None = None,
    ) -> Order:
        order = self._load(order_id)
        if actor.role != Role.USER or order.user_id != actor.id:
            raise NotAuthorized("Not authorized to add feedback to this order")
        if order.status != OrderStatus.DELIVERED:
            raise InvalidTransition("Can only add feedback to delivered orders")
        if order.has_feedback:
            raise InvalidTransition("Feedback has already been submitted for this order")
        if isinstance(rating, bool) or not isinstance(rating, int) or not 1 <= rating <= 5:
            raise ValidationError("Rating must be an integer between 1 and 5")
        tip_amount = money(Decimal(str(tip))) if tip is not None else Decimal("0.00")
        if tip_amount < 0:
            raise ValidationError("Tip must be zero or positive")

        now = utcnow()
        result = self.db.execute(
            update(Order)
            .where(
                Order.id == order_id,
                Order.status == OrderStatus.DELIVERED,
                Order.feedback_submitted_at.is_(None),
            )
            .values(
                feedback_rating=rating,
                feedback_tip=tip_amount,
                feedback_comment=comment,
                feedback_submitted_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidTransition("Feedback has already been submitted for this order")

        if order.assigned_partner_id is not None:
            delivery = self.db.scalar(select(PartnerDelivery).where(PartnerDelivery.order_id == order.id))
            if delivery is None:
                delivery = PartnerDelivery(
                    partner_id=order.assigned_partner_id,
                    order_id=order.id,
                    delivery_charge=order.delivery_charge,
                    order_created_at=order.created_at,
                    delivered_at=order.delivered_at or now,
                )
                self.db.add(delivery)
            delivery.rating = rating
            delivery.tip = tip_amount
            delivery.comment = comment
            self.db.flush()
            partner = self.db.get(DeliveryPartner, order.assigned_partner_id)
            if partner is not None:
                stats_service.recompute(self.db, partner)

        commit_or_raise(self.db)
        self.db.refresh(order)
        logger.info("[ORDER] Feedback stored for order %s rating=%s tip=%s", order_id, rating, tip_amount)
        return order

    def mark_payment_completed(self, order_id: int, actor: Identity, payment_reference: str | None = None) -> Order:
        """Record a successful online payment reported by the payment service."""
        self._require_role(actor, Role.ADMIN)
        order = self._load(order_id)
        if order.status == OrderStatus.CANCELLED:
            raise InvalidTransition("Cannot complete payment for a cancelled order")
        order.payment_status = PaymentStatus.COMPLETED
        if payment_reference:
            order.payment_reference = payment_reference
        commit_or_raise(self.db)
        self.db.refresh(order)
        logger.info("[ORDER] Payment completed for order %s", order_id)
        return order

    def reset_otp_attempts(self, order_id: int, actor: Identity) -> Order:
        self._require_role(actor, Role.ADMIN)
        order = self._load(order_id)
        order.otp_failed_attempts = 0
        commit_or_raise(self.db)
        self.db.refresh(order)
        logger.info("[ORDER] Delivery code attempts reset for order %s by admin %s", order_id, actor.id)
        return order

    # -- queries and tracking -------------------------------------------------

    def get_order(self, order_id: int, actor: Identity) -> Order:
        order = self.db.get(Order, order_id)
        if order is None or not can_view(order, actor):
            raise NotFound(f"Order {order_id} not found")
        return order

    def list_orders(self, actor: Identity) -> list[Order]:
        query = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
        if actor.role == Role.USER:
            query = query.where(Order.user_id == actor.id)
        elif actor.role == Role.DELIVERY:
            query = query.where(
                Order.assigned_partner_id == actor.id,
                Order.status.in_(list(ACTIVE_DELIVERY_STATUSES)),
            )
        return list(self.db.scalars(query).all())

    def location_history(self, order_id: int, actor: Identity) -> list[OrderLocationPoint]:
        order = self.get_order(order_id, actor)
        return list(
            self.db.scalars(
                select(OrderLocationPoint)
                .where(OrderLocationPoint.order_id == order.id)
                .order_by(OrderLocationPoint.id.asc())
            ).all()
        )

    def push_location(self, order_id: int, actor: Identity, latitude: float, longitude: float) -> LocationPush:
        self._require_role(actor, Role.DELIVERY)
        return self.broadcaster.push_location(self.db, order_id, actor.id, latitude, longitude)

    # -- internals ------------------------------------------------------------

    def _load(self, order_id: int) -> Order:
        order = self.db.get(Order, order_id)
        if order is None:
            raise NotFound(f"Order {order_id} not found")
        return order

    @staticmethod
    def _require_role(actor: Identity, *roles: Role) -> None:
        if actor.role not in roles:
            allowed = ", ".join(role.value for role in roles)
            raise NotAuthorized(f"Operation requires role: {allowed}")

    @staticmethod
    def _require_bound_partner(order: Order, actor: Identity) -> None:
        if actor.role != Role.DELIVERY or order.assigned_partner_id != actor.id:
            raise NotAuthorized("Not authorized to update this order")

    def _transition(
        self,
        order: Order,
        expected: OrderStatus,
        new: OrderStatus,
        *,
        action: str,
        now: datetime | None = None,
        **extra: Any,
    ) -> None:
        """Apply ``expected -> new`` only if the stored status still equals ``expected``."""
        if not can_transition(expected, new):
            raise InvalidTransition(f"Orders cannot move from '{expected.value}' to '{new.value}'")
        if order.status != expected:
            raise InvalidTransition(f"Cannot {action} order {order.id} in status '{order.status.value}'")
        result = self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == expected)
            .values(**transition_values(new, now or utcnow()), **extra)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            self.db.rollback()
            raise InvalidTransition(f"Order {order.id} changed concurrently; refresh and retry")

    def _after_status_change(self, order: Order, actor: Identity) -> Order:
        self.db.refresh(order)
        self._publish(self.broadcaster.push_status, order, actor.role)
        return order

    @staticmethod
    def _address_payload(order: Order) -> dict[str, Any]:
        return {
            "street": order.address_street,
            "city": order.address_city,
            "state": order.address_state,
            "zip_code": order.address_zip_code,
            "landmark": order.address_landmark,
            "latitude": order.address_latitude,
            "longitude": order.address_longitude,
        }

    @staticmethod
    def _publish(publisher: Any, *args: Any) -> None:
        try:
            publisher(*args)
        except Exception:
            logger.exception("[REALTIME] Failed to publish %s; order state is unaffected", getattr(publisher, "__name__", publisher))
