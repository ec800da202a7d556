import threading
from decimal import Decimal
from pathlib import Path
from types import SimpleNamespace

import pytest
import requests
from sqlalchemy import create_engine, select
from sqlalchemy.orm import Session, sessionmaker

from orderflow.core.errors import InvalidTransition, NotAuthorized, NotFound, OtpMismatch, ValidationError
from orderflow.core.security import Identity
from orderflow.db.base import Base
from orderflow.models import DeliveryPartner, MenuItem, Order, OrderLocationPoint, PartnerDelivery, User
from orderflow.models.enums import OrderStatus, PartnerStatus, PaymentMethod, PaymentStatus, Role
from orderflow.realtime import ConnectionRegistry, LocationBroadcaster
from orderflow.schemas.order import DeliveryAddress, OrderItemPayload
from orderflow.services.notification_service import SmsNotifier
from orderflow.services.order_lifecycle import OrderLifecycle

ADMIN = Identity(id=900, role=Role.ADMIN)


class RecordingConnection:
    def __init__(self, connection_id: str) -> None:
        self.connection_id = connection_id
        self.messages: list[dict] = []
        self.closed = False

    def send(self, message: dict) -> None:
        self.messages.append(message)

    def close(self) -> None:
        self.closed = True

    def events(self, name: str) -> list[dict]:
        return [message for message in self.messages if message["event"] == name]


def _prepare_db(tmp_path: Path):
    engine = create_engine(f"sqlite:///{tmp_path / 'lifecycle.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


def _seed(session_local) -> dict[str, int]:
    with session_local() as db:
        customer = User(name="Asha", email="asha@example.com", phone="+919800000001", role=Role.USER)
        other = User(name="Bilal", email="bilal@example.com", phone="+919800000002", role=Role.USER)
        pizza = MenuItem(name="Pizza", description="", price=Decimal("100.00"), is_available=True)
        lassi = MenuItem(name="Lassi", description="", price=Decimal("50.00"), is_available=True)
        partner = DeliveryPartner(name="Ravi", phone="+919800000010", status=PartnerStatus.ACTIVE, is_available=True)
        backup = DeliveryPartner(name="Anita", phone="+919800000011", status=PartnerStatus.ACTIVE, is_available=True)
        db.add_all([customer, other, pizza, lassi, partner, backup])
        db.commit()
        return {
            "customer": customer.id,
            "other": other.id,
            "pizza": pizza.id,
            "lassi": lassi.id,
            "partner": partner.id,
            "backup": backup.id,
        }


def _lifecycle(db: Session, registry: ConnectionRegistry | None = None) -> OrderLifecycle:
    return OrderLifecycle(db, LocationBroadcaster(registry or ConnectionRegistry()), SmsNotifier(gateway_url=""))


def _address(**overrides) -> DeliveryAddress:
    data = {"street": "12 MG Road", "city": "Bengaluru", "state": "KA", "zip_code": "560001"}
    data.update(overrides)
    return DeliveryAddress(**data)


def _place(lifecycle: OrderLifecycle, ids: dict[str, int], payment_method=PaymentMethod.CASH) -> Order:
    return lifecycle.place(
        Identity(id=ids["customer"], role=Role.USER),
        [
            OrderItemPayload(menu_item_id=ids["pizza"], quantity=2),
            OrderItemPayload(menu_item_id=ids["lassi"], quantity=1),
        ],
        _address(),
        payment_method=payment_method,
    )


def _to_delivering(lifecycle: OrderLifecycle, order_id: int, partner_id: int) -> None:
    lifecycle.accept(order_id, ADMIN)
    lifecycle.assign(order_id, partner_id, ADMIN)
    lifecycle.start_delivering(order_id, Identity(id=partner_id, role=Role.DELIVERY))


def test_place_prices_order_with_tax_and_delivery_charge(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)

    with session_local() as db:
        order = _place(_lifecycle(db), ids)

        assert order.status == OrderStatus.PLACED
        assert order.subtotal == Decimal("250.00")
        assert order.tax == Decimal("45.00")
        assert order.delivery_charge == Decimal("50.00")
        assert order.total == Decimal("345.00")
        assert [(item.name, item.quantity) for item in order.items] == [("Pizza", 2), ("Lassi", 1)]
        assert order.payment_status == PaymentStatus.PENDING
        assert order.payment_reference.startswith("PAY-")
        assert len(order.otp) == 6 and order.otp.isdigit() and order.otp[0] != "0"
        assert order.delivery_phone == "+919800000001"
        window = order.estimated_delivery_end - order.estimated_delivery_start
        assert window.total_seconds() == 15 * 60


def test_place_rejects_invalid_requests(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    customer = Identity(id=ids["customer"], role=Role.USER)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        with pytest.raises(ValidationError):
            lifecycle.place(customer, [], _address())
        with pytest.raises(ValidationError):
            lifecycle.place(customer, [OrderItemPayload(menu_item_id=ids["pizza"])], _address(street="   "))
        with pytest.raises(ValidationError):
            lifecycle.place(customer, [OrderItemPayload(menu_item_id=9999)], _address())
        with pytest.raises(ValidationError):
            lifecycle.place(customer, [SimpleNamespace(menu_item_id=ids["pizza"], quantity=0)], _address())
        with pytest.raises(NotAuthorized):
            lifecycle.place(ADMIN, [OrderItemPayload(menu_item_id=ids["pizza"])], _address())

        assert db.scalars(select(Order)).all() == []


def test_full_delivery_with_wrong_then_correct_code(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids)
        lifecycle.accept(order.id, ADMIN)
        lifecycle.assign(order.id, ids["partner"], ADMIN)
        assert db.get(DeliveryPartner, ids["partner"]).is_available is False

        lifecycle.start_delivering(order.id, partner)
        lifecycle.push_location(order.id, partner, 12.97, 77.59)
        assert order.current_latitude == 12.97

        with pytest.raises(OtpMismatch):
            lifecycle.confirm_delivered(order.id, partner, "000000")
        assert order.status == OrderStatus.DELIVERING
        assert order.otp_failed_attempts == 1

        delivered = lifecycle.confirm_delivered(order.id, partner, f"  {order.otp} ")

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.payment_status == PaymentStatus.COMPLETED
        assert delivered.delivered_at is not None
        assert delivered.current_latitude is None and delivered.current_longitude is None

        courier = db.get(DeliveryPartner, ids["partner"])
        assert courier.is_available is True
        assert courier.total_deliveries == 1
        assert courier.completion_rate == 100.0
        assert courier.earnings_delivery_charges == Decimal("50.00")
        assert courier.earnings_total == Decimal("50.00")
        record = db.scalar(select(PartnerDelivery).where(PartnerDelivery.order_id == order.id))
        assert record is not None and record.partner_id == ids["partner"]


def test_transitions_outside_the_state_machine_are_rejected(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)

        placed = _place(lifecycle, ids)
        with pytest.raises(InvalidTransition):
            lifecycle.assign(placed.id, ids["partner"], ADMIN)
        assert placed.status == OrderStatus.PLACED

        accepted = _place(lifecycle, ids)
        lifecycle.accept(accepted.id, ADMIN)
        with pytest.raises(InvalidTransition):
            lifecycle.accept(accepted.id, ADMIN)

        assigned = _place(lifecycle, ids)
        lifecycle.accept(assigned.id, ADMIN)
        lifecycle.assign(assigned.id, ids["partner"], ADMIN)
        with pytest.raises(InvalidTransition):
            lifecycle.cancel(assigned.id, ADMIN)
        with pytest.raises(InvalidTransition):
            lifecycle.confirm_delivered(assigned.id, partner, assigned.otp)
        assert assigned.status == OrderStatus.ASSIGNED

        lifecycle.start_delivering(assigned.id, partner)
        with pytest.raises(InvalidTransition):
            lifecycle.start_delivering(assigned.id, partner)
        with pytest.raises(InvalidTransition):
            lifecycle.accept(assigned.id, ADMIN)
        assert assigned.status == OrderStatus.DELIVERING

        cancelled = _place(lifecycle, ids)
        lifecycle.cancel(cancelled.id, Identity(id=ids["customer"], role=Role.USER))
        with pytest.raises(InvalidTransition):
            lifecycle.accept(cancelled.id, ADMIN)
        assert cancelled.status == OrderStatus.CANCELLED
        assert cancelled.cancelled_at is not None


def test_start_and_confirm_require_the_bound_partner(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    stranger = Identity(id=ids["backup"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids)
        lifecycle.accept(order.id, ADMIN)
        lifecycle.assign(order.id, ids["partner"], ADMIN)

        with pytest.raises(NotAuthorized):
            lifecycle.start_delivering(order.id, stranger)
        with pytest.raises(NotAuthorized):
            lifecycle.start_delivering(order.id, ADMIN)
        assert order.status == OrderStatus.ASSIGNED


def test_cancel_by_owner_or_admin_only(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        first = _place(lifecycle, ids)
        with pytest.raises(NotAuthorized):
            lifecycle.cancel(first.id, Identity(id=ids["other"], role=Role.USER))
        lifecycle.cancel(first.id, Identity(id=ids["customer"], role=Role.USER))
        assert first.status == OrderStatus.CANCELLED

        second = _place(lifecycle, ids)
        lifecycle.accept(second.id, ADMIN)
        lifecycle.cancel(second.id, ADMIN)
        assert second.status == OrderStatus.CANCELLED


def test_code_attempts_lock_until_admin_reset(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids)
        _to_delivering(lifecycle, order.id, ids["partner"])

        for _ in range(5):
            with pytest.raises(OtpMismatch):
                lifecycle.confirm_delivered(order.id, partner, "000000")
        with pytest.raises(OtpMismatch):
            lifecycle.confirm_delivered(order.id, partner, order.otp)
        assert order.status == OrderStatus.DELIVERING
        assert order.otp_failed_attempts == 5

        with pytest.raises(NotAuthorized):
            lifecycle.reset_otp_attempts(order.id, partner)
        lifecycle.reset_otp_attempts(order.id, ADMIN)
        assert order.otp_failed_attempts == 0

        assert lifecycle.confirm_delivered(order.id, partner, order.otp).status == OrderStatus.DELIVERED


def test_online_payment_must_complete_before_delivery(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids, payment_method=PaymentMethod.ONLINE)
        _to_delivering(lifecycle, order.id, ids["partner"])

        with pytest.raises(ValidationError):
            lifecycle.confirm_delivered(order.id, partner, order.otp)
        assert order.status == OrderStatus.DELIVERING
        assert order.otp_failed_attempts == 0

        lifecycle.mark_payment_completed(order.id, ADMIN, "PAY-GW-1")
        delivered = lifecycle.confirm_delivered(order.id, partner, order.otp)

        assert delivered.status == OrderStatus.DELIVERED
        assert delivered.payment_status == PaymentStatus.COMPLETED
        assert delivered.payment_reference == "PAY-GW-1"


def test_feedback_once_after_delivery_updates_partner_stats(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    customer = Identity(id=ids["customer"], role=Role.USER)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids)
        with pytest.raises(InvalidTransition):
            lifecycle.submit_feedback(order.id, customer, rating=5)

        _to_delivering(lifecycle, order.id, ids["partner"])
        lifecycle.confirm_delivered(order.id, partner, order.otp)

        with pytest.raises(NotAuthorized):
            lifecycle.submit_feedback(order.id, Identity(id=ids["other"], role=Role.USER), rating=5)
        with pytest.raises(ValidationError):
            lifecycle.submit_feedback(order.id, customer, rating=6)
        with pytest.raises(ValidationError):
            lifecycle.submit_feedback(order.id, customer, rating=4, tip=Decimal("-1"))

        rated = lifecycle.submit_feedback(order.id, customer, rating=4, tip=Decimal("20"), comment="Quick")
        assert rated.feedback_rating == 4
        assert rated.feedback_tip == Decimal("20.00")

        with pytest.raises(InvalidTransition):
            lifecycle.submit_feedback(order.id, customer, rating=1)

        courier = db.get(DeliveryPartner, ids["partner"])
        assert courier.rating_average == 4.0
        assert courier.rating_count == 1
        assert courier.earnings_tips == Decimal("20.00")
        assert courier.earnings_delivery_charges == Decimal("50.00")
        assert courier.earnings_total == Decimal("70.00")


def test_concurrent_assign_lets_exactly_one_caller_win(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order_id = _place(lifecycle, ids).id
        lifecycle.accept(order_id, ADMIN)

    with session_local() as first, session_local() as second:
        winner = _lifecycle(first)
        loser = _lifecycle(second)
        assert winner.get_order(order_id, ADMIN).status == OrderStatus.ACCEPTED
        assert loser.get_order(order_id, ADMIN).status == OrderStatus.ACCEPTED

        winner.assign(order_id, ids["partner"], ADMIN)
        with pytest.raises(InvalidTransition):
            loser.assign(order_id, ids["backup"], ADMIN)

    with session_local() as db:
        order = db.get(Order, order_id)
        assert order.status == OrderStatus.ASSIGNED
        assert order.assigned_partner_id == ids["partner"]
        assert db.get(DeliveryPartner, ids["partner"]).is_available is False
        assert db.get(DeliveryPartner, ids["backup"]).is_available is True


def test_orders_are_visible_only_to_owner_partner_and_admin(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    customer = Identity(id=ids["customer"], role=Role.USER)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)

    with session_local() as db:
        lifecycle = _lifecycle(db)
        order = _place(lifecycle, ids)

        with pytest.raises(NotFound):
            lifecycle.get_order(order.id, Identity(id=ids["other"], role=Role.USER))
        with pytest.raises(NotFound):
            lifecycle.get_order(order.id, partner)
        assert lifecycle.list_orders(partner) == []

        lifecycle.accept(order.id, ADMIN)
        lifecycle.assign(order.id, ids["partner"], ADMIN)

        assert lifecycle.get_order(order.id, partner).id == order.id
        assert [o.id for o in lifecycle.list_orders(partner)] == [order.id]
        assert [o.id for o in lifecycle.list_orders(customer)] == [order.id]
        assert lifecycle.list_orders(Identity(id=ids["other"], role=Role.USER)) == []
        assert [o.id for o in lifecycle.list_orders(ADMIN)] == [order.id]


def test_location_is_broadcast_only_while_delivering(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)
    registry = ConnectionRegistry()
    broadcaster = LocationBroadcaster(registry)
    watcher = RecordingConnection("customer-socket")
    bystander = RecordingConnection("other-socket")

    with session_local() as db:
        lifecycle = OrderLifecycle(db, broadcaster, SmsNotifier(gateway_url=""))
        order = _place(lifecycle, ids)
        broadcaster.authenticate(watcher, ids["customer"], Role.USER, order.id)
        broadcaster.authenticate(bystander, ids["other"], Role.USER, order.id + 100)
        lifecycle.accept(order.id, ADMIN)
        lifecycle.assign(order.id, ids["partner"], ADMIN)

        early = lifecycle.push_location(order.id, partner, 12.90, 77.50)
        assert early.broadcast is False
        assert order.current_latitude is None
        assert db.get(DeliveryPartner, ids["partner"]).current_latitude == 12.90
        assert watcher.events("location_updated") == []

        lifecycle.start_delivering(order.id, partner)
        pushed = lifecycle.push_location(order.id, partner, 12.95, 77.55)
        assert pushed.broadcast is True
        assert order.current_latitude == 12.95

        updates = watcher.events("location_updated")
        assert len(updates) == 1
        assert updates[0]["order_id"] == order.id
        assert updates[0]["payload"]["latitude"] == 12.95
        assert [message["event"] for message in bystander.messages] == ["authenticated"]

        statuses = [message["payload"]["status"] for message in watcher.events("status_changed")]
        assert statuses == ["accepted", "assigned", "delivering"]
        sequences = [message["sequence"] for message in watcher.messages if message["sequence"] is not None]
        assert sequences == sorted(sequences)

        with pytest.raises(NotAuthorized):
            lifecycle.push_location(order.id, Identity(id=ids["backup"], role=Role.DELIVERY), 12.0, 77.0)
        with pytest.raises(ValidationError):
            lifecycle.push_location(order.id, partner, 91.0, 77.0)

        points = db.scalars(select(OrderLocationPoint).where(OrderLocationPoint.order_id == order.id)).all()
        assert len(points) == 2


def test_admins_hear_placements_and_partner_hears_assignment(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    registry = ConnectionRegistry()
    broadcaster = LocationBroadcaster(registry)
    admin_socket = RecordingConnection("admin-socket")
    partner_socket = RecordingConnection("partner-socket")
    broadcaster.authenticate(admin_socket, ADMIN.id, Role.ADMIN)
    broadcaster.authenticate(partner_socket, ids["partner"], Role.DELIVERY)

    with session_local() as db:
        lifecycle = OrderLifecycle(db, broadcaster, SmsNotifier(gateway_url=""))
        order = _place(lifecycle, ids)
        lifecycle.accept(order.id, ADMIN)
        lifecycle.assign(order.id, ids["partner"], ADMIN)

    placed = admin_socket.events("order_placed")
    assert len(placed) == 1
    assert placed[0]["payload"]["total"] == "345.00"
    assert "otp" not in placed[0]["payload"]

    assigned = partner_socket.events("order_assigned")
    assert len(assigned) == 1
    assert assigned[0]["payload"]["delivery_address"]["city"] == "Bengaluru"
    assert partner_socket.events("order_placed") == []


def test_location_push_racing_delivery_confirmation_is_not_applied(tmp_path: Path) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    partner = Identity(id=ids["partner"], role=Role.DELIVERY)
    registry = ConnectionRegistry()
    broadcaster = LocationBroadcaster(registry)
    notifier = SmsNotifier(gateway_url="")
    watcher = RecordingConnection("customer-socket")

    with session_local() as db:
        lifecycle = OrderLifecycle(db, broadcaster, notifier)
        order = _place(lifecycle, ids)
        order_id, otp = order.id, order.otp
        _to_delivering(lifecycle, order_id, ids["partner"])
    broadcaster.authenticate(watcher, ids["customer"], Role.USER, order_id)

    with session_local() as courier_db, session_local() as confirm_db:
        courier = OrderLifecycle(courier_db, broadcaster, notifier)
        assert courier.get_order(order_id, partner).status == OrderStatus.DELIVERING

        OrderLifecycle(confirm_db, broadcaster, notifier).confirm_delivered(order_id, partner, otp)
        pushed = courier.push_location(order_id, partner, 12.5, 77.5)

    assert pushed.broadcast is False
    with session_local() as db:
        stored = db.get(Order, order_id)
        assert stored.status == OrderStatus.DELIVERED
        assert stored.current_latitude is None and stored.current_longitude is None
        points = db.scalars(select(OrderLocationPoint).where(OrderLocationPoint.order_id == order_id)).all()
        assert [(point.latitude, point.longitude) for point in points] == [(12.5, 77.5)]

    assert [message["event"] for message in watcher.messages] == ["authenticated", "status_changed"]
    assert watcher.messages[-1]["payload"]["status"] == "delivered"
    assert registry.last_sequence(order_id) == 0


def test_placement_returns_before_the_sms_gateway_answers(tmp_path: Path, monkeypatch) -> None:
    session_local = _prepare_db(tmp_path)
    ids = _seed(session_local)
    gateway_released = threading.Event()
    posted: list[dict] = []

    def stalled_post(url, json, headers, timeout):
        gateway_released.wait(timeout=10)
        posted.append(json)
        raise requests.ConnectionError("gateway down")

    monkeypatch.setattr(requests, "post", stalled_post)
    monkeypatch.setattr(SmsNotifier._post.retry, "sleep", lambda seconds: None)
    notifier = SmsNotifier(gateway_url="https://sms.example.test/send")

    with session_local() as db:
        order = _place(OrderLifecycle(db, LocationBroadcaster(ConnectionRegistry()), notifier), ids)
        order_id = order.id
        assert order.status == OrderStatus.PLACED
        assert posted == []

    gateway_released.set()
    notifier.shutdown(wait=True)

    assert len(posted) == 3
    assert posted[0]["body"].startswith(f"Your delivery code for order #{order_id}")
