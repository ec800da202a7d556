from datetime import datetime, timedelta, timezone
from decimal import Decimal
from pathlib import Path

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from orderflow.db.base import Base
from orderflow.models import DeliveryPartner, Order, PartnerDelivery, User
from orderflow.models.enums import OrderStatus, Role
from orderflow.services.stats_service import compute_stats, recompute

START = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


def _record(minutes: int, charge: str = "50.00", tip: str = "0.00", rating: int | None = None) -> PartnerDelivery:
    return PartnerDelivery(
        partner_id=1,
        order_id=0,
        delivery_charge=Decimal(charge),
        tip=Decimal(tip),
        rating=rating,
        order_created_at=START,
        delivered_at=START + timedelta(minutes=minutes),
    )


def test_compute_stats_for_no_deliveries_is_all_zero() -> None:
    stats = compute_stats([])

    assert stats.total_deliveries == 0
    assert stats.rating_average == 0.0
    assert stats.completion_rate == 0.0
    assert stats.on_time_rate == 0.0
    assert stats.earnings_total == Decimal("0.00")


def test_compute_stats_folds_ratings_earnings_and_timeliness() -> None:
    records = [
        _record(30, tip="20.00", rating=5),
        _record(50, tip="10.00", rating=4),
        _record(40, rating=None),
        _record(60, charge="40.00", rating=4),
    ]

    stats = compute_stats(records, sla_minutes=45)

    assert stats.total_deliveries == 4
    assert stats.rating_count == 3
    assert stats.rating_average == 4.33
    assert stats.earnings_tips == Decimal("30.00")
    assert stats.earnings_delivery_charges == Decimal("190.00")
    assert stats.earnings_total == Decimal("220.00")
    assert stats.completion_rate == 100.0
    assert stats.on_time_rate == 50.0
    assert stats.average_delivery_minutes == 45.0


def test_recompute_is_idempotent(tmp_path: Path) -> None:
    engine = create_engine(f"sqlite:///{tmp_path / 'stats.db'}", connect_args={"check_same_thread": False})
    Base.metadata.create_all(bind=engine)
    session_local = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    with session_local() as db:
        customer = User(name="Asha", phone="+919800000001", role=Role.USER)
        partner = DeliveryPartner(name="Ravi", phone="+919800000010")
        db.add_all([customer, partner])
        db.flush()
        for minutes, rating in ((20, 5), (70, 3)):
            order = Order(
                user_id=customer.id,
                status=OrderStatus.DELIVERED,
                assigned_partner_id=partner.id,
                subtotal=Decimal("100.00"),
                tax=Decimal("18.00"),
                delivery_charge=Decimal("50.00"),
                total=Decimal("168.00"),
                otp="123456",
                address_street="1 Main St",
                address_city="Pune",
                address_state="MH",
                address_zip_code="411001",
            )
            db.add(order)
            db.flush()
            db.add(
                PartnerDelivery(
                    partner_id=partner.id,
                    order_id=order.id,
                    delivery_charge=Decimal("50.00"),
                    tip=Decimal("5.00"),
                    rating=rating,
                    order_created_at=START,
                    delivered_at=START + timedelta(minutes=minutes),
                )
            )
        db.commit()

        first = recompute(db, partner)
        db.commit()
        second = recompute(db, partner)
        db.commit()

        assert first == second
        db.refresh(partner)
        assert partner.total_deliveries == 2
        assert partner.rating_average == 4.0
        assert partner.earnings_total == Decimal("110.00")
        assert partner.on_time_rate == 50.0
        assert partner.stats_updated_at is not None
