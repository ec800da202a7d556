"""Demo data seeding for local development."""

import logging
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.orm import Session

from orderflow.models.enums import PartnerStatus, Role
from orderflow.models.menu import MenuItem
from orderflow.models.partner import DeliveryPartner
from orderflow.models.user import User

logger = logging.getLogger(__name__)

DEMO_MENU: list[tuple[str, str, Decimal]] = [
    ("Margherita Pizza", "Tomato, mozzarella, basil", Decimal("100.00")),
    ("Paneer Tikka", "Grilled cottage cheese skewers", Decimal("180.00")),
    ("Masala Dosa", "Rice crepe with spiced potato", Decimal("90.00")),
    ("Mango Lassi", "Yogurt drink", Decimal("50.00")),
]

DEMO_USERS: list[tuple[str, str, str, Role]] = [
    ("Demo Admin", "admin@example.com", "+911000000001", Role.ADMIN),
    ("Demo Customer", "customer@example.com", "+911000000002", Role.USER),
]

DEMO_PARTNERS: list[tuple[str, str, str, float, float]] = [
    ("Ravi Courier", "ravi@example.com", "+911000000010", 12.9716, 77.5946),
    ("Anita Courier", "anita@example.com", "+911000000011", 12.9352, 77.6245),
]


def ensure_seed_data(session: Session) -> None:
    """Insert demo menu, accounts and partners when the tables are empty."""
    if session.scalar(select(MenuItem.id).limit(1)) is None:
        session.add_all(
            MenuItem(name=name, description=description, price=price, is_available=True)
            for name, description, price in DEMO_MENU
        )
        logger.info("[BOOTSTRAP] Seeded %s demo menu items", len(DEMO_MENU))

    if session.scalar(select(User.id).limit(1)) is None:
        session.add_all(User(name=name, email=email, phone=phone, role=role) for name, email, phone, role in DEMO_USERS)
        logger.info("[BOOTSTRAP] Seeded %s demo users", len(DEMO_USERS))

    if session.scalar(select(DeliveryPartner.id).limit(1)) is None:
        session.add_all(
            DeliveryPartner(
                name=name,
                email=email,
                phone=phone,
                status=PartnerStatus.ACTIVE,
                is_available=True,
                current_latitude=latitude,
                current_longitude=longitude,
            )
            for name, email, phone, latitude, longitude in DEMO_PARTNERS
        )
        logger.info("[BOOTSTRAP] Seeded %s demo delivery partners", len(DEMO_PARTNERS))

    session.commit()
