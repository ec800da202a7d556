"""Closed value sets shared by persistence, services and the real-time layer."""

from enum import Enum


class OrderStatus(str, Enum):
    PLACED = "placed"
    ACCEPTED = "accepted"
    ASSIGNED = "assigned"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentMethod(str, Enum):
    CASH = "cash"
    ONLINE = "online"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"


class PartnerStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    SUSPENDED = "suspended"


class Role(str, Enum):
    """Identity roles as issued by the session service."""

    USER = "user"
    ADMIN = "admin"
    DELIVERY = "delivery"
