"""Application models package."""

from orderflow.models.enums import OrderStatus, PartnerStatus, PaymentMethod, PaymentStatus, Role
from orderflow.models.menu import MenuItem
from orderflow.models.order import Order, OrderItem, OrderLocationPoint
from orderflow.models.partner import DeliveryPartner, PartnerDelivery
from orderflow.models.user import User

__all__ = [
    "User", "MenuItem", "Order", "OrderItem", "OrderLocationPoint", "DeliveryPartner", "PartnerDelivery",
    "OrderStatus", "PartnerStatus", "PaymentMethod", "PaymentStatus", "Role",
]
