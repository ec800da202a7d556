"""Order API schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from orderflow.models.enums import OrderStatus, PaymentMethod, PaymentStatus


class OrderItemPayload(BaseModel):
    """Single order item payload."""

    menu_item_id: int
    quantity: int = Field(default=1, ge=1)


class DeliveryAddress(BaseModel):
    street: str
    city: str
    state: str
    zip_code: str
    landmark: str | None = None
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)


class OrderCreate(BaseModel):
    """Place a new order for the calling customer."""

    items: list[OrderItemPayload]
    delivery_address: DeliveryAddress
    payment_method: PaymentMethod = PaymentMethod.CASH
    delivery_notes: str | None = None


class AssignRequest(BaseModel):
    partner_id: int


class ConfirmDeliveryRequest(BaseModel):
    otp: str


class FeedbackRequest(BaseModel):
    rating: int
    tip: Decimal = Decimal("0.00")
    comment: str | None = None


class PaymentCompleteRequest(BaseModel):
    payment_reference: str | None = None


class OrderItemResponse(BaseModel):
    """Serialized order item."""

    menu_item_id: int
    name: str
    unit_price: Decimal
    quantity: int
    line_total: Decimal

    model_config = ConfigDict(from_attributes=True)


class LocationPointResponse(BaseModel):
    latitude: float
    longitude: float
    recorded_at: datetime

    model_config = ConfigDict(from_attributes=True)


class OrderResponse(BaseModel):
    """Serialized order; the hand-off code is never exposed."""

    id: int
    user_id: int
    status: OrderStatus
    assigned_partner_id: int | None
    items: list[OrderItemResponse]
    subtotal: Decimal
    tax: Decimal
    delivery_charge: Decimal
    total: Decimal
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_reference: str | None
    address_street: str
    address_city: str
    address_state: str
    address_zip_code: str
    address_landmark: str | None
    delivery_notes: str | None
    current_latitude: float | None
    current_longitude: float | None
    location_updated_at: datetime | None
    otp_failed_attempts: int
    feedback_rating: int | None
    feedback_tip: Decimal | None
    feedback_comment: str | None
    created_at: datetime
    status_updated_at: datetime | None
    estimated_delivery_start: datetime | None
    estimated_delivery_end: datetime | None
    delivered_at: datetime | None

    model_config = ConfigDict(from_attributes=True)
