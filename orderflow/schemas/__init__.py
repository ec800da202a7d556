"""Schema exports."""

from orderflow.schemas.order import (
    AssignRequest,
    ConfirmDeliveryRequest,
    DeliveryAddress,
    FeedbackRequest,
    LocationPointResponse,
    OrderCreate,
    OrderItemPayload,
    OrderItemResponse,
    OrderResponse,
    PaymentCompleteRequest,
)
from orderflow.schemas.partner import (
    AvailabilityUpdateRequest,
    EligiblePartnerResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    PartnerResponse,
    PartnerStatsResponse,
    PartnerStatusUpdateRequest,
)
from orderflow.schemas.realtime import AuthenticateMessage, PushLocationMessage, RealtimeEvent, RoomMessage

__all__ = [
    "AssignRequest",
    "ConfirmDeliveryRequest",
    "DeliveryAddress",
    "FeedbackRequest",
    "LocationPointResponse",
    "OrderCreate",
    "OrderItemPayload",
    "OrderItemResponse",
    "OrderResponse",
    "PaymentCompleteRequest",
    "AvailabilityUpdateRequest",
    "EligiblePartnerResponse",
    "LocationUpdateRequest",
    "LocationUpdateResponse",
    "PartnerResponse",
    "PartnerStatsResponse",
    "PartnerStatusUpdateRequest",
    "AuthenticateMessage",
    "PushLocationMessage",
    "RealtimeEvent",
    "RoomMessage",
]
