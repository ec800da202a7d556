"""Order endpoints."""

from fastapi import APIRouter, Depends, status

from orderflow.api.deps import get_lifecycle
from orderflow.core.security import Identity, get_current_identity
from orderflow.schemas.order import (
    AssignRequest,
    ConfirmDeliveryRequest,
    FeedbackRequest,
    LocationPointResponse,
    OrderCreate,
    OrderResponse,
    PaymentCompleteRequest,
)
from orderflow.services.order_lifecycle import OrderLifecycle

router: APIRouter = APIRouter()


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
def place_order(
    payload: OrderCreate,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    """Place an order for the calling customer."""
    order = lifecycle.place(
        current,
        payload.items,
        payload.delivery_address,
        payment_method=payload.payment_method,
        delivery_notes=payload.delivery_notes,
    )
    return OrderResponse.model_validate(order)


@router.get("", response_model=list[OrderResponse])
def list_orders(
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> list[OrderResponse]:
    """Own orders for customers, active deliveries for partners, everything for admins."""
    return [OrderResponse.model_validate(order) for order in lifecycle.list_orders(current)]


@router.get("/{order_id}", response_model=OrderResponse)
def get_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.get_order(order_id, current))


@router.get("/{order_id}/locations", response_model=list[LocationPointResponse])
def get_location_history(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> list[LocationPointResponse]:
    return [LocationPointResponse.model_validate(point) for point in lifecycle.location_history(order_id, current)]


@router.post("/{order_id}/accept", response_model=OrderResponse)
def accept_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.accept(order_id, current))


@router.post("/{order_id}/assign", response_model=OrderResponse)
def assign_order(
    order_id: int,
    payload: AssignRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.assign(order_id, payload.partner_id, current))


@router.post("/{order_id}/start", response_model=OrderResponse)
def start_delivering(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.start_delivering(order_id, current))


@router.post("/{order_id}/confirm", response_model=OrderResponse)
def confirm_delivery(
    order_id: int,
    payload: ConfirmDeliveryRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    """Complete the hand-off with the code the customer received by SMS."""
    return OrderResponse.model_validate(lifecycle.confirm_delivered(order_id, current, payload.otp))


@router.post("/{order_id}/cancel", response_model=OrderResponse)
def cancel_order(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.cancel(order_id, current))


@router.post("/{order_id}/feedback", response_model=OrderResponse)
def submit_feedback(
    order_id: int,
    payload: FeedbackRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    order = lifecycle.submit_feedback(
        order_id,
        current,
        rating=payload.rating,
        tip=payload.tip,
        comment=payload.comment,
    )
    return OrderResponse.model_validate(order)


@router.post("/{order_id}/payment/complete", response_model=OrderResponse)
def complete_payment(
    order_id: int,
    payload: PaymentCompleteRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(
        lifecycle.mark_payment_completed(order_id, current, payload.payment_reference)
    )


@router.post("/{order_id}/otp/reset", response_model=OrderResponse)
def reset_otp_attempts(
    order_id: int,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> OrderResponse:
    return OrderResponse.model_validate(lifecycle.reset_otp_attempts(order_id, current))
