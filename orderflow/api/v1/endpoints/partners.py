"""Delivery partner endpoints."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from orderflow.api.deps import get_lifecycle
from orderflow.core.errors import NotAuthorized, NotFound
from orderflow.core.security import Identity, get_current_identity
from orderflow.db.session import commit_or_raise, get_db
from orderflow.models.enums import PartnerStatus, Role
from orderflow.models.partner import DeliveryPartner
from orderflow.schemas.partner import (
    AvailabilityUpdateRequest,
    EligiblePartnerResponse,
    LocationUpdateRequest,
    LocationUpdateResponse,
    PartnerResponse,
    PartnerStatsResponse,
    PartnerStatusUpdateRequest,
)
from orderflow.services import assignment_service, stats_service
from orderflow.services.order_lifecycle import OrderLifecycle

router: APIRouter = APIRouter()


def _require_admin(current: Identity) -> None:
    if not current.is_admin:
        raise NotAuthorized("Admin role required")


def _get_partner(db: Session, partner_id: int) -> DeliveryPartner:
    partner = db.get(DeliveryPartner, partner_id)
    if partner is None:
        raise NotFound(f"Delivery partner {partner_id} not found")
    return partner


def _stats_response(partner: DeliveryPartner) -> PartnerStatsResponse:
    return PartnerStatsResponse(
        partner_id=partner.id,
        rating_average=partner.rating_average,
        rating_count=partner.rating_count,
        earnings_tips=partner.earnings_tips,
        earnings_delivery_charges=partner.earnings_delivery_charges,
        earnings_total=partner.earnings_total,
        total_deliveries=partner.total_deliveries,
        completion_rate=partner.completion_rate,
        on_time_rate=partner.on_time_rate,
        average_delivery_minutes=partner.average_delivery_minutes,
        stats_updated_at=partner.stats_updated_at,
    )


@router.get("/eligible", response_model=list[EligiblePartnerResponse])
def list_eligible_partners(
    latitude: float | None = Query(default=None, ge=-90, le=90),
    longitude: float | None = Query(default=None, ge=-180, le=180),
    max_distance_km: float | None = Query(default=None, gt=0),
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
) -> list[EligiblePartnerResponse]:
    """Active, available partners, nearest first when a point is given."""
    _require_admin(current)
    partners = assignment_service.find_eligible(db, latitude, longitude, max_distance_km)
    response: list[EligiblePartnerResponse] = []
    for partner in partners:
        item = EligiblePartnerResponse.model_validate(partner)
        if latitude is not None and longitude is not None:
            item.distance_km = assignment_service.partner_distance_km(partner, latitude, longitude)
        response.append(item)
    return response


@router.get("/{partner_id}/stats", response_model=PartnerStatsResponse)
def get_partner_stats(
    partner_id: int,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
) -> PartnerStatsResponse:
    if not (current.is_admin or (current.role == Role.DELIVERY and current.id == partner_id)):
        raise NotAuthorized("Not authorized to view these statistics")
    return _stats_response(_get_partner(db, partner_id))


@router.post("/{partner_id}/stats/recompute", response_model=PartnerStatsResponse)
def recompute_partner_stats(
    partner_id: int,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
) -> PartnerStatsResponse:
    _require_admin(current)
    partner = _get_partner(db, partner_id)
    stats_service.recompute(db, partner)
    commit_or_raise(db)
    db.refresh(partner)
    return _stats_response(partner)


@router.post("/me/location", response_model=LocationUpdateResponse)
def push_my_location(
    payload: LocationUpdateRequest,
    lifecycle: OrderLifecycle = Depends(get_lifecycle),
    current: Identity = Depends(get_current_identity),
) -> LocationUpdateResponse:
    """Report the calling partner's position for an order they carry."""
    push = lifecycle.push_location(payload.order_id, current, payload.latitude, payload.longitude)
    return LocationUpdateResponse.model_validate(push)


@router.put("/me/availability", response_model=PartnerResponse)
def update_my_availability(
    payload: AvailabilityUpdateRequest,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
) -> PartnerResponse:
    """Go on or off duty; a partner carrying an order cannot go available."""
    if current.role != Role.DELIVERY:
        raise NotAuthorized("Only delivery partners can change their availability")
    partner = assignment_service.set_availability(db, current.id, payload.is_available)
    return PartnerResponse.model_validate(partner)


@router.put("/{partner_id}/status", response_model=PartnerResponse)
def update_partner_status(
    partner_id: int,
    payload: PartnerStatusUpdateRequest,
    db: Session = Depends(get_db),
    current: Identity = Depends(get_current_identity),
) -> PartnerResponse:
    is_self = current.role == Role.DELIVERY and current.id == partner_id
    if not (current.is_admin or is_self):
        raise NotAuthorized("Not authorized to change this partner's status")
    if payload.status == PartnerStatus.SUSPENDED and not current.is_admin:
        raise NotAuthorized("Only an admin can suspend a delivery partner")
    partner = assignment_service.set_status(db, partner_id, payload.status)
    return PartnerResponse.model_validate(partner)
