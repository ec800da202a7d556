"""Delivery partner API schemas."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from orderflow.models.enums import PartnerStatus


class EligiblePartnerResponse(BaseModel):
    id: int
    name: str
    phone: str | None
    status: PartnerStatus
    current_latitude: float | None
    current_longitude: float | None
    distance_km: float | None = None
    rating_average: float

    model_config = ConfigDict(from_attributes=True)


class PartnerStatsResponse(BaseModel):
    """Aggregates derived from the partner's completed deliveries."""

    partner_id: int
    rating_average: float
    rating_count: int
    earnings_tips: Decimal
    earnings_delivery_charges: Decimal
    earnings_total: Decimal
    total_deliveries: int
    completion_rate: float
    on_time_rate: float
    average_delivery_minutes: float
    stats_updated_at: datetime | None


class LocationUpdateRequest(BaseModel):
    order_id: int
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class LocationUpdateResponse(BaseModel):
    order_id: int
    latitude: float
    longitude: float
    recorded_at: datetime
    broadcast: bool

    model_config = ConfigDict(from_attributes=True)


class PartnerResponse(BaseModel):
    id: int
    name: str
    phone: str | None
    status: PartnerStatus
    is_available: bool

    model_config = ConfigDict(from_attributes=True)


class AvailabilityUpdateRequest(BaseModel):
    is_available: bool


class PartnerStatusUpdateRequest(BaseModel):
    status: PartnerStatus
