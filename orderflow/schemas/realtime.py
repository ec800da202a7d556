"""Real-time channel messages."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

EVENT_ORDER_PLACED = "order_placed"
EVENT_ORDER_ASSIGNED = "order_assigned"
EVENT_STATUS_CHANGED = "status_changed"
EVENT_LOCATION_UPDATED = "location_updated"
EVENT_AUTHENTICATED = "authenticated"
EVENT_ROOM_JOINED = "room_joined"
EVENT_ROOM_LEFT = "room_left"
EVENT_ERROR = "error"


class RealtimeEvent(BaseModel):
    """Server-to-client push; one envelope shape for every event."""

    event: str
    order_id: int | None = None
    sequence: int | None = None
    emitted_at: datetime
    payload: dict[str, Any] = Field(default_factory=dict)


class AuthenticateMessage(BaseModel):
    type: Literal["authenticate"]
    token: str
    order_id: int | None = None


class RoomMessage(BaseModel):
    type: Literal["join_room", "leave_room"]
    order_id: int


class PushLocationMessage(BaseModel):
    type: Literal["push_location"]
    order_id: int
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)
