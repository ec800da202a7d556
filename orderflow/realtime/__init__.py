"""Real-time subscription and fan-out layer."""

from orderflow.realtime.broadcaster import LocationBroadcaster, LocationPush
from orderflow.realtime.registry import (
    Audience,
    Connection,
    ConnectionRegistry,
    ConnectionState,
    NotAuthenticated,
    RegistryClosed,
)

__all__ = [
    "Audience",
    "Connection",
    "ConnectionRegistry",
    "ConnectionState",
    "LocationBroadcaster",
    "LocationPush",
    "NotAuthenticated",
    "RegistryClosed",
]
